"""FastAPI 应用入口点。"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy import Engine

from twofa_api.api.router import api_router
from twofa_api.core.clock import Clock
from twofa_api.core.config import Settings, get_settings
from twofa_api.core.logging import configure_logging
from twofa_api.db.base import Base
from twofa_api.db.session import build_engine, build_session_factory
from twofa_api.exceptions import register_exception_handlers
from twofa_api.middlewares import register_middlewares
from twofa_api.services import build_orchestrator
from twofa_api.services.mailer import MailTransport, SmtpMailer

logger = logging.getLogger("twofa_api")


def create_app(
    settings: Settings | None = None,
    *,
    mailer: MailTransport | None = None,
    clock: Clock | None = None,
    engine: Engine | None = None,
) -> FastAPI:
    """创建并配置 FastAPI 应用实例；测试可注入配置、邮件通道、时钟与数据库引擎。"""
    settings = settings or get_settings()
    configure_logging(settings)
    clock = clock or Clock()
    mailer = mailer or SmtpMailer(settings)
    engine = engine or build_engine(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.app_env == "dev":
            # 本地开发直接按模型建表，其他环境由迁移脚本维护表结构。
            Base.metadata.create_all(engine)
        logger.info("service started env=%s", settings.app_env)
        yield
        engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        debug=settings.app_debug,
        lifespan=lifespan,
        description=(
            "邮箱二次验证认证服务。\n\n"
            "成功响应统一返回：`{success, message, data, request_id}`；"
            "失败响应统一返回：`{success, message, error, details, request_id}`。\n"
            "登录需先校验口令，再校验邮箱验证码，之后通过 auth-token Cookie 或 Bearer 头访问受保护接口。"
        ),
        openapi_tags=[
            {"name": "health", "description": "服务存活与就绪探针。"},
            {"name": "auth", "description": "注册、口令登录、令牌刷新、登出与账号管理。"},
            {"name": "2fa", "description": "邮箱验证码的发送与校验。"},
            {"name": "security", "description": "当前用户的会话查询与作废。"},
            {"name": "maintenance", "description": "过期数据清理。"},
        ],
    )

    app.state.settings = settings
    app.state.clock = clock
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.orchestrator = build_orchestrator(settings, clock, mailer)

    register_middlewares(app)
    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()
