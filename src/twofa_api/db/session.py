"""数据库会话管理。

引擎与会话工厂在应用启动时构造一次并挂到 app.state，随进程存活；
路由层通过依赖注入获取短生命周期会话。
"""

from collections.abc import Generator

from fastapi import Request
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from twofa_api.core.config import Settings


def build_engine(settings: Settings) -> Engine:
    """按配置创建数据库引擎，开启连接预检查以减少僵尸连接影响。"""
    return create_engine(settings.database_url, future=True, pool_pre_ping=True)


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    """统一会话工厂。"""
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, class_=Session)


def get_db(request: Request) -> Generator[Session, None, None]:
    """为每个请求提供独立数据库会话。"""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
