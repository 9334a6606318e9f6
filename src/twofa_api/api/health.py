"""探针接口。

就绪判断除数据库外还包含邮件投递：生产环境未配置 SMTP 时验证码无法送达，登录流程不可用。
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import text
from sqlalchemy.orm import Session

from twofa_api.core.config import Settings
from twofa_api.db.session import get_db
from twofa_api.dependencies import get_app_settings
from twofa_api.schemas.common import ErrorResponse, HealthStatusData, SuccessResponse
from twofa_api.utils.response import success

router = APIRouter(prefix="/health", tags=["health"])


def _mail_transport(settings: Settings) -> str:
    return "smtp" if settings.mail_host else "log"


@router.get(
    "/live",
    summary="存活探针",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
    response_model_exclude_none=True,
)
def live(request: Request, settings: Settings = Depends(get_app_settings)):
    return success(request, {"status": "ok", "environment": settings.app_env})


@router.get(
    "/ready",
    summary="就绪探针",
    description="数据库可查询且验证码邮件具备投递通道时返回 ready。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
    response_model_exclude_none=True,
    responses={503: {"model": ErrorResponse}},
)
def ready(request: Request, db: Session = Depends(get_db), settings: Settings = Depends(get_app_settings)):
    db.execute(text("select 1"))
    transport = _mail_transport(settings)
    if settings.is_production and transport == "log":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "code": "NOT_READY",
                "message": "邮件通道未配置，验证码无法投递。",
                "details": {"database": "ok", "mailTransport": transport},
            },
        )
    return success(
        request,
        {"status": "ready", "environment": settings.app_env, "database": "ok", "mailTransport": transport},
    )
