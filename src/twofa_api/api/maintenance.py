"""维护任务接口。"""

import hmac

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from twofa_api.core.config import Settings
from twofa_api.db.session import get_db
from twofa_api.dependencies import get_app_settings, get_client_info, get_orchestrator
from twofa_api.schemas.common import ErrorResponse, SuccessResponse
from twofa_api.schemas.security import MaintenanceData
from twofa_api.services.orchestrator import AuthOrchestrator, ClientInfo
from twofa_api.utils.response import success

router = APIRouter(tags=["maintenance"])


@router.post(
    "/maintenance",
    summary="执行数据清理",
    description="清理过期验证码、过期或已作废会话、过期限流计数与超期审计日志。配置了维护口令时需携带 X-Maintenance-Token。",
    response_model=SuccessResponse[MaintenanceData],
    responses={401: {"model": ErrorResponse}},
)
def run_maintenance(
    request: Request,
    db: Session = Depends(get_db),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    client: ClientInfo = Depends(get_client_info),
    settings: Settings = Depends(get_app_settings),
    x_maintenance_token: str | None = Header(default=None),
):
    """执行一次维护清理。"""
    expected = settings.maintenance_token
    if expected and not hmac.compare_digest((x_maintenance_token or "").encode(), expected.encode()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid maintenance token")

    report = orchestrator.perform_maintenance(db, client=client)
    data = MaintenanceData(
        expired_codes=report.expired_codes,
        expired_sessions=report.expired_sessions,
        expired_rate_limits=report.expired_rate_limits,
        old_audit_logs=report.old_audit_logs,
    )
    return success(request, data, "维护任务已完成。")
