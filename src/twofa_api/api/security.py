"""会话管理接口。"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from twofa_api.db.session import get_db
from twofa_api.dependencies import get_auth_context, get_client_info, get_orchestrator
from twofa_api.exceptions import failure_exception
from twofa_api.models.session import UserSession
from twofa_api.schemas.common import ErrorResponse, SuccessResponse
from twofa_api.schemas.security import RevokeSessionData, RevokeSessionRequest, SessionData, SessionListData
from twofa_api.services.orchestrator import AuthContext, AuthOrchestrator, ClientInfo
from twofa_api.utils.response import success

router = APIRouter(prefix="/security", tags=["security"])


def _session_view(session: UserSession, current: UserSession) -> SessionData:
    """脱敏：IP 摘要只露前 8 位，User-Agent 截断到 50 字符。"""
    user_agent = session.user_agent
    if user_agent:
        user_agent = user_agent[:50] + ("..." if len(user_agent) > 50 else "")
    return SessionData(
        id=session.id,
        ip_address=f"{session.ip_address[:8]}..." if session.ip_address else "Unknown",
        user_agent=user_agent or "Unknown",
        created_at=session.created_at,
        expires_at=session.expires_at,
        is_active=session.is_active,
        is_current=session.id == current.id,
    )


@router.get(
    "/sessions",
    summary="列出有效会话",
    response_model=SuccessResponse[SessionListData],
    responses={401: {"model": ErrorResponse}},
)
def list_sessions(
    request: Request,
    db: Session = Depends(get_db),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    ctx: AuthContext = Depends(get_auth_context),
):
    """返回当前用户的有效会话，最新的在前。"""
    sessions = orchestrator.list_sessions(db, user=ctx.user)
    data = SessionListData(sessions=[_session_view(item, ctx.session) for item in sessions])
    return success(request, data)


@router.delete(
    "/sessions",
    summary="作废指定会话",
    response_model=SuccessResponse[RevokeSessionData],
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
def revoke_session(
    payload: RevokeSessionRequest,
    request: Request,
    db: Session = Depends(get_db),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    client: ClientInfo = Depends(get_client_info),
    ctx: AuthContext = Depends(get_auth_context),
):
    """只能作废当前用户名下的会话。"""
    outcome = orchestrator.revoke_session(db, user=ctx.user, session_id=payload.session_id, client=client)
    if not outcome.ok:
        raise failure_exception(outcome.failure)
    return success(request, RevokeSessionData(session_id=payload.session_id), "会话已作废。")
