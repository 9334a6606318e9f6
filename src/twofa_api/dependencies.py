"""接口依赖注入。"""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from twofa_api.core.config import Settings
from twofa_api.core.security import client_ip, client_user_agent, request_access_token
from twofa_api.db.session import get_db
from twofa_api.exceptions import failure_exception
from twofa_api.services.orchestrator import AuthContext, AuthOrchestrator, ClientInfo


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_orchestrator(request: Request) -> AuthOrchestrator:
    return request.app.state.orchestrator


def get_client_info(request: Request, settings: Settings = Depends(get_app_settings)) -> ClientInfo:
    return ClientInfo(
        ip_address=client_ip(request, settings.trusted_proxies),
        user_agent=client_user_agent(request),
    )


def get_auth_context(
    request: Request,
    db: Session = Depends(get_db),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    client: ClientInfo = Depends(get_client_info),
) -> AuthContext:
    """完整校验访问令牌与会话，网关预检之后的信任边界。"""
    outcome = orchestrator.authenticate(db, access_token=request_access_token(request), client=client)
    if not outcome.ok:
        raise failure_exception(outcome.failure)
    return outcome.unwrap()
