"""邮箱验证码接口。"""

from dataclasses import replace

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from twofa_api.core.config import Settings
from twofa_api.db.session import get_db
from twofa_api.dependencies import get_app_settings, get_auth_context, get_client_info, get_orchestrator
from twofa_api.exceptions import failure_exception
from twofa_api.schemas.auth import TokenData, UserData
from twofa_api.schemas.common import ErrorResponse, SuccessResponse
from twofa_api.schemas.twofa import SendCodeData, VerifyCodeRequest
from twofa_api.services.orchestrator import AuthContext, AuthOrchestrator, ClientInfo
from twofa_api.services.results import ErrorKind
from twofa_api.utils.cookies import set_access_cookie, set_refresh_cookie
from twofa_api.utils.response import success

router = APIRouter(prefix="/2fa", tags=["2fa"])


@router.post(
    "/verify-code",
    summary="校验邮箱验证码",
    description="验证码正确后签发访问令牌与刷新令牌并建立会话，令牌同时写入 Cookie。",
    response_model=SuccessResponse[TokenData],
    responses={401: {"model": ErrorResponse}, 422: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)
def verify_code(
    payload: VerifyCodeRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    client: ClientInfo = Depends(get_client_info),
    settings: Settings = Depends(get_app_settings),
):
    """完成二次验证，进入已登录状态。"""
    outcome = orchestrator.verify_two_factor(db, email=payload.email, code=payload.code, client=client)
    if not outcome.ok:
        failure = outcome.failure
        # 用户不存在与验证码错误对外不区分。
        if failure.kind is ErrorKind.NOT_FOUND:
            failure = replace(failure, kind=ErrorKind.INVALID_CODE)
        raise failure_exception(failure)

    result = outcome.unwrap()
    set_access_cookie(response, result.access_token, settings)
    set_refresh_cookie(response, result.refresh_token, settings)
    data = TokenData(user=UserData.model_validate(result.user), token=result.access_token)
    return success(request, data, "登录成功。")


@router.post(
    "/send-code",
    summary="重新发送验证码",
    description="已登录用户重新获取邮箱验证码，旧验证码随即失效。",
    response_model=SuccessResponse[SendCodeData],
    responses={401: {"model": ErrorResponse}, 429: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
def send_code(
    request: Request,
    db: Session = Depends(get_db),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    client: ClientInfo = Depends(get_client_info),
    ctx: AuthContext = Depends(get_auth_context),
):
    outcome = orchestrator.resend_code(db, user=ctx.user, client=client)
    if not outcome.ok:
        raise failure_exception(outcome.failure)
    data = SendCodeData(
        code_id=outcome.unwrap(),
        expires_in=orchestrator.otp.code_time_remaining(db, ctx.user.id),
    )
    return success(request, data, "验证码已发送至您的邮箱。")
