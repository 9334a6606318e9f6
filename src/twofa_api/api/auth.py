"""注册、登录、令牌刷新与账号接口。"""

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.orm import Session

from twofa_api.core.config import Settings
from twofa_api.core.security import request_access_token
from twofa_api.db.session import get_db
from twofa_api.dependencies import get_app_settings, get_auth_context, get_client_info, get_orchestrator
from twofa_api.exceptions import failure_exception
from twofa_api.schemas.auth import (
    ChangePasswordRequest,
    LoginData,
    LoginRequest,
    LogoutData,
    RegisterRequest,
    TokenData,
    UpdateProfileRequest,
    UserData,
)
from twofa_api.schemas.common import ErrorResponse, SuccessResponse
from twofa_api.services.orchestrator import AuthContext, AuthOrchestrator, ClientInfo
from twofa_api.utils.cookies import REFRESH_COOKIE, clear_auth_cookies, set_access_cookie
from twofa_api.utils.response import success

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/register",
    summary="注册本地账号",
    description="创建邮箱+密码账号。注册成功后尽力发送欢迎邮件，发送失败不影响注册结果。",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessResponse[UserData],
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)
def register(
    payload: RegisterRequest,
    request: Request,
    db: Session = Depends(get_db),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    client: ClientInfo = Depends(get_client_info),
):
    """注册本地账号。"""
    outcome = orchestrator.register(
        db,
        email=payload.email,
        password=payload.password,
        name=payload.name,
        client=client,
    )
    if not outcome.ok:
        raise failure_exception(outcome.failure)
    return success(request, UserData.model_validate(outcome.unwrap()), "注册成功。")


@router.post(
    "/login",
    summary="口令登录",
    description="校验邮箱与密码，成功后向邮箱发送验证码；此时尚未签发任何令牌。",
    response_model=SuccessResponse[LoginData],
    responses={401: {"model": ErrorResponse}, 429: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
def login(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    client: ClientInfo = Depends(get_client_info),
):
    """口令校验通过后进入待验证码状态。"""
    outcome = orchestrator.login(db, email=payload.email, password=payload.password, client=client)
    if not outcome.ok:
        raise failure_exception(outcome.failure)
    data = LoginData(requires_2fa=True, user=UserData.model_validate(outcome.unwrap()))
    return success(request, data, "验证码已发送至您的邮箱。")


@router.post(
    "/refresh",
    summary="刷新访问令牌",
    description="使用 refresh-token Cookie 换取新的访问令牌，并覆盖 auth-token Cookie。",
    response_model=SuccessResponse[TokenData],
    responses={401: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)
def refresh(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    client: ClientInfo = Depends(get_client_info),
    settings: Settings = Depends(get_app_settings),
):
    """轮换访问令牌。"""
    outcome = orchestrator.refresh(db, refresh_token=request.cookies.get(REFRESH_COOKIE), client=client)
    if not outcome.ok:
        raise failure_exception(outcome.failure)
    result = outcome.unwrap()
    set_access_cookie(response, result.access_token, settings)
    data = TokenData(user=UserData.model_validate(result.user), token=result.access_token)
    return success(request, data, "令牌已刷新。")


@router.get(
    "/me",
    summary="当前用户信息",
    response_model=SuccessResponse[UserData],
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def me(request: Request, ctx: AuthContext = Depends(get_auth_context)):
    """返回当前登录用户资料。"""
    return success(request, UserData.model_validate(ctx.user))


@router.patch(
    "/me",
    summary="修改个人资料",
    response_model=SuccessResponse[UserData],
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
def update_me(
    payload: UpdateProfileRequest,
    request: Request,
    db: Session = Depends(get_db),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    ctx: AuthContext = Depends(get_auth_context),
):
    outcome = orchestrator.update_profile(db, user=ctx.user, name=payload.name)
    if not outcome.ok:
        raise failure_exception(outcome.failure)
    return success(request, UserData.model_validate(outcome.unwrap()))


@router.post(
    "/logout",
    summary="登出",
    description="作废当前会话并清除认证 Cookie；重复登出同样返回成功。",
    response_model=SuccessResponse[LogoutData],
)
def logout(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    client: ClientInfo = Depends(get_client_info),
    settings: Settings = Depends(get_app_settings),
):
    """登出当前会话。"""
    orchestrator.logout(db, access_token=request_access_token(request), client=client)
    clear_auth_cookies(response, settings)
    return success(request, LogoutData(logged_out=True), "已退出登录。")


@router.post(
    "/change-password",
    summary="修改密码",
    description="校验当前密码后修改，并作废该账号全部会话，需要重新登录。",
    response_model=SuccessResponse[UserData],
    responses={401: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
def change_password(
    payload: ChangePasswordRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
    client: ClientInfo = Depends(get_client_info),
    settings: Settings = Depends(get_app_settings),
    ctx: AuthContext = Depends(get_auth_context),
):
    """修改密码后所有会话失效。"""
    outcome = orchestrator.change_password(
        db,
        user=ctx.user,
        current_password=payload.current_password,
        new_password=payload.new_password,
        client=client,
    )
    if not outcome.ok:
        raise failure_exception(outcome.failure)
    clear_auth_cookies(response, settings)
    return success(request, UserData.model_validate(outcome.unwrap()), "密码已修改，请重新登录。")
