"""应用中间件注册。"""

from time import perf_counter
import uuid

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from twofa_api.core.gatekeeper import precheck_access_token
from twofa_api.core.security import request_access_token
from twofa_api.utils.response import error_payload

# 受保护接口路径（不含统一前缀）。
PROTECTED_PATHS = (
    "/auth/me",
    "/auth/change-password",
    "/2fa/send-code",
    "/security/sessions",
)


async def request_id_middleware(request: Request, call_next):
    """注入请求追踪 ID，并通过响应头返回。"""
    request.state.request_id = str(uuid.uuid4())
    request.state.request_started_at = perf_counter()
    response = await call_next(request)
    response.headers["X-Request-Id"] = request.state.request_id
    elapsed = perf_counter() - request.state.request_started_at
    response.headers["X-Process-Time-Ms"] = str(round(elapsed * 1000, 2))
    return response


def _is_protected(path: str, api_prefix: str) -> bool:
    return any(path == f"{api_prefix}{item}" or path.startswith(f"{api_prefix}{item}/") for item in PROTECTED_PATHS)


async def gatekeeper_middleware(request: Request, call_next):
    """受保护接口前的令牌预检：不查库、不验签，只尽早拒绝明显无效的令牌。"""
    settings = request.app.state.settings
    if request.method != "OPTIONS" and _is_protected(request.url.path, settings.api_prefix):
        token = request_access_token(request)
        claims = None
        if token:
            claims = precheck_access_token(
                token,
                issuer=settings.auth_jwt_issuer,
                audience=settings.auth_jwt_audience,
                now=request.app.state.clock.now(),
            )
        if claims is None:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content=error_payload(
                    request,
                    code="UNAUTHORIZED",
                    message="未登录或登录状态已失效。",
                    details={"status_code": status.HTTP_401_UNAUTHORIZED, "reason": "token_precheck_failed"},
                ),
            )
    return await call_next(request)


def register_middlewares(app: FastAPI) -> None:
    """集中注册中间件；后注册者位于外层，请求追踪 ID 需最先注入。"""
    app.middleware("http")(gatekeeper_middleware)
    app.middleware("http")(request_id_middleware)
