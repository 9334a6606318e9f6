"""应用异常处理注册与业务失败到协议错误的映射。"""

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from twofa_api.services.results import ErrorKind, Failure
from twofa_api.utils.response import DEFAULT_ERROR_MESSAGE, error_payload

logger = logging.getLogger(__name__)

_FAILURE_STATUS = {
    ErrorKind.VALIDATION_ERROR: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.INVALID_CODE: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.CODE_EXPIRED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.MAX_ATTEMPTS_EXCEEDED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.DELIVERY_FAILED: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

_FAILURE_MESSAGE = {
    ErrorKind.VALIDATION_ERROR: "请求参数校验失败。",
    ErrorKind.UNAUTHORIZED: "未登录或登录状态已失效。",
    ErrorKind.INVALID_CREDENTIALS: "邮箱或密码错误。",
    ErrorKind.INVALID_CODE: "验证码错误。",
    ErrorKind.CODE_EXPIRED: "验证码已过期或不存在，请重新获取。",
    ErrorKind.MAX_ATTEMPTS_EXCEEDED: "验证码尝试次数过多，请重新获取。",
    ErrorKind.RATE_LIMITED: "请求过于频繁，请稍后再试。",
    ErrorKind.CONFLICT: "该邮箱已被注册。",
    ErrorKind.NOT_FOUND: "请求资源不存在。",
    ErrorKind.DELIVERY_FAILED: "验证码邮件发送失败，请稍后重试。",
    ErrorKind.INTERNAL_ERROR: DEFAULT_ERROR_MESSAGE,
}


def failure_exception(failure: Failure) -> HTTPException:
    """把业务失败转换为带稳定错误码与本地化信息的协议异常。"""
    status_code = _FAILURE_STATUS[failure.kind]
    details: dict[str, object] = {"reason": failure.kind.value}
    headers: dict[str, str] | None = None

    decision = failure.rate_limit
    if decision is not None:
        headers = {
            "X-RateLimit-Limit": str(decision.limit),
            "X-RateLimit-Remaining": str(decision.remaining),
            "X-RateLimit-Reset": str(int(decision.reset_at.timestamp())),
            "Retry-After": str(decision.retry_after_seconds),
        }
        details["retry_after"] = decision.retry_after_seconds

    return HTTPException(
        status_code=status_code,
        detail={"code": failure.kind.value.upper(), "message": _FAILURE_MESSAGE[failure.kind], "details": details},
        headers=headers,
    )


def _default_http_error_code(status_code: int) -> str:
    if status_code == status.HTTP_400_BAD_REQUEST:
        return "BAD_REQUEST"
    if status_code == status.HTTP_401_UNAUTHORIZED:
        return "UNAUTHORIZED"
    if status_code == status.HTTP_403_FORBIDDEN:
        return "FORBIDDEN"
    if status_code == status.HTTP_404_NOT_FOUND:
        return "NOT_FOUND"
    if status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        return "METHOD_NOT_ALLOWED"
    if status_code == status.HTTP_409_CONFLICT:
        return "CONFLICT"
    if status_code == status.HTTP_422_UNPROCESSABLE_ENTITY:
        return "VALIDATION_ERROR"
    if status_code == status.HTTP_429_TOO_MANY_REQUESTS:
        return "RATE_LIMITED"
    return "HTTP_ERROR"


def _default_http_message(status_code: int) -> str:
    if status_code == status.HTTP_400_BAD_REQUEST:
        return "请求参数不合法。"
    if status_code == status.HTTP_401_UNAUTHORIZED:
        return "未登录或登录状态已失效。"
    if status_code == status.HTTP_403_FORBIDDEN:
        return "无权限访问该资源。"
    if status_code == status.HTTP_404_NOT_FOUND:
        return "请求资源不存在。"
    if status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        return "请求方法不被允许。"
    if status_code == status.HTTP_409_CONFLICT:
        return "请求与当前数据状态冲突。"
    if status_code == status.HTTP_422_UNPROCESSABLE_ENTITY:
        return "请求参数校验失败。"
    if status_code == status.HTTP_429_TOO_MANY_REQUESTS:
        return "请求过于频繁，请稍后再试。"
    return "请求处理失败。"


def _parse_http_detail(detail: object, status_code: int) -> tuple[str, str, dict[str, object]]:
    code = _default_http_error_code(status_code)
    message = _default_http_message(status_code)
    details: dict[str, object] = {"status_code": status_code}

    if isinstance(detail, dict):
        code = str(detail.get("code") or code)
        message = str(detail.get("message") or message)
        raw_details = detail.get("details")
        if isinstance(raw_details, dict):
            details.update(raw_details)
        elif raw_details is not None:
            details["details"] = raw_details
        return code, message, details

    # 框架自带的英文短语（如 Not Found）统一替换为本地化默认文案。
    if detail is not None and not isinstance(detail, str):
        details["detail"] = detail
    return code, message, details


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """将协议异常统一包装为标准错误结构，并保留限流等响应头。"""
    code, message, details = _parse_http_detail(exc.detail, exc.status_code)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(request, code=code, message=message, details=details),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """统一处理请求参数校验错误。"""
    normalized_errors = [
        {
            "field": ".".join(str(item) for item in err.get("loc", []) if item != "body"),
            "message": err.get("msg"),
            "type": err.get("type"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_payload(
            request,
            code="VALIDATION_ERROR",
            message="请求参数校验失败。",
            details={
                "status_code": status.HTTP_422_UNPROCESSABLE_ENTITY,
                "reason": "validation_error",
                "errors": normalized_errors,
            },
        ),
    )


async def unexpected_exception_handler(request: Request, exc: Exception):
    """处理未捕获异常，只返回请求追踪 ID，避免内部细节泄露。"""
    request_id = getattr(request.state, "request_id", None)
    logger.exception("unhandled exception request_id=%s path=%s", request_id, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload(
            request,
            code="INTERNAL_ERROR",
            message=DEFAULT_ERROR_MESSAGE,
            details={"status_code": status.HTTP_500_INTERNAL_SERVER_ERROR, "reason": "unexpected_exception"},
        ),
        headers={"X-Request-Id": request_id} if request_id else None,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """集中注册异常处理器。"""
    app.exception_handler(StarletteHTTPException)(http_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(Exception)(unexpected_exception_handler)
