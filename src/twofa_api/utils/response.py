"""统一响应结构工具。"""

from typing import Any

from fastapi import Request

DEFAULT_ERROR_MESSAGE = "服务器内部错误。"

_SUCCESS_MESSAGE_BY_METHOD = {
    "GET": "查询成功。",
    "POST": "操作成功。",
    "PUT": "更新成功。",
    "PATCH": "更新成功。",
    "DELETE": "删除成功。",
}


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "") or ""


def success(request: Request, data: Any, message: str | None = None) -> dict[str, Any]:
    """构造统一成功响应结构。"""
    return {
        "success": True,
        "message": message or _SUCCESS_MESSAGE_BY_METHOD.get(request.method.upper(), "操作成功。"),
        "data": data,
        "request_id": _request_id(request),
    }


def error_payload(
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """构造统一错误响应结构。"""
    final_details: dict[str, Any] = {
        "method": request.method.upper(),
        "path": request.url.path,
    }
    if details:
        final_details.update(details)
    return {
        "success": False,
        "message": message,
        "error": code,
        "details": final_details,
        "request_id": _request_id(request),
    }
