"""认证 Cookie 读写。"""

from fastapi import Response

from twofa_api.core.config import Settings

ACCESS_COOKIE = "auth-token"
REFRESH_COOKIE = "refresh-token"


def set_access_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        ACCESS_COOKIE,
        token,
        max_age=settings.auth_access_token_ttl_seconds,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
    )


def set_refresh_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        REFRESH_COOKIE,
        token,
        max_age=settings.auth_refresh_token_ttl_seconds,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
    )


def clear_auth_cookies(response: Response, settings: Settings) -> None:
    """清除两类认证 Cookie，属性需与写入时一致才能被浏览器覆盖。"""
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, path="/", httponly=True, secure=settings.cookie_secure, samesite="lax")
