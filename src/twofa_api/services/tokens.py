"""访问令牌与刷新令牌的签发、校验与轮换。"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING
from uuid import uuid4

import jwt
from jwt import InvalidTokenError
from sqlalchemy.orm import Session

from twofa_api.core.clock import Clock
from twofa_api.core.config import Settings
from twofa_api.models.user import User

if TYPE_CHECKING:
    from twofa_api.services.sessions import SessionRegistry

logger = logging.getLogger(__name__)

_REQUIRED_CLAIMS = ["exp", "iat", "iss", "aud"]


@dataclass(frozen=True)
class TokenClaims:
    """校验通过的令牌声明。"""

    user_id: str
    email: str
    name: str | None
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    user: User


class TokenService:
    """两类令牌结构相同，使用不同密钥与有效期签名。

    过期判断基于注入时钟而非 PyJWT 内部的系统时间，签发方与受众仍交由 PyJWT 校验。
    """

    def __init__(self, settings: Settings, clock: Clock) -> None:
        self._settings = settings
        self._clock = clock

    @property
    def access_secret(self) -> str:
        return self._settings.auth_jwt_access_secret

    @property
    def refresh_secret(self) -> str:
        return self._settings.auth_jwt_refresh_secret

    def _issue(self, user: User, *, secret: str, ttl_seconds: int) -> str:
        now = self._clock.now()
        payload = {
            "userId": str(user.id),
            "email": user.email,
            "iss": self._settings.auth_jwt_issuer,
            "aud": self._settings.auth_jwt_audience,
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
            "jti": uuid4().hex,
        }
        if user.name:
            payload["name"] = user.name
        return jwt.encode(payload, secret, algorithm=self._settings.auth_jwt_algorithm)

    def issue_access_token(self, user: User) -> str:
        return self._issue(
            user,
            secret=self.access_secret,
            ttl_seconds=self._settings.auth_access_token_ttl_seconds,
        )

    def issue_refresh_token(self, user: User) -> str:
        return self._issue(
            user,
            secret=self.refresh_secret,
            ttl_seconds=self._settings.auth_refresh_token_ttl_seconds,
        )

    def verify(self, token: str, secret: str) -> TokenClaims | None:
        """校验签名、签发方、受众与过期时间，任何失败都返回 None。"""
        try:
            claims = jwt.decode(
                token,
                secret,
                algorithms=[self._settings.auth_jwt_algorithm],
                audience=self._settings.auth_jwt_audience,
                issuer=self._settings.auth_jwt_issuer,
                options={"require": _REQUIRED_CLAIMS, "verify_exp": False, "verify_iat": False},
            )
        except InvalidTokenError:
            return None

        exp = claims.get("exp")
        iat = claims.get("iat")
        if not isinstance(exp, int) or not isinstance(iat, int):
            return None
        now_ts = self._clock.now().timestamp()
        if exp <= now_ts - self._settings.auth_jwt_leeway_seconds:
            return None

        user_id = claims.get("userId")
        email = claims.get("email")
        if not isinstance(user_id, str) or not user_id or not isinstance(email, str) or not email:
            return None
        name = claims.get("name")
        return TokenClaims(
            user_id=user_id,
            email=email,
            name=name if isinstance(name, str) else None,
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )

    def verify_access_token(self, token: str) -> TokenClaims | None:
        return self.verify(token, self.access_secret)

    def verify_refresh_token(self, token: str) -> TokenClaims | None:
        return self.verify(token, self.refresh_secret)

    def refresh_access_token(
        self,
        db: Session,
        refresh_token: str,
        *,
        sessions: "SessionRegistry",
    ) -> RefreshResult | None:
        """用刷新令牌换取新的访问令牌，并原地覆盖会话中保存的访问令牌。"""
        session = sessions.find_by_refresh_token(db, refresh_token)
        if session is None:
            return None

        claims = self.verify_refresh_token(refresh_token)
        if claims is None:
            return None
        # 签名有效但属于其他会话主体的令牌同样拒绝。
        if claims.user_id != str(session.user_id):
            logger.warning("refresh token subject mismatch session_id=%s", session.id)
            return None

        user = db.get(User, session.user_id)
        if user is None:
            return None

        access_token = self.issue_access_token(user)
        sessions.rotate_access_token(db, session, access_token)
        return RefreshResult(access_token=access_token, user=user)
