"""边缘令牌预检。

在受保护接口前对访问令牌做廉价的结构、过期与签发方/受众检查，不查库，也**不校验签名**。
它只用于尽早拒绝明显无效的令牌，不是信任边界：签名、签发方、受众与过期的完整校验
仍由 TokenService 负责，并在路由依赖中通过会话注册表再次确认。
"""

from dataclasses import dataclass
from datetime import datetime

import jwt
from jwt import InvalidTokenError


@dataclass(frozen=True)
class PrecheckedClaims:
    """预检通过后的声明视图（未经签名校验，不可用于授权）。"""

    user_id: str
    email: str
    expires_at: int | None


def precheck_access_token(token: str, *, issuer: str, audience: str, now: datetime) -> PrecheckedClaims | None:
    """对访问令牌执行不验签的快速预检，任何异常均返回 None。"""
    if token.count(".") != 2:
        return None
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except InvalidTokenError:
        return None
    if not isinstance(claims, dict):
        return None

    user_id = claims.get("userId")
    email = claims.get("email")
    if not isinstance(user_id, str) or not user_id or not isinstance(email, str) or not email:
        return None

    exp = claims.get("exp")
    if exp is not None:
        if not isinstance(exp, int) or exp < int(now.timestamp()):
            return None

    aud = claims.get("aud")
    audiences = aud if isinstance(aud, list) else [aud]
    if claims.get("iss") != issuer or audience not in audiences:
        return None

    return PrecheckedClaims(user_id=user_id, email=email, expires_at=exp)
