"""口令哈希、客户端标识脱敏与令牌提取工具。"""

import base64
import binascii
import hashlib
import hmac
import re
import secrets
from collections.abc import Collection

from fastapi import Request

PASSWORD_HASH_ALGORITHM = "pbkdf2_sha256"


def hash_password(password: str, *, iterations: int) -> str:
    """使用 PBKDF2-SHA256 生成口令哈希。"""
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    salt_b64 = base64.b64encode(salt).decode("ascii")
    digest_b64 = base64.b64encode(digest).decode("ascii")
    return f"{PASSWORD_HASH_ALGORITHM}${iterations}${salt_b64}${digest_b64}"


def verify_password(password: str, password_hash: str) -> bool:
    """校验口令是否匹配，哈希格式异常一律视为不匹配。"""
    try:
        algorithm, iterations_text, salt_b64, expected_digest_b64 = password_hash.split("$", 3)
        if algorithm != PASSWORD_HASH_ALGORITHM:
            return False
        iterations = int(iterations_text)
        salt = base64.b64decode(salt_b64.encode("ascii"))
        expected_digest = base64.b64decode(expected_digest_b64.encode("ascii"))
    except (ValueError, TypeError, binascii.Error):
        return False

    actual_digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return hmac.compare_digest(actual_digest, expected_digest)


def hash_ip_address(ip_address: str, *, key: str) -> str:
    """对客户端 IP 做带密钥的单向摘要，会话表中不落原始 IP。"""
    digest = hmac.new(key.encode("utf-8"), ip_address.encode("utf-8"), hashlib.sha256).hexdigest()
    return digest[:16]


def client_ip(request: Request, trusted_proxies: Collection[str] = ()) -> str:
    """提取客户端 IP；仅当直连对端是可信代理时才采信 X-Forwarded-For。"""
    peer = request.client.host if request.client else None
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and ("*" in trusted_proxies or (peer is not None and peer in trusted_proxies)):
        return forwarded.split(",")[0].strip()
    return peer or "unknown"


def client_user_agent(request: Request) -> str:
    return request.headers.get("user-agent") or "unknown"


def extract_bearer_token(authorization: str | None) -> str | None:
    """从 Authorization 头中提取 Bearer token，兼容重复头被逗号拼接的场景。"""
    if not authorization:
        return None
    tokens = re.findall(r"Bearer\s+([^,\s]+)", authorization, flags=re.IGNORECASE)
    for candidate in reversed(tokens):
        token = candidate.strip()
        if token:
            return token
    return None


def request_access_token(request: Request) -> str | None:
    """读取请求携带的访问令牌：优先 auth-token Cookie，其次 Bearer 头。"""
    token = request.cookies.get("auth-token")
    if token:
        return token
    return extract_bearer_token(request.headers.get("authorization"))
