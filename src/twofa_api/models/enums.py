"""领域枚举定义。"""

from enum import StrEnum


class SecurityEventType(StrEnum):
    """安全事件类型，写入审计日志时以 security_ 前缀落库。"""

    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    INVALID_TOKEN = "invalid_token"
    CONCURRENT_SESSIONS = "concurrent_sessions"


class Severity(StrEnum):
    """安全事件严重级别。"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"  # 额外输出告警日志。
    CRITICAL = "critical"  # 额外输出告警日志。


class RateLimitAction(StrEnum):
    """限流动作标识。"""

    LOGIN = "login"
    REGISTER = "register"
    TWOFA_SEND = "2fa_send"
    TWOFA_VERIFY = "2fa_verify"
    TOKEN_REFRESH = "token_refresh"
