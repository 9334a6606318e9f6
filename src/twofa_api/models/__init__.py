"""ORM 模型导出集合。"""

from twofa_api.models.audit import AuditLog
from twofa_api.models.otp import OtpCode
from twofa_api.models.rate_limit import RateLimitCounter
from twofa_api.models.session import UserSession
from twofa_api.models.user import User

__all__ = [
    "AuditLog",
    "OtpCode",
    "RateLimitCounter",
    "User",
    "UserSession",
]
