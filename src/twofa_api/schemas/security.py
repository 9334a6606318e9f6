"""会话管理与维护接口结构。"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from twofa_api.schemas.common import BaseSchema


class SessionData(BaseSchema):
    """脱敏后的会话信息。"""

    id: UUID = Field(description="会话 ID。")
    ip_address: str = Field(alias="ipAddress", description="IP 摘要前缀。")
    user_agent: str = Field(alias="userAgent", description="截断后的 User-Agent。")
    created_at: datetime = Field(alias="createdAt", description="创建时间。")
    expires_at: datetime = Field(alias="expiresAt", description="过期时间。")
    is_active: bool = Field(alias="isActive", description="是否有效。")
    is_current: bool = Field(alias="isCurrent", description="是否为当前请求所用会话。")


class SessionListData(BaseSchema):
    sessions: list[SessionData] = Field(description="有效会话列表，最新的在前。")


class RevokeSessionRequest(BaseModel):
    """作废会话请求。"""

    model_config = ConfigDict(populate_by_name=True)

    session_id: UUID = Field(alias="sessionId", description="待作废的会话 ID。")


class RevokeSessionData(BaseSchema):
    session_id: UUID = Field(alias="sessionId", description="已作废的会话 ID。")


class MaintenanceData(BaseSchema):
    """维护任务清理统计。"""

    expired_codes: int = Field(alias="expiredCodes", description="清理的过期验证码数。")
    expired_sessions: int = Field(alias="expiredSessions", description="清理的过期或已作废会话数。")
    expired_rate_limits: int = Field(alias="expiredRateLimits", description="清理的过期限流计数数。")
    old_audit_logs: int = Field(alias="oldAuditLogs", description="清理的超期审计日志数。")
