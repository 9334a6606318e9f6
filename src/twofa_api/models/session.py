"""登录会话模型。"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from twofa_api.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class UserSession(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """服务端会话记录，绑定一对访问/刷新令牌。

    登出或安全作废时只置 is_active=false，不删除，保留到维护清理。
    """

    __tablename__ = "sessions"

    # 用户 ID（逻辑关联 users.id，不声明数据库外键）。
    user_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    # 当前访问令牌，每次刷新时覆盖。
    token: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)
    # 刷新令牌。
    refresh_token: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)
    # 客户端 IP 的带密钥摘要，不落原始 IP。
    ip_address: Mapped[str | None] = mapped_column(String(64))
    # 截断后的 User-Agent。
    user_agent: Mapped[str | None] = mapped_column(String(512))
    # 会话过期时间，同时约束刷新令牌的可用期限。
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    # 是否仍有效。
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
