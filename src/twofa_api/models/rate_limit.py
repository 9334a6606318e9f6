"""限流计数模型。"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from twofa_api.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class RateLimitCounter(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """按 (identifier, action) 聚合的固定窗口计数器。"""

    __tablename__ = "rate_limits"
    __table_args__ = (UniqueConstraint("identifier", "action", name="uk_rate_limit_identifier_action"),)

    # 计数主体：用户 ID 或客户端 IP。
    identifier: Mapped[str] = mapped_column(String(255), nullable=False)
    # 动作标识，例如 login / 2fa_send。
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    # 当前窗口内的尝试次数。
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # 窗口结束时间，之后的下一次尝试开启新窗口。
    reset_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
