"""邮箱验证码模型。"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from twofa_api.models.base import Base, UUIDPrimaryKeyMixin


class OtpCode(Base, UUIDPrimaryKeyMixin):
    """一次性验证码。每个用户同一时刻至多一条有效记录。"""

    __tablename__ = "otp_codes"

    # 所属用户 ID。
    user_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    # 6 位数字验证码。
    code: Mapped[str] = mapped_column(String(6), nullable=False)
    # 过期时间，过期记录在查询时被过滤，由维护任务清理。
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    # 已尝试次数，每次校验前自增。
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
