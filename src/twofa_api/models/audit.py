"""审计日志模型。"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, DateTime, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from twofa_api.models.base import Base, UUIDPrimaryKeyMixin


class AuditLog(Base, UUIDPrimaryKeyMixin):
    """认证相关操作的只追加审计记录。"""

    __tablename__ = "audit_logs"

    # 操作人用户 ID，匿名动作可为空。
    user_id: Mapped[UUID | None] = mapped_column(index=True)
    # 动作标识，例如 login_success / 2fa_verify_invalid_code。
    action: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    # 结构化附加信息。
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON().with_variant(JSONB(), "postgresql"))
    # 客户端 IP（可能为 unknown，故不使用 INET）。
    ip_address: Mapped[str | None] = mapped_column(String(64))
    # 客户端 User-Agent。
    user_agent: Mapped[str | None] = mapped_column(Text)
    # 动作结果。
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
