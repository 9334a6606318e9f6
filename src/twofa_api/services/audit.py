"""审计服务。

审计写入是尽力而为的旁路：写入失败只记录日志并回滚本次审计，不影响主流程。
调用方需在写审计前提交自己的业务变更。
"""

import logging
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from twofa_api.core.clock import Clock
from twofa_api.models.audit import AuditLog
from twofa_api.models.enums import SecurityEventType, Severity

logger = logging.getLogger(__name__)

_ALERT_SEVERITIES = {Severity.HIGH, Severity.CRITICAL}


class AuditTrail:
    """认证相关操作的审计写入与清理。"""

    def __init__(self, clock: Clock) -> None:
        self._clock = clock

    def write(
        self,
        db: Session,
        action: str,
        *,
        success: bool,
        user_id: UUID | None = None,
        details: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """写入统一审计日志，永不抛出。"""
        try:
            db.add(
                AuditLog(
                    user_id=user_id,
                    action=action,
                    details=details,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    success=success,
                    created_at=self._clock.now(),
                )
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("audit write failed action=%s", action)

    def security_event(
        self,
        db: Session,
        event_type: SecurityEventType,
        severity: Severity,
        *,
        user_id: UUID | None = None,
        details: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """记录安全事件，高危事件额外输出告警日志。"""
        payload: dict[str, Any] = {"type": str(event_type), "severity": str(severity)}
        if details:
            payload.update(details)
        self.write(
            db,
            f"security_{event_type}",
            success=False,
            user_id=user_id,
            details=payload,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        if severity in _ALERT_SEVERITIES:
            logger.warning("security event type=%s severity=%s user_id=%s", event_type, severity, user_id)

    def cleanup_old_logs(self, db: Session, *, retention_days: int) -> int:
        """删除超过保留期的审计日志。"""
        cutoff = self._clock.now() - timedelta(days=retention_days)
        result = db.execute(
            delete(AuditLog).where(AuditLog.created_at < cutoff).execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount or 0
