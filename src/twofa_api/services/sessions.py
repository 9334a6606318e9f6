"""服务端会话注册表。"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from uuid import UUID

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from twofa_api.core.clock import Clock, as_utc
from twofa_api.core.config import Settings
from twofa_api.core.security import hash_ip_address
from twofa_api.models.enums import SecurityEventType, Severity
from twofa_api.models.session import UserSession
from twofa_api.services.audit import AuditTrail
from twofa_api.services.tokens import TokenService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionValidation:
    valid: bool
    session: UserSession | None = None
    reason: str | None = None


@dataclass(frozen=True)
class ConcurrentSessionCheck:
    allowed: bool
    active_count: int


class SessionRegistry:
    """会话的创建、校验、枚举与作废。

    作废只把 is_active 置为 false，记录保留到维护任务统一清理。
    """

    def __init__(self, settings: Settings, clock: Clock, tokens: TokenService, audit: AuditTrail) -> None:
        self._settings = settings
        self._clock = clock
        self._tokens = tokens
        self._audit = audit

    def hash_ip(self, ip_address: str) -> str:
        return hash_ip_address(ip_address, key=self._settings.auth_jwt_access_secret)

    def _truncate_user_agent(self, user_agent: str | None) -> str | None:
        if user_agent is None:
            return None
        return user_agent[: self._settings.session_user_agent_max_length]

    def _active_query(self):
        return (
            select(UserSession)
            .where(UserSession.is_active.is_(True))
            .where(UserSession.expires_at > self._clock.now())
        )

    def create(
        self,
        db: Session,
        *,
        user_id: UUID,
        access_token: str,
        refresh_token: str,
        ip_address: str | None,
        user_agent: str | None,
    ) -> UserSession:
        now = self._clock.now()
        session = UserSession(
            user_id=user_id,
            token=access_token,
            refresh_token=refresh_token,
            ip_address=self.hash_ip(ip_address) if ip_address else None,
            user_agent=self._truncate_user_agent(user_agent),
            expires_at=now + timedelta(days=self._settings.session_ttl_days),
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        db.add(session)
        db.commit()
        return session

    def find_by_refresh_token(self, db: Session, refresh_token: str) -> UserSession | None:
        """按刷新令牌查找有效且未过期的会话。"""
        return db.execute(
            self._active_query().where(UserSession.refresh_token == refresh_token)
        ).scalar_one_or_none()

    def rotate_access_token(self, db: Session, session: UserSession, access_token: str) -> None:
        """覆盖会话保存的访问令牌；旧令牌不单独吊销，依赖其自身有效期。"""
        session.token = access_token
        session.updated_at = self._clock.now()
        db.commit()

    def validate(
        self,
        db: Session,
        token: str,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> SessionValidation:
        """完整校验访问令牌对应的会话，成功时刷新心跳时间。"""
        session = db.execute(self._active_query().where(UserSession.token == token)).scalar_one_or_none()
        if session is None:
            return SessionValidation(valid=False, reason="session_not_found")

        claims = self._tokens.verify_access_token(token)
        if claims is None:
            return SessionValidation(valid=False, reason="invalid_token")

        if self._settings.session_enforce_inactivity:
            idle = self.check_inactivity_timeout(db, session.id)
            if not idle.valid:
                return idle

        if claims.user_id != str(session.user_id):
            self.invalidate(db, session.id)
            self._audit.security_event(
                db,
                SecurityEventType.INVALID_TOKEN,
                Severity.HIGH,
                user_id=session.user_id,
                details={"reason": "user_id_mismatch", "session_id": str(session.id)},
                ip_address=ip_address,
                user_agent=user_agent,
            )
            return SessionValidation(valid=False, reason="user_mismatch")

        if ip_address and session.ip_address and self.hash_ip(ip_address) != session.ip_address:
            # 移动网络与 NAT 下 IP 变化很常见，默认只记录。
            self._audit.security_event(
                db,
                SecurityEventType.SUSPICIOUS_ACTIVITY,
                Severity.LOW,
                user_id=session.user_id,
                details={"reason": "ip_address_changed", "session_id": str(session.id)},
                ip_address=ip_address,
                user_agent=user_agent,
            )
            if self._settings.session_strict_ip:
                self.invalidate(db, session.id)
                return SessionValidation(valid=False, reason="ip_address_changed")

        compare_length = self._settings.session_user_agent_compare_length
        if user_agent and session.user_agent and user_agent[:compare_length] != session.user_agent[:compare_length]:
            self._audit.security_event(
                db,
                SecurityEventType.SUSPICIOUS_ACTIVITY,
                Severity.MEDIUM,
                user_id=session.user_id,
                details={"reason": "user_agent_changed", "session_id": str(session.id)},
                ip_address=ip_address,
                user_agent=user_agent,
            )
            if self._settings.session_strict_user_agent:
                self.invalidate(db, session.id)
                return SessionValidation(valid=False, reason="user_agent_changed")

        session.updated_at = self._clock.now()
        db.commit()
        return SessionValidation(valid=True, session=session)

    def invalidate(self, db: Session, session_id: UUID) -> bool:
        """作废单个会话，返回是否确有有效会话被作废。"""
        result = db.execute(
            update(UserSession)
            .where(UserSession.id == session_id)
            .where(UserSession.is_active.is_(True))
            .values(is_active=False, updated_at=self._clock.now())
        )
        db.commit()
        return bool(result.rowcount)

    def invalidate_by_token(self, db: Session, token: str) -> bool:
        """按访问令牌作废会话；未知或已作废的令牌不视为错误。"""
        result = db.execute(
            update(UserSession)
            .where(UserSession.token == token)
            .where(UserSession.is_active.is_(True))
            .values(is_active=False, updated_at=self._clock.now())
        )
        db.commit()
        return bool(result.rowcount)

    def invalidate_all_for_user(self, db: Session, user_id: UUID) -> int:
        result = db.execute(
            update(UserSession)
            .where(UserSession.user_id == user_id)
            .where(UserSession.is_active.is_(True))
            .values(is_active=False, updated_at=self._clock.now())
        )
        db.commit()
        count = result.rowcount or 0
        logger.info("invalidated sessions user_id=%s count=%s", user_id, count)
        return count

    def list_active(self, db: Session, user_id: UUID) -> list[UserSession]:
        """列出用户有效会话，最新创建的在前。"""
        return list(
            db.execute(
                self._active_query()
                .where(UserSession.user_id == user_id)
                .order_by(UserSession.created_at.desc())
            )
            .scalars()
            .all()
        )

    def check_concurrent_session_limit(
        self,
        db: Session,
        user_id: UUID,
        max_sessions: int | None = None,
    ) -> ConcurrentSessionCheck:
        """并发会话上限检查，仅作提示，是否拦截由调用方决定。"""
        limit = max_sessions if max_sessions is not None else self._settings.session_max_concurrent
        active_count = db.execute(
            select(func.count())
            .select_from(UserSession)
            .where(UserSession.user_id == user_id)
            .where(UserSession.is_active.is_(True))
            .where(UserSession.expires_at > self._clock.now())
        ).scalar_one()
        return ConcurrentSessionCheck(allowed=active_count < limit, active_count=active_count)

    def check_inactivity_timeout(
        self,
        db: Session,
        session_id: UUID,
        timeout_minutes: int | None = None,
    ) -> SessionValidation:
        """会话超过无活动时长则作废。"""
        minutes = (
            timeout_minutes if timeout_minutes is not None else self._settings.session_inactivity_timeout_minutes
        )
        session = db.get(UserSession, session_id)
        if session is None:
            return SessionValidation(valid=False, reason="session_not_found")
        if as_utc(session.updated_at) < self._clock.now() - timedelta(minutes=minutes):
            self.invalidate(db, session_id)
            return SessionValidation(valid=False, session=session, reason="inactive")
        return SessionValidation(valid=True, session=session)

    def cleanup_expired(self, db: Session) -> int:
        """删除已过期或已作废的会话，仅由维护任务调用。"""
        result = db.execute(
            delete(UserSession)
            .where(or_(UserSession.expires_at <= self._clock.now(), UserSession.is_active.is_(False)))
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount or 0
