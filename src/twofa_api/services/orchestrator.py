"""认证编排。

状态流转：匿名 → 口令已验证（待验证码）→ 已认证。登录只完成第一步并触发验证码，
不签发任何令牌；验证码校验成功是进入已认证状态的唯一入口。
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from twofa_api.core.clock import Clock
from twofa_api.core.config import Settings
from twofa_api.models.enums import RateLimitAction, SecurityEventType, Severity
from twofa_api.models.session import UserSession
from twofa_api.models.user import User
from twofa_api.services.audit import AuditTrail
from twofa_api.services.credentials import CredentialStore, normalize_email
from twofa_api.services.mailer import MailTransport, redact_email, welcome_message
from twofa_api.services.otp import OtpEngine
from twofa_api.services.rate_limiter import RateLimiter
from twofa_api.services.results import ErrorKind, Outcome
from twofa_api.services.sessions import SessionRegistry
from twofa_api.services.tokens import RefreshResult, TokenService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientInfo:
    """请求来源信息，用于限流键、会话指纹与审计。"""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class SignInResult:
    user: User
    access_token: str
    refresh_token: str
    session: UserSession


@dataclass(frozen=True)
class AuthContext:
    user: User
    session: UserSession


@dataclass(frozen=True)
class MaintenanceReport:
    expired_codes: int
    expired_sessions: int
    expired_rate_limits: int
    old_audit_logs: int


class AuthOrchestrator:
    def __init__(
        self,
        *,
        settings: Settings,
        clock: Clock,
        credentials: CredentialStore,
        otp: OtpEngine,
        tokens: TokenService,
        sessions: SessionRegistry,
        rate_limiter: RateLimiter,
        audit: AuditTrail,
        mailer: MailTransport,
    ) -> None:
        self.settings = settings
        self.clock = clock
        self.credentials = credentials
        self.otp = otp
        self.tokens = tokens
        self.sessions = sessions
        self.rate_limiter = rate_limiter
        self.audit = audit
        self.mailer = mailer

    def _check_rate_limit(self, db: Session, identifier: str, action: RateLimitAction) -> Outcome[None]:
        rule = self.settings.rate_limit_rule(action)
        decision = self.rate_limiter.check(
            db,
            identifier,
            action,
            max_attempts=rule.max_attempts,
            window_minutes=rule.window_minutes,
        )
        if not decision.allowed:
            return Outcome.fail(ErrorKind.RATE_LIMITED, f"{action} rate limited", rate_limit=decision)
        return Outcome.success(None)

    def register(
        self,
        db: Session,
        *,
        email: str,
        password: str,
        name: str | None,
        client: ClientInfo,
    ) -> Outcome[User]:
        """注册本地账号，成功后尽力发送欢迎邮件。"""
        email = normalize_email(email)
        limited = self._check_rate_limit(db, client.ip_address or email, RateLimitAction.REGISTER)
        if not limited.ok:
            self.audit.write(
                db,
                "register_rate_limited",
                success=False,
                details={"email": email},
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            )
            return Outcome(failure=limited.failure)

        created = self.credentials.create(db, email, password, name)
        if not created.ok:
            self.audit.write(
                db,
                "register_failed",
                success=False,
                details={"email": email, "reason": created.failure.kind},
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            )
            return created

        user = created.unwrap()
        self.audit.write(
            db,
            "user_registered",
            success=True,
            user_id=user.id,
            details={"email": email},
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )

        subject, body = welcome_message(user.name)
        try:
            if not self.mailer.send(user.email, subject, body):
                logger.warning("welcome mail not delivered to=%s", redact_email(user.email))
        except Exception:
            logger.exception("welcome mail failed to=%s", redact_email(user.email))
        return created

    def login(self, db: Session, *, email: str, password: str, client: ClientInfo) -> Outcome[User]:
        """校验口令并发送验证码；成功时用户进入待验证码状态。"""
        email = normalize_email(email)
        limited = self._check_rate_limit(db, client.ip_address or email, RateLimitAction.LOGIN)
        if not limited.ok:
            self.audit.write(
                db,
                "login_rate_limited",
                success=False,
                details={"email": email},
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            )
            return Outcome(failure=limited.failure)

        try:
            return self._login_with_password(db, email=email, password=password, client=client)
        except Exception:
            db.rollback()
            logger.warning("login internal error email=%s", redact_email(email))
            self.audit.write(
                db,
                "login_internal_error",
                success=False,
                details={"email": email},
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            )
            raise

    def _login_with_password(self, db: Session, *, email: str, password: str, client: ClientInfo) -> Outcome[User]:
        user = self.credentials.find_by_email(db, email)
        if user is None or not self.credentials.verify_password(password, user.password_hash):
            self.audit.write(
                db,
                "login_failed",
                success=False,
                user_id=user.id if user else None,
                details={"email": email, "reason": "user_not_found" if user is None else "invalid_password"},
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            )
            return Outcome.fail(ErrorKind.INVALID_CREDENTIALS, "invalid email or password")

        self.audit.write(
            db,
            "login_password_verified",
            success=True,
            user_id=user.id,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )

        sent = self.otp.send_code(db, user.id, user.email, client.ip_address)
        if not sent.ok:
            return Outcome(failure=sent.failure)
        return Outcome.success(user)

    def verify_two_factor(self, db: Session, *, email: str, code: str, client: ClientInfo) -> Outcome[SignInResult]:
        """校验验证码，成功后签发令牌并建立会话。"""
        verified = self.otp.verify_code(db, email, code, client.ip_address)
        if not verified.ok:
            return Outcome(failure=verified.failure)

        user = self.credentials.find_by_id(db, verified.unwrap())
        if user is None:
            return Outcome.fail(ErrorKind.NOT_FOUND, "user not found")

        concurrent = self.sessions.check_concurrent_session_limit(db, user.id)
        if not concurrent.allowed:
            self.audit.security_event(
                db,
                SecurityEventType.CONCURRENT_SESSIONS,
                Severity.MEDIUM,
                user_id=user.id,
                details={"active_count": concurrent.active_count},
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            )

        access_token = self.tokens.issue_access_token(user)
        refresh_token = self.tokens.issue_refresh_token(user)
        session = self.sessions.create(
            db,
            user_id=user.id,
            access_token=access_token,
            refresh_token=refresh_token,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        self.audit.write(
            db,
            "login_success",
            success=True,
            user_id=user.id,
            details={"session_id": str(session.id)},
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        return Outcome.success(
            SignInResult(user=user, access_token=access_token, refresh_token=refresh_token, session=session)
        )

    def refresh(self, db: Session, *, refresh_token: str | None, client: ClientInfo) -> Outcome[RefreshResult]:
        """用刷新令牌轮换访问令牌，失败后客户端需重新登录。"""
        if not refresh_token:
            return Outcome.fail(ErrorKind.UNAUTHORIZED, "missing refresh token")

        limited = self._check_rate_limit(db, client.ip_address or "unknown", RateLimitAction.TOKEN_REFRESH)
        if not limited.ok:
            self.audit.security_event(
                db,
                SecurityEventType.RATE_LIMIT_EXCEEDED,
                Severity.MEDIUM,
                details={"action": str(RateLimitAction.TOKEN_REFRESH)},
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            )
            return Outcome(failure=limited.failure)

        result = self.tokens.refresh_access_token(db, refresh_token, sessions=self.sessions)
        if result is None:
            self.audit.security_event(
                db,
                SecurityEventType.INVALID_TOKEN,
                Severity.MEDIUM,
                details={"token_type": "refresh", "reason": "refresh_failed"},
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            )
            return Outcome.fail(ErrorKind.UNAUTHORIZED, "invalid refresh token")

        self.audit.write(
            db,
            "token_refreshed",
            success=True,
            user_id=result.user.id,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        return Outcome.success(result)

    def logout(self, db: Session, *, access_token: str | None, client: ClientInfo) -> None:
        """作废当前会话；重复登出或未知令牌不视为错误。"""
        if not access_token:
            return
        invalidated = self.sessions.invalidate_by_token(db, access_token)
        if invalidated:
            claims = self.tokens.verify_access_token(access_token)
            self.audit.write(
                db,
                "logout",
                success=True,
                user_id=UUID(claims.user_id) if claims else None,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            )

    def authenticate(self, db: Session, *, access_token: str | None, client: ClientInfo) -> Outcome[AuthContext]:
        """受保护接口使用的完整校验：签名、会话状态与来源指纹。"""
        if not access_token:
            return Outcome.fail(ErrorKind.UNAUTHORIZED, "missing access token")
        validation = self.sessions.validate(
            db,
            access_token,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        if not validation.valid or validation.session is None:
            return Outcome.fail(ErrorKind.UNAUTHORIZED, validation.reason)
        user = self.credentials.find_by_id(db, validation.session.user_id)
        if user is None:
            return Outcome.fail(ErrorKind.NOT_FOUND, "user not found")
        return Outcome.success(AuthContext(user=user, session=validation.session))

    def resend_code(self, db: Session, *, user: User, client: ClientInfo) -> Outcome[UUID]:
        return self.otp.send_code(db, user.id, user.email, client.ip_address)

    def change_password(
        self,
        db: Session,
        *,
        user: User,
        current_password: str,
        new_password: str,
        client: ClientInfo,
    ) -> Outcome[User]:
        """校验当前口令后修改，并作废全部会话。"""
        if not self.credentials.verify_password(current_password, user.password_hash):
            self.audit.write(
                db,
                "password_change_failed",
                success=False,
                user_id=user.id,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            )
            return Outcome.fail(ErrorKind.INVALID_CREDENTIALS, "current password mismatch")

        changed = self.credentials.change_password(db, user.id, new_password)
        if changed.ok:
            self.audit.write(
                db,
                "password_changed",
                success=True,
                user_id=user.id,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            )
        return changed

    def list_sessions(self, db: Session, *, user: User) -> list[UserSession]:
        return self.sessions.list_active(db, user.id)

    def revoke_session(self, db: Session, *, user: User, session_id: UUID, client: ClientInfo) -> Outcome[None]:
        """作废当前用户名下的指定会话。"""
        owned = {session.id for session in self.sessions.list_active(db, user.id)}
        if session_id not in owned:
            return Outcome.fail(ErrorKind.NOT_FOUND, "session not found")
        self.sessions.invalidate(db, session_id)
        self.audit.write(
            db,
            "session_revoked",
            success=True,
            user_id=user.id,
            details={"session_id": str(session_id)},
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        return Outcome.success(None)

    def perform_maintenance(self, db: Session, *, client: ClientInfo | None = None) -> MaintenanceReport:
        """清理过期验证码、会话、限流计数与超期审计日志。"""
        report = MaintenanceReport(
            expired_codes=self.otp.cleanup_expired(db),
            expired_sessions=self.sessions.cleanup_expired(db),
            expired_rate_limits=self.rate_limiter.cleanup_expired(db),
            old_audit_logs=self.audit.cleanup_old_logs(db, retention_days=self.settings.audit_retention_days),
        )
        logger.info(
            "maintenance done codes=%s sessions=%s rate_limits=%s audit_logs=%s",
            report.expired_codes,
            report.expired_sessions,
            report.expired_rate_limits,
            report.old_audit_logs,
        )
        self.audit.write(
            db,
            "maintenance_performed",
            success=True,
            details={
                "expired_codes": report.expired_codes,
                "expired_sessions": report.expired_sessions,
                "expired_rate_limits": report.expired_rate_limits,
                "old_audit_logs": report.old_audit_logs,
            },
            ip_address=client.ip_address if client else None,
            user_agent=client.user_agent if client else None,
        )
        return report

    def update_profile(self, db: Session, *, user: User, name: str | None) -> Outcome[User]:
        return self.credentials.update_profile(db, user.id, name=name)
