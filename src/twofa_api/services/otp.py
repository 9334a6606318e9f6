"""邮箱验证码引擎。

单个用户同一时刻至多一条有效验证码：发送前删除旧码。每次校验先累加尝试次数再比对，
成功或尝试耗尽都会删除验证码，暴力猜测上限即单码最大尝试次数。
"""

import hmac
import logging
import math
import secrets
from datetime import timedelta
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from twofa_api.core.clock import Clock, as_utc
from twofa_api.core.config import Settings
from twofa_api.models.enums import RateLimitAction
from twofa_api.models.otp import OtpCode
from twofa_api.models.user import User
from twofa_api.services.audit import AuditTrail
from twofa_api.services.credentials import normalize_email
from twofa_api.services.mailer import MailTransport, otp_message
from twofa_api.services.rate_limiter import RateLimiter
from twofa_api.services.results import ErrorKind, Outcome

logger = logging.getLogger(__name__)


def generate_code() -> str:
    """生成 [100000, 999999] 区间内均匀分布的 6 位数字验证码。"""
    return str(100000 + secrets.randbelow(900000))


class OtpEngine:
    """验证码的发送、校验与清理。"""

    def __init__(
        self,
        settings: Settings,
        clock: Clock,
        mailer: MailTransport,
        rate_limiter: RateLimiter,
        audit: AuditTrail,
    ) -> None:
        self._settings = settings
        self._clock = clock
        self._mailer = mailer
        self._rate_limiter = rate_limiter
        self._audit = audit

    def send_code(self, db: Session, user_id: UUID, email: str, ip_address: str | None) -> Outcome[UUID]:
        """签发新验证码并投递到用户邮箱，成功返回验证码记录 ID。"""
        identifier = ip_address or str(user_id)
        rule = self._settings.rate_limit_rule(RateLimitAction.TWOFA_SEND)
        decision = self._rate_limiter.check(
            db,
            identifier,
            RateLimitAction.TWOFA_SEND,
            max_attempts=rule.max_attempts,
            window_minutes=rule.window_minutes,
        )
        if not decision.allowed:
            self._audit.write(
                db,
                "2fa_send_rate_limited",
                success=False,
                user_id=user_id,
                details={"attempts": decision.attempts},
                ip_address=ip_address,
            )
            return Outcome.fail(ErrorKind.RATE_LIMITED, "too many code requests", rate_limit=decision)

        now = self._clock.now()
        db.execute(delete(OtpCode).where(OtpCode.user_id == user_id))
        otp = OtpCode(
            user_id=user_id,
            code=generate_code(),
            expires_at=now + timedelta(minutes=self._settings.otp_ttl_minutes),
            attempts=0,
            created_at=now,
        )
        db.add(otp)
        db.commit()

        subject, body = otp_message(otp.code, ttl_minutes=self._settings.otp_ttl_minutes)
        try:
            delivered = self._mailer.send(email, subject, body)
        except Exception:
            logger.exception("mail transport raised user_id=%s", user_id)
            delivered = False

        if not delivered:
            # 投递失败时删除刚写入的验证码，不留下无法送达的有效码。
            db.delete(otp)
            db.commit()
            self._audit.write(db, "2fa_send_failed", success=False, user_id=user_id, ip_address=ip_address)
            return Outcome.fail(ErrorKind.DELIVERY_FAILED, "mail delivery failed")

        self._audit.write(
            db,
            "2fa_code_sent",
            success=True,
            user_id=user_id,
            details={"code_id": str(otp.id)},
            ip_address=ip_address,
        )
        return Outcome.success(otp.id)

    def verify_code(self, db: Session, email: str, submitted_code: str, ip_address: str | None) -> Outcome[UUID]:
        """校验验证码，成功返回用户 ID。"""
        user = db.execute(select(User).where(User.email == normalize_email(email))).scalar_one_or_none()
        identifier = ip_address or (str(user.id) if user else normalize_email(email))

        rule = self._settings.rate_limit_rule(RateLimitAction.TWOFA_VERIFY)
        decision = self._rate_limiter.check(
            db,
            identifier,
            RateLimitAction.TWOFA_VERIFY,
            max_attempts=rule.max_attempts,
            window_minutes=rule.window_minutes,
        )
        if not decision.allowed:
            self._audit.write(
                db,
                "2fa_verify_rate_limited",
                success=False,
                user_id=user.id if user else None,
                ip_address=ip_address,
            )
            return Outcome.fail(ErrorKind.RATE_LIMITED, "too many verification attempts", rate_limit=decision)

        if user is None:
            self._audit.write(
                db,
                "2fa_verify_user_not_found",
                success=False,
                details={"email": normalize_email(email)},
                ip_address=ip_address,
            )
            return Outcome.fail(ErrorKind.NOT_FOUND, "user not found")

        # 并发发送可能短暂留下两条码，取最新的一条。
        otp = db.execute(
            select(OtpCode)
            .where(OtpCode.user_id == user.id)
            .where(OtpCode.expires_at > self._clock.now())
            .order_by(OtpCode.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        if otp is None:
            self._audit.write(db, "2fa_verify_expired", success=False, user_id=user.id, ip_address=ip_address)
            return Outcome.fail(ErrorKind.CODE_EXPIRED, "no active code")

        max_attempts = self._settings.otp_max_attempts
        otp_id = otp.id
        expected_code = otp.code

        # 计数在库内原子累加，并发校验不会丢失尝试次数。
        counted = db.execute(
            update(OtpCode)
            .where(OtpCode.id == otp_id, OtpCode.attempts < max_attempts)
            .values(attempts=OtpCode.attempts + 1)
            .execution_options(synchronize_session=False)
        )
        if not counted.rowcount:
            db.execute(delete(OtpCode).where(OtpCode.id == otp_id).execution_options(synchronize_session=False))
            db.commit()
            self._audit.write(
                db, "2fa_verify_max_attempts", success=False, user_id=user.id, ip_address=ip_address
            )
            return Outcome.fail(ErrorKind.MAX_ATTEMPTS_EXCEEDED, "code exhausted")
        db.commit()

        if not hmac.compare_digest(expected_code.encode("utf-8"), submitted_code.encode("utf-8")):
            attempts = db.execute(select(OtpCode.attempts).where(OtpCode.id == otp_id)).scalar_one_or_none()
            attempts = max_attempts if attempts is None else attempts
            remaining = max(max_attempts - attempts, 0)
            self._audit.write(
                db,
                "2fa_verify_invalid_code",
                success=False,
                user_id=user.id,
                details={"attempts": attempts, "remaining": remaining},
                ip_address=ip_address,
            )
            return Outcome.fail(ErrorKind.INVALID_CODE, f"remaining attempts: {remaining}")

        db.execute(delete(OtpCode).where(OtpCode.id == otp_id).execution_options(synchronize_session=False))
        db.commit()
        self._rate_limiter.reset(db, identifier, RateLimitAction.TWOFA_VERIFY)
        self._audit.write(db, "2fa_verify_success", success=True, user_id=user.id, ip_address=ip_address)
        return Outcome.success(user.id)

    def code_time_remaining(self, db: Session, user_id: UUID) -> int:
        """当前有效验证码的剩余秒数，没有有效码时为 0。"""
        now = self._clock.now()
        otp = db.execute(
            select(OtpCode)
            .where(OtpCode.user_id == user_id)
            .where(OtpCode.expires_at > now)
            .order_by(OtpCode.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        if otp is None:
            return 0
        return max(0, math.ceil((as_utc(otp.expires_at) - now).total_seconds()))

    def cleanup_expired(self, db: Session) -> int:
        result = db.execute(
            delete(OtpCode)
            .where(OtpCode.expires_at <= self._clock.now())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount or 0
