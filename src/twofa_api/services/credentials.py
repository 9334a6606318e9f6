"""本地账号凭据存储。"""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from twofa_api.core.clock import Clock
from twofa_api.core.config import Settings
from twofa_api.core.security import hash_password, verify_password
from twofa_api.models.user import User
from twofa_api.services.results import ErrorKind, Outcome
from twofa_api.services.sessions import SessionRegistry

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    """统一邮箱格式，避免大小写和首尾空白导致的身份分裂。"""
    return email.strip().lower()


class CredentialStore:
    def __init__(self, settings: Settings, clock: Clock, sessions: SessionRegistry) -> None:
        self._settings = settings
        self._clock = clock
        self._sessions = sessions

    def find_by_email(self, db: Session, email: str) -> User | None:
        return db.execute(select(User).where(User.email == normalize_email(email))).scalar_one_or_none()

    def find_by_id(self, db: Session, user_id: UUID) -> User | None:
        return db.get(User, user_id)

    def create(self, db: Session, email: str, password: str, name: str | None = None) -> Outcome[User]:
        """创建账号，邮箱已存在时返回冲突。"""
        normalized = normalize_email(email)
        if self.find_by_email(db, normalized) is not None:
            return Outcome.fail(ErrorKind.CONFLICT, "email already registered")

        now = self._clock.now()
        user = User(
            email=normalized,
            password_hash=hash_password(password, iterations=self._settings.auth_password_hash_iterations),
            name=name.strip() if name else None,
            created_at=now,
            updated_at=now,
        )
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            # 并发注册同一邮箱时由唯一约束兜底。
            db.rollback()
            return Outcome.fail(ErrorKind.CONFLICT, "email already registered")
        logger.info("user created user_id=%s", user.id)
        return Outcome.success(user)

    def verify_password(self, plain: str, password_hash: str) -> bool:
        return verify_password(plain, password_hash)

    def change_password(self, db: Session, user_id: UUID, new_password: str) -> Outcome[User]:
        """修改口令并作废该用户全部会话。"""
        user = self.find_by_id(db, user_id)
        if user is None:
            return Outcome.fail(ErrorKind.NOT_FOUND, "user not found")
        user.password_hash = hash_password(new_password, iterations=self._settings.auth_password_hash_iterations)
        user.updated_at = self._clock.now()
        db.commit()
        self._sessions.invalidate_all_for_user(db, user_id)
        return Outcome.success(user)

    def update_profile(self, db: Session, user_id: UUID, *, name: str | None) -> Outcome[User]:
        user = self.find_by_id(db, user_id)
        if user is None:
            return Outcome.fail(ErrorKind.NOT_FOUND, "user not found")
        user.name = name.strip() if name else None
        user.updated_at = self._clock.now()
        db.commit()
        return Outcome.success(user)
