"""固定窗口限流器。

计数以 (identifier, action) 为键落库，依赖数据库的原子 upsert 保证并发下不丢计数。
窗口不会因后续尝试而续期：reset_time 过后的下一次尝试开启新窗口，因此跨窗口边界
最多可能出现 2 倍阈值的突发，这是固定窗口的已知特性。
"""

import logging
import math
from datetime import timedelta
from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from twofa_api.core.clock import Clock, as_utc
from twofa_api.models.rate_limit import RateLimitCounter
from twofa_api.services.results import RateLimitDecision

logger = logging.getLogger(__name__)


def _dialect_insert(db: Session):
    """按当前连接方言选择支持 ON CONFLICT 的 insert 构造。"""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise RuntimeError(f"rate limiter does not support dialect {dialect!r}")


class RateLimiter:
    """各认证动作共享的限流计数器。"""

    def __init__(self, clock: Clock) -> None:
        self._clock = clock

    def check(
        self,
        db: Session,
        identifier: str,
        action: str,
        *,
        max_attempts: int,
        window_minutes: int,
    ) -> RateLimitDecision:
        """记录一次尝试并返回是否放行。"""
        action = str(action)
        now = self._clock.now()

        # 先清理该键已过期的窗口，保证过期后的首次尝试从 1 开始计数。
        db.execute(
            delete(RateLimitCounter)
            .where(RateLimitCounter.identifier == identifier)
            .where(RateLimitCounter.action == action)
            .where(RateLimitCounter.reset_time <= now)
            .execution_options(synchronize_session=False)
        )

        insert = _dialect_insert(db)
        stmt = insert(RateLimitCounter).values(
            id=uuid4(),
            identifier=identifier,
            action=action,
            attempts=1,
            reset_time=now + timedelta(minutes=window_minutes),
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[RateLimitCounter.identifier, RateLimitCounter.action],
            set_={"attempts": RateLimitCounter.attempts + 1, "updated_at": now},
        )
        db.execute(stmt)

        counter = db.execute(
            select(RateLimitCounter)
            .where(RateLimitCounter.identifier == identifier)
            .where(RateLimitCounter.action == action)
            .execution_options(populate_existing=True)
        ).scalar_one()
        db.commit()

        reset_at = as_utc(counter.reset_time)
        retry_after = max(1, math.ceil((reset_at - now).total_seconds()))
        decision = RateLimitDecision(
            allowed=counter.attempts <= max_attempts,
            attempts=counter.attempts,
            limit=max_attempts,
            reset_at=reset_at,
            retry_after_seconds=retry_after,
        )
        if not decision.allowed:
            logger.info("rate limit exceeded action=%s attempts=%s", action, counter.attempts)
        return decision

    def reset(self, db: Session, identifier: str, action: str) -> None:
        """删除计数，用于成功完成敏感操作后免除此前的失败尝试。"""
        action = str(action)
        db.execute(
            delete(RateLimitCounter)
            .where(RateLimitCounter.identifier == identifier)
            .where(RateLimitCounter.action == action)
        )
        db.commit()

    def cleanup_expired(self, db: Session) -> int:
        """删除所有已过窗口的计数，返回删除条数。"""
        result = db.execute(
            delete(RateLimitCounter)
            .where(RateLimitCounter.reset_time <= self._clock.now())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount or 0
