from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from twofa_api.models.rate_limit import RateLimitCounter


def _check(orchestrator, db: Session, identifier: str = "10.0.0.1", action: str = "login"):
    return orchestrator.rate_limiter.check(db, identifier, action, max_attempts=3, window_minutes=15)


def test_fixed_window_counts_and_blocks(orchestrator, db: Session, clock):
    decisions = [_check(orchestrator, db) for _ in range(4)]

    assert [d.attempts for d in decisions] == [1, 2, 3, 4]
    assert [d.allowed for d in decisions] == [True, True, True, False]
    assert decisions[0].remaining == 2
    assert decisions[3].remaining == 0
    assert decisions[3].retry_after_seconds == 15 * 60
    assert decisions[3].reset_at == clock.now() + timedelta(minutes=15)


def test_window_is_not_renewed_by_later_attempts(orchestrator, db: Session, clock):
    first = _check(orchestrator, db)
    clock.advance(minutes=10)
    later = _check(orchestrator, db)

    assert later.reset_at == first.reset_at
    assert later.retry_after_seconds == 5 * 60


def test_new_window_starts_after_reset_time(orchestrator, db: Session, clock):
    for _ in range(4):
        _check(orchestrator, db)
    clock.advance(minutes=15)

    decision = _check(orchestrator, db)

    assert decision.allowed
    assert decision.attempts == 1


def test_counters_are_isolated_per_identifier_and_action(orchestrator, db: Session):
    for _ in range(4):
        _check(orchestrator, db)

    assert _check(orchestrator, db, identifier="10.0.0.2").allowed
    assert _check(orchestrator, db, action="register").allowed


def test_reset_forgives_prior_attempts(orchestrator, db: Session):
    for _ in range(4):
        _check(orchestrator, db)

    orchestrator.rate_limiter.reset(db, "10.0.0.1", "login")

    assert _check(orchestrator, db).attempts == 1


def test_cleanup_removes_only_stale_counters(orchestrator, db: Session, clock):
    _check(orchestrator, db, identifier="old")
    clock.advance(minutes=20)
    _check(orchestrator, db, identifier="fresh")

    removed = orchestrator.rate_limiter.cleanup_expired(db)

    assert removed == 1
    remaining = db.execute(select(RateLimitCounter.identifier)).scalars().all()
    assert remaining == ["fresh"]
