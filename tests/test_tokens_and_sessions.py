from sqlalchemy import select
from sqlalchemy.orm import Session

from twofa_api.models.audit import AuditLog
from twofa_api.models.session import UserSession
from twofa_api.services.orchestrator import ClientInfo
from twofa_api.services.tokens import TokenService

IP = "198.51.100.7"
UA = "Mozilla/5.0 (X11; Linux x86_64) TestBrowser/1.0"


def _user(orchestrator, db: Session, email: str = "sess@example.com"):
    return orchestrator.credentials.create(db, email, "Abcd1234", "Sess User").unwrap()


def _open_session(orchestrator, db: Session, user, *, ip: str = IP, ua: str = UA):
    access = orchestrator.tokens.issue_access_token(user)
    refresh = orchestrator.tokens.issue_refresh_token(user)
    session = orchestrator.sessions.create(
        db,
        user_id=user.id,
        access_token=access,
        refresh_token=refresh,
        ip_address=ip,
        user_agent=ua,
    )
    return session, access, refresh


def _security_actions(db: Session) -> list[AuditLog]:
    return list(
        db.execute(select(AuditLog).where(AuditLog.action.like("security_%")).order_by(AuditLog.created_at))
        .scalars()
        .all()
    )


def test_access_and_refresh_tokens_carry_claims_and_use_distinct_secrets(orchestrator, db: Session):
    user = _user(orchestrator, db)
    tokens = orchestrator.tokens
    access = tokens.issue_access_token(user)
    refresh = tokens.issue_refresh_token(user)

    claims = tokens.verify_access_token(access)

    assert claims.user_id == str(user.id)
    assert claims.email == user.email
    assert claims.name == "Sess User"
    assert tokens.verify_refresh_token(refresh).user_id == str(user.id)
    assert tokens.verify(access, tokens.refresh_secret) is None
    assert tokens.verify(refresh, tokens.access_secret) is None
    assert tokens.verify_access_token("garbage") is None


def test_tokens_for_another_audience_are_rejected(orchestrator, db: Session, settings, clock):
    user = _user(orchestrator, db)
    foreign = TokenService(settings.model_copy(update={"auth_jwt_audience": "another-app"}), clock)

    assert orchestrator.tokens.verify_access_token(foreign.issue_access_token(user)) is None


def test_expiry_follows_injected_clock(orchestrator, db: Session, clock):
    user = _user(orchestrator, db)
    access = orchestrator.tokens.issue_access_token(user)
    refresh = orchestrator.tokens.issue_refresh_token(user)

    clock.advance(minutes=14, seconds=59)
    assert orchestrator.tokens.verify_access_token(access) is not None
    clock.advance(seconds=1)
    assert orchestrator.tokens.verify_access_token(access) is None
    assert orchestrator.tokens.verify_refresh_token(refresh) is not None


def test_session_stores_hashed_ip_and_truncated_user_agent(orchestrator, db: Session):
    user = _user(orchestrator, db)

    session, _, _ = _open_session(orchestrator, db, user, ua="x" * 600)

    assert session.ip_address != IP
    assert len(session.ip_address) == 16
    assert len(session.user_agent) == 500
    assert session.is_active


def test_validate_bumps_heartbeat(orchestrator, db: Session, clock):
    user = _user(orchestrator, db)
    session, access, _ = _open_session(orchestrator, db, user)
    clock.advance(minutes=3)

    result = orchestrator.sessions.validate(db, access, ip_address=IP, user_agent=UA)

    assert result.valid
    assert result.session.id == session.id
    assert result.session.updated_at == clock.now()
    assert _security_actions(db) == []


def test_refresh_rotates_access_token_in_place(orchestrator, db: Session, clock):
    user = _user(orchestrator, db)
    session, old_access, refresh = _open_session(orchestrator, db, user)
    clock.advance(minutes=16)

    result = orchestrator.tokens.refresh_access_token(db, refresh, sessions=orchestrator.sessions)

    assert result is not None
    assert result.user.id == user.id
    assert orchestrator.tokens.verify_access_token(result.access_token).user_id == str(user.id)
    assert not orchestrator.sessions.validate(db, old_access).valid
    assert orchestrator.sessions.validate(db, result.access_token).valid
    rows = db.execute(select(UserSession).where(UserSession.user_id == user.id)).scalars().all()
    assert [row.id for row in rows] == [session.id]


def test_refresh_rejects_inactive_session_and_foreign_subject(orchestrator, db: Session):
    user = _user(orchestrator, db)
    other = _user(orchestrator, db, email="other@example.com")
    session, access, refresh = _open_session(orchestrator, db, user)

    # 签名正确但主体属于其他用户的刷新令牌。
    forged = orchestrator.tokens.issue_refresh_token(other)
    session.refresh_token = forged
    db.commit()
    assert orchestrator.tokens.refresh_access_token(db, forged, sessions=orchestrator.sessions) is None

    session.refresh_token = refresh
    db.commit()
    orchestrator.sessions.invalidate(db, session.id)
    assert orchestrator.tokens.refresh_access_token(db, refresh, sessions=orchestrator.sessions) is None


def test_expired_session_cannot_refresh(orchestrator, db: Session, clock):
    user = _user(orchestrator, db)
    _, _, refresh = _open_session(orchestrator, db, user)
    clock.advance(days=7, seconds=1)

    assert orchestrator.tokens.refresh_access_token(db, refresh, sessions=orchestrator.sessions) is None


def test_ip_drift_is_logged_but_not_fatal_by_default(orchestrator, db: Session):
    user = _user(orchestrator, db)
    _, access, _ = _open_session(orchestrator, db, user)

    result = orchestrator.sessions.validate(db, access, ip_address="192.0.2.99", user_agent=UA)

    assert result.valid
    events = _security_actions(db)
    assert [event.action for event in events] == ["security_suspicious_activity"]
    assert events[0].details["severity"] == "low"
    assert events[0].details["reason"] == "ip_address_changed"


def test_user_agent_drift_is_medium_and_strict_mode_invalidates(orchestrator, db: Session, settings):
    user = _user(orchestrator, db)
    _, access, _ = _open_session(orchestrator, db, user)

    lenient = orchestrator.sessions.validate(db, access, ip_address=IP, user_agent="curl/8.0")
    settings.session_strict_user_agent = True
    strict = orchestrator.sessions.validate(db, access, ip_address=IP, user_agent="curl/8.0")

    assert lenient.valid
    assert not strict.valid
    assert strict.reason == "user_agent_changed"
    assert [event.details["severity"] for event in _security_actions(db)] == ["medium", "medium"]
    assert not orchestrator.sessions.validate(db, access, ip_address=IP, user_agent=UA).valid


def test_user_agent_compared_on_prefix_only(orchestrator, db: Session):
    user = _user(orchestrator, db)
    long_ua = "A" * 100
    _, access, _ = _open_session(orchestrator, db, user, ua=long_ua + "-build-1")

    assert orchestrator.sessions.validate(db, access, ip_address=IP, user_agent=long_ua + "-build-2").valid
    assert _security_actions(db) == []


def test_user_mismatch_deactivates_session(orchestrator, db: Session):
    user = _user(orchestrator, db)
    other = _user(orchestrator, db, email="intruder@example.com")
    session, _, _ = _open_session(orchestrator, db, user)
    foreign_access = orchestrator.tokens.issue_access_token(other)
    session.token = foreign_access
    db.commit()

    result = orchestrator.sessions.validate(db, foreign_access, ip_address=IP, user_agent=UA)

    assert not result.valid
    assert result.reason == "user_mismatch"
    db.refresh(session)
    assert session.is_active is False


def test_invalidate_by_token_is_idempotent(orchestrator, db: Session):
    user = _user(orchestrator, db)
    _, access, _ = _open_session(orchestrator, db, user)

    assert orchestrator.sessions.invalidate_by_token(db, access) is True
    assert orchestrator.sessions.invalidate_by_token(db, access) is False
    assert orchestrator.sessions.invalidate_by_token(db, "unknown-token") is False
    assert not orchestrator.sessions.validate(db, access).valid


def test_password_change_invalidates_every_session(orchestrator, db: Session):
    user = _user(orchestrator, db)
    _, first, _ = _open_session(orchestrator, db, user)
    _, second, _ = _open_session(orchestrator, db, user)

    changed = orchestrator.credentials.change_password(db, user.id, "Newpass123")

    assert changed.ok
    assert not orchestrator.sessions.validate(db, first).valid
    assert not orchestrator.sessions.validate(db, second).valid
    assert orchestrator.credentials.verify_password("Newpass123", changed.unwrap().password_hash)


def test_list_active_is_newest_first_and_limit_is_advisory(orchestrator, db: Session, clock):
    user = _user(orchestrator, db)
    created = []
    for _ in range(3):
        session, _, _ = _open_session(orchestrator, db, user)
        created.append(session.id)
        clock.advance(minutes=1)
    orchestrator.sessions.invalidate(db, created[0])

    listed = orchestrator.sessions.list_active(db, user.id)
    check = orchestrator.sessions.check_concurrent_session_limit(db, user.id, max_sessions=2)

    assert [item.id for item in listed] == [created[2], created[1]]
    assert check.active_count == 2
    assert check.allowed is False
    assert orchestrator.sessions.check_concurrent_session_limit(db, user.id).allowed is True


def test_inactivity_timeout_invalidates_idle_session(orchestrator, db: Session, clock):
    user = _user(orchestrator, db)
    session, access, _ = _open_session(orchestrator, db, user)

    clock.advance(minutes=30)
    assert orchestrator.sessions.check_inactivity_timeout(db, session.id).valid
    clock.advance(minutes=31)
    result = orchestrator.sessions.check_inactivity_timeout(db, session.id)

    assert not result.valid
    assert result.reason == "inactive"
    assert orchestrator.sessions.list_active(db, user.id) == []


def test_authenticate_enforces_inactivity_when_enabled(orchestrator, db: Session, clock, settings):
    settings.session_enforce_inactivity = True
    settings.session_inactivity_timeout_minutes = 5
    user = _user(orchestrator, db)
    session, access, _ = _open_session(orchestrator, db, user)
    client = ClientInfo()

    clock.advance(minutes=4)
    assert orchestrator.authenticate(db, access_token=access, client=client).ok
    # 上一次校验刷新了心跳，空闲时长重新计算。
    clock.advance(minutes=4)
    assert orchestrator.authenticate(db, access_token=access, client=client).ok
    clock.advance(minutes=6)
    outcome = orchestrator.authenticate(db, access_token=access, client=client)

    assert outcome.failure.reason == "inactive"
    assert orchestrator.sessions.list_active(db, user.id) == []


def test_cleanup_removes_expired_and_inactive_sessions(orchestrator, db: Session, clock):
    user = _user(orchestrator, db)
    inactive, _, _ = _open_session(orchestrator, db, user)
    orchestrator.sessions.invalidate(db, inactive.id)
    _open_session(orchestrator, db, user)
    clock.advance(days=6)
    live, _, _ = _open_session(orchestrator, db, user)
    clock.advance(days=1, seconds=1)

    removed = orchestrator.sessions.cleanup_expired(db)

    assert removed == 2
    remaining = db.execute(select(UserSession.id)).scalars().all()
    assert remaining == [live.id]
