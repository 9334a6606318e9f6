import uuid
from datetime import timedelta

import jwt
from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import register, sign_in
from twofa_api.models.audit import AuditLog
from twofa_api.models.otp import OtpCode


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_gatekeeper_blocks_missing_and_malformed_tokens(client, settings, clock):
    missing = client.get("/api/security/sessions")
    garbage = client.get("/api/security/sessions", headers=_bearer("not-a-token"))
    expired = jwt.encode(
        {
            "userId": str(uuid.uuid4()),
            "email": "x@example.com",
            "iss": settings.auth_jwt_issuer,
            "aud": settings.auth_jwt_audience,
            "iat": int((clock.now() - timedelta(hours=1)).timestamp()),
            "exp": int((clock.now() - timedelta(minutes=1)).timestamp()),
        },
        settings.auth_jwt_access_secret,
        algorithm="HS256",
    )

    assert missing.status_code == 401
    assert missing.json()["details"]["reason"] == "token_precheck_failed"
    assert garbage.status_code == 401
    assert client.get("/api/auth/me", headers=_bearer(expired)).status_code == 401


def test_well_formed_but_unsigned_token_passes_gatekeeper_and_fails_full_check(client, settings, clock):
    forged = jwt.encode(
        {
            "userId": str(uuid.uuid4()),
            "email": "x@example.com",
            "iss": settings.auth_jwt_issuer,
            "aud": settings.auth_jwt_audience,
            "iat": int(clock.now().timestamp()),
            "exp": int((clock.now() + timedelta(minutes=5)).timestamp()),
        },
        "attacker-secret",
        algorithm="HS256",
    )

    resp = client.get("/api/auth/me", headers=_bearer(forged))

    assert resp.status_code == 401
    assert resp.json()["details"]["reason"] == "unauthorized"


def test_list_sessions_masks_fingerprints(client, mailer):
    register(client, "list@example.com")
    first = sign_in(client, mailer, "list@example.com")
    second = sign_in(client, mailer, "list@example.com")
    client.cookies.clear()

    resp = client.get("/api/security/sessions", headers=_bearer(second.access_token))

    assert resp.status_code == 200
    sessions = resp.json()["data"]["sessions"]
    assert len(sessions) == 2
    assert [item["isCurrent"] for item in sessions].count(True) == 1
    current = next(item for item in sessions if item["isCurrent"])
    assert current["ipAddress"].endswith("...")
    assert len(current["ipAddress"]) == 11
    assert current["userAgent"] == "testclient"
    assert first.access_token != second.access_token


def test_revoke_session_only_within_own_sessions(client, mailer):
    register(client, "own@example.com")
    mine = sign_in(client, mailer, "own@example.com")
    register(client, "theirs@example.com")
    theirs = sign_in(client, mailer, "theirs@example.com")
    client.cookies.clear()

    their_sessions = client.get("/api/security/sessions", headers=_bearer(theirs.access_token)).json()["data"]
    their_session_id = their_sessions["sessions"][0]["id"]

    foreign = client.request(
        "DELETE",
        "/api/security/sessions",
        headers=_bearer(mine.access_token),
        json={"sessionId": their_session_id},
    )
    assert foreign.status_code == 404

    own = client.request(
        "DELETE",
        "/api/security/sessions",
        headers=_bearer(theirs.access_token),
        json={"sessionId": their_session_id},
    )
    assert own.status_code == 200
    assert own.json()["data"]["sessionId"] == their_session_id
    assert client.get("/api/auth/me", headers=_bearer(theirs.access_token)).status_code == 401
    assert client.get("/api/auth/me", headers=_bearer(mine.access_token)).status_code == 200


def test_maintenance_cleans_stale_rows(client, mailer, clock, db: Session):
    register(client, "maint@example.com")
    client.post("/api/auth/login", json={"email": "maint@example.com", "password": "Abcd1234"})
    clock.advance(days=91)

    resp = client.post("/api/maintenance")

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["expiredCodes"] == 1
    assert data["expiredRateLimits"] >= 2
    assert data["oldAuditLogs"] >= 3
    assert db.execute(select(OtpCode)).scalars().all() == []
    actions = db.execute(select(AuditLog.action)).scalars().all()
    assert actions == ["maintenance_performed"]


def test_maintenance_token_is_enforced_when_configured(client, settings):
    settings.maintenance_token = "s3cret"

    assert client.post("/api/maintenance").status_code == 401
    assert client.post("/api/maintenance", headers={"X-Maintenance-Token": "wrong"}).status_code == 401
    assert client.post("/api/maintenance", headers={"X-Maintenance-Token": "s3cret"}).status_code == 200


def test_health_probes(client):
    live = client.get("/api/health/live")
    ready = client.get("/api/health/ready")

    assert live.json()["data"] == {"status": "ok", "environment": "test"}
    assert ready.json()["data"] == {
        "status": "ready",
        "environment": "test",
        "database": "ok",
        "mailTransport": "log",
    }


def test_production_without_mail_transport_is_not_ready(client, settings):
    settings.app_env = "production"

    resp = client.get("/api/health/ready")

    assert resp.status_code == 503
    body = resp.json()
    assert body["error"] == "NOT_READY"
    assert body["details"]["mailTransport"] == "log"
    assert client.get("/api/health/live").status_code == 200


def test_unknown_route_uses_error_envelope(client):
    resp = client.get("/api/does-not-exist")

    assert resp.status_code == 404
    body = resp.json()
    assert body["success"] is False
    assert body["error"] == "NOT_FOUND"
    assert body["request_id"]
