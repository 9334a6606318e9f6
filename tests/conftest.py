import re
from collections.abc import Generator
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

import twofa_api.models  # noqa: F401
from twofa_api.core.clock import Clock
from twofa_api.core.config import Settings
from twofa_api.main import create_app
from twofa_api.models.base import Base
from twofa_api.services.orchestrator import AuthOrchestrator

PASSWORD = "Abcd1234"


class FakeClock(Clock):
    """可手动拨动的时钟。"""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@dataclass
class SentMail:
    to: str
    subject: str
    body: str


@dataclass
class CapturingMailer:
    """记录所有投递的邮件，fail=True 时模拟投递失败。"""

    sent: list[SentMail] = field(default_factory=list)
    fail: bool = False

    def send(self, to: str, subject: str, body: str) -> bool:
        if self.fail:
            return False
        self.sent.append(SentMail(to=to, subject=subject, body=body))
        return True

    def last_code(self, to: str) -> str:
        for mail in reversed(self.sent):
            if mail.to == to:
                match = re.search(r"\b(\d{6})\b", mail.body)
                if match:
                    return match.group(1)
        raise AssertionError(f"no code delivered to {to}")


@pytest.fixture
def settings() -> Settings:
    return Settings(
        app_env="test",
        database_url="sqlite://",
        auth_jwt_access_secret="test-access-secret",
        auth_jwt_refresh_secret="test-refresh-secret",
        auth_password_hash_iterations=1000,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mailer() -> CapturingMailer:
    return CapturingMailer()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def app(settings: Settings, mailer: CapturingMailer, clock: FakeClock, engine: Engine) -> FastAPI:
    return create_app(settings, mailer=mailer, clock=clock, engine=engine)


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


@pytest.fixture
def db(app: FastAPI) -> Generator[Session, None, None]:
    session = app.state.session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def orchestrator(app: FastAPI) -> AuthOrchestrator:
    return app.state.orchestrator


@dataclass
class SignedIn:
    email: str
    user_id: str
    access_token: str
    refresh_token: str


def register(client: TestClient, email: str, password: str = PASSWORD, name: str | None = "Alice") -> dict:
    body = {"email": email, "password": password, "confirmPassword": password}
    if name:
        body["name"] = name
    resp = client.post("/api/auth/register", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def sign_in(client: TestClient, mailer: CapturingMailer, email: str, password: str = PASSWORD) -> SignedIn:
    """注册后的完整登录流程：口令 → 验证码 → 令牌。"""
    resp = client.post("/api/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    code = mailer.last_code(email)
    resp = client.post("/api/2fa/verify-code", json={"email": email, "code": code})
    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    return SignedIn(
        email=email,
        user_id=data["user"]["id"],
        access_token=data["token"],
        refresh_token=resp.cookies.get("refresh-token"),
    )
