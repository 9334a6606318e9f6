"""业务服务层。"""

from twofa_api.core.clock import Clock
from twofa_api.core.config import Settings
from twofa_api.services.audit import AuditTrail
from twofa_api.services.credentials import CredentialStore
from twofa_api.services.mailer import MailTransport
from twofa_api.services.orchestrator import AuthOrchestrator, ClientInfo
from twofa_api.services.otp import OtpEngine
from twofa_api.services.rate_limiter import RateLimiter
from twofa_api.services.results import ErrorKind, Failure, Outcome
from twofa_api.services.sessions import SessionRegistry
from twofa_api.services.tokens import TokenService


def build_orchestrator(settings: Settings, clock: Clock, mailer: MailTransport) -> AuthOrchestrator:
    """按依赖顺序装配各组件，进程内只构造一次。"""
    audit = AuditTrail(clock)
    rate_limiter = RateLimiter(clock)
    tokens = TokenService(settings, clock)
    sessions = SessionRegistry(settings, clock, tokens, audit)
    credentials = CredentialStore(settings, clock, sessions)
    otp = OtpEngine(settings, clock, mailer, rate_limiter, audit)
    return AuthOrchestrator(
        settings=settings,
        clock=clock,
        credentials=credentials,
        otp=otp,
        tokens=tokens,
        sessions=sessions,
        rate_limiter=rate_limiter,
        audit=audit,
        mailer=mailer,
    )


__all__ = [
    "AuthOrchestrator",
    "ClientInfo",
    "ErrorKind",
    "Failure",
    "Outcome",
    "build_orchestrator",
]
