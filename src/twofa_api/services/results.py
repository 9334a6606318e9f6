"""核心组件的类型化返回结果。

组件之间不以异常传递业务失败，而是返回 Outcome，由调用方按 ErrorKind 分支处理；
只有存储不可达、编程错误等真正意外的情况才以异常向上抛出。
"""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(StrEnum):
    """业务失败分类。"""

    VALIDATION_ERROR = "validation_error"
    UNAUTHORIZED = "unauthorized"
    INVALID_CREDENTIALS = "invalid_credentials"
    INVALID_CODE = "invalid_code"
    CODE_EXPIRED = "code_expired"
    MAX_ATTEMPTS_EXCEEDED = "max_attempts_exceeded"
    RATE_LIMITED = "rate_limited"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    DELIVERY_FAILED = "delivery_failed"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True)
class RateLimitDecision:
    """一次限流检查的结果。"""

    allowed: bool
    attempts: int
    limit: int
    reset_at: datetime
    retry_after_seconds: int

    @property
    def remaining(self) -> int:
        return max(self.limit - self.attempts, 0)


@dataclass(frozen=True)
class Failure:
    """业务失败描述。"""

    kind: ErrorKind
    reason: str | None = None
    # 仅 RATE_LIMITED 携带，用于生成限流响应头。
    rate_limit: RateLimitDecision | None = None


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """成功值或失败描述二选一。"""

    value: T | None = None
    failure: Failure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def fail(
        cls,
        kind: ErrorKind,
        reason: str | None = None,
        *,
        rate_limit: RateLimitDecision | None = None,
    ) -> "Outcome[T]":
        return cls(failure=Failure(kind=kind, reason=reason, rate_limit=rate_limit))

    def unwrap(self) -> T:
        """取出成功值；对失败结果调用属于编程错误。"""
        if self.failure is not None:
            raise RuntimeError(f"unwrap on failed outcome: {self.failure.kind}")
        return self.value  # type: ignore[return-value]
