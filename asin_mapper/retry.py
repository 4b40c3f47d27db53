"""Bounded retry loop around fallible automation-session calls."""

import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, Tuple, Type, TypeVar

from loguru import logger
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_random,
)


T = TypeVar("T")

_EXHAUSTED = object()


@dataclass(frozen=True)
class BackoffPolicy:
    """Randomized pause between attempts: ``base + random() * jitter`` seconds."""

    base_seconds: float = 2.0
    jitter_seconds: float = 0.0

    def __post_init__(self):
        if self.base_seconds < 0 or self.jitter_seconds < 0:
            raise ValueError("Backoff durations must be non-negative")


@dataclass
class RetryState:
    """Mutable bookkeeping for one query's resolution."""

    max_attempts: int
    attempt: int = 0
    last_error: Optional[BaseException] = None


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Terminal outcome of a retry cycle."""

    succeeded: bool
    value: Optional[T]
    attempts: int
    last_error: Optional[BaseException] = None

    @property
    def exhausted(self) -> bool:
        return not self.succeeded


def non_empty(result: Any) -> bool:
    """Success condition for searches: at least one result."""
    return bool(result)


class RetryController:
    """Drive a session call until it succeeds or the attempt budget runs out.

    A raised exception listed in ``retry_on`` and a result rejected by
    ``accept`` are both treated as a failed attempt. When ``accept`` is None
    any call that returns without raising is a success. Exhaustion is
    reported through :class:`RetryOutcome`, never raised.
    """

    def __init__(
        self,
        max_attempts: int,
        backoff: BackoffPolicy,
        accept: Optional[Callable[[Any], bool]] = None,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        sleep: Callable[[float], None] = time.sleep,
        label: str = "query",
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1 (got {max_attempts})")
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.accept = accept
        self.retry_on = retry_on
        self.sleep = sleep
        self.label = label

    def _retry_condition(self):
        condition = retry_if_exception_type(self.retry_on)
        if self.accept is not None:
            accept = self.accept
            condition = condition | retry_if_result(lambda result: not accept(result))
        return condition

    def resolve(self, query_fn: Callable[[], T]) -> RetryOutcome[T]:
        state = RetryState(max_attempts=self.max_attempts)

        def before_attempt(retry_state: RetryCallState) -> None:
            state.attempt = retry_state.attempt_number

        def after_failed_attempt(retry_state: RetryCallState) -> None:
            outcome = retry_state.outcome
            if outcome is not None and outcome.failed:
                state.last_error = outcome.exception()
                logger.warning(
                    f"[{self.label}] Attempt {state.attempt}/{self.max_attempts} failed: {state.last_error}"
                )
            else:
                logger.info(
                    f"[{self.label}] Attempt {state.attempt}/{self.max_attempts}: no usable result, retrying"
                )

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_random(
                min=self.backoff.base_seconds,
                max=self.backoff.base_seconds + self.backoff.jitter_seconds,
            ),
            retry=self._retry_condition(),
            before=before_attempt,
            after=after_failed_attempt,
            sleep=self.sleep,
            retry_error_callback=lambda _retry_state: _EXHAUSTED,
        )

        value = retrying(query_fn)
        if value is _EXHAUSTED:
            logger.warning(f"[{self.label}] Retry budget exhausted after {state.attempt} attempt(s)")
            return RetryOutcome(
                succeeded=False,
                value=None,
                attempts=state.attempt,
                last_error=state.last_error,
            )

        logger.info(f"[{self.label}] Succeeded after {state.attempt} attempt(s)")
        return RetryOutcome(
            succeeded=True,
            value=value,
            attempts=state.attempt,
            last_error=state.last_error,
        )


def resolve(
    query_fn: Callable[[], T],
    max_attempts: int,
    backoff: BackoffPolicy,
    **kwargs: Any,
) -> RetryOutcome[T]:
    """Functional shorthand for ``RetryController(...).resolve(query_fn)``."""
    return RetryController(max_attempts, backoff, **kwargs).resolve(query_fn)
