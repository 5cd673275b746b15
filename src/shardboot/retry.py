from __future__ import annotations

import asyncio
import contextlib
import random
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeAlias, TypeVar, cast

import msgspec
from loguru import logger

from .errors import (
    ConfigError,
    DeadlineExceededError,
    RetriesExhaustedError,
    RetryCancelledError,
    TerminalRetryError,
)
from .util.misc import await_if_async

T = TypeVar("T")


class ExponentialBackoff(msgspec.Struct, frozen=True, tag="exponential"):
    init_backoff: float = 0.1
    base: float = 3.0
    max_backoff: float = 500.0
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.init_backoff <= 0:
            raise ConfigError("init_backoff must be positive")
        if self.base < 1.0:
            raise ConfigError("base must be >= 1.0")
        if self.max_backoff < self.init_backoff:
            raise ConfigError("max_backoff must be >= init_backoff")

    def calculate_delay(self, retry_count: int) -> float:
        # base**n overflows floats for large n
        exponent = min(retry_count, 256)
        try:
            delay = min(self.init_backoff * self.base**exponent, self.max_backoff)
        except OverflowError:
            delay = self.max_backoff
        if self.jitter:
            delay = min(delay * random.uniform(0.5, 1.5), self.max_backoff)
        return delay


class FixedDelayBackoff(msgspec.Struct, frozen=True, tag="fixed"):
    delay: float = 1.0

    def __post_init__(self) -> None:
        if self.delay <= 0:
            raise ConfigError("delay must be positive")

    def calculate_delay(self, retry_count: int) -> float:
        return self.delay


class BackoffConfig(msgspec.Struct, frozen=True):
    """
    delay schedule shared by every retry loop in the process

    `max_attempts` and `deadline` default to None, which retries forever;
    bootstrap dependencies are assumed to become reachable eventually
    """

    schedule: ExponentialBackoff | FixedDelayBackoff = ExponentialBackoff()
    max_attempts: int | None = None
    deadline: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ConfigError("max_attempts must be >= 1")
        if self.deadline is not None and self.deadline <= 0:
            raise ConfigError("deadline must be positive")


class Retryable(msgspec.Struct, frozen=True, tag="retryable"):
    pass


class Terminal(msgspec.Struct, frozen=True, tag="terminal"):
    reason: str


Classification: TypeAlias = Retryable | Terminal
Classifier: TypeAlias = Callable[[Exception], Classification]


def retry_all_errors(exception: Exception) -> Classification:
    return Retryable()


class RetryPolicy(msgspec.Struct, frozen=True):
    retry_on: tuple[type[Exception], ...] = (Exception,)
    dont_retry_on: tuple[type[Exception], ...] = ()

    def classify(self, exception: Exception) -> Classification:
        if self.dont_retry_on and isinstance(exception, self.dont_retry_on):
            return Terminal(reason=f"{type(exception).__name__} is not retryable: {exception}")

        if self.retry_on and isinstance(exception, self.retry_on):
            return Retryable()

        return Terminal(reason=f"{type(exception).__name__} is not in retry_on: {exception}")


class RetryAttempt(msgspec.Struct, frozen=True):
    task_name: str
    attempt: int
    delay: float
    error: str


RetryListener: TypeAlias = Callable[[RetryAttempt], Any]


class Backoff:
    def __init__(
        self,
        config: BackoffConfig,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        listener: RetryListener | None = None,
    ) -> None:
        self.config = config
        self._sleep = sleep
        self._clock = clock
        self._listener = listener

    async def retry_with_backoff(
        self,
        task_name: str,
        operation: Callable[[], Awaitable[T]],
        classify: Classifier = retry_all_errors,
        cancel: asyncio.Event | None = None,
    ) -> T:
        started_at = self._clock()
        attempts = 0

        while True:
            if cancel is not None and cancel.is_set():
                raise RetryCancelledError(task_name, attempts)

            attempts += 1
            try:
                cancelled, result = await self._race(operation(), cancel)
            except Exception as e:
                decision = classify(e)
                if isinstance(decision, Terminal):
                    logger.warning("{}: terminal error on attempt {}: {}", task_name, attempts, decision.reason)
                    raise TerminalRetryError(task_name, attempts, decision.reason) from e

                if self.config.max_attempts is not None and attempts >= self.config.max_attempts:
                    logger.warning("{}: giving up after {} attempts: {}", task_name, attempts, e)
                    raise RetriesExhaustedError(task_name, attempts) from e

                delay = self.config.schedule.calculate_delay(attempts - 1)

                if self.config.deadline is not None and self._clock() - started_at + delay > self.config.deadline:
                    logger.warning(
                        "{}: deadline of {}s reached after {} attempts", task_name, self.config.deadline, attempts
                    )
                    raise DeadlineExceededError(task_name, attempts, self.config.deadline) from e

                logger.info(
                    "{}: request encountered non-fatal error, backing off: attempt={} delay={:.3f}s error={}",
                    task_name,
                    attempts,
                    delay,
                    e,
                )

                if self._listener is not None:
                    await await_if_async(
                        self._listener(RetryAttempt(task_name=task_name, attempt=attempts, delay=delay, error=str(e)))
                    )

                slept_cancelled, _ = await self._race(self._sleep(delay), cancel)
                if slept_cancelled:
                    raise RetryCancelledError(task_name, attempts) from e
                continue

            if cancelled:
                logger.warning("{}: cancelled during attempt {}", task_name, attempts)
                raise RetryCancelledError(task_name, attempts)

            return cast(T, result)

    async def retry_all_errors(
        self, task_name: str, operation: Callable[[], Awaitable[T]], cancel: asyncio.Event | None = None
    ) -> T:
        return await self.retry_with_backoff(task_name, operation, classify=retry_all_errors, cancel=cancel)

    async def _race(self, awaitable: Awaitable[T], cancel: asyncio.Event | None) -> tuple[bool, T | None]:
        """
        awaits `awaitable` unless `cancel` fires first

        returns (True, None) when cancelled, otherwise (False, result);
        an exception raised by `awaitable` propagates either way
        """
        if cancel is None:
            return False, await awaitable

        fut = asyncio.ensure_future(awaitable)
        canceller = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait((fut, canceller), return_when=asyncio.FIRST_COMPLETED)
        finally:
            for pending in (fut, canceller):
                if not pending.done():
                    pending.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await pending

        if fut.cancelled():
            return True, None

        return False, fut.result()
