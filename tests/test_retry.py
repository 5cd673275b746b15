from __future__ import annotations

import asyncio

import msgspec
import pytest

from shardboot.errors import (
	CatalogError,
	ConfigError,
	DeadlineExceededError,
	RetriesExhaustedError,
	RetryCancelledError,
	TerminalRetryError,
)
from shardboot.retry import (
	Backoff,
	BackoffConfig,
	ExponentialBackoff,
	FixedDelayBackoff,
	Retryable,
	RetryAttempt,
	RetryPolicy,
	Terminal,
	retry_all_errors,
)


def flaky(failures: int, result="ok", exc: Exception | None = None):
	calls = 0

	async def operation():
		nonlocal calls
		calls += 1
		if calls <= failures:
			raise exc or CatalogError("unavailable")
		return result

	operation.calls = lambda: calls
	return operation


class TestExponentialBackoff:
	def test_basic_delay(self):
		backoff = ExponentialBackoff(init_backoff=1.0, base=2.0, jitter=False)
		assert backoff.calculate_delay(0) == 1.0
		assert backoff.calculate_delay(1) == 2.0
		assert backoff.calculate_delay(3) == 8.0

	def test_max_delay(self):
		backoff = ExponentialBackoff(init_backoff=1.0, base=2.0, max_backoff=10.0, jitter=False)
		assert backoff.calculate_delay(100) == 10.0

	def test_huge_retry_count_stays_capped(self):
		backoff = ExponentialBackoff(init_backoff=1.0, base=1e10, max_backoff=30.0, jitter=False)
		assert backoff.calculate_delay(10_000) == 30.0

	def test_jitter_changes_delay_within_cap(self):
		backoff = ExponentialBackoff(init_backoff=1.0, base=2.0, max_backoff=100.0, jitter=True)
		delays = {backoff.calculate_delay(3) for _ in range(20)}
		assert len(delays) > 1
		assert all(4.0 <= d <= 12.0 for d in delays)

	def test_defaults(self):
		backoff = ExponentialBackoff()
		assert backoff.init_backoff == 0.1
		assert backoff.base == 3.0
		assert backoff.max_backoff == 500.0

	@pytest.mark.parametrize(
		"kws",
		[{"init_backoff": 0}, {"base": 0.5}, {"init_backoff": 10.0, "max_backoff": 1.0}],
	)
	def test_invalid(self, kws):
		with pytest.raises(ConfigError):
			ExponentialBackoff(**kws)


class TestFixedDelayBackoff:
	def test_constant_delay(self):
		backoff = FixedDelayBackoff(delay=5.0)
		assert backoff.calculate_delay(0) == 5.0
		assert backoff.calculate_delay(10) == 5.0

	def test_invalid(self):
		with pytest.raises(ConfigError, match="positive"):
			FixedDelayBackoff(delay=0)


class TestBackoffConfig:
	def test_defaults_retry_forever(self):
		config = BackoffConfig()
		assert config.max_attempts is None
		assert config.deadline is None
		assert isinstance(config.schedule, ExponentialBackoff)

	def test_invalid_caps(self):
		with pytest.raises(ConfigError, match="max_attempts"):
			BackoffConfig(max_attempts=0)
		with pytest.raises(ConfigError, match="deadline"):
			BackoffConfig(deadline=-1.0)

	def test_decode_from_json(self):
		config = msgspec.json.decode(
			b'{"schedule": {"type": "fixed", "delay": 2.0}, "max_attempts": 4}', type=BackoffConfig
		)
		assert config.schedule == FixedDelayBackoff(delay=2.0)
		assert config.max_attempts == 4

	def test_decode_rejects_invalid_values(self):
		with pytest.raises(msgspec.ValidationError):
			msgspec.json.decode(b'{"schedule": {"type": "fixed", "delay": -1}}', type=BackoffConfig)


class TestClassification:
	def test_retry_all_errors(self):
		assert retry_all_errors(ValueError("malformed")) == Retryable()
		assert retry_all_errors(CatalogError("down")) == Retryable()

	def test_dont_retry_on_specific_exception(self):
		policy = RetryPolicy(dont_retry_on=(TypeError,))
		assert isinstance(policy.classify(TypeError("err")), Terminal)
		assert policy.classify(ValueError("err")) == Retryable()

	def test_retry_only_on_specific_exception(self):
		policy = RetryPolicy(retry_on=(CatalogError,))
		assert policy.classify(CatalogError("err")) == Retryable()
		decision = policy.classify(TypeError("bad request"))
		assert isinstance(decision, Terminal)
		assert "bad request" in decision.reason


class TestBackoff:
	async def test_success_first_try_never_sleeps(self, clock):
		op = flaky(0, result=42)
		result = await Backoff(BackoffConfig(), sleep=clock.sleep, clock=clock).retry_all_errors("t", op)
		assert result == 42
		assert clock.sleeps == []

	async def test_retries_until_success_following_schedule(self, clock):
		config = BackoffConfig(schedule=ExponentialBackoff(init_backoff=1.0, base=2.0, max_backoff=5.0, jitter=False))
		op = flaky(5)

		result = await Backoff(config, sleep=clock.sleep, clock=clock).retry_all_errors("t", op)

		assert result == "ok"
		assert op.calls() == 6
		assert clock.sleeps == [1.0, 2.0, 4.0, 5.0, 5.0]

	async def test_unbounded_by_default(self, clock):
		op = flaky(200)
		result = await Backoff(BackoffConfig(), sleep=clock.sleep, clock=clock).retry_all_errors("t", op)
		assert result == "ok"
		assert len(clock.sleeps) == 200

	async def test_max_attempts(self, clock, fixed_backoff):
		config = BackoffConfig(schedule=fixed_backoff.schedule, max_attempts=3)
		op = flaky(10)

		with pytest.raises(RetriesExhaustedError) as exc_info:
			await Backoff(config, sleep=clock.sleep, clock=clock).retry_all_errors("lookup", op)

		assert exc_info.value.attempts == 3
		assert exc_info.value.task_name == "lookup"
		assert isinstance(exc_info.value.__cause__, CatalogError)
		assert op.calls() == 3
		assert clock.sleeps == [0.5, 0.5]

	async def test_deadline(self, clock):
		config = BackoffConfig(schedule=FixedDelayBackoff(delay=1.0), deadline=2.5)
		op = flaky(10)

		with pytest.raises(DeadlineExceededError) as exc_info:
			await Backoff(config, sleep=clock.sleep, clock=clock).retry_all_errors("t", op)

		assert clock.sleeps == [1.0, 1.0]
		assert exc_info.value.attempts == 3

	async def test_terminal_classification_stops_immediately(self, clock, fixed_backoff):
		op = flaky(10, exc=TypeError("malformed request"))
		policy = RetryPolicy(dont_retry_on=(TypeError,))

		with pytest.raises(TerminalRetryError, match="malformed request"):
			await Backoff(fixed_backoff, sleep=clock.sleep, clock=clock).retry_with_backoff(
				"t", op, classify=policy.classify
			)

		assert op.calls() == 1
		assert clock.sleeps == []

	async def test_cancel_before_first_attempt(self, clock, fixed_backoff):
		cancel = asyncio.Event()
		cancel.set()
		op = flaky(0)

		with pytest.raises(RetryCancelledError):
			await Backoff(fixed_backoff, sleep=clock.sleep, clock=clock).retry_all_errors("t", op, cancel=cancel)

		assert op.calls() == 0

	async def test_cancel_interrupts_sleep(self):
		cancel = asyncio.Event()
		op = flaky(1_000)
		backoff = Backoff(BackoffConfig(schedule=FixedDelayBackoff(delay=3600.0)))

		task = asyncio.create_task(backoff.retry_all_errors("t", op, cancel=cancel))
		await asyncio.sleep(0.05)
		cancel.set()

		with pytest.raises(RetryCancelledError) as exc_info:
			await asyncio.wait_for(task, timeout=2.0)

		assert exc_info.value.attempts == 1

	async def test_task_cancellation_propagates(self):
		op = flaky(1_000)
		backoff = Backoff(BackoffConfig(schedule=FixedDelayBackoff(delay=3600.0)))

		task = asyncio.create_task(backoff.retry_all_errors("t", op, cancel=asyncio.Event()))
		await asyncio.sleep(0.05)
		task.cancel()

		with pytest.raises(asyncio.CancelledError):
			await task

	async def test_listener_sees_every_backoff(self, clock, fixed_backoff):
		seen: list[RetryAttempt] = []
		op = flaky(2)

		await Backoff(fixed_backoff, sleep=clock.sleep, clock=clock, listener=seen.append).retry_all_errors("t", op)

		assert [a.attempt for a in seen] == [1, 2]
		assert all(a.delay == 0.5 and a.task_name == "t" for a in seen)
		assert seen[0].error == "unavailable"

	async def test_async_listener(self, clock, fixed_backoff):
		seen: list[RetryAttempt] = []

		async def listener(attempt: RetryAttempt) -> None:
			seen.append(attempt)

		await Backoff(fixed_backoff, sleep=clock.sleep, clock=clock, listener=listener).retry_all_errors(
			"t", flaky(1)
		)

		assert len(seen) == 1

	async def test_cancel_interrupts_hung_attempt(self, fixed_backoff):
		cancel = asyncio.Event()
		never = asyncio.Event()
		calls = 0

		async def hung() -> str:
			nonlocal calls
			calls += 1
			await never.wait()
			return "unreachable"

		task = asyncio.create_task(Backoff(fixed_backoff).retry_all_errors("t", hung, cancel=cancel))
		await asyncio.sleep(0.05)
		cancel.set()

		with pytest.raises(RetryCancelledError) as exc_info:
			await asyncio.wait_for(task, timeout=1.0)

		assert exc_info.value.attempts == 1
		assert calls == 1

	async def test_unset_cancel_event_does_not_affect_success(self, fixed_backoff):
		cancel = asyncio.Event()
		result = await Backoff(fixed_backoff).retry_all_errors("t", flaky(0, result=7), cancel=cancel)
		assert result == 7
		assert not cancel.is_set()

	@pytest.mark.parametrize("with_cancel", [False, True])
	async def test_sleep_errors_propagate(self, fixed_backoff, with_cancel):
		async def broken_sleep(delay: float) -> None:
			raise RuntimeError("clock unavailable")

		op = flaky(49)
		backoff = Backoff(fixed_backoff, sleep=broken_sleep)
		cancel = asyncio.Event() if with_cancel else None

		with pytest.raises(RuntimeError, match="clock unavailable"):
			await backoff.retry_all_errors("t", op, cancel=cancel)

		assert op.calls() == 1
