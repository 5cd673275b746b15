from __future__ import annotations


class ShardbootError(Exception):
    pass


class ConfigError(ShardbootError, ValueError):
    pass


class CatalogError(ShardbootError):
    """Transport or server failure talking to the catalog."""


class BackoffError(ShardbootError):
    def __init__(self, message: str, task_name: str, attempts: int) -> None:
        super().__init__(message)
        self.task_name = task_name
        self.attempts = attempts


class RetriesExhaustedError(BackoffError):
    def __init__(self, task_name: str, attempts: int) -> None:
        super().__init__(f"{task_name}: gave up after {attempts} attempts", task_name, attempts)


class DeadlineExceededError(BackoffError):
    def __init__(self, task_name: str, attempts: int, deadline: float) -> None:
        super().__init__(
            f"{task_name}: deadline of {deadline}s exceeded after {attempts} attempts", task_name, attempts
        )
        self.deadline = deadline


class RetryCancelledError(BackoffError):
    def __init__(self, task_name: str, attempts: int) -> None:
        super().__init__(f"{task_name}: cancelled after {attempts} attempts", task_name, attempts)


class TerminalRetryError(BackoffError):
    def __init__(self, task_name: str, attempts: int, reason: str) -> None:
        super().__init__(f"{task_name}: terminal error after {attempts} attempts: {reason}", task_name, attempts)
        self.reason = reason


class ResolutionError(ShardbootError):
    """
    a catalog lookup succeeded but the record does not exist

    this is an operator misconfiguration, never retried;
    the process entry point is expected to terminate with `exit_code`
    """

    exit_code: int = 1


class TopicNotFoundError(ResolutionError):
    exit_code = 2

    def __init__(self, topic_name: str) -> None:
        super().__init__(f"topic {topic_name} not found")
        self.topic_name = topic_name


class ShardNotFoundError(ResolutionError):
    exit_code = 3

    def __init__(self, topic_name: str, shard_index: int) -> None:
        super().__init__(f"topic {topic_name} and shard index {shard_index} not found")
        self.topic_name = topic_name
        self.shard_index = shard_index
