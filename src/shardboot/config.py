from __future__ import annotations

import asyncio
from typing import Any

import msgspec

from .abc.catalog import CatalogProtocol
from .errors import ConfigError
from .resolver import fetch_shard_id
from .retry import BackoffConfig, Classifier, RetryListener, retry_all_errors
from .types import ShardId, ShardIndex


class CompactorTuning(msgspec.Struct, frozen=True):
    """
    tuning knobs handed to the compactor alongside its shard id

    `percentage_max_file_size`: if the estimated compacted output is smaller than
    this percentage of `max_desired_file_size_bytes` it is not split.
    `split_percentage`: output that is neither too small nor larger than
    `max_desired_file_size_bytes` is split into two files at this percentage.
    """

    partition_concurrency: int = 10
    job_concurrency: int = 5
    partition_minute_threshold: int = 10
    max_desired_file_size_bytes: int = 100 * 1024 * 1024
    percentage_max_file_size: int = 30
    split_percentage: int = 80
    partition_timeout_secs: int = 1800

    def __post_init__(self) -> None:
        for name in ("partition_concurrency", "job_concurrency"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be non-zero")

        for name in ("partition_minute_threshold", "max_desired_file_size_bytes", "partition_timeout_secs"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")

        for name in ("percentage_max_file_size", "split_percentage"):
            if not 0 < getattr(self, name) < 100:
                raise ConfigError(f"{name} must be between 0 and 100 (exclusive)")


class CompactorConfig(msgspec.Struct, frozen=True):
    shard_id: ShardId
    topic_name: str
    shard_index: ShardIndex
    catalog: Any
    backoff_config: BackoffConfig
    tuning: CompactorTuning

    def to_dict(self) -> dict[str, Any]:
        return {
            "shard_id": self.shard_id,
            "topic_name": self.topic_name,
            "shard_index": self.shard_index,
            "backoff_config": msgspec.to_builtins(self.backoff_config),
            "tuning": msgspec.to_builtins(self.tuning),
        }


async def load_config(
    catalog: CatalogProtocol,
    backoff_config: BackoffConfig,
    topic_name: str,
    shard_index: ShardIndex,
    tuning: CompactorTuning | None = None,
    *,
    classify: Classifier = retry_all_errors,
    cancel: asyncio.Event | None = None,
    listener: RetryListener | None = None,
) -> CompactorConfig:
    shard_id = await fetch_shard_id(
        catalog, backoff_config, topic_name, shard_index, classify=classify, cancel=cancel, listener=listener
    )

    return CompactorConfig(
        shard_id=shard_id,
        topic_name=topic_name,
        shard_index=shard_index,
        catalog=catalog,
        backoff_config=backoff_config,
        tuning=tuning or CompactorTuning(),
    )
