from .catalog import InMemoryCatalog, PostgresCatalog, RedisCatalog, catalog_from_dsn
from .config import CompactorConfig, CompactorTuning, load_config
from .errors import (
    BackoffError,
    CatalogError,
    ConfigError,
    ResolutionError,
    ShardbootError,
    ShardNotFoundError,
    TopicNotFoundError,
)
from .resolver import fetch_shard_id
from .retry import (
    Backoff,
    BackoffConfig,
    ExponentialBackoff,
    FixedDelayBackoff,
    Retryable,
    RetryPolicy,
    Terminal,
    retry_all_errors,
)
from .types import ShardId, ShardRecord, TopicId, TopicRecord

__all__ = [
    "Backoff",
    "BackoffConfig",
    "BackoffError",
    "CatalogError",
    "CompactorConfig",
    "CompactorTuning",
    "ConfigError",
    "ExponentialBackoff",
    "FixedDelayBackoff",
    "InMemoryCatalog",
    "PostgresCatalog",
    "RedisCatalog",
    "ResolutionError",
    "RetryPolicy",
    "Retryable",
    "ShardId",
    "ShardNotFoundError",
    "ShardRecord",
    "ShardbootError",
    "Terminal",
    "TopicId",
    "TopicNotFoundError",
    "TopicRecord",
    "catalog_from_dsn",
    "fetch_shard_id",
    "load_config",
    "retry_all_errors",
]
