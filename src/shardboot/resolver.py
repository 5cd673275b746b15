"""Resolution of a topic name and shard index into the catalog's shard id."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from .abc.catalog import CatalogProtocol
from .errors import ShardNotFoundError, TopicNotFoundError
from .retry import Backoff, BackoffConfig, Classifier, RetryListener, retry_all_errors
from .types import ShardId, ShardIndex


async def fetch_shard_id(
    catalog: CatalogProtocol,
    backoff_config: BackoffConfig,
    topic_name: str,
    shard_index: ShardIndex,
    *,
    classify: Classifier = retry_all_errors,
    cancel: asyncio.Event | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    listener: RetryListener | None = None,
) -> ShardId:
    """
    look up the topic by name, then the shard by (topic id, shard index)

    catalog call failures are retried according to `backoff_config` (forever by default);
    a lookup that succeeds without a record is fatal and raises immediately

    :raises TopicNotFoundError: no topic named `topic_name`
    :raises ShardNotFoundError: the topic exists but has no shard `shard_index`
    :raises BackoffError: only if `backoff_config` bounds the retries, `classify` returns Terminal,
        or `cancel` is set
    """
    topic = await Backoff(backoff_config, sleep=sleep, listener=listener).retry_with_backoff(
        "topic_of_given_name",
        lambda: catalog.get_topic_by_name(topic_name),
        classify=classify,
        cancel=cancel,
    )

    if topic is None:
        logger.error("topic {} not found in catalog", topic_name)
        raise TopicNotFoundError(topic_name)

    logger.debug("topic {} resolved to id {}", topic_name, topic.id)

    shard = await Backoff(backoff_config, sleep=sleep, listener=listener).retry_with_backoff(
        "shard_of_given_index",
        lambda: catalog.get_shard_by_topic_id_and_index(topic.id, shard_index),
        classify=classify,
        cancel=cancel,
    )

    if shard is None:
        logger.error("shard index {} not found for topic {} (id {})", shard_index, topic_name, topic.id)
        raise ShardNotFoundError(topic_name, shard_index)

    logger.info("topic {} shard index {} resolved to shard id {}", topic_name, shard_index, shard.id)
    return shard.id
