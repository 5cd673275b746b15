from __future__ import annotations

import asyncio
import weakref

import msgspec
import redis.asyncio as redis
from redis.exceptions import RedisError

from ..errors import CatalogError
from ..types import ShardId, ShardIndex, ShardRecord, TopicId, TopicRecord

_topic_decoder = msgspec.msgpack.Decoder(TopicRecord)
_shard_decoder = msgspec.msgpack.Decoder(ShardRecord)
_encoder = msgspec.msgpack.Encoder()


class RedisCatalog:
    def __init__(self, redis_url: str = "redis://localhost:6379", namespace: str = "shardboot") -> None:
        """
        catalog stored in redis

        records are msgpack encoded under `{namespace}:topic:name:<name>` and
        `{namespace}:shard:<topic_id>:<shard_index>`; ids come from INCR counters

        :param redis_url: redis connection url
        :param namespace: key prefix, lets several catalogs share a database
        """
        self._redis_url = redis_url
        self.namespace = namespace
        self._clients: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, redis.Redis] = weakref.WeakKeyDictionary()

    @property
    def redis(self) -> redis.Redis:
        loop = asyncio.get_running_loop()
        if loop not in self._clients:
            self._clients[loop] = redis.from_url(self._redis_url)
        return self._clients[loop]

    def _topic_key(self, name: str) -> str:
        return f"{self.namespace}:topic:name:{name}"

    def _topic_id_key(self, topic_id: TopicId) -> str:
        return f"{self.namespace}:topic:id:{topic_id}"

    def _shard_key(self, topic_id: TopicId, shard_index: ShardIndex) -> str:
        return f"{self.namespace}:shard:{topic_id}:{shard_index}"

    async def get_topic_by_name(self, name: str) -> TopicRecord | None:
        try:
            data = await self.redis.get(self._topic_key(name))
        except RedisError as e:
            raise CatalogError(f"failed to look up topic {name}: {e}") from e

        return None if data is None else _topic_decoder.decode(data)

    async def get_shard_by_topic_id_and_index(self, topic_id: TopicId, shard_index: ShardIndex) -> ShardRecord | None:
        try:
            data = await self.redis.get(self._shard_key(topic_id, shard_index))
        except RedisError as e:
            raise CatalogError(f"failed to look up shard {shard_index} of topic {topic_id}: {e}") from e

        return None if data is None else _shard_decoder.decode(data)

    async def create_or_get_topic(self, name: str) -> TopicRecord:
        key = self._topic_key(name)
        try:
            if (data := await self.redis.get(key)) is not None:
                return _topic_decoder.decode(data)

            topic_id = TopicId(await self.redis.incr(f"{self.namespace}:topic:id"))
            topic = TopicRecord(id=topic_id, name=name)
            # a concurrent creator may have won, keep whichever landed first
            if not await self.redis.set(key, _encoder.encode(topic), nx=True):
                return _topic_decoder.decode(await self.redis.get(key))
            await self.redis.set(self._topic_id_key(topic_id), name)
        except RedisError as e:
            raise CatalogError(f"failed to create topic {name}: {e}") from e

        return topic

    async def create_or_get_shard(self, topic_id: TopicId, shard_index: ShardIndex) -> ShardRecord:
        key = self._shard_key(topic_id, shard_index)
        try:
            if (data := await self.redis.get(key)) is not None:
                return _shard_decoder.decode(data)

            if not await self.redis.exists(self._topic_id_key(topic_id)):
                raise CatalogError(f"topic {topic_id} not found")

            shard_id = ShardId(await self.redis.incr(f"{self.namespace}:shard:id"))
            shard = ShardRecord(id=shard_id, topic_id=topic_id, shard_index=shard_index)
            if not await self.redis.set(key, _encoder.encode(shard), nx=True):
                return _shard_decoder.decode(await self.redis.get(key))
        except RedisError as e:
            raise CatalogError(f"failed to create shard {shard_index} of topic {topic_id}: {e}") from e

        return shard

    async def close(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()
