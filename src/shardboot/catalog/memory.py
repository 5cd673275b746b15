import asyncio

from ..errors import CatalogError
from ..types import ShardId, ShardIndex, ShardRecord, TopicId, TopicRecord


class InMemoryCatalog:
    def __init__(self) -> None:
        self._topics: dict[str, TopicRecord] = {}
        self._shards: dict[tuple[TopicId, ShardIndex], ShardRecord] = {}
        self._next_topic_id = 1
        self._next_shard_id = 1
        self._lock = asyncio.Lock()

    async def create_or_get_topic(self, name: str) -> TopicRecord:
        async with self._lock:
            if (topic := self._topics.get(name)) is not None:
                return topic

            topic = TopicRecord(id=TopicId(self._next_topic_id), name=name)
            self._next_topic_id += 1
            self._topics[name] = topic
            return topic

    async def create_or_get_shard(self, topic_id: TopicId, shard_index: ShardIndex) -> ShardRecord:
        async with self._lock:
            key = (topic_id, shard_index)
            if (shard := self._shards.get(key)) is not None:
                return shard

            if topic_id not in {t.id for t in self._topics.values()}:
                raise CatalogError(f"topic {topic_id} not found")

            shard = ShardRecord(id=ShardId(self._next_shard_id), topic_id=topic_id, shard_index=shard_index)
            self._next_shard_id += 1
            self._shards[key] = shard
            return shard

    async def get_topic_by_name(self, name: str) -> TopicRecord | None:
        return self._topics.get(name)

    async def get_shard_by_topic_id_and_index(self, topic_id: TopicId, shard_index: ShardIndex) -> ShardRecord | None:
        return self._shards.get((topic_id, shard_index))

    async def close(self) -> None:
        pass
