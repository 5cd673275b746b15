from typing import Protocol

from ..types import ShardIndex, ShardRecord, TopicId, TopicRecord


class CatalogProtocol(Protocol):
    """
    read side of the catalog used during bootstrap

    a lookup returning None is a successful answer ("no such record");
    raising means the call itself failed and may be retried
    """

    async def get_topic_by_name(self, name: str) -> TopicRecord | None: ...

    async def get_shard_by_topic_id_and_index(
        self, topic_id: TopicId, shard_index: ShardIndex
    ) -> ShardRecord | None: ...

    async def close(self) -> None: ...
