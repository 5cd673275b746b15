from __future__ import annotations

from typing import NewType

import msgspec

TopicId = NewType("TopicId", int)
ShardId = NewType("ShardId", int)

ShardIndex = int


class TopicRecord(msgspec.Struct, frozen=True):
    id: TopicId
    name: str


class ShardRecord(msgspec.Struct, frozen=True):
    id: ShardId
    topic_id: TopicId
    shard_index: ShardIndex
    min_unpersisted_sequence_number: int = 0
