from __future__ import annotations

import asyncio

import asyncpg
from loguru import logger

from ..errors import CatalogError, ConfigError
from ..types import ShardId, ShardIndex, ShardRecord, TopicId, TopicRecord
from ..util.misc import redact_dsn

SCHEMA_SQL = """
create schema if not exists {schema};

create table if not exists {schema}.topic (
    id bigserial primary key,
    name varchar(255) not null unique
);

create table if not exists {schema}.shard (
    id bigserial primary key,
    topic_id bigint not null references {schema}.topic(id),
    shard_index integer not null,
    min_unpersisted_sequence_number bigint not null default 0,
    unique (topic_id, shard_index)
);
"""

_transport_errors = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, TimeoutError)


class PostgresCatalog:
    def __init__(self, dsn: str, schema: str = "shardboot") -> None:
        """
        catalog stored in postgres

        :param dsn: postgres connection string
        :param schema: schema holding the `topic` and `shard` tables
        """
        if not schema.isidentifier():
            raise ConfigError(f"invalid schema name: {schema!r}")

        self.dsn = dsn
        self.schema = schema
        self._pools: dict[int, asyncpg.Pool] = {}

    async def _get_pool(self) -> asyncpg.Pool:
        loop_id = id(asyncio.get_running_loop())
        if (pool := self._pools.get(loop_id)) is not None:
            return pool

        logger.debug("opening catalog pool to {}", redact_dsn(self.dsn))
        pool = await asyncpg.create_pool(self.dsn)
        self._pools[loop_id] = pool
        return pool

    async def setup(self) -> None:
        try:
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                await conn.execute(SCHEMA_SQL.format(schema=self.schema))
        except _transport_errors as e:
            raise CatalogError(f"failed to set up catalog schema {self.schema}: {e}") from e

    async def get_topic_by_name(self, name: str) -> TopicRecord | None:
        try:
            pool = await self._get_pool()
            row = await pool.fetchrow(f"select id, name from {self.schema}.topic where name = $1", name)
        except _transport_errors as e:
            raise CatalogError(f"failed to look up topic {name}: {e}") from e

        return None if row is None else TopicRecord(id=TopicId(row["id"]), name=row["name"])

    async def get_shard_by_topic_id_and_index(self, topic_id: TopicId, shard_index: ShardIndex) -> ShardRecord | None:
        try:
            pool = await self._get_pool()
            row = await pool.fetchrow(
                f"""
                select id, topic_id, shard_index, min_unpersisted_sequence_number
                from {self.schema}.shard
                where topic_id = $1 and shard_index = $2
                """,
                topic_id,
                shard_index,
            )
        except _transport_errors as e:
            raise CatalogError(f"failed to look up shard {shard_index} of topic {topic_id}: {e}") from e

        return None if row is None else _shard_from_row(row)

    async def create_or_get_topic(self, name: str) -> TopicRecord:
        try:
            pool = await self._get_pool()
            # the no-op update makes `returning` yield the existing row on conflict
            row = await pool.fetchrow(
                f"""
                insert into {self.schema}.topic (name) values ($1)
                on conflict (name) do update set name = excluded.name
                returning id, name
                """,
                name,
            )
        except _transport_errors as e:
            raise CatalogError(f"failed to create topic {name}: {e}") from e

        return TopicRecord(id=TopicId(row["id"]), name=row["name"])

    async def create_or_get_shard(self, topic_id: TopicId, shard_index: ShardIndex) -> ShardRecord:
        try:
            pool = await self._get_pool()
            row = await pool.fetchrow(
                f"""
                insert into {self.schema}.shard (topic_id, shard_index) values ($1, $2)
                on conflict (topic_id, shard_index) do update set shard_index = excluded.shard_index
                returning id, topic_id, shard_index, min_unpersisted_sequence_number
                """,
                topic_id,
                shard_index,
            )
        except asyncpg.ForeignKeyViolationError as e:
            raise CatalogError(f"topic {topic_id} not found") from e
        except _transport_errors as e:
            raise CatalogError(f"failed to create shard {shard_index} of topic {topic_id}: {e}") from e

        return _shard_from_row(row)

    async def close(self) -> None:
        for pool in self._pools.values():
            await pool.close()
        self._pools.clear()


def _shard_from_row(row: asyncpg.Record) -> ShardRecord:
    return ShardRecord(
        id=ShardId(row["id"]),
        topic_id=TopicId(row["topic_id"]),
        shard_index=row["shard_index"],
        min_unpersisted_sequence_number=row["min_unpersisted_sequence_number"],
    )
