from __future__ import annotations

from collections.abc import Generator

import pytest
from testcontainers.postgres import PostgresContainer
from testcontainers.redis import RedisContainer

from shardboot.catalog.memory import InMemoryCatalog
from shardboot.retry import BackoffConfig, FixedDelayBackoff

from .custom_types import FakeClock


@pytest.fixture(scope="session")
def redis_container() -> Generator[RedisContainer]:
	with RedisContainer("redis:8-alpine") as container:
		yield container


@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer]:
	with PostgresContainer("postgres:18-alpine") as container:
		yield container


@pytest.fixture
def memory_catalog():
	return InMemoryCatalog()


@pytest.fixture
def clock():
	return FakeClock()


@pytest.fixture
def fixed_backoff():
	return BackoffConfig(schedule=FixedDelayBackoff(delay=0.5))
