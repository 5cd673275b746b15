from __future__ import annotations

from urllib.parse import urlsplit

from ..abc.catalog import CatalogProtocol
from ..errors import ConfigError
from .memory import InMemoryCatalog
from .postgres import PostgresCatalog
from .redis import RedisCatalog


def catalog_from_dsn(dsn: str) -> CatalogProtocol:
    scheme = urlsplit(dsn).scheme
    match scheme:
        case "memory":
            return InMemoryCatalog()
        case "redis" | "rediss" | "unix":
            return RedisCatalog(redis_url=dsn)
        case "postgres" | "postgresql":
            return PostgresCatalog(dsn=dsn)
        case _:
            raise ConfigError(f"unsupported catalog dsn scheme: {scheme!r}")


__all__ = [
    "InMemoryCatalog",
    "PostgresCatalog",
    "RedisCatalog",
    "catalog_from_dsn",
]
