from __future__ import annotations

from collections.abc import Awaitable, Coroutine
from inspect import iscoroutine
from types import CoroutineType
from typing import Any, TypeVar, cast
from urllib.parse import urlsplit, urlunsplit

T = TypeVar("T")


async def await_if_async(
    arg: T | Awaitable[T] | Coroutine[Any, Any, T] | CoroutineType[Any, Any, T],
) -> T:
    return cast(T, await arg) if iscoroutine(arg) else cast(T, arg)


def redact_dsn(dsn: str) -> str:
    parts = urlsplit(dsn)
    if parts.password is None:
        return dsn

    netloc = parts.netloc.replace(f":{parts.password}@", ":***@", 1)
    return urlunsplit(parts._replace(netloc=netloc))
