from .misc import await_if_async, redact_dsn

__all__ = [
    "await_if_async",
    "redact_dsn",
]
