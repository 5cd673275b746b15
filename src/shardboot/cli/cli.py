from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from argparse import Namespace
from collections.abc import Callable, Sequence

import loguru
import msgspec

from ..abc.catalog import CatalogProtocol
from ..catalog import catalog_from_dsn
from ..config import CompactorConfig, CompactorTuning, load_config
from ..errors import BackoffError, ConfigError, ResolutionError
from ..retry import BackoffConfig, ExponentialBackoff
from ..util.misc import redact_dsn
from .utils import env_default, import_object

logger = loguru.logger.bind(name="shardboot.cli")

_TRUTHY = ("1", "true", "yes", "on")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shardboot",
        description="shardboot - resolve a compactor's shard id from the catalog before startup",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
every flag can also be set through an environment variable named
SHARDBOOT_<FLAG> (e.g. SHARDBOOT_CATALOG_DSN, SHARDBOOT_SHARD_INDEX).

examples:
  shardboot --catalog-dsn postgresql://user:pass@db/catalog --topic iox-shared --shard-index 1
  shardboot --catalog-dsn redis://localhost:6379 --topic sensors --shard-index 2 --deadline 60
  shardboot --catalog-object myapp.catalog:catalog --topic sensors --shard-index 2
        """,
    )

    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--catalog-dsn",
        default=env_default("CATALOG_DSN"),
        help="catalog connection string: memory://, redis://... or postgresql://...",
    )
    source.add_argument(
        "--catalog-object",
        default=env_default("CATALOG_OBJECT"),
        help="python path to a catalog instance (e g., 'myapp.catalog:catalog')",
    )

    parser.add_argument(
        "--topic",
        default=env_default("TOPIC"),
        required=env_default("TOPIC") is None,
        help="name of the topic the shard belongs to",
    )
    parser.add_argument(
        "--shard-index",
        type=int,
        default=env_default("SHARD_INDEX"),
        required=env_default("SHARD_INDEX") is None,
        help="index of the shard within the topic",
    )

    tuning = parser.add_argument_group("compactor tuning")
    defaults = CompactorTuning()
    for field in msgspec.structs.fields(CompactorTuning):
        flag = field.name.replace("_", "-")
        tuning.add_argument(
            f"--{flag}",
            dest=field.name,
            type=int,
            default=env_default(field.name.upper(), getattr(defaults, field.name)),
            help=f"(default: {getattr(defaults, field.name)})",
        )

    backoff = parser.add_argument_group("catalog backoff")
    schedule = ExponentialBackoff()
    backoff.add_argument(
        "--backoff-init",
        type=float,
        default=env_default("BACKOFF_INIT", schedule.init_backoff),
        help=f"first delay between attempts in seconds (default: {schedule.init_backoff})",
    )
    backoff.add_argument(
        "--backoff-base",
        type=float,
        default=env_default("BACKOFF_BASE", schedule.base),
        help=f"growth factor of the delay (default: {schedule.base})",
    )
    backoff.add_argument(
        "--backoff-max",
        type=float,
        default=env_default("BACKOFF_MAX", schedule.max_backoff),
        help=f"longest delay between attempts in seconds (default: {schedule.max_backoff})",
    )
    backoff.add_argument(
        "--backoff-no-jitter",
        action="store_true",
        default=str(env_default("BACKOFF_NO_JITTER", "")).lower() in _TRUTHY,
        help="disable delay jitter",
    )
    backoff.add_argument(
        "--max-attempts",
        type=int,
        default=env_default("MAX_ATTEMPTS"),
        help="give up after this many attempts per lookup (default: retry forever)",
    )
    backoff.add_argument(
        "--deadline",
        type=float,
        default=env_default("DEADLINE"),
        help="give up a lookup after this many seconds (default: retry forever)",
    )
    backoff.add_argument(
        "--backoff-config",
        default=env_default("BACKOFF_CONFIG"),
        help="json encoded backoff config, overrides the other backoff flags",
    )

    parser.add_argument(
        "--log-level",
        "-l",
        choices=["debug", "info", "warning", "error"],
        default=env_default("LOG_LEVEL", "info"),
        help="log level",
    )

    return parser


def backoff_config_from_args(args: Namespace) -> BackoffConfig:
    if args.backoff_config:
        try:
            return msgspec.json.decode(args.backoff_config, type=BackoffConfig)
        except msgspec.ValidationError as e:
            raise ConfigError(f"invalid backoff config: {e}") from e
        except msgspec.DecodeError as e:
            raise ConfigError(f"backoff config is not valid json: {e}") from e

    return BackoffConfig(
        schedule=ExponentialBackoff(
            init_backoff=args.backoff_init,
            base=args.backoff_base,
            max_backoff=args.backoff_max,
            jitter=not args.backoff_no_jitter,
        ),
        max_attempts=args.max_attempts,
        deadline=args.deadline,
    )


def tuning_from_args(args: Namespace) -> CompactorTuning:
    return CompactorTuning(**{f.name: getattr(args, f.name) for f in msgspec.structs.fields(CompactorTuning)})


def build_catalog(args: Namespace) -> CatalogProtocol:
    if args.catalog_object:
        try:
            return import_object(args.catalog_object)
        except (ImportError, AttributeError, ValueError) as e:
            raise ConfigError(f"failed to import catalog {args.catalog_object}: {e}") from e

    if args.catalog_dsn:
        return catalog_from_dsn(args.catalog_dsn)

    raise ConfigError("one of --catalog-dsn or --catalog-object is required")


def signal_handler(cancel: asyncio.Event, task: asyncio.Task | None) -> Callable[[signal.Signals], None]:
    """first signal cancels the bootstrap gracefully, a second one cancels its task outright"""

    def handle_signal(sig: signal.Signals) -> None:
        if cancel.is_set() and task is not None:
            logger.warning("rcvd signal {} again, cancelling bootstrap task", sig.name)
            task.cancel()
            return

        logger.info("rcvd signal {}, aborting bootstrap...", sig.name)
        cancel.set()

    return handle_signal


async def bootstrap(
    catalog: CatalogProtocol,
    backoff_config: BackoffConfig,
    topic_name: str,
    shard_index: int,
    tuning: CompactorTuning,
) -> CompactorConfig:
    loop = asyncio.get_running_loop()
    cancel = asyncio.Event()
    handle_signal = signal_handler(cancel, asyncio.current_task())

    signals = (signal.SIGINT, signal.SIGTERM)
    for _sig in signals:
        loop.add_signal_handler(_sig, handle_signal, _sig)

    try:
        return await load_config(catalog, backoff_config, topic_name, shard_index, tuning, cancel=cancel)
    finally:
        for _sig in signals:
            loop.remove_signal_handler(_sig)
        await catalog.close()


def main(argv: Sequence[str] | None = None) -> int:
    args: Namespace = build_parser().parse_args(argv)

    loguru.logger.remove()
    loguru.logger.add(sys.stderr, level=args.log_level.upper())

    try:
        backoff_config = backoff_config_from_args(args)
        tuning = tuning_from_args(args)
        catalog = build_catalog(args)
    except ConfigError as e:
        logger.error("invalid configuration: {}", e)
        return 1

    logger.info("catalog: {}", redact_dsn(args.catalog_dsn) if args.catalog_dsn else args.catalog_object)
    logger.info("topic: {}, shard index: {}", args.topic, args.shard_index)

    try:
        config = asyncio.run(bootstrap(catalog, backoff_config, args.topic, args.shard_index, tuning))
    except ResolutionError as e:
        logger.error("cannot start: {}", e)
        return e.exit_code
    except BackoffError as e:
        logger.error("bootstrap aborted: {}", e)
        return 1
    except asyncio.CancelledError:
        logger.error("bootstrap aborted: task cancelled")
        return 1

    sys.stdout.write(msgspec.json.encode(config.to_dict()).decode() + "\n")
    return 0


def cli() -> None:
    sys.exit(main())
