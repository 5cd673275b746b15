import os
import sys
from collections.abc import Generator
from contextlib import contextmanager
from importlib import import_module
from pathlib import Path
from typing import Any

from loguru import logger


@contextmanager
def add_cwd_in_path() -> Generator[None]:
    """
    @ from github.com/taskiq/taskiq

    adds current directory in python path for the duration of the block,
    so a catalog factory module is importable without installing its project

    :yield none
    """
    cwd = Path.cwd()
    if str(cwd) in sys.path:
        yield
    else:
        logger.debug("inserting {} in sys.path", cwd)
        sys.path.insert(0, str(cwd))
        try:
            yield
        finally:
            try:
                sys.path.remove(str(cwd))
            except ValueError:
                logger.warning("cannot remove '{}' from sys.path", cwd)


def import_object(object_spec: str) -> Any:
    """
    @ from github.com/taskiq/taskiq

    parses a python object spec and imports it

    :param object_spec: string in format like `package.module:variable`
    :raises ValueError: if spec has unknown format
    :returns imported object:
    """
    import_spec = object_spec.split(":")
    if len(import_spec) != 2:
        raise ValueError("you should provide object path in `module:variable` format.")
    with add_cwd_in_path():
        module = import_module(import_spec[0])
    return getattr(module, import_spec[1])


def env_default(name: str, default: Any = None) -> Any:
    return os.environ.get(f"SHARDBOOT_{name}", default)
