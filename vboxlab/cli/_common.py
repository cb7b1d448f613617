from __future__ import annotations

from pathlib import Path

import scriptconfig as scfg
from loguru import logger

from ..config import VBoxLabConfig, default_config_path, load
from ..connection import Connection, connect
from ..results import OperationResult

log = logger


class _BaseCommand(scfg.DataConfig):
    """Base options shared by all commands."""

    config = scfg.Value(
        None, help='Path to config TOML (default: per-user config dir).'
    )
    verbose = scfg.Value(
        0,
        short_alias=['v'],
        isflag='counter',
        help='Increase verbosity (-v, -vv).',
    )


def _cfg_path(p: str | None) -> Path:
    if p:
        return Path(p).expanduser().resolve()
    return default_config_path()


def _load_cfg(config_path: str | None) -> VBoxLabConfig:
    path = _cfg_path(config_path)
    if not path.exists():
        log.debug('No config at {}; using defaults', path)
        return VBoxLabConfig()
    return load(path)


def _connect(config_path: str | None) -> Connection:
    return connect(_load_cfg(config_path))


def _report(result: OperationResult) -> int:
    if result:
        print(result.value or result.detail)
        return 0
    kind = result.kind.value if result.kind is not None else 'failed'
    stage = f' stage={result.stage}' if result.stage else ''
    print(f'FAILED [{kind}{stage}]: {result.detail}')
    return 1
