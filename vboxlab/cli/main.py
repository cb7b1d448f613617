"""Top-level modal CLI wiring and logging setup."""

from __future__ import annotations

import os
import sys

import scriptconfig as scfg
from loguru import logger

from ..lookup import service_version
from ._common import _BaseCommand, _cfg_path, _connect, _load_cfg, log
from .config import ConfigModalCLI
from .net import NetModalCLI
from .vm import VMModalCLI

LOG_FORMAT = (
    '<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | '
    '<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>'
)


class VersionCLI(_BaseCommand):
    """Print the version reported by the hypervisor service."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        print(service_version(_connect(args.config)))
        return 0


class VBoxLabModalCLI(scfg.ModalCLI):
    """Clone, launch, network and tear down VirtualBox machines."""

    config = ConfigModalCLI
    vm = VMModalCLI
    net = NetModalCLI
    version = VersionCLI


def main(argv: list[str] | None = None) -> None:
    argv = list(sys.argv[1:] if argv is None else argv)
    _setup_logging(_count_verbose(argv), _configured_verbosity(argv))
    try:
        rc = VBoxLabModalCLI.main(argv=argv, _noexit=True)
    except Exception as ex:
        log.debug('Command raised {!r}', ex)
        print(f'ERROR: {ex}', file=sys.stderr)
        sys.exit(2)
    if '-h' in argv or '--help' in argv:
        sys.exit(0)
    sys.exit(rc if isinstance(rc, int) else 0)


def _config_arg(argv: list[str]) -> str | None:
    for idx, item in enumerate(argv):
        if item.startswith('--config='):
            return item.split('=', 1)[1]
        if item == '--config' and idx + 1 < len(argv):
            return argv[idx + 1]
    return None


def _configured_verbosity(argv: list[str]) -> int:
    config_value = _config_arg(argv)
    if config_value is None and not _cfg_path(None).exists():
        return 1
    try:
        return _load_cfg(config_value).verbosity
    except Exception as ex:
        # a broken config is reported by the command itself
        print(f'WARNING: could not read config: {ex}', file=sys.stderr)
        return 1


def _log_level(verbosity: int) -> str:
    if verbosity >= 2:
        return 'DEBUG'
    if verbosity == 1:
        return 'INFO'
    return 'WARNING'


def _setup_logging(args_verbose: int, cfg_verbosity: int) -> None:
    verbosity = args_verbose if args_verbose > 0 else cfg_verbosity
    level = _log_level(verbosity)
    colorize = sys.stderr.isatty() and os.getenv('NO_COLOR') is None
    logger.remove()
    logger.add(sys.stderr, level=level, colorize=colorize, format=LOG_FORMAT)
    log.debug('Log level {} (verbosity={})', level, verbosity)


def _count_verbose(argv: list[str]) -> int:
    count = 0
    for item in argv:
        if item == '--verbose':
            count += 1
        elif item.startswith('-') and not item.startswith('--'):
            flags = item[1:]
            if flags and set(flags) <= {'v'}:
                count += len(flags)
    return count
