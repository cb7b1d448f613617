"""CLI commands for the vboxlab config file."""

from __future__ import annotations

import sys

import scriptconfig as scfg

from ..config import VBoxLabConfig, dump_toml, save
from ._common import _BaseCommand, _cfg_path, _load_cfg


class ConfigInitCLI(_BaseCommand):
    """Write a config file with default settings."""

    endpoint = scfg.Value(
        'local', help='Service endpoint: "local" or ssh://user@host[:port].'
    )
    force = scfg.Value(
        False, isflag=True, help='Overwrite an existing config file.'
    )

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        path = _cfg_path(args.config)
        if path.exists() and not args.force:
            print(f'Config already exists: {path}', file=sys.stderr)
            print('Use --force to overwrite it.', file=sys.stderr)
            return 2
        cfg = VBoxLabConfig()
        cfg.service.endpoint = args.endpoint
        save(path, cfg)
        print(f'Wrote config: {path}')
        return 0


class ConfigShowCLI(_BaseCommand):
    """Show the resolved config."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        path = _cfg_path(args.config)
        print(f'# Config: {path}{"" if path.exists() else " (defaults)"}')
        print(dump_toml(_load_cfg(args.config)), end='')
        return 0


class ConfigModalCLI(scfg.ModalCLI):
    """Config file commands."""

    init = ConfigInitCLI
    show = ConfigShowCLI
