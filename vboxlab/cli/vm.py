"""CLI commands for machine lifecycle operations."""

from __future__ import annotations

import scriptconfig as scfg

from ..lookup import machine_exists
from ..status import render_machine_list, render_machine_status
from ..vm import (
    add_shared_directory,
    cleanup_vm,
    clone_from_seed,
    get_machine_ipv4,
    launch_machine,
    shutdown_machine,
)
from ._common import _BaseCommand, _connect, _report


class VMListCLI(_BaseCommand):
    """List registered machines and their states."""

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        print(render_machine_list(_connect(args.config)))
        return 0


class VMStatusCLI(_BaseCommand):
    """Show state, session and guest address of one machine."""

    vm = scfg.Value('', position=1, help='Machine name.')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        print(render_machine_status(_connect(args.config), args.vm))
        return 0


class VMCloneCLI(_BaseCommand):
    """Create a linked clone of a seed machine snapshot."""

    seed = scfg.Value('', help='Seed machine to clone from.')
    snapshot = scfg.Value('', help='Snapshot of the seed machine.')
    vm = scfg.Value('', position=1, help='Name of the new machine.')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        conn = _connect(args.config)
        return _report(clone_from_seed(conn, args.seed, args.snapshot, args.vm))


class VMShareCLI(_BaseCommand):
    """Add a writable, automounted shared folder to a machine."""

    vm = scfg.Value('', position=1, help='Machine name.')
    share = scfg.Value('', help='Shared folder name seen by the guest.')
    host_path = scfg.Value('', help='Host directory to share.')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        conn = _connect(args.config)
        return _report(
            add_shared_directory(conn, args.vm, args.share, args.host_path)
        )


class VMLaunchCLI(_BaseCommand):
    """Start a machine and wait until it reports an IPv4 address."""

    vm = scfg.Value('', position=1, help='Machine name.')
    mode = scfg.Value(
        'headless',
        choices=['gui', 'headless', 'sdl'],
        help='Front-end to start the machine under.',
    )
    max_attempts = scfg.Value(
        None,
        type=int,
        help='Give up after this many address polls (default: from config).',
    )

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        max_attempts = None if args.max_attempts is None else int(args.max_attempts)
        return _report(
            launch_machine(
                _connect(args.config),
                args.vm,
                args.mode,
                max_attempts=max_attempts,
            )
        )


class VMIPCLI(_BaseCommand):
    """Print the guest-reported IPv4 address of a machine."""

    vm = scfg.Value('', position=1, help='Machine name.')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        conn = _connect(args.config)
        ipv4 = get_machine_ipv4(conn, args.vm)
        if ipv4 is None:
            if not machine_exists(conn, args.vm):
                print(f'Machine not found: {args.vm}')
            else:
                print(f'No IPv4 address reported by {args.vm}')
            return 1
        print(ipv4)
        return 0


class VMShutdownCLI(_BaseCommand):
    """Power a machine down and keep it registered."""

    vm = scfg.Value('', position=1, help='Machine name.')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        return _report(shutdown_machine(_connect(args.config), args.vm))


class VMCleanupCLI(_BaseCommand):
    """Power down, unregister and delete a machine and its hard disks."""

    vm = scfg.Value('', position=1, help='Machine name.')
    yes = scfg.Value(
        False, isflag=True, help='Confirm the irreversible deletion.'
    )

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        if not args.yes:
            print(f'Refusing to delete {args.vm} without --yes')
            return 2
        return _report(cleanup_vm(_connect(args.config), args.vm))


class VMModalCLI(scfg.ModalCLI):
    """Machine lifecycle subcommands."""

    list = VMListCLI
    status = VMStatusCLI
    clone = VMCloneCLI
    share = VMShareCLI
    launch = VMLaunchCLI
    ip = VMIPCLI
    shutdown = VMShutdownCLI
    cleanup = VMCleanupCLI
