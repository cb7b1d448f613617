"""CLI commands for NAT network port forwarding."""

from __future__ import annotations

import scriptconfig as scfg

from ..net import add_port_forward_rule, remove_port_forward_rule
from ..status import render_rules
from ._common import _BaseCommand, _connect, _report


class NetForwardCLI(_BaseCommand):
    """Forward a host port to a guest port of a machine."""

    network = scfg.Value('', position=1, help='NAT network name.')
    vm = scfg.Value('', help='Machine that receives the traffic.')
    host_port = scfg.Value(2222, type=int, help='Port on the host.')
    guest_port = scfg.Value(22, type=int, help='Port inside the guest.')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        conn = _connect(args.config)
        return _report(
            add_port_forward_rule(
                conn, args.network, args.host_port, args.guest_port, args.vm
            )
        )


class NetUnforwardCLI(_BaseCommand):
    """Remove the forwarding rules created for a host port."""

    network = scfg.Value('', position=1, help='NAT network name.')
    host_port = scfg.Value(2222, type=int, help='Port on the host.')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        conn = _connect(args.config)
        removed = remove_port_forward_rule(conn, args.network, args.host_port)
        print(f'Removed {removed} rule(s) from {args.network}')
        return 0


class NetRulesCLI(_BaseCommand):
    """List the IPv4 port forwarding rules of a NAT network."""

    network = scfg.Value('', position=1, help='NAT network name.')

    @classmethod
    def main(cls, argv=True, **kwargs):
        args = cls.cli(argv=argv, data=kwargs)
        print(render_rules(_connect(args.config), args.network))
        return 0


class NetModalCLI(scfg.ModalCLI):
    """NAT network subcommands."""

    forward = NetForwardCLI
    unforward = NetUnforwardCLI
    rules = NetRulesCLI
