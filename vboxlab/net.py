"""NAT network port forwarding towards guest machines."""

from __future__ import annotations

from loguru import logger

from .connection import Connection
from .lookup import nat_network_exists
from .results import OperationResult
from .service import NATProtocol, PortForwardRule
from .vm.lifecycle import get_machine_ipv4

log = logger


def rule_name(conn: Connection, host_port: int) -> str:
    return f'{conn.cfg.nat.rule_prefix}{host_port}'


def add_port_forward_rule(
    conn: Connection,
    network_name: str,
    host_port: int,
    guest_port: int,
    machine_name: str,
) -> OperationResult:
    """Forward ``host_port`` on every host address to the machine's guest port."""
    ipv4 = get_machine_ipv4(conn, machine_name)
    if ipv4 is None:
        return OperationResult.not_found(f'No IPv4 address known for {machine_name}')
    if not nat_network_exists(conn, network_name):
        return OperationResult.not_found(f'NAT network not found: {network_name}')
    rule = PortForwardRule(
        name=rule_name(conn, host_port),
        protocol=NATProtocol.TCP,
        host_ip=conn.cfg.nat.host_ip,
        host_port=int(host_port),
        guest_ip=ipv4,
        guest_port=int(guest_port),
    )
    conn.service.add_port_forward_rule(network_name, rule)
    log.info('Port forward added on {}: {}', network_name, rule.encode())
    return OperationResult.success(f'Added {rule.name}', value=rule.encode())


def _names_rule(stored: str, prefix: str) -> bool:
    if not stored.startswith(prefix):
        return False
    return not stored[len(prefix) : len(prefix) + 1].isdigit()


def remove_port_forward_rule(conn: Connection, network_name: str, host_port: int) -> int:
    """Remove the forwarding rules created for ``host_port``.

    Stored rules carry protocol and address details after the name, so a
    rule matches when its stored text starts with the rule name and the name
    is not continued by another digit (``ssh22`` never matches ``ssh2222``).
    Returns the number of rules removed.
    """
    if not nat_network_exists(conn, network_name):
        return 0
    prefix = rule_name(conn, host_port)
    removed = 0
    for stored in conn.service.list_port_forward_rules(network_name):
        if _names_rule(stored, prefix):
            name = stored.split(':', 1)[0]
            conn.service.remove_port_forward_rule(network_name, False, name)
            log.info('Port forward removed from {}: {}', network_name, stored)
            removed += 1
    return removed


def list_port_forward_rules(conn: Connection, network_name: str) -> list[str]:
    if not nat_network_exists(conn, network_name):
        return []
    return conn.service.list_port_forward_rules(network_name)
