"""Rendering of machine and NAT network status for the CLI."""

from __future__ import annotations

from .connection import Connection
from .lookup import find_machine
from .net import list_port_forward_rules
from .service import SessionState, is_online, is_transient
from .vm import get_machine_ipv4


def status_line(ok: bool | None, label: str, detail: str = '') -> str:
    icon = '✅' if ok is True else ('➖' if ok is None else '❌')
    suffix = f' - {detail}' if detail else ''
    return f'{icon} {label}{suffix}'


def render_machine_list(conn: Connection) -> str:
    lines = ['Registered machines']
    machines = conn.service.list_machines()
    if not machines:
        lines.append('  (none)')
    for machine in sorted(machines, key=lambda m: m.name):
        state = conn.service.machine_state(machine.name)
        lines.append(f'  - {machine.name} | state={state.name.lower()}')
    return '\n'.join(lines)


def render_machine_status(conn: Connection, machine_name: str) -> str:
    machine = find_machine(conn, machine_name)
    if machine is None:
        return status_line(False, f'Machine {machine_name}', 'not registered')
    lines = [status_line(True, f'Machine {machine.name}', 'registered')]
    if is_online(machine.state):
        detail = 'online'
    elif is_transient(machine.state):
        detail = 'transitioning'
    else:
        detail = 'offline'
    lines.append(
        status_line(
            is_online(machine.state),
            'State',
            f'{machine.state.name.lower()} ({detail})',
        )
    )
    unlocked = machine.session_state == SessionState.UNLOCKED
    lines.append(
        status_line(
            None if unlocked else True,
            'Session',
            machine.session_state.name.lower(),
        )
    )
    if machine.os_type:
        lines.append(status_line(None, 'OS type', machine.os_type))
    ipv4 = get_machine_ipv4(conn, machine.name) if is_online(machine.state) else None
    lines.append(
        status_line(
            ipv4 is not None if is_online(machine.state) else None,
            'Guest IPv4',
            ipv4 or 'not reported',
        )
    )
    return '\n'.join(lines)


def render_rules(conn: Connection, network_name: str) -> str:
    rules = list_port_forward_rules(conn, network_name)
    lines = [f'Port forwarding rules on {network_name}']
    if not rules:
        lines.append('  (none)')
    for rule in rules:
        lines.append(f'  - {rule}')
    return '\n'.join(lines)
