"""Name based lookup of machines, snapshots and NAT networks.

The service reports a missing object as a fault. These helpers turn that into
an explicit negative answer so callers only see exceptions for real transport
or service problems.
"""

from __future__ import annotations

from typing import Optional

from .connection import Connection
from .errors import ObjectNotFoundError
from .service import MachineInfo, MachineState, SnapshotInfo


def machine_exists(conn: Connection, machine_name: Optional[str]) -> bool:
    if not machine_name:
        return False
    # find_machine faults on unknown names, so scan the registry instead
    for machine in conn.service.list_machines():
        if machine.name == machine_name:
            return True
    return False


def find_machine(conn: Connection, machine_name: Optional[str]) -> Optional[MachineInfo]:
    if not machine_name:
        return None
    try:
        return conn.service.find_machine(machine_name)
    except ObjectNotFoundError:
        return None


def find_snapshot(
    conn: Connection, machine: MachineInfo, snapshot_name: Optional[str]
) -> Optional[SnapshotInfo]:
    if not snapshot_name:
        return None
    try:
        return conn.service.find_snapshot(machine, snapshot_name)
    except ObjectNotFoundError:
        return None


def snapshot_exists(
    conn: Connection, machine: MachineInfo, snapshot_name: Optional[str]
) -> bool:
    return find_snapshot(conn, machine, snapshot_name) is not None


def nat_network_exists(conn: Connection, network_name: Optional[str]) -> bool:
    if not network_name:
        return False
    for name in conn.service.list_nat_networks():
        if name == network_name:
            return True
    return False


def machines_in_state(conn: Connection, state: MachineState) -> list[MachineInfo]:
    found = []
    for machine in conn.service.list_machines():
        if conn.service.machine_state(machine.name) == state:
            found.append(machine)
    return found


def service_version(conn: Connection) -> str:
    return conn.service.version()
