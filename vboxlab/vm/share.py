"""Shared folder configuration for registered machines."""

from __future__ import annotations

from loguru import logger

from ..connection import Connection
from ..lookup import machine_exists
from ..results import OperationResult
from ..service import LockType
from ..session import locked_session

log = logger


def add_shared_directory(
    conn: Connection, machine_name: str, dir_name: str, host_path: str
) -> OperationResult:
    """Add a writable, automounted shared folder to ``machine_name``.

    Adding the same ``dir_name`` twice is left for the service to reject.
    """
    if not machine_exists(conn, machine_name):
        return OperationResult.not_found(f'Machine not found: {machine_name}')
    service = conn.service
    machine = service.find_machine(machine_name)
    with locked_session(conn, machine, LockType.WRITE) as session:
        service.create_shared_folder(
            session, dir_name, host_path, writable=True, automount=True
        )
        service.save_settings(machine)
    log.info('Shared folder {} -> {} added to {}', dir_name, host_path, machine_name)
    return OperationResult.success(f'Shared {host_path} as {dir_name}')
