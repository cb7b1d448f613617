"""VM lifecycle orchestration: clone, launch, address discovery and teardown."""

from __future__ import annotations

import time
from typing import Optional

from loguru import logger

from ..connection import Connection
from ..locks import KeyedLock
from ..lookup import find_snapshot, machine_exists
from ..results import OperationResult
from ..service import (
    CleanupMode,
    CloneMode,
    CloneOption,
    LaunchMode,
    LockType,
    MachineInfo,
    is_online,
)
from ..session import locked_session
from ..tasks import wait_for_task

log = logger

# Teardown is serialized per machine name across threads of this process.
_TEARDOWN_LOCKS = KeyedLock()


def _rollback_container(conn: Connection, container: MachineInfo) -> bool:
    log.warning('Removing partially created machine {}', container.name)
    outcome = wait_for_task(
        conn,
        conn.service.delete_config(container, []),
        what=f'remove {container.name}',
    )
    return outcome.ok


def clone_from_seed(
    conn: Connection, seed_name: str, snapshot_name: str, machine_name: str
) -> OperationResult:
    """Create ``machine_name`` as a linked clone of a seed machine snapshot."""
    if not machine_exists(conn, seed_name):
        return OperationResult.not_found(f'Seed machine not found: {seed_name}')
    seed = conn.service.find_machine(seed_name)
    snapshot = find_snapshot(conn, seed, snapshot_name)
    if snapshot is None:
        return OperationResult.not_found(
            f'Snapshot {snapshot_name!r} not found on seed {seed_name}'
        )
    service = conn.service
    cfg = conn.cfg.clone
    log.info(
        'Cloning {} from {}@{} (link={})',
        machine_name,
        seed_name,
        snapshot_name,
        cfg.link,
    )
    container = service.create_machine(seed.os_type, machine_name, cfg.create_flags)
    options = [CloneOption.LINK] if cfg.link else []
    outcome = wait_for_task(
        conn,
        service.clone_to(snapshot, container, CloneMode.MACHINE_STATE, options),
        what=f'clone {seed_name}@{snapshot_name} -> {machine_name}',
    )
    if not outcome.ok:
        compensated = False
        if cfg.rollback_on_failure:
            compensated = _rollback_container(conn, container)
        return OperationResult.failed(
            f'Clone of {machine_name} failed: {outcome.error_text}',
            stage='clone',
            compensated=compensated,
        )
    service.save_settings(container)
    try:
        service.register_machine(container)
    except Exception:
        if cfg.rollback_on_failure:
            _rollback_container(conn, container)
        raise
    log.info('Machine cloned: {}', machine_name)
    return OperationResult.success(f'Cloned {machine_name}', value=machine_name)


def get_machine_ipv4(conn: Connection, machine_name: str) -> Optional[str]:
    """Return the guest-reported primary IPv4 address, if there is one yet."""
    if not machine_exists(conn, machine_name):
        return None
    machine = conn.service.find_machine(machine_name)
    marker = conn.cfg.guest.ip_property_marker
    prefix = conn.cfg.guest.ip_prefix
    props = conn.service.enumerate_guest_properties(machine)
    for key, value in zip(props.keys, props.values):
        if marker in key and value.startswith(prefix):
            return value
    return None


def wait_for_ipv4(
    conn: Connection, machine_name: str, max_attempts: Optional[int] = None
) -> Optional[str]:
    """Poll the guest properties until an IPv4 address shows up.

    ``max_attempts`` overrides ``poll.ip_max_attempts`` for this call; 0 polls
    until an address appears. A KeyboardInterrupt during a sleep does not end
    the wait: polling carries on and the interrupt is re-raised once an
    address is found or the attempts run out.
    """
    interval = conn.cfg.poll.ip_interval_s
    if max_attempts is None:
        max_attempts = conn.cfg.poll.ip_max_attempts
    interrupted = False
    attempts = 0
    ipv4 = None
    while not max_attempts or attempts < max_attempts:
        try:
            time.sleep(interval)
        except KeyboardInterrupt:
            log.warning(
                'Interrupted while waiting for {} to report an address',
                machine_name,
            )
            interrupted = True
        attempts += 1
        ipv4 = get_machine_ipv4(conn, machine_name)
        if ipv4 is not None:
            log.info('Machine {} reports IPv4 {}', machine_name, ipv4)
            break
        log.debug('No IPv4 yet for {} (attempt {})', machine_name, attempts)
    if interrupted:
        raise KeyboardInterrupt
    return ipv4


def launch_machine(
    conn: Connection,
    machine_name: str,
    mode: LaunchMode | str = LaunchMode.HEADLESS,
    env: Optional[dict[str, str]] = None,
    max_attempts: Optional[int] = None,
) -> OperationResult:
    """Start a machine and block until the guest reports an IPv4 address.

    With the default ``poll.ip_max_attempts = 0`` the address poll never
    gives up; callers that need a deadline configure one or pass
    ``max_attempts``.
    """
    if not machine_exists(conn, machine_name):
        return OperationResult.not_found(f'Machine not found: {machine_name}')
    mode = LaunchMode(mode)
    service = conn.service
    machine = service.find_machine(machine_name)
    session = conn.new_session()
    log.info('Launching {} ({})', machine_name, mode.value)
    try:
        outcome = wait_for_task(
            conn,
            service.launch_process(session, machine, mode.value, env),
            what=f'launch {machine_name}',
        )
    finally:
        service.unlock_machine(session)
    if not outcome.ok:
        return OperationResult.failed(
            f'Launch of {machine_name} failed: {outcome.error_text}',
            stage='launch',
        )
    if max_attempts is None:
        max_attempts = conn.cfg.poll.ip_max_attempts
    ipv4 = wait_for_ipv4(conn, machine_name, max_attempts)
    if ipv4 is None:
        return OperationResult.timeout(
            f'No IPv4 address reported by {machine_name} after '
            f'{max_attempts} attempts'
        )
    return OperationResult.success(f'Launched {machine_name}', value=ipv4)


def _power_down_if_online(conn: Connection, machine: MachineInfo) -> None:
    state = machine.state
    with locked_session(conn, machine, LockType.SHARED) as session:
        if is_online(state):
            log.info('Powering down {} (state={})', machine.name, state.name)
            wait_for_task(
                conn,
                conn.service.power_down(session),
                what=f'power down {machine.name}',
            )


def shutdown_machine(conn: Connection, machine_name: str) -> OperationResult:
    """Power a machine down, leaving it registered."""
    if not machine_exists(conn, machine_name):
        return OperationResult.not_found(f'Machine not found: {machine_name}')
    machine = conn.service.find_machine(machine_name)
    _power_down_if_online(conn, machine)
    return OperationResult.success(f'{machine_name} is powered down')


def cleanup_vm(conn: Connection, machine_name: str) -> OperationResult:
    """Power down, unregister and delete a machine with its hard disks.

    This cannot be undone.
    """
    with _TEARDOWN_LOCKS.hold(machine_name):
        if not machine_exists(conn, machine_name):
            return OperationResult.not_found(f'Machine not found: {machine_name}')
        service = conn.service
        machine = service.find_machine(machine_name)
        _power_down_if_online(conn, machine)
        log.warning('Deleting machine {}', machine_name)
        media = service.unregister_machine(
            machine, CleanupMode.DETACH_ALL_RETURN_HARD_DISKS_ONLY
        )
        outcome = wait_for_task(
            conn,
            service.delete_config(machine, media),
            what=f'delete {machine_name}',
        )
    if not outcome.ok:
        return OperationResult.failed(
            f'Deleting {machine_name} failed: {outcome.error_text}',
            stage='delete',
        )
    return OperationResult.success(f'Deleted {machine_name}')
