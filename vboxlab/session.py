"""Machine lock guard that only returns once the lock is observably released."""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from loguru import logger

from .connection import Connection
from .errors import SessionFaultError
from .service import LockType, MachineInfo, Session, SessionState

log = logger

T = TypeVar('T')


def wait_to_unlock(conn: Connection, session: Session, machine_name: str) -> None:
    """Release ``session`` and poll until the machine reports it unlocked.

    A KeyboardInterrupt arriving while sleeping between polls does not abandon
    the wait; it is re-raised after the unlock has been observed.
    """
    service = conn.service
    interval = conn.cfg.poll.unlock_interval_s
    max_polls = conn.cfg.poll.unlock_max_polls
    service.unlock_machine(session)
    interrupted = False
    polls = 0
    state = service.session_state(machine_name)
    while state != SessionState.UNLOCKED:
        if max_polls and polls >= max_polls:
            raise SessionFaultError(
                f'Machine {machine_name} still reports session state '
                f'{state.name} after {polls} polls'
            )
        log.info(
            'Waiting for session unlock...[{}][{}]', state.name, machine_name
        )
        try:
            time.sleep(interval)
        except KeyboardInterrupt:
            log.warning('Interrupted while waiting for session to be unlocked')
            interrupted = True
        polls += 1
        state = service.session_state(machine_name)
    if interrupted:
        raise KeyboardInterrupt


@contextmanager
def locked_session(
    conn: Connection, machine: MachineInfo | str, lock_type: LockType
) -> Iterator[Session]:
    if isinstance(machine, str):
        machine = conn.service.find_machine(machine)
    session = conn.new_session()
    conn.service.lock_machine(session, machine, lock_type)
    log.debug('Locked {} ({})', machine.name, lock_type.name)
    try:
        yield session
    finally:
        wait_to_unlock(conn, session, machine.name)


def with_lock(
    conn: Connection,
    machine: MachineInfo | str,
    lock_type: LockType,
    body: Callable[[Session], T],
) -> T:
    with locked_session(conn, machine, lock_type) as session:
        return body(session)
