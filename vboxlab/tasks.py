"""Blocking wait on asynchronous hypervisor tasks."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from .connection import Connection
from .service import Progress

log = logger


@dataclass(frozen=True)
class TaskOutcome:
    ok: bool
    result_code: int
    error_text: str = ''
    description: str = ''


def wait_for_task(conn: Connection, progress: Progress, what: str = '') -> TaskOutcome:
    """Block until ``progress`` completes and report how it ended.

    A failed task is logged with the service's own error text and returned,
    never raised. Only faults raised by the service while waiting propagate.
    The handle stays available as ``conn.last_progress``.

    Known result codes when launching a machine process:

    * E_UNEXPECTED: virtual machine not registered
    * E_INVALIDARG: invalid session type
    * VBOX_E_OBJECT_NOT_FOUND: no machine matching the id found
    * VBOX_E_INVALID_OBJECT_STATE: session already open or being opened
    * VBOX_E_IPRT_ERROR: launching the process for the machine failed
    * VBOX_E_VM_ERROR: failed to assign the machine to the session
    """
    conn.last_progress = progress
    description = what or getattr(progress, 'description', '')
    log.debug('Waiting for task: {}', description)
    progress.wait_for_completion(-1)
    code = progress.result_code
    if code != 0:
        error_text = progress.error_text
        log.error('Operation failed: {}', error_text)
        return TaskOutcome(False, code, error_text, description)
    return TaskOutcome(True, code, '', description)
