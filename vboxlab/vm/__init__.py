"""VM operation exports for lifecycle and share helpers."""

from __future__ import annotations

from .lifecycle import (
    cleanup_vm,
    clone_from_seed,
    get_machine_ipv4,
    launch_machine,
    shutdown_machine,
    wait_for_ipv4,
)
from .share import add_shared_directory

__all__ = [
    'add_shared_directory',
    'cleanup_vm',
    'clone_from_seed',
    'get_machine_ipv4',
    'launch_machine',
    'shutdown_machine',
    'wait_for_ipv4',
]
