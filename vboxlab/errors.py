"""Project-specific exception types."""

from __future__ import annotations

from typing import Optional

from .util import CmdResult


class VBoxLabError(RuntimeError):
    """Base error for domain-level vboxlab failures."""


class ObjectNotFoundError(VBoxLabError):
    """Raised by a hypervisor service when a named object does not exist."""


class SessionFaultError(VBoxLabError):
    """Raised when a machine cannot be locked or is in the wrong session state."""


class TransportFaultError(VBoxLabError):
    """Raised when the hypervisor service is unreachable or answers with an
    unexpected fault."""

    def __init__(self, message: str, result: Optional[CmdResult] = None):
        self.result = result
        super().__init__(message)
