"""Process-wide connection to the hypervisor service."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from .config import VBoxLabConfig
from .errors import TransportFaultError, VBoxLabError
from .service import HypervisorService, Progress, Session

log = logger

_CONNECTION: Optional['Connection'] = None
_CONNECTION_LOCK = threading.Lock()


@dataclass
class Connection:
    service: HypervisorService
    cfg: VBoxLabConfig
    # most recent task handed to the task waiter
    last_progress: Optional[Progress] = None

    def new_session(self) -> Session:
        return self.service.open_session()


def _default_service(cfg: VBoxLabConfig) -> HypervisorService:
    from .backends import VBoxManageService

    return VBoxManageService(cfg.service)


def connect(
    cfg: VBoxLabConfig, service: Optional[HypervisorService] = None
) -> Connection:
    """Establish the process-wide connection, or return the existing one."""
    global _CONNECTION
    with _CONNECTION_LOCK:
        if _CONNECTION is not None:
            return _CONNECTION
        cfg = cfg.expanded_paths()
        if service is None:
            service = _default_service(cfg)
            credentials = {'identity_file': cfg.service.ssh_identity_file}
            try:
                service.connect(cfg.service.endpoint, credentials)
            except TransportFaultError:
                log.error(
                    'Could not connect to hypervisor service at {}',
                    cfg.service.endpoint,
                )
                raise
        _CONNECTION = Connection(service=service, cfg=cfg)
        log.debug('Hypervisor connection established ({})', cfg.service.endpoint)
        return _CONNECTION


def get_connection() -> Connection:
    if _CONNECTION is None:
        raise VBoxLabError('Hypervisor connection has not been established')
    return _CONNECTION


def reset_connection() -> None:
    global _CONNECTION
    with _CONNECTION_LOCK:
        _CONNECTION = None
