"""Runtime helpers for constructing VBoxManage and SSH command arguments."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlparse

from .config import ServiceConfig
from .errors import VBoxLabError
from .util import shell_join

LOCAL_ENDPOINTS = {'', 'local', 'localhost'}


@dataclass(frozen=True)
class Endpoint:
    kind: str
    host: str = ''
    user: str = ''
    port: int | None = None

    @property
    def is_local(self) -> bool:
        return self.kind == 'local'

    @property
    def destination(self) -> str:
        return f'{self.user}@{self.host}' if self.user else self.host


def parse_endpoint(endpoint: str) -> Endpoint:
    text = (endpoint or '').strip()
    if text.lower() in LOCAL_ENDPOINTS:
        return Endpoint('local')
    parsed = urlparse(text)
    if parsed.scheme != 'ssh' or not parsed.hostname:
        raise VBoxLabError(
            f'Unsupported service endpoint {endpoint!r}; '
            'use "local" or ssh://user@host[:port].'
        )
    return Endpoint(
        'ssh',
        host=parsed.hostname,
        user=parsed.username or '',
        port=parsed.port,
    )


def ssh_base_args(
    ident: str,
    *,
    strict_host_key_checking: str = 'accept-new',
    connect_timeout: int | None = None,
    batch_mode: bool = True,
    port: int | None = None,
) -> list[str]:
    args: list[str] = []
    if batch_mode:
        args.extend(['-o', 'BatchMode=yes'])
    if connect_timeout is not None:
        args.extend(['-o', f'ConnectTimeout={connect_timeout}'])
    args.extend(['-o', f'StrictHostKeyChecking={strict_host_key_checking}'])
    if port is not None:
        args.extend(['-p', str(port)])
    if ident:
        args.extend(['-i', ident])
    return args


def vboxmanage_cmd(cfg: ServiceConfig, *args: str) -> list[str]:
    endpoint = parse_endpoint(cfg.endpoint)
    cmd = [cfg.vboxmanage or 'VBoxManage', *args]
    if endpoint.is_local:
        return cmd
    return [
        'ssh',
        *ssh_base_args(
            cfg.ssh_identity_file, connect_timeout=10, port=endpoint.port
        ),
        endpoint.destination,
        shell_join(cmd),
    ]
