"""Configuration dataclasses and TOML persistence."""

from __future__ import annotations

import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path

import ubelt as ub

from .util import expand

DEFAULT_IP_PROPERTY_MARKER = 'GuestInfo/Net/0/V4/IP'


@dataclass
class ServiceConfig:
    # "local" or ssh://user@host[:port]
    endpoint: str = 'local'
    vboxmanage: str = 'VBoxManage'
    ssh_identity_file: str = ''


@dataclass
class PollConfig:
    ip_interval_s: float = 3.0
    # 0 keeps polling until an address shows up
    ip_max_attempts: int = 0
    unlock_interval_s: float = 1.0
    # 0 keeps polling until the session is unlocked
    unlock_max_polls: int = 0


@dataclass
class GuestConfig:
    ip_property_marker: str = DEFAULT_IP_PROPERTY_MARKER
    ip_prefix: str = '10.0'


@dataclass
class NatConfig:
    rule_prefix: str = 'ssh'
    host_ip: str = '0.0.0.0'


@dataclass
class CloneConfig:
    link: bool = True
    create_flags: str = 'forceOverwrite=1'
    rollback_on_failure: bool = False


@dataclass
class VBoxLabConfig:
    service: ServiceConfig = field(default_factory=ServiceConfig)
    poll: PollConfig = field(default_factory=PollConfig)
    guest: GuestConfig = field(default_factory=GuestConfig)
    nat: NatConfig = field(default_factory=NatConfig)
    clone: CloneConfig = field(default_factory=CloneConfig)
    verbosity: int = 1

    def expanded_paths(self) -> 'VBoxLabConfig':
        self.service.ssh_identity_file = (
            expand(self.service.ssh_identity_file)
            if self.service.ssh_identity_file
            else ''
        )
        self.service.vboxmanage = expand(self.service.vboxmanage)
        return self


SECTIONS = ('service', 'poll', 'guest', 'nat', 'clone')


def default_config_path() -> Path:
    root = ub.Path.appdir('vboxlab', type='config').ensuredir()
    return Path(root) / 'config.toml'


def _toml_escape(s: str) -> str:
    return s.replace('\\', '\\\\').replace('"', '\\"')


def dump_toml(cfg: VBoxLabConfig) -> str:
    d = asdict(cfg)
    lines: list[str] = []
    # top-level keys must precede the first table
    if d.get('verbosity', 1) != 1:
        lines.append(f'verbosity = {d["verbosity"]}')
        lines.append('')
    for section, body in d.items():
        if isinstance(body, dict):
            lines.append(f'[{section}]')
            for k, v in body.items():
                if isinstance(v, bool):
                    lines.append(f'{k} = {"true" if v else "false"}')
                elif isinstance(v, (int, float)):
                    lines.append(f'{k} = {v}')
                elif isinstance(v, list):
                    parts = [f'"{_toml_escape(str(item))}"' for item in v]
                    lines.append(f'{k} = [{", ".join(parts)}]')
                else:
                    lines.append(f'{k} = "{_toml_escape(str(v))}"')
            lines.append('')
    return '\n'.join(lines).rstrip() + '\n'


def loads(text: str) -> VBoxLabConfig:
    raw = tomllib.loads(text)
    cfg = VBoxLabConfig()
    for section in SECTIONS:
        body = raw.get(section, None)
        if isinstance(body, dict):
            obj = getattr(cfg, section)
            for k, v in body.items():
                if hasattr(obj, k):
                    setattr(obj, k, v)
    if 'verbosity' in raw:
        cfg.verbosity = int(raw['verbosity'])
    return cfg


def load(path: Path) -> VBoxLabConfig:
    return loads(path.read_text(encoding='utf-8'))


def save(path: Path, cfg: VBoxLabConfig) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dump_toml(cfg), encoding='utf-8')
