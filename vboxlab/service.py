"""Capability interface of the hypervisor management service.

The orchestration code never talks to VirtualBox directly. Everything goes
through an object implementing :class:`HypervisorService`; the values it
returns are plain snapshots of remote state taken at call time, so nothing
here should be cached across calls.

Machine state machine (VirtualBox numbering)::

    +---------[power_down] <- STUCK <--[failure]-+
    V                                            |
    +-> POWERED_OFF --+-->[power_up]--> STARTING --+      +-----[resume]-----+
    |                 |                            |      V                  |
    |   ABORTED ------+                            +--> RUNNING --[pause]--> PAUSED
    |                                              |      | |
    |   SAVED ------------[power_up]--> RESTORING -+      | +--[take_snapshot]--> ONLINE_SNAPSHOTTING
    |     ^                                               |
    |     +----------- SAVING <-------[save_state]--------+
    |                                                     |
    +------------- STOPPING <-------[power_down]----------+
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence


class MachineState(enum.IntEnum):
    NULL = 0
    POWERED_OFF = 1
    SAVED = 2
    TELEPORTED = 3
    ABORTED = 4
    RUNNING = 5
    PAUSED = 6
    STUCK = 7
    TELEPORTING = 8
    LIVE_SNAPSHOTTING = 9
    STARTING = 10
    STOPPING = 11
    SAVING = 12
    RESTORING = 13
    TELEPORTING_PAUSED_VM = 14
    TELEPORTING_IN = 15
    FAULT_TOLERANT_SYNCING = 16
    DELETING_SNAPSHOT_ONLINE = 17
    DELETING_SNAPSHOT_PAUSED = 18
    ONLINE_SNAPSHOTTING = 19
    RESTORING_SNAPSHOT = 20
    DELETING_SNAPSHOT = 21
    SETTING_UP = 22
    SNAPSHOTTING = 23


FIRST_ONLINE = MachineState.RUNNING
LAST_ONLINE = MachineState.ONLINE_SNAPSHOTTING
FIRST_TRANSIENT = MachineState.TELEPORTING
LAST_TRANSIENT = MachineState.SNAPSHOTTING


def is_online(state: MachineState) -> bool:
    return FIRST_ONLINE <= state <= LAST_ONLINE


def is_transient(state: MachineState) -> bool:
    return FIRST_TRANSIENT <= state <= LAST_TRANSIENT


class SessionState(enum.IntEnum):
    NULL = 0
    UNLOCKED = 1
    LOCKED = 2
    SPAWNING = 3
    UNLOCKING = 4


class LockType(enum.IntEnum):
    """Kinds of machine lock. ``WRITE`` is the exclusive lock."""

    NULL = 0
    SHARED = 1
    WRITE = 2


class CloneMode(enum.IntEnum):
    MACHINE_STATE = 1
    MACHINE_AND_CHILD_STATES = 2
    ALL_STATES = 3


class CloneOption(enum.IntEnum):
    LINK = 1
    KEEP_ALL_MACS = 2
    KEEP_NAT_MACS = 3
    KEEP_DISK_NAMES = 4


class CleanupMode(enum.IntEnum):
    UNREGISTER_ONLY = 1
    DETACH_ALL_RETURN_NONE = 2
    DETACH_ALL_RETURN_HARD_DISKS_ONLY = 3
    FULL = 4


class LaunchMode(str, enum.Enum):
    """Front-ends a machine process can be started under."""

    GUI = 'gui'
    HEADLESS = 'headless'
    SDL = 'sdl'


class NATProtocol(str, enum.Enum):
    UDP = 'udp'
    TCP = 'tcp'


@dataclass(frozen=True)
class MachineInfo:
    name: str
    state: MachineState = MachineState.POWERED_OFF
    session_state: SessionState = SessionState.UNLOCKED
    os_type: str = ''
    settings_file: str = ''
    registered: bool = True


@dataclass(frozen=True)
class SnapshotInfo:
    machine: str
    name: str
    uuid: str = ''


@dataclass(frozen=True)
class GuestProperties:
    keys: list[str] = field(default_factory=list)
    values: list[str] = field(default_factory=list)
    timestamps: list[int] = field(default_factory=list)
    flags: list[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.keys)


@dataclass(frozen=True)
class PortForwardRule:
    name: str
    protocol: NATProtocol
    host_ip: str
    host_port: int
    guest_ip: str
    guest_port: int
    ipv6: bool = False

    def encode(self) -> str:
        """Render the rule the way the service stores it."""
        return (
            f'{self.name}:{self.protocol.value}:[{self.host_ip}]:{self.host_port}'
            f':[{self.guest_ip}]:{self.guest_port}'
        )


@dataclass
class Session:
    id: str
    machine: str = ''
    lock_type: Optional[LockType] = None


class Progress(Protocol):
    """Handle to one asynchronous operation running inside the service."""

    description: str

    @property
    def completed(self) -> bool: ...

    @property
    def result_code(self) -> int: ...

    @property
    def error_text(self) -> str: ...

    def wait_for_completion(self, timeout_ms: int = -1) -> None: ...


class HypervisorService(Protocol):
    def connect(self, endpoint: str, credentials: Optional[dict] = None) -> None: ...

    def version(self) -> str: ...

    def list_machines(self) -> list[MachineInfo]: ...

    def find_machine(self, name: str) -> MachineInfo: ...

    def machine_state(self, name: str) -> MachineState: ...

    def session_state(self, name: str) -> SessionState: ...

    def find_snapshot(self, machine: MachineInfo, name: str) -> SnapshotInfo: ...

    def create_machine(self, os_type: str, name: str, flags: str) -> MachineInfo: ...

    def clone_to(
        self,
        source: SnapshotInfo,
        target: MachineInfo,
        mode: CloneMode,
        options: Sequence[CloneOption],
    ) -> Progress: ...

    def save_settings(self, machine: MachineInfo) -> None: ...

    def register_machine(self, machine: MachineInfo) -> None: ...

    def open_session(self) -> Session: ...

    def lock_machine(
        self, session: Session, machine: MachineInfo, lock_type: LockType
    ) -> None: ...

    def unlock_machine(self, session: Session) -> None: ...

    def create_shared_folder(
        self,
        session: Session,
        name: str,
        host_path: str,
        writable: bool,
        automount: bool,
    ) -> None: ...

    def launch_process(
        self,
        session: Session,
        machine: MachineInfo,
        mode: str,
        env: Optional[dict[str, str]] = None,
    ) -> Progress: ...

    def enumerate_guest_properties(
        self, machine: MachineInfo, patterns: str = ''
    ) -> GuestProperties: ...

    def list_nat_networks(self) -> list[str]: ...

    def add_port_forward_rule(self, network: str, rule: PortForwardRule) -> None: ...

    def remove_port_forward_rule(
        self, network: str, ipv6: bool, rule_name: str
    ) -> None: ...

    def list_port_forward_rules(self, network: str, ipv6: bool = False) -> list[str]: ...

    def power_down(self, session: Session) -> Progress: ...

    def unregister_machine(
        self, machine: MachineInfo, cleanup_mode: CleanupMode
    ) -> list[str]: ...

    def delete_config(self, machine: MachineInfo, media: Sequence[str]) -> Progress: ...
