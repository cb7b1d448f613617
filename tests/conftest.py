"""Recording in-memory hypervisor service shared by the test modules."""

from __future__ import annotations

import itertools
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

import pytest

from vboxlab.config import VBoxLabConfig
from vboxlab.connection import Connection, reset_connection
from vboxlab.errors import ObjectNotFoundError, SessionFaultError, TransportFaultError
from vboxlab.service import (
    GuestProperties,
    LockType,
    MachineInfo,
    MachineState,
    Session,
    SessionState,
    SnapshotInfo,
)

MUTATING_CALLS = {
    'create_machine',
    'clone_to',
    'save_settings',
    'register_machine',
    'lock_machine',
    'unlock_machine',
    'create_shared_folder',
    'launch_process',
    'add_port_forward_rule',
    'remove_port_forward_rule',
    'power_down',
    'unregister_machine',
    'delete_config',
}


class FakeProgress:
    def __init__(self, description: str = '', result_code: int = 0, error_text: str = ''):
        self.description = description
        self._result_code = result_code
        self._error_text = error_text
        self._done = False
        self.waits: list[int] = []

    @property
    def completed(self) -> bool:
        return self._done

    @property
    def result_code(self) -> int:
        return self._result_code

    @property
    def error_text(self) -> str:
        return self._error_text

    def wait_for_completion(self, timeout_ms: int = -1) -> None:
        self.waits.append(timeout_ms)
        self._done = True


@dataclass
class FakeMachine:
    name: str
    state: MachineState = MachineState.POWERED_OFF
    session_state: SessionState = SessionState.UNLOCKED
    os_type: str = 'Ubuntu_64'
    registered: bool = True
    snapshots: list[str] = field(default_factory=list)
    shared_folders: dict[str, tuple[str, bool, bool]] = field(default_factory=dict)
    props: list[tuple[str, str, int, str]] = field(default_factory=list)
    # successive enumerate_guest_properties answers; the last one sticks
    prop_schedule: list[list[tuple[str, str, int, str]]] = field(default_factory=list)
    media: list[str] = field(default_factory=list)
    # session_state keeps reporting LOCKED this many times after an unlock
    unlock_delay: int = 0
    _unlock_countdown: int = 0


class FakeHypervisor:
    def __init__(self) -> None:
        self.machines: dict[str, FakeMachine] = {}
        self.networks: dict[str, list[str]] = {}
        self.calls: list[str] = []
        self.clone_result: tuple[int, str] = (0, '')
        self.launch_result: tuple[int, str] = (0, '')
        self.power_down_result: tuple[int, str] = (0, '')
        self.register_error: Optional[Exception] = None
        self.unregistered: list[str] = []
        self.deleted: list[tuple[str, list[str]]] = []
        self.progresses: list[FakeProgress] = []
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    # -- helpers used by tests --------------------------------------------

    def add_machine(self, name: str, **kwargs) -> FakeMachine:
        machine = FakeMachine(name=name, **kwargs)
        self.machines[name] = machine
        return machine

    def add_network(self, name: str, rules=()) -> None:
        self.networks[name] = list(rules)

    def count(self, call: str) -> int:
        return self.calls.count(call)

    def mutating_calls(self) -> list[str]:
        return [c for c in self.calls if c in MUTATING_CALLS]

    def _record(self, call: str) -> None:
        with self._lock:
            self.calls.append(call)

    def _get(self, name: str) -> FakeMachine:
        machine = self.machines.get(name)
        if machine is None or not machine.registered:
            raise ObjectNotFoundError(f'VBOX_E_OBJECT_NOT_FOUND: {name}')
        return machine

    def _progress(self, description: str, result: tuple[int, str]) -> FakeProgress:
        progress = FakeProgress(description, *result)
        self.progresses.append(progress)
        return progress

    # -- HypervisorService ------------------------------------------------

    def connect(self, endpoint, credentials=None) -> None:
        self._record('connect')

    def version(self) -> str:
        self._record('version')
        return '7.0.14r161095'

    def list_machines(self) -> list[MachineInfo]:
        self._record('list_machines')
        with self._lock:
            return [
                MachineInfo(name=m.name)
                for m in list(self.machines.values())
                if m.registered
            ]

    def find_machine(self, name: str) -> MachineInfo:
        self._record('find_machine')
        with self._lock:
            m = self._get(name)
            return MachineInfo(
                name=m.name,
                state=m.state,
                session_state=m.session_state,
                os_type=m.os_type,
                settings_file=f'/vms/{m.name}/{m.name}.vbox',
            )

    def machine_state(self, name: str) -> MachineState:
        self._record('machine_state')
        return self._get(name).state

    def session_state(self, name: str) -> SessionState:
        self._record('session_state')
        with self._lock:
            m = self.machines[name]
            if m._unlock_countdown > 0:
                m._unlock_countdown -= 1
                if m._unlock_countdown == 0:
                    m.session_state = SessionState.UNLOCKED
                return SessionState.LOCKED
            return m.session_state

    def find_snapshot(self, machine: MachineInfo, name: str) -> SnapshotInfo:
        self._record('find_snapshot')
        if name not in self._get(machine.name).snapshots:
            raise ObjectNotFoundError(f'VBOX_E_OBJECT_NOT_FOUND: snapshot {name}')
        return SnapshotInfo(machine=machine.name, name=name, uuid=f'uuid-{name}')

    def create_machine(self, os_type: str, name: str, flags: str) -> MachineInfo:
        self._record('create_machine')
        return MachineInfo(
            name=name,
            os_type=os_type,
            settings_file=f'/vms/{name}/{name}.vbox',
            registered=False,
        )

    def clone_to(self, source, target, mode, options) -> FakeProgress:
        self._record('clone_to')
        self.last_clone = (source, target, mode, list(options))
        if self.clone_result[0] == 0:
            self.machines[target.name] = FakeMachine(
                name=target.name, os_type=target.os_type, registered=False
            )
        return self._progress(f'clone {target.name}', self.clone_result)

    def save_settings(self, machine: MachineInfo) -> None:
        self._record('save_settings')

    def register_machine(self, machine: MachineInfo) -> None:
        self._record('register_machine')
        if self.register_error is not None:
            raise self.register_error
        self.machines[machine.name].registered = True

    def open_session(self) -> Session:
        return Session(id=f'session-{next(self._ids)}')

    def lock_machine(self, session: Session, machine: MachineInfo, lock_type: LockType) -> None:
        self._record('lock_machine')
        with self._lock:
            m = self._get(machine.name)
            if lock_type == LockType.WRITE and m.session_state != SessionState.UNLOCKED:
                raise SessionFaultError(f'{machine.name} is already locked')
            m.session_state = SessionState.LOCKED
            session.machine = machine.name
            session.lock_type = lock_type

    def unlock_machine(self, session: Session) -> None:
        self._record('unlock_machine')
        with self._lock:
            if not session.machine:
                return
            m = self.machines[session.machine]
            if m.unlock_delay:
                m._unlock_countdown = m.unlock_delay
            else:
                m.session_state = SessionState.UNLOCKED
            session.machine = ''
            session.lock_type = None

    def create_shared_folder(self, session, name, host_path, writable, automount) -> None:
        self._record('create_shared_folder')
        m = self.machines[session.machine]
        if name in m.shared_folders:
            raise TransportFaultError(f'VBOX_E_OBJECT_IN_USE: shared folder {name} exists')
        m.shared_folders[name] = (host_path, writable, automount)

    def launch_process(self, session, machine, mode, env=None) -> FakeProgress:
        self._record('launch_process')
        self.last_launch = (machine.name, mode, env)
        m = self._get(machine.name)
        m.session_state = SessionState.LOCKED
        session.machine = machine.name
        session.lock_type = LockType.SHARED
        if self.launch_result[0] == 0:
            m.state = MachineState.RUNNING
        return self._progress(f'launch {machine.name}', self.launch_result)

    def enumerate_guest_properties(self, machine, patterns='') -> GuestProperties:
        self._record('enumerate_guest_properties')
        m = self._get(machine.name)
        rows = m.props
        if m.prop_schedule:
            rows = m.prop_schedule.pop(0) if len(m.prop_schedule) > 1 else m.prop_schedule[0]
        return GuestProperties(
            keys=[r[0] for r in rows],
            values=[r[1] for r in rows],
            timestamps=[r[2] for r in rows],
            flags=[r[3] for r in rows],
        )

    def list_nat_networks(self) -> list[str]:
        self._record('list_nat_networks')
        return list(self.networks)

    def add_port_forward_rule(self, network, rule) -> None:
        self._record('add_port_forward_rule')
        self.networks[network].append(rule.encode())

    def remove_port_forward_rule(self, network, ipv6, rule_name) -> None:
        self._record('remove_port_forward_rule')
        rules = self.networks[network]
        keep = [r for r in rules if r.split(':', 1)[0] != rule_name]
        if len(keep) == len(rules):
            raise ObjectNotFoundError(f'VBOX_E_OBJECT_NOT_FOUND: rule {rule_name}')
        self.networks[network] = keep

    def list_port_forward_rules(self, network, ipv6=False) -> list[str]:
        self._record('list_port_forward_rules')
        return list(self.networks[network])

    def power_down(self, session: Session) -> FakeProgress:
        self._record('power_down')
        m = self.machines[session.machine]
        if self.power_down_result[0] == 0:
            # give a concurrent teardown a chance to run
            time.sleep(0.01)
            m.state = MachineState.POWERED_OFF
        return self._progress(f'power down {m.name}', self.power_down_result)

    def unregister_machine(self, machine, cleanup_mode) -> list[str]:
        self._record('unregister_machine')
        with self._lock:
            m = self._get(machine.name)
            m.registered = False
            self.unregistered.append(machine.name)
            self.last_cleanup_mode = cleanup_mode
            return list(m.media)

    def delete_config(self, machine, media) -> FakeProgress:
        self._record('delete_config')
        with self._lock:
            self.machines.pop(machine.name, None)
            self.deleted.append((machine.name, list(media)))
        return self._progress(f'delete {machine.name}', (0, ''))


@pytest.fixture
def fake() -> FakeHypervisor:
    return FakeHypervisor()


@pytest.fixture
def conn(fake: FakeHypervisor) -> Connection:
    return Connection(service=fake, cfg=VBoxLabConfig())


@pytest.fixture
def sleeps(monkeypatch) -> list[float]:
    """Record sleeps instead of waiting."""
    calls: list[float] = []
    monkeypatch.setattr(time, 'sleep', lambda s: calls.append(s))
    return calls


@pytest.fixture(autouse=True)
def _fresh_connection():
    reset_connection()
    yield
    reset_connection()
