"""Hypervisor service implementation that drives the ``VBoxManage`` CLI.

Every call runs one VBoxManage command, either locally or on a remote host
over SSH (see :mod:`vboxlab.runtime`). VBoxManage finishes its asynchronous
work before returning, so the progress handles produced here are already
complete when they are handed back.

Sessions are client-side tokens: VBoxManage takes and drops its own machine
locks per command, so :meth:`VBoxManageService.lock_machine` only checks the
machine's reported session state and remembers what the token locks.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Optional, Sequence

from loguru import logger

from ..config import ServiceConfig
from ..errors import ObjectNotFoundError, SessionFaultError, TransportFaultError
from ..runtime import parse_endpoint, vboxmanage_cmd
from ..service import (
    CleanupMode,
    CloneMode,
    CloneOption,
    GuestProperties,
    LockType,
    MachineInfo,
    MachineState,
    PortForwardRule,
    Session,
    SessionState,
    SnapshotInfo,
)
from ..util import CmdError, CmdResult, run_cmd, shell_join, which

log = logger

SSH_TRANSPORT_ERROR = 255

LIST_VMS_RE = re.compile(r'^"(?P<name>.*)"\s+\{(?P<uuid>[0-9a-fA-F-]+)\}\s*$')
MACHINE_READABLE_RE = re.compile(r'^(?P<key>"[^"]*"|[^=]+)=(?P<value>.*)$')
GUESTPROP_V6_RE = re.compile(
    r'^Name: (?P<key>.*?), value: (?P<value>.*?), '
    r'timestamp: (?P<ts>\d+), flags: ?(?P<flags>.*)$'
)
GUESTPROP_V7_RE = re.compile(
    r"^(?P<key>/\S+)\s*=\s*'(?P<value>.*?)'"
    r'(?:\s*@\s*(?P<ts>\S+))?(?:\s*\((?P<flags>[^)]*)\))?\s*$'
)
DISK_SUFFIXES = ('.vdi', '.vmdk', '.vhd', '.vhdx')

VMSTATE_NAMES = {
    'poweroff': MachineState.POWERED_OFF,
    'saved': MachineState.SAVED,
    'teleported': MachineState.TELEPORTED,
    'aborted': MachineState.ABORTED,
    'aborted-saved': MachineState.ABORTED,
    'running': MachineState.RUNNING,
    'paused': MachineState.PAUSED,
    'gurumeditation': MachineState.STUCK,
    'stuck': MachineState.STUCK,
    'teleporting': MachineState.TELEPORTING,
    'livesnapshotting': MachineState.LIVE_SNAPSHOTTING,
    'starting': MachineState.STARTING,
    'stopping': MachineState.STOPPING,
    'saving': MachineState.SAVING,
    'restoring': MachineState.RESTORING,
    'teleportingpausedvm': MachineState.TELEPORTING_PAUSED_VM,
    'teleportingin': MachineState.TELEPORTING_IN,
    'faulttolerantsyncing': MachineState.FAULT_TOLERANT_SYNCING,
    'deletingsnapshotlive': MachineState.DELETING_SNAPSHOT_ONLINE,
    'deletingsnapshotlivepaused': MachineState.DELETING_SNAPSHOT_PAUSED,
    'onlinesnapshotting': MachineState.ONLINE_SNAPSHOTTING,
    'restoringsnapshot': MachineState.RESTORING_SNAPSHOT,
    'deletingsnapshot': MachineState.DELETING_SNAPSHOT,
    'settingup': MachineState.SETTING_UP,
    'snapshotting': MachineState.SNAPSHOTTING,
}

SESSION_STATE_NAMES = {
    'unlocked': SessionState.UNLOCKED,
    'locked': SessionState.LOCKED,
    'spawning': SessionState.SPAWNING,
    'unlocking': SessionState.UNLOCKING,
}

CLONE_MODE_ARGS = {
    CloneMode.MACHINE_STATE: 'machine',
    CloneMode.MACHINE_AND_CHILD_STATES: 'machineandchildren',
    CloneMode.ALL_STATES: 'all',
}

CLONE_OPTION_ARGS = {
    CloneOption.LINK: 'link',
    CloneOption.KEEP_ALL_MACS: 'keepallmacs',
    CloneOption.KEEP_NAT_MACS: 'keepnatmacs',
    CloneOption.KEEP_DISK_NAMES: 'keepdisknames',
}

NOT_FOUND_MARKERS = (
    'VBOX_E_OBJECT_NOT_FOUND',
    'Could not find a registered machine',
    'Could not find a snapshot',
    'does not have any snapshots',
    'NAT network not found',
)
SESSION_FAULT_MARKERS = (
    'VBOX_E_INVALID_OBJECT_STATE',
    'VBOX_E_INVALID_VM_STATE',
    'is already locked',
    'is not currently running',
)


@dataclass
class CmdProgress:
    """Progress handle for a command that has already run to completion."""

    description: str
    result: CmdResult

    @property
    def completed(self) -> bool:
        return True

    @property
    def result_code(self) -> int:
        return self.result.code

    @property
    def error_text(self) -> str:
        return (self.result.stderr or self.result.stdout).strip()

    def wait_for_completion(self, timeout_ms: int = -1) -> None:
        return None


def parse_machine_readable(text: str) -> dict[str, str]:
    info: dict[str, str] = {}
    for line in text.splitlines():
        match = MACHINE_READABLE_RE.match(line.strip())
        if match is None:
            continue
        key = match.group('key').strip().strip('"')
        value = match.group('value').strip()
        if len(value) >= 2 and value[0] == value[-1] == '"':
            value = value[1:-1]
        info[key] = value
    return info


def parse_list_vms(text: str) -> list[str]:
    names = []
    for line in text.splitlines():
        match = LIST_VMS_RE.match(line.strip())
        if match is not None:
            names.append(match.group('name'))
    return names


def _parse_timestamp(raw: str) -> int:
    if not raw:
        return 0
    if raw.isdigit():
        return int(raw)
    # VBoxManage 7.x prints nanosecond precision ISO timestamps
    text = raw.rstrip('Z')
    base, _, frac = text.partition('.')
    try:
        when = datetime.fromisoformat(base).replace(tzinfo=timezone.utc)
    except ValueError:
        return 0
    nanos = int((frac + '000000000')[:9]) if frac.isdigit() else 0
    return int(when.timestamp()) * 1_000_000_000 + nanos


def parse_guest_properties(text: str) -> GuestProperties:
    props = GuestProperties()
    for line in text.splitlines():
        line = line.strip()
        match = GUESTPROP_V6_RE.match(line) or GUESTPROP_V7_RE.match(line)
        if match is None:
            continue
        props.keys.append(match.group('key'))
        props.values.append(match.group('value'))
        props.timestamps.append(_parse_timestamp(match.group('ts') or ''))
        props.flags.append((match.group('flags') or '').strip())
    return props


def parse_nat_networks(text: str) -> dict[str, dict[str, list[str]]]:
    """Map network name to its ``ipv4`` / ``ipv6`` port-forward rule strings."""
    networks: dict[str, dict[str, list[str]]] = {}
    current: Optional[dict[str, list[str]]] = None
    section = ''
    for raw in text.splitlines():
        if not raw.strip():
            section = ''
            continue
        indented = raw[:1].isspace()
        line = raw.strip()
        if indented and current is not None and section:
            current[section].append(line)
            continue
        key, sep, value = line.partition(':')
        if sep and key.strip() in {'Name', 'NetworkName'}:
            current = {'ipv4': [], 'ipv6': []}
            networks[value.strip()] = current
            section = ''
        elif line.lower().startswith('port-forwarding (ipv4)'):
            section = 'ipv4'
        elif line.lower().startswith('port-forwarding (ipv6)'):
            section = 'ipv6'
        else:
            section = ''
    return networks


class VBoxManageService:
    """:class:`~vboxlab.service.HypervisorService` backed by VBoxManage."""

    def __init__(self, cfg: ServiceConfig):
        self.cfg = cfg
        self._pending: dict[str, MachineInfo] = {}
        self._pending_delete: set[str] = set()
        self._machine_folder: Optional[str] = None

    # -- command plumbing -------------------------------------------------

    def _unreachable(self, res: CmdResult) -> None:
        if (
            res.code == SSH_TRANSPORT_ERROR
            and not parse_endpoint(self.cfg.endpoint).is_local
        ):
            raise TransportFaultError(
                f'Could not reach hypervisor at {self.cfg.endpoint}: '
                f'{res.stderr.strip()}',
                res,
            )

    def _run(self, *args: str) -> CmdResult:
        res = run_cmd(vboxmanage_cmd(self.cfg, *args), check=False)
        self._unreachable(res)
        return res

    def _check(self, *args: str) -> CmdResult:
        try:
            return run_cmd(vboxmanage_cmd(self.cfg, *args), check=True)
        except CmdError as ex:
            self._unreachable(ex.result)
            raise self._fault(args, ex.result) from ex

    def _progress(self, description: str, *args: str) -> CmdProgress:
        return CmdProgress(description, self._run(*args))

    def _fault(self, args: Sequence[str], res: CmdResult) -> Exception:
        text = f'{res.stderr}\n{res.stdout}'
        msg = f'VBoxManage {shell_join(args)} failed (code={res.code}): {res.stderr.strip()}'
        if any(marker in text for marker in NOT_FOUND_MARKERS):
            return ObjectNotFoundError(msg)
        if any(marker in text for marker in SESSION_FAULT_MARKERS):
            return SessionFaultError(msg)
        return TransportFaultError(msg, res)

    def _require_lock(self, session: Session) -> str:
        if not session.machine or session.lock_type is None:
            raise SessionFaultError(f'Session {session.id} does not lock a machine')
        return session.machine

    def _info(self, name: str) -> dict[str, str]:
        res = self._check('showvminfo', name, '--machinereadable')
        return parse_machine_readable(res.stdout)

    def _default_machine_folder(self) -> str:
        if self._machine_folder is None:
            res = self._check('list', 'systemproperties')
            folder = ''
            for line in res.stdout.splitlines():
                key, sep, value = line.partition(':')
                if sep and key.strip() == 'Default machine folder':
                    folder = value.strip()
                    break
            if not folder:
                raise TransportFaultError(
                    'VBoxManage did not report a default machine folder', res
                )
            self._machine_folder = folder
        return self._machine_folder

    # -- connection -------------------------------------------------------

    def connect(self, endpoint: str, credentials: Optional[dict] = None) -> None:
        self.cfg.endpoint = endpoint
        if credentials and credentials.get('identity_file'):
            self.cfg.ssh_identity_file = str(credentials['identity_file'])
        target = parse_endpoint(endpoint)
        if target.is_local and which(self.cfg.vboxmanage) is None:
            raise TransportFaultError(
                f'{self.cfg.vboxmanage} not found on PATH; is VirtualBox installed?'
            )
        log.debug('Connected to VirtualBox {} at {}', self.version(), endpoint)

    def version(self) -> str:
        return self._check('--version').stdout.strip()

    # -- machines ---------------------------------------------------------

    def list_machines(self) -> list[MachineInfo]:
        res = self._check('list', 'vms')
        return [MachineInfo(name=name) for name in parse_list_vms(res.stdout)]

    def find_machine(self, name: str) -> MachineInfo:
        info = self._info(name)
        raw_session = info.get('SessionState', '').lower()
        if raw_session in SESSION_STATE_NAMES:
            session_state = SESSION_STATE_NAMES[raw_session]
        elif info.get('SessionName'):
            session_state = SessionState.LOCKED
        else:
            session_state = SessionState.UNLOCKED
        return MachineInfo(
            name=info.get('name', name),
            state=VMSTATE_NAMES.get(
                info.get('VMState', '').lower(), MachineState.NULL
            ),
            session_state=session_state,
            os_type=info.get('ostype', ''),
            settings_file=info.get('CfgFile', ''),
        )

    def machine_state(self, name: str) -> MachineState:
        return self.find_machine(name).state

    def session_state(self, name: str) -> SessionState:
        return self.find_machine(name).session_state

    def find_snapshot(self, machine: MachineInfo, name: str) -> SnapshotInfo:
        res = self._check('snapshot', machine.name, 'list', '--machinereadable')
        info = parse_machine_readable(res.stdout)
        for key, value in info.items():
            if key.startswith('SnapshotName') and value == name:
                suffix = key[len('SnapshotName'):]
                return SnapshotInfo(
                    machine=machine.name,
                    name=name,
                    uuid=info.get(f'SnapshotUUID{suffix}', ''),
                )
        raise ObjectNotFoundError(
            f'Could not find a snapshot named {name!r} of machine {machine.name!r}'
        )

    def create_machine(self, os_type: str, name: str, flags: str) -> MachineInfo:
        # clonevm creates the machine folder itself, so only the target
        # settings path is reserved here.
        folder = PurePosixPath(self._default_machine_folder())
        container = MachineInfo(
            name=name,
            os_type=os_type,
            settings_file=str(folder / name / f'{name}.vbox'),
            registered=False,
        )
        log.debug('Reserved machine container {} (flags={})', name, flags)
        self._pending[name] = container
        return container

    def clone_to(
        self,
        source: SnapshotInfo,
        target: MachineInfo,
        mode: CloneMode,
        options: Sequence[CloneOption],
    ) -> CmdProgress:
        args = [
            'clonevm',
            source.machine,
            '--snapshot',
            source.uuid or source.name,
            '--name',
            target.name,
            '--mode',
            CLONE_MODE_ARGS[mode],
            '--basefolder',
            str(PurePosixPath(self._default_machine_folder())),
        ]
        if options:
            args += ['--options', ','.join(CLONE_OPTION_ARGS[o] for o in options)]
        return self._progress(f'Cloning {source.machine} into {target.name}', *args)

    def save_settings(self, machine: MachineInfo) -> None:
        log.debug('Settings of {} are saved by each VBoxManage call', machine.name)

    def register_machine(self, machine: MachineInfo) -> None:
        if machine.registered:
            return
        self._check('registervm', machine.settings_file)
        self._pending.pop(machine.name, None)

    # -- sessions ---------------------------------------------------------

    def open_session(self) -> Session:
        return Session(id=uuid.uuid4().hex)

    def lock_machine(
        self, session: Session, machine: MachineInfo, lock_type: LockType
    ) -> None:
        if session.machine:
            raise SessionFaultError(
                f'Session {session.id} already locks {session.machine}'
            )
        current = self.find_machine(machine.name)
        if lock_type == LockType.WRITE and current.session_state != SessionState.UNLOCKED:
            raise SessionFaultError(
                f'Machine {machine.name} is already locked '
                f'(session_state={current.session_state.name})'
            )
        session.machine = machine.name
        session.lock_type = lock_type

    def unlock_machine(self, session: Session) -> None:
        if not session.machine:
            log.debug('Session {} holds no lock', session.id)
            return
        session.machine = ''
        session.lock_type = None

    def create_shared_folder(
        self,
        session: Session,
        name: str,
        host_path: str,
        writable: bool,
        automount: bool,
    ) -> None:
        machine = self._require_lock(session)
        args = ['sharedfolder', 'add', machine, '--name', name, '--hostpath', host_path]
        if not writable:
            args.append('--readonly')
        if automount:
            args.append('--automount')
        if session.lock_type == LockType.SHARED:
            args.append('--transient')
        self._check(*args)

    def launch_process(
        self,
        session: Session,
        machine: MachineInfo,
        mode: str,
        env: Optional[dict[str, str]] = None,
    ) -> CmdProgress:
        if session.machine:
            raise SessionFaultError(
                f'Session {session.id} already locks {session.machine}'
            )
        session.machine = machine.name
        session.lock_type = LockType.SHARED
        args = ['startvm', machine.name, '--type', mode]
        for key, value in (env or {}).items():
            args += ['--putenv', f'{key}={value}']
        return self._progress(f'Launching {machine.name} ({mode})', *args)

    def power_down(self, session: Session) -> CmdProgress:
        machine = self._require_lock(session)
        return self._progress(
            f'Powering down {machine}', 'controlvm', machine, 'poweroff'
        )

    # -- guest properties -------------------------------------------------

    def enumerate_guest_properties(
        self, machine: MachineInfo, patterns: str = ''
    ) -> GuestProperties:
        args = ['guestproperty', 'enumerate', machine.name]
        if patterns:
            args += ['--patterns', patterns]
        return parse_guest_properties(self._check(*args).stdout)

    # -- NAT networks -----------------------------------------------------

    def _nat_networks(self) -> dict[str, dict[str, list[str]]]:
        return parse_nat_networks(self._check('natnetwork', 'list').stdout)

    def list_nat_networks(self) -> list[str]:
        return list(self._nat_networks())

    def add_port_forward_rule(self, network: str, rule: PortForwardRule) -> None:
        flag = '--port-forward-6' if rule.ipv6 else '--port-forward-4'
        self._check('natnetwork', 'modify', '--netname', network, flag, rule.encode())

    def remove_port_forward_rule(
        self, network: str, ipv6: bool, rule_name: str
    ) -> None:
        flag = '--port-forward-6' if ipv6 else '--port-forward-4'
        self._check(
            'natnetwork', 'modify', '--netname', network, flag, 'delete', rule_name
        )

    def list_port_forward_rules(self, network: str, ipv6: bool = False) -> list[str]:
        networks = self._nat_networks()
        if network not in networks:
            raise ObjectNotFoundError(f'NAT network not found: {network}')
        return list(networks[network]['ipv6' if ipv6 else 'ipv4'])

    # -- teardown ---------------------------------------------------------

    def unregister_machine(
        self, machine: MachineInfo, cleanup_mode: CleanupMode
    ) -> list[str]:
        info = self._info(machine.name)
        media = [
            value
            for key, value in info.items()
            if 'ImageUUID' not in key and value.lower().endswith(DISK_SUFFIXES)
        ]
        if cleanup_mode == CleanupMode.UNREGISTER_ONLY:
            self._check('unregistervm', machine.name)
            return []
        # "unregistervm --delete" both unregisters and removes the files, so
        # the unregister step is finished by delete_config.
        self._pending_delete.add(machine.name)
        if cleanup_mode == CleanupMode.DETACH_ALL_RETURN_NONE:
            return []
        return media

    def delete_config(self, machine: MachineInfo, media: Sequence[str]) -> CmdProgress:
        if machine.name in self._pending_delete:
            self._pending_delete.discard(machine.name)
            return self._progress(
                f'Deleting {machine.name}', 'unregistervm', machine.name, '--delete'
            )
        if not machine.registered:
            self._pending.pop(machine.name, None)
            res = self._run('registervm', machine.settings_file)
            if res.code != 0:
                return CmdProgress(f'Deleting {machine.name}', res)
            return self._progress(
                f'Deleting {machine.name}', 'unregistervm', machine.name, '--delete'
            )
        last = CmdProgress(f'Deleting {machine.name}', CmdResult(0, '', ''))
        for medium in media:
            last = self._progress(
                f'Deleting {medium}', 'closemedium', 'disk', medium, '--delete'
            )
            if last.result_code != 0:
                break
        return last
