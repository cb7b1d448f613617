"""Tests for the vboxlab command line."""

from __future__ import annotations

from pathlib import Path

import pytest

from vboxlab.cli import VBoxLabModalCLI
from vboxlab.cli.config import ConfigInitCLI, ConfigShowCLI
from vboxlab.cli.main import _config_arg, _count_verbose, _log_level
from vboxlab.cli.net import NetForwardCLI, NetUnforwardCLI
from vboxlab.cli.vm import (
    VMCleanupCLI,
    VMCloneCLI,
    VMIPCLI,
    VMLaunchCLI,
    VMShareCLI,
)
from vboxlab.config import VBoxLabConfig, load
from vboxlab.connection import connect, get_connection
from vboxlab.service import MachineState

IP_KEY = '/VirtualBox/GuestInfo/Net/0/V4/IP'


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path: Path):
    default = tmp_path / 'default-config.toml'
    monkeypatch.setattr(
        'vboxlab.cli._common._cfg_path', lambda p: Path(p) if p else default
    )


@pytest.fixture
def connected(fake):
    connect(VBoxLabConfig(), service=fake)
    return fake


def _run(argv: list[str]) -> int:
    rc = VBoxLabModalCLI.main(argv=argv, _noexit=True)
    return 0 if rc is None else int(rc)


def test_config_init_and_show(tmp_path: Path, capsys) -> None:
    cfg_path = tmp_path / 'config.toml'
    rc = ConfigInitCLI.main(
        argv=False, config=str(cfg_path), endpoint='ssh://lab@hyper01'
    )
    assert rc == 0
    assert load(cfg_path).service.endpoint == 'ssh://lab@hyper01'
    rc = ConfigInitCLI.main(argv=False, config=str(cfg_path))
    assert rc == 2
    rc = ConfigShowCLI.main(argv=False, config=str(cfg_path))
    assert rc == 0
    out = capsys.readouterr().out
    assert 'endpoint = "ssh://lab@hyper01"' in out


def test_config_show_defaults(tmp_path: Path, capsys) -> None:
    cfg_path = tmp_path / 'missing.toml'
    assert _run(['config', 'show', '--config', str(cfg_path)]) == 0
    out = capsys.readouterr().out
    assert '(defaults)' in out
    assert 'ip_prefix = "10.0"' in out


def test_clone_command(connected, capsys) -> None:
    connected.add_machine('seed', snapshots=['base'])
    rc = VMCloneCLI.main(argv=False, seed='seed', snapshot='base', vm='vm1')
    assert rc == 0
    assert capsys.readouterr().out.strip() == 'vm1'
    rc = VMCloneCLI.main(argv=False, seed='seed', snapshot='nope', vm='vm2')
    assert rc == 1
    assert capsys.readouterr().out.startswith('FAILED [not_found]')


def test_launch_command_honors_max_attempts(connected, sleeps, capsys) -> None:
    connected.add_machine('vm1')
    rc = VMLaunchCLI.main(argv=False, vm='vm1', max_attempts=1)
    assert rc == 1
    assert sleeps == [3.0]
    assert 'FAILED [timeout]' in capsys.readouterr().out
    # the override does not stick to the shared connection
    assert get_connection().cfg.poll.ip_max_attempts == 0


def test_launch_command_prints_address(connected, sleeps, capsys) -> None:
    connected.add_machine('vm1', props=[(IP_KEY, '10.0.2.15', 0, '')])
    assert _run(['vm', 'launch', 'vm1', '--mode', 'gui']) == 0
    assert capsys.readouterr().out.strip() == '10.0.2.15'
    assert connected.last_launch[1] == 'gui'


def test_ip_command(connected, capsys) -> None:
    connected.add_machine('vm1', props=[(IP_KEY, '10.0.2.15', 0, '')])
    connected.add_machine('vm2')
    assert VMIPCLI.main(argv=False, vm='vm1') == 0
    assert VMIPCLI.main(argv=False, vm='vm2') == 1
    assert VMIPCLI.main(argv=False, vm='ghost') == 1
    out = capsys.readouterr().out.splitlines()
    assert out == [
        '10.0.2.15',
        'No IPv4 address reported by vm2',
        'Machine not found: ghost',
    ]


def test_share_command(connected, capsys) -> None:
    connected.add_machine('vm1')
    rc = VMShareCLI.main(argv=False, vm='vm1', share='code', host_path='/src')
    assert rc == 0
    assert connected.machines['vm1'].shared_folders['code'][0] == '/src'


def test_cleanup_requires_yes(connected, capsys) -> None:
    connected.add_machine('vm1', state=MachineState.RUNNING)
    assert VMCleanupCLI.main(argv=False, vm='vm1') == 2
    assert connected.mutating_calls() == []
    assert VMCleanupCLI.main(argv=False, vm='vm1', yes=True) == 0
    assert connected.unregistered == ['vm1']


def test_forward_and_unforward(connected, capsys) -> None:
    connected.add_machine('vm1', props=[(IP_KEY, '10.0.2.15', 0, '')])
    connected.add_network('labnet')
    rc = NetForwardCLI.main(argv=False, network='labnet', vm='vm1', host_port=2200)
    assert rc == 0
    assert connected.networks['labnet'] == ['ssh2200:tcp:[0.0.0.0]:2200:[10.0.2.15]:22']
    rc = NetUnforwardCLI.main(argv=False, network='labnet', host_port=2200)
    assert rc == 0
    assert connected.networks['labnet'] == []
    assert 'Removed 1 rule(s) from labnet' in capsys.readouterr().out


def test_modal_list_and_version(connected, capsys) -> None:
    connected.add_machine('vm1')
    assert _run(['vm', 'list']) == 0
    assert _run(['version']) == 0
    out = capsys.readouterr().out
    assert '  - vm1 | state=powered_off' in out
    assert '7.0.14r161095' in out


def test_count_verbose() -> None:
    assert _count_verbose(['vm', 'list', '-vv']) == 2
    assert _count_verbose(['--verbose', '-v', '--vm']) == 2
    assert _count_verbose(['vm', 'list']) == 0


def test_config_arg_forms() -> None:
    assert _config_arg(['vm', 'list', '--config', 'a.toml']) == 'a.toml'
    assert _config_arg(['vm', 'list', '--config=b.toml']) == 'b.toml'
    assert _config_arg(['vm', 'list', '--config']) is None
    assert [_log_level(v) for v in (0, 1, 2, 3)] == ['WARNING', 'INFO', 'DEBUG', 'DEBUG']
