"""Tests for the machine lock guard."""

from __future__ import annotations

import time

import pytest

from vboxlab.errors import SessionFaultError
from vboxlab.service import LockType, SessionState
from vboxlab.session import locked_session, wait_to_unlock, with_lock


def test_locked_session_waits_for_unlock(conn, fake, sleeps) -> None:
    fake.add_machine('vm1', unlock_delay=3)
    with locked_session(conn, 'vm1', LockType.WRITE) as session:
        assert session.machine == 'vm1'
        assert fake.machines['vm1'].session_state == SessionState.LOCKED
    assert fake.machines['vm1'].session_state == SessionState.UNLOCKED
    assert sleeps == [1.0, 1.0, 1.0]
    assert fake.count('session_state') == 4


def test_locked_session_releases_when_body_fails(conn, fake, sleeps) -> None:
    fake.add_machine('vm1', unlock_delay=1)
    with pytest.raises(ValueError):
        with locked_session(conn, 'vm1', LockType.WRITE):
            raise ValueError('boom')
    assert fake.count('unlock_machine') == 1
    assert fake.machines['vm1'].session_state == SessionState.UNLOCKED
    assert sleeps == [1.0]


def test_with_lock_returns_body_value(conn, fake, sleeps) -> None:
    fake.add_machine('vm1')
    assert with_lock(conn, 'vm1', LockType.SHARED, lambda s: s.machine) == 'vm1'
    assert sleeps == []


def test_unlock_poll_bound(conn, fake, sleeps) -> None:
    fake.add_machine('vm1', unlock_delay=10)
    conn.cfg.poll.unlock_max_polls = 2
    conn.cfg.poll.unlock_interval_s = 0.25
    session = conn.new_session()
    fake.lock_machine(session, fake.find_machine('vm1'), LockType.WRITE)
    with pytest.raises(SessionFaultError):
        wait_to_unlock(conn, session, 'vm1')
    assert sleeps == [0.25, 0.25]


def test_interrupt_is_deferred_until_unlocked(conn, fake, monkeypatch) -> None:
    fake.add_machine('vm1', unlock_delay=2)
    seen: list[float] = []

    def interrupted_sleep(seconds):
        seen.append(seconds)
        if len(seen) == 1:
            raise KeyboardInterrupt

    monkeypatch.setattr(time, 'sleep', interrupted_sleep)
    session = conn.new_session()
    fake.lock_machine(session, fake.find_machine('vm1'), LockType.WRITE)
    with pytest.raises(KeyboardInterrupt):
        wait_to_unlock(conn, session, 'vm1')
    # polling continued past the interrupt until the lock was gone
    assert len(seen) == 2
    assert fake.machines['vm1'].session_state == SessionState.UNLOCKED


def test_write_lock_on_locked_machine_faults(conn, fake) -> None:
    fake.add_machine('vm1', session_state=SessionState.LOCKED)
    with pytest.raises(SessionFaultError):
        with locked_session(conn, 'vm1', LockType.WRITE):
            pass
    assert fake.count('unlock_machine') == 0
