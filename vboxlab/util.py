"""Subprocess execution and path helpers used by the VBoxManage backend."""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from typing import Optional, Sequence

from loguru import logger

log = logger


@dataclass(frozen=True)
class CmdResult:
    code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.code == 0


class CmdError(RuntimeError):
    def __init__(self, cmd: Sequence[str] | str, result: CmdResult):
        self.cmd = cmd
        self.result = result
        shown = cmd if isinstance(cmd, str) else shell_join(cmd)
        super().__init__(
            f'{shown} exited with code {result.code}\n{result.stderr}'.strip()
        )


def shell_join(cmd: Sequence[str]) -> str:
    return ' '.join(shlex.quote(str(part)) for part in cmd)


def run_cmd(
    cmd: Sequence[str],
    *,
    check: bool = True,
    capture: bool = True,
) -> CmdResult:
    """Run ``cmd`` without a shell and collect its exit code and output.

    With ``check`` a non-zero exit raises :class:`CmdError` carrying the
    result.
    """
    text = shell_join(cmd)
    log.opt(depth=1).debug('exec: {}', text)
    proc = subprocess.run(
        list(cmd),
        capture_output=capture,
        text=True,
    )
    res = CmdResult(proc.returncode, proc.stdout or '', proc.stderr or '')
    if res.ok:
        log.opt(depth=1).debug('exit 0: {}', text)
    elif check:
        log.opt(depth=1).error(
            'exit {}: {} stderr={!r} stdout={!r}',
            res.code,
            text,
            res.stderr.strip(),
            res.stdout.strip(),
        )
        raise CmdError(cmd, res)
    return res


def which(cmd: str) -> Optional[str]:
    return shutil.which(cmd)


def expand(path: str) -> str:
    return os.path.expandvars(os.path.expanduser(path))
