"""Result dataclasses returned by lifecycle orchestration operations."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


class FailureKind(str, enum.Enum):
    NOT_FOUND = 'not_found'
    OPERATION_FAILED = 'operation_failed'
    TIMEOUT = 'timeout'


@dataclass
class OperationResult:
    """Outcome of an orchestration call.

    Truthiness follows ``ok`` so callers that only care about success can keep
    treating the result as a boolean. ``stage`` names the step that failed for
    multi-step operations and ``compensated`` records whether partially
    created objects were removed again.
    """

    ok: bool
    kind: Optional[FailureKind] = None
    detail: str = ''
    value: Optional[str] = None
    stage: str = ''
    compensated: bool = False

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls, detail: str = '', value: Optional[str] = None):
        return cls(True, detail=detail, value=value)

    @classmethod
    def not_found(cls, detail: str):
        return cls(False, FailureKind.NOT_FOUND, detail)

    @classmethod
    def failed(cls, detail: str, *, stage: str = '', compensated: bool = False):
        return cls(
            False,
            FailureKind.OPERATION_FAILED,
            detail,
            stage=stage,
            compensated=compensated,
        )

    @classmethod
    def timeout(cls, detail: str):
        return cls(False, FailureKind.TIMEOUT, detail)

    def as_dict(self) -> dict[str, object]:
        return {
            'ok': self.ok,
            'kind': self.kind.value if self.kind is not None else None,
            'detail': self.detail,
            'value': self.value,
            'stage': self.stage,
            'compensated': self.compensated,
        }
