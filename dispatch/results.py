"""
DISPATCH App - Operation results

Component methods report failure through a Result instead of raising, so a
rejected transition never escapes into the event loop. The router is the
only place that turns a failed Result into a client-visible frame.
"""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class Result:
    """Outcome of a registry / presence / ledger operation."""
    ok: bool
    reason: str = ''
    value: Any = None

    @classmethod
    def success(cls, value: Any = None) -> 'Result':
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, reason: str, value: Optional[Any] = None) -> 'Result':
        return cls(ok=False, reason=reason, value=value)

    def __bool__(self) -> bool:
        return self.ok
