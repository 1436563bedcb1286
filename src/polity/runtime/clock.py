"""Ledger clock and per-call context.

The ordinal clock is the external ordering counter ("block height").
The governance core reads it once per call and never writes it. Only
the owner of the clock advances it, between calls.

The caller identity comes from outside as well; the service receives
it as an explicit argument and binds it, together with the ordinal, in
a CallContext for the duration of one call.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class LedgerClock(Protocol):
    """Read-only view of the ordinal clock."""

    def now(self) -> int: ...


class OrdinalClock:
    """In-process monotone ordinal counter.

    Thread-safety: advance() must not be called while a governance call
    is in flight. The service serialises its own calls; the clock owner
    serialises advancing against them.
    """

    def __init__(self, start: int = 0) -> None:
        if start < 0:
            raise ValueError(f"Clock start must be >= 0, got {start}")
        self._ordinal = start

    def now(self) -> int:
        return self._ordinal

    def advance(self, steps: int = 1) -> int:
        """Move the clock forward and return the new ordinal."""
        if steps < 0:
            raise ValueError("Ordinal clock cannot move backwards")
        self._ordinal += steps
        return self._ordinal

    def advance_to(self, ordinal: int) -> int:
        """Jump forward to an absolute ordinal."""
        if ordinal < self._ordinal:
            raise ValueError(
                f"Ordinal clock cannot move backwards ({self._ordinal} -> {ordinal})"
            )
        self._ordinal = ordinal
        return self._ordinal


@dataclass(frozen=True)
class CallContext:
    """Immutable identity and ordinal for one governance call."""
    caller: str
    ordinal: int
