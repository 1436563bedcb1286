"""Voting Power Ledger — participant weights.

Stored power defaults to 0 for participants never assigned. The weight a
vote contributes is the effective power max(1, stored), so every
eligible voter has nonzero influence.

Authorisation (admin-only assignment) is enforced at the service layer.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from polity.errors import ErrorCode, GovernanceError


class VotingPowerLedger:
    """Maps participant identity to a non-negative integer weight."""

    def __init__(self, max_batch_size: int = 50) -> None:
        self._power: dict[str, int] = {}
        self._max_batch_size = max_batch_size

    @classmethod
    def from_records(
        cls,
        records: dict[str, int],
        max_batch_size: int = 50,
    ) -> VotingPowerLedger:
        ledger = cls(max_batch_size)
        for identity, weight in records.items():
            ledger._power[identity] = int(weight)
        return ledger

    def to_records(self) -> dict[str, int]:
        return dict(sorted(self._power.items()))

    def get_power(self, identity: str) -> int:
        return self._power.get(identity.strip(), 0)

    def effective_power(self, identity: str) -> int:
        return max(1, self.get_power(identity))

    def set_power(self, identity: str, weight: int) -> None:
        target = identity.strip()
        if not target:
            raise GovernanceError(ErrorCode.NOT_AUTHORIZED, "Identity cannot be blank")
        _check_weight(weight)
        self._power[target] = weight

    def batch_set_power(
        self,
        identities: Sequence[str],
        weights: Sequence[int],
    ) -> None:
        """Assign weights pairwise.

        Every pair is validated before the first assignment, so either
        all weights are applied or none.

        Raises:
            GovernanceError: ARITY_MISMATCH if the sequences differ in
                length, BATCH_TOO_LARGE above the batch capacity,
                INVALID_WEIGHT for a negative or non-integer weight.
        """
        if len(identities) != len(weights):
            raise GovernanceError(
                ErrorCode.ARITY_MISMATCH,
                f"Got {len(identities)} identities but {len(weights)} weights",
            )
        if len(identities) > self._max_batch_size:
            raise GovernanceError(
                ErrorCode.BATCH_TOO_LARGE,
                f"Batch of {len(identities)} exceeds limit of {self._max_batch_size}",
            )
        targets = []
        for identity, weight in zip(identities, weights):
            target = identity.strip()
            if not target:
                raise GovernanceError(ErrorCode.NOT_AUTHORIZED, "Identity cannot be blank")
            _check_weight(weight)
            targets.append(target)
        for target, weight in zip(targets, weights):
            self._power[target] = weight

    def snapshot(self, identities: Sequence[str]) -> dict[str, Any]:
        """Return current stored entries (or None) for later restore."""
        return {i.strip(): self._power.get(i.strip()) for i in identities}

    def restore(self, snapshot: dict[str, Any]) -> None:
        for identity, weight in snapshot.items():
            if weight is None:
                self._power.pop(identity, None)
            else:
                self._power[identity] = weight


def _check_weight(weight: int) -> None:
    if isinstance(weight, bool) or not isinstance(weight, int) or weight < 0:
        raise GovernanceError(
            ErrorCode.INVALID_WEIGHT,
            f"Weight must be a non-negative integer, got {weight!r}",
        )
