"""Proposal Store — proposal records and lifecycle flags.

Proposals are created with a voting window relative to the ordinal at
creation: start = now + 1, end = now + duration. Ids are sequential
and never reused. Proposals are never deleted; deactivation only flips
the stored active flag.

Whether a proposal accepts votes is computed on every read:
stored active flag AND start <= now <= end AND not globally paused.
Window expiry is detected lazily, nothing sweeps proposals in the
background.

The store reads the pause flag and blacklist from the access registry
it is constructed with. It never mutates the registry.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Optional

from polity.errors import ErrorCode, GovernanceError
from polity.governance.access_control import AccessControlRegistry
from polity.models.governance import Proposal


class ProposalStore:
    """Holds all proposals, keyed by sequential id.

    Usage:
        store = ProposalStore(access, max_option_labels=10)
        proposal = store.create_proposal(creator, "Title", "Desc", 10,
                                         ["yes", "no"], 0, now=100)
        store.is_active(proposal.proposal_id, now=105)  # True
    """

    def __init__(
        self,
        access: AccessControlRegistry,
        max_option_labels: int = 10,
    ) -> None:
        self._access = access
        self._max_option_labels = max_option_labels
        self._proposals: dict[int, Proposal] = {}
        self._next_id = 1

    @classmethod
    def from_records(
        cls,
        access: AccessControlRegistry,
        data: dict[str, Any],
        max_option_labels: int = 10,
    ) -> ProposalStore:
        store = cls(access, max_option_labels)
        for record in data.get("proposals", []):
            proposal = Proposal.from_record(record)
            store._proposals[proposal.proposal_id] = proposal
        store._next_id = int(data.get("next_id", len(store._proposals) + 1))
        return store

    def to_records(self) -> dict[str, Any]:
        return {
            "next_id": self._next_id,
            "proposals": [
                p.to_record() for _, p in sorted(self._proposals.items())
            ],
        }

    @property
    def proposal_count(self) -> int:
        return len(self._proposals)

    @property
    def next_id(self) -> int:
        return self._next_id

    def create_proposal(
        self,
        creator_id: str,
        title: str,
        description: str,
        duration: int,
        options: Sequence[str],
        min_participation: int,
        now: int,
    ) -> Proposal:
        """Create a proposal and allocate the next id.

        Args:
            creator_id: Calling identity.
            title: Proposal title.
            description: Free-text description.
            duration: Window length in ordinals; must be > 0.
            options: Ordered option labels (bounded capacity).
            min_participation: Weighted total needed for participation_met.
            now: Current ordinal.

        Returns:
            The stored Proposal.

        Raises:
            GovernanceError: INVALID_DURATION, VOTING_PAUSED, BLACKLISTED,
                TOO_MANY_OPTIONS or INVALID_PARTICIPATION, checked in that
                order before anything is stored.
        """
        if duration <= 0:
            raise GovernanceError(
                ErrorCode.INVALID_DURATION, f"Duration must be > 0, got {duration}"
            )
        if self._access.is_paused():
            raise GovernanceError(ErrorCode.VOTING_PAUSED, "Governance is paused")
        self._access.require_not_blacklisted(creator_id)
        if len(options) > self._max_option_labels:
            raise GovernanceError(
                ErrorCode.TOO_MANY_OPTIONS,
                f"{len(options)} options exceeds limit of {self._max_option_labels}",
            )
        if min_participation < 0:
            raise GovernanceError(
                ErrorCode.INVALID_PARTICIPATION,
                f"Minimum participation must be >= 0, got {min_participation}",
            )

        proposal = Proposal(
            proposal_id=self._next_id,
            title=title.strip(),
            description=description.strip(),
            creator_id=creator_id.strip(),
            start_ordinal=now + 1,
            end_ordinal=now + duration,
            options=tuple(o.strip() for o in options),
            min_participation=min_participation,
            created_ordinal=now,
        )
        self._proposals[proposal.proposal_id] = proposal
        self._next_id += 1
        return proposal

    def get_proposal(self, proposal_id: int) -> Optional[Proposal]:
        return self._proposals.get(proposal_id)

    def require(self, proposal_id: int) -> Proposal:
        """Return the proposal or raise PROPOSAL_NOT_FOUND."""
        proposal = self._proposals.get(proposal_id)
        if proposal is None:
            raise GovernanceError(
                ErrorCode.PROPOSAL_NOT_FOUND, f"Proposal not found: {proposal_id}"
            )
        return proposal

    def list_proposals(
        self,
        now: Optional[int] = None,
        active_only: bool = False,
    ) -> list[Proposal]:
        proposals = [p for _, p in sorted(self._proposals.items())]
        if not active_only:
            return proposals
        if now is None:
            raise ValueError("now is required when filtering active proposals")
        return [p for p in proposals if self.is_active(p.proposal_id, now)]

    def is_active(self, proposal_id: int, now: int) -> bool:
        proposal = self._proposals.get(proposal_id)
        if proposal is None:
            return False
        return (
            proposal.active
            and proposal.in_window(now)
            and not self._access.is_paused()
        )

    def require_active(self, proposal_id: int, now: int) -> Proposal:
        proposal = self.require(proposal_id)
        if not self.is_active(proposal_id, now):
            raise GovernanceError(
                ErrorCode.PROPOSAL_NOT_ACTIVE,
                f"Proposal {proposal_id} is not accepting votes at ordinal {now}",
            )
        return proposal

    def deactivate_proposal(self, caller: str, proposal_id: int) -> Proposal:
        """Clear the stored active flag. Creator or admin only.

        Votes and tallies are left untouched.
        """
        proposal = self.require(proposal_id)
        if proposal.creator_id != caller.strip() and not self._access.is_admin(caller):
            raise GovernanceError(
                ErrorCode.NOT_CREATOR_OR_ADMIN,
                f"Only the creator or an admin may deactivate proposal {proposal_id}",
            )
        proposal.active = False
        return proposal

    def _discard_latest(self, proposal_id: int) -> None:
        """Undo the most recent create_proposal (service rollback only)."""
        if proposal_id == self._next_id - 1 and proposal_id in self._proposals:
            del self._proposals[proposal_id]
            self._next_id -= 1
