"""Proposal and vote data models.

A proposal is the anchor entity for all voting state. Its identity is a
sequential integer that is never reused. Only two fields ever change
after creation: the stored active flag and the weighted vote total.

Vote records carry the weight captured at first cast, so that a later
change of the voter's global power cannot alter a proposal in progress.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class Proposal:
    """A time-bounded proposal.

    Invariants:
    - start_ordinal = created_ordinal + 1
    - end_ordinal >= start_ordinal
    - total_weighted_votes == sum of option tallies (kept by the vote ledger)
    """
    proposal_id: int
    title: str
    description: str
    creator_id: str
    start_ordinal: int
    end_ordinal: int
    options: tuple[str, ...] = field(default_factory=tuple)
    total_weighted_votes: int = 0
    active: bool = True
    min_participation: int = 0
    created_ordinal: Optional[int] = None

    def in_window(self, ordinal: int) -> bool:
        """True iff the ordinal lies within [start, end] inclusive."""
        return self.start_ordinal <= ordinal <= self.end_ordinal

    def to_record(self) -> dict[str, Any]:
        return {
            "proposal_id": self.proposal_id,
            "title": self.title,
            "description": self.description,
            "creator_id": self.creator_id,
            "start_ordinal": self.start_ordinal,
            "end_ordinal": self.end_ordinal,
            "options": list(self.options),
            "total_weighted_votes": self.total_weighted_votes,
            "active": self.active,
            "min_participation": self.min_participation,
            "created_ordinal": self.created_ordinal,
        }

    @staticmethod
    def from_record(data: dict[str, Any]) -> Proposal:
        return Proposal(
            proposal_id=int(data["proposal_id"]),
            title=data["title"],
            description=data["description"],
            creator_id=data["creator_id"],
            start_ordinal=int(data["start_ordinal"]),
            end_ordinal=int(data["end_ordinal"]),
            options=tuple(data.get("options", [])),
            total_weighted_votes=int(data.get("total_weighted_votes", 0)),
            active=bool(data.get("active", True)),
            min_participation=int(data.get("min_participation", 0)),
            created_ordinal=data.get("created_ordinal"),
        )


@dataclass
class VoteRecord:
    """A voter's live choice on one proposal.

    Mutable — change_vote overwrites option and changed_ordinal.
    weight is fixed at first cast.
    """
    proposal_id: int
    voter_id: str
    option: int
    weight: int
    cast_ordinal: int
    changed_ordinal: Optional[int] = None


@dataclass(frozen=True)
class ProposalResults:
    """Read-only snapshot of a proposal's outcome."""
    proposal_id: int
    title: str
    total_votes: int
    option_votes: dict[int, int]
    is_active: bool
    participation_met: bool

    def as_dict(self) -> dict[str, Any]:
        return {
            "proposal_id": self.proposal_id,
            "title": self.title,
            "total_votes": self.total_votes,
            "option_votes": {str(k): v for k, v in self.option_votes.items()},
            "is_active": self.is_active,
            "participation_met": self.participation_met,
        }
