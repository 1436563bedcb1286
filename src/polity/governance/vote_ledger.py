"""Vote Ledger — per-voter choices and weighted per-option tallies.

This is where the voting invariants live:
- At most one live vote per (proposal, voter). cast_vote on an existing
  voter fails; change_vote on a missing voter fails.
- For every proposal, the sum of option tallies equals the proposal's
  total_weighted_votes.
- A vote exists for (p, v) iff v's weight was added exactly once into
  one tally row of p and into p's total.

Weight is captured once, at first cast, as the voter's effective power
max(1, stored power). change_vote moves that captured weight between
options and never re-reads the power ledger, so a later power change
cannot alter a proposal in progress. The token requirement is checked
only at first cast.

Every operation checks all of its preconditions before the first
mutation. A GovernanceError therefore always leaves state unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from polity.errors import ErrorCode, GovernanceError
from polity.governance.access_control import AccessControlRegistry
from polity.governance.proposals import ProposalStore
from polity.governance.voting_power import VotingPowerLedger
from polity.models.governance import ProposalResults, VoteRecord
from polity.policy.resolver import VotingParams


@dataclass(frozen=True)
class ResetSnapshot:
    """State removed by an emergency reset, kept for rollback."""
    proposal_id: int
    total_weighted_votes: int
    active: bool
    tallies: dict[int, int]
    votes: dict[str, VoteRecord]


class VoteLedger:
    """Records votes and maintains weighted tallies.

    Usage:
        ledger = VoteLedger(access, proposals, power, voting_params)
        ledger.cast_vote("alice", proposal_id, option=2, now=105)
        ledger.change_vote("alice", proposal_id, new_option=3, now=106)
        results = ledger.get_results(proposal_id, now=106)
    """

    def __init__(
        self,
        access: AccessControlRegistry,
        proposals: ProposalStore,
        power: VotingPowerLedger,
        voting_params: VotingParams,
        roster_capacity: int = 1000,
    ) -> None:
        self._access = access
        self._proposals = proposals
        self._power = power
        self._params = voting_params
        self._roster_capacity = roster_capacity
        self._token_requirement = voting_params.default_token_requirement
        self._votes: dict[int, dict[str, VoteRecord]] = {}
        self._tallies: dict[int, dict[int, int]] = {}
        self._rosters: dict[int, list[str]] = {}

    @classmethod
    def from_records(
        cls,
        access: AccessControlRegistry,
        proposals: ProposalStore,
        power: VotingPowerLedger,
        voting_params: VotingParams,
        data: dict[str, Any],
        roster_capacity: int = 1000,
    ) -> VoteLedger:
        """Restore ledger state from persisted records."""
        ledger = cls(access, proposals, power, voting_params, roster_capacity)
        ledger._token_requirement = int(
            data.get("token_requirement", voting_params.default_token_requirement)
        )
        for v in data.get("votes", []):
            vote = VoteRecord(
                proposal_id=int(v["proposal_id"]),
                voter_id=v["voter_id"],
                option=int(v["option"]),
                weight=int(v["weight"]),
                cast_ordinal=int(v["cast_ordinal"]),
                changed_ordinal=v.get("changed_ordinal"),
            )
            ledger._votes.setdefault(vote.proposal_id, {})[vote.voter_id] = vote
        for pid, tally in data.get("tallies", {}).items():
            ledger._tallies[int(pid)] = {int(o): int(c) for o, c in tally.items()}
        for pid, roster in data.get("rosters", {}).items():
            ledger._rosters[int(pid)] = list(roster)
        return ledger

    def to_records(self) -> dict[str, Any]:
        votes = []
        for pid in sorted(self._votes):
            for vote in self._votes[pid].values():
                votes.append({
                    "proposal_id": vote.proposal_id,
                    "voter_id": vote.voter_id,
                    "option": vote.option,
                    "weight": vote.weight,
                    "cast_ordinal": vote.cast_ordinal,
                    "changed_ordinal": vote.changed_ordinal,
                })
        return {
            "token_requirement": self._token_requirement,
            "votes": votes,
            "tallies": {
                str(pid): {str(o): c for o, c in sorted(t.items())}
                for pid, t in sorted(self._tallies.items())
            },
            "rosters": {str(pid): list(r) for pid, r in sorted(self._rosters.items())},
        }

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def token_requirement(self) -> int:
        return self._token_requirement

    def set_token_requirement(self, requirement: int) -> None:
        if isinstance(requirement, bool) or not isinstance(requirement, int) or requirement < 0:
            raise GovernanceError(
                ErrorCode.INVALID_WEIGHT,
                f"Token requirement must be a non-negative integer, got {requirement!r}",
            )
        self._token_requirement = requirement

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_vote(self, proposal_id: int, voter_id: str) -> Optional[VoteRecord]:
        return self._votes.get(proposal_id, {}).get(voter_id.strip())

    def has_voted(self, proposal_id: int, voter_id: str) -> bool:
        return self.get_vote(proposal_id, voter_id) is not None

    def option_tally(self, proposal_id: int, option: int) -> int:
        return self._tallies.get(proposal_id, {}).get(option, 0)

    def roster(self, proposal_id: int) -> list[str]:
        return list(self._rosters.get(proposal_id, []))

    def get_results(self, proposal_id: int, now: int) -> Optional[ProposalResults]:
        """Return a results snapshot, or None if the proposal is unknown."""
        proposal = self._proposals.get_proposal(proposal_id)
        if proposal is None:
            return None
        option_votes = {
            o: self.option_tally(proposal_id, o) for o in self._params.option_numbers
        }
        return ProposalResults(
            proposal_id=proposal_id,
            title=proposal.title,
            total_votes=proposal.total_weighted_votes,
            option_votes=option_votes,
            is_active=self._proposals.is_active(proposal_id, now),
            participation_met=proposal.total_weighted_votes >= proposal.min_participation,
        )

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------

    def cast_vote(
        self,
        voter_id: str,
        proposal_id: int,
        option: int,
        now: int,
    ) -> VoteRecord:
        """Record a first vote and add the voter's weight to the tallies.

        Checks, in order: proposal exists, proposal active, voter not
        blacklisted, no existing vote, stored power meets the token
        requirement, option in range, roster not full.
        """
        voter = voter_id.strip()
        proposal = self._proposals.require_active(proposal_id, now)
        self._access.require_not_blacklisted(voter)
        if voter in self._votes.get(proposal_id, {}):
            raise GovernanceError(
                ErrorCode.ALREADY_VOTED,
                f"Voter {voter} has already voted on proposal {proposal_id}",
            )
        stored_power = self._power.get_power(voter)
        if stored_power < self._token_requirement:
            raise GovernanceError(
                ErrorCode.INSUFFICIENT_POWER,
                f"Voter {voter} has power {stored_power}, "
                f"requirement is {self._token_requirement}",
            )
        self._check_option(option)
        roster = self._rosters.get(proposal_id, [])
        if len(roster) >= self._roster_capacity:
            raise GovernanceError(
                ErrorCode.ROSTER_FULL,
                f"Proposal {proposal_id} roster is full ({self._roster_capacity})",
            )

        weight = self._power.effective_power(voter)
        vote = VoteRecord(
            proposal_id=proposal_id,
            voter_id=voter,
            option=option,
            weight=weight,
            cast_ordinal=now,
        )
        self._votes.setdefault(proposal_id, {})[voter] = vote
        tally = self._tallies.setdefault(proposal_id, {})
        tally[option] = tally.get(option, 0) + weight
        proposal.total_weighted_votes += weight
        self._rosters.setdefault(proposal_id, []).append(voter)
        return vote

    def change_vote(
        self,
        voter_id: str,
        proposal_id: int,
        new_option: int,
        now: int,
    ) -> tuple[VoteRecord, int]:
        """Move the voter's captured weight to a new option.

        Checks, in order: proposal exists, existing vote, proposal
        active, voter not blacklisted, option in range. The token
        requirement is not re-checked.

        Returns:
            Tuple of (updated vote, previous option).
        """
        voter = voter_id.strip()
        self._proposals.require(proposal_id)
        vote = self._votes.get(proposal_id, {}).get(voter)
        if vote is None:
            raise GovernanceError(
                ErrorCode.NO_EXISTING_VOTE,
                f"Voter {voter} has no vote on proposal {proposal_id}",
            )
        self._proposals.require_active(proposal_id, now)
        self._access.require_not_blacklisted(voter)
        self._check_option(new_option)

        old_option = vote.option
        self._move(vote, new_option)
        vote.changed_ordinal = now
        return vote, old_option

    def emergency_reset(self, caller: str, proposal_id: int) -> ResetSnapshot:
        """Zero a proposal's tallies and deactivate it. Admin only, while paused.

        Vote records for the proposal are cleared as well, keeping the
        invariant that a vote exists only where its weight is counted.
        The roster is kept as audit history.
        """
        self._access.require_admin(caller)
        if not self._access.is_paused():
            raise GovernanceError(
                ErrorCode.VOTING_NOT_PAUSED,
                "Emergency reset is only permitted while voting is paused",
            )
        proposal = self._proposals.require(proposal_id)

        tally = self._tallies.get(proposal_id, {})
        snapshot = ResetSnapshot(
            proposal_id=proposal_id,
            total_weighted_votes=proposal.total_weighted_votes,
            active=proposal.active,
            tallies=dict(tally),
            votes=dict(self._votes.get(proposal_id, {})),
        )
        for option in self._params.option_numbers:
            tally.pop(option, None)
        self._votes.pop(proposal_id, None)
        proposal.total_weighted_votes = 0
        proposal.active = False
        return snapshot

    # ------------------------------------------------------------------
    # Rollback helpers (service layer only)
    # ------------------------------------------------------------------

    def _retract(self, proposal_id: int, voter_id: str) -> None:
        """Undo a cast_vote that has not been followed by other votes."""
        vote = self._votes[proposal_id].pop(voter_id)
        self._tallies[proposal_id][vote.option] -= vote.weight
        proposal = self._proposals.require(proposal_id)
        proposal.total_weighted_votes -= vote.weight
        roster = self._rosters[proposal_id]
        if roster and roster[-1] == voter_id:
            roster.pop()

    def _revert_change(
        self,
        proposal_id: int,
        voter_id: str,
        old_option: int,
        old_changed_ordinal: Optional[int],
    ) -> None:
        vote = self._votes[proposal_id][voter_id]
        self._move(vote, old_option)
        vote.changed_ordinal = old_changed_ordinal

    def _restore_reset(self, snapshot: ResetSnapshot) -> None:
        proposal = self._proposals.require(snapshot.proposal_id)
        proposal.total_weighted_votes = snapshot.total_weighted_votes
        proposal.active = snapshot.active
        self._tallies[snapshot.proposal_id] = dict(snapshot.tallies)
        if snapshot.votes:
            self._votes[snapshot.proposal_id] = dict(snapshot.votes)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_option(self, option: int) -> None:
        if (
            isinstance(option, bool)
            or not isinstance(option, int)
            or option not in self._params.option_numbers
        ):
            raise GovernanceError(
                ErrorCode.INVALID_OPTION,
                f"Option must be in {self._params.min_option}..{self._params.max_option}, "
                f"got {option!r}",
            )

    def _move(self, vote: VoteRecord, new_option: int) -> None:
        # Weight leaves one bucket and enters another; the total is unchanged.
        tally = self._tallies.setdefault(vote.proposal_id, {})
        tally[vote.option] = tally.get(vote.option, 0) - vote.weight
        tally[new_option] = tally.get(new_option, 0) + vote.weight
        vote.option = new_option
