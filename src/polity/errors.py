"""Typed failure codes for governance operations.

Engines raise GovernanceError; the service layer converts it into a
failed ServiceResult carrying the same ErrorCode. A failure is always
scoped to the single call that produced it.
"""

from __future__ import annotations

import enum


class ErrorCode(str, enum.Enum):
    """Caller-visible failure codes."""
    # Authorization
    NOT_AUTHORIZED = "not_authorized"
    BLACKLISTED = "blacklisted"
    NOT_CREATOR_OR_ADMIN = "not_creator_or_admin"
    # Lifecycle
    PROPOSAL_NOT_FOUND = "proposal_not_found"
    PROPOSAL_NOT_ACTIVE = "proposal_not_active"
    ALREADY_VOTED = "already_voted"
    NO_EXISTING_VOTE = "no_existing_vote"
    VOTING_PAUSED = "voting_paused"
    VOTING_NOT_PAUSED = "voting_not_paused"
    # Validation
    INVALID_OPTION = "invalid_option"
    INVALID_DURATION = "invalid_duration"
    ARITY_MISMATCH = "arity_mismatch"
    INSUFFICIENT_POWER = "insufficient_power"
    INVALID_WEIGHT = "invalid_weight"
    INVALID_PARTICIPATION = "invalid_participation"
    # Capacity
    ROSTER_FULL = "roster_full"
    TOO_MANY_OPTIONS = "too_many_options"
    BATCH_TOO_LARGE = "batch_too_large"
    SCHEDULE_FULL = "schedule_full"  # external scheduler collaborator
    # Infrastructure
    PERSISTENCE_FAILURE = "persistence_failure"


class GovernanceError(ValueError):
    """A precondition failure with a typed code."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
