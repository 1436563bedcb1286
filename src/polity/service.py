"""Governance service — unified facade for the voting engine.

This is the primary interface for programmatic access to Polity.
It sequences calls into the components:
- Access control (admins, blacklist, pause)
- Voting power (single and batch assignment, token requirement)
- Proposal lifecycle (create, deactivate, emergency reset)
- Votes (cast, change, results)
- Persistence (event log, state store)

Every operation takes the calling identity as its first argument and
reads the ordinal clock once. Mutations return a ServiceResult; reads
return the value or None.

Calls are serialised through one lock per service instance. Each
mutating call is all-or-nothing: components check every precondition
before mutating, and a persistence or audit failure after mutation
rolls the in-memory state back before the call reports failure.
"""

from __future__ import annotations

import functools
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from polity.errors import ErrorCode, GovernanceError
from polity.governance.access_control import AccessControlRegistry
from polity.governance.proposals import ProposalStore
from polity.governance.vote_ledger import VoteLedger
from polity.governance.voting_power import VotingPowerLedger
from polity.logger import get_logger
from polity.models.governance import Proposal, ProposalResults, VoteRecord
from polity.persistence.event_log import EventKind, EventLog, EventRecord
from polity.persistence.state_store import StateStore
from polity.policy.resolver import PolicyResolver
from polity.runtime.clock import CallContext, LedgerClock, OrdinalClock

logger = get_logger(__name__)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    error_code: Optional[ErrorCode] = None
    data: dict[str, Any] = field(default_factory=dict)


def _serialized(method: Callable[..., Any]) -> Callable[..., Any]:
    @functools.wraps(method)
    def wrapper(self: GovernanceService, *args: Any, **kwargs: Any) -> Any:
        with self._lock:
            return method(self, *args, **kwargs)
    return wrapper


class GovernanceService:
    """Weighted proposal governance facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        clock = OrdinalClock(start=100)
        service = GovernanceService(resolver, owner="admin", clock=clock)

        result = service.create_proposal("alice", "Title", "Desc", 10, ["a", "b"])
        pid = result.data["proposal_id"]

        clock.advance()
        service.cast_vote("bob", pid, 2)
        service.get_results(pid)

    Persistence (optional):
        service = GovernanceService(resolver, owner, event_log=log, state_store=store)
        # State is persisted on each mutation and loaded on construction.
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        owner: str,
        clock: Optional[LedgerClock] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
    ) -> None:
        self._resolver = resolver
        self._lock = threading.RLock()
        self._event_log = event_log if event_log is not None else EventLog()
        self._state_store = state_store

        voting = resolver.voting_params()
        capacity = resolver.capacity_params()

        if state_store is not None and state_store.has_state():
            self._access = AccessControlRegistry.from_records(
                state_store.load_section("access")
            )
            if owner.strip() != self._access.owner:
                raise ValueError(
                    f"Stored owner {self._access.owner} does not match {owner.strip()}"
                )
            self._power = VotingPowerLedger.from_records(
                state_store.load_section("voting_power") or {},
                capacity.max_batch_size,
            )
            self._proposals = ProposalStore.from_records(
                self._access,
                state_store.load_section("proposals") or {},
                capacity.max_option_labels,
            )
            self._votes = VoteLedger.from_records(
                self._access, self._proposals, self._power, voting,
                state_store.load_section("votes") or {},
                capacity.roster_capacity,
            )
            stored_ordinal = state_store.load_ordinal()
        else:
            self._access = AccessControlRegistry(owner)
            self._power = VotingPowerLedger(capacity.max_batch_size)
            self._proposals = ProposalStore(self._access, capacity.max_option_labels)
            self._votes = VoteLedger(
                self._access, self._proposals, self._power, voting,
                capacity.roster_capacity,
            )
            stored_ordinal = 0

        self._clock: LedgerClock = clock if clock is not None else OrdinalClock(stored_ordinal)

        # Set when state could not be restored after a failed audit append.
        self._persistence_degraded: bool = False

    @property
    def clock(self) -> LedgerClock:
        return self._clock

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    # ------------------------------------------------------------------
    # Access control
    # ------------------------------------------------------------------

    @_serialized
    def add_admin(self, caller: str, identity: str) -> ServiceResult:
        target = identity.strip()
        was_admin = self._access.is_admin(target)
        try:
            ctx = self._context(caller)
            self._access.add_admin(ctx.caller, identity)
        except GovernanceError as e:
            return self._failure("add_admin", e)

        def _rollback() -> None:
            self._access._restore_admin(target, was_admin)

        return self._commit(
            ctx, EventKind.ADMIN_ADDED, f"{ctx.caller} added admin {target}",
            {"target": target}, _rollback,
        )

    @_serialized
    def remove_admin(self, caller: str, identity: str) -> ServiceResult:
        target = identity.strip()
        was_admin = self._access.is_admin(target)
        try:
            ctx = self._context(caller)
            self._access.remove_admin(ctx.caller, identity)
        except GovernanceError as e:
            return self._failure("remove_admin", e)

        def _rollback() -> None:
            self._access._restore_admin(target, was_admin)

        return self._commit(
            ctx, EventKind.ADMIN_REMOVED, f"{ctx.caller} removed admin {target}",
            {"target": target}, _rollback,
        )

    @_serialized
    def blacklist(self, caller: str, identity: str) -> ServiceResult:
        target = identity.strip()
        was_blacklisted = self._access.is_blacklisted(target)
        try:
            ctx = self._context(caller)
            self._access.blacklist(ctx.caller, identity)
        except GovernanceError as e:
            return self._failure("blacklist", e)

        def _rollback() -> None:
            self._access._restore_blacklisted(target, was_blacklisted)

        return self._commit(
            ctx, EventKind.PARTICIPANT_BLACKLISTED,
            f"{ctx.caller} blacklisted {target}", {"target": target}, _rollback,
        )

    @_serialized
    def unblacklist(self, caller: str, identity: str) -> ServiceResult:
        target = identity.strip()
        was_blacklisted = self._access.is_blacklisted(target)
        try:
            ctx = self._context(caller)
            self._access.unblacklist(ctx.caller, identity)
        except GovernanceError as e:
            return self._failure("unblacklist", e)

        def _rollback() -> None:
            self._access._restore_blacklisted(target, was_blacklisted)

        return self._commit(
            ctx, EventKind.PARTICIPANT_UNBLACKLISTED,
            f"{ctx.caller} removed {target} from the blacklist",
            {"target": target}, _rollback,
        )

    @_serialized
    def pause(self, caller: str) -> ServiceResult:
        try:
            ctx = self._context(caller)
            self._access.pause(ctx.caller)
        except GovernanceError as e:
            return self._failure("pause", e)

        def _rollback() -> None:
            self._access._restore_paused(False)

        return self._commit(
            ctx, EventKind.VOTING_PAUSED, f"{ctx.caller} paused voting", {}, _rollback,
        )

    @_serialized
    def unpause(self, caller: str) -> ServiceResult:
        try:
            ctx = self._context(caller)
            self._access.unpause(ctx.caller)
        except GovernanceError as e:
            return self._failure("unpause", e)

        def _rollback() -> None:
            self._access._restore_paused(True)

        return self._commit(
            ctx, EventKind.VOTING_UNPAUSED, f"{ctx.caller} unpaused voting", {}, _rollback,
        )

    # ------------------------------------------------------------------
    # Voting power and token requirement
    # ------------------------------------------------------------------

    @_serialized
    def set_voting_power(self, caller: str, identity: str, weight: int) -> ServiceResult:
        previous = self._power.snapshot([identity])
        try:
            ctx = self._context(caller)
            self._access.require_admin(ctx.caller)
            self._power.set_power(identity, weight)
        except GovernanceError as e:
            return self._failure("set_voting_power", e)

        def _rollback() -> None:
            self._power.restore(previous)

        target = identity.strip()
        return self._commit(
            ctx, EventKind.VOTING_POWER_SET,
            f"{ctx.caller} set voting power of {target} to {weight}",
            {"target": target, "weight": weight}, _rollback,
            data={"identity": target, "weight": weight},
        )

    @_serialized
    def batch_set_voting_power(
        self,
        caller: str,
        identities: Sequence[str],
        weights: Sequence[int],
    ) -> ServiceResult:
        """Assign weights pairwise; lengths must match. Admin only."""
        previous = self._power.snapshot(identities)
        try:
            ctx = self._context(caller)
            self._access.require_admin(ctx.caller)
            self._power.batch_set_power(identities, weights)
        except GovernanceError as e:
            return self._failure("batch_set_voting_power", e)

        def _rollback() -> None:
            self._power.restore(previous)

        assigned = {i.strip(): w for i, w in zip(identities, weights)}
        return self._commit(
            ctx, EventKind.VOTING_POWER_BATCH_SET,
            f"{ctx.caller} set voting power for {len(assigned)} participants",
            {"assignments": assigned}, _rollback,
            data={"count": len(identities)},
        )

    @_serialized
    def set_token_requirement(self, caller: str, requirement: int) -> ServiceResult:
        previous = self._votes.token_requirement
        try:
            ctx = self._context(caller)
            self._access.require_admin(ctx.caller)
            self._votes.set_token_requirement(requirement)
        except GovernanceError as e:
            return self._failure("set_token_requirement", e)

        def _rollback() -> None:
            self._votes.set_token_requirement(previous)

        return self._commit(
            ctx, EventKind.TOKEN_REQUIREMENT_SET,
            f"{ctx.caller} set token requirement to {requirement}",
            {"requirement": requirement, "previous": previous}, _rollback,
        )

    # ------------------------------------------------------------------
    # Proposal lifecycle
    # ------------------------------------------------------------------

    @_serialized
    def create_proposal(
        self,
        caller: str,
        title: str,
        description: str,
        duration: int,
        options: Sequence[str],
        min_participation: int = 0,
    ) -> ServiceResult:
        """Create a proposal open from now+1 to now+duration."""
        try:
            ctx = self._context(caller)
            proposal = self._proposals.create_proposal(
                ctx.caller, title, description, duration, options,
                min_participation, now=ctx.ordinal,
            )
        except GovernanceError as e:
            return self._failure("create_proposal", e)

        pid = proposal.proposal_id

        def _rollback() -> None:
            self._proposals._discard_latest(pid)

        return self._commit(
            ctx, EventKind.PROPOSAL_CREATED,
            f"{ctx.caller} created proposal {pid}: {proposal.title}",
            {
                "proposal_id": pid,
                "start_ordinal": proposal.start_ordinal,
                "end_ordinal": proposal.end_ordinal,
                "options": list(proposal.options),
                "min_participation": proposal.min_participation,
            },
            _rollback,
            data={
                "proposal_id": pid,
                "start_ordinal": proposal.start_ordinal,
                "end_ordinal": proposal.end_ordinal,
            },
        )

    @_serialized
    def deactivate_proposal(self, caller: str, proposal_id: int) -> ServiceResult:
        existing = self._proposals.get_proposal(proposal_id)
        was_active = existing.active if existing is not None else False
        try:
            ctx = self._context(caller)
            self._proposals.deactivate_proposal(ctx.caller, proposal_id)
        except GovernanceError as e:
            return self._failure("deactivate_proposal", e)

        def _rollback() -> None:
            existing.active = was_active

        return self._commit(
            ctx, EventKind.PROPOSAL_DEACTIVATED,
            f"{ctx.caller} deactivated proposal {proposal_id}",
            {"proposal_id": proposal_id}, _rollback,
        )

    @_serialized
    def emergency_reset_proposal(self, caller: str, proposal_id: int) -> ServiceResult:
        """Zero a proposal's tallies and deactivate it. Admin only, while paused."""
        try:
            ctx = self._context(caller)
            snapshot = self._votes.emergency_reset(ctx.caller, proposal_id)
        except GovernanceError as e:
            return self._failure("emergency_reset_proposal", e)

        def _rollback() -> None:
            self._votes._restore_reset(snapshot)

        return self._commit(
            ctx, EventKind.PROPOSAL_EMERGENCY_RESET,
            f"{ctx.caller} reset proposal {proposal_id} "
            f"(discarded {snapshot.total_weighted_votes} weighted votes)",
            {
                "proposal_id": proposal_id,
                "discarded_total": snapshot.total_weighted_votes,
                "cleared_votes": len(snapshot.votes),
            },
            _rollback,
        )

    # ------------------------------------------------------------------
    # Votes
    # ------------------------------------------------------------------

    @_serialized
    def cast_vote(self, caller: str, proposal_id: int, option: int) -> ServiceResult:
        try:
            ctx = self._context(caller)
            vote = self._votes.cast_vote(ctx.caller, proposal_id, option, ctx.ordinal)
        except GovernanceError as e:
            return self._failure("cast_vote", e)

        def _rollback() -> None:
            self._votes._retract(proposal_id, vote.voter_id)

        return self._commit(
            ctx, EventKind.VOTE_CAST,
            f"{ctx.caller} voted option {option} on proposal {proposal_id} "
            f"with weight {vote.weight}",
            {"proposal_id": proposal_id, "option": option, "weight": vote.weight},
            _rollback,
            data={"proposal_id": proposal_id, "option": option, "weight": vote.weight},
        )

    @_serialized
    def change_vote(self, caller: str, proposal_id: int, new_option: int) -> ServiceResult:
        existing = self._votes.get_vote(proposal_id, caller)
        previous_changed = existing.changed_ordinal if existing is not None else None
        try:
            ctx = self._context(caller)
            vote, old_option = self._votes.change_vote(
                ctx.caller, proposal_id, new_option, ctx.ordinal,
            )
        except GovernanceError as e:
            return self._failure("change_vote", e)

        def _rollback() -> None:
            self._votes._revert_change(
                proposal_id, vote.voter_id, old_option, previous_changed,
            )

        return self._commit(
            ctx, EventKind.VOTE_CHANGED,
            f"{ctx.caller} changed vote on proposal {proposal_id} "
            f"from option {old_option} to {new_option}",
            {
                "proposal_id": proposal_id,
                "previous_option": old_option,
                "option": new_option,
                "weight": vote.weight,
            },
            _rollback,
            data={
                "proposal_id": proposal_id,
                "option": new_option,
                "previous_option": old_option,
                "weight": vote.weight,
            },
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @_serialized
    def get_proposal(self, proposal_id: int) -> Optional[Proposal]:
        return self._proposals.get_proposal(proposal_id)

    @_serialized
    def list_proposals(self, active_only: bool = False) -> list[Proposal]:
        return self._proposals.list_proposals(self._clock.now(), active_only=active_only)

    @_serialized
    def get_results(self, proposal_id: int) -> Optional[ProposalResults]:
        return self._votes.get_results(proposal_id, self._clock.now())

    @_serialized
    def is_active(self, proposal_id: int) -> bool:
        return self._proposals.is_active(proposal_id, self._clock.now())

    @_serialized
    def get_vote(self, proposal_id: int, voter_id: str) -> Optional[VoteRecord]:
        return self._votes.get_vote(proposal_id, voter_id)

    @_serialized
    def has_voted(self, proposal_id: int, voter_id: str) -> bool:
        return self._votes.has_voted(proposal_id, voter_id)

    @_serialized
    def get_option_votes(self, proposal_id: int, option: int) -> int:
        return self._votes.option_tally(proposal_id, option)

    @_serialized
    def get_voter_roster(self, proposal_id: int) -> Optional[list[str]]:
        if self._proposals.get_proposal(proposal_id) is None:
            return None
        return self._votes.roster(proposal_id)

    @_serialized
    def get_voting_power(self, identity: str) -> int:
        return self._power.get_power(identity)

    @property
    @_serialized
    def token_requirement(self) -> int:
        return self._votes.token_requirement

    @_serialized
    def is_admin(self, identity: str) -> bool:
        return self._access.is_admin(identity)

    @_serialized
    def is_blacklisted(self, identity: str) -> bool:
        return self._access.is_blacklisted(identity)

    @_serialized
    def is_paused(self) -> bool:
        return self._access.is_paused()

    @_serialized
    def status(self) -> dict[str, Any]:
        """Return a summary of governance state."""
        now = self._clock.now()
        return {
            "owner": self._access.owner,
            "admins": self._access.admins(),
            "paused": self._access.is_paused(),
            "ordinal": now,
            "proposal_count": self._proposals.proposal_count,
            "active_proposals": [
                p.proposal_id
                for p in self._proposals.list_proposals(now, active_only=True)
            ],
            "token_requirement": self._votes.token_requirement,
            "event_count": self._event_log.count,
            "persistence_degraded": self._persistence_degraded,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _context(self, caller: str) -> CallContext:
        identity = caller.strip()
        if not identity:
            raise GovernanceError(ErrorCode.NOT_AUTHORIZED, "Caller identity cannot be blank")
        return CallContext(caller=identity, ordinal=self._clock.now())

    def _failure(self, operation: str, error: GovernanceError) -> ServiceResult:
        logger.warning("%s failed [%s]: %s", operation, error.code.value, error)
        return ServiceResult(success=False, errors=[str(error)], error_code=error.code)

    def _commit(
        self,
        ctx: CallContext,
        kind: EventKind,
        detail: str,
        payload: dict[str, Any],
        on_rollback: Callable[[], None],
        data: Optional[dict[str, Any]] = None,
    ) -> ServiceResult:
        """Persist the mutation and record its audit event, or undo it.

        State is persisted first. If the audit append then fails, the
        in-memory mutation is rolled back and the prior state is
        re-persisted so the call leaves no trace.
        """
        err = self._safe_persist(on_rollback=on_rollback)
        if err:
            logger.error("%s rolled back: %s", kind.value, err)
            return ServiceResult(
                success=False, errors=[err], error_code=ErrorCode.PERSISTENCE_FAILURE,
            )

        try:
            self._record_event(ctx, kind, detail, payload)
        except (OSError, ValueError) as e:
            on_rollback()
            restore_err = self._safe_persist()
            if restore_err:
                self._persistence_degraded = True
                logger.critical("State store diverged from memory: %s", restore_err)
            logger.error("%s rolled back, audit append failed: %s", kind.value, e)
            return ServiceResult(
                success=False,
                errors=[f"Audit log failure: {e}"],
                error_code=ErrorCode.PERSISTENCE_FAILURE,
            )

        logger.info("[%d] %s", ctx.ordinal, detail)
        return ServiceResult(success=True, data=data or {})

    def _record_event(
        self,
        ctx: CallContext,
        kind: EventKind,
        detail: str,
        payload: dict[str, Any],
    ) -> EventRecord:
        event = EventRecord.create(
            event_id=f"evt_{self._event_log.count + 1:08d}",
            event_kind=kind,
            actor_id=ctx.caller,
            ordinal=ctx.ordinal,
            detail=detail,
            payload=payload,
        )
        self._event_log.append(event)
        return event

    def _persist_state(self) -> None:
        """Persist current state to the state store (if wired).

        Can raise OSError. Mutators go through _safe_persist().
        """
        if self._state_store is None:
            return
        self._state_store.save(
            {
                "access": self._access.to_records(),
                "voting_power": self._power.to_records(),
                "proposals": self._proposals.to_records(),
                "votes": self._votes.to_records(),
            },
            ordinal=self._clock.now(),
        )

    def _safe_persist(
        self,
        on_rollback: Optional[Callable[[], None]] = None,
    ) -> Optional[str]:
        """Persist state with fail-closed error handling.

        On failure, executes the rollback callback to undo in-memory
        mutations and returns an error string. On success, returns None.
        """
        try:
            self._persist_state()
            return None
        except OSError as e:
            if on_rollback is not None:
                on_rollback()
            return f"Persistence failure: {e}"
