"""Tests for GovernanceService — proves the facade sequences checks and commits atomically."""

import threading

import pytest
from pathlib import Path

from polity.errors import ErrorCode
from polity.persistence.event_log import EventKind, EventLog, EventRecord
from polity.persistence.state_store import StateStore
from polity.policy.resolver import PolicyResolver
from polity.runtime.clock import OrdinalClock
from polity.service import GovernanceService


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"
OWNER = "owner"


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


@pytest.fixture
def clock() -> OrdinalClock:
    return OrdinalClock(start=100)


@pytest.fixture
def service(resolver: PolicyResolver, clock: OrdinalClock) -> GovernanceService:
    return GovernanceService(resolver, owner=OWNER, clock=clock)


def _open_proposal(
    service: GovernanceService,
    creator: str = "alice",
    duration: int = 10,
    min_participation: int = 0,
) -> int:
    result = service.create_proposal(
        creator, "Treasury budget", "Allocate Q3 budget", duration,
        ["keep", "raise", "cut"], min_participation,
    )
    assert result.success, result.errors
    return result.data["proposal_id"]


def _tally_sum(service: GovernanceService, pid: int) -> int:
    return sum(service.get_option_votes(pid, o) for o in range(1, 6))


class TestScenarios:
    def test_scenario_a_cast_then_change(self, service: GovernanceService, clock: OrdinalClock) -> None:
        pid = _open_proposal(service, duration=10)
        proposal = service.get_proposal(pid)
        assert (proposal.start_ordinal, proposal.end_ordinal) == (101, 110)

        assert service.set_voting_power(OWNER, "bob", 50).success
        clock.advance_to(105)
        result = service.cast_vote("bob", pid, 2)
        assert result.success
        assert result.data["weight"] == 50
        assert service.get_option_votes(pid, 2) == 50
        assert service.get_proposal(pid).total_weighted_votes == 50

        clock.advance_to(106)
        result = service.change_vote("bob", pid, 3)
        assert result.success
        assert result.data["previous_option"] == 2
        assert service.get_option_votes(pid, 2) == 0
        assert service.get_option_votes(pid, 3) == 50
        assert service.get_proposal(pid).total_weighted_votes == 50

    def test_scenario_b_zero_power_weighs_one(self, service: GovernanceService, clock: OrdinalClock) -> None:
        pid = _open_proposal(service)
        service.set_voting_power(OWNER, "bob", 0)
        clock.advance()
        result = service.cast_vote("bob", pid, 1)
        assert result.success
        assert result.data["weight"] == 1
        assert service.get_option_votes(pid, 1) == 1

    def test_scenario_c_blacklisted_voter(self, service: GovernanceService, clock: OrdinalClock) -> None:
        pid = _open_proposal(service)
        assert service.blacklist(OWNER, "mallory").success
        clock.advance()
        events_before = service.event_log.count
        result = service.cast_vote("mallory", pid, 1)
        assert not result.success
        assert result.error_code == ErrorCode.BLACKLISTED
        assert not service.has_voted(pid, "mallory")
        assert service.get_proposal(pid).total_weighted_votes == 0
        assert service.event_log.count == events_before

    def test_scenario_d_batch_arity_mismatch(self, service: GovernanceService) -> None:
        result = service.batch_set_voting_power(OWNER, ["a", "b", "c"], [10, 20])
        assert not result.success
        assert result.error_code == ErrorCode.ARITY_MISMATCH
        assert [service.get_voting_power(i) for i in ("a", "b", "c")] == [0, 0, 0]

    def test_scenario_e_reset_requires_pause(self, service: GovernanceService, clock: OrdinalClock) -> None:
        pid = _open_proposal(service)
        clock.advance()
        service.cast_vote("bob", pid, 1)
        result = service.emergency_reset_proposal(OWNER, pid)
        assert not result.success
        assert result.error_code == ErrorCode.VOTING_NOT_PAUSED
        proposal = service.get_proposal(pid)
        assert proposal.total_weighted_votes == 1
        assert proposal.active is True


class TestVoting:
    def test_cast_twice_rejected(self, service: GovernanceService, clock: OrdinalClock) -> None:
        pid = _open_proposal(service)
        clock.advance()
        assert service.cast_vote("bob", pid, 1).success
        result = service.cast_vote("bob", pid, 2)
        assert result.error_code == ErrorCode.ALREADY_VOTED
        assert service.get_vote(pid, "bob").option == 1

    def test_change_without_vote_rejected(self, service: GovernanceService, clock: OrdinalClock) -> None:
        pid = _open_proposal(service)
        clock.advance()
        result = service.change_vote("bob", pid, 2)
        assert result.error_code == ErrorCode.NO_EXISTING_VOTE

    def test_window_boundary(self, service: GovernanceService, clock: OrdinalClock) -> None:
        pid = _open_proposal(service, duration=10)
        assert service.cast_vote("early", pid, 1).error_code == ErrorCode.PROPOSAL_NOT_ACTIVE
        clock.advance_to(110)
        assert service.cast_vote("last", pid, 1).success
        clock.advance_to(111)
        result = service.cast_vote("late", pid, 1)
        assert result.error_code == ErrorCode.PROPOSAL_NOT_ACTIVE
        assert not service.is_active(pid)

    def test_pause_blocks_votes_and_creation(self, service: GovernanceService, clock: OrdinalClock) -> None:
        pid = _open_proposal(service)
        clock.advance()
        assert service.pause(OWNER).success
        assert service.is_paused()
        assert service.cast_vote("bob", pid, 1).error_code == ErrorCode.PROPOSAL_NOT_ACTIVE
        result = service.create_proposal("alice", "T", "D", 5, ["x"])
        assert result.error_code == ErrorCode.VOTING_PAUSED
        assert service.unpause(OWNER).success
        assert service.cast_vote("bob", pid, 1).success

    def test_token_requirement_admin_only(self, service: GovernanceService) -> None:
        result = service.set_token_requirement("bob", 5)
        assert result.error_code == ErrorCode.NOT_AUTHORIZED
        assert service.set_token_requirement(OWNER, 5).success
        assert service.token_requirement == 5

    def test_token_requirement_enforced_at_cast(self, service: GovernanceService, clock: OrdinalClock) -> None:
        pid = _open_proposal(service)
        service.set_token_requirement(OWNER, 5)
        service.batch_set_voting_power(OWNER, ["rich", "poor"], [5, 4])
        clock.advance()
        assert service.cast_vote("rich", pid, 1).success
        assert service.cast_vote("poor", pid, 1).error_code == ErrorCode.INSUFFICIENT_POWER

    def test_invalid_option(self, service: GovernanceService, clock: OrdinalClock) -> None:
        pid = _open_proposal(service)
        clock.advance()
        assert service.cast_vote("bob", pid, 6).error_code == ErrorCode.INVALID_OPTION

    def test_blank_caller_rejected(self, service: GovernanceService) -> None:
        result = service.create_proposal("  ", "T", "D", 5, [])
        assert result.error_code == ErrorCode.NOT_AUTHORIZED

    def test_results_and_roster(self, service: GovernanceService, clock: OrdinalClock) -> None:
        pid = _open_proposal(service, min_participation=3)
        clock.advance()
        for voter, option in (("v1", 1), ("v2", 1), ("v3", 2)):
            service.cast_vote(voter, pid, option)
        results = service.get_results(pid)
        assert results.option_votes[1] == 2
        assert results.option_votes[2] == 1
        assert results.participation_met is True
        assert service.get_voter_roster(pid) == ["v1", "v2", "v3"]
        assert service.get_voter_roster(404) is None
        assert service.get_results(404) is None

    def test_tally_sum_matches_total(self, service: GovernanceService, clock: OrdinalClock) -> None:
        pid = _open_proposal(service)
        service.batch_set_voting_power(OWNER, ["a", "b", "c"], [3, 0, 11])
        clock.advance()
        service.cast_vote("a", pid, 1)
        service.cast_vote("b", pid, 2)
        service.cast_vote("c", pid, 2)
        service.change_vote("c", pid, 5)
        service.change_vote("a", pid, 5)
        assert _tally_sum(service, pid) == service.get_proposal(pid).total_weighted_votes == 15


class TestProposalLifecycle:
    def test_deactivate_keeps_votes(self, service: GovernanceService, clock: OrdinalClock) -> None:
        pid = _open_proposal(service, creator="alice")
        clock.advance()
        service.cast_vote("bob", pid, 1)
        assert service.deactivate_proposal("alice", pid).success
        assert not service.is_active(pid)
        assert service.get_option_votes(pid, 1) == 1
        assert service.has_voted(pid, "bob")

    def test_deactivate_by_stranger(self, service: GovernanceService) -> None:
        pid = _open_proposal(service, creator="alice")
        result = service.deactivate_proposal("bob", pid)
        assert result.error_code == ErrorCode.NOT_CREATOR_OR_ADMIN

    def test_emergency_reset_while_paused(self, service: GovernanceService, clock: OrdinalClock) -> None:
        pid = _open_proposal(service)
        service.set_voting_power(OWNER, "bob", 9)
        clock.advance()
        service.cast_vote("bob", pid, 4)
        service.pause(OWNER)
        result = service.emergency_reset_proposal(OWNER, pid)
        assert result.success
        assert service.get_proposal(pid).total_weighted_votes == 0
        assert _tally_sum(service, pid) == 0
        assert not service.has_voted(pid, "bob")
        service.unpause(OWNER)
        assert not service.is_active(pid)

    def test_list_proposals(self, service: GovernanceService, clock: OrdinalClock) -> None:
        _open_proposal(service, duration=1)
        _open_proposal(service, duration=50)
        clock.advance_to(120)
        assert [p.proposal_id for p in service.list_proposals(active_only=True)] == [2]
        assert len(service.list_proposals()) == 2


class TestAdminManagement:
    def test_added_admin_can_blacklist(self, service: GovernanceService) -> None:
        assert service.add_admin(OWNER, "alice").success
        assert service.is_admin("alice")
        assert service.blacklist("alice", "mallory").success
        assert service.is_blacklisted("mallory")
        assert service.unblacklist("alice", "mallory").success
        assert not service.is_blacklisted("mallory")

    def test_owner_cannot_be_removed(self, service: GovernanceService) -> None:
        service.add_admin(OWNER, "alice")
        result = service.remove_admin("alice", OWNER)
        assert result.error_code == ErrorCode.NOT_AUTHORIZED
        assert service.is_admin(OWNER)

    def test_non_admin_cannot_set_power(self, service: GovernanceService) -> None:
        result = service.set_voting_power("bob", "bob", 1000)
        assert result.error_code == ErrorCode.NOT_AUTHORIZED
        assert service.get_voting_power("bob") == 0

    def test_batch_over_limit(self, service: GovernanceService) -> None:
        ids = [f"p{i}" for i in range(51)]
        result = service.batch_set_voting_power(OWNER, ids, [1] * 51)
        assert result.error_code == ErrorCode.BATCH_TOO_LARGE
        assert service.get_voting_power("p0") == 0


class TestEvents:
    def test_each_mutation_emits_one_event(self, service: GovernanceService, clock: OrdinalClock) -> None:
        pid = _open_proposal(service)
        service.set_voting_power(OWNER, "bob", 5)
        clock.advance()
        service.cast_vote("bob", pid, 1)
        service.change_vote("bob", pid, 2)

        kinds = [e.event_kind for e in service.event_log.events()]
        assert kinds == [
            EventKind.PROPOSAL_CREATED,
            EventKind.VOTING_POWER_SET,
            EventKind.VOTE_CAST,
            EventKind.VOTE_CHANGED,
        ]
        cast = service.event_log.events(EventKind.VOTE_CAST)[0]
        assert cast.actor_id == "bob"
        assert cast.ordinal == 101
        assert cast.payload == {"proposal_id": pid, "option": 1, "weight": 5}
        assert "bob" in cast.detail

    def test_admin_events_carry_target(self, service: GovernanceService) -> None:
        service.blacklist(OWNER, "mallory")
        event = service.event_log.last_event
        assert event.event_kind == EventKind.PARTICIPANT_BLACKLISTED
        assert event.actor_id == OWNER
        assert event.payload["target"] == "mallory"
        assert event.ordinal == 100

    def test_failed_call_emits_nothing(self, service: GovernanceService) -> None:
        service.pause("bob")
        assert service.event_log.count == 0


class _FailingEventLog(EventLog):
    def append(self, event: EventRecord) -> None:
        raise OSError("disk full")


class TestAtomicity:
    def test_persistence_failure_rolls_back_vote(
        self, resolver: PolicyResolver, clock: OrdinalClock, tmp_path: Path, monkeypatch,
    ) -> None:
        store = StateStore(tmp_path / "state.json")
        service = GovernanceService(resolver, OWNER, clock=clock, state_store=store)
        pid = _open_proposal(service)
        service.set_voting_power(OWNER, "bob", 20)
        clock.advance()

        def _boom(*args, **kwargs):
            raise OSError("read-only filesystem")

        monkeypatch.setattr(StateStore, "save", _boom)
        result = service.cast_vote("bob", pid, 3)
        assert not result.success
        assert result.error_code == ErrorCode.PERSISTENCE_FAILURE
        assert not service.has_voted(pid, "bob")
        assert service.get_option_votes(pid, 3) == 0
        assert service.get_proposal(pid).total_weighted_votes == 0
        assert service.get_voter_roster(pid) == []
        assert service.event_log.count == 2

    def test_persistence_failure_rolls_back_change(
        self, resolver: PolicyResolver, clock: OrdinalClock, tmp_path: Path, monkeypatch,
    ) -> None:
        store = StateStore(tmp_path / "state.json")
        service = GovernanceService(resolver, OWNER, clock=clock, state_store=store)
        pid = _open_proposal(service)
        clock.advance()
        service.cast_vote("bob", pid, 1)

        def _boom(*args, **kwargs):
            raise OSError("read-only filesystem")

        monkeypatch.setattr(StateStore, "save", _boom)
        result = service.change_vote("bob", pid, 2)
        assert result.error_code == ErrorCode.PERSISTENCE_FAILURE
        assert service.get_vote(pid, "bob").option == 1
        assert service.get_option_votes(pid, 1) == 1
        assert service.get_option_votes(pid, 2) == 0

    def test_audit_failure_rolls_back_proposal(self, resolver: PolicyResolver, clock: OrdinalClock) -> None:
        service = GovernanceService(
            resolver, OWNER, clock=clock, event_log=_FailingEventLog(),
        )
        result = service.create_proposal("alice", "T", "D", 5, ["x"])
        assert result.error_code == ErrorCode.PERSISTENCE_FAILURE
        assert service.get_proposal(1) is None
        assert service.status()["proposal_count"] == 0

    def test_audit_failure_rolls_back_batch(self, resolver: PolicyResolver, clock: OrdinalClock) -> None:
        service = GovernanceService(
            resolver, OWNER, clock=clock, event_log=_FailingEventLog(),
        )
        service._power.set_power("a", 7)
        result = service.batch_set_voting_power(OWNER, ["a", "b"], [1, 2])
        assert not result.success
        assert service.get_voting_power("a") == 7
        assert service.get_voting_power("b") == 0

    def test_audit_failure_rolls_back_reset(self, resolver: PolicyResolver, clock: OrdinalClock) -> None:
        service = GovernanceService(resolver, OWNER, clock=clock)
        pid = _open_proposal(service)
        clock.advance()
        service.cast_vote("bob", pid, 2)
        service.pause(OWNER)
        service._event_log = _FailingEventLog()
        result = service.emergency_reset_proposal(OWNER, pid)
        assert not result.success
        assert service.has_voted(pid, "bob")
        assert service.get_option_votes(pid, 2) == 1
        assert service.get_proposal(pid).active is True

    def test_shared_event_log_keeps_ids_unique(self, resolver: PolicyResolver) -> None:
        log = EventLog()
        first = GovernanceService(resolver, OWNER, clock=OrdinalClock(), event_log=log)
        second = GovernanceService(resolver, OWNER, clock=OrdinalClock(), event_log=log)

        assert first.create_proposal("alice", "t1", "", 5, []).success
        result = second.create_proposal("bob", "t2", "", 5, [])
        assert result.success
        assert [e.event_id for e in log.events()] == ["evt_00000001", "evt_00000002"]

    def test_duplicate_event_id_rolls_back(self, resolver: PolicyResolver, clock: OrdinalClock) -> None:
        log = EventLog()
        log.append(EventRecord.create(
            "evt_00000002", EventKind.VOTING_PAUSED, "elsewhere", 0, "foreign record",
        ))
        service = GovernanceService(resolver, OWNER, clock=clock, event_log=log)

        result = service.create_proposal("alice", "T", "D", 5, ["x"])
        assert not result.success
        assert result.error_code == ErrorCode.PERSISTENCE_FAILURE
        assert service.get_proposal(1) is None
        assert service.status()["proposal_count"] == 0
        assert log.count == 1


class _CountingLock:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.acquired = 0

    def __enter__(self) -> "_CountingLock":
        self._lock.acquire()
        self.acquired += 1
        return self

    def __exit__(self, *exc) -> None:
        self._lock.release()


class TestSerialisation:
    def test_flag_reads_take_the_lock(self, service: GovernanceService) -> None:
        lock = _CountingLock()
        service._lock = lock
        service.token_requirement
        service.is_admin(OWNER)
        service.is_blacklisted("mallory")
        service.is_paused()
        assert lock.acquired == 4

    def test_concurrent_casts_keep_tallies_consistent(
        self, service: GovernanceService, clock: OrdinalClock,
    ) -> None:
        pid = _open_proposal(service, duration=100)
        voters = [f"v{i}" for i in range(40)]
        service.batch_set_voting_power(OWNER, voters, list(range(40)))
        clock.advance()

        def _vote(voter: str) -> None:
            service.cast_vote(voter, pid, 1 + int(voter[1:]) % 5)
            service.change_vote(voter, pid, 5 - int(voter[1:]) % 5)

        threads = [threading.Thread(target=_vote, args=(v,)) for v in voters]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        expected = sum(max(1, i) for i in range(40))
        assert service.get_proposal(pid).total_weighted_votes == expected
        assert _tally_sum(service, pid) == expected
        assert len(service.get_voter_roster(pid)) == 40


class TestStatus:
    def test_status_summary(self, service: GovernanceService) -> None:
        _open_proposal(service)
        status = service.status()
        assert status["owner"] == OWNER
        assert status["ordinal"] == 100
        assert status["proposal_count"] == 1
        assert status["active_proposals"] == []
        assert status["paused"] is False
        assert status["persistence_degraded"] is False
