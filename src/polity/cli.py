"""Polity CLI — command-line interface for the governance engine.

Usage:
    python -m polity.cli status
    python -m polity.cli --as alice create-proposal --title "Budget" --duration 10 --option yes --option no
    python -m polity.cli --as bob cast-vote --proposal 1 --option 2
    python -m polity.cli --as bob change-vote --proposal 1 --option 3
    python -m polity.cli results --proposal 1
    python -m polity.cli batch-set-power --identity bob --weight 10 --identity carol --weight 20
    python -m polity.cli pause && python -m polity.cli emergency-reset --proposal 1
    python -m polity.cli advance --steps 5
    python -m polity.cli check-invariants

State lives in the data directory. The ordinal clock is stored with it
and moves forward by one for every mutating command.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

from polity.persistence.event_log import EventLog
from polity.persistence.state_store import StateStore
from polity.policy.invariants import check_config_dir
from polity.policy.resolver import PolicyResolver
from polity.runtime.clock import OrdinalClock
from polity.service import GovernanceService, ServiceResult


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_DATA = Path(os.getenv("POLITY_DATA", Path.cwd() / "data"))
DEFAULT_OWNER = os.getenv("POLITY_OWNER", "owner")


def _make_service(args: argparse.Namespace, advance: bool = False) -> GovernanceService:
    """Create a GovernanceService with durable persistence."""
    data_dir: Path = args.data
    data_dir.mkdir(parents=True, exist_ok=True)
    resolver = PolicyResolver.from_config_dir(args.config)
    state_store = StateStore(data_dir / "state.json")
    event_log = EventLog(storage_path=data_dir / "events.jsonl")

    owner = args.owner
    if state_store.has_state():
        owner = state_store.load_section("access")["owner"]

    clock = OrdinalClock(state_store.load_ordinal())
    if advance:
        clock.advance()
    return GovernanceService(
        resolver, owner, clock=clock, event_log=event_log, state_store=state_store,
    )


def _report(result: ServiceResult) -> int:
    if result.success:
        print(json.dumps(result.data, indent=2, sort_keys=True))
        return 0
    code = result.error_code.value if result.error_code else "error"
    print(f"Failed [{code}]: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_create_proposal(args: argparse.Namespace) -> int:
    service = _make_service(args, advance=True)
    return _report(service.create_proposal(
        args.caller,
        title=args.title,
        description=args.description,
        duration=args.duration,
        options=args.option or [],
        min_participation=args.min_participation,
    ))


def cmd_cast_vote(args: argparse.Namespace) -> int:
    service = _make_service(args, advance=True)
    return _report(service.cast_vote(args.caller, args.proposal, args.option))


def cmd_change_vote(args: argparse.Namespace) -> int:
    service = _make_service(args, advance=True)
    return _report(service.change_vote(args.caller, args.proposal, args.option))


def cmd_deactivate(args: argparse.Namespace) -> int:
    service = _make_service(args, advance=True)
    return _report(service.deactivate_proposal(args.caller, args.proposal))


def cmd_emergency_reset(args: argparse.Namespace) -> int:
    service = _make_service(args, advance=True)
    return _report(service.emergency_reset_proposal(args.caller, args.proposal))


def cmd_results(args: argparse.Namespace) -> int:
    service = _make_service(args)
    results = service.get_results(args.proposal)
    if results is None:
        print(f"Proposal not found: {args.proposal}", file=sys.stderr)
        return 1
    print(json.dumps(results.as_dict(), indent=2))
    return 0


def cmd_set_power(args: argparse.Namespace) -> int:
    service = _make_service(args, advance=True)
    return _report(service.set_voting_power(args.caller, args.identity, args.weight))


def cmd_batch_set_power(args: argparse.Namespace) -> int:
    """Assign --identity/--weight pairs in order; counts must match."""
    service = _make_service(args, advance=True)
    return _report(service.batch_set_voting_power(
        args.caller, args.identity or [], args.weight or [],
    ))


def cmd_set_token_requirement(args: argparse.Namespace) -> int:
    service = _make_service(args, advance=True)
    return _report(service.set_token_requirement(args.caller, args.requirement))


def cmd_pause(args: argparse.Namespace) -> int:
    service = _make_service(args, advance=True)
    return _report(service.pause(args.caller))


def cmd_unpause(args: argparse.Namespace) -> int:
    service = _make_service(args, advance=True)
    return _report(service.unpause(args.caller))


def cmd_add_admin(args: argparse.Namespace) -> int:
    service = _make_service(args, advance=True)
    return _report(service.add_admin(args.caller, args.identity))


def cmd_remove_admin(args: argparse.Namespace) -> int:
    service = _make_service(args, advance=True)
    return _report(service.remove_admin(args.caller, args.identity))


def cmd_blacklist(args: argparse.Namespace) -> int:
    service = _make_service(args, advance=True)
    return _report(service.blacklist(args.caller, args.identity))


def cmd_unblacklist(args: argparse.Namespace) -> int:
    service = _make_service(args, advance=True)
    return _report(service.unblacklist(args.caller, args.identity))


def cmd_advance(args: argparse.Namespace) -> int:
    """Move the stored ordinal clock forward."""
    args.data.mkdir(parents=True, exist_ok=True)
    state_store = StateStore(args.data / "state.json")
    clock = OrdinalClock(state_store.load_ordinal())
    try:
        ordinal = clock.advance(args.steps)
    except ValueError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1
    state_store.save_ordinal(ordinal)
    print(json.dumps({"ordinal": ordinal}))
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run governance parameter invariant checks."""
    errors = check_config_dir(args.config)
    if errors:
        for err in errors:
            print(f"- {err}", file=sys.stderr)
        return 1
    print("Invariant checks passed.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="polity",
        description="Polity — weighted proposal governance CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=DEFAULT_DATA,
        help="Path to data directory (default: ./data or $POLITY_DATA)",
    )
    parser.add_argument(
        "--owner",
        default=DEFAULT_OWNER,
        help="Owner identity used when initialising fresh state",
    )
    parser.add_argument(
        "--as",
        dest="caller",
        default=DEFAULT_OWNER,
        help="Calling identity (default: the owner)",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show governance status")

    p_create = sub.add_parser("create-proposal", help="Create a proposal")
    p_create.add_argument("--title", required=True, help="Proposal title")
    p_create.add_argument("--description", default="", help="Proposal description")
    p_create.add_argument("--duration", type=int, required=True, help="Window length in ordinals")
    p_create.add_argument("--option", action="append", help="Option label (repeatable)")
    p_create.add_argument(
        "--min-participation", type=int, default=0,
        help="Weighted total required for participation (default: 0)",
    )

    p_cast = sub.add_parser("cast-vote", help="Cast a vote")
    p_cast.add_argument("--proposal", type=int, required=True, help="Proposal ID")
    p_cast.add_argument("--option", type=int, required=True, help="Option number")

    p_change = sub.add_parser("change-vote", help="Change an existing vote")
    p_change.add_argument("--proposal", type=int, required=True, help="Proposal ID")
    p_change.add_argument("--option", type=int, required=True, help="New option number")

    p_deact = sub.add_parser("deactivate", help="Deactivate a proposal")
    p_deact.add_argument("--proposal", type=int, required=True, help="Proposal ID")

    p_reset = sub.add_parser("emergency-reset", help="Zero a proposal's tallies (admin, while paused)")
    p_reset.add_argument("--proposal", type=int, required=True, help="Proposal ID")

    p_results = sub.add_parser("results", help="Show proposal results")
    p_results.add_argument("--proposal", type=int, required=True, help="Proposal ID")

    p_power = sub.add_parser("set-power", help="Set a participant's voting power")
    p_power.add_argument("--identity", required=True, help="Participant identity")
    p_power.add_argument("--weight", type=int, required=True, help="Voting power")

    p_batch = sub.add_parser("batch-set-power", help="Set voting power for several participants")
    p_batch.add_argument("--identity", action="append", help="Participant identity (repeatable)")
    p_batch.add_argument("--weight", type=int, action="append", help="Voting power (repeatable)")

    p_token = sub.add_parser("set-token-requirement", help="Set the minimum power to cast a vote")
    p_token.add_argument("--requirement", type=int, required=True, help="Minimum stored power")

    sub.add_parser("pause", help="Pause voting")
    sub.add_parser("unpause", help="Unpause voting")

    p_admin = sub.add_parser("add-admin", help="Grant admin rights")
    p_admin.add_argument("--identity", required=True, help="Participant identity")

    p_unadmin = sub.add_parser("remove-admin", help="Revoke admin rights")
    p_unadmin.add_argument("--identity", required=True, help="Participant identity")

    p_black = sub.add_parser("blacklist", help="Blacklist a participant")
    p_black.add_argument("--identity", required=True, help="Participant identity")

    p_unblack = sub.add_parser("unblacklist", help="Remove a participant from the blacklist")
    p_unblack.add_argument("--identity", required=True, help="Participant identity")

    p_adv = sub.add_parser("advance", help="Advance the ordinal clock")
    p_adv.add_argument("--steps", type=int, default=1, help="Number of ordinals (default: 1)")

    sub.add_parser("check-invariants", help="Run governance invariant checks")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "create-proposal": cmd_create_proposal,
        "cast-vote": cmd_cast_vote,
        "change-vote": cmd_change_vote,
        "deactivate": cmd_deactivate,
        "emergency-reset": cmd_emergency_reset,
        "results": cmd_results,
        "set-power": cmd_set_power,
        "batch-set-power": cmd_batch_set_power,
        "set-token-requirement": cmd_set_token_requirement,
        "pause": cmd_pause,
        "unpause": cmd_unpause,
        "add-admin": cmd_add_admin,
        "remove-admin": cmd_remove_admin,
        "blacklist": cmd_blacklist,
        "unblacklist": cmd_unblacklist,
        "advance": cmd_advance,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
