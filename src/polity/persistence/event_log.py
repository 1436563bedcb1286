"""Append-only event log — the audit record of every governance mutation.

Every successful state change produces one event record carrying the
acting identity, a human-readable detail line, and the ordinal at which
it happened. Events are immutable once written. The governance core
never reads the log back to make decisions; it is an output-only
channel for external observers.

The log can be persisted to a JSONL file (one JSON object per line).
Each record carries a SHA-256 of its canonical JSON, verified on load.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional


class EventKind(str, enum.Enum):
    """Classification of governance events."""
    # Access control
    ADMIN_ADDED = "admin_added"
    ADMIN_REMOVED = "admin_removed"
    PARTICIPANT_BLACKLISTED = "participant_blacklisted"
    PARTICIPANT_UNBLACKLISTED = "participant_unblacklisted"
    VOTING_PAUSED = "voting_paused"
    VOTING_UNPAUSED = "voting_unpaused"
    # Voting power
    VOTING_POWER_SET = "voting_power_set"
    VOTING_POWER_BATCH_SET = "voting_power_batch_set"
    TOKEN_REQUIREMENT_SET = "token_requirement_set"
    # Proposal lifecycle
    PROPOSAL_CREATED = "proposal_created"
    PROPOSAL_DEACTIVATED = "proposal_deactivated"
    PROPOSAL_EMERGENCY_RESET = "proposal_emergency_reset"
    # Votes
    VOTE_CAST = "vote_cast"
    VOTE_CHANGED = "vote_changed"


def _canonical_hash(
    event_id: str,
    event_kind: str,
    ordinal: int,
    actor_id: str,
    detail: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "ordinal": ordinal,
            "actor_id": actor_id,
            "detail": detail,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable event in the governance log."""
    event_id: str
    event_kind: EventKind
    ordinal: int
    actor_id: str
    detail: str
    payload: dict[str, Any]
    event_hash: str  # SHA-256 of canonical JSON

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        ordinal: int,
        detail: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        payload = payload or {}
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            ordinal=ordinal,
            actor_id=actor_id,
            detail=detail,
            payload=payload,
            event_hash=_canonical_hash(
                event_id, event_kind.value, ordinal, actor_id, detail, payload,
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "ordinal": self.ordinal,
            "actor_id": self.actor_id,
            "detail": self.detail,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only event log with optional file persistence.

    Events can only be appended, never modified or deleted.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event to the log.

        Raises ValueError if event_id is a duplicate (replay protection).
        """
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        if self._storage_path:
            self._append_to_file(event)

        self._events.append(event)
        self._event_ids.add(event.event_id)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def events_since(
        self,
        ordinal: int,
        kind: Optional[EventKind] = None,
    ) -> list[EventRecord]:
        """Return events at or after an ordinal, optionally filtered by kind."""
        return [e for e in self.events(kind) if e.ordinal >= ordinal]

    def events_for_actor(self, actor_id: str) -> list[EventRecord]:
        return [e for e in self._events if e.actor_id == actor_id]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _append_to_file(self, event: EventRecord) -> None:
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification.

        Fail-closed: rejects tampered records (hash mismatch) and
        duplicate event IDs.
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                event_id = data["event_id"]

                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected_hash = _canonical_hash(
                    event_id,
                    data["event_kind"],
                    data["ordinal"],
                    data["actor_id"],
                    data["detail"],
                    data["payload"],
                )
                if data["event_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected_hash}"
                    )

                event = EventRecord(
                    event_id=event_id,
                    event_kind=EventKind(data["event_kind"]),
                    ordinal=data["ordinal"],
                    actor_id=data["actor_id"],
                    detail=data["detail"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                )
                self._events.append(event)
                self._event_ids.add(event_id)
