"""Access Control Registry — administrators, blacklist, and global pause.

The registry is the single owner of privileged configuration state:
- The owner is the deploying identity. It is an admin from construction
  and can never be removed.
- Only an existing admin may add or remove admins, manage the blacklist,
  or flip the pause flag.
- The pause flag is global. While it is set, no proposal is active and
  no proposal can be created.

Event emission is handled by the service layer. Every mutator here
returns nothing and raises GovernanceError on a failed precondition,
before touching any state.
"""

from __future__ import annotations

from typing import Any

from polity.errors import ErrorCode, GovernanceError


class AccessControlRegistry:
    """Tracks admins, blacklisted participants, and the pause flag.

    Thread-safety: not thread-safe. The service serialises access.
    """

    def __init__(self, owner: str) -> None:
        owner = owner.strip()
        if not owner:
            raise ValueError("Owner identity cannot be blank")
        self._owner = owner
        self._admins: set[str] = {owner}
        self._blacklisted: set[str] = set()
        self._paused = False

    @classmethod
    def from_records(cls, data: dict[str, Any]) -> AccessControlRegistry:
        """Restore registry state from a persisted record."""
        registry = cls(data["owner"])
        registry._admins.update(data.get("admins", []))
        registry._blacklisted.update(data.get("blacklisted", []))
        registry._paused = bool(data.get("paused", False))
        return registry

    def to_records(self) -> dict[str, Any]:
        return {
            "owner": self._owner,
            "admins": sorted(self._admins),
            "blacklisted": sorted(self._blacklisted),
            "paused": self._paused,
        }

    @property
    def owner(self) -> str:
        return self._owner

    def admins(self) -> list[str]:
        return sorted(self._admins)

    def is_admin(self, identity: str) -> bool:
        return identity.strip() in self._admins

    def is_blacklisted(self, identity: str) -> bool:
        return identity.strip() in self._blacklisted

    def is_paused(self) -> bool:
        return self._paused

    def require_admin(self, caller: str) -> None:
        if not self.is_admin(caller):
            raise GovernanceError(
                ErrorCode.NOT_AUTHORIZED, f"Caller {caller} is not an admin"
            )

    def require_not_blacklisted(self, identity: str) -> None:
        if self.is_blacklisted(identity):
            raise GovernanceError(
                ErrorCode.BLACKLISTED, f"Participant {identity} is blacklisted"
            )

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------

    def add_admin(self, caller: str, identity: str) -> None:
        self.require_admin(caller)
        target = _canonical(identity)
        self._admins.add(target)

    def remove_admin(self, caller: str, identity: str) -> None:
        """Remove an admin. The owner can never be removed."""
        self.require_admin(caller)
        target = _canonical(identity)
        if target == self._owner:
            raise GovernanceError(
                ErrorCode.NOT_AUTHORIZED, "The owner cannot be removed as admin"
            )
        self._admins.discard(target)

    def blacklist(self, caller: str, identity: str) -> None:
        self.require_admin(caller)
        self._blacklisted.add(_canonical(identity))

    def unblacklist(self, caller: str, identity: str) -> None:
        self.require_admin(caller)
        self._blacklisted.discard(_canonical(identity))

    def pause(self, caller: str) -> None:
        self.require_admin(caller)
        if self._paused:
            raise GovernanceError(ErrorCode.VOTING_PAUSED, "Voting is already paused")
        self._paused = True

    def unpause(self, caller: str) -> None:
        self.require_admin(caller)
        if not self._paused:
            raise GovernanceError(ErrorCode.VOTING_NOT_PAUSED, "Voting is not paused")
        self._paused = False

    # Direct setters used by the service to roll back a failed call.

    def _restore_admin(self, identity: str, was_admin: bool) -> None:
        if was_admin:
            self._admins.add(identity)
        else:
            self._admins.discard(identity)

    def _restore_blacklisted(self, identity: str, was_blacklisted: bool) -> None:
        if was_blacklisted:
            self._blacklisted.add(identity)
        else:
            self._blacklisted.discard(identity)

    def _restore_paused(self, paused: bool) -> None:
        self._paused = paused


def _canonical(identity: str) -> str:
    canonical = identity.strip()
    if not canonical:
        raise GovernanceError(ErrorCode.NOT_AUTHORIZED, "Target identity cannot be blank")
    return canonical
