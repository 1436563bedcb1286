"""Policy resolver — loads governance parameters from the config directory.

All tunable bounds (option range, roster and batch capacities, the
initial token requirement) are read from governance_params.json. The
resolver validates them once at load; engines receive typed values and
never parse config themselves.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

PARAMS_FILE = "governance_params.json"

# Hard bounds the engine is built around. Config may tighten, never loosen.
MAX_OPTION_NUMBER = 5
MAX_OPTION_LABELS = 10
MAX_ROSTER_CAPACITY = 1000
MAX_BATCH_SIZE = 50

CAPACITY_CEILINGS = {
    "max_option_labels": MAX_OPTION_LABELS,
    "roster_capacity": MAX_ROSTER_CAPACITY,
    "max_batch_size": MAX_BATCH_SIZE,
}


@dataclass(frozen=True)
class VotingParams:
    """Option numbering and participation requirements.

    Invariants:
    - 1 <= min_option <= max_option <= MAX_OPTION_NUMBER
    - default_token_requirement >= 0
    """
    min_option: int
    max_option: int
    default_token_requirement: int

    def __post_init__(self) -> None:
        if self.min_option < 1:
            raise ValueError(f"min_option must be >= 1, got {self.min_option}")
        if not (self.min_option <= self.max_option <= MAX_OPTION_NUMBER):
            raise ValueError(
                f"max_option must be in [{self.min_option}, {MAX_OPTION_NUMBER}], "
                f"got {self.max_option}"
            )
        if self.default_token_requirement < 0:
            raise ValueError("default_token_requirement must be >= 0")

    @property
    def option_numbers(self) -> range:
        return range(self.min_option, self.max_option + 1)


@dataclass(frozen=True)
class CapacityParams:
    """Fixed capacities of bounded sequences, each in (0, ceiling]."""
    max_option_labels: int
    roster_capacity: int
    max_batch_size: int

    def __post_init__(self) -> None:
        for name, ceiling in CAPACITY_CEILINGS.items():
            value = getattr(self, name)
            if not (0 < value <= ceiling):
                raise ValueError(f"{name} must be in (0, {ceiling}], got {value}")


class PolicyResolver:
    """Typed access to governance parameters."""

    def __init__(self, params: dict[str, Any]) -> None:
        try:
            voting = params["voting"]
            capacity = params["capacity"]
            self._voting = VotingParams(
                min_option=int(voting["min_option"]),
                max_option=int(voting["max_option"]),
                default_token_requirement=int(voting.get("default_token_requirement", 0)),
            )
            self._capacity = CapacityParams(
                max_option_labels=int(capacity["max_option_labels"]),
                roster_capacity=int(capacity["roster_capacity"]),
                max_batch_size=int(capacity["max_batch_size"]),
            )
        except KeyError as e:
            raise ValueError(f"Missing governance parameter: {e}") from e
        self._raw = params

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        """Load parameters from <config_dir>/governance_params.json."""
        path = Path(config_dir) / PARAMS_FILE
        with path.open("r", encoding="utf-8") as f:
            return cls(json.load(f))

    @classmethod
    def from_dict(cls, params: dict[str, Any]) -> PolicyResolver:
        return cls(params)

    def voting_params(self) -> VotingParams:
        return self._voting

    def capacity_params(self) -> CapacityParams:
        return self._capacity

    def as_dict(self) -> dict[str, Any]:
        return json.loads(json.dumps(self._raw))
