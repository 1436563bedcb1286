"""Governance invariant checks against the parameter file."""

from __future__ import annotations

import json
from pathlib import Path

from polity.policy.resolver import (
    CAPACITY_CEILINGS,
    MAX_OPTION_NUMBER,
    PARAMS_FILE,
)


def check_params(params: dict) -> list[str]:
    """Return a list of invariant violations (empty when valid)."""
    errors: list[str] = []

    voting = params.get("voting")
    capacity = params.get("capacity")
    if not isinstance(voting, dict):
        return ["missing section: voting"]
    if not isinstance(capacity, dict):
        return ["missing section: capacity"]

    min_option = voting.get("min_option", 0)
    max_option = voting.get("max_option", 0)
    if min_option != 1:
        errors.append(f"voting.min_option must be 1, got {min_option}")
    if not (min_option <= max_option <= MAX_OPTION_NUMBER):
        errors.append(
            f"voting.max_option must be in [{min_option}, {MAX_OPTION_NUMBER}], got {max_option}"
        )
    if voting.get("default_token_requirement", 0) < 0:
        errors.append("voting.default_token_requirement must be >= 0")

    for name, ceiling in CAPACITY_CEILINGS.items():
        value = capacity.get(name, 0)
        if not (0 < value <= ceiling):
            errors.append(f"capacity.{name} must be in (0, {ceiling}], got {value}")

    return errors


def check_config_dir(config_dir: Path) -> list[str]:
    path = Path(config_dir) / PARAMS_FILE
    with path.open("r", encoding="utf-8") as handle:
        return check_params(json.load(handle))
