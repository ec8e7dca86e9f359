"""
Player flag extraction and the cheater-signal predicate.
"""
from __future__ import annotations

from typing import Any, Iterable, Optional

from flagwatch.models import Flag

CHEATER_FLAG_NAME = "possible cheater"
NO_DESCRIPTION = "No description provided."
PLAYER_FLAG_TYPE = "playerFlag"


def normalize_flag_name(name: str) -> str:
    return (name or "").strip().casefold()


def is_cheater_flag(flag: Flag) -> bool:
    """Only an exact "possible cheater" name (ignoring case and outer whitespace) counts."""
    return normalize_flag_name(flag.name) == CHEATER_FLAG_NAME


def flag_description(flag: Flag) -> str:
    return flag.description or NO_DESCRIPTION


def parse_flags(payload: Any) -> list[Flag]:
    """
    Build flags from the `included` array of a player detail payload.
    Anything that is not a named playerFlag record is ignored.
    """
    if not isinstance(payload, dict):
        return []
    included = payload.get("included") or []
    if not isinstance(included, list):
        return []

    flags: list[Flag] = []
    for item in included:
        if not isinstance(item, dict) or item.get("type") != PLAYER_FLAG_TYPE:
            continue
        attrs = item.get("attributes") or {}
        name = attrs.get("name")
        if not isinstance(name, str) or not name.strip():
            continue
        description = attrs.get("description")
        flags.append(Flag(name=name, description=description if isinstance(description, str) else None))
    return flags


def first_cheater_flag(flags: Iterable[Flag]) -> Optional[Flag]:
    return next((f for f in flags if is_cheater_flag(f)), None)
