"""
Pydantic v2 models for players, flags and reconciliation results.
These are transient per-pass representations built from upstream payloads.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.config import MonitoredServer

UNKNOWN_PLAYER_NAME = "Unknown Player"

__all__ = [
    "FlagStatus",
    "Flag",
    "FlaggedEntry",
    "MonitoredServer",
    "PassResult",
    "Player",
    "ReconcileResult",
    "TransitionEvent",
]


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


# ── Enums ───────────────────────────────────────────────────────────────
class FlagStatus(str, Enum):
    NOT_FLAGGED = "not_flagged"
    FLAGGED_NOTIFIED = "flagged_notified"


class TransitionEvent(str, Enum):
    NOTIFY = "notify"
    RETRACT = "retract"


# ── Upstream entities ───────────────────────────────────────────────────
class Player(DomainModel):
    id: str
    display_name: str = UNKNOWN_PLAYER_NAME
    profile_url: Optional[str] = None
    avatar_url: Optional[str] = None


class Flag(DomainModel):
    name: str
    description: Optional[str] = None


class FlaggedEntry(DomainModel):
    """A player in FLAGGED_NOTIFIED state and the flag they were reported with."""
    player: Player
    flag: Flag


# ── Results ─────────────────────────────────────────────────────────────
class ReconcileResult(DomainModel):
    server: MonitoredServer
    players_scanned: int = 0
    notified: list[str] = Field(default_factory=list)
    retracted: list[str] = Field(default_factory=list)
    skipped_empty: bool = False


class PassResult(DomainModel):
    reconciled: list[ReconcileResult] = Field(default_factory=list)
    skipped: list[MonitoredServer] = Field(default_factory=list)
    duration_s: float = 0.0
