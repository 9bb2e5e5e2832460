"""Shared controller state definitions for the cyberdeck kiosk."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

UNREGISTERED_NICK = "none"


class SessionPhase(str, enum.Enum):
    """
    Session phases in chronological order:

    1. IDLE          - Waiting for a badge (slot 3 shows the idle prompt)
    2. BUSY_LOOKUP   - Badge accepted, leaderboard lookup in progress
    3. NEEDS_NAME    - Unregistered badge, waiting for a nickname
    4. WELCOME_BACK  - Score shown; terminal stays latched until the watchdog fires
    """
    IDLE = "idle"
    BUSY_LOOKUP = "busy_lookup"
    NEEDS_NAME = "needs_name"
    WELCOME_BACK = "welcome_back"


class ScanRecord(BaseModel):
    """One badge read as reported by the badge interface over serial.

    Accepts the firmware's ``cyberdeck_*`` keys or the plain field names.
    """

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True, str_strip_whitespace=True, extra="ignore")

    device_id: str = Field(
        ...,
        min_length=1,
        alias="cyberdeck_device_id",
        validation_alias=AliasChoices("cyberdeck_device_id", "device_id"),
    )
    score: str = Field(
        ...,
        alias="cyberdeck_game_score",
        validation_alias=AliasChoices("cyberdeck_game_score", "score"),
    )
    game_name: str = Field(
        "",
        alias="cyberdeck_game_name",
        validation_alias=AliasChoices("cyberdeck_game_name", "game_name"),
    )
    crc: str = Field(
        "",
        alias="cyberdeck_game_crc",
        validation_alias=AliasChoices("cyberdeck_game_crc", "crc"),
    )
    rename_requested: bool = Field(
        False,
        alias="rename_player",
        validation_alias=AliasChoices("rename_player", "rename_user", "rename_requested"),
    )


class NameSubmission(BaseModel):
    """Nickname relayed back by the kiosk page after the player typed it.

    ``game_name`` carries the nickname; the page reuses the badge field names.
    """

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True, str_strip_whitespace=True, extra="ignore")

    game_name: str = Field(
        ...,
        min_length=1,
        alias="cyberdeck_game_name",
        validation_alias=AliasChoices("cyberdeck_game_name", "game_name"),
    )
    device_id: Optional[str] = Field(
        None,
        alias="cyberdeck_device_id",
        validation_alias=AliasChoices("cyberdeck_device_id", "device_id"),
    )
    score: Optional[str] = Field(
        None,
        alias="cyberdeck_game_score",
        validation_alias=AliasChoices("cyberdeck_game_score", "score"),
    )
    crc: Optional[str] = Field(
        None,
        alias="cyberdeck_game_crc",
        validation_alias=AliasChoices("cyberdeck_game_crc", "crc"),
    )


@dataclass
class Session:
    """The one live badge flow. Owned by the session controller."""

    device_id: str
    score: str
    crc: str
    game_name: str
    candidate_name: Optional[str] = None
    awaiting_name: bool = False


@dataclass
class DisplayEvent:
    """Message pushed to the kiosk page over the display websocket."""

    type: str
    data: Any


__all__ = ["UNREGISTERED_NICK", "SessionPhase", "ScanRecord", "NameSubmission", "Session", "DisplayEvent"]
