"""Central configuration for the cyberdeck controller service."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"


# ============================================================
# Nested Configuration Classes
# ============================================================

class TimeoutSettings(BaseModel):
    """Idle watchdog durations (seconds)."""
    lookup_seconds: float = Field(
        15.0,
        description=(
            "Time a scanned badge holds the terminal. Armed when the scan is accepted, so the rename"
            " delete and the lookup share this budget (each call also has its own HTTP timeout);"
            " re-armed in full once the lookup answers"
        ),
    )
    name_retry_seconds: float = Field(20.0, description="Time allowed to retry after a taken nickname")
    welcome_seconds: float = Field(10.0, description="Welcome screen hold after a new nickname is saved")


class PromptSettings(BaseModel):
    """Display copy for the fixed screens."""
    idle: str = Field("<<< THROW BALLOON!", description="Slot 3 text while waiting for a badge")
    name_entry: Tuple[str, str, str, str, str] = Field(
        ("ENTER YOUR NICKNAME:", "", "", "TYPE IT ON THE KEYBOARD", "PRESS ENTER TO SAVE"),
        description="Slots 1-5 while waiting for a nickname",
    )
    name_taken: str = Field("NAME TAKEN, TRY AGAIN", description="Slot 4 text when the nickname is in use")


class Settings(BaseSettings):
    """Environment-driven settings for controller subsystems."""

    # Leaderboard service
    leaderboard_api_url: str = Field("http://192.168.1.150:3001", description="Leaderboard REST base URL")
    leaderboard_timeout_seconds: float = Field(10.0, description="Per-request timeout for leaderboard calls")
    default_game: str = Field("Splash", description="Game title stored when a scan carries none")

    # Controller HTTP Server
    controller_host: str = Field("0.0.0.0", description="Host interface for local FastAPI server")
    controller_port: int = Field(3000, description="Port for FastAPI server")
    static_directory: Path = Field(ROOT_DIR / "public", description="Kiosk page assets served at /")

    # Badge serial link
    serial_enabled: bool = Field(True, description="Read badge scans from the serial port")
    serial_port: str = Field("/dev/ttyACM0", description="Serial device the badge interface enumerates as")
    serial_baud_rate: int = Field(115200, description="Serial baud rate")
    serial_retry_seconds: float = Field(2.0, description="Delay between serial reopen attempts")

    # Display
    display_queue_size: int = Field(64, description="Max buffered outbound display messages")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")

    # Nested Configuration Objects
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings, description="Idle watchdog durations")
    prompts: PromptSettings = Field(default_factory=PromptSettings, description="Fixed display copy")

    @field_validator("leaderboard_api_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()
