"""Session arbitration for the cyberdeck kiosk.

One badge owns the terminal at a time. A scan moves the controller out of
IDLE, and only the idle watchdog or an explicit cancel from the display
brings it back, except that a flow failing unexpectedly also returns to idle.
Remote calls are the only suspension points; a flow that was
forced idle mid-call ignores whatever the call returns.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Coroutine
from typing import Any, Optional

from .backend.http_client import LeaderboardClient
from .config import Settings, get_settings
from .display import DisplayChannel
from .state import UNREGISTERED_NICK, NameSubmission, ScanRecord, Session, SessionPhase
from .watchdog import IdleWatchdog

logger = logging.getLogger(__name__)

SCORE_LABEL = "YOUR SCORE IS:"


class SessionController:
    """Coordinates badge scans, leaderboard calls, the watchdog and the display."""

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        leaderboard: Optional[LeaderboardClient] = None,
        display: Optional[DisplayChannel] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._leaderboard = leaderboard or LeaderboardClient(self.settings)
        self._display = display or DisplayChannel(queue_size=self.settings.display_queue_size)
        self._display.bind(on_name_submitted=self.on_name_submitted, on_cancel=self.on_cancel)
        self._watchdog = IdleWatchdog(self._on_watchdog_expired)

        self._phase: SessionPhase = SessionPhase.IDLE
        self._session: Optional[Session] = None
        self._flow_task: Optional[asyncio.Task[None]] = None
        self._flow_tasks: set[asyncio.Task[None]] = set()

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def session(self) -> Optional[Session]:
        """Snapshot of the live session, if any."""
        return dataclasses.replace(self._session) if self._session else None

    @property
    def display(self) -> DisplayChannel:
        return self._display

    @property
    def watchdog(self) -> IdleWatchdog:
        return self._watchdog

    async def start(self) -> None:
        logger.info("Starting session controller")
        self.force_idle("startup")

    async def stop(self) -> None:
        logger.info("Stopping session controller")
        self._watchdog.cancel()
        self._flow_task = None
        tasks = list(self._flow_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)
        await self._leaderboard.aclose()
        logger.info("Session controller stopped")

    async def join(self) -> None:
        """Wait for in-flight flow steps, including detached ones, to finish."""
        tasks = list(self._flow_tasks)
        if tasks:
            await asyncio.wait(tasks)

    # ============================================================
    # Inbound events
    # ============================================================

    def on_scan(self, record: ScanRecord) -> bool:
        """Start a session for ``record`` unless one is already live."""
        if self._phase != SessionPhase.IDLE:
            logger.info("Terminal busy (%s); ignoring scan from %s", self._phase.value, record.device_id)
            return False

        session = Session(
            device_id=record.device_id,
            score=record.score,
            crc=record.crc,
            game_name=record.game_name or self.settings.default_game,
        )
        self._session = session
        logger.info("Scan accepted from %s (score=%s game=%s)", session.device_id, session.score, session.game_name)
        self._advance(SessionPhase.BUSY_LOOKUP)
        self._display.broadcast_record(record)
        # One budget for the rename delete plus the lookup; replaced once the lookup answers
        self._watchdog.arm(self.settings.timeouts.lookup_seconds)
        self._spawn(self._run_lookup(session, rename=record.rename_requested), name="session-lookup")
        return True

    def on_name_submitted(self, submission: NameSubmission) -> bool:
        """Check and claim a nickname typed on the kiosk."""
        session = self._session
        if self._phase != SessionPhase.NEEDS_NAME or session is None:
            logger.info("Ignoring nickname %r outside name entry (%s)", submission.game_name, self._phase.value)
            return False
        if self._flow_task and not self._flow_task.done():
            logger.info("Nickname check already running; ignoring %r", submission.game_name)
            return False

        self._watchdog.cancel()
        self._spawn(self._run_name_entry(session, submission), name="session-name-entry")
        return True

    def on_cancel(self) -> None:
        logger.info("Cancel requested from display")
        self.force_idle("cancel")

    def force_idle(self, reason: str = "forced") -> None:
        """Drop any live session and put the idle prompt on screen."""
        self._watchdog.cancel()
        # A detached flow keeps running to its next await, then sees it is no longer live
        self._flow_task = None

        was_busy = self._phase != SessionPhase.IDLE
        self._session = None
        self._display.set_fields("", "", self.settings.prompts.idle, "", "")
        self._advance(SessionPhase.IDLE)
        if was_busy:
            logger.info("Returned to idle (%s)", reason)

    # ============================================================
    # Session flow steps
    # ============================================================

    async def _run_lookup(self, session: Session, *, rename: bool) -> None:
        try:
            if rename:
                logger.info("Rename requested for %s; clearing stored nickname", session.device_id)
                await self._leaderboard.remove(session.device_id)
                if not self._is_live(session):
                    return

            nick = await self._leaderboard.lookup(session.device_id, session.score)
            if not self._is_live(session):
                return
            self._watchdog.arm(self.settings.timeouts.lookup_seconds)

            if nick is None:
                logger.warning("Lookup failed for %s; holding until watchdog", session.device_id)
                return

            if nick == UNREGISTERED_NICK:
                logger.info("No name found for %s; prompting for nickname", session.device_id)
                session.awaiting_name = True
                self._display.set_fields(*self.settings.prompts.name_entry)
                self._advance(SessionPhase.NEEDS_NAME)
                return

            logger.info("Name found for %s: %s", session.device_id, nick)
            session.candidate_name = nick
            self._show_score("WELCOME BACK,", nick, session.score)
            self._advance(SessionPhase.WELCOME_BACK)
            await self._leaderboard.upsert(session.device_id, nick, session.game_name, session.score, session.crc)
        except asyncio.CancelledError:
            logger.info("Lookup flow for %s superseded", session.device_id)
            raise
        except Exception as exc:
            logger.exception("Unexpected lookup flow error: %s", exc)
            if self._is_live(session):
                self.force_idle("error")

    async def _run_name_entry(self, session: Session, submission: NameSubmission) -> None:
        nick = submission.game_name
        device_id = submission.device_id or session.device_id
        score = submission.score or session.score
        crc = submission.crc or session.crc
        try:
            session.candidate_name = nick
            unique = await self._leaderboard.check_unique(device_id, nick)
            if not self._is_live(session):
                return

            if not unique:
                logger.info("Nickname %r not available for %s", nick, device_id)
                self._display.set_field(4, self.settings.prompts.name_taken)
                self._watchdog.arm(self.settings.timeouts.name_retry_seconds)
                return

            logger.info("Name entered for %s: %s", device_id, nick)
            session.awaiting_name = False
            self._show_score("WELCOME,", nick, score)
            self._advance(SessionPhase.WELCOME_BACK)
            self._watchdog.arm(self.settings.timeouts.welcome_seconds)
            await self._leaderboard.upsert(device_id, nick, session.game_name, score, crc)
        except asyncio.CancelledError:
            logger.info("Name entry flow for %s superseded", device_id)
            raise
        except Exception as exc:
            logger.exception("Unexpected name entry flow error: %s", exc)
            if self._is_live(session):
                self.force_idle("error")

    # ============================================================
    # Helpers
    # ============================================================

    def _spawn(self, flow: Coroutine[Any, Any, None], *, name: str) -> None:
        task = asyncio.create_task(flow, name=name)
        self._flow_task = task
        self._flow_tasks.add(task)
        task.add_done_callback(self._flow_tasks.discard)

    def _on_watchdog_expired(self) -> None:
        self.force_idle("watchdog")

    def _is_live(self, session: Session) -> bool:
        return self._session is session and self._phase != SessionPhase.IDLE

    def _show_score(self, greeting: str, nick: str, score: str) -> None:
        self._display.set_fields(greeting, nick, "", SCORE_LABEL, score)

    def _advance(self, phase: SessionPhase) -> None:
        if phase != self._phase:
            logger.debug("Phase %s -> %s", self._phase.value, phase.value)
        self._phase = phase


__all__ = ["SessionController"]
