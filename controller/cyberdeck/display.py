"""Logical connection to the kiosk page's five text fields."""
from __future__ import annotations

import asyncio
import json
import logging
from asyncio import QueueEmpty
from collections.abc import Callable
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from .state import DisplayEvent, NameSubmission, ScanRecord

logger = logging.getLogger(__name__)

NameHandler = Callable[[NameSubmission], None]
CancelHandler = Callable[[], None]

SLOT_COUNT = 5
NAME_ENTERED = "name-entered"
ESC_KEY = "esc-key"
JSON_DATA = "json-data"


def parse_name_submission(payload: Any) -> Optional[NameSubmission]:
    """Decode a ``name-entered`` payload (JSON text or object); None if malformed."""
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except (ValueError, RecursionError) as e:
            logger.warning("[IGNORING] Invalid name-entered JSON: %r (error: %s)", payload, e)
            return None
    if not isinstance(payload, dict):
        logger.warning("[IGNORING] name-entered payload is not an object: %r", payload)
        return None
    try:
        return NameSubmission.model_validate(payload)
    except ValidationError as e:
        logger.warning("[IGNORING] name-entered payload failed validation: %r (%d errors)", payload, e.error_count())
        return None


class DisplayChannel:
    """Single-display fan-out with a last-write-wins mirror of the slots.

    Outbound messages go to the attached display's queue; with no display
    attached they are dropped. Inbound signals are dispatched to the handlers
    bound once at startup.
    """

    def __init__(self, *, queue_size: int = 64) -> None:
        self._queue_size = queue_size
        self._queue: Optional[asyncio.Queue[DisplayEvent]] = None
        self._fields: Dict[int, str] = {slot: "" for slot in range(1, SLOT_COUNT + 1)}
        self._on_name_submitted: Optional[NameHandler] = None
        self._on_cancel: Optional[CancelHandler] = None

    @property
    def connected(self) -> bool:
        return self._queue is not None

    @property
    def fields(self) -> Tuple[str, ...]:
        return tuple(self._fields[slot] for slot in range(1, SLOT_COUNT + 1))

    def bind(self, *, on_name_submitted: NameHandler, on_cancel: CancelHandler) -> None:
        self._on_name_submitted = on_name_submitted
        self._on_cancel = on_cancel

    def attach(self) -> asyncio.Queue[DisplayEvent]:
        """Attach a display, replacing any previous one, and replay the current frame."""
        if self._queue is not None:
            logger.info("Display replaced by new connection")
        queue: asyncio.Queue[DisplayEvent] = asyncio.Queue(maxsize=self._queue_size)
        self._queue = queue
        for slot in range(1, SLOT_COUNT + 1):
            self._send(DisplayEvent(type=f"text{slot}", data=self._fields[slot]))
        logger.info("Display connected")
        return queue

    def detach(self, queue: asyncio.Queue[DisplayEvent]) -> None:
        if self._queue is queue:
            self._queue = None
            logger.info("Display disconnected")

    def set_field(self, slot: int, text: str) -> None:
        if not 1 <= slot <= SLOT_COUNT:
            raise ValueError(f"display slot must be 1..{SLOT_COUNT}, got {slot}")
        self._fields[slot] = text
        self._send(DisplayEvent(type=f"text{slot}", data=text))

    def set_fields(self, *texts: str) -> None:
        """Write slots 1..n in order."""
        for slot, text in enumerate(texts, start=1):
            self.set_field(slot, text)

    def broadcast_record(self, record: ScanRecord) -> None:
        """Diagnostic copy of the raw scan for the kiosk page."""
        self._send(DisplayEvent(type=JSON_DATA, data=json.dumps(record.model_dump(by_alias=True))))

    def handle_message(self, message: Any, queue: Optional[asyncio.Queue[DisplayEvent]] = None) -> None:
        """Dispatch one inbound message from the display."""
        if queue is not None and queue is not self._queue:
            logger.debug("Ignoring message from a replaced display")
            return
        if not self.connected:
            return
        if not isinstance(message, dict):
            logger.warning("[IGNORING] Display message is not an object: %r", message)
            return

        message_type = message.get("type")
        if message_type == NAME_ENTERED:
            submission = parse_name_submission(message.get("data"))
            if submission is not None and self._on_name_submitted:
                self._on_name_submitted(submission)
        elif message_type == ESC_KEY:
            logger.info("Escape key received from display")
            if self._on_cancel:
                self._on_cancel()
        else:
            logger.debug("Unhandled display message type: %s", message_type)

    def _send(self, event: DisplayEvent) -> None:
        queue = self._queue
        if queue is None:
            return
        try:
            if queue.full():
                try:
                    queue.get_nowait()
                except QueueEmpty:
                    pass
            queue.put_nowait(event)
        except Exception as e:
            logger.warning("Failed to queue display event: %s", e)


__all__ = ["DisplayChannel", "parse_name_submission", "NAME_ENTERED", "ESC_KEY", "JSON_DATA", "SLOT_COUNT"]
