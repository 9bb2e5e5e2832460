"""Badge interface serial link: line ingestion and scan parsing."""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any, Optional

from pydantic import ValidationError
from serial import Serial, SerialException

from ..state import ScanRecord

logger = logging.getLogger(__name__)

ScanCallback = Callable[[ScanRecord], Any]

BYTES_ENCODING = "utf-8"


def parse_scan_line(line: str) -> Optional[ScanRecord]:
    """Turn one serial line into a ScanRecord, or None when it is malformed."""
    line = line.strip()
    if not line:
        return None
    try:
        payload = json.loads(line)
    except (ValueError, RecursionError) as e:
        logger.warning("[IGNORING] Invalid JSON from badge: %.200s (error: %s)", line, e)
        return None
    if not isinstance(payload, dict):
        logger.warning("[IGNORING] Expected JSON object from badge, got %s: %s", type(payload).__name__, line)
        return None
    try:
        return ScanRecord.model_validate(payload)
    except ValidationError as e:
        logger.warning("[IGNORING] Badge record failed validation: %s (%d errors)", line, e.error_count())
        return None


class BadgeReader:
    """Async helper that reads the badge serial port and emits parsed scans."""

    def __init__(
        self,
        *,
        port: str,
        baud_rate: int = 115200,
        retry_seconds: float = 2.0,
        read_timeout: float = 0.1,
    ) -> None:
        self.port = port
        self.baud_rate = baud_rate
        self.retry_seconds = retry_seconds
        self.read_timeout = read_timeout

        self._serial: Optional[Serial] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()
        self._callbacks: list[ScanCallback] = []

    def register_callback(self, callback: ScanCallback) -> None:
        self._callbacks.append(callback)

    async def start(self) -> None:
        if self._task:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop(), name="badge-reader")

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        await asyncio.get_running_loop().run_in_executor(None, self._close_port)

    def feed_line(self, line: str) -> Optional[ScanRecord]:
        """Run one raw line through the parser and hand any scan to the callbacks."""
        record = parse_scan_line(line)
        if record is None:
            return None
        logger.info("Badge scan received: device=%s score=%s", record.device_id, record.score)
        for callback in self._callbacks:
            try:
                callback(record)
            except Exception:
                logger.exception("Badge scan callback failed")
        return record

    async def _run_loop(self) -> None:
        logger.info("Badge reader active (port=%s, baud=%d)", self.port, self.baud_rate)
        loop = asyncio.get_running_loop()
        try:
            while not self._stop_event.is_set():
                if self._serial is None:
                    opened = await loop.run_in_executor(None, self._open_port)
                    if not opened:
                        await asyncio.sleep(self.retry_seconds)
                        continue

                try:
                    raw = await loop.run_in_executor(None, self._read_line_blocking)
                except (SerialException, OSError) as e:
                    logger.error("Serial error while reading badge line: %s", e)
                    await loop.run_in_executor(None, self._close_port)
                    await asyncio.sleep(self.retry_seconds)
                    continue

                if not raw:
                    continue
                try:
                    line = raw.decode(BYTES_ENCODING)
                except UnicodeDecodeError as e:
                    logger.warning("[IGNORING] Decode error (%s) on badge line: %s", BYTES_ENCODING, e)
                    continue
                try:
                    self.feed_line(line)
                except Exception as exc:
                    logger.exception("[IGNORING] Badge line could not be handled: %s", exc)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Badge reader error: %s", exc)
            raise
        finally:
            self._stop_event.clear()

    def _open_port(self) -> bool:
        """Open the serial port (blocking I/O). Returns True on success."""
        try:
            self._serial = Serial(self.port, self.baud_rate, timeout=self.read_timeout)
            self._serial.reset_input_buffer()
        except (OSError, SerialException) as e:
            logger.error("Failed to open serial port %s: %s", self.port, e)
            self._serial = None
            return False
        logger.info("Connected to %s", self.port)
        return True

    def _read_line_blocking(self) -> bytes:
        assert self._serial is not None
        return self._serial.readline()

    def _close_port(self) -> None:
        if self._serial is None:
            return
        try:
            self._serial.close()
        except (OSError, SerialException) as e:
            logger.warning("Error closing serial port: %s", e)
        self._serial = None


__all__ = ["BadgeReader", "ScanCallback", "parse_scan_line"]
