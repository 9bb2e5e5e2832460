"""HTTP client helpers for the remote leaderboard REST endpoints."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

from ..config import Settings

logger = logging.getLogger(__name__)


class LeaderboardError(RuntimeError):
    """Raised when a leaderboard call fails or returns an undecodable body."""


class LeaderboardClient:
    """Thin wrapper around the leaderboard REST API.

    Every endpoint answers with a JSON document whose body is itself a JSON
    encoded string, e.g. ``"{\\"res\\": 200}"``. ``_post`` unwraps both layers.
    Failures never escape the public methods; each maps to the outcome that
    commits the least for its step.
    """

    RES_OK = 200
    RES_NOT_FOUND = 404
    RES_NOT_DELETED = 500

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        self._client = httpx.AsyncClient(
            base_url=self.settings.leaderboard_api_url,
            timeout=self.settings.leaderboard_timeout_seconds,
            transport=transport,
        )

    async def check_unique(self, device_id: str, nick: str) -> bool:
        """Return True when ``nick`` is free to claim; failures count as taken."""
        try:
            result = await self._post("/user/unique", {"id": device_id, "nick": nick})
        except LeaderboardError as e:
            logger.error("leaderboard.check_unique: %s", e)
            return False

        res = result.get("res")
        if res == self.RES_NOT_FOUND:
            logger.info("leaderboard.check_unique: %r is available", nick)
            return True
        if res == self.RES_OK:
            logger.info("leaderboard.check_unique: %r is taken", nick)
        else:
            logger.warning("leaderboard.check_unique: unexpected result %s", result)
        return False

    async def lookup(self, device_id: str, score: str) -> Optional[str]:
        """Return the nickname stored for ``device_id``.

        The service answers ``"none"`` for an unregistered badge; that sentinel
        is passed through unchanged. ``None`` means the lookup itself failed.
        """
        try:
            result = await self._post("/user/get", {"id": device_id, "score": score})
        except LeaderboardError as e:
            logger.error("leaderboard.lookup: %s", e)
            return None

        nick = result.get("nick")
        if not isinstance(nick, str) or not nick:
            logger.error("leaderboard.lookup: response missing nick %s", result)
            return None
        logger.info("leaderboard.lookup: %s -> %s", device_id, nick)
        return nick

    async def upsert(self, device_id: str, nick: str, game: str, score: str, crc: str) -> bool:
        """Create or fully replace the leaderboard record for ``device_id``."""
        payload = {"id": device_id, "nick": nick, "game": game, "score": score, "crc": crc}
        try:
            result = await self._post("/user/put", payload)
        except LeaderboardError as e:
            logger.error("leaderboard.upsert: %s", e)
            return False

        if result.get("res") == self.RES_OK:
            logger.info("leaderboard.upsert: high score record created/updated for %s", device_id)
            return True
        logger.warning("leaderboard.upsert: record not created/updated %s", result)
        return False

    async def remove(self, device_id: str) -> bool:
        """Delete the record for ``device_id`` so the badge can pick a new nickname."""
        try:
            result = await self._post("/user/delete", {"id": device_id})
        except LeaderboardError as e:
            logger.error("leaderboard.remove: %s", e)
            return False

        res = result.get("res")
        if res == self.RES_OK:
            logger.info("leaderboard.remove: user %s deleted", device_id)
            return True
        if res == self.RES_NOT_DELETED:
            logger.warning("leaderboard.remove: user %s not deleted", device_id)
        else:
            logger.warning("leaderboard.remove: unexpected result %s", result)
        return False

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing HTTP client: %s", e)

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._client.post(path, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as e:
            raise LeaderboardError(f"{path} request timeout") from e
        except httpx.NetworkError as e:
            raise LeaderboardError(f"{path} network error - {e}") from e
        except httpx.HTTPStatusError as e:
            raise LeaderboardError(f"{path} HTTP {e.response.status_code} - {e.response.text}") from e
        except httpx.HTTPError as e:
            raise LeaderboardError(f"{path} transport error - {e}") from e
        except ValueError as e:
            raise LeaderboardError(f"{path} response is not JSON") from e
        return decode_result(body, path=path)


def decode_result(body: Any, *, path: str = "") -> Dict[str, Any]:
    """Unwrap the embedded JSON string carried in a leaderboard response body.

    A body that already decoded to an object is accepted as-is.
    """
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except json.JSONDecodeError as e:
            raise LeaderboardError(f"{path} embedded payload is not JSON: {body!r}") from e
    if not isinstance(body, dict):
        raise LeaderboardError(f"{path} expected object, got {type(body).__name__}")
    return body


__all__ = ["LeaderboardClient", "LeaderboardError", "decode_result"]
