"""
Upstream API fetcher for online-player listings and player flag details.
Every request passes through the shared RateLimiter; failures degrade to empty results.
"""
from __future__ import annotations

import time
from typing import Any, Optional

import httpx

from shared.utils.logging import get_logger
from shared.utils.metrics import API_LATENCY, API_REQUESTS

from flagwatch.classifier import parse_flags
from flagwatch.models import UNKNOWN_PLAYER_NAME, Flag, Player
from flagwatch.rate_limiter import RateLimiter

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://api.battlemetrics.com"
PLAYERS_PATH = "/players"
MAX_PLAYERS_PER_SERVER = 100
PAGE_SIZE = 100


class FetchError(Exception):
    """A single upstream request failed (transport, status or decoding)."""


def _player_from_record(record: dict[str, Any]) -> Optional[Player]:
    player_id = record.get("id")
    if player_id is None:
        return None
    attrs = record.get("attributes") or {}
    return Player(
        id=str(player_id),
        display_name=attrs.get("name") or UNKNOWN_PLAYER_NAME,
        profile_url=attrs.get("profile") or None,
        avatar_url=attrs.get("avatar") or None,
    )


class PageFetcher:
    """
    Async client for the player endpoints of the statistics API.

    Either call start() to build the underlying httpx client from settings or
    inject a ready client (tests pass one backed by httpx.MockTransport).
    """

    def __init__(
        self,
        api_key: str,
        rate_limiter: RateLimiter,
        base_url: str = DEFAULT_BASE_URL,
        timeout_s: float = 10.0,
        page_size: int = PAGE_SIZE,
        max_players: int = MAX_PLAYERS_PER_SERVER,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_key = api_key
        self._rate_limiter = rate_limiter
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s
        self._page_size = page_size
        self._max_players = max_players
        self._client = client

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}", "Accept": "application/json"}

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=self._headers,
                timeout=httpx.Timeout(self._timeout, connect=5.0),
                follow_redirects=True,
            )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _get_json(
        self,
        url: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """
        One rate-limited GET returning the decoded JSON body.

        Raises:
            FetchError: On transport errors, non-2xx statuses or invalid JSON.
        """
        if self._client is None:
            raise RuntimeError("PageFetcher not started. Call start() first.")

        await self._rate_limiter.acquire()

        start_time = time.perf_counter()
        status = "error"
        try:
            resp = await self._client.get(url, params=params, headers=self._headers)
            status = str(resp.status_code)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as exc:
            raise FetchError(f"HTTP {exc.response.status_code} from {endpoint}") from exc
        except httpx.HTTPError as exc:
            status = "transport_error"
            raise FetchError(f"{type(exc).__name__}: {exc}") from exc
        except ValueError as exc:
            status = "invalid_json"
            raise FetchError(f"invalid JSON from {endpoint}") from exc
        finally:
            API_REQUESTS.labels(endpoint=endpoint, status=status).inc()
            API_LATENCY.labels(endpoint=endpoint).observe(time.perf_counter() - start_time)

    async def list_online_players(self, external_id: str) -> list[Player]:
        """
        Collect online players for one server, newest first, following next-page links.

        Stops at a missing next link, an empty page or the per-server cap.
        Any failed page abandons the whole listing and returns [].
        """
        players: list[Player] = []
        next_url: Optional[str] = PLAYERS_PATH
        params: dict[str, Any] | None = {
            "filter[servers]": external_id,
            "filter[online]": "true",
            "fields[player]": "name",
            "page[size]": str(self._page_size),
            "sort": "-updatedAt",
        }

        try:
            while next_url and len(players) < self._max_players:
                body = await self._get_json(next_url, "players_list", params=params)
                params = None  # next links already carry the query

                records = body.get("data") if isinstance(body, dict) else None
                if not records or not isinstance(records, list):
                    logger.debug("players_page_empty", server_id=external_id)
                    break

                for record in records:
                    if isinstance(record, dict):
                        player = _player_from_record(record)
                        if player is not None:
                            players.append(player)

                links = body.get("links")
                if not isinstance(links, dict):
                    break
                next_url = links.get("next") or None
                if not isinstance(next_url, str):
                    break
        except FetchError as exc:
            logger.error("players_list_failed", server_id=external_id, error=str(exc))
            return []

        players = players[: self._max_players]
        logger.info("players_listed", server_id=external_id, count=len(players))
        return players

    async def fetch_player_flags(self, player_id: str) -> list[Flag]:
        """Fetch the flags attached to one player; failures read as no flags."""
        try:
            body = await self._get_json(
                f"{PLAYERS_PATH}/{player_id}",
                "player_detail",
                params={"include": "playerFlag", "fields[playerFlag]": "name,description"},
            )
        except FetchError as exc:
            logger.warning("player_flags_failed", player_id=player_id, error=str(exc))
            return []

        flags = parse_flags(body)
        if not flags:
            logger.debug("player_flags_none", player_id=player_id)
        else:
            logger.debug("player_flags_found", player_id=player_id, count=len(flags))
        return flags
