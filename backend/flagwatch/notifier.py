"""
Discord webhook notifications for flagged players joining and leaving.
Delivery is best-effort: one POST, no retries, failures are logged and swallowed.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx

from shared.config import MonitoredServer
from shared.utils.logging import get_logger
from shared.utils.metrics import NOTIFICATIONS

from flagwatch.classifier import flag_description
from flagwatch.models import Flag, Player, TransitionEvent

logger = get_logger(__name__)

COLOR_FLAGGED = 0xFF0000
COLOR_CLEARED = 0x2ECC71
DEFAULT_FOOTER = "Powered by A7 Servers"
DEFAULT_AVATAR_URL = "https://cdn.discordapp.com/embed/avatars/0.png"
WEBHOOK_ACCEPTED = 204


def build_notify_embed(
    server: MonitoredServer,
    player: Player,
    flag: Flag,
    footer_text: str = DEFAULT_FOOTER,
    fallback_avatar_url: str = DEFAULT_AVATAR_URL,
) -> dict[str, Any]:
    embed: dict[str, Any] = {
        "title": f"⚠️ Possible Cheater Detected on {server.label}",
        "description": (
            f"Player **{player.display_name}** has the flag: **{flag.name}**.\n\n"
            f"Description: {flag_description(flag)}"
        ),
        "thumbnail": {"url": player.avatar_url or fallback_avatar_url},
        "color": COLOR_FLAGGED,
        "footer": {"text": f"{server.label} | {footer_text}"},
    }
    if player.profile_url:
        embed["url"] = player.profile_url
    return embed


def build_retract_embed(
    server: MonitoredServer,
    player: Player,
    footer_text: str = DEFAULT_FOOTER,
    fallback_avatar_url: str = DEFAULT_AVATAR_URL,
) -> dict[str, Any]:
    embed: dict[str, Any] = {
        "title": f"✅ Possible Cheater Left {server.label}",
        "description": f"Player **{player.display_name}** is no longer online.",
        "thumbnail": {"url": player.avatar_url or fallback_avatar_url},
        "color": COLOR_CLEARED,
        "footer": {"text": f"{server.label} | {footer_text}"},
    }
    if player.profile_url:
        embed["url"] = player.profile_url
    return embed


class NotificationSink:
    """Posts one embed per notify/retract event to the configured webhook."""

    def __init__(
        self,
        webhook_url: str,
        footer_text: str = DEFAULT_FOOTER,
        fallback_avatar_url: str = DEFAULT_AVATAR_URL,
        timeout_s: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._webhook_url = webhook_url
        self._footer_text = footer_text
        self._fallback_avatar_url = fallback_avatar_url
        self._timeout = timeout_s
        self._client = client

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout, connect=5.0))

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def notify(self, server: MonitoredServer, player: Player, flag: Flag) -> bool:
        embed = build_notify_embed(
            server, player, flag, self._footer_text, self._fallback_avatar_url
        )
        return await self._deliver(TransitionEvent.NOTIFY, server, player, embed)

    async def retract(self, server: MonitoredServer, player: Player) -> bool:
        embed = build_retract_embed(server, player, self._footer_text, self._fallback_avatar_url)
        return await self._deliver(TransitionEvent.RETRACT, server, player, embed)

    async def _deliver(
        self,
        kind: TransitionEvent,
        server: MonitoredServer,
        player: Player,
        embed: dict[str, Any],
    ) -> bool:
        """POST the embed once. Returns True only on 204 No Content."""
        if self._client is None:
            raise RuntimeError("NotificationSink not started. Call start() first.")

        try:
            resp = await self._client.post(self._webhook_url, json={"embeds": [embed]})
        except httpx.HTTPError as exc:
            NOTIFICATIONS.labels(kind=kind.value, outcome="error").inc()
            logger.error(
                "webhook_delivery_failed",
                kind=kind.value,
                server=server.slot_number,
                player_id=player.id,
                error=str(exc),
            )
            return False

        if resp.status_code != WEBHOOK_ACCEPTED:
            NOTIFICATIONS.labels(kind=kind.value, outcome="rejected").inc()
            logger.error(
                "webhook_delivery_rejected",
                kind=kind.value,
                server=server.slot_number,
                player_id=player.id,
                status=resp.status_code,
            )
            return False

        NOTIFICATIONS.labels(kind=kind.value, outcome="sent").inc()
        logger.info(
            "webhook_delivered",
            kind=kind.value,
            server=server.slot_number,
            player=player.display_name,
            player_id=player.id,
        )
        return True
