"""
Per-server flagged-player state machine.

Each player is either NOT_FLAGGED or FLAGGED_NOTIFIED for a given server.
A pass compares the online players currently carrying a cheater flag with the
players already notified, and emits exactly one notify or retract per change.
"""
from __future__ import annotations

from typing import Optional

from shared.config import MonitoredServer
from shared.utils.logging import get_logger
from shared.utils.metrics import FLAGGED_PLAYERS

from flagwatch.classifier import first_cheater_flag
from flagwatch.fetcher import PageFetcher
from flagwatch.models import FlaggedEntry, FlagStatus, Player, ReconcileResult, TransitionEvent
from flagwatch.notifier import NotificationSink

logger = get_logger(__name__)


def transition(status: FlagStatus, flagged_now: bool) -> tuple[FlagStatus, Optional[TransitionEvent]]:
    """
    Pure transition function for one player on one tick.

    Returns the next status and the event to emit, if any.
    """
    if status == FlagStatus.NOT_FLAGGED and flagged_now:
        return FlagStatus.FLAGGED_NOTIFIED, TransitionEvent.NOTIFY
    if status == FlagStatus.FLAGGED_NOTIFIED and not flagged_now:
        return FlagStatus.NOT_FLAGGED, TransitionEvent.RETRACT
    return status, None


class ServerReconciler:
    """Owns the flagged state of one monitored server."""

    def __init__(
        self,
        server: MonitoredServer,
        fetcher: PageFetcher,
        sink: NotificationSink,
    ) -> None:
        self.server = server
        self._fetcher = fetcher
        self._sink = sink
        # player_id -> entry, exactly the players in FLAGGED_NOTIFIED
        self._flagged: dict[str, FlaggedEntry] = {}

    @property
    def flagged_ids(self) -> frozenset[str]:
        return frozenset(self._flagged)

    def status(self, player_id: str) -> FlagStatus:
        if player_id in self._flagged:
            return FlagStatus.FLAGGED_NOTIFIED
        return FlagStatus.NOT_FLAGGED

    async def reconcile(self) -> ReconcileResult:
        """Run one tick for this server."""
        server = self.server
        players = await self._fetcher.list_online_players(server.external_id)

        if not players:
            # An empty or failed listing cannot tell who left, so keep state as is.
            logger.info(
                "server_no_players",
                server=server.slot_number,
                flagged=len(self._flagged),
            )
            return ReconcileResult(server=server, skipped_empty=True)

        logger.info("server_scan_started", server=server.slot_number, players=len(players))

        currently_flagged: dict[str, FlaggedEntry] = {}
        listed: dict[str, Player] = {}
        for player in players:
            if player.id in listed:
                continue
            listed[player.id] = player

            flags = await self._fetcher.fetch_player_flags(player.id)
            flag = first_cheater_flag(flags)
            if flag is not None:
                currently_flagged[player.id] = FlaggedEntry(player=player, flag=flag)

        notified: list[str] = []
        retracted: list[str] = []

        for player_id, entry in currently_flagged.items():
            _, event = transition(self.status(player_id), True)
            if event is TransitionEvent.NOTIFY:
                await self._sink.notify(server, entry.player, entry.flag)
                self._flagged[player_id] = entry
                notified.append(player_id)
                logger.info(
                    "flag_notified",
                    server=server.slot_number,
                    player=entry.player.display_name,
                    player_id=player_id,
                    flag=entry.flag.name,
                )

        for player_id in list(self._flagged):
            _, event = transition(self.status(player_id), player_id in currently_flagged)
            if event is TransitionEvent.RETRACT:
                entry = self._flagged.pop(player_id)
                player = listed.get(player_id, entry.player)
                await self._sink.retract(server, player)
                retracted.append(player_id)
                logger.info(
                    "flag_retracted",
                    server=server.slot_number,
                    player=player.display_name,
                    player_id=player_id,
                )

        FLAGGED_PLAYERS.labels(server=str(server.slot_number)).set(len(self._flagged))
        logger.info(
            "server_scan_finished",
            server=server.slot_number,
            scanned=len(listed),
            notified=len(notified),
            retracted=len(retracted),
            flagged=len(self._flagged),
        )
        return ReconcileResult(
            server=server,
            players_scanned=len(listed),
            notified=notified,
            retracted=retracted,
        )
