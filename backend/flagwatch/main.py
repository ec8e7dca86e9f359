"""
Flag Watch service entrypoint.
Logs the bot in, then runs the reconciliation scheduler until SIGINT/SIGTERM.
"""
from __future__ import annotations

import asyncio
import signal
import sys
from typing import Optional

import discord

from shared.config import ConfigurationError, Settings, load_settings
from shared.utils.health_server import start_health_server
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server

from flagwatch.fetcher import PageFetcher
from flagwatch.notifier import NotificationSink
from flagwatch.rate_limiter import RateLimiter
from flagwatch.reconciler import ServerReconciler
from flagwatch.scheduler import Scheduler

logger = get_logger(__name__)

SERVICE_NAME = "flagwatch"


def build_scheduler(
    settings: Settings,
    fetcher: PageFetcher,
    sink: NotificationSink,
    rate_limiter: RateLimiter,
) -> Scheduler:
    reconcilers = [ServerReconciler(server, fetcher, sink) for server in settings.servers]
    return Scheduler(reconcilers, rate_limiter, interval_s=settings.poll_interval_s)


class WatchClient(discord.Client):
    """Bot session whose first ready event starts the scheduler."""

    def __init__(self, scheduler: Scheduler, stop: asyncio.Event) -> None:
        super().__init__(intents=discord.Intents.default())
        self._scheduler = scheduler
        self._stop = stop
        self._scheduler_task: Optional[asyncio.Task[None]] = None

    async def on_ready(self) -> None:
        logger.info("bot_logged_in", user=str(self.user))
        if self._scheduler_task is None:
            self._scheduler_task = asyncio.create_task(self._scheduler.run_forever(self._stop))

    async def close(self) -> None:
        if self._scheduler_task is not None and not self._scheduler_task.done():
            self._scheduler_task.cancel()
            try:
                await self._scheduler_task
            except asyncio.CancelledError:
                pass
        await super().close()


async def run(settings: Settings) -> None:
    start_health_server(SERVICE_NAME, settings.port)
    start_metrics_server(settings.metrics_port, enabled=settings.metrics_enabled)

    rate_limiter = RateLimiter(
        ceiling=settings.rate_limit_calls,
        window_s=settings.rate_limit_window_s,
    )
    fetcher = PageFetcher(
        api_key=settings.api_key,
        rate_limiter=rate_limiter,
        base_url=settings.api_base_url,
        timeout_s=settings.request_timeout_s,
        page_size=settings.page_size,
        max_players=settings.max_players_per_server,
    )
    sink = NotificationSink(
        settings.webhook_url,
        footer_text=settings.footer_text,
        fallback_avatar_url=settings.fallback_avatar_url,
        timeout_s=settings.notify_timeout_s,
    )
    await fetcher.start()
    await sink.start()

    scheduler = build_scheduler(settings, fetcher, sink, rate_limiter)
    shutdown = asyncio.Event()
    client = WatchClient(scheduler, shutdown)

    def on_signal() -> None:
        shutdown.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            asyncio.get_running_loop().add_signal_handler(sig, on_signal)
        except NotImplementedError:
            pass

    logger.info(
        "flagwatch_starting",
        servers=[s.slot_number for s in settings.servers],
        api_key=settings.api_key_safe_log,
    )

    login_task = asyncio.create_task(client.start(settings.bot_token))
    shutdown_task = asyncio.create_task(shutdown.wait())
    try:
        done, _ = await asyncio.wait({login_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
        if login_task in done and login_task.exception() is not None:
            logger.error("bot_login_failed", error=str(login_task.exception()))
    finally:
        shutdown.set()
        await client.close()
        for task in (login_task, shutdown_task):
            if not task.done():
                task.cancel()
        await asyncio.gather(login_task, shutdown_task, return_exceptions=True)
        await fetcher.close()
        await sink.close()
        logger.info("flagwatch_stopped")


def main() -> None:
    setup_logging(SERVICE_NAME)
    try:
        settings = load_settings()
    except ConfigurationError as exc:
        logger.error("configuration_invalid", error=str(exc))
        sys.exit(1)

    setup_logging(SERVICE_NAME, environment=settings.environment, log_level=settings.log_level)
    asyncio.run(run(settings))


if __name__ == "__main__":
    main()
