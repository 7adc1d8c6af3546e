"""Channel runtime orchestrator for TinyClaw."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Iterable, Optional

from loguru import logger

from tinyclaw.bus.queue import FileQueue, ResetFlag
from tinyclaw.channels.base import BaseChannel
from tinyclaw.config.schema import Config


CHANNEL_NAMES = ("whatsapp", "telegram", "discord")


class ChannelManager:
    """
    Channel runtime orchestrator.

    Responsibilities:
        - Channel construction from config
        - Channel lifecycle orchestration

    Channels never talk to each other; a failing channel only logs.
    """

    def __init__(
        self,
        config: Config,
        queue: FileQueue,
        reset_flag: ResetFlag,
        only: Optional[Iterable[str]] = None,
    ):
        self.config = config
        self.queue = queue
        self.reset_flag = reset_flag

        self.channels: Dict[str, BaseChannel] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._running: bool = False

        self._init_channels(set(only) if only else None)

    # ==========================================================
    # Channel initialization
    # ==========================================================

    def _init_channels(self, only: Optional[set[str]]) -> None:
        factories: Dict[str, Callable[[], Optional[BaseChannel]]] = {
            "whatsapp": self._init_whatsapp,
            "telegram": self._init_telegram,
            "discord": self._init_discord,
        }

        for name, factory in factories.items():
            if only is not None and name not in only:
                continue
            self._register(name, factory, force=only is not None)

        if not self.channels:
            logger.warning("No channels enabled")

    def _register(self, name: str, factory, force: bool) -> None:
        section = getattr(self.config.channels, name)
        if not (section.enabled or force):
            return
        try:
            channel = factory()
            if channel:
                self.channels[name] = channel
                logger.info("Channel enabled: {}", name)
        except Exception as e:
            logger.warning("Channel {} init failed: {}", name, e)

    def _channel_kwargs(self) -> Dict[str, Any]:
        return {
            "poll_interval": self.config.queue.poll_interval,
            "pending_ttl_s": self.config.queue.pending_ttl_s,
        }

    def _init_whatsapp(self) -> Optional[BaseChannel]:
        from tinyclaw.channels.whatsapp import WhatsAppChannel
        return WhatsAppChannel(
            self.config.channels.whatsapp,
            self.queue,
            self.reset_flag,
            state_dir=self.config.paths.channels,
            **self._channel_kwargs(),
        )

    def _init_telegram(self) -> Optional[BaseChannel]:
        from tinyclaw.channels.telegram import TelegramChannel
        return TelegramChannel(
            self.config.channels.telegram,
            self.queue,
            self.reset_flag,
            **self._channel_kwargs(),
        )

    def _init_discord(self) -> Optional[BaseChannel]:
        from tinyclaw.channels.discord import DiscordChannel
        return DiscordChannel(
            self.config.channels.discord,
            self.queue,
            self.reset_flag,
            **self._channel_kwargs(),
        )

    # ==========================================================
    # Lifecycle orchestration
    # ==========================================================

    async def start(self) -> None:
        """Start all channels as independent tasks."""
        if not self.channels or self._running:
            return

        self._running = True

        logger.info("Starting ChannelManager ...")

        for name, channel in self.channels.items():
            logger.info("Starting channel: {}", name)
            self._tasks[name] = asyncio.create_task(
                self._run_channel(name, channel), name=f"channel-{name}"
            )

    async def _run_channel(self, name: str, channel: BaseChannel) -> None:
        try:
            await channel.run()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Channel {} crashed", name)

    async def stop(self) -> None:
        """Gracefully shutdown all channels."""
        if not self._running:
            return

        self._running = False

        logger.info("Stopping ChannelManager ...")

        for name, channel in self.channels.items():
            try:
                await channel.shutdown()
                logger.info("Channel stopped: {}", name)
            except Exception as e:
                logger.error("Channel stop failed: {} | {}", name, e)

        for task in self._tasks.values():
            task.cancel()
        await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        self._tasks.clear()
