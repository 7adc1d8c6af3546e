"""Base channel abstraction for chat platform integrations."""

from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from typing import Any, Final, Optional

from loguru import logger

from tinyclaw.bus.events import InvalidRecordError, MessageRecord
from tinyclaw.bus.queue import OUTGOING, FileQueue, QueueError, ResetFlag
from tinyclaw.channels.pending import DEFAULT_PENDING_TTL_S, PendingDeliveries
from tinyclaw.utils.helpers import new_message_id, split_message, truncate


RESET_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[!/]reset$", re.IGNORECASE)

RESET_REPLY: Final[str] = "Conversation reset! Next message will start a fresh conversation."


def is_reset_command(content: str) -> bool:
    return bool(RESET_PATTERN.match(content.strip()))


class BaseChannel(ABC):
    """
    Base abstraction for all chat platform channels.

    A channel only talks to the queue:
        - inbound text  -> ``incoming`` + pending entry
        - ``outgoing``  -> pending lookup -> platform reply
    """

    #: Channel unique identifier, also the outgoing file prefix
    name: str = "base"

    #: Platform message size limit, None for unlimited
    max_message_length: Optional[int] = None

    #: Seconds between presence refreshes, None to disable
    presence_interval: Optional[float] = None

    def __init__(
        self,
        config: Any,
        queue: FileQueue,
        reset_flag: ResetFlag,
        *,
        poll_interval: float = 1.0,
        pending_ttl_s: float = DEFAULT_PENDING_TTL_S,
    ):
        self.config = config
        self.queue = queue
        self.reset_flag = reset_flag
        self.poll_interval = poll_interval
        self.pending: PendingDeliveries[Any] = PendingDeliveries(ttl_s=pending_ttl_s)

        self._running: bool = False
        self._tasks: list[asyncio.Task] = []

    # =============================
    # Lifecycle
    # =============================

    @abstractmethod
    async def start(self) -> None:
        """
        Connect to the platform and receive messages until stopped.
        """
        ...

    @abstractmethod
    async def stop(self) -> None:
        """
        Close platform connections and release session state.
        """
        ...

    async def run(self) -> None:
        """Run queue loops alongside the platform connection."""
        self._running = True

        self._tasks = [
            asyncio.create_task(self._outgoing_loop(), name=f"{self.name}-outgoing"),
        ]
        if self.presence_interval:
            self._tasks.append(
                asyncio.create_task(self._presence_loop(), name=f"{self.name}-presence")
            )

        logger.info("Starting {} channel...", self.name)
        await self.start()

    async def shutdown(self) -> None:
        """Stop loops, clear presence, then stop the platform."""
        logger.info("Shutting down {} channel...", self.name)
        self._running = False

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        for target in self.pending.targets():
            await self._safe_clear_presence(target)

        await self.stop()

    # =============================
    # Platform hooks
    # =============================

    @abstractmethod
    async def send_text(self, target: Any, text: str, *, reply: bool) -> None:
        """
        Send one chunk to the platform.

        ``reply`` is True for the first chunk, which should quote the
        original message when the platform supports it.
        """
        ...

    async def show_presence(self, target: Any) -> None:
        """Show a typing indicator. Best effort."""

    async def clear_presence(self, target: Any) -> None:
        """Clear a typing indicator. Best effort."""

    # =============================
    # Inbound handling
    # =============================

    async def handle_message(
        self,
        sender: str,
        sender_id: str,
        content: str,
        target: Any,
    ) -> Optional[str]:
        """
        Unified ingress for all channels.

        Returns:
            The queued message id, or None when nothing was queued.
        """
        if not self._is_allowed(sender_id):
            self._log_permission_denied(sender_id)
            return None

        if not content or not content.strip():
            return None

        logger.info("Message from {}: {}", sender, truncate(content, 50))

        if is_reset_command(content):
            logger.info("Reset command received")
            self.reset_flag.set()
            await self.send_text(target, RESET_REPLY, reply=True)
            return None

        record = MessageRecord(
            channel=self.name,
            sender=sender,
            sender_id=str(sender_id),
            message=content,
            message_id=new_message_id(),
        )

        try:
            self.queue.enqueue(record)
        except (QueueError, OSError) as e:
            logger.error("Failed to queue message from {}: {}", sender, e)
            return None

        self.pending.add(record.message_id, target)
        self.pending.sweep()

        logger.info("Queued message {}", record.message_id)
        await self._safe_show_presence(target)
        return record.message_id

    # =============================
    # Outbound handling
    # =============================

    async def poll_outgoing(self) -> int:
        """
        Deliver replies addressed to this channel.

        Returns:
            Number of replies delivered.
        """
        delivered = 0

        for response_id in self.queue.list_pending(OUTGOING, prefix=f"{self.name}_"):
            try:
                response = self.queue.read_response(response_id)
            except FileNotFoundError:
                continue
            except InvalidRecordError as e:
                logger.error("Discarding unreadable response {}: {}", response_id, e)
                self.queue.discard(OUTGOING, response_id)
                continue

            target = self.pending.get(response.message_id)
            if target is None:
                logger.warning("No pending message for {}, cleaning up", response.message_id)
                self.pending.pop(response.message_id)
                self.queue.discard(OUTGOING, response_id)
                continue

            try:
                await self.deliver(target, response.message)
            except Exception as e:
                logger.error("Delivery failed for {}: {}", response.message_id, e)
                continue

            logger.success(
                "Sent response to {} ({} chars)",
                response.sender,
                len(response.message),
            )
            self.pending.pop(response.message_id)
            self.queue.discard(OUTGOING, response_id)
            await self._safe_clear_presence(target)
            delivered += 1

        return delivered

    async def deliver(self, target: Any, text: str) -> None:
        chunks = (
            split_message(text, self.max_message_length)
            if self.max_message_length
            else [text]
        )
        for index, chunk in enumerate(chunks):
            await self.send_text(target, chunk, reply=index == 0)

    # =============================
    # Loops
    # =============================

    async def _outgoing_loop(self) -> None:
        while self._running:
            try:
                await self.poll_outgoing()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Outgoing queue error: {}", e)
            await asyncio.sleep(self.poll_interval)

    async def _presence_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.presence_interval or 0)
            self.pending.sweep()
            for target in self.pending.targets():
                await self._safe_show_presence(target)

    async def _safe_show_presence(self, target: Any) -> None:
        try:
            await self.show_presence(target)
        except Exception as e:
            logger.debug("Presence update failed: {}", e)

    async def _safe_clear_presence(self, target: Any) -> None:
        try:
            await self.clear_presence(target)
        except Exception as e:
            logger.debug("Presence clear failed: {}", e)

    # =============================
    # Permission model
    # =============================

    def _is_allowed(self, sender_id: str) -> bool:
        allow_list = getattr(self.config, "allow_from", None)

        # Empty or missing allow list means allow all
        if not allow_list:
            return True

        return str(sender_id) in allow_list

    def _log_permission_denied(self, sender_id: str) -> None:
        logger.warning(
            "Access denied | channel={} sender={} | "
            "Add sender to allowFrom to grant permission",
            self.name,
            sender_id,
        )

    # =============================
    # Runtime state
    # =============================

    @property
    def is_running(self) -> bool:
        return self._running
