"""
Heartbeat runtime service.

Responsible for:
    - Periodic agent wake-up through the regular queue
    - Workspace task sensing (HEARTBEAT.md)
    - Collecting replies written under the reserved ``heartbeat`` channel
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

from loguru import logger

from tinyclaw.bus.events import HEARTBEAT_CHANNEL, InvalidRecordError, MessageRecord
from tinyclaw.bus.queue import OUTGOING, FileQueue, QueueError
from tinyclaw.channels.pending import PendingDeliveries
from tinyclaw.utils.helpers import now_ms, truncate


# ============================================================
# Constants
# ============================================================

DEFAULT_HEARTBEAT_INTERVAL_S = 30 * 60

HEARTBEAT_FILENAME = "HEARTBEAT.md"

HEARTBEAT_PROMPT = """Read HEARTBEAT.md in your workspace (if it exists).
Follow any instructions or tasks listed there.
If nothing needs attention, reply with just: HEARTBEAT_OK
"""

HEARTBEAT_OK_TOKEN = "HEARTBEAT_OK"


# ============================================================
# Utilities
# ============================================================

def is_heartbeat_actionable(content: Optional[str]) -> bool:
    """
    Determine whether HEARTBEAT.md contains actionable tasks.

    Rules:
        - Ignore empty lines
        - Ignore markdown headers
        - Ignore HTML comments
        - Ignore unchecked/checked empty checkboxes
    """
    if not content:
        return False

    skip_patterns = {"- [ ]", "* [ ]", "- [x]", "* [x]"}

    for line in content.splitlines():
        line = line.strip()
        if not line:
            continue
        if line.startswith("#"):
            continue
        if line.startswith("<!--"):
            continue
        if line in skip_patterns:
            continue
        return True

    return False


# ============================================================
# Heartbeat Service
# ============================================================

class HeartbeatService:
    """
    Periodically enqueues a heartbeat prompt.

    The processor answers it like any other message; because the channel
    is ``heartbeat`` the reply lands at ``outgoing/{messageId}.json``.
    """

    def __init__(
        self,
        queue: FileQueue,
        workspace: Path,
        interval_s: float = DEFAULT_HEARTBEAT_INTERVAL_S,
        poll_interval: float = 1.0,
    ):
        self.queue = queue
        self.workspace = Path(workspace)
        self.interval_s = interval_s
        self.poll_interval = poll_interval

        self.pending: PendingDeliveries[int] = PendingDeliveries(ttl_s=interval_s)

        self._running = False
        self._tasks: list[asyncio.Task] = []

    # ------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------

    @property
    def heartbeat_file(self) -> Path:
        return self.workspace / HEARTBEAT_FILENAME

    # ------------------------------------------------------------
    # Lifecycle API
    # ------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return

        self._running = True
        self._tasks = [
            asyncio.create_task(self._tick_loop(), name="heartbeat-tick"),
            asyncio.create_task(self._collect_loop(), name="heartbeat-collect"),
        ]

        logger.info("Heartbeat service started (interval={}s)", self.interval_s)

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        logger.info("Heartbeat service stopped")

    # ------------------------------------------------------------
    # Internal Loops
    # ------------------------------------------------------------

    async def _tick_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval_s)
            self.tick()

    async def _collect_loop(self) -> None:
        while self._running:
            self.collect()
            await asyncio.sleep(self.poll_interval)

    def tick(self) -> Optional[str]:
        """
        Enqueue one heartbeat if HEARTBEAT.md has work.

        Returns:
            The heartbeat message id, or None when skipped.
        """
        if not is_heartbeat_actionable(self._read_heartbeat()):
            logger.debug("Heartbeat: no actionable tasks")
            return None

        message_id = f"heartbeat_{now_ms()}"
        record = MessageRecord(
            channel=HEARTBEAT_CHANNEL,
            sender="heartbeat",
            sender_id="heartbeat",
            message=HEARTBEAT_PROMPT,
            message_id=message_id,
        )

        try:
            self.queue.enqueue(record)
        except (QueueError, OSError) as e:
            logger.error("Heartbeat enqueue failed: {}", e)
            return None

        self.pending.add(message_id, now_ms())
        logger.info("Heartbeat: task detected → queued {}", message_id)
        return message_id

    def collect(self) -> list[str]:
        """
        Consume heartbeat replies. Returns the reply texts collected.

        Replies nobody is waiting for (expired or from a previous run)
        are discarded.
        """
        self.pending.sweep()
        replies: list[str] = []

        for message_id in self.queue.list_pending(OUTGOING, prefix=f"{HEARTBEAT_CHANNEL}_"):
            if self.pending.pop(message_id) is None:
                logger.warning("Heartbeat: discarding stale reply {}", message_id)
                self.queue.discard(OUTGOING, message_id)
                continue

            try:
                response = self.queue.read_response(message_id)
            except FileNotFoundError:
                continue
            except InvalidRecordError as e:
                logger.error("Heartbeat reply unreadable: {}", e)
                self.queue.discard(OUTGOING, message_id)
                continue

            self.queue.discard(OUTGOING, message_id)

            if self._is_ok_response(response.message):
                logger.info("Heartbeat: agent reported OK")
            else:
                logger.success("Heartbeat: {}", truncate(response.message, 200))
            replies.append(response.message)

        return replies

    # ------------------------------------------------------------
    # IO helpers
    # ------------------------------------------------------------

    def _read_heartbeat(self) -> Optional[str]:
        if not self.heartbeat_file.exists():
            return None

        try:
            return self.heartbeat_file.read_text(encoding="utf-8")
        except OSError:
            logger.exception("Failed to read HEARTBEAT.md")
            return None

    # ------------------------------------------------------------
    # Semantics
    # ------------------------------------------------------------

    @staticmethod
    def _is_ok_response(response: Optional[str]) -> bool:
        if not response:
            return False
        normalized = response.upper().replace("_", "")
        return HEARTBEAT_OK_TOKEN.replace("_", "") in normalized
