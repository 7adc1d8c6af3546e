"""
Sequential queue processor.

Responsible for:
    - Crash recovery of abandoned ``processing`` records at startup
    - Polling ``incoming`` oldest first
    - Exactly one AI call in flight at any time
    - Writing every reply (or an apology) to ``outgoing``
"""

from __future__ import annotations

import asyncio
from typing import Final, Optional

from loguru import logger

from tinyclaw.bus.events import InvalidRecordError, MessageRecord, ResponseRecord
from tinyclaw.bus.queue import FAILED_SUFFIX, INCOMING, PROCESSING, FileQueue, ResetFlag
from tinyclaw.llm.base import AIProvider, ProviderError
from tinyclaw.utils.helpers import truncate


# ============================================================
# Constants
# ============================================================

DEFAULT_POLL_INTERVAL_S = 1.0

MAX_RESPONSE_CHARS: Final[int] = 4000
TRUNCATE_AT: Final[int] = 3900
TRUNCATION_MARKER: Final[str] = "\n\n[Response truncated...]"

FALLBACK_REPLY: Final[str] = "Sorry, I encountered an error processing your request."

MAX_REQUEUES: Final[int] = 3


# ============================================================
# Utilities
# ============================================================

def normalize_reply(text: str) -> str:
    """Strip whitespace and cap the length of a reply."""
    text = text.strip()
    if len(text) > MAX_RESPONSE_CHARS:
        return text[:TRUNCATE_AT] + TRUNCATION_MARKER
    return text


# ============================================================
# Processor
# ============================================================

class QueueProcessor:
    """
    The single consumer of ``incoming``.

    Records move ``queued -> claimed -> completed | requeued``. Provider
    failures still complete with an apology; queue failures requeue,
    and a record that keeps failing is parked as ``*.json.failed``.
    """

    def __init__(
        self,
        queue: FileQueue,
        provider: AIProvider,
        reset_flag: ResetFlag,
        poll_interval: float = DEFAULT_POLL_INTERVAL_S,
        model: str | None = None,
    ):
        self.queue = queue
        self.provider = provider
        self.reset_flag = reset_flag
        self.poll_interval = poll_interval
        self.model = model

        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._in_flight: Optional[str] = None
        self._requeues: dict[str, int] = {}

    # ------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------

    @property
    def in_flight(self) -> Optional[str]:
        return self._in_flight

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------
    # Lifecycle API
    # ------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return

        self.queue.recover()

        self._running = True
        self._loop_task = asyncio.create_task(self._run_loop(), name="queue-processor")

        logger.info("Queue processor started | watching={}", self.queue.stage_dir(INCOMING))

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False

        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        logger.info("Queue processor stopped")

    # ------------------------------------------------------------
    # Internal Loop
    # ------------------------------------------------------------

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.process_pending()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Queue processing error")
            await asyncio.sleep(self.poll_interval)

    async def process_pending(self) -> int:
        """
        One pass over ``incoming``.

        The pass ends early when a record is requeued, so the next pass
        retries it before anything that arrived after it.

        Returns:
            Number of records that reached ``outgoing``.
        """
        pending = self.queue.list_pending(INCOMING)
        if not pending:
            return 0

        logger.debug("Found {} message(s) in queue", len(pending))

        completed = 0
        for record_id in pending:
            if await self.process_record(record_id):
                completed += 1
            elif record_id in self._requeues:
                break
        return completed

    async def process_record(self, record_id: str) -> bool:
        """
        Claim, answer and complete one record.
        """
        if not self.queue.claim(record_id):
            return False

        self._in_flight = record_id
        reset = False

        try:
            try:
                record = self.queue.read_message(PROCESSING, record_id)
            except InvalidRecordError as e:
                path = self.queue.quarantine(record_id)
                logger.error("Unreadable record quarantined | file={} err={}", path.name, e)
                return False

            logger.info(
                "Processing [{}] from {}: {}",
                record.channel,
                record.sender,
                truncate(record.message, 50),
            )

            reset = self.reset_flag.consume()
            if reset:
                logger.info("Resetting conversation (starting fresh)")

            reply = await self._ask(record, continue_conversation=not reset)

            self.queue.write_response(ResponseRecord.reply_to(record, reply))
            self.queue.complete(record_id)
            self._requeues.pop(record_id, None)

            logger.success(
                "Response ready [{}] {} ({} chars)",
                record.channel,
                record.sender,
                len(reply),
            )
            return True

        except asyncio.CancelledError:
            self._requeue(record_id, reset)
            raise

        except Exception as e:
            logger.error("Processing error | id={} err={}", record_id, e)
            attempts = self._requeues.get(record_id, 0) + 1
            if attempts > MAX_REQUEUES:
                self._give_up(record_id, reset)
            else:
                self._requeues[record_id] = attempts
                self._requeue(record_id, reset)
            return False

        finally:
            self._in_flight = None

    async def _ask(self, record: MessageRecord, *, continue_conversation: bool) -> str:
        try:
            reply = await self.provider.invoke(
                record.message,
                continue_conversation=continue_conversation,
                model=self.model,
            )
        except ProviderError as e:
            logger.error("Provider error | id={} err={}", record.message_id, e)
            reply = FALLBACK_REPLY
        except Exception:
            logger.exception("Provider failed unexpectedly | id={}", record.message_id)
            reply = FALLBACK_REPLY

        return normalize_reply(reply)

    def _give_up(self, record_id: str, reset: bool) -> None:
        self._requeues.pop(record_id, None)
        if reset:
            self.reset_flag.set()

        try:
            path = self.queue.quarantine(record_id, suffix=FAILED_SUFFIX)
        except OSError as e:
            logger.error("Failed to park record | id={} err={}", record_id, e)
            return
        logger.error(
            "Record parked after {} requeues | file={}",
            MAX_REQUEUES,
            path.name,
        )

    def _requeue(self, record_id: str, reset: bool) -> None:
        if reset:
            self.reset_flag.set()

        try:
            self.queue.fail(record_id)
            logger.warning("Record requeued | id={}", record_id)
        except FileNotFoundError:
            logger.error("Record vanished from processing | id={}", record_id)
        except OSError as e:
            logger.error("Failed to move record back to incoming | id={} err={}", record_id, e)
