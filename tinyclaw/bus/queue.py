"""
Filesystem-backed message queue for decoupled channel/processor communication.

Architecture:
    Channels -> incoming/ -> processor -> processing/ -> outgoing/ -> channels

Every stage transition is a single ``os.rename`` or an atomic
write-to-temp-then-replace, so readers never see a half-written record
and a crash leaves each record in exactly one stage.
"""

from __future__ import annotations

import json
import os
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Final

from loguru import logger

from tinyclaw.bus.events import (
    HEARTBEAT_CHANNEL,
    InvalidRecordError,
    MessageRecord,
    ResponseRecord,
)
from tinyclaw.utils.helpers import now_ms, safe_filename


INCOMING: Final[str] = "incoming"
PROCESSING: Final[str] = "processing"
OUTGOING: Final[str] = "outgoing"

STAGES: Final[tuple[str, ...]] = (INCOMING, PROCESSING, OUTGOING)

RECORD_SUFFIX: Final[str] = ".json"
CORRUPT_SUFFIX: Final[str] = ".corrupt"
FAILED_SUFFIX: Final[str] = ".failed"
TEMP_SUFFIX: Final[str] = ".tmp"


class QueueError(Exception):
    """Base error for queue mechanics."""


class DuplicateRecordError(QueueError):
    """A record with the same id is already queued or being processed."""


class FileQueue:
    """
    Three-stage durable queue living in a directory.

    Single writer per transition:
        - channels / webhook create files in ``incoming``
        - the processor moves ``incoming`` -> ``processing`` -> ``outgoing``
        - channels delete from ``outgoing``
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self._dirs: dict[str, Path] = {stage: self.root / stage for stage in STAGES}
        for path in self._dirs.values():
            path.mkdir(parents=True, exist_ok=True)

        self._clock_lock = threading.Lock()
        self._last_ns = 0

    # ------------------------------------------------------------------
    # Naming
    # ------------------------------------------------------------------

    @staticmethod
    def record_id(channel: str, message_id: str) -> str:
        return safe_filename(f"{channel}_{message_id}")

    @staticmethod
    def response_id(response: ResponseRecord) -> str:
        """
        Outgoing id. Heartbeat replies are keyed by message id only so the
        heartbeat service can find them without scanning.
        """
        if response.channel == HEARTBEAT_CHANNEL:
            return safe_filename(response.message_id)
        return safe_filename(
            f"{response.channel}_{response.message_id}_{now_ms()}"
        )

    def stage_dir(self, stage: str) -> Path:
        try:
            return self._dirs[stage]
        except KeyError:
            raise QueueError(f"Unknown queue stage: {stage}") from None

    def path(self, stage: str, record_id: str) -> Path:
        return self.stage_dir(stage) / f"{record_id}{RECORD_SUFFIX}"

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def enqueue(self, record: MessageRecord) -> str:
        """Durably add a message to ``incoming`` and return its id."""
        record_id = self.record_id(record.channel, record.message_id)

        if self.path(INCOMING, record_id).exists() or self.path(PROCESSING, record_id).exists():
            raise DuplicateRecordError(f"Record already queued: {record_id}")

        self._write_atomic(self.path(INCOMING, record_id), record.to_dict())
        logger.debug("Enqueued {} | channel={}", record_id, record.channel)
        return record_id

    def write_response(self, response: ResponseRecord) -> str:
        """Durably add a reply to ``outgoing`` and return its id."""
        response_id = self.response_id(response)
        self._write_atomic(self.path(OUTGOING, response_id), response.to_dict())
        return response_id

    def _write_atomic(self, target: Path, data: dict[str, Any]) -> None:
        tmp = target.with_name(f"{target.name}.{uuid.uuid4().hex}{TEMP_SUFFIX}")
        try:
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())

            stamp = self._next_stamp()
            os.utime(tmp, ns=(stamp, stamp))
            os.replace(tmp, target)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise

    def _next_stamp(self) -> int:
        """Strictly increasing mtime so listing order equals write order."""
        with self._clock_lock:
            self._last_ns = max(time.time_ns(), self._last_ns + 1)
            return self._last_ns

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_pending(self, stage: str, prefix: str = "") -> list[str]:
        """
        Ids in ``stage`` ordered oldest first (mtime, then name).

        Files removed between listing and stat are skipped.
        """
        entries: list[tuple[int, str]] = []

        with os.scandir(self.stage_dir(stage)) as it:
            for entry in it:
                name = entry.name
                if not name.endswith(RECORD_SUFFIX):
                    continue
                if prefix and not name.startswith(prefix):
                    continue
                try:
                    mtime = entry.stat().st_mtime_ns
                except FileNotFoundError:
                    continue
                entries.append((mtime, name))

        entries.sort()
        return [name[: -len(RECORD_SUFFIX)] for _, name in entries]

    def counts(self) -> dict[str, int]:
        return {stage: len(self.list_pending(stage)) for stage in STAGES}

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def claim(self, record_id: str) -> bool:
        """
        Move ``incoming`` -> ``processing``.

        Returns False if the record is no longer in ``incoming``.
        """
        try:
            os.rename(self.path(INCOMING, record_id), self.path(PROCESSING, record_id))
        except FileNotFoundError:
            return False
        return True

    def complete(self, record_id: str) -> None:
        """Drop the ``processing`` copy. Call only after the reply is written."""
        self.path(PROCESSING, record_id).unlink(missing_ok=True)

    def fail(self, record_id: str) -> None:
        """Move ``processing`` -> ``incoming`` for a later retry."""
        os.rename(self.path(PROCESSING, record_id), self.path(INCOMING, record_id))

    def quarantine(self, record_id: str, suffix: str = CORRUPT_SUFFIX) -> Path:
        """Park a ``processing`` file out of the listing (``*.json{suffix}``)."""
        src = self.path(PROCESSING, record_id)
        dst = src.with_name(src.name + suffix)
        os.rename(src, dst)
        return dst

    def recover(self) -> list[str]:
        """
        Requeue everything left in ``processing``.

        Anything there at startup was abandoned by a crashed or killed
        processor.
        """
        recovered: list[str] = []

        for record_id in self.list_pending(PROCESSING):
            try:
                self.fail(record_id)
                recovered.append(record_id)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.error("Recovery failed | id={} err={}", record_id, e)

        if recovered:
            logger.warning("Recovered {} abandoned record(s)", len(recovered))
        return recovered

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read(self, stage: str, record_id: str) -> dict[str, Any]:
        """
        Load a record as a dict.

        Raises:
            FileNotFoundError: record is gone
            InvalidRecordError: file is not valid JSON
        """
        path = self.path(stage, record_id)
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidRecordError(f"Invalid JSON in {path.name}: {e}") from e

    def read_message(self, stage: str, record_id: str) -> MessageRecord:
        return MessageRecord.from_dict(self.read(stage, record_id))

    def read_response(self, record_id: str) -> ResponseRecord:
        return ResponseRecord.from_dict(self.read(OUTGOING, record_id))

    def discard(self, stage: str, record_id: str) -> None:
        self.path(stage, record_id).unlink(missing_ok=True)

    def find(self, message_id: str) -> tuple[str, dict[str, Any]] | None:
        """
        Locate a message by id, checking ``outgoing`` first, then
        ``processing`` and ``incoming``.
        """
        for stage in (OUTGOING, PROCESSING, INCOMING):
            for record_id in self.list_pending(stage):
                try:
                    data = self.read(stage, record_id)
                except (FileNotFoundError, InvalidRecordError):
                    continue
                if isinstance(data, dict) and data.get("messageId") == message_id:
                    return stage, data
        return None


class ResetFlag:
    """
    Durable single-slot flag: when set, the next AI call starts a fresh
    conversation.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def set(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("reset", encoding="utf-8")

    def is_set(self) -> bool:
        return self.path.exists()

    def consume(self) -> bool:
        """Atomic test-and-clear. True if the flag was set."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        return True
