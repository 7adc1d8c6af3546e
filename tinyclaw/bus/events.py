"""
Record types flowing through the TinyClaw queue.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final

from tinyclaw.utils.helpers import now_ms


HEARTBEAT_CHANNEL: Final[str] = "heartbeat"


class InvalidRecordError(ValueError):
    """Raised when a queue file does not hold a valid record."""


def _require(data: dict[str, Any], key: str, kind: type) -> Any:
    value = data.get(key)
    if not isinstance(value, kind) or isinstance(value, bool):
        raise InvalidRecordError(f"Missing or invalid {key!r} field")
    return value


# ---------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------

@dataclass(slots=True)
class MessageRecord:
    """
    Message received from an external chat channel.

    Stored on disk with camelCase keys (``senderId``, ``messageId``).
    """

    channel: str              # whatsapp / telegram / discord / heartbeat / webhook caller
    sender: str               # display name
    message: str              # raw text content
    message_id: str           # correlation id, unique per channel
    timestamp: int = 0        # epoch milliseconds
    sender_id: str | None = None

    def __post_init__(self) -> None:
        # 0 means unset and is replaced by the current time
        if not self.timestamp:
            self.timestamp = now_ms()
        if not self.sender_id:
            self.sender_id = f"{self.channel}_{self.sender}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "sender": self.sender,
            "senderId": self.sender_id,
            "message": self.message,
            "timestamp": self.timestamp,
            "messageId": self.message_id,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "MessageRecord":
        if not isinstance(data, dict):
            raise InvalidRecordError("Record must be a JSON object")

        sender_id = data.get("senderId")
        if sender_id is not None and not isinstance(sender_id, str):
            raise InvalidRecordError("Invalid 'senderId' field")

        return cls(
            channel=_require(data, "channel", str),
            sender=_require(data, "sender", str),
            message=_require(data, "message", str),
            message_id=_require(data, "messageId", str),
            timestamp=_require(data, "timestamp", int),
            sender_id=sender_id,
        )


# ---------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------

@dataclass(slots=True)
class ResponseRecord:
    """
    Reply produced by the processor, correlated by ``message_id``.
    """

    channel: str
    sender: str
    message: str
    original_message: str
    message_id: str
    timestamp: int = 0

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = now_ms()

    @classmethod
    def reply_to(cls, record: MessageRecord, text: str) -> "ResponseRecord":
        return cls(
            channel=record.channel,
            sender=record.sender,
            message=text,
            original_message=record.message,
            message_id=record.message_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "sender": self.sender,
            "message": self.message,
            "originalMessage": self.original_message,
            "timestamp": self.timestamp,
            "messageId": self.message_id,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ResponseRecord":
        if not isinstance(data, dict):
            raise InvalidRecordError("Record must be a JSON object")

        return cls(
            channel=_require(data, "channel", str),
            sender=_require(data, "sender", str),
            message=_require(data, "message", str),
            original_message=data.get("originalMessage") or "",
            message_id=_require(data, "messageId", str),
            timestamp=_require(data, "timestamp", int),
        )
