from __future__ import annotations

import asyncio

from tinyclaw.bus.events import MessageRecord
from tinyclaw.llm.base import AIProvider


class FakeProvider(AIProvider):
    """Records calls; replies are scripted per message text."""

    def __init__(self, replies: dict[str, object] | None = None, delay: float = 0.0):
        self.replies = replies or {}
        self.delay = delay
        self.calls: list[tuple[str, bool]] = []
        self.active = 0
        self.max_active = 0
        self.on_call = None

    async def invoke(self, message, *, continue_conversation=True, model=None):
        self.calls.append((message, continue_conversation))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.on_call:
                self.on_call(message)
            if self.delay:
                await asyncio.sleep(self.delay)
            reply = self.replies.get(message, f"echo:{message}")
            if isinstance(reply, BaseException):
                raise reply
            return reply
        finally:
            self.active -= 1


def make_record(message_id: str, channel: str = "telegram", text: str | None = None, ts: int = 1) -> MessageRecord:
    return MessageRecord(
        channel=channel,
        sender="Alice",
        sender_id="42",
        message=text if text is not None else f"msg {message_id}",
        message_id=message_id,
        timestamp=ts,
    )
