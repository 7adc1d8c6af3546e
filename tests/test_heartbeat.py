from __future__ import annotations

import pytest

from tests.helpers import FakeProvider
from tinyclaw.bus.events import ResponseRecord
from tinyclaw.bus.queue import INCOMING, OUTGOING
from tinyclaw.heartbeat.service import HEARTBEAT_PROMPT, HeartbeatService, is_heartbeat_actionable
from tinyclaw.processor.service import QueueProcessor


def test_actionable_detection() -> None:
    assert not is_heartbeat_actionable(None)
    assert not is_heartbeat_actionable("# Tasks\n\n<!-- nothing -->\n- [ ]\n")
    assert is_heartbeat_actionable("# Tasks\n- [ ] water the plants\n")


def test_tick_skips_without_tasks(queue, tmp_path) -> None:
    service = HeartbeatService(queue, tmp_path)
    assert service.tick() is None
    assert queue.counts()["incoming"] == 0


@pytest.mark.asyncio
async def test_heartbeat_round_trip(queue, reset_flag, tmp_path) -> None:
    (tmp_path / "HEARTBEAT.md").write_text("- check the inbox\n", encoding="utf-8")
    service = HeartbeatService(queue, tmp_path)

    message_id = service.tick()
    assert message_id is not None
    record = queue.read_message(INCOMING, queue.list_pending(INCOMING)[0])
    assert record.channel == "heartbeat"
    assert record.message == HEARTBEAT_PROMPT

    provider = FakeProvider(replies={HEARTBEAT_PROMPT: "HEARTBEAT_OK"})
    await QueueProcessor(queue, provider, reset_flag).process_pending()
    assert queue.list_pending(OUTGOING) == [message_id]

    assert service.collect() == ["HEARTBEAT_OK"]
    assert queue.list_pending(OUTGOING) == []


def test_collect_discards_stale_replies(queue, tmp_path) -> None:
    queue.write_response(
        ResponseRecord(channel="heartbeat", sender="heartbeat", message="late", original_message="?", message_id="heartbeat_1")
    )

    assert HeartbeatService(queue, tmp_path).collect() == []
    assert queue.list_pending(OUTGOING) == []
