from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from tests.helpers import FakeProvider
from tinyclaw.bus.queue import INCOMING, FileQueue
from tinyclaw.processor.service import QueueProcessor
from tinyclaw.webhook.app import MAX_NAME_BYTES, create_webhook_app


@pytest.fixture
def client(queue: FileQueue) -> TestClient:
    return TestClient(create_webhook_app(queue, max_body_bytes=1024))


def test_enqueue_then_status_queued(client: TestClient, queue: FileQueue) -> None:
    resp = client.post("/webhook/message", json={"channel": "test", "sender": "Alice", "message": "hi"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    message_id = body["messageId"]
    assert message_id.startswith("test_")

    status = client.get(f"/webhook/status/{message_id}")
    assert status.status_code == 200
    assert status.json() == {"status": "queued"}

    [record_id] = queue.list_pending(INCOMING)
    record = queue.read_message(INCOMING, record_id)
    assert record.sender_id == "webhook_Alice"
    assert record.timestamp > 0


@pytest.mark.asyncio
async def test_status_completed_after_processing(queue: FileQueue, reset_flag) -> None:
    client = TestClient(create_webhook_app(queue))
    resp = client.post(
        "/webhook/message",
        json={"channel": "test", "sender": "Alice", "message": "hi", "messageId": "given-1", "timestamp": 5},
    )
    assert resp.json() == {"success": True, "messageId": "given-1"}

    await QueueProcessor(queue, FakeProvider(), reset_flag).process_pending()

    status = client.get("/webhook/status/given-1")
    assert status.status_code == 200
    payload = status.json()
    assert payload["status"] == "completed"
    assert payload["data"]["message"] == "echo:hi"
    assert payload["data"]["messageId"] == "given-1"


def test_status_processing(client: TestClient, queue: FileQueue) -> None:
    client.post("/webhook/message", json={"channel": "test", "sender": "A", "message": "m", "messageId": "p1"})
    queue.claim(queue.list_pending(INCOMING)[0])

    assert client.get("/webhook/status/p1").json() == {"status": "processing"}


def test_status_not_found(client: TestClient) -> None:
    resp = client.get("/webhook/status/nope")
    assert resp.status_code == 404
    assert resp.json() == {"status": "not_found"}


@pytest.mark.parametrize(
    "body, field",
    [
        ({"sender": "A", "message": "m"}, "channel"),
        ({"channel": "c", "sender": 3, "message": "m"}, "sender"),
        ({"channel": "c", "sender": "A", "message": ""}, "message"),
        ({"channel": "c", "sender": "A", "message": "m", "timestamp": "soon"}, "timestamp"),
        ({"channel": "c", "sender": "A", "message": "m", "senderId": 7}, "senderId"),
    ],
)
def test_validation_errors(client: TestClient, queue: FileQueue, body, field) -> None:
    resp = client.post("/webhook/message", json=body)

    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": f'Missing or invalid "{field}" field'}
    assert queue.counts()["incoming"] == 0


def test_invalid_json(client: TestClient) -> None:
    resp = client.post("/webhook/message", content=b"{oops", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "Invalid JSON body"}


def test_duplicate_message_id_rejected(client: TestClient) -> None:
    body = {"channel": "c", "sender": "A", "message": "m", "messageId": "same"}
    assert client.post("/webhook/message", json=body).status_code == 200

    resp = client.post("/webhook/message", json=body)
    assert resp.status_code == 400
    assert resp.json()["success"] is False


def test_oversized_body_rejected(client: TestClient, queue: FileQueue) -> None:
    resp = client.post("/webhook/message", json={"channel": "c", "sender": "A", "message": "x" * 4096})

    assert resp.status_code == 413
    assert queue.counts()["incoming"] == 0


def test_health_reports_stage_counts(client: TestClient, queue: FileQueue) -> None:
    client.post("/webhook/message", json={"channel": "c", "sender": "A", "message": "1"})
    client.post("/webhook/message", json={"channel": "c", "sender": "A", "message": "2"})
    queue.claim(queue.list_pending(INCOMING)[0])

    resp = client.get("/webhook/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["uptime"] >= 0
    assert body["queue"] == {"incoming": 1, "processing": 1, "outgoing": 0}


def test_cors_headers_and_options(client: TestClient) -> None:
    resp = client.options("/webhook/message")
    assert resp.status_code == 204
    assert resp.headers["access-control-allow-origin"] == "*"

    resp = client.get("/webhook/health")
    assert resp.headers["access-control-allow-origin"] == "*"
    assert "POST" in resp.headers["access-control-allow-methods"]


def test_unknown_route(client: TestClient) -> None:
    resp = client.get("/nowhere")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Not found"}
    assert resp.headers["access-control-allow-origin"] == "*"


def test_dot_channel_is_visible_to_health_and_status(client: TestClient, queue: FileQueue) -> None:
    resp = client.post("/webhook/message", json={"channel": ".svc", "sender": "A", "message": "m", "messageId": "d1"})
    assert resp.status_code == 200

    assert client.get("/webhook/health").json()["queue"]["incoming"] == 1
    assert client.get("/webhook/status/d1").json() == {"status": "queued"}


@pytest.mark.asyncio
async def test_dot_channel_reaches_outgoing(queue: FileQueue, reset_flag) -> None:
    client = TestClient(create_webhook_app(queue))
    client.post("/webhook/message", json={"channel": ".svc", "sender": "A", "message": "m", "messageId": "d1"})

    completed = await QueueProcessor(queue, FakeProvider(), reset_flag).process_pending()

    assert completed == 1
    assert client.get("/webhook/status/d1").json()["status"] == "completed"


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"messageId": "x" * 300}, "messageId"),
        ({"messageId": "a\x00b"}, "messageId"),
        ({"channel": "c" * 300}, "channel"),
        ({"channel": "c\x00"}, "channel"),
    ],
)
def test_names_unusable_as_files_rejected(client: TestClient, queue: FileQueue, overrides, field) -> None:
    body = {"channel": "c", "sender": "A", "message": "m", **overrides}

    resp = client.post("/webhook/message", json=body)

    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": f'Missing or invalid "{field}" field'}
    assert resp.headers["access-control-allow-origin"] == "*"
    assert queue.counts()["incoming"] == 0


def test_longest_accepted_names_round_trip(client: TestClient, queue: FileQueue) -> None:
    resp = client.post(
        "/webhook/message",
        json={"channel": "c" * MAX_NAME_BYTES, "sender": "A", "message": "m"},
    )

    assert resp.status_code == 200
    assert queue.counts()["incoming"] == 1


def test_enqueue_os_error_returns_json(client: TestClient, queue: FileQueue, monkeypatch) -> None:
    def broken(_record):
        raise OSError("disk full")

    monkeypatch.setattr(queue, "enqueue", broken)

    resp = client.post("/webhook/message", json={"channel": "c", "sender": "A", "message": "m"})

    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "Failed to queue message"}
    assert resp.headers["access-control-allow-origin"] == "*"


def test_zero_timestamp_means_now(client: TestClient, queue: FileQueue) -> None:
    client.post("/webhook/message", json={"channel": "c", "sender": "A", "message": "m", "timestamp": 0})

    [record_id] = queue.list_pending(INCOMING)
    assert queue.read_message(INCOMING, record_id).timestamp > 0
