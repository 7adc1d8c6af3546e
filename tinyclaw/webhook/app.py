"""Webhook HTTP ingress.

Lets callers without a channel adapter enqueue a message and poll its
status:

    POST /webhook/message
    GET  /webhook/health
    GET  /webhook/status/{message_id}
"""

from __future__ import annotations

import json
import time
import uuid
from typing import Any, Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from tinyclaw.bus.events import MessageRecord
from tinyclaw.bus.queue import INCOMING, OUTGOING, PROCESSING, FileQueue, QueueError
from tinyclaw.utils.helpers import now_ms, truncate


DEFAULT_MAX_BODY_BYTES = 1024 * 1024

# channel and messageId end up in queue file names
MAX_NAME_BYTES = 64

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

STAGE_STATUS = {
    OUTGOING: "completed",
    PROCESSING: "processing",
    INCOMING: "queued",
}


class BodyTooLargeError(Exception):
    pass


def _invalid(field: str) -> str:
    return f'Missing or invalid "{field}" field'


def _is_file_safe(value: str) -> bool:
    return "\x00" not in value and len(value.encode("utf-8")) <= MAX_NAME_BYTES


def validate_message_body(body: Any) -> Optional[str]:
    """Return an error message, or None when the body is acceptable."""
    if not isinstance(body, dict):
        return "Body must be a JSON object"

    for field in ("channel", "sender", "message"):
        value = body.get(field)
        if not isinstance(value, str) or not value:
            return _invalid(field)

    for field in ("senderId", "messageId"):
        value = body.get(field)
        if value is not None and (not isinstance(value, str) or not value):
            return _invalid(field)

    for field in ("channel", "messageId"):
        value = body.get(field)
        if value is not None and not _is_file_safe(value):
            return _invalid(field)

    timestamp = body.get("timestamp")
    if timestamp is not None and (isinstance(timestamp, bool) or not isinstance(timestamp, int)):
        return _invalid("timestamp")

    return None


def build_record(body: dict[str, Any]) -> MessageRecord:
    """
    Resolve optional fields of a validated webhook body.

    A missing or zero ``timestamp`` means "now"; an absent ``messageId`` is
    generated as ``{channel}_{timestamp}_{random}``.
    """
    channel = body["channel"]
    timestamp = body.get("timestamp") or now_ms()
    message_id = body.get("messageId") or f"{channel}_{timestamp}_{uuid.uuid4().hex[:8]}"

    return MessageRecord(
        channel=channel,
        sender=body["sender"],
        sender_id=body.get("senderId") or f"webhook_{body['sender']}",
        message=body["message"],
        timestamp=timestamp,
        message_id=message_id,
    )


async def _read_body(request: Request, limit: int) -> bytes:
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise BodyTooLargeError

    size = 0
    chunks: list[bytes] = []
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            raise BodyTooLargeError
        chunks.append(chunk)
    return b"".join(chunks)


def create_webhook_app(queue: FileQueue, *, max_body_bytes: int = DEFAULT_MAX_BODY_BYTES) -> FastAPI:
    app = FastAPI(title="TinyClaw Webhook", docs_url=None, redoc_url=None, openapi_url=None)
    started = time.monotonic()

    @app.middleware("http")
    async def cors(request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=CORS_HEADERS)
        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            return JSONResponse({"error": "Not found"}, status_code=404)
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    @app.post("/webhook/message")
    async def post_message(request: Request) -> JSONResponse:
        try:
            raw = await _read_body(request, max_body_bytes)
        except BodyTooLargeError:
            logger.warning("[webhook] Rejected oversized body")
            return JSONResponse(
                {"success": False, "error": "Request body too large"},
                status_code=413,
                headers={"Connection": "close"},
            )

        try:
            body = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return JSONResponse({"success": False, "error": "Invalid JSON body"}, status_code=400)

        error = validate_message_body(body)
        if error:
            return JSONResponse({"success": False, "error": error}, status_code=400)

        record = build_record(body)
        try:
            queue.enqueue(record)
        except (QueueError, ValueError) as e:
            return JSONResponse({"success": False, "error": str(e)}, status_code=400)
        except OSError as e:
            logger.error("[webhook] Enqueue failed | id={} err={}", record.message_id, e)
            return JSONResponse({"success": False, "error": "Failed to queue message"}, status_code=500)

        logger.info(
            "[webhook] Queued message [{}] from {}: {}",
            record.channel,
            record.sender,
            truncate(record.message, 50),
        )
        return JSONResponse({"success": True, "messageId": record.message_id})

    @app.get("/webhook/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "uptime": round(time.monotonic() - started, 3),
            "queue": queue.counts(),
        }

    @app.get("/webhook/status/{message_id:path}")
    async def status(message_id: str) -> JSONResponse:
        found = queue.find(message_id)
        if found is None:
            return JSONResponse({"status": "not_found"}, status_code=404)

        stage, data = found
        payload: dict[str, Any] = {"status": STAGE_STATUS[stage]}
        if stage == OUTGOING:
            payload["data"] = data
        return JSONResponse(payload)

    return app
