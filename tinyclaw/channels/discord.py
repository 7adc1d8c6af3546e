"""Discord channel implementation using Gateway WebSocket + REST API."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Optional

import httpx
import websockets
from loguru import logger

from tinyclaw.bus.queue import FileQueue, ResetFlag
from tinyclaw.channels.base import BaseChannel
from tinyclaw.config.schema import DiscordConfig


DISCORD_API_BASE = "https://discord.com/api/v10"
DISCORD_MAX_MESSAGE_LENGTH = 2000


@dataclass(slots=True)
class DiscordTarget:
    channel_id: str
    message_id: Optional[str] = None


class DiscordChannel(BaseChannel):
    """
    Discord Gateway + REST dual-stack channel implementation.

    Architecture:
        - Gateway WebSocket: inbound event stream (direct messages only)
        - REST API: outbound messaging & typing indicator
        - Heartbeat task: keepalive
        - Auto reconnect loop
    """

    name = "discord"
    max_message_length = DISCORD_MAX_MESSAGE_LENGTH
    presence_interval = 8.0

    def __init__(self, config: DiscordConfig, queue: FileQueue, reset_flag: ResetFlag, **kwargs: Any):
        super().__init__(config, queue, reset_flag, **kwargs)

        self.config: DiscordConfig = config

        self._ws: Optional[Any] = None
        self._seq: Optional[int] = None
        self._bot_user_id: Optional[str] = None

        self._http: Optional[httpx.AsyncClient] = None
        self._heartbeat_task: Optional[asyncio.Task] = None

    # ==========================================================
    # Lifecycle
    # ==========================================================

    async def start(self) -> None:
        if not self.config.token:
            logger.error("Discord token not configured")
            return

        self._http = httpx.AsyncClient(timeout=30.0)

        logger.info("Discord channel starting...")

        while self._running:
            try:
                await self._connect_gateway()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning("Gateway error: {}", e)

            if self._running:
                logger.info("Reconnecting to Discord in 5s...")
                await asyncio.sleep(5)

        logger.info("Discord channel stopped")

    async def stop(self) -> None:
        self._running = False

        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None

        if self._ws:
            await self._ws.close()
            self._ws = None

        if self._http:
            await self._http.aclose()
            self._http = None

    # ==========================================================
    # Gateway
    # ==========================================================

    async def _connect_gateway(self) -> None:
        logger.info("Connecting to Discord Gateway...")

        async with websockets.connect(self.config.gateway_url) as ws:
            self._ws = ws
            self._seq = None

            await self._gateway_loop()

    async def _gateway_loop(self) -> None:
        assert self._ws

        async for raw in self._ws:
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Invalid gateway JSON: {}", raw[:200])
                continue

            op = data.get("op")
            event = data.get("t")
            seq = data.get("s")
            payload = data.get("d")

            if seq is not None:
                self._seq = seq

            if op == 10:
                await self._on_hello(payload)
            elif op == 0:
                await self._on_dispatch(event, payload)
            elif op == 7:
                logger.info("Gateway reconnect requested")
                break
            elif op == 9:
                logger.warning("Invalid session")
                break

    async def _on_hello(self, payload: dict) -> None:
        interval_ms = payload.get("heartbeat_interval", 45000)
        await self._start_heartbeat(interval_ms / 1000)
        await self._identify()

    async def _identify(self) -> None:
        if not self._ws:
            return

        payload = {
            "op": 2,
            "d": {
                "token": self.config.token,
                "intents": self.config.intents,
                "properties": {
                    "os": "tinyclaw",
                    "browser": "tinyclaw",
                    "device": "tinyclaw",
                },
            },
        }

        await self._ws.send(json.dumps(payload))

    async def _start_heartbeat(self, interval: float) -> None:
        if self._heartbeat_task:
            self._heartbeat_task.cancel()

        async def loop():
            while self._running and self._ws:
                try:
                    await self._ws.send(json.dumps({"op": 1, "d": self._seq}))
                except Exception as e:
                    logger.warning("Heartbeat failed: {}", e)
                    break
                await asyncio.sleep(interval)

        self._heartbeat_task = asyncio.create_task(loop())

    async def _on_dispatch(self, event: str, payload: dict) -> None:
        if event == "READY":
            user = payload.get("user") or {}
            self._bot_user_id = str(user.get("id", "")) or None
            logger.success("Discord READY as {}", user.get("username"))
        elif event == "MESSAGE_CREATE":
            try:
                await self._handle_message_create(payload)
            except Exception as e:
                logger.error("Message handling error: {}", e)

    # ==========================================================
    # Inbound handling
    # ==========================================================

    async def _handle_message_create(self, payload: dict[str, Any]) -> None:
        author = payload.get("author") or {}
        if author.get("bot"):
            return

        # Direct messages only
        if payload.get("guild_id"):
            return

        sender_id = str(author.get("id", ""))
        channel_id = str(payload.get("channel_id", ""))
        if not sender_id or not channel_id or sender_id == self._bot_user_id:
            return

        sender = author.get("global_name") or author.get("username") or sender_id

        await self.handle_message(
            sender=sender,
            sender_id=sender_id,
            content=payload.get("content") or "",
            target=DiscordTarget(channel_id=channel_id, message_id=str(payload.get("id", "")) or None),
        )

    # ==========================================================
    # Outbound
    # ==========================================================

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bot {self.config.token}"}

    async def send_text(self, target: DiscordTarget, text: str, *, reply: bool) -> None:
        if not self._http:
            raise ConnectionError("Discord HTTP client not ready")

        url = f"{DISCORD_API_BASE}/channels/{target.channel_id}/messages"

        payload: dict[str, Any] = {"content": text}

        if reply and target.message_id:
            payload["message_reference"] = {"message_id": target.message_id}
            payload["allowed_mentions"] = {"replied_user": False}

        for attempt in range(3):
            resp = await self._http.post(url, headers=self._headers(), json=payload)
            if resp.status_code == 429 and attempt < 2:
                retry = float(resp.json().get("retry_after", 1.0))
                await asyncio.sleep(retry)
                continue

            resp.raise_for_status()
            return

    # ==========================================================
    # Typing indicator
    # ==========================================================

    async def show_presence(self, target: DiscordTarget) -> None:
        if not self._http:
            return
        url = f"{DISCORD_API_BASE}/channels/{target.channel_id}/typing"
        await self._http.post(url, headers=self._headers())
