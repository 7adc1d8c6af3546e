"""
WhatsApp channel implementation using Node.js bridge.

This channel communicates with a Node.js service via WebSocket to
integrate the WhatsApp Web protocol into the TinyClaw queue.

Architecture:
    WhatsApp Web
          ↓
    Node.js Bridge (WebSocket)
          ↓
    WhatsAppChannel (Python)
          ↓
    FileQueue
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from tinyclaw.bus.queue import FileQueue, ResetFlag
from tinyclaw.channels.base import BaseChannel
from tinyclaw.config.schema import WhatsAppConfig
from tinyclaw.utils.helpers import now_ms


@dataclass(slots=True)
class WhatsAppTarget:
    """Reply target: chat JID plus the message to quote."""
    jid: str
    message_id: Optional[str] = None


class WhatsAppChannel(BaseChannel):
    """
    WhatsApp channel backed by Node.js WebSocket bridge.

    Responsibilities:
        - Maintain persistent WebSocket connection
        - Queue eligible private text messages
        - Deliver replies and typing state through the bridge
        - Publish ready marker / QR code files for the CLI
    """

    name = "whatsapp"
    presence_interval = 10.0

    def __init__(
        self,
        config: WhatsAppConfig,
        queue: FileQueue,
        reset_flag: ResetFlag,
        *,
        state_dir: Path,
        **kwargs: Any,
    ):
        super().__init__(config, queue, reset_flag, **kwargs)

        self.config: WhatsAppConfig = config
        self.state_dir = Path(state_dir)
        self._ws: Optional[Any] = None
        self._connected: bool = False

    @property
    def ready_file(self) -> Path:
        return self.state_dir / "whatsapp_ready"

    @property
    def qr_file(self) -> Path:
        return self.state_dir / "whatsapp_qr.txt"

    # =============================
    # Lifecycle
    # =============================

    async def start(self) -> None:
        """
        Maintain the bridge connection until stopped.
        """
        import websockets

        bridge_url = self.config.bridge_url

        logger.info("WhatsApp channel starting | bridge={}", bridge_url)

        while self._running:
            try:
                async with websockets.connect(bridge_url) as ws:
                    self._ws = ws
                    logger.success("WhatsApp bridge connected")

                    async for raw in ws:
                        await self._handle_bridge_message(raw)

            except asyncio.CancelledError:
                logger.warning("WhatsApp channel cancelled")
                break

            except Exception as e:
                logger.error("WhatsApp bridge error | {}", e)

            self._ws = None
            self._set_connected(False)

            if self._running:
                logger.info(
                    "Reconnecting WhatsApp bridge in {}s...",
                    self.config.reconnect_interval,
                )
                await asyncio.sleep(self.config.reconnect_interval)

        logger.warning("WhatsApp channel stopped")

    async def stop(self) -> None:
        self._running = False
        self._set_connected(False)

        if self._ws:
            try:
                await self._ws.close()
            except Exception as e:
                logger.debug("WhatsApp bridge close failed | {}", e)
            finally:
                self._ws = None

        logger.info("WhatsApp channel shutdown complete")

    # =============================
    # Outbound
    # =============================

    async def send_text(self, target: WhatsAppTarget, text: str, *, reply: bool) -> None:
        payload: dict[str, Any] = {"type": "send", "to": target.jid, "text": text}
        if reply and target.message_id:
            payload["quotedId"] = target.message_id

        await self._send(payload)
        logger.debug("WhatsApp outbound sent | chat={} len={}", target.jid, len(text))

    async def show_presence(self, target: WhatsAppTarget) -> None:
        await self._send({"type": "presence", "to": target.jid, "state": "composing"})

    async def clear_presence(self, target: WhatsAppTarget) -> None:
        if self._connected:
            await self._send({"type": "presence", "to": target.jid, "state": "paused"})

    async def _send(self, payload: dict[str, Any]) -> None:
        if not self._connected or not self._ws:
            raise ConnectionError("WhatsApp bridge not connected")
        await self._ws.send(json.dumps(payload))

    # =============================
    # Bridge handling
    # =============================

    async def _handle_bridge_message(self, raw: str) -> None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON from WhatsApp bridge: {}", raw[:200])
            return

        msg_type = data.get("type")

        if msg_type == "message":
            try:
                await self._handle_inbound_message(data)
            except Exception as e:
                logger.error("Message handling error: {}", e)

        elif msg_type == "status":
            self._handle_status_update(data)

        elif msg_type == "qr":
            self._save_qr(data.get("qr") or "")

        elif msg_type == "error":
            logger.error("WhatsApp bridge error | {}", data.get("error"))

        else:
            logger.debug("Unknown WhatsApp bridge event: {}", data)

    async def _handle_inbound_message(self, data: dict) -> None:
        """
        Filter and normalize a WhatsApp event.

        Skips own messages, group chats and non-chat types.
        """
        if data.get("fromMe") or data.get("isGroup"):
            return
        if data.get("messageType", "chat") != "chat":
            return

        jid = data.get("sender", "")
        content = data.get("content") or ""
        if not jid:
            return

        # JID format: <phone>@s.whatsapp.net
        sender_id = jid.split("@")[0] if "@" in jid else jid
        sender = data.get("pushName") or sender_id

        await self.handle_message(
            sender=sender,
            sender_id=sender_id,
            content=content,
            target=WhatsAppTarget(jid=jid, message_id=data.get("id")),
        )

    def _handle_status_update(self, data: dict) -> None:
        status = data.get("status")

        logger.info("WhatsApp bridge status | {}", status)

        if status == "connected":
            self._set_connected(True)
        elif status == "disconnected":
            self._set_connected(False)

    # =============================
    # Marker files
    # =============================

    def _set_connected(self, connected: bool) -> None:
        self._connected = connected

        if connected:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            self.ready_file.write_text(str(now_ms()), encoding="utf-8")
            self.qr_file.unlink(missing_ok=True)
            logger.success("WhatsApp client connected and ready!")
        else:
            self.ready_file.unlink(missing_ok=True)

    def _save_qr(self, qr: str) -> None:
        if not qr:
            return
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.qr_file.write_text(qr, encoding="utf-8")
        logger.info("WhatsApp QR saved to {} – open WhatsApp → Linked Devices", self.qr_file)
