"""Run the webhook app inside an existing event loop."""

from __future__ import annotations

import asyncio
from typing import Optional

import uvicorn
from loguru import logger

from tinyclaw.bus.queue import FileQueue
from tinyclaw.config.schema import WebhookConfig
from tinyclaw.webhook.app import create_webhook_app


class WebhookServer:
    """uvicorn server sharing the processor's event loop."""

    def __init__(self, queue: FileQueue, config: WebhookConfig):
        self.config = config
        app = create_webhook_app(queue, max_body_bytes=config.max_body_bytes)
        self._server = uvicorn.Server(
            uvicorn.Config(
                app,
                host=config.host,
                port=config.port,
                log_level="warning",
                access_log=False,
            )
        )
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        self._task = asyncio.create_task(self._serve(), name="webhook-server")

    async def _serve(self) -> None:
        base = f"http://{self.config.host}:{self.config.port}"
        logger.info("Webhook server listening on {}", base)
        logger.info("  POST {}/webhook/message", base)
        logger.info("  GET  {}/webhook/health", base)
        logger.info("  GET  {}/webhook/status/:messageId", base)
        try:
            await self._server.serve()
        except (OSError, SystemExit) as e:
            logger.error("Webhook server disabled: {}", e)

    async def stop(self) -> None:
        if not self._task:
            return
        self._server.should_exit = True
        try:
            await asyncio.wait_for(self._task, timeout=5)
        except asyncio.TimeoutError:
            self._task.cancel()
        self._task = None
