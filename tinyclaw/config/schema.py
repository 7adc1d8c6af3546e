"""
Configuration schema definitions.

Design principles:
    - Explicit structure
    - Predictable defaults
    - Environment override support
    - Strong typing + validation
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from tinyclaw.utils.helpers import RuntimePaths


# =============================
# Channel Configurations
# =============================

class ChannelBaseConfig(BaseModel):
    """Base configuration for all channels."""
    enabled: bool = False
    allow_from: list[str] = Field(default_factory=list)


class WhatsAppConfig(ChannelBaseConfig):
    """WhatsApp channel configuration (Node.js bridge)."""
    bridge_url: str = "ws://localhost:3001"
    reconnect_interval: int = 5


class TelegramConfig(ChannelBaseConfig):
    """Telegram channel configuration."""
    token: str = ""
    proxy: Optional[str] = None


class DiscordConfig(ChannelBaseConfig):
    """Discord channel configuration."""
    token: str = ""
    gateway_url: str = "wss://gateway.discord.gg/?v=10&encoding=json"
    intents: int = 37377


class ChannelsConfig(BaseModel):
    """Unified channel configuration root."""
    whatsapp: WhatsAppConfig = Field(default_factory=WhatsAppConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    discord: DiscordConfig = Field(default_factory=DiscordConfig)


# =============================
# Agent Runtime Config
# =============================

class AgentConfig(BaseModel):
    """External AI command-line invocation."""
    command: str = "claude"
    workdir: str = "~/.tinyclaw/workspace"
    model: str = ""
    timeout_s: int = 120
    skip_permissions: bool = True


# =============================
# Queue Config
# =============================

class QueueConfig(BaseModel):
    """Queue location and polling."""
    root: str = "~/.tinyclaw"
    poll_interval: float = 1.0
    pending_ttl_s: int = 300


# =============================
# Webhook Config
# =============================

class WebhookConfig(BaseModel):
    """HTTP ingress served next to the processor."""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 3077
    max_body_bytes: int = 1024 * 1024


# =============================
# Heartbeat Config
# =============================

class HeartbeatSettings(BaseModel):
    """Periodic self-check through the queue."""
    enabled: bool = False
    interval_s: int = 30 * 60


# =============================
# Root Config
# =============================

class Config(BaseSettings):
    """
    Root configuration schema.

    Priority:
        env > config.json > defaults
    """

    model_config = SettingsConfigDict(
        env_prefix="TINYCLAW_",
        env_nested_delimiter="__",
    )

    agent: AgentConfig = Field(default_factory=AgentConfig)
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    heartbeat: HeartbeatSettings = Field(default_factory=HeartbeatSettings)

    # -------------------------
    # Runtime helpers
    # -------------------------

    @property
    def paths(self) -> RuntimePaths:
        return RuntimePaths(root=Path(self.queue.root).expanduser())

    @property
    def workspace_path(self) -> Path:
        """Expanded working directory of the AI command."""
        return Path(self.agent.workdir).expanduser()
