"""
Runtime utility helpers.

Design principles (TinyClaw style):
- Centralized path management
- Pure functional utilities
- Predictable IO boundaries
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from pathlib import Path


# ===========================
# Path System
# ===========================

@dataclass(frozen=True, slots=True)
class RuntimePaths:
    """
    Centralized runtime path manager.

    Every process (processor, channel adapters, CLI) derives its paths
    from the same root, so they agree on where the queue lives.
    """

    root: Path

    @classmethod
    def default(cls) -> "RuntimePaths":
        return cls(root=Path.home() / ".tinyclaw")

    def ensure(self) -> "RuntimePaths":
        for path in (self.queue, self.logs, self.channels):
            path.mkdir(parents=True, exist_ok=True)
        return self

    @property
    def queue(self) -> Path:
        return self.root / "queue"

    @property
    def logs(self) -> Path:
        return self.root / "logs"

    @property
    def channels(self) -> Path:
        return self.root / "channels"

    @property
    def reset_flag(self) -> Path:
        return self.root / "reset_flag"

    def ready_marker(self, channel: str) -> Path:
        return self.channels / f"{channel}_ready"


# ===========================
# Clock Utilities
# ===========================

def now_ms() -> int:
    """Return current unix time in milliseconds."""
    return time.time_ns() // 1_000_000


# ===========================
# Identifiers
# ===========================

def new_message_id() -> str:
    """Adapter-side message id: ``{ms}_{random}``."""
    return f"{now_ms()}_{uuid.uuid4().hex[:7]}"


# ===========================
# String Utilities
# ===========================

_UNSAFE_CHARS = '<>:"/\\|?*'


def truncate(s: str, max_len: int = 120, suffix: str = "...") -> str:
    """Truncate a string with suffix."""
    if len(s) <= max_len:
        return s
    return s[: max_len - len(suffix)] + suffix


def safe_filename(name: str) -> str:
    """Convert arbitrary string to filesystem-safe filename."""
    for ch in _UNSAFE_CHARS:
        name = name.replace(ch, "_")
    return name.strip()


def split_message(text: str, max_len: int) -> list[str]:
    """
    Split text into chunks no longer than ``max_len``.

    Cuts at the last newline inside the window, then the last space,
    and falls back to a hard cut.
    """
    if len(text) <= max_len:
        return [text]

    chunks: list[str] = []
    remaining = text

    while remaining:
        if len(remaining) <= max_len:
            chunks.append(remaining)
            break

        split_at = remaining.rfind("\n", 0, max_len + 1)
        if split_at <= 0:
            split_at = remaining.rfind(" ", 0, max_len + 1)
        if split_at <= 0:
            split_at = max_len

        chunks.append(remaining[:split_at])
        remaining = remaining[split_at:]
        if remaining[:1] in ("\n", " "):
            remaining = remaining[1:]

    return chunks
