"""
Claude Code CLI provider for TinyClaw.
"""

from __future__ import annotations

import asyncio
import os
from typing import Final

from loguru import logger

from tinyclaw.llm.base import AIProvider, ProviderError


MODEL_IDS: Final[dict[str, str]] = {
    "sonnet": "claude-sonnet-4-5",
    "opus": "claude-opus-4-6",
}


def resolve_model(name: str | None) -> str | None:
    """Map a short alias to a full model id; pass other values through."""
    if not name:
        return None
    name = name.strip()
    return MODEL_IDS.get(name.lower(), name) or None


class ClaudeCLIProvider(AIProvider):
    """
    Runs ``claude -p`` as a subprocess, one call at a time.

    Timeout policy:
        ``timeout_s`` seconds per call (default two minutes).
        ``0`` or ``None`` waits indefinitely, which blocks every channel
        while a call is stuck.
    """

    def __init__(
        self,
        *,
        command: str = "claude",
        workdir: str | None = None,
        timeout_s: float | None = 120,
        skip_permissions: bool = True,
        default_model: str | None = None,
    ) -> None:
        self.command = command
        self.workdir = workdir
        self.timeout_s = timeout_s or None
        self.skip_permissions = skip_permissions
        self.default_model = default_model

    # =========================
    # Command line
    # =========================

    def build_args(
        self,
        message: str,
        *,
        continue_conversation: bool,
        model: str | None = None,
    ) -> list[str]:
        args = [self.command]

        if self.skip_permissions:
            args.append("--dangerously-skip-permissions")

        model_id = resolve_model(model or self.default_model)
        if model_id:
            args += ["--model", model_id]

        if continue_conversation:
            args.append("-c")

        args += ["-p", message]
        return args

    # =========================
    # Invocation
    # =========================

    async def invoke(
        self,
        message: str,
        *,
        continue_conversation: bool = True,
        model: str | None = None,
    ) -> str:
        args = self.build_args(
            message,
            continue_conversation=continue_conversation,
            model=model,
        )
        cwd = os.path.expanduser(self.workdir) if self.workdir else None

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
            )
        except (OSError, ValueError) as e:
            # ValueError: arguments the OS cannot carry (embedded NUL)
            raise ProviderError(f"Failed to start {self.command}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ProviderError(
                f"{self.command} timed out after {self.timeout_s} seconds"
            ) from None
        except asyncio.CancelledError:
            process.kill()
            await asyncio.shield(process.wait())
            raise

        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise ProviderError(
                f"{self.command} exited with code {process.returncode}: {detail[:500]}"
            )

        reply = stdout.decode("utf-8", errors="replace")
        logger.debug("Provider reply received | chars={}", len(reply))
        return reply
