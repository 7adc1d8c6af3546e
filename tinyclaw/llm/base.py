"""
Base AI provider interface for TinyClaw.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class ProviderError(Exception):
    """The AI provider failed to produce a reply."""


class AIProvider(ABC):
    """
    Abstract AI backend.

    Provider responsibilities:
    - Take one message, text in
    - Continue the running conversation or start a fresh one
    - Return the reply text, or raise ProviderError
    """

    @abstractmethod
    async def invoke(
        self,
        message: str,
        *,
        continue_conversation: bool = True,
        model: str | None = None,
    ) -> str:
        """
        Execute a single blocking AI call.
        """
        raise NotImplementedError
