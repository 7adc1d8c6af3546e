from __future__ import annotations

import asyncio
import os
import stat
from pathlib import Path

import pytest

from tinyclaw.llm.base import ProviderError
from tinyclaw.llm.claude_cli import ClaudeCLIProvider, resolve_model


def _script(tmp_path: Path, body: str) -> str:
    path = tmp_path / "fake-claude"
    path.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IEXEC)
    return str(path)


def test_resolve_model() -> None:
    assert resolve_model("sonnet") == "claude-sonnet-4-5"
    assert resolve_model("OPUS") == "claude-opus-4-6"
    assert resolve_model("custom-model") == "custom-model"
    assert resolve_model("") is None
    assert resolve_model(None) is None


def test_build_args_continue_and_model() -> None:
    provider = ClaudeCLIProvider(default_model="sonnet")

    assert provider.build_args("hi", continue_conversation=True) == [
        "claude", "--dangerously-skip-permissions", "--model", "claude-sonnet-4-5", "-c", "-p", "hi",
    ]
    assert provider.build_args('say "x"', continue_conversation=False, model="opus") == [
        "claude", "--dangerously-skip-permissions", "--model", "claude-opus-4-6", "-p", 'say "x"',
    ]


def test_build_args_without_permissions_flag() -> None:
    provider = ClaudeCLIProvider(skip_permissions=False)
    assert provider.build_args("hi", continue_conversation=False) == ["claude", "-p", "hi"]


@pytest.mark.asyncio
async def test_invoke_returns_stdout(tmp_path: Path) -> None:
    command = _script(tmp_path, 'for last; do :; done; echo "reply to $last"')
    provider = ClaudeCLIProvider(command=command, workdir=str(tmp_path))

    assert (await provider.invoke("ping")).strip() == "reply to ping"


@pytest.mark.asyncio
async def test_nonzero_exit_raises(tmp_path: Path) -> None:
    command = _script(tmp_path, "echo broken >&2; exit 3")
    provider = ClaudeCLIProvider(command=command)

    with pytest.raises(ProviderError, match="code 3"):
        await provider.invoke("ping")


@pytest.mark.asyncio
async def test_timeout_raises(tmp_path: Path) -> None:
    command = _script(tmp_path, "sleep 5")
    provider = ClaudeCLIProvider(command=command, timeout_s=0.2)

    with pytest.raises(ProviderError, match="timed out"):
        await provider.invoke("ping")


@pytest.mark.asyncio
async def test_missing_binary_raises(tmp_path: Path) -> None:
    provider = ClaudeCLIProvider(command=str(tmp_path / "does-not-exist"))

    with pytest.raises(ProviderError):
        await provider.invoke("ping")


def test_zero_timeout_means_unbounded() -> None:
    assert ClaudeCLIProvider(timeout_s=0).timeout_s is None


@pytest.mark.asyncio
async def test_nul_in_message_raises_provider_error(tmp_path: Path) -> None:
    command = _script(tmp_path, "echo unreachable")
    provider = ClaudeCLIProvider(command=command)

    with pytest.raises(ProviderError, match="Failed to start"):
        await provider.invoke("hi\x00there")


@pytest.mark.asyncio
async def test_cancel_kills_and_reaps_child(tmp_path: Path) -> None:
    pid_file = tmp_path / "pid"
    command = _script(tmp_path, f'echo $$ > "{pid_file}"; exec sleep 30')
    provider = ClaudeCLIProvider(command=command, timeout_s=0)

    task = asyncio.create_task(provider.invoke("ping"))
    for _ in range(500):
        if pid_file.exists() and pid_file.read_text().strip():
            break
        await asyncio.sleep(0.01)
    pid = int(pid_file.read_text().strip())

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)
