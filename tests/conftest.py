from pathlib import Path

import pytest

from tests.helpers import FakeProvider
from tinyclaw.bus.queue import FileQueue, ResetFlag


@pytest.fixture
def queue(tmp_path: Path) -> FileQueue:
    return FileQueue(tmp_path / "queue")


@pytest.fixture
def reset_flag(tmp_path: Path) -> ResetFlag:
    return ResetFlag(tmp_path / "reset_flag")


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()
