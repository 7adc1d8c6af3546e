from __future__ import annotations

import json
from pathlib import Path

import pytest

from tinyclaw.config.loader import (
    import_legacy_settings,
    load_config,
    save_config,
    to_camel_keys,
    to_snake_keys,
)
from tinyclaw.config.schema import Config


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch) -> Path:
    home = tmp_path / "home"
    monkeypatch.setenv("TINYCLAW_QUEUE__ROOT", str(home))
    return home


def test_defaults_when_missing(tmp_path: Path) -> None:
    config = load_config(tmp_path / "missing.json")
    assert config.webhook.port == 3077
    assert config.queue.poll_interval == 1.0
    assert config.agent.timeout_s == 120
    assert config.agent.model == ""


def test_save_and_load_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    config = Config()
    config.channels.telegram.enabled = True
    config.channels.telegram.allow_from = ["123"]
    config.webhook.max_body_bytes = 2048

    save_config(config, path)

    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw["webhook"]["maxBodyBytes"] == 2048
    assert raw["channels"]["telegram"]["allowFrom"] == ["123"]

    loaded = load_config(path)
    assert loaded.channels.telegram.enabled is True
    assert loaded.channels.telegram.allow_from == ["123"]
    assert loaded.webhook.max_body_bytes == 2048


def test_relative_paths_follow_config_file(tmp_path: Path) -> None:
    path = tmp_path / "conf" / "config.json"
    path.parent.mkdir()
    path.write_text(
        json.dumps({"queue": {"root": "state"}, "agent": {"workdir": "work"}}),
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.paths.queue == (tmp_path / "conf" / "state" / "queue").resolve()
    assert config.workspace_path == (tmp_path / "conf" / "work").resolve()


def test_legacy_settings_are_imported_without_config(tmp_path: Path, isolated_home: Path) -> None:
    isolated_home.mkdir()
    (isolated_home / "settings.json").write_text(
        json.dumps({
            "channel": "discord+telegram",
            "model": "sonnet",
            "discord_bot_token": "d-token",
            "telegram_bot_token": "t-token",
            "heartbeat_interval": 500,
            "webhook_port": 4000,
        }),
        encoding="utf-8",
    )
    (isolated_home / "model").write_text("opus\n", encoding="utf-8")

    config = load_config(tmp_path / "missing.json")

    assert config.channels.discord.enabled and config.channels.discord.token == "d-token"
    assert config.channels.telegram.enabled and config.channels.telegram.token == "t-token"
    assert not config.channels.whatsapp.enabled
    assert config.agent.model == "opus"
    assert config.heartbeat.enabled and config.heartbeat.interval_s == 500
    assert config.webhook.port == 4000


def test_legacy_settings_ignore_wrong_types(tmp_path: Path) -> None:
    (tmp_path / "settings.json").write_text(
        json.dumps({"channel": "all", "webhook_port": "4000", "heartbeat_interval": True}),
        encoding="utf-8",
    )
    config = Config()

    assert import_legacy_settings(config, tmp_path) is True
    assert config.webhook.port == 3077
    assert config.heartbeat.enabled is False
    assert all(getattr(config.channels, n).enabled for n in ("whatsapp", "telegram", "discord"))


def test_no_legacy_files_means_nothing_imported(tmp_path: Path) -> None:
    assert import_legacy_settings(Config(), tmp_path) is False


def test_invalid_json_falls_back(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{", encoding="utf-8")
    assert load_config(path).webhook.port == 3077


def test_paths_follow_queue_root(tmp_path: Path) -> None:
    config = Config()
    config.queue.root = str(tmp_path)
    paths = config.paths.ensure()

    assert paths.queue == tmp_path / "queue"
    assert paths.reset_flag == tmp_path / "reset_flag"
    assert paths.logs.is_dir()


def test_key_styles() -> None:
    assert to_snake_keys({"queue": {"pendingTtlS": 1}}) == {"queue": {"pending_ttl_s": 1}}
    assert to_camel_keys({"allow_from": [{"max_body_bytes": 1}]}) == {"allowFrom": [{"maxBodyBytes": 1}]}
