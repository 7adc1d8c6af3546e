"""
Configuration loading and persistence.

``config.json`` lives in the TinyClaw home directory (``~/.tinyclaw`` or
``$TINYCLAW_CONFIG``). Older installs kept their settings in
``settings.json`` and ``model`` next to the queue; those are imported when
no ``config.json`` exists yet.
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from tinyclaw.config.schema import Config


CONFIG_FILENAME = "config.json"
LEGACY_SETTINGS_FILENAME = "settings.json"
LEGACY_MODEL_FILENAME = "model"

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def get_config_path() -> Path:
    override = os.environ.get("TINYCLAW_CONFIG")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".tinyclaw" / CONFIG_FILENAME


# =============================
# Load
# =============================

def load_config(config_path: Path | None = None) -> Config:
    """
    Build the runtime configuration.

    Relative ``queue.root`` and ``agent.workdir`` values are taken relative
    to the directory holding the config file. A missing or broken file
    falls back to defaults (plus any legacy settings found under the
    default queue root).
    """
    path = config_path or get_config_path()

    if path.exists():
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            config = Config.model_validate(to_snake_keys(raw))
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in config | path={} err={}", path, e)
        except Exception:
            logger.exception("Failed to load config | path={}", path)
        else:
            _anchor_paths(config, path.parent)
            logger.debug("Config loaded | path={} root={}", path, config.queue.root)
            return config
        logger.warning("Falling back to default configuration")
    else:
        logger.warning("Config file not found, using defaults | path={}", path)

    config = Config()
    import_legacy_settings(config, config.paths.root)
    return config


def _anchor_paths(config: Config, base: Path) -> None:
    for section, field in (("queue", "root"), ("agent", "workdir")):
        owner = getattr(config, section)
        value = getattr(owner, field)
        if value and not value.startswith("~") and not Path(value).is_absolute():
            setattr(owner, field, str((base / value).resolve()))


# =============================
# Legacy settings
# =============================

def import_legacy_settings(config: Config, root: Path) -> bool:
    """
    Fold ``settings.json`` and the ``model`` file of an older install into
    ``config``. Returns True when anything was imported.

    ``settings.json`` keys: ``channel`` (``discord``, ``whatsapp+telegram``,
    ``all``...), ``model``, ``discord_bot_token``, ``telegram_bot_token``,
    ``heartbeat_interval`` and ``webhook_port``.
    """
    imported = False
    settings = _read_legacy_settings(root / LEGACY_SETTINGS_FILENAME)

    if settings:
        selected = str(settings.get("channel") or "")
        for name in type(config.channels).model_fields:
            if selected == "all" or name in selected.split("+"):
                getattr(config.channels, name).enabled = True

        if settings.get("discord_bot_token"):
            config.channels.discord.token = settings["discord_bot_token"]
        if settings.get("telegram_bot_token"):
            config.channels.telegram.token = settings["telegram_bot_token"]
        if settings.get("model"):
            config.agent.model = str(settings["model"])

        interval = settings.get("heartbeat_interval")
        if isinstance(interval, int) and not isinstance(interval, bool) and interval > 0:
            config.heartbeat.enabled = True
            config.heartbeat.interval_s = interval

        port = settings.get("webhook_port")
        if isinstance(port, int) and not isinstance(port, bool) and port > 0:
            config.webhook.port = port

        imported = True

    model_file = root / LEGACY_MODEL_FILENAME
    if model_file.is_file():
        model = model_file.read_text(encoding="utf-8").strip()
        if model:
            config.agent.model = model
            imported = True

    if imported:
        logger.info("Imported legacy settings | root={}", root)
    return imported


def _read_legacy_settings(path: Path) -> Optional[dict[str, Any]]:
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable legacy settings | path={} err={}", path, e)
        return None
    return data if isinstance(data, dict) else None


# =============================
# Save
# =============================

def save_config(config: Config, config_path: Path | None = None) -> Path:
    """Write ``config`` as camelCase JSON, replacing the file atomically."""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp = path.with_name(f"{path.name}.tmp")
    tmp.write_text(
        json.dumps(to_camel_keys(config.model_dump()), indent=2, ensure_ascii=False),
        encoding="utf-8",
    )
    os.replace(tmp, path)

    logger.success("Config saved | path={}", path)
    return path


# =============================
# Key styles
# =============================

def to_snake_keys(data: Any) -> Any:
    """``maxBodyBytes`` -> ``max_body_bytes``, recursively."""
    if isinstance(data, dict):
        return {_CAMEL_BOUNDARY.sub("_", k).lower(): to_snake_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [to_snake_keys(x) for x in data]
    return data


def to_camel_keys(data: Any) -> Any:
    if isinstance(data, dict):
        return {_camel(k): to_camel_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [to_camel_keys(x) for x in data]
    return data


def _camel(name: str) -> str:
    head, *tail = name.split("_")
    return head + "".join(w.capitalize() for w in tail)
