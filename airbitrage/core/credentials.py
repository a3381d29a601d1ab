"""Provider credentials from the environment with a local JSON fallback file."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from airbitrage.config import Settings, settings

logger = logging.getLogger(__name__)

API_KEYS_FILENAME = "api-keys.json"
_FILE_KEYS = {
    "anthropic_api_key": "anthropicApiKey",
    "openai_api_key": "openaiApiKey",
    "tavily_api_key": "tavilyApiKey",
}


@dataclass(frozen=True)
class ApiKeys:
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    tavily_api_key: str = ""

    def llm_key(self, provider: str) -> str:
        return self.openai_api_key if provider == "openai" else self.anthropic_api_key

    def missing(self, provider: str) -> list[str]:
        missing: list[str] = []
        if not self.llm_key(provider):
            missing.append("OPENAI_API_KEY" if provider == "openai" else "ANTHROPIC_API_KEY")
        if not self.tavily_api_key:
            missing.append("TAVILY_API_KEY")
        return missing


def _keys_path(config: Settings) -> Path:
    return config.data_path / API_KEYS_FILENAME


def _read_stored_keys(path: Path) -> dict[str, Any]:
    try:
        stored = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, ValueError):
        logger.warning("credentials.file_unreadable", extra={"path": str(path)})
        return {}
    return stored if isinstance(stored, dict) else {}


def load_api_keys(config: Settings | None = None) -> ApiKeys:
    """Resolve keys from settings first, then from ``<data_dir>/api-keys.json``."""
    config = config or settings
    resolved = {field: getattr(config, field) or "" for field in _FILE_KEYS}
    if all(resolved.values()):
        return ApiKeys(**resolved)
    stored = _read_stored_keys(_keys_path(config))
    for field, file_key in _FILE_KEYS.items():
        if not resolved[field]:
            value = stored.get(file_key)
            resolved[field] = value if isinstance(value, str) else ""
    return ApiKeys(**resolved)


def save_api_keys(updates: dict[str, str], config: Settings | None = None) -> None:
    """Merge a partial update (camelCase file keys) into the fallback file."""
    config = config or settings
    path = _keys_path(config)
    path.parent.mkdir(parents=True, exist_ok=True)
    merged = _read_stored_keys(path)
    merged.update({key: value for key, value in updates.items() if key in _FILE_KEYS.values()})
    path.write_text(json.dumps(merged, indent=2), encoding="utf-8")


def get_api_keys() -> ApiKeys:
    """Dependency accessor used by API routes."""
    return load_api_keys(settings)
