from __future__ import annotations

import copy
import errno
import os
import threading
from pathlib import Path
from typing import Any

import yaml

from timboard.models import AppConfig, default_app_config


SECRET_PATHS = (("caldav", "password"), ("ai", "api_key"))
MASK = "***"


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _dump(config_dict: dict[str, Any], handle: Any) -> None:
    yaml.safe_dump(config_dict, handle, sort_keys=False, allow_unicode=True, default_flow_style=False)


class ConfigManager:
    def __init__(self, config_path: str | os.PathLike[str]) -> None:
        self.config_path = Path(config_path)
        self._lock = threading.RLock()
        if not self.config_path.exists():
            self.save(default_app_config())

    @classmethod
    def from_env(cls) -> "ConfigManager":
        return cls(os.getenv("TIMBOARD_CONFIG_PATH", "config.yaml"))

    def load(self) -> AppConfig:
        with self._lock:
            with self.config_path.open("r", encoding="utf-8") as handle:
                data = yaml.safe_load(handle) or {}
            return AppConfig.from_dict(data)

    def save(self, config: AppConfig) -> None:
        with self._lock:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            config_dict = config.to_dict()
            tmp_path = self.config_path.with_suffix(self.config_path.suffix + ".tmp")
            with tmp_path.open("w", encoding="utf-8") as handle:
                _dump(config_dict, handle)
            try:
                tmp_path.replace(self.config_path)
            except OSError as exc:
                # Bind-mounted single files cannot be replaced atomically.
                if exc.errno != errno.EBUSY:
                    raise
                with self.config_path.open("w", encoding="utf-8") as handle:
                    _dump(config_dict, handle)
                if tmp_path.exists():
                    tmp_path.unlink()

    def update(self, payload: dict[str, Any]) -> AppConfig:
        """Deep-merge ``payload``; blank or masked secrets keep the stored value."""
        with self._lock:
            current = self.load().to_dict()
            sanitized = copy.deepcopy(payload)
            for section, key in SECRET_PATHS:
                entry = sanitized.get(section)
                if isinstance(entry, dict) and str(entry.get(key, MASK)).strip() in {"", MASK}:
                    entry.pop(key, None)
            config = AppConfig.from_dict(_deep_merge(current, sanitized))
            self.save(config)
            return config

    def masked(self) -> dict[str, Any]:
        config = self.load().to_dict()
        for section, key in SECRET_PATHS:
            if config.get(section, {}).get(key):
                config[section][key] = MASK
        return config
