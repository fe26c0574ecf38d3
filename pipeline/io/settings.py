from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

from .storage import MemoryStorage, StorageBackend, decode_value, encode_value

DEFAULT_PREFIX = "egoBB_"
BOTNET_KEY = "botnet"
NETWORK_MAP_KEY = "networkMap"


@dataclass
class Settings:
    """Tunables for the optimizer and spider, passed explicitly to both."""

    # RAM kept free on home for the controlling scripts (GB)
    reserved_home_ram: float = 16.0
    target: str = "n00dles"
    # RAM per worker thread (GB)
    script_ram_cost: float = 1.75
    # wait used when every computed ETA is already in the past (ms)
    fallback_wait_ms: int = 3000
    # longest single wait between liveness checks (ms)
    max_poll_ms: int = 30000

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any] | None) -> Settings:
        if not d:
            return cls()
        known = {f.name: f.type for f in fields(cls)}
        out: dict[str, Any] = {}
        for k, v in d.items():
            if k in known and v is not None:
                out[k] = _coerce_field(getattr(cls(), k), v)
        return cls(**out)


def _coerce_field(default: Any, value: Any) -> Any:
    if isinstance(default, bool):
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return str(value)


def _coerce_scalar(val: str) -> int | float | bool | str:
    lower = val.lower()
    if lower in ("true", "false"):
        return lower == "true"
    try:
        if "." in val:
            return float(val)
        return int(val)
    except ValueError:
        return val


def load_config(
    config_path: Path | None, inline_kv: Sequence[str] | None = None
) -> dict[str, Any]:
    cfg: dict[str, Any] = {}
    if config_path:
        text = config_path.read_text(encoding="utf-8")
        if config_path.suffix.lower() in (".yaml", ".yml"):
            import yaml  # lazy

            cfg = dict(yaml.safe_load(text) or {})
        else:
            cfg = dict(json.loads(text))
    if inline_kv:
        for item in inline_kv:
            if "=" not in item:
                continue
            k, v = item.split("=", 1)
            cfg[k.strip()] = _coerce_scalar(v.strip())
    return cfg


class SettingsStore:
    """Settings and auxiliary state kept in a key-value backend under a prefix."""

    def __init__(self, backend: StorageBackend | None = None, prefix: str = DEFAULT_PREFIX) -> None:
        self.backend = backend if backend is not None else MemoryStorage()
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return self.prefix + key

    def load_value(self, key: str) -> Any:
        raw = self.backend.get_item(self._key(key))
        if raw is None:
            return None
        return decode_value(raw)

    def save_value(self, key: str, value: Any) -> None:
        if value is None:
            self.backend.remove_item(self._key(key))
            return
        self.backend.set_item(self._key(key), encode_value(value))

    def remove(self, key: str) -> None:
        self.backend.remove_item(self._key(key))

    def keys(self) -> list[str]:
        return [k[len(self.prefix):] for k in self.backend.keys() if k.startswith(self.prefix)]

    def load(self) -> Settings:
        stored: dict[str, Any] = {}
        for f in fields(Settings):
            value = self.load_value(f.name)
            if value is not None:
                stored[f.name] = value
        return Settings.from_dict(stored)

    def save(self, settings: Settings) -> None:
        defaults = Settings()
        for f in fields(Settings):
            value = getattr(settings, f.name)
            if value == getattr(defaults, f.name):
                self.remove(f.name)
            else:
                self.save_value(f.name, value)

    def update(self, changes: Mapping[str, Any]) -> Settings:
        merged = {**self.load().to_dict(), **dict(changes)}
        settings = Settings.from_dict(merged)
        self.save(settings)
        return settings


def resolve_settings(
    store: SettingsStore | None,
    config_path: Path | None = None,
    config_kv: Sequence[str] | None = None,
) -> Settings:
    """Stored settings, overlaid by a config file, overlaid by ``key=value`` pairs."""
    base = store.load().to_dict() if store is not None else Settings().to_dict()
    base.update(load_config(config_path, config_kv))
    return Settings.from_dict(base)
