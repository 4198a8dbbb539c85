from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable

import yaml

from clustering.errors import ConfigurationError
from session.config import ClusterConfig, build_config

DEFAULT_PRESET = "default"


def _repo_root() -> Path:
    # .../backend/session/presets.py -> repo root is 2 levels up
    return Path(__file__).resolve().parents[2]


def presets_root() -> Path:
    return Path(os.getenv("CLUSTERMAP_PRESETS_DIR") or (_repo_root() / "presets"))


def default_preset_name() -> str:
    return (os.getenv("CLUSTERMAP_PRESET") or "").strip() or DEFAULT_PRESET


@dataclass(frozen=True)
class PresetEntry:
    name: str
    options: dict[str, Any]
    # Absolute path to the yaml on disk (useful for debugging).
    path: Path


def _iter_preset_yaml_files(root: Path) -> Iterable[Path]:
    if not root.exists():
        return []
    # Convention: presets/<name>.yaml
    return root.glob("*.yaml")


def _load_yaml(path: Path) -> dict:
    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Invalid preset yaml root: {path}")
    return data


@lru_cache(maxsize=4)
def _registry(root: str) -> dict[str, PresetEntry]:
    out: dict[str, PresetEntry] = {}
    for p in sorted(_iter_preset_yaml_files(Path(root)), key=lambda x: str(x)):
        out[p.stem] = PresetEntry(name=p.stem, options=_load_yaml(p), path=p)
    return out


def get_registry() -> dict[str, PresetEntry]:
    return _registry(str(presets_root()))


def list_presets() -> list[str]:
    return sorted(get_registry().keys())


def get_preset(name: str | None = None) -> PresetEntry:
    reg = get_registry()
    key = (name or "").strip() or default_preset_name()
    entry = reg.get(key)
    if entry is None:
        available = ", ".join(sorted(reg.keys())) or "none"
        raise ConfigurationError(f"Unknown preset '{key}'. Available presets: {available}")
    return entry


def load_config(name: str | None = None, **overrides: Any) -> ClusterConfig:
    """
    Build a ClusterConfig from a YAML preset; keyword overrides win over the preset.

    Presets hold plain options only; render callbacks always come from the host.
    """
    return build_config(get_preset(name).options, **overrides)


def clear_registry_cache() -> None:
    """
    Clear in-memory preset cache.

    Preset YAML changes are otherwise not picked up until the process restarts.
    """
    _registry.cache_clear()
