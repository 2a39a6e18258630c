from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml


class ConfigError(ValueError):
    """Raised when a config file cannot be loaded or has invalid structure."""


def load_config(path: str | Path) -> dict[str, Any]:
    """
    Load a YAML or JSON config file into a dict.

    Parameters
    ----------
    path:
        Path to a .yaml/.yml or .json file.
    """
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config file not found: {p}")

    suffix = p.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    elif suffix == ".json":
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
    else:
        raise ConfigError(f"Unsupported config extension: {suffix} (expected .yaml/.yml/.json)")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config must be a mapping/dict, got: {type(data).__name__}")
    return data


def get_section(cfg: dict[str, Any], key: str) -> dict[str, Any]:
    """Return cfg[key] as a dict ({} when absent), rejecting non-mapping values."""
    section = cfg.get(key, None)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"Config section '{key}' must be a mapping, got: {type(section).__name__}")
    return section


def as_float_list(value: Any, *, name: str) -> list[float]:
    if value is None:
        return []
    if isinstance(value, (int, float)):
        return [float(value)]
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"'{name}' must be a number or a list of numbers.")
    try:
        return [float(v) for v in value]
    except (TypeError, ValueError) as e:
        raise ConfigError(f"'{name}' contains a non-numeric value: {e}") from e


def expand_grid(value: Any, *, name: str) -> list[float]:
    """
    Expand a numeric grid given as numbers and/or inclusive ranges.

    grid: [{start: 89, stop: 99, step: 0.2}, {start: 99.1, stop: 100, step: 0.1}]
    grid: [99.9, 99, 90, 75, 50, 0]
    """
    if value is None:
        return []
    items = value if isinstance(value, (list, tuple)) else [value]
    out: list[float] = []
    for item in items:
        if isinstance(item, dict):
            try:
                start = float(item["start"])
                stop = float(item["stop"])
                step = float(item["step"])
            except (KeyError, TypeError, ValueError) as e:
                raise ConfigError(f"'{name}' range entries need numeric start/stop/step: {item!r}") from e
            if step <= 0 or stop < start:
                raise ConfigError(f"'{name}' range needs step > 0 and stop >= start: {item!r}")
            n = int(round((stop - start) / step))
            out.extend(round(start + i * step, 10) for i in range(n + 1) if start + i * step <= stop + 1e-9)
        else:
            out.extend(as_float_list(item, name=name))
    return out
