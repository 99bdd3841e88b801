# config.py
"""
Configuration for the loss recorder.

Values come from an optional YAML file and are overridden by CLI options:

  host: google.com
  probe_interval_secs: 1.0
  ping_timeout_secs: 2
  stats_interval_secs: 1.0
  family: auto            # auto|v4|v6

The loss-detection window is fixed and not configurable.
"""
from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional

import yaml

DEFAULT_HOST = "google.com"

# Fixed loss-detection window.
LOSS_THRESHOLD_SECS = 3.0
POLL_INTERVAL_SECS = 2.0


@dataclass
class Config:
    host: str = DEFAULT_HOST
    probe_interval_secs: float = 1.0
    ping_timeout_secs: int = 2
    stats_interval_secs: float = 1.0
    family: str = "auto"  # auto|v4|v6


def load_config(path: Optional[str]) -> Config:
    if not path:
        return Config()
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config root must be a mapping, got {type(raw).__name__}")

    known = {f.name for f in fields(Config)}
    unknown = set(raw) - known
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    cfg = Config(
        host=str(raw.get("host", DEFAULT_HOST)),
        probe_interval_secs=float(raw.get("probe_interval_secs", 1.0)),
        ping_timeout_secs=int(raw.get("ping_timeout_secs", 2)),
        stats_interval_secs=float(raw.get("stats_interval_secs", 1.0)),
        family=str(raw.get("family", "auto")),
    )
    validate(cfg)
    return cfg


def validate(cfg: Config) -> None:
    if not cfg.host.strip():
        raise ValueError("host must not be empty")
    if cfg.family not in ("auto", "v4", "v6"):
        raise ValueError(f"Invalid family '{cfg.family}'")
    if cfg.probe_interval_secs <= 0:
        raise ValueError("probe_interval_secs must be positive")
    if cfg.ping_timeout_secs <= 0:
        raise ValueError("ping_timeout_secs must be positive")
    if cfg.stats_interval_secs <= 0:
        raise ValueError("stats_interval_secs must be positive")


def merge_options(cfg: Config, **overrides: Any) -> Config:
    """Apply CLI overrides; None means "not given on the command line"."""
    given: Dict[str, Any] = {k: v for k, v in overrides.items() if v is not None}
    merged = replace(cfg, **given)
    validate(merged)
    return merged
