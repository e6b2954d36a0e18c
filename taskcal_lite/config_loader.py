"""taskcal_lite.config_loader

Config loader for taskcal_lite.

- Reads YAML (PyYAML ``safe_load``) or JSON, chosen by file suffix.
- Exposes a typed dataclass `Config` and a `load_config()` helper that accepts
  an optional path override.
- Invalid values are coerced to defaults with a logged warning instead of
  failing the whole load.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .colors import DEFAULT_COLOR, DEFAULT_FILL_OPACITY
from .lite_parser import DEFAULT_EXPANSION_DAYS
from .lite_rrule_expander import DEFAULT_MAX_PERIODS

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("taskcal.yaml")

MIN_REFRESH_SECONDS = 60
MAX_REFRESH_SECONDS = 86400

DEFAULT_PRIORITY_COLORS = {
    "high": "#ff6b6b",
    "normal": "#ffa500",
    "low": "#4caf50",
    "none": "#9e9e9e",
}

DEFAULT_STATUS_COLORS = {
    "open": "#808080",
    "in-progress": "#0066cc",
    "done": "#00aa00",
}


@dataclass
class Config:
    """Typed configuration for taskcal_lite.

    Fields:
        subscriptions: list of subscription mappings (id, name, source, color, enabled)
        refresh_interval_seconds: default feed refresh interval (60..86400)
        feed_expansion_days: days before/after now to expand feed RRULEs
        max_periods: iteration ceiling per rule expansion
        fill_opacity: alpha of occurrence fill colors (0..1)
        default_color: fallback color for unknown categories
        color_by: category used for task colors, ``priority`` or ``status``
        priority_colors / status_colors: category value -> color
        palette: CSS custom property -> color, used to resolve ``var(--x)``
        timezone: IANA zone used to place all-day occurrences (None = local)
        log_level: logging level name
    """

    subscriptions: list[dict[str, Any]] = field(default_factory=list)
    refresh_interval_seconds: int = 900
    feed_expansion_days: int = DEFAULT_EXPANSION_DAYS
    max_periods: int = DEFAULT_MAX_PERIODS
    fill_opacity: float = DEFAULT_FILL_OPACITY
    default_color: str = DEFAULT_COLOR
    color_by: str = "priority"
    priority_colors: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_PRIORITY_COLORS))
    status_colors: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_STATUS_COLORS))
    palette: dict[str, str] = field(default_factory=dict)
    timezone: str | None = None
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Config:
        """Create Config from a plain mapping, applying defaults and validation.

        Numeric-like values are coerced, out-of-range values are clamped and
        malformed entries are dropped, each with a logged warning.
        """
        if data is None:
            data = {}

        def _coerce_int(key: str, default: int) -> int:
            raw = data.get(key, default)
            try:
                return int(raw)
            except (TypeError, ValueError):
                logger.warning("Config %s=%r is not an int; using default %d", key, raw, default)
                return default

        def _coerce_mapping(key: str, default: dict[str, str]) -> dict[str, str]:
            raw = data.get(key)
            if raw is None:
                return dict(default)
            if not isinstance(raw, dict):
                logger.warning("Config `%s` is not a mapping; using defaults", key)
                return dict(default)
            return {str(k).lower() if key != "palette" else str(k): str(v) for k, v in raw.items()}

        subscriptions_raw = data.get("subscriptions") or []
        if isinstance(subscriptions_raw, dict):
            subscriptions_raw = [subscriptions_raw]
        subscriptions: list[dict[str, Any]] = []
        for index, entry in enumerate(subscriptions_raw):
            if isinstance(entry, str):
                entry = {"source": entry}
            if not isinstance(entry, dict) or not entry.get("source"):
                logger.warning("Config subscription #%d has no source; skipping", index)
                continue
            entry = dict(entry)
            entry.setdefault("id", f"sub-{index + 1}")
            entry.setdefault("name", str(entry["id"]))
            subscriptions.append(entry)

        refresh = _coerce_int("refresh_interval_seconds", 900)
        if refresh < MIN_REFRESH_SECONDS:
            logger.warning("refresh_interval_seconds %d below minimum; coercing to %d", refresh, MIN_REFRESH_SECONDS)
            refresh = MIN_REFRESH_SECONDS
        elif refresh > MAX_REFRESH_SECONDS:
            logger.warning("refresh_interval_seconds %d above maximum; coercing to %d", refresh, MAX_REFRESH_SECONDS)
            refresh = MAX_REFRESH_SECONDS

        expansion_days = _coerce_int("feed_expansion_days", DEFAULT_EXPANSION_DAYS)
        if expansion_days < 1:
            logger.warning("feed_expansion_days %d must be positive; using %d", expansion_days, DEFAULT_EXPANSION_DAYS)
            expansion_days = DEFAULT_EXPANSION_DAYS

        max_periods = _coerce_int("max_periods", DEFAULT_MAX_PERIODS)
        if max_periods < 1:
            logger.warning("max_periods %d must be positive; using %d", max_periods, DEFAULT_MAX_PERIODS)
            max_periods = DEFAULT_MAX_PERIODS

        raw_opacity = data.get("fill_opacity", DEFAULT_FILL_OPACITY)
        try:
            fill_opacity = float(raw_opacity)
        except (TypeError, ValueError):
            logger.warning("Config fill_opacity=%r is not a number; using %s", raw_opacity, DEFAULT_FILL_OPACITY)
            fill_opacity = DEFAULT_FILL_OPACITY
        if not 0.0 <= fill_opacity <= 1.0:
            logger.warning("fill_opacity %s outside 0..1; using %s", fill_opacity, DEFAULT_FILL_OPACITY)
            fill_opacity = DEFAULT_FILL_OPACITY

        color_by = str(data.get("color_by", "priority")).lower()
        if color_by not in ("priority", "status"):
            logger.warning("Config color_by=%r is not priority/status; using priority", color_by)
            color_by = "priority"

        timezone = data.get("timezone")
        timezone = str(timezone) if timezone else None

        log_level = data.get("log_level", "INFO")
        log_level = str(log_level).upper() if log_level is not None else "INFO"

        return cls(
            subscriptions=subscriptions,
            refresh_interval_seconds=refresh,
            feed_expansion_days=expansion_days,
            max_periods=max_periods,
            fill_opacity=fill_opacity,
            default_color=str(data.get("default_color") or DEFAULT_COLOR),
            color_by=color_by,
            priority_colors=_coerce_mapping("priority_colors", DEFAULT_PRIORITY_COLORS),
            status_colors=_coerce_mapping("status_colors", DEFAULT_STATUS_COLORS),
            palette=_coerce_mapping("palette", {}),
            timezone=timezone,
            log_level=log_level,
        )


def _load_yaml_or_json(path: Path) -> Any:
    """Load a mapping from a YAML or JSON file (JSON for ``.json`` suffixes)."""
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return json.loads(text) if text.strip() else {}
    loaded = yaml.safe_load(text)
    # safe_load returns None for empty files
    return {} if loaded is None else loaded


def load_config(path: str | Path | None = None) -> Config:
    """Load configuration from a YAML/JSON file and return a Config instance.

    Args:
        path: Optional path to the config file. Defaults to ./taskcal.yaml.

    Returns:
        Config dataclass instance with values from file (or defaults).

    Raises:
        ValueError: If the file exists but its top level is not a mapping

    Behavior:
    - If file is missing: returns Config() with defaults.
    - YAML/JSON syntax errors propagate from the respective parser.
    """
    p = Path(path) if path else Path.cwd() / DEFAULT_CONFIG_PATH
    logger.debug("Attempting to load config from %s", p)
    if not p.exists():
        logger.info("Config file %s not found; using defaults", p)
        return Config()

    raw = _load_yaml_or_json(p)
    if not isinstance(raw, dict):
        logger.warning("Config file %s parsed but top-level is not a mapping: %r", p, raw)
        raise ValueError("Config file must contain a mapping at top level")  # noqa: TRY004
    cfg = Config.from_dict(raw)
    logger.info("Loaded configuration from %s", p)
    logger.debug("Configuration values: %s", cfg)
    return cfg
