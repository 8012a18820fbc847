"""Settings: packaged YAML defaults merged with an optional user file."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import yaml

logger = logging.getLogger(__name__)

PKG_ROOT: Final[Path] = Path(__file__).resolve().parent
DEFAULT_CONFIG_PATH: Final[Path] = PKG_ROOT / "config.default.yaml"
USER_CONFIG_PATH: Final[Path] = Path.home() / ".config" / "sheetroll" / "config.yaml"

SCROLL_MODES: Final[tuple[str, ...]] = ("smooth", "jumping", "center")


@dataclass(frozen=True)
class PlaybackSettings:
    bpm: int = 100
    min_bpm: int = 30
    max_bpm: int = 240
    scroll_mode: str = "smooth"
    highlight_color: str = "#2ecc71"
    sound_enabled: bool = False
    viewport_width: int = 1000
    fps: int = 60
    grace_delay: float = 0.5


def _safe_load(path: Path) -> dict[str, Any]:
    """Read a YAML mapping; a missing, unreadable or malformed file yields ``{}``."""
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
        logger.warning("Ignoring config file %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config file %s: top level is not a mapping", path)
        return {}
    return data


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(
    user_path: str | Path | None = None,
    default_path: str | Path | None = None,
) -> dict[str, Any]:
    """
    Load the packaged defaults and deep-merge the user's overrides on top.

    Args:
        user_path:    User config file. Defaults to ``~/.config/sheetroll/config.yaml``.
        default_path: Defaults file. Defaults to the packaged ``config.default.yaml``.

    Returns:
        The merged configuration mapping. Never raises for unreadable files.
    """
    defaults = _safe_load(Path(default_path) if default_path else DEFAULT_CONFIG_PATH)
    user = _safe_load(Path(user_path) if user_path else USER_CONFIG_PATH)
    return _deep_merge(defaults, user)


def _coerce(section: dict[str, Any], key: str, kind: type, default: Any) -> Any:
    value = section.get(key, default)
    try:
        return kind(value)
    except (TypeError, ValueError):
        logger.warning("Config value %s=%r is not a valid %s; using %r", key, value, kind.__name__, default)
        return default


def settings_from_config(config: dict[str, Any]) -> PlaybackSettings:
    """Build :class:`PlaybackSettings` from a merged config mapping."""
    defaults = PlaybackSettings()
    playback = config.get("playback") or {}
    display = config.get("display") or {}

    min_bpm = _coerce(playback, "min_bpm", int, defaults.min_bpm)
    max_bpm = _coerce(playback, "max_bpm", int, defaults.max_bpm)
    if min_bpm < 1 or max_bpm < min_bpm:
        logger.warning("Invalid tempo range %d-%d; using defaults", min_bpm, max_bpm)
        min_bpm, max_bpm = defaults.min_bpm, defaults.max_bpm

    bpm = _coerce(playback, "bpm", int, defaults.bpm)
    if not min_bpm <= bpm <= max_bpm:
        logger.warning("Tempo %d outside %d-%d; clamping", bpm, min_bpm, max_bpm)
        bpm = min(max(bpm, min_bpm), max_bpm)

    scroll_mode = str(playback.get("scroll_mode", defaults.scroll_mode)).lower()
    if scroll_mode not in SCROLL_MODES:
        logger.warning("Unknown scroll mode '%s'; using %s", scroll_mode, defaults.scroll_mode)
        scroll_mode = defaults.scroll_mode

    return PlaybackSettings(
        bpm=bpm,
        min_bpm=min_bpm,
        max_bpm=max_bpm,
        scroll_mode=scroll_mode,
        highlight_color=str(display.get("highlight_color", defaults.highlight_color)),
        sound_enabled=bool(playback.get("sound_enabled", defaults.sound_enabled)),
        viewport_width=_coerce(display, "viewport_width", int, defaults.viewport_width),
        fps=_coerce(display, "fps", int, defaults.fps),
        grace_delay=_coerce(playback, "grace_delay", float, defaults.grace_delay),
    )
