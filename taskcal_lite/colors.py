"""Color resolution for synthesized occurrences - taskcal_lite.

Category colors come from user settings and may be written as ``#rgb``,
``#rrggbb``, ``rgb(r, g, b)``, a CSS custom property (``var(--priority-high)``)
or a CSS color name. Everything is resolved to a concrete ``#rrggbb`` border
color; the fill is the same color at a fixed opacity.
"""

import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_COLOR = "#3a87ad"
DEFAULT_FILL_OPACITY = 0.15

_HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
_RGB_COLOR = re.compile(
    r"^rgba?\(\s*(\d{1,3})\s*,\s*(\d{1,3})\s*,\s*(\d{1,3})\s*(?:,\s*[\d.]+\s*)?\)$",
    re.IGNORECASE,
)
_CSS_VAR = re.compile(r"^var\(\s*(--[\w-]+)\s*(?:,\s*(.+?)\s*)?\)$")

CSS_NAMED_COLORS = {
    "black": "#000000",
    "white": "#ffffff",
    "red": "#ff0000",
    "green": "#008000",
    "blue": "#0000ff",
    "yellow": "#ffff00",
    "orange": "#ffa500",
    "purple": "#800080",
    "gray": "#808080",
    "grey": "#808080",
    "pink": "#ffc0cb",
    "brown": "#a52a2a",
    "cyan": "#00ffff",
    "magenta": "#ff00ff",
    "teal": "#008080",
    "navy": "#000080",
    "maroon": "#800000",
    "olive": "#808000",
    "lime": "#00ff00",
    "silver": "#c0c0c0",
    "gold": "#ffd700",
    "tomato": "#ff6347",
    "coral": "#ff7f50",
    "crimson": "#dc143c",
    "indigo": "#4b0082",
    "violet": "#ee82ee",
    "salmon": "#fa8072",
    "steelblue": "#4682b4",
    "slategray": "#708090",
    "darkorange": "#ff8c00",
    "forestgreen": "#228b22",
    "royalblue": "#4169e1",
}

# Guards against var() palettes that reference each other in a loop
_MAX_VAR_DEPTH = 8


def hex_to_rgb(value: str) -> tuple[int, int, int]:
    """Convert ``#rgb`` / ``#rrggbb`` to an RGB tuple.

    Raises:
        ValueError: If the value is not a hex color
    """
    if not _HEX_COLOR.match(value):
        raise ValueError(f"Not a hex color: {value!r}")
    digits = value[1:]
    if len(digits) == 3:
        digits = "".join(ch * 2 for ch in digits)
    return int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16)


def rgb_to_hex(rgb: tuple[int, int, int]) -> str:
    return "#{:02x}{:02x}{:02x}".format(*rgb)


def format_rgba(rgb: tuple[int, int, int], opacity: float) -> str:
    return f"rgba({rgb[0]}, {rgb[1]}, {rgb[2]}, {opacity:g})"


class ColorResolver:
    """Resolves configured color values to concrete colors."""

    def __init__(
        self,
        palette: Optional[dict[str, str]] = None,
        default_color: str = DEFAULT_COLOR,
        fill_opacity: float = DEFAULT_FILL_OPACITY,
    ):
        """Initialize resolver.

        Args:
            palette: CSS custom property values keyed by name (``--priority-high``)
            default_color: Fallback for missing or unresolvable colors
            fill_opacity: Alpha used for fill colors (0..1)
        """
        self.palette = {self._normalize_var_name(k): v for k, v in (palette or {}).items()}
        self.fill_opacity = fill_opacity
        resolved_default = self._resolve_rgb(default_color, 0)
        if resolved_default is None:
            logger.warning("Default color %r is not resolvable; using %s", default_color, DEFAULT_COLOR)
            resolved_default = hex_to_rgb(DEFAULT_COLOR)
        self._default_rgb = resolved_default

    @staticmethod
    def _normalize_var_name(name: str) -> str:
        name = name.strip()
        return name if name.startswith("--") else f"--{name}"

    def _resolve_rgb(self, value: Optional[str], depth: int) -> Optional[tuple[int, int, int]]:
        if not value:
            return None
        text = value.strip()

        if _HEX_COLOR.match(text):
            return hex_to_rgb(text)

        match = _RGB_COLOR.match(text)
        if match:
            channels = tuple(int(c) for c in match.groups())
            if all(0 <= c <= 255 for c in channels):
                return channels  # type: ignore[return-value]
            return None

        match = _CSS_VAR.match(text)
        if match:
            if depth >= _MAX_VAR_DEPTH:
                logger.warning("CSS variable chain too deep while resolving %r", value)
                return None
            name, fallback = match.groups()
            resolved = self._resolve_rgb(self.palette.get(name), depth + 1)
            if resolved is None and fallback:
                resolved = self._resolve_rgb(fallback, depth + 1)
            return resolved

        named = CSS_NAMED_COLORS.get(text.lower())
        return hex_to_rgb(named) if named else None

    def resolve(self, value: Optional[str]) -> tuple[int, int, int]:
        """Resolve ``value`` to RGB, falling back to the default color."""
        rgb = self._resolve_rgb(value, 0)
        if rgb is None:
            if value:
                logger.debug("Unresolvable color %r; using default", value)
            return self._default_rgb
        return rgb

    def border_color(self, value: Optional[str]) -> str:
        return rgb_to_hex(self.resolve(value))

    def fill_color(self, value: Optional[str]) -> str:
        return format_rgba(self.resolve(value), self.fill_opacity)

    def colors_for(self, value: Optional[str]) -> tuple[str, str]:
        """Return ``(border_color, fill_color)`` for a configured color value."""
        rgb = self.resolve(value)
        return rgb_to_hex(rgb), format_rgba(rgb, self.fill_opacity)
