"""
Cell color classification for the document register.

Register color coding (set by hand on the date cell):
  Red font          = excluded       → no reminder, no alert, no log entry
  Yellow background = under inspection / renewal in progress → hold bucket

Only explicitly set colors (userEnteredFormat) can be read reliably.
Colors produced by conditional formatting rules are not visible here.
"""

import re

_HEX_RE = re.compile(r"^#[0-9a-f]{6}$")

# Known swatches from the Sheets palette
EXCLUSION_COLORS = {
    "#ff0000",  # red
    "#ea4335",  # Google red
    "#cc0000",  # dark red 1
    "#e06666",  # light red 1
    "#980000",  # red berry
}

HOLD_COLORS = {
    "#ffff00",  # yellow
    "#fff2cc",  # light yellow 3
    "#ffe599",  # light yellow 2
    "#ffd966",  # light yellow 1
    "#fce8b2",  # Google light yellow
    "#fbbc04",  # Google yellow
    "#f1c232",  # dark yellow 1
}


def normalize_hex(value) -> str:
    """Return a lowercase 7-char '#rrggbb' string, or '' if *value* is not a color."""
    if not value or not isinstance(value, str):
        return ""
    h = value.strip().lower()
    if not h.startswith("#"):
        h = "#" + h
    if len(h) == 4:
        h = "#" + "".join(c * 2 for c in h[1:])
    return h if _HEX_RE.match(h) else ""


def _rgb(hex_value: str) -> tuple[int, int, int] | None:
    h = normalize_hex(hex_value)
    if not h:
        return None
    return int(h[1:3], 16), int(h[3:5], 16), int(h[5:7], 16)


def rgb_to_hex(color: dict | None) -> str:
    """Convert a Sheets API color object (channels 0-1) to '#rrggbb'.

    The API omits channels that are 0, so {"red": 1} is pure red and an
    empty dict is black. None means no explicit color was set.
    """
    if color is None:
        return ""
    channels = []
    for name in ("red", "green", "blue"):
        v = color.get(name, 0.0) or 0.0
        channels.append(max(0, min(255, round(float(v) * 255))))
    return "#{:02x}{:02x}{:02x}".format(*channels)


def is_exclusion_color(value) -> bool:
    """True if a font color marks the document as excluded (red)."""
    h = normalize_hex(value)
    if not h:
        return False
    if h in EXCLUSION_COLORS:
        return True
    r, g, b = _rgb(h)
    return r >= 180 and g <= 80 and b <= 80


def is_hold_color(value) -> bool:
    """True if a background color marks the document as under inspection (yellow)."""
    h = normalize_hex(value)
    if not h:
        return False
    if h in HOLD_COLORS:
        return True
    r, g, b = _rgb(h)
    return r >= 200 and g >= 200 and b <= 160
