from __future__ import annotations
import re
from datetime import timedelta

_UNIT = {"m": 60, "h": 3600, "d": 86400, "w": 604800}
_RX = re.compile(r"(\d+)\s*([mhdw])", re.I)

def parse_duration(text: str, default_unit: str = "h") -> timedelta:
    """'12' (hours by default), '90m', '1d12h', '1w'."""
    text = text.strip().lower()
    if text.isdigit():
        total = int(text) * _UNIT[default_unit]
    else:
        total = sum(int(value) * _UNIT[unit] for value, unit in _RX.findall(text))
    if total <= 0:
        raise ValueError(f"Invalid or zero duration: '{text}'")
    return timedelta(seconds=total)

def humanize(delta: timedelta) -> str:
    hours, rem = divmod(int(delta.total_seconds()), 3600)
    minutes = rem // 60
    parts = []
    if hours:
        parts.append(f"{hours} hour{'s' if hours != 1 else ''}")
    if minutes:
        parts.append(f"{minutes} minute{'s' if minutes != 1 else ''}")
    return " ".join(parts) or "0 minutes"
