# wg_busy/status/formatting.py
"""Human readable renderings of counters, rates and times"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union

KB = 1024
MB = 1024 * KB
GB = 1024 * MB
TB = 1024 * GB

_UNITS = ((TB, "TB"), (GB, "GB"), (MB, "MB"), (KB, "KB"))


def format_bytes(num_bytes: int) -> str:
    """1536 -> '1.5 KB'"""
    for size, unit in _UNITS:
        if num_bytes >= size:
            return f"{num_bytes / size:.1f} {unit}"
    return f"{num_bytes} B"


def format_bytes_per_sec(rate: float) -> str:
    return format_bytes(int(rate)) + "/s"


def format_duration(duration: Union[timedelta, float]) -> str:
    """
    Uptime style: '42s', '5m 3s', '2h 10m', '1d 2h 3m'
    """
    if isinstance(duration, timedelta):
        seconds = int(duration.total_seconds())
    else:
        seconds = int(duration)

    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"

    hours = seconds // 3600
    minutes = (seconds // 60) % 60
    if hours >= 24:
        return f"{hours // 24}d {hours % 24}h {minutes}m"
    return f"{hours}h {minutes}m"


def format_handshake(handshake: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Relative time since the last handshake, 'never' when there was none"""
    if handshake is None:
        return "never"

    now = now or datetime.now(timezone.utc)
    seconds = int((now - handshake).total_seconds())

    if seconds < 60:
        return f"{seconds}s ago"
    elif seconds < 3600:
        return f"{seconds // 60}m ago"
    elif seconds < 86400:
        return f"{seconds // 3600}h ago"
    else:
        return f"{seconds // 86400}d ago"
