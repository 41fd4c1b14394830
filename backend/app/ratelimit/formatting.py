from __future__ import annotations

import math
from typing import Optional, Sequence

from app.ratelimit.registry import RateLimitStatusEntry

MINUTE_MS = 60 * 1000


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'}"


def format_remaining_time(ms: float) -> str:
    """Render a duration as whole minutes, or whole hours from one hour up. Rounds up."""
    if ms <= 0:
        return _plural(0, "minute")
    minutes = math.ceil(ms / MINUTE_MS)
    if minutes < 60:
        return _plural(minutes, "minute")
    return _plural(math.ceil(minutes / 60), "hour")


def too_many_attempts_message(remaining_ms: Optional[int]) -> str:
    time_str = format_remaining_time(remaining_ms) if remaining_ms else "some time"
    return f"Too many attempts. Please try again in {time_str}."


def build_status_table(entries: Sequence[RateLimitStatusEntry]) -> str:
    """Fixed-width table of limiter states for operator output."""
    headers = ("key", "attempts", "remaining", "locked for")
    rows = [
        (
            entry.key,
            str(entry.attempts),
            "-" if entry.remaining_attempts is None else str(entry.remaining_attempts),
            format_remaining_time(entry.time_remaining) if entry.time_remaining else "-",
        )
        for entry in entries
    ]
    widths = [
        max(len(headers[i]), *(len(row[i]) for row in rows)) if rows else len(headers[i])
        for i in range(len(headers))
    ]

    def line(cells: Sequence[str]) -> str:
        return "  ".join(cell.ljust(width) for cell, width in zip(cells, widths)).rstrip()

    out = [line(headers), line(["-" * w for w in widths])]
    out.extend(line(row) for row in rows)
    return "\n".join(out)
