"""Timestamp helpers. All stored timestamps are ISO-8601 strings."""

from datetime import datetime, timezone


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 string into an aware datetime.

    Naive values are assumed to be UTC. Returns None for empty or
    unparseable input.
    """
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def later_of(a: str | None, b: str | None) -> str | None:
    """Return whichever timestamp string is later (a wins ties)."""
    pa, pb = parse_timestamp(a), parse_timestamp(b)
    if pa is None:
        return b
    if pb is None:
        return a
    return b if pb > pa else a
