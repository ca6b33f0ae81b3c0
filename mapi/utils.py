from datetime import datetime, timezone
from typing import Any


def capitalize(text: str) -> str:
    """Uppercase the first character, leave the rest untouched."""
    if not text:
        return text
    return text[0].upper() + text[1:]


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse an upstream timestamp.

    Accepts ISO 8601 strings (with or without "Z") and epoch values in
    seconds or milliseconds. Naive values are treated as UTC.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        # Epoch milliseconds are larger than any plausible epoch seconds
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
