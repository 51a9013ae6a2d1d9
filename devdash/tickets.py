"""Issue-tracker references (``PX-12345``) in commit messages and PR text."""
import re
from typing import Iterable, List, Pattern

DEFAULT_PREFIX = "PX"
DEFAULT_MIN_NUMBER = 10000

# Numbers used in docs/tests, never real tickets
PLACEHOLDER_NUMBERS = ("0", "123")


def ticket_pattern(prefix: str = DEFAULT_PREFIX) -> Pattern[str]:
    return re.compile(rf"{re.escape(prefix)}-(\d+)", re.IGNORECASE)


def extract_tickets(text: str, prefix: str = DEFAULT_PREFIX) -> List[str]:
    """Return unique ticket keys in first-seen order, upper-cased, placeholders removed."""
    prefix = prefix.upper()
    out: List[str] = []
    for m in ticket_pattern(prefix).finditer(text or ""):
        num = m.group(1)
        if num in PLACEHOLDER_NUMBERS:
            continue
        key = f"{prefix}-{num}"
        if key not in out:
            out.append(key)
    return out


def extract_tickets_from_messages(
    messages: Iterable[str],
    prefix: str = DEFAULT_PREFIX,
    min_number: int = DEFAULT_MIN_NUMBER,
) -> List[str]:
    """Union of tickets over many messages, sorted by number.

    Numbers below ``min_number`` are dropped (dummy values in real history).
    """
    prefix = prefix.upper()
    pat = ticket_pattern(prefix)
    found = {}
    for msg in messages:
        for m in pat.finditer(msg or ""):
            n = int(m.group(1))
            if n >= min_number:
                found[n] = f"{prefix}-{m.group(1)}"
    return [found[n] for n in sorted(found)]


def ticket_url(base_url: str, key: str) -> str:
    return f"{base_url.rstrip('/')}/browse/{key}"
