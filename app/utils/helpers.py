"""
Shared Utility Functions

Common helper functions used across multiple modules.
"""

import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "refs/heads/"


def flatten_list(items: Any) -> List[str]:
    """
    Flatten a potentially nested list to a single-level list of strings.

    Handles the shapes mention lists arrive in from YAML or JSON config:
    - Nested lists: [["a", "b"]] → ["a", "b"]
    - Flat lists: ["a", "b"] → ["a", "b"]
    - Comma separated string: "a, b" → ["a", "b"]
    - None/empty: None → []

    Blank entries are dropped.

    Args:
        items: Any value that could be a list, nested list, or string

    Returns:
        Flat list of non-empty strings
    """
    if not items:
        return []

    if isinstance(items, str):
        return [part.strip() for part in items.split(",") if part.strip()]

    if not isinstance(items, (list, tuple)):
        return [str(items)]

    result = []
    for item in items:
        if isinstance(item, (list, tuple)):
            result.extend(flatten_list(item))
        elif item is None:
            continue
        else:
            value = str(item).strip()
            if value:
                result.append(value)

    return result


def strip_ref_name(ref_name: Optional[str]) -> Optional[str]:
    """
    Turn a git ref into a branch name.

    refs/heads/feature/x → feature/x. Anything else is returned trimmed,
    and blank input gives None so callers can apply their own placeholder.
    """
    if not ref_name or not ref_name.strip():
        return None
    ref_name = ref_name.strip()
    if ref_name.startswith(BRANCH_PREFIX):
        ref_name = ref_name[len(BRANCH_PREFIX):]
    return ref_name or None


def first_non_empty(*values: Optional[str]) -> Optional[str]:
    """Return the first value that is a non-blank string, stripped."""
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def truncate_text(text: str, max_length: int, suffix: str = "…") -> str:
    """Cut text to max_length characters, marking the cut with suffix."""
    if max_length <= 0:
        return ""
    if len(text) <= max_length:
        return text
    return text[: max(0, max_length - len(suffix))] + suffix


def is_http_url(value: Optional[str]) -> bool:
    """True for absolute http(s) links; placeholders like '#' are rejected."""
    return bool(value) and value.lower().startswith(("http://", "https://"))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_epoch_ms(moment: datetime) -> int:
    """Milliseconds since epoch. Naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def from_epoch_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
