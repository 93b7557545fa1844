"""Utility helper functions for the catalog engine."""

import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Union


def generate_uuid() -> str:
    """
    Generate a new UUID4 string.

    Returns:
        UUID4 string
    """
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """
    Get the current time as a timezone-aware UTC datetime.
    """
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> datetime:
    """
    Parse an ISO-8601 string (or pass through a datetime) into an aware UTC datetime.

    Naive values are assumed to be UTC. A trailing ``Z`` is accepted.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_tags(tags_str: str) -> List[str]:
    """
    Parse comma-separated tags string into list.

    Args:
        tags_str: Comma-separated tags (e.g., "tag1,tag2,tag3")

    Returns:
        List of trimmed tag strings
    """
    return [tag.strip() for tag in tags_str.split(',') if tag.strip()]


def normalize_tags(tags: Union[str, Iterable[str], None]) -> List[str]:
    """
    Strip, drop empties and de-duplicate tags while keeping first-seen order.
    A comma-separated string is accepted as well.
    """
    if isinstance(tags, str):
        tags = parse_tags(tags)
    seen = []
    for tag in tags or []:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen
