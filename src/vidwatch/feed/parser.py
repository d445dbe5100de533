"""Parsing of the feed's wrapped JSON payload into records."""

import json
import logging
import re
from typing import Any

from ..exceptions import MalformedPayloadError
from .models import UNRESOLVED_TITLE, Record

logger = logging.getLogger(__name__)

_ID = r"[A-Za-z0-9_-]{11}"

# Tried in order; the first match wins
VIDEO_ID_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(rf"[?&]v=({_ID})(?![A-Za-z0-9_-])"),  # watch?v=<id>
    re.compile(rf"youtu\.be/({_ID})(?![A-Za-z0-9_-])"),  # short link
    re.compile(rf"/embed/({_ID})(?![A-Za-z0-9_-])"),  # embed path
    re.compile(rf"^({_ID})$"),  # bare id
)

TITLE_COLUMN = 0
URL_COLUMN = 1


def extract_video_id(url: str | None) -> str | None:
    """Extract an 11-character video id from a URL-bearing cell.

    Args:
        url: Cell text, usually a watch, short-link or embed URL

    Returns:
        The video id, or None if no pattern matches
    """
    if not url:
        return None
    text = str(url).strip()
    for pattern in VIDEO_ID_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def extract_payload(text: str, prefix: str = "(", suffix: str = ")") -> dict[str, Any]:
    """Locate and decode the JSON object wrapped inside the feed text.

    The payload spans from just after the first ``prefix`` to just before
    the last ``suffix``.

    Raises:
        MalformedPayloadError: If the delimiters are missing or the JSON is invalid
    """
    start = text.find(prefix)
    end = text.rfind(suffix)
    if start == -1 or end == -1 or end <= start:
        raise MalformedPayloadError("Feed payload delimiters not found")

    try:
        payload = json.loads(text[start + len(prefix) : end])
    except json.JSONDecodeError as e:
        raise MalformedPayloadError(f"Feed payload is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise MalformedPayloadError("Feed payload is not a JSON object")
    return payload


def _cell_value(cells: list[Any], index: int) -> str:
    """Read ``cells[index].v`` as text, treating anything missing as empty."""
    if index >= len(cells):
        return ""
    cell = cells[index]
    if not isinstance(cell, dict):
        return ""
    value = cell.get("v")
    if value is None:
        return ""
    return str(value).strip()


def parse_rows(payload: dict[str, Any]) -> list[Record]:
    """Turn the decoded table into records.

    Rows without an extractable video id are skipped.
    """
    table = payload.get("table")
    if not isinstance(table, dict):
        return []
    rows = table.get("rows") or []

    records: list[Record] = []
    for row in rows:
        cells = row.get("c") if isinstance(row, dict) else None
        if not isinstance(cells, list):
            continue

        video_id = extract_video_id(_cell_value(cells, URL_COLUMN))
        if video_id is None:
            logger.debug("Skipping feed row without a video id: %r", row)
            continue

        title = _cell_value(cells, TITLE_COLUMN) or UNRESOLVED_TITLE
        records.append(Record(id=video_id, title=title))

    return records


def parse_feed(text: str, prefix: str = "(", suffix: str = ")") -> list[Record]:
    """Parse raw feed text into records.

    Raises:
        MalformedPayloadError: If no JSON payload can be located
    """
    return parse_rows(extract_payload(text, prefix, suffix))
