from __future__ import annotations

import json
from datetime import UTC, date, datetime, time, timedelta
from typing import Any


def now_utc() -> datetime:
    return datetime.now(UTC)


def now_utc_iso() -> str:
    return now_utc().isoformat()


def today_utc() -> date:
    return now_utc().date()


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=UTC)


def start_of_next_day(day: date) -> datetime:
    return start_of_day(day + timedelta(days=1))


def truncate(text: str, limit: int) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit].rstrip()


def find_json_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` span in ``text``.

    Braces inside JSON string literals are ignored, so prose such as
    ``Here you go: {"title": "a {b}"} thanks`` yields the object only.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        start = text.find("{", start + 1)
    return None


def extract_json_object(text: str) -> dict[str, Any]:
    span = find_json_object(text)
    if span is None:
        raise ValueError("No JSON object found in response text.")
    parsed = json.loads(span)
    if not isinstance(parsed, dict):
        raise ValueError("Embedded JSON is not an object.")
    return parsed
