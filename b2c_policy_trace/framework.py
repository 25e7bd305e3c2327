"""Shared primitives used by both pipelines."""

from __future__ import annotations

import datetime as dt
import hashlib
import json
import re
from pathlib import Path
from typing import Any

_FRACTION_RE = re.compile(r"\.(\d+)")


def utc_now() -> str:
    return dt.datetime.now(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def text_checksum(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def as_list(value: Any) -> list[Any]:
    """Return ``value`` as a list: ``None`` and ``""`` become empty."""
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return value
    return [value]


def parse_timestamp(value: str | dt.datetime) -> dt.datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if isinstance(value, dt.datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        # fromisoformat before 3.11 only takes 3 or 6 fractional digits.
        match = _FRACTION_RE.search(text)
        if match:
            digits = match.group(1)[:6].ljust(6, "0")
            text = text[: match.start()] + "." + digits + text[match.end() :]
        parsed = dt.datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


def elapsed_ms(start: dt.datetime, end: dt.datetime) -> int:
    return int(round((end - start).total_seconds() * 1000))


def isoformat(value: dt.datetime) -> str:
    return value.astimezone(dt.timezone.utc).isoformat().replace("+00:00", "Z")


def child_elements(node: Any, *path: str) -> list[Any]:
    """Collect the elements found under ``path``; each hop may be single or a list."""
    current = [node]
    for name in path:
        found: list[Any] = []
        for item in current:
            if isinstance(item, dict):
                found.extend(as_list(item.get(name)))
        current = found
    return current
