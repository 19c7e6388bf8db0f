#!/usr/bin/env python3
"""Parse and extract data from agent session JSONL files.

This module provides utility functions shared by the format adapters:
- parse_jsonl: Best-effort JSONL decoding with per-line warnings
- parse_timestamp / timestamp_to_epoch: ISO timestamp handling
- extract_text / flatten_result_content: Join text out of content blocks

For wire-format specific decoding, see adapters/.
"""

import json
from datetime import datetime, timezone
from typing import Any, Optional

from .models import TranscriptWarning


def parse_timestamp(timestamp_str: str) -> Optional[datetime]:
    """Parse ISO timestamp to datetime object."""
    try:
        return datetime.fromisoformat(timestamp_str.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return None


def timestamp_to_epoch(timestamp_str: Optional[str]) -> Optional[float]:
    """Convert an ISO timestamp to epoch seconds for ordering.

    Naive timestamps are taken as UTC so that aware and naive values from
    different records can still be compared.
    """
    if not timestamp_str:
        return None
    dt = parse_timestamp(timestamp_str)
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def epoch_to_iso(epoch: float) -> str:
    """Format epoch seconds as an ISO-8601 UTC timestamp with millisecond precision."""
    dt = datetime.fromtimestamp(epoch, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_jsonl(content: str) -> tuple[list[dict[str, Any]], list[TranscriptWarning]]:
    """Decode JSONL content, skipping lines that are not JSON objects.

    Returns:
        Tuple of (records, warnings). Each undecodable line produces one
        parse_error warning naming its 1-based line number.
    """
    records: list[dict[str, Any]] = []
    warnings: list[TranscriptWarning] = []

    for line_no, line in enumerate(content.split("\n"), 1):
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as e:
            warnings.append(
                TranscriptWarning(type="parse_error", detail=f"Line {line_no}: {e}")
            )
            continue
        if not isinstance(record, dict):
            warnings.append(
                TranscriptWarning(
                    type="parse_error",
                    detail=f"Line {line_no}: not a JSON object",
                )
            )
            continue
        records.append(record)

    return records, warnings


def extract_text(content: Any) -> str:
    """Extract text from a string or a list of content blocks.

    Text blocks are joined with newlines. Non-dict blocks are ignored.
    """
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    parts: list[str] = []
    for block in content:
        if isinstance(block, dict) and block.get("type") == "text":
            text = block.get("text")
            if isinstance(text, str) and text:
                parts.append(text)
    return "\n".join(parts)


def flatten_result_content(content: Any) -> str:
    """Flatten tool result content (string or text block list) into plain text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return extract_text(content)
    return str(content)
