#!/usr/bin/env python3
"""Utility functions for text formatting and output naming."""

import os
import re
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from .parser import parse_timestamp

if TYPE_CHECKING:
    from .models import Transcript


def truncate(text: str, max_len: int) -> str:
    """Truncate text to max_len characters, appending '...' when cut."""
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."


def format_timestamp(timestamp_str: Optional[str]) -> str:
    """Format ISO timestamp for display, converting to UTC."""
    if not timestamp_str:
        return ""
    dt = parse_timestamp(timestamp_str)
    if dt is None:
        return timestamp_str
    if dt.tzinfo is not None:
        utc_timetuple = dt.utctimetuple()
        dt = datetime(
            utc_timetuple.tm_year,
            utc_timetuple.tm_mon,
            utc_timetuple.tm_mday,
            utc_timetuple.tm_hour,
            utc_timetuple.tm_min,
            utc_timetuple.tm_sec,
        )
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def format_timestamp_range(
    first_timestamp: Optional[str], last_timestamp: Optional[str]
) -> str:
    """Format a timestamp range for display."""
    first = format_timestamp(first_timestamp)
    last = format_timestamp(last_timestamp)
    if first and last and first != last:
        return f"{first} - {last}"
    return first or last


# =============================================================================
# Output Naming
# =============================================================================

_SESSION_EXTENSION_PATTERN = re.compile(r"\.jsonl?$")


def extract_session_id(input_path: str) -> str:
    """Extract the session id (file name without .json/.jsonl) from an input path."""
    if input_path == "<stdin>":
        return "stdin"
    # Split on either separator so Windows-style paths work everywhere
    name = re.split(r"[/\\]", input_path)[-1]
    return _SESSION_EXTENSION_PATTERN.sub("", name)


def format_datetime_prefix(timestamp_str: Optional[str]) -> str:
    """Format a timestamp as 'YYYY-MM-DD-HHMM' in local time.

    Falls back to the current time when the timestamp is missing or invalid.
    """
    dt = parse_timestamp(timestamp_str) if timestamp_str else None
    if dt is None:
        dt = datetime.now()
    elif dt.tzinfo is not None:
        dt = dt.astimezone()
    return dt.strftime("%Y-%m-%d-%H%M")


def generate_output_name(transcript: "Transcript", input_path: str) -> str:
    """Generate the output base name '{datetime}-{session_id}' for a transcript."""
    first_timestamp = transcript.messages[0].timestamp if transcript.messages else None
    return f"{format_datetime_prefix(first_timestamp)}-{extract_session_id(input_path)}"


def output_name_for_index(base_name: str, index: int, count: int) -> str:
    """Append an '_{index}' suffix when a source produced several transcripts."""
    if count > 1:
        return f"{base_name}_{index}"
    return base_name


def atomic_write_text(path: Path, content: str) -> None:
    """Write content to path via a temp file and rename.

    Readers never see a partially written file. The temp file is removed if
    the write or the rename fails.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.{os.getpid()}.tmp")
    try:
        tmp_path.write_text(content, encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise
