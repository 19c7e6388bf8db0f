#!/usr/bin/env python3
"""Provenance tracking for output directories.

A transcripts.json index in each output directory maps output file names
back to the source session they were rendered from, so re-syncing can
replace or delete stale outputs.
"""

import logging
from pathlib import Path
from typing import Optional

import click
from pydantic import BaseModel, ValidationError

from .models import Transcript, UserMessage
from .utils import atomic_write_text

logger = logging.getLogger(__name__)

INDEX_FILENAME = "transcripts.json"
INDEX_VERSION = 1


class TranscriptEntry(BaseModel):
    """Where one output file came from and what it contains."""

    source: str
    session_id: str
    # 1-based, only set for sources that produced several transcripts
    segment_index: Optional[int] = None
    synced_at: str
    first_user_message: str = ""
    title: Optional[str] = None
    message_count: int = 0
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    cwd: Optional[str] = None


class TranscriptsIndex(BaseModel):
    version: int = INDEX_VERSION
    entries: dict[str, TranscriptEntry] = {}


# ========== Path Utilities ==========


def normalize_source_path(source_path: str) -> str:
    """Absolute source path for consistent index keys."""
    if source_path == "<stdin>":
        return source_path
    return str(Path(source_path).resolve())


# ========== Index I/O ==========


def load_index(output_dir: Path) -> TranscriptsIndex:
    """Load the index of an output directory.

    A missing file yields an empty index; a corrupt file or unknown version
    is reported and replaced by an empty index.
    """
    index_path = output_dir / INDEX_FILENAME
    try:
        content = index_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return TranscriptsIndex()
    except UnicodeDecodeError as e:
        logger.warning("Could not decode index file %s, starting fresh: %s", index_path, e)
        return TranscriptsIndex()
    try:
        index = TranscriptsIndex.model_validate_json(content)
    except ValidationError as e:
        logger.warning("Could not parse index file %s, starting fresh: %s", index_path, e)
        return TranscriptsIndex()
    if index.version != INDEX_VERSION:
        logger.warning(
            "Unknown index version %s in %s, creating fresh index",
            index.version,
            index_path,
        )
        return TranscriptsIndex()
    return index


def save_index(output_dir: Path, index: TranscriptsIndex) -> None:
    """Write the index atomically."""
    atomic_write_text(
        output_dir / INDEX_FILENAME, index.model_dump_json(indent=2) + "\n"
    )


# ========== Index Operations ==========


def get_outputs_for_source(index: TranscriptsIndex, source_path: str) -> list[str]:
    """Output file names recorded for a source path."""
    return [
        filename
        for filename, entry in index.entries.items()
        if entry.source == source_path
    ]


def set_entry(index: TranscriptsIndex, output_path: str, entry: TranscriptEntry) -> None:
    """Set or replace the entry of an output path (relative to the output directory)."""
    index.entries[output_path] = entry


def remove_entries_for_source(
    index: TranscriptsIndex, source_path: str
) -> list[tuple[str, TranscriptEntry]]:
    """Remove all entries of a source; returns them so they can be restored."""
    removed = [
        (filename, entry)
        for filename, entry in index.entries.items()
        if entry.source == source_path
    ]
    for filename, _ in removed:
        del index.entries[filename]
    return removed


def restore_entries(
    index: TranscriptsIndex, entries: list[tuple[str, TranscriptEntry]]
) -> None:
    for filename, entry in entries:
        index.entries[filename] = entry


# ========== File Operations ==========


def delete_output_files(
    output_dir: Path, filenames: list[str], quiet: bool = False
) -> None:
    """Delete output files, warning instead of failing when one can't be removed."""
    for filename in filenames:
        full_path = output_dir / filename
        try:
            full_path.unlink()
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning("Could not delete %s: %s", full_path, e)
            continue
        if not quiet:
            click.echo(f"Deleted: {full_path}", err=True)


# ========== Transcript Metadata Extraction ==========


def extract_first_user_message(transcript: Transcript) -> str:
    """Content of the first user message, or an empty string."""
    for message in transcript.messages:
        if isinstance(message, UserMessage):
            return message.content
    return ""
