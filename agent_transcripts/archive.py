#!/usr/bin/env python3
"""Archive: persistent storage for parsed transcripts.

Archive entries live at {archive_dir}/{session_id}.json and contain the full
parsed transcripts plus what is needed to decide whether they are still
fresh (source content hash, adapter version, schema version).
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import click
from pydantic import BaseModel, ValidationError

from .adapters import Adapter, DiscoveredSession, discover_sessions
from .cache import compute_content_hash
from .models import Transcript, TranscriptMetadata
from .provenance import extract_first_user_message
from .utils import atomic_write_text, extract_session_id

logger = logging.getLogger(__name__)

ARCHIVE_SCHEMA_VERSION = 2


def get_archive_dir() -> Path:
    """Get the archive directory, respecting AGENT_TRANSCRIPTS_ARCHIVE_DIR.

    Priority: AGENT_TRANSCRIPTS_ARCHIVE_DIR env var >
    ~/.local/share/agent-transcripts/archive.
    """
    env_path = os.getenv("AGENT_TRANSCRIPTS_ARCHIVE_DIR")
    if env_path:
        return Path(env_path)
    return Path.home() / ".local" / "share" / "agent-transcripts" / "archive"


# ========== Data Models ==========


class ArchiveEntry(BaseModel):
    session_id: str
    source_path: str
    source_hash: str
    adapter_name: str
    adapter_version: str
    schema_version: int
    archived_at: str
    title: Optional[str] = None
    transcripts: list[Transcript] = []


class TranscriptSummary(BaseModel):
    """Per-transcript summary for indexing (no message bodies)."""

    first_message_timestamp: str = ""
    first_user_message: str = ""
    metadata: TranscriptMetadata


class ArchiveEntryHeader(BaseModel):
    """Entry metadata with message bodies dropped."""

    session_id: str
    source_path: str
    source_hash: str
    title: Optional[str] = None
    segments: list[TranscriptSummary] = []


class ArchiveError(BaseModel):
    session_id: str
    error: str


class ArchiveResult(BaseModel):
    updated: list[str] = []
    current: list[str] = []
    errors: list[ArchiveError] = []


# ========== Load / Save ==========


def _entry_path(archive_dir: Path, session_id: str) -> Path:
    return archive_dir / f"{session_id}.json"


def _read_entry(path: Path) -> Optional[ArchiveEntry]:
    try:
        return ArchiveEntry.model_validate_json(path.read_text(encoding="utf-8"))
    except (ValidationError, UnicodeDecodeError) as e:
        logger.warning("Invalid archive entry %s, skipping: %s", path.name, e)
        return None


def load_entry(archive_dir: Path, session_id: str) -> Optional[ArchiveEntry]:
    """Load an archive entry; None when missing or invalid."""
    try:
        return _read_entry(_entry_path(archive_dir, session_id))
    except FileNotFoundError:
        return None


def save_entry(archive_dir: Path, entry: ArchiveEntry) -> None:
    """Write an archive entry atomically."""
    atomic_write_text(
        _entry_path(archive_dir, entry.session_id),
        entry.model_dump_json(indent=2) + "\n",
    )


def is_fresh(entry: ArchiveEntry, source_hash: str, adapter: Adapter) -> bool:
    """Whether an entry was built from this content by this adapter version and schema."""
    return (
        entry.source_hash == source_hash
        and entry.adapter_version == adapter.version
        and entry.schema_version == ARCHIVE_SCHEMA_VERSION
    )


# ========== Archiving ==========


def archive_session(
    archive_dir: Path, session: DiscoveredSession, adapter: Adapter
) -> tuple[ArchiveEntry, bool]:
    """Archive one session, re-parsing only when the entry is stale.

    Returns:
        Tuple of (entry, updated). A fresh entry is still rewritten when the
        harness-recorded title changed.
    """
    session_id = extract_session_id(str(session.path))
    content = session.path.read_text(encoding="utf-8", errors="replace")
    source_hash = compute_content_hash(content)

    existing = load_entry(archive_dir, session_id)
    if existing is not None and is_fresh(existing, source_hash, adapter):
        if session.summary and existing.title != session.summary:
            existing.title = session.summary
            save_entry(archive_dir, existing)
            return existing, True
        return existing, False

    transcripts = adapter.parse(content, str(session.path))
    entry = ArchiveEntry(
        session_id=session_id,
        source_path=str(session.path),
        source_hash=source_hash,
        adapter_name=adapter.name,
        adapter_version=adapter.version,
        schema_version=ARCHIVE_SCHEMA_VERSION,
        archived_at=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        title=session.summary or (existing.title if existing else None),
        transcripts=transcripts,
    )
    save_entry(archive_dir, entry)
    return entry, True


def archive_all(
    archive_dir: Path,
    source_dir: Path,
    adapters: Optional[list[Adapter]] = None,
    quiet: bool = False,
) -> ArchiveResult:
    """Archive every session the adapters discover under source_dir.

    Failures are collected per session rather than aborting the run.
    """
    result = ArchiveResult()
    for session, adapter in discover_sessions(source_dir, adapters):
        session_id = extract_session_id(str(session.path))
        try:
            _, updated = archive_session(archive_dir, session, adapter)
        except (OSError, ValueError) as e:
            result.errors.append(ArchiveError(session_id=session_id, error=str(e)))
            if not quiet:
                click.echo(f"Error archiving {session_id}: {e}", err=True)
            continue
        if updated:
            result.updated.append(session_id)
            if not quiet:
                click.echo(f"Archived: {session_id}", err=True)
        else:
            result.current.append(session_id)
    return result


# ========== Listing ==========


def list_entries(archive_dir: Path) -> list[ArchiveEntry]:
    """All valid entries in the archive, sorted by file name."""
    if not archive_dir.is_dir():
        return []
    entries: list[ArchiveEntry] = []
    for path in sorted(archive_dir.glob("*.json")):
        try:
            entry = _read_entry(path)
        except OSError as e:
            logger.warning("Could not read archive file %s: %s", path.name, e)
            continue
        if entry is not None:
            entries.append(entry)
    return entries


def summarize_transcript(transcript: Transcript) -> TranscriptSummary:
    return TranscriptSummary(
        first_message_timestamp=(
            transcript.messages[0].timestamp if transcript.messages else ""
        ),
        first_user_message=extract_first_user_message(transcript),
        metadata=transcript.metadata,
    )


def list_entry_headers(archive_dir: Path) -> list[ArchiveEntryHeader]:
    """Entry headers only: each entry is read but message bodies are discarded."""
    return [
        ArchiveEntryHeader(
            session_id=entry.session_id,
            source_path=entry.source_path,
            source_hash=entry.source_hash,
            title=entry.title,
            segments=[summarize_transcript(t) for t in entry.transcripts],
        )
        for entry in list_entries(archive_dir)
    ]
