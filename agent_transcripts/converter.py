#!/usr/bin/env python3
"""Convert agent session logs to Markdown or HTML transcripts."""

import logging
import re
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import click
import dateparser

from .adapters import (
    Adapter,
    DiscoveredSession,
    detect_adapter,
    discover_sessions,
    get_adapter,
    list_adapters,
)
from .cache import (
    CacheEntry,
    SegmentCache,
    compute_content_hash,
    get_cached_segments,
    get_cached_title,
    get_library_version,
    load_cache,
    save_cache,
)
from .models import Transcript
from .parser import parse_timestamp
from .provenance import (
    TranscriptEntry,
    TranscriptsIndex,
    delete_output_files,
    extract_first_user_message,
    get_outputs_for_source,
    load_index,
    normalize_source_path,
    remove_entries_for_source,
    restore_entries,
    save_index,
    set_entry,
)
from .renderer import get_renderer
from .utils import (
    atomic_write_text,
    extract_session_id,
    generate_output_name,
    output_name_for_index,
    truncate,
)

logger = logging.getLogger(__name__)

STDIN_PATH = "<stdin>"


def get_file_extension(format: str) -> str:
    """Get the file extension for a format.

    Raises:
        ValueError: If the format is not supported.
    """
    return get_renderer(format).extension


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# ========== Input ==========


def read_input(input: Optional[str] = None) -> tuple[str, str]:
    """Read a session log from a file, or from stdin for None or '-'.

    Returns:
        Tuple of (content, input path); the path is '<stdin>' for stdin.

    Raises:
        FileNotFoundError: If the input file does not exist.
    """
    if input is None or input == "-":
        return sys.stdin.read(), STDIN_PATH
    path = Path(input)
    if not path.is_file():
        raise FileNotFoundError(f"Input file not found: {input}")
    return path.read_text(encoding="utf-8", errors="replace"), input


def resolve_adapter(input_path: str, adapter_name: Optional[str] = None) -> Adapter:
    """Pick the adapter named explicitly, or the one detected from the path.

    Raises:
        ValueError: If the adapter is unknown or can't be detected.
    """
    available = ", ".join(list_adapters())
    name = adapter_name
    if not name and input_path != STDIN_PATH:
        name = detect_adapter(input_path)
    if not name:
        raise ValueError(
            f"Could not detect adapter for input. Use --adapter to specify. Available: {available}"
        )
    adapter = get_adapter(name)
    if adapter is None:
        raise ValueError(f"Unknown adapter: {name}. Available: {available}")
    return adapter


def parse_to_transcripts(
    input: Optional[str] = None, adapter: Optional[str] = None
) -> tuple[list[Transcript], str]:
    """Read and parse a session log.

    Returns:
        Tuple of (transcripts, input path).
    """
    content, input_path = read_input(input)
    return resolve_adapter(input_path, adapter).parse(content, input_path), input_path


def filter_transcripts_by_date(
    transcripts: list[Transcript], from_date: Optional[str], to_date: Optional[str]
) -> list[Transcript]:
    """Keep transcripts with at least one message inside the date range.

    Date parsing is done in UTC to match transcript timestamps which are
    stored in UTC. Whole transcripts are kept so their trees stay intact.
    """
    if not from_date and not to_date:
        return transcripts

    dateparser_settings: Any = {"TIMEZONE": "UTC", "RETURN_AS_TIMEZONE_AWARE": False}
    from_dt = None
    to_dt = None

    if from_date:
        from_dt = dateparser.parse(from_date, settings=dateparser_settings)
        if not from_dt:
            raise ValueError(f"Could not parse from-date: {from_date}")
        # Relative day words start at the beginning of the day
        if from_date in ["today", "yesterday"] or "days ago" in from_date:
            from_dt = from_dt.replace(hour=0, minute=0, second=0, microsecond=0)

    if to_date:
        to_dt = dateparser.parse(to_date, settings=dateparser_settings)
        if not to_dt:
            raise ValueError(f"Could not parse to-date: {to_date}")
        # ...and end at the end of the day
        if to_date in ["today", "yesterday"] or "days ago" in to_date:
            to_dt = to_dt.replace(hour=23, minute=59, second=59, microsecond=999999)

    def in_range(timestamp: str) -> bool:
        message_dt = parse_timestamp(timestamp)
        if message_dt is None:
            return False
        # Compare as naive UTC, like dateparser returns
        if message_dt.tzinfo:
            message_dt = message_dt.astimezone(timezone.utc).replace(tzinfo=None)
        if from_dt and message_dt < from_dt:
            return False
        if to_dt and message_dt > to_dt:
            return False
        return True

    return [
        transcript
        for transcript in transcripts
        if any(in_range(message.timestamp) for message in transcript.messages)
    ]


# ========== Rendering ==========


def render_transcript(
    transcript: Transcript,
    format: str = "md",
    head: Optional[str] = None,
    title: Optional[str] = None,
    source_path: Optional[str] = None,
) -> str:
    """Render one transcript to Markdown or HTML."""
    return get_renderer(format).generate(
        transcript, head=head, title=title, source_path=source_path
    )


def _build_entry(
    transcript: Transcript,
    source_key: str,
    input_path: str,
    segment_index: Optional[int],
    title: Optional[str],
) -> TranscriptEntry:
    return TranscriptEntry(
        source=source_key,
        session_id=extract_session_id(input_path),
        segment_index=segment_index,
        synced_at=_now_iso(),
        first_user_message=truncate(extract_first_user_message(transcript), 200),
        title=title,
        message_count=transcript.metadata.message_count,
        start_time=transcript.metadata.start_time,
        end_time=transcript.metadata.end_time,
        cwd=transcript.metadata.cwd,
    )


def _replace_source_outputs(
    output_dir: Path,
    index: TranscriptsIndex,
    source_key: str,
    extension: str,
    outputs: list[tuple[str, str, TranscriptEntry]],
    quiet: bool,
) -> None:
    """Write a source's outputs and swap its provenance entries.

    Only entries with the same extension are replaced. Outputs the source
    produced before but not now are deleted once every new file is written.
    On failure the previous entries are restored.
    """
    removed = remove_entries_for_source(index, source_key)
    restore_entries(
        index,
        [pair for pair in removed if not pair[0].endswith(f".{extension}")],
    )
    removed = [pair for pair in removed if pair[0].endswith(f".{extension}")]
    try:
        for filename, content, entry in outputs:
            output_path = output_dir / filename
            atomic_write_text(output_path, content)
            set_entry(index, filename, entry)
            if not quiet:
                click.echo(f"Wrote: {output_path}", err=True)
    except OSError:
        for filename, _, _ in outputs:
            index.entries.pop(filename, None)
        restore_entries(index, removed)
        raise
    new_names = {filename for filename, _, _ in outputs}
    delete_output_files(
        output_dir,
        [filename for filename, _ in removed if filename not in new_names],
        quiet=quiet,
    )


def convert_to_directory(
    input: Optional[str],
    output_dir: Path,
    adapter: Optional[str] = None,
    head: Optional[str] = None,
    format: str = "md",
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
    quiet: bool = False,
) -> list[Path]:
    """Convert a session log into one output file per transcript.

    Files are named '{datetime}-{session_id}[_{i}].{ext}' and recorded in the
    directory's provenance index.
    """
    transcripts, input_path = parse_to_transcripts(input, adapter)
    transcripts = filter_transcripts_by_date(transcripts, from_date, to_date)
    renderer = get_renderer(format)
    source_path = None if input_path == STDIN_PATH else str(Path(input_path).resolve())
    source_key = normalize_source_path(input_path)

    outputs: list[tuple[str, str, TranscriptEntry]] = []
    for i, transcript in enumerate(transcripts, start=1):
        segment_index = i if len(transcripts) > 1 else None
        base_name = output_name_for_index(
            generate_output_name(transcript, input_path), i, len(transcripts)
        )
        filename = f"{base_name}.{renderer.extension}"
        content = renderer.generate(transcript, head=head, source_path=source_path)
        outputs.append(
            (
                filename,
                content,
                _build_entry(transcript, source_key, input_path, segment_index, None),
            )
        )

    output_dir.mkdir(parents=True, exist_ok=True)
    index = load_index(output_dir)
    _replace_source_outputs(
        output_dir, index, source_key, renderer.extension, outputs, quiet
    )
    save_index(output_dir, index)
    return [output_dir / filename for filename, _, _ in outputs]


# ========== Intermediate JSON ==========


def get_parse_output_paths(
    transcripts: list[Transcript], input_path: str, output: Optional[str] = None
) -> list[Path]:
    """Output paths for intermediate JSON: 'name.json' or 'name_{i}.json'.

    An output with a file extension names the file; any other output is a
    directory. Without an output, files go to the current directory.
    """
    base_name = "transcript" if input_path == STDIN_PATH else extract_session_id(input_path)
    if output and re.search(r"\.\w+$", output):
        output_dir = Path(output).parent
        base_name = Path(output).stem
    elif output:
        output_dir = Path(output)
    else:
        output_dir = Path.cwd()
    return [
        output_dir / f"{output_name_for_index(base_name, i, len(transcripts))}.json"
        for i in range(1, len(transcripts) + 1)
    ]


def write_intermediate_json(
    input: Optional[str],
    output: Optional[str] = None,
    adapter: Optional[str] = None,
    quiet: bool = False,
) -> list[Path]:
    """Parse a session log and write each transcript as JSON."""
    transcripts, input_path = parse_to_transcripts(input, adapter)
    output_paths = get_parse_output_paths(transcripts, input_path, output)
    for transcript, output_path in zip(transcripts, output_paths):
        atomic_write_text(output_path, transcript.model_dump_json(indent=2) + "\n")
        if not quiet:
            click.echo(f"Wrote: {output_path}", err=True)
    return output_paths


def load_transcript_json(input: Optional[str] = None) -> Transcript:
    """Load an intermediate JSON transcript.

    Raises:
        ValueError: If the JSON is not a valid transcript.
    """
    content, _ = read_input(input)
    return Transcript.model_validate_json(content)


# ========== Sync ==========


@dataclass
class SyncResult:
    synced: int = 0
    skipped: int = 0
    errors: int = 0


def compute_output_path(
    relative_path: str, extension: str, segment_index: Optional[int] = None
) -> str:
    """Mirror a session's relative path with the output extension."""
    base = re.sub(r"\.[^./]+$", "", relative_path)
    suffix = f"_{segment_index}" if segment_index else ""
    return f"{base}{suffix}.{extension}"


def _is_up_to_date(output_dir: Path, filenames: list[str], source_mtime: float) -> bool:
    if not filenames:
        return False
    for filename in filenames:
        try:
            if (output_dir / filename).stat().st_mtime < source_mtime:
                return False
        except OSError:
            return False
    return True


def _render_segments(
    transcripts: list[Transcript],
    session: DiscoveredSession,
    content: str,
    format: str,
    cache_dir: Optional[Path],
) -> tuple[list[str], list[Optional[str]]]:
    """Rendered output and title per transcript, reusing the render cache."""
    source_key = normalize_source_path(str(session.path))
    content_hash = compute_content_hash(content)
    library_version = get_library_version()
    cached = load_cache(source_key, cache_dir)
    titles = [
        session.summary or get_cached_title(cached, content_hash, i)
        for i in range(len(transcripts))
    ]

    segments = get_cached_segments(cached, content_hash, format, library_version)
    if segments is not None and len(segments) == len(transcripts):
        logger.debug("Render cache hit for %s", session.path)
        return [getattr(segment, format) for segment in segments], titles

    renderer = get_renderer(format)
    rendered = [
        renderer.generate(t, title=title, source_path=str(session.path))
        for t, title in zip(transcripts, titles)
    ]

    # Keep output of the other format when it was built from the same content
    reusable = (
        cached is not None
        and cached.content_hash == content_hash
        and cached.library_version == library_version
        and len(cached.segments) == len(transcripts)
    )
    new_segments: list[SegmentCache] = []
    for i, (output, title) in enumerate(zip(rendered, titles)):
        segment = cached.segments[i].model_copy() if reusable and cached else SegmentCache()
        segment.title = title
        setattr(segment, format, output)
        new_segments.append(segment)
    save_cache(
        source_key,
        CacheEntry(
            content_hash=content_hash,
            library_version=library_version,
            segments=new_segments,
        ),
        cache_dir,
    )
    return rendered, titles


def _write_index_page(output_dir: Path, index: TranscriptsIndex) -> None:
    renderer = get_renderer("html")
    entries: list[dict[str, Any]] = []
    for filename, entry in index.entries.items():
        if not filename.endswith(".html") or not (output_dir / filename).exists():
            continue
        entries.append(
            {
                "filename": filename,
                "title": entry.title
                or truncate(entry.first_user_message, 80)
                or filename,
                "start_time": entry.start_time,
                "end_time": entry.end_time,
                "message_count": entry.message_count,
                "cwd": entry.cwd,
                "first_user_message": entry.first_user_message,
            }
        )
    page = renderer.generate_index(entries)
    if page is not None:
        atomic_write_text(output_dir / "index.html", page)


def sync(
    source: Path,
    output: Path,
    force: bool = False,
    quiet: bool = False,
    format: str = "md",
    cache_dir: Optional[Path] = None,
) -> SyncResult:
    """Render every session under source into output, mirroring its layout.

    Sessions whose outputs are newer than the source are skipped unless
    forced. Errors are counted per session and don't stop the run.
    """
    extension = get_file_extension(format)
    # Cache segments are keyed by extension
    format = extension
    result = SyncResult()
    sessions = discover_sessions(source)
    if not quiet:
        click.echo(f"Found {len(sessions)} session file(s)", err=True)

    output.mkdir(parents=True, exist_ok=True)
    index = load_index(output)

    for session, adapter in sessions:
        source_key = normalize_source_path(str(session.path))
        existing = sorted(
            filename
            for filename in get_outputs_for_source(index, source_key)
            if filename.endswith(f".{extension}")
        )
        if not force and _is_up_to_date(output, existing, session.mtime):
            if not quiet:
                for filename in existing:
                    click.echo(f"Skip (up to date): {output / filename}", err=True)
            result.skipped += len(existing)
            continue

        try:
            content = session.path.read_text(encoding="utf-8", errors="replace")
            transcripts = adapter.parse(content, str(session.path))
            rendered, titles = _render_segments(
                transcripts, session, content, format, cache_dir
            )
            outputs: list[tuple[str, str, TranscriptEntry]] = []
            for i, (transcript, page, title) in enumerate(
                zip(transcripts, rendered, titles), start=1
            ):
                segment_index = i if len(transcripts) > 1 else None
                outputs.append(
                    (
                        compute_output_path(
                            session.relative_path, extension, segment_index
                        ),
                        page,
                        _build_entry(
                            transcript,
                            source_key,
                            str(session.path),
                            segment_index,
                            title,
                        ),
                    )
                )
            _replace_source_outputs(
                output, index, source_key, extension, outputs, quiet
            )
        except (OSError, ValueError) as e:
            click.echo(f"Error: {session.relative_path}: {e}", err=True)
            result.errors += 1
            continue
        result.synced += len(outputs)

    save_index(output, index)
    if format == "html":
        _write_index_page(output, index)

    if not quiet:
        click.echo(
            f"\nSync complete: {result.synced} synced, {result.skipped} skipped, "
            f"{result.errors} errors",
            err=True,
        )
    return result
