#!/usr/bin/env python3
"""CLI interface for agent-transcripts."""

import logging
import re
import sys
from pathlib import Path
from typing import Any, NoReturn, Optional

import click

from .adapters import get_adapters, get_default_sources
from .archive import archive_all, get_archive_dir, list_entry_headers
from .converter import (
    convert_to_directory,
    filter_transcripts_by_date,
    load_transcript_json,
    parse_to_transcripts,
    render_transcript,
    sync as sync_sessions,
    write_intermediate_json,
)
from .serve import DEFAULT_PORT, serve as serve_archive
from .utils import format_timestamp, truncate

FORMAT_CHOICE = click.Choice(["md", "markdown", "html"])


class DefaultCommandGroup(click.Group):
    """Group that runs ``default_command`` when the first argument isn't a subcommand."""

    default_command = "convert"

    def resolve_command(
        self, ctx: click.Context, args: list[str]
    ) -> tuple[Optional[str], Optional[click.Command], list[str]]:
        if args and args[0] not in self.commands:
            args = [self.default_command, *args]
        return super().resolve_command(ctx, args)


def _fail(e: Exception, debug: bool) -> NoReturn:
    click.echo(f"Error: {e}", err=True)
    if debug:
        import traceback

        traceback.print_exc()
    sys.exit(1)


def _is_file_output(output: str) -> bool:
    """Whether an output path looks like a file (has an extension)."""
    return re.search(r"\.\w+$", output) is not None


@click.group(cls=DefaultCommandGroup)
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Show full traceback on errors.",
)
@click.option(
    "--verbose",
    is_flag=True,
    default=False,
    help="Show debug log messages.",
)
@click.pass_context
def main(ctx: click.Context, debug: bool, verbose: bool) -> None:
    """Transform agent session logs into readable transcripts.

    A first argument that is not a command is converted (same as 'convert').
    """
    # Configure logging to show warnings and above
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@main.command()
@click.argument("input_file", metavar="FILE")
@click.option(
    "-o",
    "--output",
    type=str,
    help="Output directory (prints to stdout if not specified)",
)
@click.option(
    "--adapter",
    type=str,
    help="Source format adapter (auto-detected from path if not specified)",
)
@click.option(
    "--head",
    type=str,
    help="Render the branch ending at this message ID (default: latest)",
)
@click.option(
    "-f",
    "--format",
    "output_format",
    type=FORMAT_CHOICE,
    default="md",
    help="Output format (default: md). Supports md, markdown or html.",
)
@click.option(
    "--from-date",
    type=str,
    help='Keep transcripts with messages from this date/time (e.g., "2 hours ago", "yesterday", "2025-06-08")',
)
@click.option(
    "--to-date",
    type=str,
    help='Keep transcripts with messages up to this date/time (e.g., "1 hour ago", "today", "2025-06-08 15:00")',
)
@click.pass_context
def convert(
    ctx: click.Context,
    input_file: str,
    output: Optional[str],
    adapter: Optional[str],
    head: Optional[str],
    output_format: str,
    from_date: Optional[str],
    to_date: Optional[str],
) -> None:
    """Parse a session log and render it (default command).

    FILE: Session log path, or - for stdin.
    """
    debug = ctx.obj["debug"]
    if output and _is_file_output(output):
        click.echo(
            "Error: Explicit file output not supported. Use a directory path instead.",
            err=True,
        )
        sys.exit(1)

    try:
        if output:
            convert_to_directory(
                input_file,
                Path(output),
                adapter=adapter,
                head=head,
                format=output_format,
                from_date=from_date,
                to_date=to_date,
            )
            return

        transcripts, _ = parse_to_transcripts(input_file, adapter)
        transcripts = filter_transcripts_by_date(transcripts, from_date, to_date)
        for i, transcript in enumerate(transcripts):
            if i > 0:
                click.echo()
            click.echo(render_transcript(transcript, output_format, head=head), nl=False)
    except Exception as e:
        _fail(e, debug)


@main.command()
@click.argument("input_file", metavar="FILE")
@click.option(
    "-o",
    "--output",
    type=str,
    help="Output file or directory (default: current directory)",
)
@click.option(
    "--adapter",
    type=str,
    help="Source format adapter (auto-detected from path if not specified)",
)
@click.pass_context
def parse(
    ctx: click.Context, input_file: str, output: Optional[str], adapter: Optional[str]
) -> None:
    """Parse a session log into intermediate JSON transcripts.

    FILE: Session log path, or - for stdin.
    """
    try:
        write_intermediate_json(input_file, output, adapter)
    except Exception as e:
        _fail(e, ctx.obj["debug"])


@main.command()
@click.argument("input_file", metavar="FILE")
@click.option(
    "-o",
    "--output",
    type=click.Path(path_type=Path),
    help="Output file (prints to stdout if not specified)",
)
@click.option(
    "--head",
    type=str,
    help="Render the branch ending at this message ID (default: latest)",
)
@click.option(
    "-f",
    "--format",
    "output_format",
    type=FORMAT_CHOICE,
    default="md",
    help="Output format (default: md). Supports md, markdown or html.",
)
@click.pass_context
def render(
    ctx: click.Context,
    input_file: str,
    output: Optional[Path],
    head: Optional[str],
    output_format: str,
) -> None:
    """Render an intermediate JSON transcript.

    FILE: JSON transcript written by 'parse', or - for stdin.
    """
    try:
        transcript = load_transcript_json(input_file)
        rendered = render_transcript(transcript, output_format, head=head)
        if output is None:
            click.echo(rendered, nl=False)
            return
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(rendered, encoding="utf-8")
        click.echo(f"Wrote: {output}", err=True)
    except Exception as e:
        _fail(e, ctx.obj["debug"])


@main.command()
@click.argument("source", type=click.Path(path_type=Path))
@click.option(
    "-o",
    "--output",
    type=click.Path(path_type=Path),
    required=True,
    help="Output directory for transcripts",
)
@click.option(
    "--force",
    is_flag=True,
    help="Re-render all sessions, ignoring modification times",
)
@click.option("-q", "--quiet", is_flag=True, help="Suppress progress output")
@click.option(
    "-f",
    "--format",
    "output_format",
    type=FORMAT_CHOICE,
    default="md",
    help="Output format (default: md). HTML output also gets an index.html.",
)
@click.pass_context
def sync(
    ctx: click.Context,
    source: Path,
    output: Path,
    force: bool,
    quiet: bool,
    output_format: str,
) -> None:
    """Render every session under SOURCE into an output directory."""
    try:
        if not source.is_dir():
            raise FileNotFoundError(f"Source directory not found: {source}")
        sync_sessions(source, output, force=force, quiet=quiet, format=output_format)
    except Exception as e:
        _fail(e, ctx.obj["debug"])


def _echo_headers(archive_dir: Path) -> None:
    headers = list_entry_headers(archive_dir)
    if not headers:
        click.echo(f"No archived sessions in {archive_dir}")
        return
    for header in headers:
        click.echo(f"{header.session_id}  {header.title or ''}".rstrip())
        for segment in header.segments:
            metadata = segment.metadata
            details: list[Any] = [
                format_timestamp(metadata.start_time) or "-",
                f"{metadata.message_count} messages",
            ]
            if segment.first_user_message:
                details.append(truncate(segment.first_user_message.splitlines()[0], 60))
            click.echo("  " + "  ".join(str(d) for d in details))


@main.command()
@click.argument(
    "sources", nargs=-1, type=click.Path(path_type=Path), metavar="[SOURCE]..."
)
@click.option(
    "--archive-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Archive directory (default: $AGENT_TRANSCRIPTS_ARCHIVE_DIR or ~/.local/share/agent-transcripts/archive)",
)
@click.option("-q", "--quiet", is_flag=True, help="Suppress progress output")
@click.option(
    "--list", "list_only", is_flag=True, help="List archived sessions instead of archiving"
)
@click.pass_context
def archive(
    ctx: click.Context,
    sources: tuple[Path, ...],
    archive_dir: Optional[Path],
    quiet: bool,
    list_only: bool,
) -> None:
    """Archive parsed sessions from SOURCE directories.

    Without SOURCE, every adapter's default session directory is archived.
    """
    archive_dir = archive_dir or get_archive_dir()
    try:
        if list_only:
            _echo_headers(archive_dir)
            return

        if sources:
            targets = [(list(get_adapters()), source) for source in sources]
        else:
            targets = [([adapter], source) for adapter, source in get_default_sources()]

        updated = current = errors = 0
        for adapters, source in targets:
            if not source.is_dir():
                if sources:
                    raise FileNotFoundError(f"Source directory not found: {source}")
                continue
            result = archive_all(archive_dir, source, adapters, quiet=quiet)
            updated += len(result.updated)
            current += len(result.current)
            errors += len(result.errors)
    except Exception as e:
        _fail(e, ctx.obj["debug"])

    if not quiet:
        click.echo(
            f"Archive complete: {updated} updated, {current} current, {errors} errors",
            err=True,
        )


@main.command()
@click.option(
    "--archive-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Archive directory (default: $AGENT_TRANSCRIPTS_ARCHIVE_DIR or ~/.local/share/agent-transcripts/archive)",
)
@click.option(
    "-p", "--port", type=int, default=DEFAULT_PORT, show_default=True, help="Port to listen on"
)
@click.option("-q", "--quiet", is_flag=True, help="Suppress request logging")
@click.pass_context
def serve(
    ctx: click.Context, archive_dir: Optional[Path], port: int, quiet: bool
) -> None:
    """Serve archived transcripts as HTML on localhost."""
    try:
        serve_archive(archive_dir or get_archive_dir(), port=port, quiet=quiet)
    except Exception as e:
        _fail(e, ctx.obj["debug"])


if __name__ == "__main__":
    main()
