"""Serve archived transcripts over HTTP.

Pages are rendered on first request from the archive and kept in a small
in-memory LRU cache. The index page is built once at startup since the set of
archived sessions doesn't change while serving.
"""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import click
from flask import Flask, Response, abort, request

from .archive import ArchiveEntryHeader, TranscriptSummary, list_entry_headers, load_entry
from .html import HtmlRenderer
from .utils import format_datetime_prefix, output_name_for_index, truncate

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3000
HTML_CACHE_SIZE = 200

CacheKey = tuple[str, int, str]


@dataclass(frozen=True)
class SessionPage:
    """One servable page: a single transcript of an archived session."""

    name: str
    session_id: str
    source_hash: str
    segment_index: int
    segment: TranscriptSummary
    title: Optional[str] = None

    @property
    def cache_key(self) -> CacheKey:
        return (self.session_id, self.segment_index, self.source_hash)


class HtmlCache:
    """LRU cache of rendered pages keyed by session, segment and source hash."""

    def __init__(self, max_size: int = HTML_CACHE_SIZE) -> None:
        self.max_size = max_size
        self._pages: "OrderedDict[CacheKey, str]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._pages)

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._pages

    def get(self, key: CacheKey) -> Optional[str]:
        with self._lock:
            page = self._pages.get(key)
            if page is not None:
                self._pages.move_to_end(key)
            return page

    def set(self, key: CacheKey, page: str) -> None:
        with self._lock:
            self._pages[key] = page
            self._pages.move_to_end(key)
            while len(self._pages) > self.max_size:
                self._pages.popitem(last=False)


def build_session_pages(headers: list[ArchiveEntryHeader]) -> dict[str, SessionPage]:
    """Name one page per archived transcript: '{datetime}-{session_id}[_{i}]'."""
    pages: dict[str, SessionPage] = {}
    for header in headers:
        for i, segment in enumerate(header.segments):
            base_name = (
                f"{format_datetime_prefix(segment.first_message_timestamp)}-{header.session_id}"
            )
            name = output_name_for_index(base_name, i + 1, len(header.segments))
            pages[name] = SessionPage(
                name=name,
                session_id=header.session_id,
                source_hash=header.source_hash,
                segment_index=i,
                segment=segment,
                title=header.title,
            )
    return pages


def build_index_entries(pages: dict[str, SessionPage]) -> list[dict[str, Any]]:
    """Index rows for every page that has messages."""
    entries: list[dict[str, Any]] = []
    for name, page in pages.items():
        metadata = page.segment.metadata
        if metadata.message_count == 0:
            continue
        entries.append(
            {
                "filename": f"{name}.html",
                "title": page.title
                or truncate(page.segment.first_user_message, 80)
                or name,
                "start_time": metadata.start_time,
                "end_time": metadata.end_time,
                "message_count": metadata.message_count,
                "cwd": metadata.cwd,
                "first_user_message": page.segment.first_user_message,
            }
        )
    return entries


def _html_response(page: str) -> Response:
    return Response(page, mimetype="text/html")


def create_app(archive_dir: Path, quiet: bool = False) -> Flask:
    """Build the Flask app serving the index and transcript pages of an archive."""
    pages = build_session_pages(list_entry_headers(archive_dir))
    index_html = HtmlRenderer().generate_index(build_index_entries(pages)) or ""
    cache = HtmlCache()

    app = Flask(__name__)
    app.config["SESSION_PAGES"] = pages
    app.config["HTML_CACHE"] = cache

    if not quiet:

        @app.before_request
        def log_request() -> None:
            click.echo(f"{request.method} {request.path}", err=True)

    @app.route("/")
    @app.route("/index.html")
    def index() -> Response:
        return _html_response(index_html)

    @app.route("/<name>.html")
    def transcript_page(name: str) -> Response:
        page = pages.get(name)
        if page is None:
            abort(404)

        cached = cache.get(page.cache_key)
        if cached is not None:
            return _html_response(cached)

        try:
            entry = load_entry(archive_dir, page.session_id)
            if entry is None or page.segment_index >= len(entry.transcripts):
                abort(404)
            # Renderers keep per-page state, so each request gets its own
            html = HtmlRenderer().generate(
                entry.transcripts[page.segment_index],
                title=page.title,
                source_path=entry.source_path,
            )
        except (OSError, ValueError) as e:
            logger.warning("Could not render %s: %s", name, e)
            return Response(f"Error: {e}", status=500, mimetype="text/plain")
        cache.set(page.cache_key, html)
        return _html_response(html)

    return app


def serve(archive_dir: Path, port: int = DEFAULT_PORT, quiet: bool = False) -> None:
    """Serve an archive on localhost until interrupted."""
    if not quiet:
        click.echo(f"Loading archive from {archive_dir}...", err=True)
    app = create_app(archive_dir, quiet=quiet)
    if not quiet:
        click.echo(f"Found {len(app.config['SESSION_PAGES'])} transcript(s)", err=True)
        click.echo(f"Starting server at http://localhost:{port}", err=True)
    # Requests are echoed above; keep werkzeug to errors only
    logging.getLogger("werkzeug").setLevel(logging.ERROR)
    app.run(host="127.0.0.1", port=port)
