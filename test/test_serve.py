#!/usr/bin/env python3
"""Tests for serving archived transcripts over HTTP."""

import shutil
from pathlib import Path

import pytest
from flask import Flask

from agent_transcripts.archive import (
    ArchiveEntryHeader,
    TranscriptSummary,
    archive_all,
)
from agent_transcripts.models import TranscriptMetadata
from agent_transcripts.serve import (
    HtmlCache,
    build_index_entries,
    build_session_pages,
    create_app,
    serve,
)
from agent_transcripts.utils import format_datetime_prefix

PAGE_NAME = f"{format_datetime_prefix('2025-01-15T10:00:00.000Z')}-abc"


@pytest.fixture
def archive_dir(tmp_path: Path, claude_session_path: Path) -> Path:
    source = tmp_path / "src"
    (source / "proj").mkdir(parents=True)
    shutil.copy(claude_session_path, source / "proj" / "abc.jsonl")
    archive = tmp_path / "arch"
    archive_all(archive, source, quiet=True)
    return archive


@pytest.fixture
def app(archive_dir: Path) -> Flask:
    return create_app(archive_dir, quiet=True)


def summary(timestamp: str, message_count: int = 1, first: str = "") -> TranscriptSummary:
    return TranscriptSummary(
        first_message_timestamp=timestamp,
        first_user_message=first,
        metadata=TranscriptMetadata(message_count=message_count, start_time=timestamp),
    )


def make_header(*segments: TranscriptSummary) -> ArchiveEntryHeader:
    return ArchiveEntryHeader(
        session_id="s", source_path="/s.jsonl", source_hash="h", segments=list(segments)
    )


class TestSessionPages:
    """Tests for naming pages and building index rows."""

    def test_single_segment_name(self):
        """A session with one transcript is named by time and session id."""
        header = make_header(summary("2025-01-15T10:00:00Z"))
        [name] = build_session_pages([header])
        assert name == f"{format_datetime_prefix('2025-01-15T10:00:00Z')}-s"

    def test_segments_numbered(self):
        """Several transcripts of one session get numbered names."""
        header = make_header(summary("2025-01-15T10:00:00Z"), summary("2025-01-16T10:00:00Z"))
        pages = build_session_pages([header])
        assert [page.segment_index for page in pages.values()] == [0, 1]
        assert [name.rsplit("_", 1)[1] for name in pages] == ["1", "2"]

    def test_index_entries(self):
        """Empty transcripts are left out; titles fall back to the first message."""
        header = make_header(
            summary("2025-01-15T10:00:00Z", first="x" * 90),
            summary("2025-01-16T10:00:00Z", message_count=0),
        )
        [entry] = build_index_entries(build_session_pages([header]))
        assert entry["filename"].endswith("-s_1.html")
        assert entry["title"] == "x" * 80 + "..."
        assert entry["message_count"] == 1


class TestHtmlCache:
    """Tests for the rendered page cache."""

    def test_evicts_least_recently_used(self):
        """Reading an entry keeps it; the oldest untouched entry goes first."""
        cache = HtmlCache(max_size=2)
        cache.set(("a", 0, "h"), "A")
        cache.set(("b", 0, "h"), "B")
        assert cache.get(("a", 0, "h")) == "A"
        cache.set(("c", 0, "h"), "C")
        assert len(cache) == 2
        assert ("b", 0, "h") not in cache
        assert cache.get(("a", 0, "h")) == "A"

    def test_miss(self):
        """Unknown keys give None."""
        assert HtmlCache().get(("a", 0, "h")) is None


class TestRoutes:
    """Tests for the HTTP routes."""

    @pytest.mark.parametrize("path", ["/", "/index.html"])
    def test_index(self, app: Flask, path: str):
        """The index lists archived transcripts."""
        response = app.test_client().get(path)
        assert response.status_code == 200
        assert response.mimetype == "text/html"
        body = response.get_data(as_text=True)
        assert "<!DOCTYPE html>" in body
        assert "Agent Transcripts" in body
        assert f'href="{PAGE_NAME}.html"' in body
        assert "Fix the login bug" in body

    def test_transcript_page(self, app: Flask):
        """Transcript pages are rendered from the archive with the session title."""
        response = app.test_client().get(f"/{PAGE_NAME}.html")
        assert response.status_code == 200
        body = response.get_data(as_text=True)
        assert "<title>Fix the login bug</title>" in body
        assert "Fixed the login bug." in body

    def test_rendered_page_is_cached(self, app: Flask, archive_dir: Path):
        """A page is served from memory once rendered."""
        client = app.test_client()
        first = client.get(f"/{PAGE_NAME}.html").get_data(as_text=True)
        (archive_dir / "abc.json").unlink()
        second = client.get(f"/{PAGE_NAME}.html")
        assert second.status_code == 200
        assert second.get_data(as_text=True) == first
        assert len(app.config["HTML_CACHE"]) == 1

    def test_entry_removed_after_startup(self, app: Flask, archive_dir: Path):
        """An entry that disappeared before its first request is not found."""
        (archive_dir / "abc.json").unlink()
        assert app.test_client().get(f"/{PAGE_NAME}.html").status_code == 404

    @pytest.mark.parametrize("path", ["/nope.html", "/abc.md", "/a/b.html"])
    def test_not_found(self, app: Flask, path: str):
        """Unknown pages and other paths are 404."""
        assert app.test_client().get(path).status_code == 404

    def test_render_error(self, app: Flask, monkeypatch: pytest.MonkeyPatch):
        """Errors while loading a page give a 500 with the message."""

        def failing_load(archive_dir: Path, session_id: str):
            raise OSError("disk unavailable")

        monkeypatch.setattr("agent_transcripts.serve.load_entry", failing_load)
        response = app.test_client().get(f"/{PAGE_NAME}.html")
        assert response.status_code == 500
        assert response.get_data(as_text=True) == "Error: disk unavailable"

    def test_requests_logged(
        self, archive_dir: Path, capsys: pytest.CaptureFixture[str]
    ):
        """Without quiet each request is echoed to stderr."""
        create_app(archive_dir).test_client().get("/index.html")
        assert "GET /index.html" in capsys.readouterr().err

    def test_empty_archive(self, tmp_path: Path):
        """A missing archive serves an empty index."""
        response = create_app(tmp_path / "none", quiet=True).test_client().get("/")
        assert response.status_code == 200
        assert "No transcripts." in response.get_data(as_text=True)


class TestServe:
    """Tests for starting the server."""

    def test_binds_localhost(
        self,
        archive_dir: Path,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ):
        """The server listens on localhost and reports what it loaded."""
        calls = []
        monkeypatch.setattr(Flask, "run", lambda self, **kwargs: calls.append(kwargs))
        serve(archive_dir, port=4321)
        assert calls == [{"host": "127.0.0.1", "port": 4321}]
        err = capsys.readouterr().err
        assert f"Loading archive from {archive_dir}..." in err
        assert "Found 1 transcript(s)" in err
        assert "Starting server at http://localhost:4321" in err
