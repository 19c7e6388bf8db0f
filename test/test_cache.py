#!/usr/bin/env python3
"""Tests for the render cache."""

from pathlib import Path

import pytest

from agent_transcripts.cache import (
    CacheEntry,
    SegmentCache,
    compute_content_hash,
    get_cache_dir,
    get_cache_path,
    get_cached_segments,
    get_cached_title,
    get_library_version,
    is_cache_version_compatible,
    load_cache,
    save_cache,
)


@pytest.fixture
def entry() -> CacheEntry:
    return CacheEntry(
        content_hash=compute_content_hash("content"),
        library_version="0.1.0",
        segments=[
            SegmentCache(title="First", md="# one\n"),
            SegmentCache(title=None, md="# two\n", html="<p>two</p>"),
        ],
    )


class TestCacheLocation:
    """Tests for cache paths."""

    def test_env_override(self, tmp_path: Path):
        """AGENT_TRANSCRIPTS_CACHE_DIR sets the cache directory."""
        assert get_cache_dir() == tmp_path / "cache"

    def test_default(self, monkeypatch: pytest.MonkeyPatch):
        """Without the variable the cache lives under ~/.cache."""
        monkeypatch.delenv("AGENT_TRANSCRIPTS_CACHE_DIR")
        assert get_cache_dir() == Path.home() / ".cache" / "agent-transcripts"

    def test_path_is_hashed(self, tmp_path: Path):
        """Cache files are named by a hash of the source path."""
        path = get_cache_path("/a/b c.jsonl", tmp_path)
        assert path.parent == tmp_path
        assert path.suffix == ".json"
        assert len(path.stem) == 64
        assert path != get_cache_path("/a/other.jsonl", tmp_path)


class TestLoadSave:
    """Tests for reading and writing cache entries."""

    def test_round_trip(self, tmp_path: Path, entry: CacheEntry):
        """A saved entry loads back unchanged."""
        save_cache("/src/s.jsonl", entry, tmp_path)
        assert load_cache("/src/s.jsonl", tmp_path) == entry

    def test_missing(self, tmp_path: Path):
        """A missing cache file gives None."""
        assert load_cache("/src/none.jsonl", tmp_path) is None

    def test_corrupt(self, tmp_path: Path, caplog: pytest.LogCaptureFixture):
        """A corrupt cache file is ignored with a warning."""
        path = get_cache_path("/src/s.jsonl", tmp_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("{not json", encoding="utf-8")
        assert load_cache("/src/s.jsonl", tmp_path) is None
        assert "corrupt cache file" in caplog.text

    def test_undecodable(self, tmp_path: Path, caplog: pytest.LogCaptureFixture):
        """A cache file that isn't UTF-8 is ignored with a warning."""
        path = get_cache_path("/src/s.jsonl", tmp_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"\xff\xfe{")
        assert load_cache("/src/s.jsonl", tmp_path) is None
        assert "undecodable cache file" in caplog.text

    def test_no_temp_files_left(self, tmp_path: Path, entry: CacheEntry):
        """Atomic writes leave only the final file."""
        save_cache("/src/s.jsonl", entry, tmp_path)
        assert [p.suffix for p in tmp_path.iterdir()] == [".json"]


class TestLookups:
    """Tests for cache validity checks."""

    def test_segments_hit(self, entry: CacheEntry):
        """Matching hash and format return the segments."""
        segments = get_cached_segments(
            entry, compute_content_hash("content"), "md", library_version="0.1.0"
        )
        assert segments == entry.segments

    def test_segments_miss_on_hash(self, entry: CacheEntry):
        """Changed content invalidates the cache."""
        assert (
            get_cached_segments(entry, compute_content_hash("other"), "md", "0.1.0")
            is None
        )

    def test_segments_miss_on_format(self, entry: CacheEntry):
        """Every segment must hold the requested format."""
        assert (
            get_cached_segments(entry, compute_content_hash("content"), "html", "0.1.0")
            is None
        )

    def test_segments_miss_on_newer_cache(self, entry: CacheEntry):
        """Output from a newer library version is not reused."""
        assert (
            get_cached_segments(entry, compute_content_hash("content"), "md", "0.0.9")
            is None
        )

    def test_none_entry(self):
        """No entry means no segments."""
        assert get_cached_segments(None, "h", "md", "0.1.0") is None

    def test_cached_title(self, entry: CacheEntry):
        """Titles are looked up per segment."""
        content_hash = compute_content_hash("content")
        assert get_cached_title(entry, content_hash, 0) == "First"
        assert get_cached_title(entry, content_hash, 1) is None
        assert get_cached_title(entry, content_hash, 5) is None
        assert get_cached_title(entry, "stale", 0) is None


class TestVersionCompatibility:
    """Tests for library version checks."""

    def test_same_version(self):
        """Identical versions are compatible."""
        assert is_cache_version_compatible("0.1.0", "0.1.0")

    def test_older_cache(self):
        """Caches from older versions are reused without breaking changes."""
        assert is_cache_version_compatible("0.1.0", "0.2.0")

    def test_newer_cache(self):
        """Caches from newer versions are not reused."""
        assert not is_cache_version_compatible("0.3.0", "0.2.0")

    def test_unparseable(self):
        """Unparseable versions are incompatible."""
        assert not is_cache_version_compatible("unknown", "0.1.0")

    def test_breaking_change(self, monkeypatch: pytest.MonkeyPatch):
        """A breaking change invalidates caches at or below its version."""
        import agent_transcripts.cache as cache

        monkeypatch.setattr(cache, "BREAKING_CHANGES", {"0.1.5": "0.2.0"})
        assert not is_cache_version_compatible("0.1.5", "0.2.0")
        assert is_cache_version_compatible("0.1.6", "0.2.0")

    def test_library_version(self):
        """The library version is always a string."""
        assert isinstance(get_library_version(), str)
