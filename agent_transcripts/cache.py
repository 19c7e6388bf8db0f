#!/usr/bin/env python3
"""Render cache for agent-transcripts.

Stores rendered outputs and titles per source file, keyed by a hash of the
source path and invalidated by a hash of the source content. Entries written
by an incompatible library version are ignored.
"""

import hashlib
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from packaging import version
from pydantic import BaseModel, ValidationError

from .utils import atomic_write_text

logger = logging.getLogger(__name__)

RenderFormat = Literal["html", "md"]


# ========== Data Models ==========


class SegmentCache(BaseModel):
    """Cached outputs for one transcript of a source file."""

    title: Optional[str] = None
    html: Optional[str] = None
    md: Optional[str] = None


class CacheEntry(BaseModel):
    """Cached outputs for one source file."""

    content_hash: str
    library_version: str = "unknown"
    segments: list[SegmentCache] = []


# ========== Library Version ==========


def get_library_version() -> str:
    """Get the current library version from package metadata or pyproject.toml."""
    # First try to get version from installed package metadata
    try:
        from importlib.metadata import version as get_version

        return get_version("agent-transcripts")
    except Exception:
        # Package not installed, continue to file-based detection
        pass

    # Fallback: read pyproject.toml next to the package
    try:
        import toml

        pyproject_path = Path(__file__).parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            with open(pyproject_path, "r", encoding="utf-8") as f:
                pyproject_data = toml.load(f)
            return pyproject_data.get("project", {}).get("version", "unknown")
    except Exception:
        pass

    return "unknown"


# Rendered output from a version at or below the key is stale once the
# library reaches the value.
BREAKING_CHANGES: dict[str, str] = {}


def is_cache_version_compatible(cache_version: str, library_version: str) -> bool:
    """Check if a cache version is compatible with the current library version."""
    if cache_version == library_version:
        return True
    try:
        cache_ver = version.parse(cache_version)
        current_ver = version.parse(library_version)
    except version.InvalidVersion:
        return False

    # Output rendered by a newer library may use markup this one doesn't know
    if cache_ver > current_ver:
        return False

    for breaking_version, min_required in BREAKING_CHANGES.items():
        if current_ver >= version.parse(min_required) and cache_ver <= version.parse(
            breaking_version
        ):
            return False
    return True


# ========== Cache Path Configuration ==========


def get_cache_dir() -> Path:
    """Get the cache directory, respecting AGENT_TRANSCRIPTS_CACHE_DIR.

    Priority: AGENT_TRANSCRIPTS_CACHE_DIR env var > ~/.cache/agent-transcripts.
    """
    env_path = os.getenv("AGENT_TRANSCRIPTS_CACHE_DIR")
    if env_path:
        return Path(env_path)
    return Path.home() / ".cache" / "agent-transcripts"


def compute_content_hash(content: str) -> str:
    """Hash of source file content for cache invalidation."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def get_cache_path(source_path: str, cache_dir: Optional[Path] = None) -> Path:
    """Cache file for a source path (hashed to avoid special characters)."""
    path_hash = hashlib.sha256(source_path.encode("utf-8")).hexdigest()
    return (cache_dir or get_cache_dir()) / f"{path_hash}.json"


# ========== Load / Save ==========


def load_cache(source_path: str, cache_dir: Optional[Path] = None) -> Optional[CacheEntry]:
    """Load the cache entry for a source file.

    Returns None if no cache exists or the cache file is corrupt.
    """
    cache_path = get_cache_path(source_path, cache_dir)
    try:
        content = cache_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except UnicodeDecodeError as e:
        logger.warning("Ignoring undecodable cache file %s: %s", cache_path, e)
        return None
    except OSError as e:
        logger.warning("Could not read cache file %s: %s", cache_path, e)
        return None
    try:
        return CacheEntry.model_validate_json(content)
    except ValidationError as e:
        logger.warning("Ignoring corrupt cache file %s: %s", cache_path, e)
        return None


def save_cache(
    source_path: str, entry: CacheEntry, cache_dir: Optional[Path] = None
) -> None:
    """Save the cache entry for a source file atomically."""
    cache_path = get_cache_path(source_path, cache_dir)
    atomic_write_text(cache_path, entry.model_dump_json(indent=2) + "\n")


# ========== Lookups ==========


def get_cached_segments(
    cached: Optional[CacheEntry],
    content_hash: str,
    format: RenderFormat,
    library_version: Optional[str] = None,
) -> Optional[list[SegmentCache]]:
    """Return cached segments if they are valid for this content and format.

    Every segment must hold output in the requested format.
    """
    if cached is None or cached.content_hash != content_hash:
        return None
    current_version = library_version or get_library_version()
    if not is_cache_version_compatible(cached.library_version, current_version):
        logger.debug(
            "Cache from version %s is incompatible with %s",
            cached.library_version,
            current_version,
        )
        return None
    if not cached.segments:
        return None
    if any(getattr(segment, format) is None for segment in cached.segments):
        return None
    return cached.segments


def get_cached_title(
    cached: Optional[CacheEntry], content_hash: str, segment_index: int
) -> Optional[str]:
    """Cached title of one segment, or None if the cache is stale or has none."""
    if cached is None or cached.content_hash != content_hash:
        return None
    if 0 <= segment_index < len(cached.segments):
        return cached.segments[segment_index].title
    return None
