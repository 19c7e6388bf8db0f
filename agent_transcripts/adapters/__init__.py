"""Adapter registry with path-based detection."""

import re
from pathlib import Path
from typing import Optional

from .base import Adapter, DecodedSource, DiscoveredSession
from .claude_code import ClaudeCodeAdapter
from .pi_coding_agent import PiCodingAgentAdapter

ADAPTERS: dict[str, Adapter] = {
    adapter.name: adapter for adapter in (ClaudeCodeAdapter(), PiCodingAgentAdapter())
}

# Detection rules: path pattern -> adapter name
DETECTION_RULES: list[tuple[re.Pattern[str], str]] = [
    # Match .claude/ or /claude/ in path
    (re.compile(r"[./]claude[/\\]"), "claude-code"),
    # Match .pi/ or /pi/ in path
    (re.compile(r"[./]pi[/\\]"), "pi-coding-agent"),
]


def detect_adapter(file_path: str) -> Optional[str]:
    """Detect adapter name from a file path, or None if no rule matches."""
    for pattern, adapter_name in DETECTION_RULES:
        if pattern.search(file_path):
            return adapter_name
    return None


def get_adapter(name: str) -> Optional[Adapter]:
    return ADAPTERS.get(name)


def list_adapters() -> list[str]:
    return list(ADAPTERS)


def get_adapters() -> list[Adapter]:
    return list(ADAPTERS.values())


def discover_sessions(
    source: Path, adapters: Optional[list[Adapter]] = None
) -> list[tuple[DiscoveredSession, Adapter]]:
    """Discover session files under source with each adapter.

    A file several adapters match is handled once, by the adapter its path
    is detected as, else by the first adapter that found it.
    """
    found: dict[Path, list[tuple[DiscoveredSession, Adapter]]] = {}
    for adapter in adapters if adapters is not None else get_adapters():
        for session in adapter.discover(source):
            found.setdefault(session.path, []).append((session, adapter))

    sessions: list[tuple[DiscoveredSession, Adapter]] = []
    for candidates in found.values():
        detected = detect_adapter(str(candidates[0][0].path))
        sessions.append(
            next((pair for pair in candidates if pair[1].name == detected), candidates[0])
        )
    return sessions


def get_default_sources() -> list[tuple[Adapter, Path]]:
    """(adapter, source directory) for every adapter with a default source."""
    sources: list[tuple[Adapter, Path]] = []
    for adapter in ADAPTERS.values():
        source = adapter.default_source()
        if source is not None:
            sources.append((adapter, source))
    return sources


__all__ = [
    "Adapter",
    "DecodedSource",
    "DiscoveredSession",
    "ClaudeCodeAdapter",
    "PiCodingAgentAdapter",
    "detect_adapter",
    "get_adapter",
    "list_adapters",
    "get_adapters",
    "discover_sessions",
    "get_default_sources",
]
