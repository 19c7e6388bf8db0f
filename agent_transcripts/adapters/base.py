"""Base class shared by the session log format adapters."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from ..models import RawNode, ToolResult, Transcript, TranscriptWarning
from ..parser import parse_jsonl
from ..tree import build_transcripts

logger = logging.getLogger(__name__)


@dataclass
class DecodedSource:
    """Everything an adapter extracts from one source file."""

    nodes: list[RawNode] = field(default_factory=list)
    warnings: list[TranscriptWarning] = field(default_factory=list)
    cwd: Optional[str] = None
    tool_results: dict[str, ToolResult] = field(default_factory=dict)


@dataclass
class DiscoveredSession:
    """A session file found under an adapter's source directory."""

    path: Path
    relative_path: str
    mtime: float
    summary: Optional[str] = None


class Adapter:
    """Decode one harness's session log format into raw nodes.

    Subclasses implement ``decode`` and may override ``default_source`` and
    ``read_summary``. Parsing into transcripts is shared.
    """

    name: str = ""
    # Bumped whenever decoding changes so archived transcripts get re-parsed
    version: str = ""
    file_patterns: tuple[str, ...] = ("*.jsonl",)

    def default_source(self) -> Optional[Path]:
        return None

    def decode(self, content: str) -> DecodedSource:
        raise NotImplementedError

    def parse(self, content: str, source_path: str) -> list[Transcript]:
        """Decode content and build one transcript per conversation."""
        decoded = self.decode(content)
        return build_transcripts(
            decoded.nodes,
            source_path,
            self.name,
            warnings=decoded.warnings,
            cwd=decoded.cwd,
            tool_results=decoded.tool_results,
        )

    def read_summary(self, records: list[dict[str, Any]]) -> Optional[str]:
        """Session title recorded by the harness itself, if any."""
        return None

    def discover(self, source: Path) -> list[DiscoveredSession]:
        """Find session files under source, sorted by relative path."""
        sessions: list[DiscoveredSession] = []
        if not source.is_dir():
            return sessions

        for pattern in self.file_patterns:
            for path in sorted(source.rglob(pattern)):
                if not path.is_file():
                    continue
                try:
                    mtime = path.stat().st_mtime
                    content = path.read_text(encoding="utf-8", errors="replace")
                except OSError as e:
                    logger.warning("Skipping unreadable session file %s: %s", path, e)
                    continue
                records, _ = parse_jsonl(content)
                sessions.append(
                    DiscoveredSession(
                        path=path,
                        relative_path=path.relative_to(source).as_posix(),
                        mtime=mtime,
                        summary=self.read_summary(records),
                    )
                )
        return sessions


def string_field(record: dict[str, Any], key: str) -> Optional[str]:
    """Return record[key] when it is a non-empty string."""
    value = record.get(key)
    if isinstance(value, str) and value:
        return value
    return None
