"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pytest


@pytest.fixture
def test_data_dir() -> Path:
    """Return path to test data directory."""
    return Path(__file__).parent / "test_data"


@pytest.fixture
def claude_session_path(test_data_dir: Path) -> Path:
    """Claude Code session with a branch, a tool call and an admin record."""
    return test_data_dir / "claude_code_session.jsonl"


@pytest.fixture
def pi_session_path(test_data_dir: Path) -> Path:
    """pi-coding-agent session with a tool result, compaction and an error."""
    return test_data_dir / "pi_session.jsonl"


@pytest.fixture(autouse=True)
def isolated_state_dirs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep cache and archive writes inside the test's temp directory."""
    monkeypatch.setenv("AGENT_TRANSCRIPTS_CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setenv("AGENT_TRANSCRIPTS_ARCHIVE_DIR", str(tmp_path / "archive"))
    monkeypatch.delenv("AGENT_TRANSCRIPTS_DEBUG_TIMING", raising=False)
