"""Timing utilities for renderer performance profiling.

Enabled by setting AGENT_TRANSCRIPTS_DEBUG_TIMING to "1", "true" or "yes".
Timing lines go to stderr so they never mix with rendered output on stdout.
"""

import os
import sys
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, Union


def is_timing_enabled() -> bool:
    return os.getenv("AGENT_TRANSCRIPTS_DEBUG_TIMING", "").lower() in (
        "1",
        "true",
        "yes",
    )


# Global timing data storage
_timing_data: dict[str, Any] = {}


def _emit(line: str) -> None:
    print(f"[TIMING] {line}", file=sys.stderr, flush=True)


@contextmanager
def log_timing(
    phase: Union[str, Callable[[], str]],
    t_start: Optional[float] = None,
) -> Iterator[None]:
    """Context manager for logging phase timing.

    Args:
        phase: Phase name, or a callable returning it (evaluated at the end)
        t_start: Optional start time for calculating total elapsed time

    Example:
        with log_timing(lambda: f"Walk tree ({len(events)} events)", t_start):
            events = list(walk_transcript_tree(transcript))
    """
    if not is_timing_enabled():
        yield
        return

    t_phase_start = time.time()
    try:
        yield
    finally:
        t_now = time.time()
        phase_name = phase() if callable(phase) else phase
        line = f"{phase_name:40s} {t_now - t_phase_start:8.3f}s"
        if t_start is not None:
            line += f" (total: {t_now - t_start:8.3f}s)"
        _emit(line)


@contextmanager
def timing_stat(list_name: str) -> Iterator[None]:
    """Accumulate durations of a repeated operation under list_name.

    Example:
        with timing_stat("_pygments_timings"):
            result = expensive_operation()
    """
    if not is_timing_enabled():
        yield
        return

    t_start = time.time()
    try:
        yield
    finally:
        _timing_data.setdefault(list_name, []).append(time.time() - t_start)


def report_timing_statistics(list_names: list[str]) -> None:
    """Print count and total time of each accumulated timing list, then reset them."""
    if not is_timing_enabled():
        return
    for list_name in list_names:
        timings: list[float] = _timing_data.pop(list_name, [])
        if timings:
            _emit(
                f"{list_name.strip('_')}: {len(timings)} operations, "
                f"{sum(timings):.3f}s total, slowest {max(timings) * 1000:.1f}ms"
            )
