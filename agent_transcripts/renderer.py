#!/usr/bin/env python3
"""Format-neutral rendering of transcripts along their canonical path."""

import time
from typing import Any, Optional, Sequence

from .models import Message, Transcript
from .renderer_timings import log_timing
from .tree import TreeEvent, walk_transcript_tree


class Renderer:
    """Base class for transcript renderers.

    Subclasses implement format-specific rendering (HTML, Markdown).

    The method-based dispatcher pattern:
    - Events from walk_transcript_tree and the messages inside them are
      rendered by format_{ClassName} methods (format_MessagesEvent,
      format_UserMessage, format_ToolCallGroup, ...)
    - _dispatch_format() walks the MRO to find the most specific method
    - Subclasses override methods to implement format-specific rendering
    """

    # File extension of rendered output
    extension: str = ""

    def _dispatch_format(self, obj: Any) -> str:
        """Dispatch to format_{ClassName} method based on object type."""
        for cls in type(obj).__mro__:
            if cls is object:
                break
            if method := getattr(self, f"format_{cls.__name__}", None):
                return method(obj)
        return ""

    def format_event(self, event: TreeEvent) -> str:
        return self._dispatch_format(event)

    def format_message(self, message: Message) -> str:
        return self._dispatch_format(message)

    def page_title(self, transcript: Transcript, title: Optional[str] = None) -> str:
        return title or "Transcript"

    # -------------------------------------------------------------------------
    # Dispatch targets (implemented by subclasses)
    # -------------------------------------------------------------------------
    # Events
    # def format_MessagesEvent(self, event: "MessagesEvent") -> str: ...
    # def format_BranchNoteEvent(self, event: "BranchNoteEvent") -> str: ...
    # def format_HeadNotFoundEvent(self, event: "HeadNotFoundEvent") -> str: ...
    # def format_EmptyEvent(self, event: "EmptyEvent") -> str: ...
    # Messages
    # def format_UserMessage(self, message: "UserMessage") -> str: ...
    # def format_AssistantMessage(self, message: "AssistantMessage") -> str: ...
    # def format_SystemMessage(self, message: "SystemMessage") -> str: ...
    # def format_ToolCallGroup(self, message: "ToolCallGroup") -> str: ...
    # def format_ErrorMessage(self, message: "ErrorMessage") -> str: ...

    # -------------------------------------------------------------------------
    # Rendering Entry Points
    # -------------------------------------------------------------------------

    def render_body(self, transcript: Transcript, head: Optional[str] = None) -> list[str]:
        """Format every event of one walk over the transcript, skipping empty output."""
        parts: list[str] = []
        for event in walk_transcript_tree(transcript, head):
            rendered = self.format_event(event)
            if rendered:
                parts.append(rendered)
        return parts

    def assemble(
        self,
        transcript: Transcript,
        body: Sequence[str],
        title: str,
        source_path: Optional[str] = None,
    ) -> str:
        raise NotImplementedError

    def generate(
        self,
        transcript: Transcript,
        head: Optional[str] = None,
        title: Optional[str] = None,
        source_path: Optional[str] = None,
    ) -> str:
        """Render one transcript along its canonical path (or up to ``head``)."""
        t_start = time.time()
        with log_timing(
            lambda: f"Render events ({len(transcript.messages)} messages)", t_start
        ):
            body = self.render_body(transcript, head)
        with log_timing("Assemble document", t_start):
            return self.assemble(
                transcript, body, self.page_title(transcript, title), source_path
            )

    def generate_index(self, entries: Sequence[dict[str, Any]]) -> Optional[str]:
        """Generate an index page linking rendered transcripts.

        Returns None by default; subclasses override to return formatted output.
        """
        return None


def get_renderer(format: str) -> Renderer:
    """Get a renderer instance for the specified format.

    Args:
        format: The output format ("md", "markdown" or "html").

    Returns:
        A Renderer instance for the specified format.

    Raises:
        ValueError: If the format is not supported.
    """
    if format in ("md", "markdown"):
        from .markdown.renderer import MarkdownRenderer

        return MarkdownRenderer()
    if format == "html":
        from .html.renderer import HtmlRenderer

        return HtmlRenderer()
    raise ValueError(f"Unsupported format: {format}")
