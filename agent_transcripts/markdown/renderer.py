"""Markdown renderer implementation for agent transcripts."""

import re
from typing import Optional, Sequence

from ..models import (
    AssistantMessage,
    ErrorMessage,
    SystemMessage,
    ToolCall,
    ToolCallGroup,
    Transcript,
    UserMessage,
)
from ..renderer import Renderer
from ..tree import BranchNoteEvent, EmptyEvent, HeadNotFoundEvent, MessagesEvent
from ..utils import format_timestamp_range


class MarkdownRenderer(Renderer):
    """Markdown renderer for agent transcripts."""

    extension = "md"

    # -------------------------------------------------------------------------
    # Private Utility Methods
    # -------------------------------------------------------------------------

    def _quote(self, text: str) -> str:
        """Prefix each line with '> ' to create a blockquote.

        Also escapes <summary> tags that would interfere with <details> rendering.
        """
        text = re.sub(r"^(</?summary>)$", r"\\\1", text, flags=re.MULTILINE)
        return "\n".join(f"> {line}" if line else ">" for line in text.split("\n"))

    def _code_fence(self, text: str, lang: str = "") -> str:
        """Wrap text in a fenced code block with adaptive delimiter.

        If the text contains backticks, uses a longer delimiter to avoid conflicts.
        """
        max_ticks = 2
        for match in re.finditer(r"`+", text):
            max_ticks = max(max_ticks, len(match.group()))
        fence = "`" * max(3, max_ticks + 1)
        return f"{fence}{lang}\n{text}\n{fence}"

    def _inline_code(self, text: str) -> str:
        """Wrap text in inline code, widening the delimiter around backticks."""
        longest = max((len(m.group()) for m in re.finditer(r"`+", text)), default=0)
        ticks = "`" * (longest + 1)
        if longest:
            return f"{ticks} {text} {ticks}"
        return f"{ticks}{text}{ticks}"

    def _escape_html_tag(self, text: str, tag: str) -> str:
        """Escape HTML closing tags to prevent breaking markdown structure.

        Replaces </tag> with &lt;/tag> to prevent premature closing.
        """
        return text.replace(f"</{tag}>", f"&lt;/{tag}>")

    def _collapsible(self, summary: str, content: str) -> str:
        """Wrap content in a collapsible <details> block."""
        safe_summary = self._escape_html_tag(summary, "summary")
        safe_summary = self._escape_html_tag(safe_summary, "details")
        safe_content = self._escape_html_tag(content, "details")
        return f"<details>\n<summary>{safe_summary}</summary>\n\n{safe_content}\n</details>"

    def _format_tool_call(self, call: ToolCall) -> str:
        line = call.name
        if call.summary:
            line += f" {self._inline_code(call.summary)}"
        if call.error:
            first_line = call.error.strip().split("\n")[0]
            line += f" (error: {first_line})" if first_line else " (error)"
        return line

    # -------------------------------------------------------------------------
    # Message Formatters
    # -------------------------------------------------------------------------

    def format_UserMessage(self, message: UserMessage) -> str:
        return f"## User\n\n{message.content}"

    def format_AssistantMessage(self, message: AssistantMessage) -> str:
        parts = ["## Assistant"]
        if message.thinking:
            parts.append(self._collapsible("Thinking...", message.thinking))
        if message.content.strip():
            parts.append(message.content)
        return "\n\n".join(parts)

    def format_SystemMessage(self, message: SystemMessage) -> str:
        return f"## System\n\n{self._code_fence(message.content)}"

    def format_ErrorMessage(self, message: ErrorMessage) -> str:
        return f"## Error\n\n{self._code_fence(message.content)}"

    def format_ToolCallGroup(self, message: ToolCallGroup) -> str:
        if len(message.calls) == 1:
            return f"**Tool**: {self._format_tool_call(message.calls[0])}"
        lines = ["**Tools**:"]
        lines.extend(f"- {self._format_tool_call(call)}" for call in message.calls)
        return "\n".join(lines)

    # -------------------------------------------------------------------------
    # Event Formatters
    # -------------------------------------------------------------------------

    def format_MessagesEvent(self, event: MessagesEvent) -> str:
        rendered = (self.format_message(message) for message in event.messages)
        return "\n\n".join(part for part in rendered if part)

    def format_BranchNoteEvent(self, event: BranchNoteEvent) -> str:
        lines = ["**Other branches:**"]
        for branch in event.branches:
            preview = f' "{branch.first_line}"' if branch.first_line else ""
            lines.append(f"- {self._inline_code(branch.source_ref)}{preview}")
        return self._quote("\n".join(lines))

    def format_HeadNotFoundEvent(self, event: HeadNotFoundEvent) -> str:
        return f"*Message ID {self._inline_code(event.head)} not found.*"

    def format_EmptyEvent(self, event: EmptyEvent) -> str:  # noqa: ARG002
        return "*No messages in this transcript.*"

    # -------------------------------------------------------------------------
    # Document Assembly
    # -------------------------------------------------------------------------

    def _format_header(
        self, transcript: Transcript, title: str, source_path: Optional[str]
    ) -> str:
        lines = [
            f"# {title}",
            "",
            f"**Source**: {self._inline_code(source_path or transcript.source.file)}",
            f"**Adapter**: {transcript.source.adapter}",
        ]
        metadata = transcript.metadata
        time_range = format_timestamp_range(metadata.start_time, metadata.end_time)
        if time_range:
            lines.append(f"**Time**: {time_range}")
        if metadata.cwd:
            lines.append(f"**Working directory**: {self._inline_code(metadata.cwd)}")
        if metadata.warnings:
            lines.extend(["", "**Warnings**:"])
            lines.extend(f"- {w.type}: {w.detail}" for w in metadata.warnings)
        lines.extend(["", "---"])
        return "\n".join(lines)

    def assemble(
        self,
        transcript: Transcript,
        body: Sequence[str],
        title: str,
        source_path: Optional[str] = None,
    ) -> str:
        parts = [self._format_header(transcript, title, source_path), *body]
        return "\n\n".join(parts) + "\n"
