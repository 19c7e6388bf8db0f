"""HTML renderer implementation for agent transcripts."""

from typing import Any, Optional, Sequence

from ..models import (
    AssistantMessage,
    BaseMessage,
    ErrorMessage,
    SystemMessage,
    ToolCall,
    ToolCallGroup,
    Transcript,
    UserMessage,
)
from ..renderer import Renderer
from ..renderer_timings import report_timing_statistics
from ..tree import BranchNoteEvent, EmptyEvent, HeadNotFoundEvent, MessagesEvent
from ..utils import format_timestamp_range
from .utils import (
    escape_html,
    format_raw_json,
    get_template_environment,
    highlight_json,
    render_collapsible,
    render_markdown,
)


class HtmlRenderer(Renderer):
    """Standalone HTML page renderer for agent transcripts.

    The assistant label is only shown at the start of an assistant turn, so a
    run of assistant text and tool calls reads as one block.
    """

    extension = "html"

    def __init__(self) -> None:
        self._in_assistant_turn = False

    # -------------------------------------------------------------------------
    # Private Utility Methods
    # -------------------------------------------------------------------------

    def _message_block(
        self,
        css_class: str,
        label: Optional[str],
        content_html: str,
        message: BaseMessage,
    ) -> str:
        header = (
            f"<div class='message-header'><span class='message-label'>{label}</span></div>"
            if label
            else ""
        )
        if message.raw_json:
            content_html = (
                "<button class='raw-toggle' title='Toggle raw JSON'>&lt;/&gt;</button>"
                f"<div class='rendered-view'>{content_html}</div>"
                f"<pre class='raw-view'>{format_raw_json(message.raw_json)}</pre>"
            )
        return (
            f"<div class='message {css_class}' "
            f"data-source-ref='{escape_html(message.source_ref)}'>"
            f"{header}{content_html}</div>"
        )

    def _format_tool_call(self, call: ToolCall) -> str:
        header = f"<span class='tool-call-name'>{escape_html(call.name)}</span>"
        if call.summary:
            header += f"<span class='tool-call-summary'>{escape_html(call.summary)}</span>"
        if call.error:
            header += f"<span class='tool-call-error'>{escape_html(call.error)}</span>"

        details = ""
        if call.input:
            details += f"<div class='tool-input'>{highlight_json(call.input)}</div>"
        if call.result:
            details += (
                f"<pre class='tool-detail-content'>{escape_html(call.result)}</pre>"
            )
        if not details:
            return f"<div class='tool-call'><div class='tool-call-header'>{header}</div></div>"
        return render_collapsible(header, details, css_class="tool-call")

    def _start_turn(self, is_assistant: bool) -> bool:
        """Track assistant turns; returns True when a new assistant turn begins."""
        starts_turn = is_assistant and not self._in_assistant_turn
        self._in_assistant_turn = is_assistant
        return starts_turn

    # -------------------------------------------------------------------------
    # Message Formatters
    # -------------------------------------------------------------------------

    def format_UserMessage(self, message: UserMessage) -> str:
        self._start_turn(False)
        content = f"<div class='content markdown'>{render_markdown(message.content)}</div>"
        return self._message_block("user", "User", content, message)

    def format_AssistantMessage(self, message: AssistantMessage) -> str:
        label = "Assistant" if self._start_turn(True) else None
        content = ""
        if message.thinking:
            content += render_collapsible(
                "thinking...",
                f"<div class='thinking markdown'>{render_markdown(message.thinking)}</div>",
                css_class="thinking-block",
            )
        if message.content.strip():
            content += f"<div class='content markdown'>{render_markdown(message.content)}</div>"
        return self._message_block("assistant", label, content, message)

    def format_SystemMessage(self, message: SystemMessage) -> str:
        self._start_turn(False)
        content = f"<div class='content'><pre>{escape_html(message.content)}</pre></div>"
        return self._message_block("system", "System", content, message)

    def format_ErrorMessage(self, message: ErrorMessage) -> str:
        content = f"<div class='content'><pre>{escape_html(message.content)}</pre></div>"
        return self._message_block("error", "Error", content, message)

    def format_ToolCallGroup(self, message: ToolCallGroup) -> str:
        label = "Assistant" if self._start_turn(True) else None
        calls = "".join(self._format_tool_call(call) for call in message.calls)
        return self._message_block(
            "tool-calls", label, f"<div class='tool-call-list'>{calls}</div>", message
        )

    # -------------------------------------------------------------------------
    # Event Formatters
    # -------------------------------------------------------------------------

    def format_MessagesEvent(self, event: MessagesEvent) -> str:
        return "\n".join(self.format_message(message) for message in event.messages)

    def format_BranchNoteEvent(self, event: BranchNoteEvent) -> str:
        items = "".join(
            f"<li><code>{escape_html(branch.source_ref)}</code> "
            f"&quot;{escape_html(branch.first_line)}&quot;</li>"
            for branch in event.branches
        )
        return (
            "<div class='branch-note'><strong>Other branches:</strong>"
            f"<ul>{items}</ul></div>"
        )

    def format_HeadNotFoundEvent(self, event: HeadNotFoundEvent) -> str:
        return (
            f"<p class='notice error'>Message ID <code>{escape_html(event.head)}</code>"
            " not found</p>"
        )

    def format_EmptyEvent(self, event: EmptyEvent) -> str:  # noqa: ARG002
        return "<p class='notice'><em>No messages in this transcript.</em></p>"

    # -------------------------------------------------------------------------
    # Document Assembly
    # -------------------------------------------------------------------------

    def page_title(self, transcript: Transcript, title: Optional[str] = None) -> str:
        return title or f"Transcript - {transcript.source.file}"

    def render_body(self, transcript: Transcript, head: Optional[str] = None) -> list[str]:
        self._in_assistant_turn = False
        parts = super().render_body(transcript, head)
        report_timing_statistics(["_markdown_timings", "_pygments_timings"])
        return parts

    def assemble(
        self,
        transcript: Transcript,
        body: Sequence[str],
        title: str,
        source_path: Optional[str] = None,
    ) -> str:
        metadata = transcript.metadata
        template = get_template_environment().get_template("transcript.html")
        return template.render(
            title=title,
            source=source_path or transcript.source.file,
            adapter=transcript.source.adapter,
            time_range=format_timestamp_range(metadata.start_time, metadata.end_time),
            cwd=metadata.cwd,
            warnings=metadata.warnings,
            body=body,
        )

    def generate_index(self, entries: Sequence[dict[str, Any]]) -> Optional[str]:
        """Generate the index page for a synced output directory.

        Each entry needs ``filename`` and ``title``; ``start_time``,
        ``message_count``, ``cwd`` and ``first_user_message`` are optional.
        Entries are listed newest first.
        """
        ordered = sorted(
            entries, key=lambda entry: entry.get("start_time") or "", reverse=True
        )
        rows = [
            {
                **entry,
                "time": format_timestamp_range(
                    entry.get("start_time"), entry.get("end_time")
                ),
            }
            for entry in ordered
        ]
        template = get_template_environment().get_template("index.html")
        return template.render(title="Agent Transcripts", entries=rows)
