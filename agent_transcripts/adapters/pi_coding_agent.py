"""pi-coding-agent JSONL adapter.

Parses session files from ~/.pi/sessions/{encoded-cwd}/{timestamp}_{uuid}.jsonl
(session format version 3). The first line is a ``session`` header carrying
the working directory; every later entry has ``id``/``parentId`` links.
Conversation turns are ``message`` entries whose embedded message has a
``role``. Tool results are separate ``toolResult`` messages in the chain.
"""

import json
import os
from pathlib import Path
from typing import Any, Callable, Optional

from ..factories.transcript_factory import (
    create_assistant_payload,
    create_user_payload,
)
from ..models import (
    AdministrativePayload,
    NodePayload,
    RawNode,
    SystemPayload,
    ToolResult,
    UserPayload,
)
from ..parser import flatten_result_content, parse_jsonl
from .base import Adapter, DecodedSource, string_field


def _create_assistant(message: dict[str, Any]) -> NodePayload:
    error = None
    if message.get("stopReason") == "error":
        error = string_field(message, "errorMessage") or "error"
    return create_assistant_payload(message.get("content"), error=error)


def _create_tool_result(message: dict[str, Any]) -> NodePayload:
    # A user turn with no authored text, so it is elided after correlation
    return UserPayload(
        tool_results=[
            ToolResult(
                tool_use_id=str(message.get("toolCallId") or ""),
                output=flatten_result_content(message.get("content")),
                is_error=bool(message.get("isError")),
                tool_name=string_field(message, "toolName"),
            )
        ]
    )


# Registry mapping message roles to payload creators. Roles not listed here
# (bashExecution, custom, branchSummary, compactionSummary, ...) are
# administrative.
ROLE_PAYLOAD_CREATORS: dict[str, Callable[[dict[str, Any]], NodePayload]] = {
    "user": lambda message: create_user_payload(message.get("content")),
    "assistant": _create_assistant,
    "toolResult": _create_tool_result,
}


def _create_message_payload(entry: dict[str, Any]) -> NodePayload:
    message = entry.get("message")
    if not isinstance(message, dict):
        return AdministrativePayload(label="message")
    role = str(message.get("role") or "unknown")
    creator = ROLE_PAYLOAD_CREATORS.get(role)
    if creator is None:
        return AdministrativePayload(label=role)
    return creator(message)


def _create_summary_payload(prefix: str) -> Callable[[dict[str, Any]], NodePayload]:
    def create(entry: dict[str, Any]) -> NodePayload:
        return SystemPayload(text=f"{prefix} {entry.get('summary') or ''}".rstrip())

    return create


# Registry mapping entry types to payload creators. Every other entry type
# with an id (model_change, thinking_level_change, session_info, label, ...)
# is administrative.
ENTRY_PAYLOAD_CREATORS: dict[str, Callable[[dict[str, Any]], NodePayload]] = {
    "message": _create_message_payload,
    "compaction": _create_summary_payload("[Compaction]"),
    "branch_summary": _create_summary_payload("[Branch summary]"),
}


def create_node(entry: dict[str, Any]) -> Optional[RawNode]:
    """Create a RawNode from a session entry, or None when it has no id."""
    entry_id = string_field(entry, "id")
    if entry_id is None:
        return None
    entry_type = str(entry.get("type") or "unknown")
    creator = ENTRY_PAYLOAD_CREATORS.get(entry_type)
    if creator is not None:
        payload = creator(entry)
    else:
        payload = AdministrativePayload(label=entry_type)
    return RawNode(
        id=entry_id,
        parent_id=string_field(entry, "parentId"),
        timestamp=string_field(entry, "timestamp") or "",
        payload=payload,
        raw_json=json.dumps(entry, ensure_ascii=False),
    )


class PiCodingAgentAdapter(Adapter):
    name = "pi-coding-agent"
    version = "pi-coding-agent:1"

    def default_source(self) -> Optional[Path]:
        base = os.environ.get("PI_CODING_AGENT_DIR")
        root = Path(base) if base else Path.home() / ".pi"
        return root / "sessions"

    def decode(self, content: str) -> DecodedSource:
        records, warnings = parse_jsonl(content)
        decoded = DecodedSource(warnings=warnings)
        for record in records:
            if record.get("type") == "session":
                decoded.cwd = string_field(record, "cwd") or decoded.cwd
                continue
            node = create_node(record)
            if node is not None:
                decoded.nodes.append(node)
        return decoded

    def read_summary(self, records: list[dict[str, Any]]) -> Optional[str]:
        name: Optional[str] = None
        for record in records:
            if record.get("type") == "session_info":
                name = string_field(record, "name") or name
        return name
