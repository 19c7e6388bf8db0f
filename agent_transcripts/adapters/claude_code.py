"""Claude Code JSONL adapter.

Parses session files from ~/.claude/projects/{project}/{session}.jsonl.
Records carry ``uuid``/``parentUuid`` links; user and assistant records hold
Anthropic-style content blocks, and tool results arrive as ``tool_result``
blocks inside the following user record.
"""

import json
from pathlib import Path
from typing import Any, Callable, Optional

from ..factories.transcript_factory import (
    create_assistant_payload,
    create_user_payload,
)
from ..models import AdministrativePayload, NodePayload, RawNode, SystemPayload
from ..parser import parse_jsonl
from .base import Adapter, DecodedSource, string_field


def _message_content(record: dict[str, Any]) -> Any:
    message = record.get("message")
    if isinstance(message, dict):
        return message.get("content")
    return None


def _create_system_payload(record: dict[str, Any]) -> SystemPayload:
    content = record.get("content")
    return SystemPayload(text=content if isinstance(content, str) else "")


# Registry mapping record types to payload creators
PAYLOAD_CREATORS: dict[str, Callable[[dict[str, Any]], NodePayload]] = {
    "user": lambda record: create_user_payload(_message_content(record)),
    "assistant": lambda record: create_assistant_payload(_message_content(record)),
    "system": _create_system_payload,
}


def create_node(record: dict[str, Any]) -> Optional[RawNode]:
    """Create a RawNode from a record, or None for records without a uuid.

    Record types without a payload creator become administrative nodes so
    that they still link their children to the conversation.
    """
    uuid = string_field(record, "uuid")
    if uuid is None:
        return None
    record_type = str(record.get("type") or "unknown")
    creator = PAYLOAD_CREATORS.get(record_type)
    if creator is not None:
        payload = creator(record)
    else:
        payload = AdministrativePayload(label=record_type)
    return RawNode(
        id=uuid,
        parent_id=string_field(record, "parentUuid"),
        timestamp=string_field(record, "timestamp") or "",
        payload=payload,
        raw_json=json.dumps(record, ensure_ascii=False),
    )


class ClaudeCodeAdapter(Adapter):
    name = "claude-code"
    version = "claude-code:1"

    def default_source(self) -> Optional[Path]:
        return Path.home() / ".claude" / "projects"

    def decode(self, content: str) -> DecodedSource:
        records, warnings = parse_jsonl(content)
        decoded = DecodedSource(warnings=warnings)
        for record in records:
            if decoded.cwd is None:
                decoded.cwd = string_field(record, "cwd")
            node = create_node(record)
            if node is not None:
                decoded.nodes.append(node)
        return decoded

    def read_summary(self, records: list[dict[str, Any]]) -> Optional[str]:
        summary: Optional[str] = None
        for record in records:
            if record.get("type") == "summary":
                summary = string_field(record, "summary") or summary
        return summary
