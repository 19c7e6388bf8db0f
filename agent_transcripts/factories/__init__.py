"""Factory modules for creating typed objects from raw data."""

from .tool_factory import (
    # Tool input creation
    create_tool_input,
    canonical_tool_name,
    # Tool call creation
    create_tool_call,
    extract_tool_summary,
    # Tool input models mapping
    TOOL_INPUT_MODELS,
)
from .transcript_factory import (
    # Content type constants
    ASSISTANT_CONTENT_TYPES,
    USER_CONTENT_TYPES,
    # Content item creation
    create_content_item,
    create_message_content,
    # Payload creation
    create_assistant_payload,
    create_user_payload,
)

__all__ = [
    # Tool input creation
    "create_tool_input",
    "canonical_tool_name",
    # Tool call creation
    "create_tool_call",
    "extract_tool_summary",
    # Tool input models mapping
    "TOOL_INPUT_MODELS",
    # Content type constants
    "ASSISTANT_CONTENT_TYPES",
    "USER_CONTENT_TYPES",
    # Content item creation
    "create_content_item",
    "create_message_content",
    # Payload creation
    "create_assistant_payload",
    "create_user_payload",
]
