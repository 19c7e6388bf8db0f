"""Factory for creating content items and node payloads from raw data.

This module creates typed model instances from session log message content:
- ContentItem subclasses (Text, Thinking, ToolUse, ToolCall, ToolResult, Image)
- Node payloads (UserPayload, AssistantPayload) built from content items

Both adapters share these helpers; each one only decides which payload a
record maps to.
"""

from typing import Any, Optional, Sequence, cast

from pydantic import BaseModel

from ..models import (
    # Content types
    ContentItem,
    ImageContent,
    TextContent,
    ThinkingContent,
    ToolCallContent,
    ToolResultContent,
    ToolUseContent,
    # Payloads
    AssistantPayload,
    ToolInvocation,
    ToolResult,
    UserPayload,
)
from ..parser import flatten_result_content


# =============================================================================
# Content Item Registry
# =============================================================================

# Maps content type strings to their model classes
CONTENT_ITEM_CREATORS: dict[str, type[BaseModel]] = {
    "text": TextContent,
    "thinking": ThinkingContent,
    "tool_use": ToolUseContent,
    "toolCall": ToolCallContent,
    "tool_result": ToolResultContent,
    "image": ImageContent,
}

# Content types allowed in each context
USER_CONTENT_TYPES: Sequence[str] = ("text", "tool_result", "image")
ASSISTANT_CONTENT_TYPES: Sequence[str] = ("text", "thinking", "tool_use", "toolCall")


# =============================================================================
# Content Item Creation
# =============================================================================


def create_content_item(
    item_data: dict[str, Any],
    type_filter: Optional[Sequence[str]] = None,
) -> Optional[ContentItem]:
    """Create a ContentItem from raw data using the registry.

    Args:
        item_data: The raw dictionary data
        type_filter: Sequence of content type strings to allow, or None to allow all
            (e.g., USER_CONTENT_TYPES, ASSISTANT_CONTENT_TYPES)

    Returns:
        ContentItem instance, or None for unknown, disallowed or invalid blocks
    """
    content_type = item_data.get("type", "")
    if type_filter is not None and content_type not in type_filter:
        return None
    model_class = CONTENT_ITEM_CREATORS.get(content_type)
    if model_class is None:
        return None
    try:
        return cast(ContentItem, model_class.model_validate(item_data))
    except Exception:
        return None


def create_message_content(
    content_data: Any,
    type_filter: Optional[Sequence[str]] = None,
) -> list[ContentItem]:
    """Create a list of ContentItems from message content data.

    Always returns a list for consistent downstream handling. String content
    is wrapped in a TextContent item.

    Args:
        content_data: Raw content data (string or list of items)
        type_filter: Sequence of content type strings to allow, or None to allow all
    """
    if isinstance(content_data, str):
        return [TextContent(type="text", text=content_data)]
    if not isinstance(content_data, list):
        return []
    result: list[ContentItem] = []
    for item in cast(list[Any], content_data):
        if isinstance(item, dict):
            content_item = create_content_item(cast(dict[str, Any], item), type_filter)
            if content_item is not None:
                result.append(content_item)
        elif isinstance(item, str):
            result.append(TextContent(type="text", text=item))
    return result


# =============================================================================
# Content Extraction
# =============================================================================


def extract_text_content(items: Sequence[ContentItem]) -> str:
    """Join non-empty text blocks with newlines."""
    return "\n".join(
        item.text for item in items if isinstance(item, TextContent) and item.text
    )


def extract_thinking_content(items: Sequence[ContentItem]) -> Optional[str]:
    """Join thinking blocks with blank lines, or None if there are none."""
    parts = [
        item.thinking
        for item in items
        if isinstance(item, ThinkingContent) and item.thinking
    ]
    return "\n\n".join(parts) or None


def extract_tool_invocations(items: Sequence[ContentItem]) -> list[ToolInvocation]:
    invocations: list[ToolInvocation] = []
    for item in items:
        if isinstance(item, ToolUseContent):
            invocations.append(
                ToolInvocation(id=item.id, name=item.name, input=item.input)
            )
        elif isinstance(item, ToolCallContent):
            invocations.append(
                ToolInvocation(id=item.id, name=item.name, input=item.arguments)
            )
    return invocations


def extract_tool_results(items: Sequence[ContentItem]) -> list[ToolResult]:
    return [
        ToolResult(
            tool_use_id=item.tool_use_id,
            output=flatten_result_content(item.content),
            is_error=bool(item.is_error),
        )
        for item in items
        if isinstance(item, ToolResultContent)
    ]


# =============================================================================
# Payload Creation
# =============================================================================


def create_user_payload(content_data: Any) -> UserPayload:
    """Create a user payload; tool_result blocks become correlated results."""
    items = create_message_content(content_data, USER_CONTENT_TYPES)
    return UserPayload(
        text=extract_text_content(items),
        tool_results=extract_tool_results(items),
    )


def create_assistant_payload(
    content_data: Any, error: Optional[str] = None
) -> AssistantPayload:
    """Create an assistant payload from text, thinking and tool call blocks."""
    items = create_message_content(content_data, ASSISTANT_CONTENT_TYPES)
    return AssistantPayload(
        text=extract_text_content(items),
        thinking=extract_thinking_content(items),
        tool_calls=extract_tool_invocations(items),
        error=error or None,
    )
