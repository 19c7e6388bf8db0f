"""Factory for tool call content.

This module turns raw tool invocations into rendered ToolCall models:
- create_tool_input(): Create typed tool input from raw dict
- extract_tool_summary(): One-line summary of a tool invocation
- create_tool_call(): ToolInvocation + correlated ToolResult -> ToolCall
"""

from typing import Any, Callable, Optional, cast

from pydantic import BaseModel

from ..models import (
    # Tool input models
    AskUserQuestionInput,
    BashInput,
    EditInput,
    EditItem,
    GlobInput,
    GrepInput,
    MultiEditInput,
    NotebookEditInput,
    ReadInput,
    TaskInput,
    TodoWriteInput,
    TodoWriteItem,
    ToolCall,
    ToolInput,
    ToolInvocation,
    ToolResult,
    WebFetchInput,
    WebSearchInput,
    WriteInput,
)
from ..utils import truncate


# =============================================================================
# Tool Input Models Mapping
# =============================================================================

TOOL_INPUT_MODELS: dict[str, type[BaseModel]] = {
    "Bash": BashInput,
    "Read": ReadInput,
    "Write": WriteInput,
    "Edit": EditInput,
    "MultiEdit": MultiEditInput,
    "Glob": GlobInput,
    "Grep": GrepInput,
    "Task": TaskInput,
    "TodoWrite": TodoWriteInput,
    "AskUserQuestion": AskUserQuestionInput,
    "ask_user_question": AskUserQuestionInput,  # Legacy tool name
    "WebFetch": WebFetchInput,
    "WebSearch": WebSearchInput,
    "NotebookEdit": NotebookEditInput,
}

# pi-coding-agent records its built-in tools in lowercase
TOOL_NAME_ALIASES: dict[str, str] = {
    "bash": "Bash",
    "read": "Read",
    "write": "Write",
    "edit": "Edit",
    "multiedit": "MultiEdit",
    "glob": "Glob",
    "find": "Glob",
    "grep": "Grep",
    "task": "Task",
    "todowrite": "TodoWrite",
    "webfetch": "WebFetch",
    "websearch": "WebSearch",
}


def canonical_tool_name(tool_name: str) -> str:
    """Map harness-specific tool names onto the names used for typed inputs."""
    return TOOL_NAME_ALIASES.get(tool_name, tool_name)


# =============================================================================
# Lenient Parsing Helpers
# =============================================================================
# These functions create typed models even when strict validation fails.
# They use defaults for missing fields and skip invalid nested items.


def _path_field(data: dict[str, Any], key: str = "file_path") -> str:
    # pi tools name the argument "path"
    value = data.get(key) or data.get("path") or ""
    return str(value)


def _parse_todowrite_lenient(data: dict[str, Any]) -> TodoWriteInput:
    """Parse TodoWrite input leniently, handling malformed data."""
    todos_raw = data.get("todos", [])
    valid_todos: list[TodoWriteItem] = []
    if isinstance(todos_raw, list):
        for item in cast(list[Any], todos_raw):
            if isinstance(item, dict):
                try:
                    valid_todos.append(TodoWriteItem.model_validate(item))
                except Exception:
                    pass
            elif isinstance(item, str):
                valid_todos.append(TodoWriteItem(content=item))
    return TodoWriteInput(todos=valid_todos)


def _parse_bash_lenient(data: dict[str, Any]) -> BashInput:
    """Parse Bash input leniently."""
    timeout = data.get("timeout")
    return BashInput(
        command=str(data.get("command") or ""),
        description=data.get("description") or None,
        timeout=timeout if isinstance(timeout, int) else None,
    )


def _parse_read_lenient(data: dict[str, Any]) -> ReadInput:
    """Parse Read input leniently."""
    return ReadInput(file_path=_path_field(data))


def _parse_write_lenient(data: dict[str, Any]) -> WriteInput:
    """Parse Write input leniently."""
    content = data.get("content")
    return WriteInput(
        file_path=_path_field(data),
        content=content if isinstance(content, str) else "",
    )


def _parse_edit_lenient(data: dict[str, Any]) -> EditInput:
    """Parse Edit input leniently."""
    return EditInput(file_path=_path_field(data))


def _parse_multiedit_lenient(data: dict[str, Any]) -> MultiEditInput:
    """Parse MultiEdit input leniently."""
    edits_raw = data.get("edits", [])
    valid_edits: list[EditItem] = []
    if isinstance(edits_raw, list):
        for edit in cast(list[Any], edits_raw):
            if isinstance(edit, dict):
                try:
                    valid_edits.append(EditItem.model_validate(edit))
                except Exception:
                    pass
    return MultiEditInput(file_path=_path_field(data), edits=valid_edits)


def _parse_glob_lenient(data: dict[str, Any]) -> GlobInput:
    return GlobInput(pattern=str(data.get("pattern") or ""))


def _parse_grep_lenient(data: dict[str, Any]) -> GrepInput:
    path = data.get("path")
    return GrepInput(
        pattern=str(data.get("pattern") or ""),
        path=str(path) if path else None,
    )


def _parse_task_lenient(data: dict[str, Any]) -> TaskInput:
    """Parse Task input leniently."""
    return TaskInput(
        prompt=str(data.get("prompt") or ""),
        description=str(data.get("description") or ""),
    )


def _parse_webfetch_lenient(data: dict[str, Any]) -> WebFetchInput:
    return WebFetchInput(url=str(data.get("url") or ""))


def _parse_websearch_lenient(data: dict[str, Any]) -> WebSearchInput:
    return WebSearchInput(query=str(data.get("query") or ""))


def _parse_notebookedit_lenient(data: dict[str, Any]) -> NotebookEditInput:
    return NotebookEditInput(notebook_path=str(data.get("notebook_path") or ""))


# Mapping of tool names to their lenient parsers
TOOL_LENIENT_PARSERS: dict[str, Callable[[dict[str, Any]], BaseModel]] = {
    "Bash": _parse_bash_lenient,
    "Read": _parse_read_lenient,
    "Write": _parse_write_lenient,
    "Edit": _parse_edit_lenient,
    "MultiEdit": _parse_multiedit_lenient,
    "Glob": _parse_glob_lenient,
    "Grep": _parse_grep_lenient,
    "Task": _parse_task_lenient,
    "TodoWrite": _parse_todowrite_lenient,
    "WebFetch": _parse_webfetch_lenient,
    "WebSearch": _parse_websearch_lenient,
    "NotebookEdit": _parse_notebookedit_lenient,
}


# =============================================================================
# Tool Input Creation
# =============================================================================


def create_tool_input(tool_name: str, input_data: dict[str, Any]) -> ToolInput:
    """Create typed tool input from raw dictionary.

    Uses strict validation first, then lenient parsing if available.

    Args:
        tool_name: The name of the tool (e.g., "Bash", "read")
        input_data: The raw input dictionary of the invocation

    Returns:
        A typed input model if parsing succeeds, otherwise the raw dict
        (the dict fallback is part of the ToolInput union).
    """
    name = canonical_tool_name(tool_name)
    model_class = TOOL_INPUT_MODELS.get(name)
    if model_class is None:
        return input_data
    try:
        return cast(ToolInput, model_class.model_validate(input_data))
    except Exception:
        lenient_parser = TOOL_LENIENT_PARSERS.get(name)
        if lenient_parser is not None:
            try:
                return cast(ToolInput, lenient_parser(input_data))
            except Exception:
                return input_data
        return input_data


# =============================================================================
# Tool Summaries
# =============================================================================


def _summarize_bash(tool_input: BashInput) -> str:
    if tool_input.description:
        return tool_input.description
    return truncate(tool_input.command, 60)


def _summarize_grep(tool_input: GrepInput) -> str:
    location = f" in {tool_input.path}" if tool_input.path else ""
    return truncate(tool_input.pattern + location, 80)


def _summarize_task(tool_input: TaskInput) -> str:
    return truncate(tool_input.description or tool_input.prompt, 60)


TOOL_SUMMARY_EXTRACTORS: dict[type[BaseModel], Callable[[Any], str]] = {
    ReadInput: lambda i: i.file_path,
    WriteInput: lambda i: i.file_path,
    EditInput: lambda i: i.file_path,
    MultiEditInput: lambda i: i.file_path,
    BashInput: _summarize_bash,
    GrepInput: _summarize_grep,
    GlobInput: lambda i: i.pattern,
    WebFetchInput: lambda i: i.url,
    WebSearchInput: lambda i: i.query,
    TaskInput: _summarize_task,
    TodoWriteInput: lambda _: "update todos",
    AskUserQuestionInput: lambda _: "ask user",
    NotebookEditInput: lambda i: i.notebook_path,
}


def extract_tool_summary(tool_name: str, input_data: dict[str, Any]) -> str:
    """Extract a one-line summary of a tool invocation.

    Returns an empty string for unknown tools or when the relevant field
    is missing.
    """
    tool_input = create_tool_input(tool_name, input_data)
    if isinstance(tool_input, dict):
        return ""
    extractor = TOOL_SUMMARY_EXTRACTORS.get(type(tool_input))
    if extractor is None:
        return ""
    return extractor(tool_input) or ""


# =============================================================================
# Tool Call Creation
# =============================================================================


def create_tool_call(
    invocation: ToolInvocation, result: Optional[ToolResult] = None
) -> ToolCall:
    """Build the rendered ToolCall for an invocation and its correlated result.

    Error results are reported in ``error``; successful ones in ``result``.
    """
    call = ToolCall(
        id=invocation.id or None,
        name=invocation.name,
        summary=extract_tool_summary(invocation.name, invocation.input),
        input=invocation.input or None,
    )
    if result is not None:
        if result.is_error:
            call.error = result.output or "error"
        else:
            call.result = result.output
    return call
