"""Pydantic models for agent session logs and the intermediate transcript format.

Three groups of models live here:

- Raw nodes: what a format adapter decodes from a session log. Each node
  carries an id, an optional parent id, a timestamp and a closed, tagged
  payload. The graph code in tree.py only ever sees these.
- Intermediate transcript: the adapter-agnostic, JSON-serializable result of
  parsing one conversation (messages with resolved parent references plus
  summary metadata). This is what gets archived and rendered.
- Tool input models: typed views of tool invocation arguments, used to build
  one-line tool call summaries.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class NodeKind(str, Enum):
    """Classification of a raw node.

    Using str as base class keeps plain string comparisons working.
    """

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL_CALL_GROUP = "tool_call_group"
    ADMINISTRATIVE = "administrative"


# Kinds that carry conversation content. Administrative nodes are bookkeeping
# records that sit in the parent chain but never become messages.
MESSAGE_KINDS = frozenset(
    {NodeKind.USER, NodeKind.ASSISTANT, NodeKind.SYSTEM, NodeKind.TOOL_CALL_GROUP}
)


# =============================================================================
# Raw Node Models
# =============================================================================


class ToolInvocation(BaseModel):
    """A single tool call requested by the assistant."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    input: dict[str, Any] = {}


class ToolResult(BaseModel):
    """Output of a tool call, keyed back to the invocation by tool_use_id."""

    model_config = ConfigDict(frozen=True)

    tool_use_id: str
    output: str = ""
    is_error: bool = False
    tool_name: Optional[str] = None


class UserPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["user"] = "user"
    text: str = ""
    tool_results: list[ToolResult] = []


class AssistantPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["assistant"] = "assistant"
    text: str = ""
    thinking: Optional[str] = None
    tool_calls: list[ToolInvocation] = []
    error: Optional[str] = None


class SystemPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["system"] = "system"
    text: str = ""


class ToolCallGroupPayload(BaseModel):
    """Tool calls recorded as their own node rather than inside an assistant turn."""

    model_config = ConfigDict(frozen=True)

    type: Literal["tool_call_group"] = "tool_call_group"
    calls: list[ToolInvocation] = []
    tool_results: list[ToolResult] = []


class AdministrativePayload(BaseModel):
    """Bookkeeping record (model switches, snapshots, session info, ...)."""

    model_config = ConfigDict(frozen=True)

    type: Literal["administrative"] = "administrative"
    label: str = ""
    text: str = ""


NodePayload = Annotated[
    Union[
        UserPayload,
        AssistantPayload,
        SystemPayload,
        ToolCallGroupPayload,
        AdministrativePayload,
    ],
    Field(discriminator="type"),
]


class RawNode(BaseModel):
    """One decoded record from a session log.

    The kind is derived from the payload tag so the two can never disagree.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    parent_id: Optional[str] = None
    timestamp: str = ""
    payload: NodePayload
    raw_json: Optional[str] = None

    @property
    def kind(self) -> NodeKind:
        return NodeKind(self.payload.type)

    @property
    def is_message(self) -> bool:
        return self.kind in MESSAGE_KINDS


# =============================================================================
# Intermediate Transcript Models
# =============================================================================


class TranscriptWarning(BaseModel):
    """Non-fatal problem found while decoding a source file."""

    type: str
    detail: str
    source_ref: Optional[str] = None


class TranscriptSource(BaseModel):
    file: str
    adapter: str


class TranscriptMetadata(BaseModel):
    warnings: list[TranscriptWarning] = []
    message_count: int = 0
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    cwd: Optional[str] = None


class ToolCall(BaseModel):
    """A tool call as rendered, enriched with its correlated result."""

    id: Optional[str] = None
    name: str
    summary: str = ""
    input: Optional[dict[str, Any]] = None
    result: Optional[str] = None
    error: Optional[str] = None


class BaseMessage(BaseModel):
    source_ref: str
    timestamp: str
    parent_message_ref: Optional[str] = None
    # Source record as logged, for the HTML raw view
    raw_json: Optional[str] = None


class UserMessage(BaseMessage):
    type: Literal["user"] = "user"
    content: str


class AssistantMessage(BaseMessage):
    type: Literal["assistant"] = "assistant"
    content: str = ""
    thinking: Optional[str] = None


class SystemMessage(BaseMessage):
    type: Literal["system"] = "system"
    content: str


class ToolCallGroup(BaseMessage):
    type: Literal["tool_calls"] = "tool_calls"
    calls: list[ToolCall]


class ErrorMessage(BaseMessage):
    type: Literal["error"] = "error"
    content: str


Message = Annotated[
    Union[UserMessage, AssistantMessage, SystemMessage, ToolCallGroup, ErrorMessage],
    Field(discriminator="type"),
]


class Transcript(BaseModel):
    """One conversation from one source file, ready for rendering."""

    source: TranscriptSource
    metadata: TranscriptMetadata = Field(default_factory=TranscriptMetadata)
    messages: list[Message] = []


# =============================================================================
# Wire Content Blocks
# =============================================================================
# Content blocks as they appear inside session log messages. Unknown block
# types are dropped by the content factory.


class TextContent(BaseModel):
    type: Literal["text"]
    text: str = ""


class ThinkingContent(BaseModel):
    type: Literal["thinking"]
    thinking: str = ""
    signature: Optional[str] = None


class ToolUseContent(BaseModel):
    """Anthropic-style tool invocation block."""

    type: Literal["tool_use"]
    id: str = ""
    name: str
    input: dict[str, Any] = {}


class ToolCallContent(BaseModel):
    """pi-coding-agent tool invocation block (arguments instead of input)."""

    type: Literal["toolCall"]
    id: str = ""
    name: str
    arguments: dict[str, Any] = {}


class ToolResultContent(BaseModel):
    type: Literal["tool_result"]
    tool_use_id: str
    content: Union[str, list[dict[str, Any]], None] = None
    is_error: Optional[bool] = None


class ImageContent(BaseModel):
    """Image block; only its presence is recorded in transcripts."""

    type: Literal["image"]

    model_config = {"extra": "allow"}


ContentItem = Union[
    TextContent,
    ThinkingContent,
    ToolUseContent,
    ToolCallContent,
    ToolResultContent,
    ImageContent,
]


# =============================================================================
# Tool Input Models
# =============================================================================
# Typed models for tool inputs. Only the fields used for summaries are
# required; everything else is optional so that partially recorded calls
# still validate.


class BashInput(BaseModel):
    """Input parameters for the Bash tool."""

    command: str
    description: Optional[str] = None
    timeout: Optional[int] = None
    run_in_background: Optional[bool] = None


class ReadInput(BaseModel):
    """Input parameters for the Read tool."""

    file_path: str
    offset: Optional[int] = None
    limit: Optional[int] = None


class WriteInput(BaseModel):
    file_path: str
    content: str = ""


class EditInput(BaseModel):
    file_path: str
    old_string: str = ""
    new_string: str = ""
    replace_all: Optional[bool] = None


class EditItem(BaseModel):
    old_string: str
    new_string: str


class MultiEditInput(BaseModel):
    file_path: str
    edits: list[EditItem] = []


class GlobInput(BaseModel):
    pattern: str
    path: Optional[str] = None


class GrepInput(BaseModel):
    """Input parameters for the Grep tool.

    Note: Extra fields like -A, -B, -C are allowed for flexibility.
    """

    pattern: str
    path: Optional[str] = None
    glob: Optional[str] = None
    output_mode: Optional[Literal["content", "files_with_matches", "count"]] = None

    model_config = {"extra": "allow"}


class TaskInput(BaseModel):
    prompt: str = ""
    description: str = ""
    subagent_type: Optional[str] = None


class TodoWriteItem(BaseModel):
    """Single todo item; all fields default for lenient parsing."""

    content: str = ""
    status: str = "pending"
    activeForm: str = ""


class TodoWriteInput(BaseModel):
    todos: list[TodoWriteItem] = []


class AskUserQuestionInput(BaseModel):
    questions: list[dict[str, Any]] = []
    question: Optional[str] = None  # Legacy single question format


class WebFetchInput(BaseModel):
    url: str
    prompt: Optional[str] = None


class WebSearchInput(BaseModel):
    query: str


class NotebookEditInput(BaseModel):
    notebook_path: str
    new_source: str = ""


ToolInput = Union[
    BashInput,
    ReadInput,
    WriteInput,
    EditInput,
    MultiEditInput,
    GlobInput,
    GrepInput,
    TaskInput,
    TodoWriteInput,
    AskUserQuestionInput,
    WebFetchInput,
    WebSearchInput,
    NotebookEditInput,
    dict[str, Any],  # Fallback for unknown tools
]
