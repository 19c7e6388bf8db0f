#!/usr/bin/env python3
"""Conversation graph reconstruction and branch-aware traversal.

Session logs store messages as a parent-pointer forest interleaved with
bookkeeping records. This module turns a decoded node list into one
intermediate Transcript per conversation, and walks a Transcript along a
single canonical path for rendering.

Parse time (raw nodes -> transcripts):
- build_graph: resolve each message node's nearest message-bearing ancestor
- split_conversations: one Conversation per connected component
- elide_conversation: drop content-free nodes while keeping descendants attached
- build_transcripts: all of the above, producing Transcript models

Render time (transcript -> events):
- build_message_tree / select_canonical_path / collect_branch_notes
- walk_transcript_tree: lazy generator of MessagesEvent, BranchNoteEvent,
  HeadNotFoundEvent and EmptyEvent
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Iterator, Mapping, Optional, Sequence, Union

from .factories.tool_factory import create_tool_call
from .models import (
    AdministrativePayload,
    AssistantMessage,
    AssistantPayload,
    ErrorMessage,
    Message,
    RawNode,
    SystemMessage,
    SystemPayload,
    ToolCallGroup,
    ToolCallGroupPayload,
    ToolInvocation,
    ToolResult,
    Transcript,
    TranscriptMetadata,
    TranscriptSource,
    TranscriptWarning,
    UserMessage,
    UserPayload,
)
from .parser import epoch_to_iso, timestamp_to_epoch

logger = logging.getLogger(__name__)

FIRST_LINE_MAX_LENGTH = 60


# =============================================================================
# Graph Builder
# =============================================================================


@dataclass
class ConversationGraph:
    """Message nodes of one source file linked by resolved parents.

    ``order`` lists message node ids in input order. ``parents`` maps every
    message node to its nearest message-bearing ancestor, or None for roots.
    """

    nodes: dict[str, RawNode]
    order: list[str]
    parents: dict[str, Optional[str]]
    children: dict[str, list[str]]
    roots: list[str]
    duplicates: list[str] = field(default_factory=list)


def _nearest_message_ancestor(
    node: RawNode, index: Mapping[str, RawNode]
) -> Optional[str]:
    """Walk parent pointers through administrative nodes.

    Returns None for dangling references and when the walk revisits an id.
    """
    visited = {node.id}
    current = node.parent_id
    while current is not None:
        if current in visited:
            return None
        visited.add(current)
        parent = index.get(current)
        if parent is None:
            return None
        if parent.is_message:
            return parent.id
        current = parent.parent_id
    return None


def _find_cycle_members(parents: Mapping[str, Optional[str]]) -> set[str]:
    """Return every id that lies on a cycle of the parent relation."""
    # 1 = on the walk in progress, 2 = settled
    state: dict[str, int] = {}
    members: set[str] = set()
    for start in parents:
        if start in state:
            continue
        walk: list[str] = []
        current: Optional[str] = start
        while current is not None and current not in state:
            state[current] = 1
            walk.append(current)
            current = parents.get(current)
        if current is not None and state[current] == 1:
            members.update(walk[walk.index(current) :])
        for node_id in walk:
            state[node_id] = 2
    return members


def build_graph(nodes: Sequence[RawNode]) -> ConversationGraph:
    """Index nodes by id and resolve the parent of every message node.

    The first occurrence of a duplicated id wins; later ones are listed in
    ``duplicates``. Nodes on a parent cycle become roots.
    """
    index: dict[str, RawNode] = {}
    duplicates: list[str] = []
    for node in nodes:
        if node.id in index:
            logger.debug("Duplicate node id %s, keeping first occurrence", node.id)
            duplicates.append(node.id)
            continue
        index[node.id] = node

    order = [node_id for node_id, node in index.items() if node.is_message]
    parents: dict[str, Optional[str]] = {
        node_id: _nearest_message_ancestor(index[node_id], index) for node_id in order
    }
    for node_id in _find_cycle_members(parents):
        logger.debug("Node %s is on a parent cycle, treating it as a root", node_id)
        parents[node_id] = None

    children: dict[str, list[str]] = {node_id: [] for node_id in order}
    roots: list[str] = []
    for node_id in order:
        parent_id = parents[node_id]
        if parent_id is None:
            roots.append(node_id)
        else:
            children[parent_id].append(node_id)

    return ConversationGraph(
        nodes=index,
        order=order,
        parents=parents,
        children=children,
        roots=roots,
        duplicates=duplicates,
    )


# =============================================================================
# Conversation Splitter
# =============================================================================


@dataclass
class Conversation:
    """A maximal connected set of message nodes, in input order."""

    root_id: str
    nodes: list[RawNode]
    parents: dict[str, Optional[str]]
    start_epoch: Optional[float] = None

    @property
    def member_ids(self) -> list[str]:
        return [node.id for node in self.nodes]


def split_conversations(graph: ConversationGraph) -> list[Conversation]:
    """Split the graph into conversations, ordered by earliest timestamp.

    Conversations without any parseable timestamp sort last; ties keep root
    order.
    """
    position = {node_id: i for i, node_id in enumerate(graph.order)}
    visited: set[str] = set()
    conversations: list[Conversation] = []

    for root in graph.roots:
        if root in visited:
            continue
        visited.add(root)
        reached = [root]
        queue = deque([root])
        while queue:
            current = queue.popleft()
            for child in graph.children.get(current, []):
                if child not in visited:
                    visited.add(child)
                    reached.append(child)
                    queue.append(child)

        reached.sort(key=position.__getitem__)
        members = [graph.nodes[node_id] for node_id in reached]
        epochs = [
            epoch
            for epoch in (timestamp_to_epoch(node.timestamp) for node in members)
            if epoch is not None
        ]
        conversations.append(
            Conversation(
                root_id=root,
                nodes=members,
                parents={node_id: graph.parents[node_id] for node_id in reached},
                start_epoch=min(epochs) if epochs else None,
            )
        )

    conversations.sort(
        key=lambda c: (c.start_epoch is None, c.start_epoch or 0.0)
    )
    return conversations


# =============================================================================
# Node Classifier & Elider
# =============================================================================


@dataclass
class ElidedTree:
    """Renderable nodes of a conversation with effective parents."""

    nodes: list[RawNode]
    parents: dict[str, Optional[str]]
    tool_results: Mapping[str, ToolResult]


def collect_tool_results(
    nodes: Sequence[RawNode], extra: Optional[Mapping[str, ToolResult]] = None
) -> dict[str, ToolResult]:
    """Index every tool result in the source by its invocation id.

    Results carried by nodes take precedence; ``extra`` fills in the rest.
    The first result seen for an invocation id wins.
    """
    results: dict[str, ToolResult] = {}
    for node in nodes:
        payload = node.payload
        if isinstance(payload, (UserPayload, ToolCallGroupPayload)):
            for result in payload.tool_results:
                results.setdefault(result.tool_use_id, result)
    if extra:
        for tool_use_id, result in extra.items():
            results.setdefault(tool_use_id, result)
    return results


def is_elidable(node: RawNode) -> bool:
    """Whether a node has no user-visible content for its kind."""
    payload = node.payload
    if isinstance(payload, UserPayload):
        return not payload.text.strip()
    if isinstance(payload, AssistantPayload):
        has_thinking = bool(payload.thinking and payload.thinking.strip())
        return not (
            payload.text.strip() or has_thinking or payload.tool_calls or payload.error
        )
    if isinstance(payload, SystemPayload):
        return not payload.text.strip()
    if isinstance(payload, ToolCallGroupPayload):
        return not payload.calls
    if isinstance(payload, AdministrativePayload):
        return not payload.text.strip()
    return False


def resolve_effective_parent(
    parent_id: Optional[str], redirects: Mapping[str, Optional[str]]
) -> Optional[str]:
    """Follow redirects of elided nodes until reaching a kept id.

    Returns None when the chain ends without a kept id or loops.
    """
    visited: set[str] = set()
    current = parent_id
    while current is not None and current in redirects:
        if current in visited:
            return None
        visited.add(current)
        current = redirects[current]
    return current


def elide_conversation(
    conversation: Conversation, tool_results: Mapping[str, ToolResult]
) -> ElidedTree:
    """Drop elidable nodes and re-parent their descendants."""
    redirects: dict[str, Optional[str]] = {}
    kept: list[RawNode] = []
    for node in conversation.nodes:
        if is_elidable(node):
            redirects[node.id] = conversation.parents.get(node.id)
        else:
            kept.append(node)

    parents = {
        node.id: resolve_effective_parent(conversation.parents.get(node.id), redirects)
        for node in kept
    }
    return ElidedTree(nodes=kept, parents=parents, tool_results=tool_results)


def _create_tool_call_group(
    node: RawNode,
    calls: Sequence[ToolInvocation],
    parent_ref: Optional[str],
    tool_results: Mapping[str, ToolResult],
) -> ToolCallGroup:
    return ToolCallGroup(
        source_ref=node.id,
        timestamp=node.timestamp,
        parent_message_ref=parent_ref,
        raw_json=node.raw_json,
        calls=[create_tool_call(call, tool_results.get(call.id)) for call in calls],
    )


def create_node_messages(
    node: RawNode,
    parent_ref: Optional[str],
    tool_results: Mapping[str, ToolResult],
) -> list[Message]:
    """Produce the transcript messages for one renderable node."""
    payload = node.payload
    common = {
        "source_ref": node.id,
        "timestamp": node.timestamp,
        "parent_message_ref": parent_ref,
        "raw_json": node.raw_json,
    }
    messages: list[Message] = []

    if isinstance(payload, UserPayload):
        messages.append(UserMessage(content=payload.text, **common))
    elif isinstance(payload, AssistantPayload):
        if payload.text.strip() or payload.thinking:
            messages.append(
                AssistantMessage(
                    content=payload.text, thinking=payload.thinking, **common
                )
            )
        if payload.error:
            messages.append(ErrorMessage(content=payload.error, **common))
        if payload.tool_calls:
            messages.append(
                _create_tool_call_group(
                    node, payload.tool_calls, parent_ref, tool_results
                )
            )
    elif isinstance(payload, SystemPayload):
        messages.append(SystemMessage(content=payload.text, **common))
    elif isinstance(payload, ToolCallGroupPayload):
        messages.append(
            _create_tool_call_group(node, payload.calls, parent_ref, tool_results)
        )
    return messages


def _build_metadata(
    messages: Sequence[Message],
    warnings: list[TranscriptWarning],
    cwd: Optional[str],
) -> TranscriptMetadata:
    epochs = [
        epoch
        for epoch in (timestamp_to_epoch(message.timestamp) for message in messages)
        if epoch is not None
    ]
    return TranscriptMetadata(
        warnings=warnings,
        message_count=len(messages),
        start_time=epoch_to_iso(min(epochs)) if epochs else None,
        end_time=epoch_to_iso(max(epochs)) if epochs else None,
        cwd=cwd,
    )


def build_transcripts(
    nodes: Sequence[RawNode],
    source_file: str,
    adapter: str,
    warnings: Optional[Sequence[TranscriptWarning]] = None,
    cwd: Optional[str] = None,
    tool_results: Optional[Mapping[str, ToolResult]] = None,
) -> list[Transcript]:
    """Build one Transcript per conversation found in the nodes.

    Warnings are attached to the first transcript only. When no conversation
    exists a single empty transcript still carries them.
    """
    all_warnings = list(warnings or [])
    graph = build_graph(nodes)
    for duplicate in graph.duplicates:
        all_warnings.append(
            TranscriptWarning(
                type="duplicate_id",
                detail=f"Duplicate node id {duplicate}; keeping the first occurrence",
                source_ref=duplicate,
            )
        )

    results = collect_tool_results(nodes, tool_results)
    source = TranscriptSource(file=source_file, adapter=adapter)
    transcripts: list[Transcript] = []

    for i, conversation in enumerate(split_conversations(graph)):
        tree = elide_conversation(conversation, results)
        messages: list[Message] = []
        for node in tree.nodes:
            messages.extend(
                create_node_messages(node, tree.parents[node.id], tree.tool_results)
            )
        transcripts.append(
            Transcript(
                source=source,
                metadata=_build_metadata(
                    messages, all_warnings if i == 0 else [], cwd
                ),
                messages=messages,
            )
        )

    if not transcripts:
        transcripts.append(
            Transcript(
                source=source,
                metadata=TranscriptMetadata(warnings=all_warnings, cwd=cwd),
            )
        )
    return transcripts


# =============================================================================
# Canonical Path Selector
# =============================================================================


@dataclass
class MessageTree:
    """Render-time tree over a transcript's messages grouped by source_ref."""

    by_source_ref: dict[str, list[Message]]
    parents: dict[str, str]
    children: dict[str, list[str]]
    roots: list[str]


@dataclass(frozen=True)
class BranchInfo:
    source_ref: str
    first_line: str


@dataclass
class CanonicalPath:
    """Root-first ids of the chosen path.

    ``head_found`` is False only when an explicit head was requested and is
    not in the tree, in which case ``ids`` is empty.
    """

    ids: list[str]
    head: Optional[str] = None
    head_found: bool = True


def build_message_tree(messages: Sequence[Message]) -> MessageTree:
    """Group messages by source_ref and link groups by parent_message_ref.

    A parent reference only counts when the referenced group exists.
    """
    by_source_ref: dict[str, list[Message]] = {}
    for message in messages:
        by_source_ref.setdefault(message.source_ref, []).append(message)

    parents: dict[str, str] = {}
    for source_ref, group in by_source_ref.items():
        parent_ref = next(
            (m.parent_message_ref for m in group if m.parent_message_ref), None
        )
        if parent_ref is not None and parent_ref in by_source_ref:
            parents[source_ref] = parent_ref
    for source_ref in _find_cycle_members(parents):
        del parents[source_ref]

    children: dict[str, list[str]] = {}
    roots: list[str] = []
    for source_ref in by_source_ref:
        parent_ref = parents.get(source_ref)
        if parent_ref is None:
            roots.append(source_ref)
        else:
            children.setdefault(parent_ref, []).append(source_ref)

    return MessageTree(
        by_source_ref=by_source_ref, parents=parents, children=children, roots=roots
    )


def find_latest_leaf(tree: MessageTree) -> Optional[str]:
    """Pick the leaf whose first message is latest.

    Ties go to the first leaf encountered. When no leaf has a parseable
    timestamp the first leaf wins.
    """
    leaves = [ref for ref in tree.by_source_ref if not tree.children.get(ref)]
    latest: Optional[str] = None
    latest_epoch: Optional[float] = None
    for ref in leaves:
        epoch = timestamp_to_epoch(tree.by_source_ref[ref][0].timestamp)
        if epoch is None:
            continue
        if latest_epoch is None or epoch > latest_epoch:
            latest, latest_epoch = ref, epoch
    if latest is None and leaves:
        return leaves[0]
    return latest


def trace_path(target: str, parents: Mapping[str, str]) -> list[str]:
    """Walk from target up to its root and return the root-first path."""
    path: list[str] = []
    visited: set[str] = set()
    current: Optional[str] = target
    while current is not None and current not in visited:
        visited.add(current)
        path.append(current)
        current = parents.get(current)
    path.reverse()
    return path


def select_canonical_path(
    tree: MessageTree, head: Optional[str] = None
) -> CanonicalPath:
    """Choose the path to render: to ``head`` if given, else to the latest leaf."""
    if head:
        if head not in tree.by_source_ref:
            return CanonicalPath(ids=[], head=head, head_found=False)
        return CanonicalPath(ids=trace_path(head, tree.parents), head=head)
    target = find_latest_leaf(tree)
    if target is None:
        return CanonicalPath(ids=[])
    return CanonicalPath(ids=trace_path(target, tree.parents))


def get_first_line(message: Message) -> str:
    """First line of a message for branch previews, at most 60 characters."""
    if isinstance(message, ToolCallGroup):
        text = ", ".join(call.name for call in message.calls)
    else:
        text = message.content
    first_line = text.split("\n")[0].strip()
    if len(first_line) > FIRST_LINE_MAX_LENGTH:
        return first_line[:FIRST_LINE_MAX_LENGTH] + "..."
    return first_line


def _branch_infos(
    tree: MessageTree, refs: Sequence[str], on_path: set[str]
) -> list[BranchInfo]:
    return [
        BranchInfo(source_ref=ref, first_line=get_first_line(tree.by_source_ref[ref][0]))
        for ref in refs
        if ref not in on_path
    ]


def collect_branch_notes(
    tree: MessageTree, path: Sequence[str]
) -> dict[str, list[BranchInfo]]:
    """Map each path node with unchosen children to those children."""
    on_path = set(path)
    notes: dict[str, list[BranchInfo]] = {}
    for ref in path:
        children = tree.children.get(ref, [])
        if len(children) > 1:
            branches = _branch_infos(tree, children, on_path)
            if branches:
                notes[ref] = branches
    return notes


def collect_root_branches(tree: MessageTree, path: Sequence[str]) -> list[BranchInfo]:
    """Roots other than the path's own root, as alternate branches."""
    if len(tree.roots) < 2:
        return []
    return _branch_infos(tree, tree.roots, set(path))


# =============================================================================
# Transcript Assembler
# =============================================================================


@dataclass(frozen=True)
class MessagesEvent:
    """Messages of one path node, in transcript order."""

    messages: list[Message]


@dataclass(frozen=True)
class BranchNoteEvent:
    """Alternate branches diverging at the preceding path node."""

    branches: list[BranchInfo]


@dataclass(frozen=True)
class HeadNotFoundEvent:
    head: str


@dataclass(frozen=True)
class EmptyEvent:
    pass


TreeEvent = Union[MessagesEvent, BranchNoteEvent, HeadNotFoundEvent, EmptyEvent]


def walk_transcript_tree(
    transcript: Transcript, head: Optional[str] = None
) -> Iterator[TreeEvent]:
    """Walk the canonical path of a transcript, yielding render events.

    Branch notes are only produced when no explicit head is given.
    """
    if not transcript.messages:
        yield EmptyEvent()
        return

    tree = build_message_tree(transcript.messages)
    path = select_canonical_path(tree, head)
    if not path.head_found:
        yield HeadNotFoundEvent(head=path.head or "")
        return
    if not path.ids:
        yield MessagesEvent(messages=list(transcript.messages))
        return

    notes: dict[str, list[BranchInfo]] = {}
    if not head:
        root_branches = collect_root_branches(tree, path.ids)
        if root_branches:
            yield BranchNoteEvent(branches=root_branches)
        notes = collect_branch_notes(tree, path.ids)

    for ref in path.ids:
        yield MessagesEvent(messages=list(tree.by_source_ref[ref]))
        branches = notes.get(ref)
        if branches:
            yield BranchNoteEvent(branches=branches)
