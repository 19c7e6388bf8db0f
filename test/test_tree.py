#!/usr/bin/env python3
"""Tests for conversation graph reconstruction and canonical path walking."""

from typing import Optional

from agent_transcripts.models import (
    AdministrativePayload,
    AssistantMessage,
    AssistantPayload,
    RawNode,
    SystemPayload,
    ToolCallGroup,
    ToolInvocation,
    ToolResult,
    Transcript,
    TranscriptSource,
    TranscriptWarning,
    UserMessage,
    UserPayload,
)
from agent_transcripts.tree import (
    BranchNoteEvent,
    EmptyEvent,
    HeadNotFoundEvent,
    MessagesEvent,
    build_graph,
    build_message_tree,
    build_transcripts,
    collect_tool_results,
    elide_conversation,
    find_latest_leaf,
    get_first_line,
    is_elidable,
    resolve_effective_parent,
    select_canonical_path,
    split_conversations,
    walk_transcript_tree,
)


def ts(second: int) -> str:
    return f"2025-01-01T00:00:{second:02d}Z"


def user(node_id: str, parent: Optional[str] = None, second: int = 0, text: str = "hi"):
    return RawNode(
        id=node_id, parent_id=parent, timestamp=ts(second), payload=UserPayload(text=text)
    )


def assistant(
    node_id: str,
    parent: Optional[str] = None,
    second: int = 0,
    text: str = "ok",
    **kwargs,
):
    return RawNode(
        id=node_id,
        parent_id=parent,
        timestamp=ts(second),
        payload=AssistantPayload(text=text, **kwargs),
    )


def admin(node_id: str, parent: Optional[str] = None):
    return RawNode(
        id=node_id,
        parent_id=parent,
        timestamp=ts(0),
        payload=AdministrativePayload(label="model_change"),
    )


def make_transcript(messages) -> Transcript:
    return Transcript(
        source=TranscriptSource(file="test.jsonl", adapter="claude-code"),
        messages=messages,
    )


def user_message(ref: str, parent: Optional[str], second: int, text: str = "hi"):
    return UserMessage(
        source_ref=ref, timestamp=ts(second), parent_message_ref=parent, content=text
    )


def assistant_message(ref: str, parent: Optional[str], second: int, text: str = "ok"):
    return AssistantMessage(
        source_ref=ref, timestamp=ts(second), parent_message_ref=parent, content=text
    )


class TestBuildGraph:
    """Tests for resolving message parents."""

    def test_dangling_parent_becomes_root(self):
        """A parent id not present in the input makes the node a root."""
        graph = build_graph([user("a", parent="missing")])
        assert graph.parents["a"] is None
        assert graph.roots == ["a"]

    def test_walks_through_administrative_nodes(self):
        """Administrative nodes are skipped when resolving the parent."""
        graph = build_graph(
            [user("u1", second=1), admin("x", "u1"), admin("y", "x"), assistant("a1", "y", 2)]
        )
        assert graph.parents["a1"] == "u1"
        assert graph.order == ["u1", "a1"]
        assert graph.children["u1"] == ["a1"]

    def test_duplicate_ids_keep_first(self):
        """The first occurrence of a duplicated id wins."""
        graph = build_graph([user("a", text="first"), user("a", text="second")])
        assert graph.nodes["a"].payload.text == "first"
        assert graph.duplicates == ["a"]

    def test_two_node_cycle_yields_two_roots(self):
        """A->B->A makes both nodes independent roots."""
        graph = build_graph([user("a", parent="b"), user("b", parent="a")])
        assert graph.parents == {"a": None, "b": None}
        assert graph.roots == ["a", "b"]

    def test_self_parent_is_root(self):
        """A node that names itself as parent is a root."""
        graph = build_graph([user("a", parent="a")])
        assert graph.roots == ["a"]

    def test_cycle_through_administrative_node(self):
        """A walk that revisits an id stops and yields a root."""
        graph = build_graph([admin("x", "u1"), user("u1", parent="x")])
        assert graph.parents["u1"] is None

    def test_node_hanging_off_cycle_keeps_parent(self):
        """Only cycle members are cut; their descendants stay attached."""
        graph = build_graph(
            [user("a", parent="b"), user("b", parent="a"), user("c", parent="a")]
        )
        assert graph.parents["c"] == "a"
        assert graph.children["a"] == ["c"]


class TestSplitConversations:
    """Tests for splitting the graph into conversations."""

    def test_every_message_node_in_exactly_one_conversation(self):
        """Membership partitions the message-bearing nodes."""
        nodes = [
            user("a", second=1),
            assistant("b", "a", 2),
            user("c", "b", 3),
            user("d", second=4),
            assistant("e", "d", 5),
            admin("x", "e"),
            user("f", "x", 6),
        ]
        conversations = split_conversations(build_graph(nodes))
        members = [node_id for c in conversations for node_id in c.member_ids]
        assert sorted(members) == ["a", "b", "c", "d", "e", "f"]
        assert len(members) == len(set(members))

    def test_membership_is_reachable_set(self):
        """Each conversation holds exactly what its root reaches."""
        nodes = [
            user("a", second=1),
            assistant("b", "a", 2),
            assistant("c", "a", 3),
            user("d", "c", 4),
            user("z", second=9),
        ]
        conversations = split_conversations(build_graph(nodes))
        assert [c.member_ids for c in conversations] == [["a", "b", "c", "d"], ["z"]]

    def test_members_keep_input_order(self):
        """Members are listed in input order, not BFS order."""
        nodes = [user("a", second=1), user("c", "b", 3), assistant("b", "a", 2)]
        [conversation] = split_conversations(build_graph(nodes))
        assert conversation.member_ids == ["a", "c", "b"]

    def test_ordered_by_earliest_timestamp(self):
        """Conversations are sorted by their earliest message."""
        nodes = [user("late", second=30), user("early", second=10)]
        conversations = split_conversations(build_graph(nodes))
        assert [c.root_id for c in conversations] == ["early", "late"]

    def test_conversations_without_timestamps_sort_last(self):
        """A conversation with no parseable timestamp goes last."""
        undated = RawNode(id="u", timestamp="not a date", payload=UserPayload(text="x"))
        nodes = [undated, user("dated", second=5)]
        conversations = split_conversations(build_graph(nodes))
        assert [c.root_id for c in conversations] == ["dated", "u"]
        assert conversations[1].start_epoch is None


class TestElision:
    """Tests for node classification and effective parents."""

    def test_elided_node_redirects_child(self):
        """A(root), B(A), C(B, elided), D(C): D's effective parent is B."""
        nodes = [
            user("A", second=1),
            assistant("B", "A", 2),
            user("C", "B", 3, text="   "),
            assistant("D", "C", 4),
        ]
        [conversation] = split_conversations(build_graph(nodes))
        tree = elide_conversation(conversation, {})
        assert [node.id for node in tree.nodes] == ["A", "B", "D"]
        assert tree.parents["D"] == "B"

    def test_chain_of_elided_nodes(self):
        """Several elided ancestors in a row are all skipped."""
        nodes = [
            user("A", second=1),
            user("B", "A", 2, text=""),
            assistant("C", "B", 3, text=""),
            assistant("D", "C", 4),
        ]
        [conversation] = split_conversations(build_graph(nodes))
        tree = elide_conversation(conversation, {})
        assert tree.parents["D"] == "A"

    def test_elided_root_makes_child_root(self):
        """Children of an elided root become roots."""
        nodes = [user("A", second=1, text=""), assistant("B", "A", 2)]
        [conversation] = split_conversations(build_graph(nodes))
        tree = elide_conversation(conversation, {})
        assert tree.parents == {"B": None}

    def test_cyclic_redirects_terminate(self):
        """Resolution stops on a redirect loop instead of spinning."""
        assert resolve_effective_parent("x", {"x": "y", "y": "x"}) is None

    def test_redirect_to_kept_node(self):
        """Resolution returns the first id that is not redirected."""
        assert resolve_effective_parent("x", {"x": "y", "y": "z"}) == "z"
        assert resolve_effective_parent("k", {"x": "y"}) == "k"
        assert resolve_effective_parent(None, {"x": "y"}) is None

    def test_elidable_classification(self):
        """Nodes without visible content are elidable."""
        call = ToolInvocation(id="t1", name="Bash", input={"command": "ls"})
        assert is_elidable(user("a", text=" \n"))
        assert not is_elidable(user("a", text="hello"))
        assert is_elidable(assistant("a", text=""))
        assert not is_elidable(assistant("a", text="", thinking="hmm"))
        assert not is_elidable(assistant("a", text="", tool_calls=[call]))
        assert not is_elidable(assistant("a", text="", error="boom"))
        assert is_elidable(RawNode(id="s", payload=SystemPayload(text="")))

    def test_node_results_take_precedence(self):
        """Results carried by nodes win over adapter-supplied ones."""
        node_result = ToolResult(tool_use_id="t1", output="from node")
        nodes = [
            RawNode(id="r", payload=UserPayload(tool_results=[node_result])),
        ]
        results = collect_tool_results(
            nodes,
            {
                "t1": ToolResult(tool_use_id="t1", output="from map"),
                "t2": ToolResult(tool_use_id="t2", output="extra"),
            },
        )
        assert results["t1"].output == "from node"
        assert results["t2"].output == "extra"


class TestBuildTranscripts:
    """Tests for assembling transcripts from raw nodes."""

    def test_one_transcript_per_conversation(self):
        """Each conversation becomes its own transcript."""
        transcripts = build_transcripts(
            [user("a", second=1), user("b", second=2)], "s.jsonl", "claude-code"
        )
        assert [[m.source_ref for m in t.messages] for t in transcripts] == [["a"], ["b"]]

    def test_cycle_produces_single_node_transcripts(self):
        """A->B->A yields two transcripts with one message each."""
        transcripts = build_transcripts(
            [user("a", "b", 1), user("b", "a", 2)], "s.jsonl", "claude-code"
        )
        assert len(transcripts) == 2
        assert all(len(t.messages) == 1 for t in transcripts)
        assert all(t.messages[0].parent_message_ref is None for t in transcripts)

    def test_raw_record_copied_to_messages(self):
        """Every message made from a node carries the node's raw record."""
        call = ToolInvocation(id="t1", name="Bash", input={"command": "ls"})
        node = RawNode(
            id="a",
            timestamp=ts(1),
            payload=AssistantPayload(text="Running it", tool_calls=[call]),
            raw_json='{"uuid": "a"}',
        )
        [transcript] = build_transcripts([node], "s.jsonl", "claude-code")
        assert [m.raw_json for m in transcript.messages] == ['{"uuid": "a"}'] * 2

    def test_assistant_with_tool_calls(self):
        """An assistant turn yields its text and a tool call group sharing the source ref."""
        call = ToolInvocation(id="t1", name="Bash", input={"command": "ls"})
        nodes = [
            user("u", second=1),
            assistant("a", "u", 2, text="Running it", tool_calls=[call]),
            RawNode(
                id="r",
                parent_id="a",
                timestamp=ts(3),
                payload=UserPayload(
                    tool_results=[ToolResult(tool_use_id="t1", output="file.txt")]
                ),
            ),
        ]
        [transcript] = build_transcripts(nodes, "s.jsonl", "claude-code")
        assert [type(m).__name__ for m in transcript.messages] == [
            "UserMessage",
            "AssistantMessage",
            "ToolCallGroup",
        ]
        group = transcript.messages[2]
        assert isinstance(group, ToolCallGroup)
        assert group.source_ref == "a"
        assert group.parent_message_ref == "u"
        assert group.calls[0].summary == "ls"
        assert group.calls[0].result == "file.txt"

    def test_error_result_is_reported(self):
        """Error tool results populate the call's error."""
        call = ToolInvocation(id="t1", name="Read", input={"file_path": "/x"})
        nodes = [
            assistant("a", second=1, text="", tool_calls=[call]),
        ]
        [transcript] = build_transcripts(
            nodes,
            "s.jsonl",
            "pi-coding-agent",
            tool_results={"t1": ToolResult(tool_use_id="t1", output="nope", is_error=True)},
        )
        [group] = transcript.messages
        assert isinstance(group, ToolCallGroup)
        assert group.calls[0].error == "nope"
        assert group.calls[0].result is None

    def test_metadata(self):
        """Metadata counts messages and spans their timestamps."""
        [transcript] = build_transcripts(
            [user("a", second=1), assistant("b", "a", 9)],
            "s.jsonl",
            "claude-code",
            cwd="/work",
        )
        assert transcript.metadata.message_count == 2
        assert transcript.metadata.start_time == "2025-01-01T00:00:01.000Z"
        assert transcript.metadata.end_time == "2025-01-01T00:00:09.000Z"
        assert transcript.metadata.cwd == "/work"
        assert transcript.source.adapter == "claude-code"

    def test_duplicate_id_warning(self):
        """Duplicated ids are recorded as warnings."""
        [transcript] = build_transcripts(
            [user("a", second=1), user("a", second=2)], "s.jsonl", "claude-code"
        )
        [warning] = transcript.metadata.warnings
        assert warning.type == "duplicate_id"
        assert warning.source_ref == "a"

    def test_warnings_only_on_first_transcript(self):
        """Decode warnings are attached to the first transcript."""
        warning = TranscriptWarning(type="parse_error", detail="Line 3: bad")
        transcripts = build_transcripts(
            [user("a", second=1), user("b", second=2)],
            "s.jsonl",
            "claude-code",
            warnings=[warning],
        )
        assert transcripts[0].metadata.warnings == [warning]
        assert transcripts[1].metadata.warnings == []

    def test_no_nodes_gives_empty_transcript(self):
        """Input without message nodes still yields one transcript."""
        warning = TranscriptWarning(type="parse_error", detail="Line 1: bad")
        [transcript] = build_transcripts(
            [admin("x")], "s.jsonl", "claude-code", warnings=[warning]
        )
        assert transcript.messages == []
        assert transcript.metadata.warnings == [warning]


class TestCanonicalPath:
    """Tests for choosing the path to render."""

    def test_latest_leaf_wins(self):
        """Leaves at T1 < T2 < T3 select the T3 leaf."""
        tree = build_message_tree(
            [
                user_message("root", None, 0),
                assistant_message("t1", "root", 1),
                assistant_message("t3", "root", 3),
                assistant_message("t2", "root", 2),
            ]
        )
        assert find_latest_leaf(tree) == "t3"
        assert select_canonical_path(tree).ids == ["root", "t3"]

    def test_latest_leaf_tie_goes_to_first(self):
        """Leaves with equal timestamps resolve to the first one encountered."""
        tree = build_message_tree(
            [
                user_message("root", None, 0),
                assistant_message("a", "root", 2),
                assistant_message("b", "root", 2),
            ]
        )
        assert find_latest_leaf(tree) == "a"
        assert select_canonical_path(tree).ids == ["root", "a"]

    def test_parent_ref_cycle_is_broken(self):
        """Messages whose parent references form a cycle all become roots."""
        messages = [
            user_message("a", "b", 0, "first"),
            assistant_message("b", "a", 1, "second"),
        ]
        tree = build_message_tree(messages)
        assert tree.parents == {}
        assert tree.roots == ["a", "b"]
        assert select_canonical_path(tree).ids == ["b"]

        events = list(walk_transcript_tree(make_transcript(messages)))
        assert len(events) == 2
        note, body = events
        assert isinstance(note, BranchNoteEvent)
        assert [(b.source_ref, b.first_line) for b in note.branches] == [("a", "first")]
        assert isinstance(body, MessagesEvent)
        assert [m.source_ref for m in body.messages] == ["b"]

    def test_explicit_head(self):
        """An explicit head ends the path there."""
        tree = build_message_tree(
            [
                user_message("root", None, 0),
                assistant_message("a", "root", 1),
                user_message("b", "a", 2),
            ]
        )
        path = select_canonical_path(tree, "a")
        assert path.ids == ["root", "a"]
        assert path.head_found

    def test_missing_head(self):
        """An unknown head never yields a path."""
        tree = build_message_tree([user_message("root", None, 0)])
        path = select_canonical_path(tree, "nope")
        assert path.ids == []
        assert not path.head_found

    def test_undated_leaves_fall_back_to_first(self):
        """Without parseable timestamps the first leaf is chosen."""
        tree = build_message_tree(
            [
                UserMessage(source_ref="r", timestamp="", content="x"),
                AssistantMessage(source_ref="a", timestamp="", parent_message_ref="r"),
                AssistantMessage(source_ref="b", timestamp="", parent_message_ref="r"),
            ]
        )
        assert find_latest_leaf(tree) == "a"

    def test_parent_ref_to_unknown_message_is_root(self):
        """References to messages outside the transcript are ignored."""
        tree = build_message_tree([user_message("a", "gone", 0)])
        assert tree.roots == ["a"]

    def test_first_line_truncation(self):
        """Branch previews keep the first line, at most 60 characters."""
        long_text = "x" * 70 + "\nsecond line"
        assert get_first_line(user_message("a", None, 0, long_text)) == "x" * 60 + "..."
        assert get_first_line(user_message("a", None, 0, "short\nmore")) == "short"


class TestWalkTranscriptTree:
    """Tests for the render event stream."""

    def test_branch_note_after_divergence_point(self):
        """Siblings X(B), Y(B) with Y canonical produce a note at B naming X."""
        transcript = make_transcript(
            [
                user_message("A", None, 0),
                assistant_message("B", "A", 1),
                user_message("X", "B", 2, "abandoned"),
                user_message("Y", "B", 3, "kept"),
            ]
        )
        events = list(walk_transcript_tree(transcript))
        assert [type(e).__name__ for e in events] == [
            "MessagesEvent",
            "MessagesEvent",
            "BranchNoteEvent",
            "MessagesEvent",
        ]
        note = events[2]
        assert isinstance(note, BranchNoteEvent)
        assert [(b.source_ref, b.first_line) for b in note.branches] == [
            ("X", "abandoned")
        ]
        last = events[3]
        assert isinstance(last, MessagesEvent)
        assert last.messages[0].source_ref == "Y"

    def test_explicit_head_has_no_branch_notes(self):
        """Rendering to a head emits only the path's messages."""
        transcript = make_transcript(
            [
                user_message("A", None, 0),
                user_message("X", "A", 2),
                user_message("Y", "A", 3),
            ]
        )
        events = list(walk_transcript_tree(transcript, head="X"))
        assert all(isinstance(e, MessagesEvent) for e in events)
        assert [e.messages[0].source_ref for e in events] == ["A", "X"]

    def test_head_not_found(self):
        """A missing head yields a single not-found event."""
        transcript = make_transcript([user_message("A", None, 0)])
        assert list(walk_transcript_tree(transcript, head="Z")) == [
            HeadNotFoundEvent(head="Z")
        ]

    def test_empty_transcript(self):
        """A transcript without messages yields a single empty event."""
        assert list(walk_transcript_tree(make_transcript([]))) == [EmptyEvent()]

    def test_other_roots_noted_first(self):
        """Alternate roots are listed before the path's messages."""
        transcript = make_transcript(
            [user_message("R1", None, 0, "old start"), user_message("R2", None, 5)]
        )
        events = list(walk_transcript_tree(transcript))
        assert isinstance(events[0], BranchNoteEvent)
        assert events[0].branches[0].source_ref == "R1"
        assert isinstance(events[1], MessagesEvent)
        assert events[1].messages[0].source_ref == "R2"

    def test_grouped_messages_share_one_event(self):
        """Messages with the same source ref are emitted together."""
        transcript = make_transcript(
            [
                user_message("A", None, 0),
                assistant_message("B", "A", 1),
                ToolCallGroup(
                    source_ref="B", timestamp=ts(1), parent_message_ref="A", calls=[]
                ),
            ]
        )
        events = list(walk_transcript_tree(transcript))
        assert len(events) == 2
        assert [type(m).__name__ for m in events[1].messages] == [
            "AssistantMessage",
            "ToolCallGroup",
        ]

    def test_walk_is_deterministic(self):
        """Re-walking unchanged input yields an identical event sequence."""
        transcript = make_transcript(
            [
                user_message("A", None, 0),
                assistant_message("B", "A", 1),
                user_message("X", "B", 2),
                user_message("Y", "B", 3),
            ]
        )
        assert list(walk_transcript_tree(transcript)) == list(
            walk_transcript_tree(transcript)
        )

    def test_events_are_lazy(self):
        """The walk can be abandoned after the first event."""
        transcript = make_transcript(
            [user_message("A", None, 0), assistant_message("B", "A", 1)]
        )
        events = walk_transcript_tree(transcript)
        first = next(events)
        assert isinstance(first, MessagesEvent)
        events.close()
