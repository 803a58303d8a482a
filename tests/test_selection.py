from unittest.mock import MagicMock

from conftest import make_chain
from flowchat.selection import (
    ELLIPSIS,
    MAX_QUOTE_CHARS,
    SelectionBridge,
    SelectionRect,
    build_quote,
)
from flowchat.viewport import Viewport

RECT = SelectionRect(left=100, top=300, right=260, bottom=320)


class TestBuildQuote:
    def test_single_line(self):
        assert build_quote("Paris is lovely") == "> Paris is lovely\n\n"

    def test_blank_lines_become_bare_marker(self):
        assert build_quote("one\n\ntwo") == "> one\n>\n> two\n\n"

    def test_long_selection_truncated(self):
        quote = build_quote("a" * (MAX_QUOTE_CHARS + 50))
        assert quote == "> " + "a" * MAX_QUOTE_CHARS + ELLIPSIS + "\n\n"

    def test_exact_limit_not_truncated(self):
        assert ELLIPSIS not in build_quote("b" * MAX_QUOTE_CHARS)


class TestSelectionBridge:
    def test_select_freezes_and_anchors(self, engine):
        node_id = make_chain(engine, "Some long answer")[0]
        bridge = SelectionBridge(engine)

        anchor = bridge.select(node_id, "long", RECT)

        assert anchor == (260, 260.0)
        assert node_id in engine.frozen_ids
        assert bridge.selection.text == "long"

    def test_blank_or_unknown_selection_ignored(self, engine):
        node_id = make_chain(engine, "text")[0]
        bridge = SelectionBridge(engine)
        assert bridge.select(node_id, "   ", RECT) is None
        assert bridge.select("ghost", "text", RECT) is None
        assert bridge.selection is None
        assert engine.frozen_ids == frozenset()

    def test_selecting_elsewhere_releases_previous_node(self, engine):
        first, second = make_chain(engine, "one", "two")
        bridge = SelectionBridge(engine)
        bridge.select(first, "one", RECT)
        bridge.select(second, "two", RECT)
        assert engine.frozen_ids == frozenset({second})

    def test_reply_creates_quoted_child(self, engine):
        node_id = make_chain(engine, "The capital is Paris.")[0]
        bridge = SelectionBridge(engine, viewport=Viewport())
        bridge.select(node_id, "Paris", RECT)

        child = bridge.reply()

        assert child.parent_id == node_id
        assert child.content == "> Paris\n\n"
        assert child.editing is True
        assert bridge.selection is None
        assert engine.frozen_ids == frozenset()

    def test_reply_without_selection(self, engine):
        assert SelectionBridge(engine).reply() is None

    def test_clear_reheats_layout(self, engine):
        node_id = make_chain(engine, "text")[0]
        simulation = MagicMock()
        bridge = SelectionBridge(engine, simulation=simulation)
        bridge.select(node_id, "text", RECT)

        bridge.clear()

        simulation.reheat.assert_called_once_with(0.3)
        assert engine.frozen_ids == frozenset()

    def test_clear_on_pinned_node_does_not_reheat(self, engine):
        node_id = make_chain(engine, "text")[0]
        engine.move_node(node_id, 10, 10)
        simulation = MagicMock()
        bridge = SelectionBridge(engine, simulation=simulation)
        bridge.select(node_id, "text", RECT)

        bridge.clear()

        simulation.reheat.assert_not_called()

    def test_frozen_node_ignores_edits_until_cleared(self, engine):
        node_id = make_chain(engine, "text")[0]
        bridge = SelectionBridge(engine)
        bridge.select(node_id, "text", RECT)
        engine.update_content(node_id, {"content": "edited"})
        assert engine.get(node_id).content == "text"
        bridge.clear()
        engine.update_content(node_id, {"content": "edited"})
        assert engine.get(node_id).content == "edited"
