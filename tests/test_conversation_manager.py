from dataclasses import replace
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from conftest import make_chain
from flowchat.cascade import CascadeScheduler, VirtualScheduler
from flowchat.conversation_manager import ConversationManager
from flowchat.models import Conversation
from flowchat.mutation_manager import MutationEngine
from flowchat.storage import MemoryBackend

BASE = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _conv(title, minutes):
    return replace(Conversation.create(title=title), last_modified=BASE + timedelta(minutes=minutes))


def _seeded(*conversations):
    backend = MemoryBackend()
    for conv in conversations:
        backend.save(conv)
    return backend


def test_load_opens_newest():
    old, new = _conv("old", 0), _conv("new", 10)
    manager = ConversationManager(_seeded(old, new))

    loaded = manager.load()

    assert [c.title for c in loaded] == ["new", "old"]
    assert manager.current is new


def test_load_empty_backend():
    manager = ConversationManager(MemoryBackend())
    assert manager.load() == []
    assert manager.current is None


def test_every_publish_is_saved():
    backend = MemoryBackend()
    manager = ConversationManager(backend)
    conv = manager.create_conversation(initial_pos=(40, 60))
    engine = MutationEngine(manager.cell)

    root = conv.roots()[0]
    assert root.position == (40.0, 60.0)
    assert root.editing

    engine.update_content(root.id, {"content": "Hello"})
    stored = backend.load_all()[0]
    assert stored.nodes[root.id].content == "Hello"


def test_save_failure_is_logged_not_raised(caplog):
    backend = MagicMock()
    backend.save.side_effect = OSError("disk full")
    manager = ConversationManager(backend)

    manager.create_conversation()

    assert "disk full" in caplog.text
    assert manager.current is not None


def test_select_does_not_resave():
    a, b = _conv("a", 0), _conv("b", 5)
    backend = MagicMock(wraps=_seeded(a, b))
    manager = ConversationManager(backend)
    manager.load()

    assert manager.select_conversation(a.id) is a
    assert manager.current is a
    backend.save.assert_not_called()
    assert manager.select_conversation("missing") is None


def test_rename():
    a = _conv("a", 0)
    backend = _seeded(a)
    manager = ConversationManager(backend)
    manager.load()

    renamed = manager.rename_conversation(a.id, "  Road trip ")

    assert renamed.title == "Road trip"
    assert manager.current.title == "Road trip"
    assert backend.load_all()[0].title == "Road trip"
    assert manager.rename_conversation(a.id, "   ").title == "Road trip"


def test_rename_closed_conversation():
    a, b = _conv("a", 0), _conv("b", 5)
    backend = _seeded(a, b)
    manager = ConversationManager(backend)
    manager.load()

    manager.rename_conversation(a.id, "Archive")

    assert manager.current is b
    assert manager.get(a.id).title == "Archive"


def test_delete_open_conversation_opens_next():
    a, b = _conv("a", 0), _conv("b", 5)
    backend = _seeded(a, b)
    manager = ConversationManager(backend)
    manager.load()

    manager.delete_conversation(b.id)

    assert manager.current is a
    assert [c.id for c in backend.load_all()] == [a.id]

    manager.delete_conversation(a.id)
    assert manager.current is None
    assert manager.conversations == []


def test_close_stops_saving():
    backend = MemoryBackend()
    manager = ConversationManager(backend)
    manager.close()
    manager.cell.publish(Conversation.create())
    assert backend.load_all() == []


def test_cascade_finishes_in_conversation_it_started_in():
    backend = MemoryBackend()
    manager = ConversationManager(backend)
    first = manager.create_conversation()
    engine = MutationEngine(manager.cell, archive=manager)
    clock = VirtualScheduler()
    engine.cascade = CascadeScheduler(engine.remove_nodes, clock)
    a, b, c = make_chain(engine, "A", "B", "C")

    assert engine.delete_subtree(b)
    second = manager.create_conversation()
    clock.advance(5)

    assert manager.current.id == second.id
    assert manager.current.nodes == {}
    remaining = manager.get(first.id).nodes
    assert set(remaining) == {a}
    assert remaining[a].child_ids == ()
    saved = {conv.id: conv for conv in backend.load_all()}
    assert set(saved[first.id].nodes) == {a}


def test_cascade_for_deleted_conversation_is_dropped():
    manager = ConversationManager(MemoryBackend())
    first = manager.create_conversation()
    engine = MutationEngine(manager.cell, archive=manager)
    clock = VirtualScheduler()
    engine.cascade = CascadeScheduler(engine.remove_nodes, clock)
    root_id = make_chain(engine, "A")[0]

    engine.delete_subtree(root_id)
    manager.delete_conversation(first.id)
    clock.advance(5)

    assert manager.get(first.id) is None
    assert engine.cascade.active_requests == []
