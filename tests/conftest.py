import pytest

from flowchat.cascade import CascadeScheduler, VirtualScheduler
from flowchat.models import ChatNode, Conversation
from flowchat.mutation_manager import ConversationCell, MutationEngine


@pytest.fixture
def cell():
    return ConversationCell(Conversation.create())


@pytest.fixture
def engine(cell):
    return MutationEngine(cell)


@pytest.fixture
def clock():
    return VirtualScheduler()


@pytest.fixture
def cascading_engine(cell, clock):
    engine = MutationEngine(cell)
    engine.cascade = CascadeScheduler(engine.remove_nodes, clock)
    return engine


@pytest.fixture
def publishes(cell):
    """List that records every snapshot published to the cell."""
    seen = []
    cell.subscribe(seen.append)
    return seen


def make_chain(engine, *contents):
    """Root -> ... chain with the given contents; returns the node ids."""
    root = engine.create_root(0, 0)
    engine.update_content(root.id, {"content": contents[0], "editing": False})
    ids = [root.id]
    for content in contents[1:]:
        child = engine.add_child(ids[-1])
        engine.update_content(child.id, {"content": content, "editing": False})
        ids.append(child.id)
    return ids


def conversation_of(*nodes: ChatNode) -> Conversation:
    return Conversation.create(nodes=list(nodes))
