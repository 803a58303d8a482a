from flowchat.graph import (
    build_links,
    collect_subtree,
    conversation_history,
    find_invariant_violations,
    group_by_depth,
    path_to_root,
    structure_signature,
    to_networkx,
)
from flowchat.models import ROLE_ASSISTANT, ChatNode


def _tree():
    # a -> b -> d
    #   -> c
    return {
        "a": ChatNode(id="a", content="root", child_ids=("b", "c")),
        "b": ChatNode(id="b", content="reply", role=ROLE_ASSISTANT, parent_id="a", child_ids=("d",)),
        "c": ChatNode(id="c", content="", parent_id="a"),
        "d": ChatNode(id="d", content="follow up", parent_id="b"),
    }


def test_path_to_root_orders_root_first():
    assert [n.id for n in path_to_root(_tree(), "d")] == ["a", "b", "d"]


def test_path_to_root_missing_node():
    assert path_to_root(_tree(), "zzz") == []


def test_path_to_root_terminates_on_cycle():
    nodes = {
        "a": ChatNode(id="a", parent_id="b", child_ids=("b",)),
        "b": ChatNode(id="b", parent_id="a", child_ids=("a",)),
    }
    assert len(path_to_root(nodes, "a")) <= len(nodes) + 1


def test_collect_subtree_depths():
    assert collect_subtree(_tree(), "a") == {"a": 0, "b": 1, "c": 1, "d": 2}
    assert collect_subtree(_tree(), "b") == {"b": 0, "d": 1}


def test_collect_subtree_treats_dangling_child_as_leaf():
    nodes = {"a": ChatNode(id="a", child_ids=("ghost",))}
    assert collect_subtree(nodes, "a") == {"a": 0, "ghost": 1}


def test_group_by_depth():
    grouped = group_by_depth({"a": 0, "b": 1, "c": 1})
    assert grouped == {0: ["a"], 1: ["b", "c"]}


def test_signature_ignores_content_and_position():
    nodes = _tree()
    before = structure_signature(nodes)
    nodes["d"] = nodes["d"].evolve(content="changed", x=999.0)
    assert structure_signature(nodes) == before
    nodes["d"] = nodes["d"].evolve(child_ids=("e",))
    assert structure_signature(nodes) != before


def test_build_links_skips_missing_endpoints():
    nodes = _tree()
    nodes["c"] = nodes["c"].evolve(child_ids=("ghost",))
    assert sorted(build_links(nodes)) == [("a", "b"), ("a", "c"), ("b", "d")]


def test_to_networkx_edges_follow_parent_links():
    G = to_networkx(_tree())
    assert set(G.edges()) == {("a", "b"), ("a", "c"), ("b", "d")}
    assert G.nodes["b"]["role"] == ROLE_ASSISTANT


def test_consistent_tree_has_no_violations():
    assert find_invariant_violations(_tree()) == []
    assert find_invariant_violations({}) == []


def test_violations_detect_one_sided_links():
    nodes = _tree()
    nodes["a"] = nodes["a"].evolve(child_ids=("b",))
    problems = find_invariant_violations(nodes)
    assert any("not listed by its parent" in p for p in problems)


def test_violations_detect_cycle():
    nodes = {
        "a": ChatNode(id="a", parent_id="b", child_ids=("b",)),
        "b": ChatNode(id="b", parent_id="a", child_ids=("a",)),
    }
    assert any("cycle" in p for p in find_invariant_violations(nodes))


def test_conversation_history_skips_empty_messages():
    nodes = _tree()
    nodes["c"] = nodes["c"].evolve(child_ids=())
    history = conversation_history(nodes, "d")
    assert history == [
        {"role": "user", "content": "root"},
        {"role": "assistant", "content": "reply"},
        {"role": "user", "content": "follow up"},
    ]
    assert conversation_history(nodes, "c") == [{"role": "user", "content": "root"}]
