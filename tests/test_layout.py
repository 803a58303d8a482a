import math

import pytest

from conftest import make_chain
from flowchat.layout import (
    Body,
    ForceParams,
    LayoutSimulation,
    collision_radius,
    estimate_height,
    node_at,
    step,
)
from flowchat.layout.forces import decay_alpha
from flowchat.models import ChatNode, Conversation
from flowchat.mutation_manager import ConversationCell, MutationEngine


class TestPlacement:
    @pytest.mark.parametrize("length,expected", [
        (0, 120.0),
        (99, 120.0),
        (100, 180.0),
        (450, 240.0),
        (2000, 420.0),
    ])
    def test_estimate_height(self, length, expected):
        assert estimate_height("x" * length) == expected

    def test_collision_radius_of_default_node(self):
        assert collision_radius(ChatNode(id="a")) == 310.0

    def test_node_at_hits_estimated_box(self):
        nodes = {
            "a": ChatNode(id="a", x=0, y=0),
            "b": ChatNode(id="b", x=1000, y=0, content="y" * 150),
        }
        assert node_at(nodes, 10, 10).id == "a"
        assert node_at(nodes, 1100, 170).id == "b"
        assert node_at(nodes, 600, 50) is None

    def test_node_at_prefers_last_drawn(self):
        nodes = {
            "under": ChatNode(id="under", x=0, y=0),
            "over": ChatNode(id="over", x=100, y=50),
        }
        assert node_at(nodes, 150, 60).id == "over"


class TestForces:
    def test_pinned_bodies_do_not_move(self):
        bodies = {
            "root": Body(x=0.0, y=0.0, vx=3.0, vy=-2.0),
            "child": Body(x=10.0, y=10.0),
        }
        result = step(bodies, [("root", "child")], {"root"}, alpha=1.0)
        assert (result["root"].x, result["root"].y) == (0.0, 0.0)
        assert (result["root"].vx, result["root"].vy) == (0.0, 0.0)
        assert (result["child"].x, result["child"].y) != (10.0, 10.0)

    def test_step_does_not_mutate_input(self):
        bodies = {"a": Body(x=0.0, y=0.0), "b": Body(x=50.0, y=0.0)}
        snapshot = dict(bodies)
        result = step(bodies, [("a", "b")], set(), alpha=1.0)
        assert bodies == snapshot
        assert result is not bodies

    def test_coincident_points_separate(self):
        bodies = {"a": Body(x=5.0, y=5.0), "b": Body(x=5.0, y=5.0)}
        result = step(bodies, [], set(), alpha=1.0)
        a, b = result["a"], result["b"]
        assert math.hypot(a.x - b.x, a.y - b.y) > 1.0
        assert all(math.isfinite(v) for body in result.values() for v in (body.x, body.y))

    def test_links_to_missing_bodies_ignored(self):
        bodies = {"a": Body(x=0.0, y=0.0)}
        result = step(bodies, [("a", "ghost"), ("a", "a")], set(), alpha=1.0)
        assert set(result) == {"a"}

    def test_alpha_decay(self):
        params = ForceParams()
        assert decay_alpha(1.0, params) == pytest.approx(0.9)
        alpha, ticks = 1.0, 0
        while alpha >= params.alpha_min:
            alpha = decay_alpha(alpha, params)
            ticks += 1
        assert ticks < 100

    def test_relaxation_settles(self):
        params = ForceParams()
        bodies = {
            "root": Body(x=0.0, y=0.0),
            "left": Body(x=0.0, y=200.0),
            "right": Body(x=450.0, y=200.0),
        }
        links = [("root", "left"), ("root", "right")]
        alpha = 1.0
        while alpha >= params.alpha_min:
            bodies = step(bodies, links, {"root"}, alpha, params)
            alpha = decay_alpha(alpha, params)

        after = step(bodies, links, {"root"}, alpha, params)
        for nid in ("left", "right"):
            moved = math.hypot(after[nid].x - bodies[nid].x, after[nid].y - bodies[nid].y)
            assert moved < 0.5
        assert (after["root"].x, after["root"].y) == (0.0, 0.0)

    def test_relaxation_settles_with_every_node_free(self):
        params = ForceParams()
        bodies = {"root": Body(x=0.0, y=0.0)}
        for i in range(5):
            bodies[f"c{i}"] = Body(x=450.0 * i, y=200.0)
        links = [("root", f"c{i}") for i in range(5)]
        alpha = 1.0
        while alpha >= params.alpha_min:
            bodies = step(bodies, links, set(), alpha, params)
            alpha = decay_alpha(alpha, params)

        after = step(bodies, links, set(), alpha, params)
        for nid, body in bodies.items():
            assert math.isfinite(body.x) and math.isfinite(body.y)
            assert math.hypot(after[nid].x - body.x, after[nid].y - body.y) < 0.5


class TestLayoutSimulation:
    def test_structure_change_starts_layout(self, engine):
        make_chain(engine, "Q")
        sim = LayoutSimulation(engine)
        assert sim.is_running
        assert sim.alpha == 1.0

    def test_runs_until_settled_and_writes_back(self, engine):
        root_id, _ = make_chain(engine, "Q", "A")
        sim = LayoutSimulation(engine)
        engine.add_child(root_id)

        taken = sim.run_until_settled()

        assert 0 < taken < 1000
        assert not sim.is_running
        for nid, (x, y) in sim.positions().items():
            node = engine.get(nid)
            assert abs(node.x - x) <= 0.5 and abs(node.y - y) <= 0.5

    def test_unpinned_fan_out_settles(self, engine):
        root_id = make_chain(engine, "Q")[0]
        for _ in range(5):
            engine.add_child(root_id)
        sim = LayoutSimulation(engine)

        taken = sim.run_until_settled()

        assert 0 < taken < 1000
        assert not sim.is_running
        assert all(not n.pinned for n in engine.conversation.nodes.values())
        positions = list(sim.positions().values())
        assert len(set(positions)) == 6

    def test_dragged_node_stays_where_dropped(self, engine):
        root_id, child_id = make_chain(engine, "Q", "A")
        sim = LayoutSimulation(engine)
        sim.tick()

        engine.move_node(child_id, 500, 200)
        sim.tick()

        assert engine.get(child_id).position == (500.0, 200.0)
        assert sim.positions()[child_id] == (500.0, 200.0)
        sim.run_until_settled()
        assert engine.get(child_id).position == (500.0, 200.0)

    def test_write_back_is_throttled(self, engine, publishes):
        make_chain(engine, "Q", "A", "B")
        sim = LayoutSimulation(engine, clock=lambda: 0.0)

        sim.tick()
        after_first = len(publishes)
        for _ in range(5):
            sim.tick()
        assert len(publishes) == after_first

    def test_content_edit_does_not_restart(self, engine):
        root_id, _ = make_chain(engine, "Q", "A")
        sim = LayoutSimulation(engine)
        sim.run_until_settled()

        engine.update_content(root_id, {"content": "Q, but longer"})
        assert not sim.is_running

        engine.add_child(root_id)
        assert sim.is_running
        assert sim.alpha == 1.0

    def test_fully_pinned_conversation_does_not_run(self):
        nodes = [
            ChatNode(id="a", child_ids=("b",), pinned=True),
            ChatNode(id="b", parent_id="a", y=200.0, pinned=True),
        ]
        engine = MutationEngine(ConversationCell(Conversation.create(nodes=nodes)))
        sim = LayoutSimulation(engine)
        assert not sim.is_running
        sim.reheat()
        assert not sim.is_running
        assert sim.tick() is False

    def test_reheat_after_settle(self, engine):
        make_chain(engine, "Q", "A")
        sim = LayoutSimulation(engine)
        sim.run_until_settled()
        sim.reheat()
        assert sim.is_running
        assert sim.alpha == pytest.approx(0.3)

    def test_frozen_node_held_in_place(self, engine):
        root_id, child_id = make_chain(engine, "Q", "A")
        sim = LayoutSimulation(engine)
        engine.freeze(child_id)
        before = engine.get(child_id).position

        sim.run_until_settled()

        assert engine.get(child_id).position == before

    def test_close_stops_listening(self, engine):
        root_id = make_chain(engine, "Q")[0]
        sim = LayoutSimulation(engine)
        sim.run_until_settled()
        sim.close()
        engine.add_child(root_id)
        assert not sim.is_running
