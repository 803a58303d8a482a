from unittest.mock import MagicMock

import pytest

from flowchat.viewport import (
    PAN_LIMIT,
    TARGET_CANVAS,
    TARGET_CONTROL,
    TARGET_NODE,
    ZOOM_MAX,
    ZOOM_MIN,
    CanvasController,
    Viewport,
)


class TestViewport:
    def test_coordinate_conversion_round_trips(self):
        vp = Viewport(pan_x=100, pan_y=-50, zoom=2.0)
        assert vp.screen_to_world(300, 150) == (100.0, 100.0)
        assert vp.world_to_screen(100, 100) == (300.0, 150.0)

    def test_zoom_is_clamped(self):
        vp = Viewport()
        assert vp.set_zoom(10) == ZOOM_MAX
        assert vp.set_zoom(0.001) == ZOOM_MIN

    def test_non_finite_input_ignored(self):
        vp = Viewport(pan_x=5, pan_y=6, zoom=1.5)
        vp.set_zoom(float("nan"))
        vp.set_pan(float("inf"), 0)
        vp.pan_by(float("nan"), 1)
        assert vp.zoom == 1.5
        assert vp.pan == (5.0, 6.0)

    def test_pan_is_clamped(self):
        vp = Viewport()
        vp.pan_by(5e6, -5e6)
        assert vp.pan == (PAN_LIMIT, -PAN_LIMIT)


class TestCanvasController:
    def test_wheel_out_once(self):
        ctl = CanvasController(Viewport())
        assert ctl.wheel(100) is True
        assert ctl.viewport.zoom == pytest.approx(0.9)

    def test_wheel_out_clamps_at_minimum(self):
        ctl = CanvasController(Viewport())
        for _ in range(50):
            ctl.wheel(100)
        assert ctl.viewport.zoom == ZOOM_MIN

    def test_wheel_in(self):
        ctl = CanvasController(Viewport())
        ctl.wheel(-100)
        assert ctl.viewport.zoom == pytest.approx(1.1)

    def test_wheel_over_control_passes_through(self):
        ctl = CanvasController(Viewport())
        assert ctl.wheel(100, target=TARGET_CONTROL) is False
        assert ctl.viewport.zoom == 1.0

    def test_drag_on_canvas_pans(self):
        ctl = CanvasController(Viewport())
        assert ctl.pointer_down(10, 10, TARGET_CANVAS)
        ctl.pointer_move(40, 30)
        ctl.pointer_move(50, 50)
        assert ctl.viewport.pan == (40.0, 40.0)
        assert ctl.pointer_up() is True
        assert not ctl.is_panning

    def test_press_on_control_does_nothing(self):
        ctl = CanvasController(Viewport())
        assert ctl.pointer_down(10, 10, TARGET_CONTROL) is False
        ctl.pointer_move(100, 100)
        assert ctl.viewport.pan == (0.0, 0.0)
        assert ctl.pointer_up() is False

    def test_click_without_motion_reports_no_drag(self):
        ctl = CanvasController(Viewport())
        ctl.pointer_down(10, 10)
        ctl.pointer_move(10, 10)
        assert ctl.pointer_up() is False

    def test_double_click_creates_root_at_world_point(self):
        on_create = MagicMock()
        ctl = CanvasController(Viewport(pan_x=100, pan_y=100, zoom=2.0), on_create_root=on_create)
        assert ctl.double_click(300, 500) == (100.0, 200.0)
        on_create.assert_called_once_with(100.0, 200.0)

    def test_double_click_on_node_ignored(self):
        on_create = MagicMock()
        ctl = CanvasController(Viewport(), on_create_root=on_create)
        assert ctl.double_click(0, 0, TARGET_NODE) is None
        on_create.assert_not_called()

    def test_node_drag_keeps_grab_offset(self):
        on_move = MagicMock()
        ctl = CanvasController(Viewport(zoom=2.0), on_move_node=on_move)
        # pointer lands 20 world px right and 10 down of the node origin
        assert ctl.pointer_down(240, 220, TARGET_NODE, node_id="n1", node_position=(100.0, 100.0))
        ctl.pointer_move(340, 420)
        on_move.assert_called_once_with("n1", 150.0, 200.0)
        assert ctl.viewport.pan == (0.0, 0.0)
        assert ctl.pointer_up() is True

    def test_node_press_without_position_does_not_drag(self):
        on_move = MagicMock()
        ctl = CanvasController(Viewport(), on_move_node=on_move)
        assert ctl.pointer_down(0, 0, TARGET_NODE, node_id="n1") is False
        ctl.pointer_move(50, 50)
        on_move.assert_not_called()
