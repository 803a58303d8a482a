"""
Main NiceGUI application for FlowChat.

Wires the conversation engine to the browser: the sidebar lists
conversations, the ECharts canvas renders the open one, and the node panel
edits, sends, branches and deletes the selected node. A ui.timer drives the
layout simulation and re-renders the chart whenever the snapshot, the
viewport or a cascade changed.
"""

import logging
import os
import sys
from datetime import datetime

from nicegui import ui

from flowchat.ai_agent import get_provider
from flowchat.cascade import AsyncioScheduler, CascadeScheduler
from flowchat.config import (
    get_default_provider_config,
    get_preferences,
    get_provider_config,
    get_provider_configs,
    load_config,
    save_last_used,
)
from flowchat.conversation_manager import ConversationManager
from flowchat.graph_viz import CANVAS_HEIGHT, CANVAS_WIDTH, GraphVisualizer
from flowchat.layout import LayoutSimulation, node_at
from flowchat.mutation_manager import MutationEngine
from flowchat.paths import ensure_data_dirs
from flowchat.selection import SelectionBridge, SelectionRect
from flowchat.storage import create_backend, get_backend_type
from flowchat.streaming import StreamingIntegrator
from flowchat.utils import conversation_preview, format_timestamp
from flowchat.viewport import TARGET_CANVAS, TARGET_NODE, CanvasController, Viewport

logging.basicConfig(
    level=os.environ.get('FLOWCHAT_LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)
logger = logging.getLogger('flowchat.app')

# Ensure required directories exist on startup
ensure_data_dirs()

RENDER_INTERVAL = 0.05

ui.add_head_html('''
    <style>
        ::-webkit-scrollbar { width: 8px; height: 8px; }
        ::-webkit-scrollbar-track { background: transparent; }
        ::-webkit-scrollbar-thumb { background: #475569; border-radius: 9999px; }
        .flowchat-canvas { cursor: grab; user-select: none; }
        .flowchat-canvas:active { cursor: grabbing; }
    </style>
''', shared=True)

SELECTION_JS = '''
    const sel = window.getSelection();
    if (!sel || !sel.toString().trim() || sel.rangeCount === 0) return null;
    const rect = sel.getRangeAt(0).getBoundingClientRect();
    return {text: sel.toString(), left: rect.left, top: rect.top, right: rect.right, bottom: rect.bottom};
'''


@ui.page('/')
def main_page():
    # --- Engine wiring (per browser tab) ---
    backend = create_backend(get_backend_type(load_config()))
    manager = ConversationManager(backend)
    engine = MutationEngine(manager.cell, archive=manager)
    engine.cascade = CascadeScheduler(engine.remove_nodes, AsyncioScheduler())
    simulation = LayoutSimulation(engine)
    viewport = Viewport(pan_x=CANVAS_WIDTH / 2, pan_y=120)
    bridge = SelectionBridge(engine, simulation, viewport)
    integrator = StreamingIntegrator(engine, get_provider)
    visualizer = GraphVisualizer()

    state = {
        'chart': None,
        'selected_id': None,
        'dirty': True,
        'last_view': None,
        'last_animating': {},
        'panel_node': None,
    }

    def mark_dirty(_=None):
        state['dirty'] = True

    manager.cell.subscribe(mark_dirty)

    def create_root(wx, wy):
        if manager.current is None:
            conversation = manager.create_conversation((wx, wy))
            state['selected_id'] = next(iter(conversation.nodes), None)
        else:
            node = engine.create_root(wx, wy)
            state['selected_id'] = node.id if node else None
        rebuild_sidebar()
        refresh_panel()

    controller = CanvasController(viewport, on_create_root=create_root, on_move_node=engine.move_node)
    manager.load()

    # --- Rendering ---

    def render_chart():
        if state['chart'] is None:
            return
        option = visualizer.generate_echarts(
            manager.current, viewport, engine.cascade.animating, state['selected_id'],
        )
        state['chart'].options.clear()
        state['chart'].options.update(option)
        state['chart'].update()

    def on_frame():
        simulation.tick()
        view = (viewport.pan_x, viewport.pan_y, viewport.zoom)
        animating = engine.cascade.animating
        if state['dirty'] or view != state['last_view'] or animating != state['last_animating']:
            state['dirty'] = False
            state['last_view'] = view
            state['last_animating'] = animating
            render_chart()
            if panel_needs_refresh(state['panel_node'], engine.get(state['selected_id'])):
                refresh_panel()

    def panel_needs_refresh(shown, node):
        # Positions never matter; content only while not typing into it
        if shown is None or node is None:
            return shown is not node
        if shown.id != node.id or shown.editing != node.editing or shown.pinned != node.pinned:
            return True
        return not node.editing and (shown.content, shown.thinking) != (node.content, node.thinking)

    # --- Canvas gestures ---

    def hit(x, y):
        conversation = manager.current
        if conversation is None:
            return None
        wx, wy = viewport.screen_to_world(x, y)
        return node_at(conversation.nodes, wx, wy)

    def handle_mouse_down(e):
        x, y = e.args.get('offsetX', 0), e.args.get('offsetY', 0)
        node = hit(x, y)
        if node is None:
            controller.pointer_down(x, y, TARGET_CANVAS)
        else:
            controller.pointer_down(x, y, TARGET_NODE, node_id=node.id, node_position=node.position)

    def handle_mouse_move(e):
        controller.pointer_move(e.args.get('offsetX', 0), e.args.get('offsetY', 0))

    def handle_mouse_up(e):
        dragging = controller.state.dragging_node_id
        moved = controller.pointer_up()
        if moved:
            return
        if dragging is not None:
            select_node(dragging)
        else:
            clear_selection()
            select_node(None)

    def handle_wheel(e):
        controller.wheel(e.args.get('deltaY', 0), TARGET_CANVAS)

    def handle_dblclick(e):
        x, y = e.args.get('offsetX', 0), e.args.get('offsetY', 0)
        controller.double_click(x, y, TARGET_NODE if hit(x, y) else TARGET_CANVAS)

    def clear_selection():
        bridge.clear()
        reply_button.set_visibility(False)

    def select_node(node_id):
        state['selected_id'] = node_id
        mark_dirty()
        refresh_panel()

    # --- Node actions ---

    def on_content_change(node_id, value):
        engine.update_content(node_id, {'content': value or ''})

    async def send(node_id):
        node = engine.get(node_id)
        if node is None or not node.content.strip():
            ui.notify('Nothing to send', type='warning')
            return
        provider_id = provider_select.value
        provider_config = get_provider_config(provider_id) if provider_id else None
        if provider_config is None:
            ui.notify('No provider configured', type='warning')
            return
        model = model_select.value or provider_config.default_model
        if not model:
            ui.notify('Choose a model first', type='warning')
            return
        prefs = get_preferences()
        save_last_used(provider_config.id, model)
        reply = await integrator.submit(
            node_id, provider_config, model,
            temperature=prefs.temperature, system_prompt=prefs.system_prompt,
        )
        if reply is not None:
            select_node(reply.id)

    def reply_to(node_id):
        child = engine.add_child(node_id)
        if child is not None:
            select_node(child.id)

    def branch(node_id):
        new_ids = engine.branch(node_id)
        if new_ids:
            select_node(new_ids[-1])

    def delete(node_id):
        if engine.delete_subtree(node_id):
            clear_selection()
            select_node(None)
        else:
            ui.notify('Already deleting', type='warning')

    async def capture_selection(node_id):
        result = await ui.run_javascript(SELECTION_JS)
        if not result:
            return
        rect = SelectionRect(result['left'], result['top'], result['right'], result['bottom'])
        anchor = bridge.select(node_id, result['text'], rect)
        if anchor is not None:
            reply_button.style(f'left: {anchor[0]}px; top: {anchor[1]}px;')
            reply_button.set_visibility(True)

    def reply_to_selection():
        child = bridge.reply()
        reply_button.set_visibility(False)
        if child is not None:
            select_node(child.id)

    # --- Layout ---

    with ui.left_drawer(value=True).classes('bg-slate-900 p-3 gap-2'):
        with ui.row().classes('w-full items-center justify-between'):
            ui.label('FlowChat').classes('text-lg font-bold text-white')
            ui.button(icon='add', on_click=lambda: (manager.create_conversation(), rebuild_sidebar(),
                                                   select_node(None))).props('flat dense color=primary')
        sidebar = ui.column().classes('w-full gap-1')

    def rebuild_sidebar():
        sidebar.clear()
        now = datetime.now().astimezone()
        current = manager.current
        with sidebar:
            if not manager.conversations:
                ui.label('Double-click the canvas to start').classes('text-gray-400 text-sm')
            for conv in manager.conversations:
                def make_select(cid):
                    def handler():
                        clear_selection()
                        manager.select_conversation(cid)
                        select_node(None)
                        rebuild_sidebar()
                    return handler

                def make_delete(cid):
                    def handler():
                        manager.delete_conversation(cid)
                        select_node(None)
                        rebuild_sidebar()
                    return handler

                def make_rename(cid):
                    def handler(e):
                        manager.rename_conversation(cid, e.sender.value)
                    return handler

                active = current is not None and current.id == conv.id
                with ui.card().classes('w-full p-2 cursor-pointer ' + ('bg-slate-700' if active else 'bg-slate-800')):
                    with ui.row().classes('w-full items-center no-wrap'):
                        ui.input(value=conv.title).props('dense borderless dark').classes('grow') \
                            .on('blur', make_rename(conv.id))
                        ui.button(icon='delete', on_click=make_delete(conv.id)).props('flat dense round size=sm color=grey')
                    ui.label(conversation_preview(conv)).classes('text-xs text-gray-400').on('click', make_select(conv.id))
                    ui.label(format_timestamp(conv.last_modified, now)).classes('text-xs text-gray-500')

    with ui.element('div').classes('flowchat-canvas relative') \
            .style(f'width: {CANVAS_WIDTH}px; height: {CANVAS_HEIGHT}px; overflow: hidden;') as canvas:
        state['chart'] = ui.echart(visualizer.generate_echarts(manager.current, viewport)) \
            .style(f'width: {CANVAS_WIDTH}px; height: {CANVAS_HEIGHT}px;')

    # Anchored in client coordinates, outside the canvas so its clicks never pan
    reply_button = ui.button('Reply', on_click=reply_to_selection) \
        .props('dense color=primary').classes('fixed z-50')
    reply_button.set_visibility(False)

    canvas.on('mousedown', handle_mouse_down, ['offsetX', 'offsetY'])
    canvas.on('mousemove', handle_mouse_move, ['offsetX', 'offsetY'], throttle=0.02)
    canvas.on('mouseup', handle_mouse_up, ['offsetX', 'offsetY'])
    canvas.on('wheel.prevent', handle_wheel, ['deltaY'])
    canvas.on('dblclick', handle_dblclick, ['offsetX', 'offsetY'])

    # Node panel
    panel = ui.card().classes('fixed right-6 top-6 w-96 max-h-[90vh] overflow-y-auto z-20 bg-slate-900/95 text-white')
    panel.set_visibility(False)
    with panel:
        panel_body = ui.column().classes('w-full gap-3')

    configs = get_provider_configs()
    default_cfg = get_default_provider_config()
    prefs = get_preferences()
    with ui.footer().classes('bg-slate-900 items-center gap-3'):
        provider_select = ui.select(
            {c.id: c.name for c in configs},
            value=prefs.last_used_provider or (default_cfg.id if default_cfg else None),
            label='Provider',
        ).props('dense dark').classes('w-48')
        model_select = ui.select([], label='Model', new_value_mode='add-unique').props('dense dark').classes('w-64')

        def refresh_models(_=None):
            cfg = get_provider_config(provider_select.value) if provider_select.value else None
            models = list(cfg.models) if cfg else []
            preferred = prefs.last_used_model if prefs.last_used_model in models else (cfg.default_model if cfg else None)
            model_select.options = models
            model_select.value = preferred
            model_select.update()

        provider_select.on('update:model-value', lambda e: refresh_models())
        refresh_models()

        async def fetch_models():
            cfg = get_provider_config(provider_select.value) if provider_select.value else None
            if cfg is None:
                return
            models = await get_provider(cfg).list_models(cfg)
            model_select.options = models
            model_select.update()
            ui.notify(f'{len(models)} models available from {cfg.name}')

        ui.button(icon='refresh', on_click=fetch_models).props('flat dense').tooltip('Fetch models')
        ui.label().bind_text_from(viewport, 'zoom', backward=lambda z: f'{z * 100:.0f}%').classes('text-gray-400')

    def refresh_panel():
        node = engine.get(state['selected_id'])
        state['panel_node'] = node
        panel_body.clear()
        if node is None:
            panel.set_visibility(False)
            return
        panel.set_visibility(True)
        with panel_body:
            role = 'You' if node.is_user else (node.model or 'Assistant')
            ui.label(role).classes('text-sm font-bold text-primary')
            if node.thinking:
                with ui.expansion(f'Thinking ({node.thinking_time_seconds or 0:.0f}s)').classes('w-full text-gray-400'):
                    ui.label(node.thinking).classes('text-xs whitespace-pre-wrap')
            if node.editing:
                ui.textarea(value=node.content,
                            on_change=lambda e, nid=node.id: on_content_change(nid, e.value)) \
                    .props('autogrow dark outlined').classes('w-full')
                with ui.row():
                    ui.button('Send', icon='send', on_click=lambda nid=node.id: send(nid)).props('color=primary dense')
            else:
                content = ui.label(node.content or ('Streaming…' if integrator.in_flight else '')) \
                    .classes('whitespace-pre-wrap select-text')
                content.on('mouseup', lambda nid=node.id: capture_selection(nid))
            with ui.row().classes('gap-1'):
                ui.button(icon='reply', on_click=lambda nid=node.id: reply_to(nid)).props('flat dense').tooltip('Reply')
                ui.button(icon='call_split', on_click=lambda nid=node.id: branch(nid)).props('flat dense').tooltip('Branch')
                ui.button(icon='delete', on_click=lambda nid=node.id: delete(nid)).props('flat dense color=negative').tooltip('Delete')
                if node.pinned:
                    ui.icon('push_pin').classes('text-gray-400').tooltip('Pinned')

    rebuild_sidebar()
    ui.timer(RENDER_INTERVAL, on_frame)


if __name__ in {"__main__", "__mp_main__"}:
    ui.run(
        title='FlowChat',
        port=8082,
        reload=not getattr(sys, 'frozen', False),
    )
