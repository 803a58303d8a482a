"""
Graph visualizer that produces an ECharts-compatible configuration for rendering
a conversation on the canvas.

Positions come from the layout engine, not from ECharts: the series uses
`layout: "none"` on a fixed cartesian grid the size of the canvas, and every
node is placed at its world position transformed through the viewport. ECharts
never moves anything on its own, so what the user sees is exactly the
published snapshot.

Colors:
- user nodes are dark with light text
- assistant nodes are tinted by a stable hash of the model id
- nodes in a cascade fade out by depth
"""

from typing import Any, Dict, Mapping, Optional

import networkx as nx

from flowchat.graph import to_networkx
from flowchat.layout.constants import NODE_WIDTH
from flowchat.layout.edges import curveness, route_edge
from flowchat.layout.placement import estimate_height
from flowchat.models import Conversation
from flowchat.utils import USER_NODE_COLOR, hex_to_rgba, lighten_hex, model_color, truncate
from flowchat.viewport import Viewport

CANVAS_WIDTH = 1600
CANVAS_HEIGHT = 900
LABEL_CHARS = 140
SELECTED_BORDER = '#3b82f6'
EDGE_COLOR = '#94a3b8'


class GraphVisualizer:
    """
    Build an ECharts option (dict) for one conversation snapshot.

    The returned dict has a single 'graph' series whose data items carry the
    node id as `id`/`name`, so click events resolve straight back to nodes.
    """

    def __init__(self, width: int = CANVAS_WIDTH, height: int = CANVAS_HEIGHT):
        self.width = width
        self.height = height
        self.G = nx.DiGraph()

    @staticmethod
    def _node_style(attrs: Dict[str, Any], fade: float, selected: bool) -> Dict[str, Any]:
        if attrs['role'] == 'user':
            fill = USER_NODE_COLOR
            border = '#f8fafc' if not selected else SELECTED_BORDER
            text = '#f8fafc'
        else:
            tint = model_color(attrs.get('model'))
            fill = lighten_hex(tint, 0.85)
            border = tint if not selected else SELECTED_BORDER
            text = '#0f172a'
        item_style = {
            'color': hex_to_rgba(fill, round(fade, 3)) if fade < 1 else fill,
            'borderColor': border,
            'borderWidth': 3 if selected else 1.5,
            'opacity': round(fade, 3),
        }
        if attrs.get('editing'):
            item_style['borderType'] = 'dashed'
        return {'itemStyle': item_style, 'text_color': text}

    def generate_echarts(self, conversation: Optional[Conversation], viewport: Viewport,
                         animating: Optional[Mapping[str, int]] = None,
                         selected_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Given a conversation and the viewport, construct the ECharts option dict.
        """
        animating = animating or {}
        nodes = conversation.nodes if conversation is not None else {}
        self.G = to_networkx(nodes)
        zoom = viewport.zoom

        data = []
        for nid, attrs in self.G.nodes(data=True):
            node = nodes[nid]
            height = estimate_height(node.content)
            cx, cy = viewport.world_to_screen(node.x + NODE_WIDTH / 2, node.y + height / 2)
            depth = animating.get(nid)
            # Deeper levels of a cascade start more transparent
            fade = 1.0 if depth is None else max(0.1, 0.5 - 0.1 * depth)
            style = self._node_style({**attrs, 'model': node.model, 'editing': node.editing},
                                     fade, nid == selected_id)
            placeholder = 'Thinking…' if node.role == 'assistant' else 'Type a message…'
            label_text = truncate(node.content, LABEL_CHARS) or placeholder
            data.append({
                'id': nid,
                'name': nid,
                'value': [round(cx, 2), round(cy, 2)],
                'symbol': 'roundRect',
                'symbolSize': [round(NODE_WIDTH * zoom, 2), round(height * zoom, 2)],
                'itemStyle': style['itemStyle'],
                'label': {
                    'show': zoom >= 0.25,
                    'formatter': label_text,
                    'color': style['text_color'],
                    'width': max(10, int((NODE_WIDTH - 24) * zoom)),
                    'overflow': 'break',
                    'fontSize': max(6, round(13 * zoom)),
                },
                'pinned': node.pinned,
            })

        links = []
        for src, tgt in self.G.edges():
            route = route_edge(nodes[src], nodes[tgt])
            links.append({
                'source': src,
                'target': tgt,
                'lineStyle': {
                    'color': EDGE_COLOR,
                    'width': max(1, round(2 * zoom, 2)),
                    'curveness': round(curveness(route), 3),
                    'opacity': 0.3 if tgt in animating else 0.9,
                },
            })

        option = {
            'animation': False,
            'grid': {'left': 0, 'right': 0, 'top': 0, 'bottom': 0},
            'xAxis': {'type': 'value', 'min': 0, 'max': self.width, 'show': False},
            'yAxis': {'type': 'value', 'min': 0, 'max': self.height, 'inverse': True, 'show': False},
            'series': [
                {
                    'type': 'graph',
                    'layout': 'none',
                    'coordinateSystem': 'cartesian2d',
                    'roam': False,
                    'edgeSymbol': ['none', 'arrow'],
                    'edgeSymbolSize': [0, max(4, round(10 * zoom))],
                    'data': data,
                    'links': links,
                    'emphasis': {'disabled': True},
                }
            ],
        }
        return option
