from datetime import datetime, timezone
from typing import Optional
import colorsys

from flowchat.models import DEFAULT_TITLE, Conversation

# Palette for assistant nodes; each model id maps to one entry by hash
MODEL_COLORS = [
    '#f97316',  # orange
    '#22c55e',  # green
    '#eab308',  # yellow
    '#a855f7',  # purple
    '#ec4899',  # pink
    '#3b82f6',  # blue
    '#6366f1',  # indigo
    '#14b8a6',  # teal
    '#06b6d4',  # cyan
    '#10b981',  # emerald
    '#84cc16',  # lime
    '#f43f5e',  # rose
    '#8b5cf6',  # violet
    '#f59e0b',  # amber
    '#64748b',  # slate
]

USER_NODE_COLOR = '#111827'
DEFAULT_ASSISTANT_COLOR = '#f97316'


def _js_string_hash(text: str) -> int:
    """32-bit `hash * 31 + char` string hash, kept identical across sessions."""
    h = 0
    for ch in text:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 2 ** 31:
        h -= 2 ** 32
    return h


def model_color(model_id: Optional[str]) -> str:
    """
    Stable border color for a model id.

    The same model always gets the same color, in every conversation.
    """
    if not model_id:
        return DEFAULT_ASSISTANT_COLOR
    return MODEL_COLORS[abs(_js_string_hash(model_id)) % len(MODEL_COLORS)]


def lighten_hex(hex_color: str, amount: float = 0.85) -> str:
    """
    Mix a color toward white by raising its HLS lightness.

    amount=0 returns the color unchanged, amount=1 returns white.
    """
    c = hex_color.lstrip('#')
    if len(c) == 3:
        c = ''.join(ch * 2 for ch in c)
    r, g, b = (int(c[i:i + 2], 16) / 255.0 for i in (0, 2, 4))
    h, l, s = colorsys.rgb_to_hls(r, g, b)
    l = l + (1.0 - l) * max(0.0, min(1.0, amount))
    r, g, b = colorsys.hls_to_rgb(h, l, s)
    return '#{:02x}{:02x}{:02x}'.format(int(round(r * 255)), int(round(g * 255)), int(round(b * 255)))


def hex_to_rgba(hex_color: str, alpha: float) -> str:
    c = hex_color.lstrip('#')
    if len(c) == 3:
        c = ''.join(ch * 2 for ch in c)
    r, g, b = (int(c[i:i + 2], 16) for i in (0, 2, 4))
    return f'rgba({r}, {g}, {b}, {alpha})'


def truncate(text: str, limit: int) -> str:
    """Single-line preview of at most `limit` characters (ellipsis included)."""
    flat = ' '.join((text or '').split())
    if len(flat) <= limit:
        return flat
    return flat[:max(0, limit - 1)].rstrip() + '…'


def conversation_preview(conversation: Conversation, limit: int = 50) -> str:
    """First non-empty user message, or the default title."""
    for node in conversation.nodes.values():
        if node.is_user and node.content.strip():
            return truncate(node.content, limit)
    return DEFAULT_TITLE


def format_timestamp(value: datetime, now: Optional[datetime] = None) -> str:
    """
    Sidebar timestamp.

    Within a day: time of day. Within a week: weekday. Older: month and day.
    """
    now = now or datetime.now(timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    hours = (now - value).total_seconds() / 3600
    local = value.astimezone(now.tzinfo)
    if hours < 24:
        return local.strftime('%H:%M')
    if hours < 168:
        return local.strftime('%a')
    return f"{local.strftime('%b')} {local.day}"
