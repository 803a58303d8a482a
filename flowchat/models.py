"""
Conversation data model for FlowChat.

A Conversation is a forest of ChatNodes held in a flat id -> node mapping.
Nodes reference each other only by id (parent_id / child_ids), never by object,
which keeps snapshots acyclic and trivially serializable.

Both dataclasses are frozen: every change produces a new node / conversation
via `dataclasses.replace`, so readers holding an older snapshot never observe
a partial edit.

Serialized node schema (JSON):
{
  "id": "uuid",
  "content": "text",
  "role": "user" | "assistant",
  "x": 0.0, "y": 0.0,
  "parentId": "uuid",            # omitted for roots
  "childIds": ["uuid", ...],
  "pinned": true,                # optional
  "editing": true,               # optional
  "thinking": "...",             # optional
  "thinkingTimeSeconds": 3,      # optional
  "model": "gpt-4o",             # optional
  "providerId": "openai_default" # optional
}
"""

import math
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLES = (ROLE_USER, ROLE_ASSISTANT)

DEFAULT_TITLE = "New Conversation"


def new_id() -> str:
    """Generate a fresh, never reused identifier."""
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ChatNode:
    """One message bubble on the canvas."""
    id: str
    content: str = ""
    role: str = ROLE_USER
    x: float = 0.0
    y: float = 0.0
    parent_id: Optional[str] = None
    child_ids: Tuple[str, ...] = ()
    pinned: bool = False
    editing: bool = False
    thinking: Optional[str] = None
    thinking_time_seconds: Optional[float] = None
    model: Optional[str] = None
    provider_id: Optional[str] = None

    @property
    def position(self) -> Tuple[float, float]:
        return (self.x, self.y)

    @property
    def is_user(self) -> bool:
        return self.role == ROLE_USER

    @property
    def has_finite_position(self) -> bool:
        return math.isfinite(self.x) and math.isfinite(self.y)

    def evolve(self, **changes) -> "ChatNode":
        """Return a copy with `changes` applied."""
        if "child_ids" in changes:
            changes["child_ids"] = tuple(changes["child_ids"])
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "content": self.content,
            "role": self.role,
            "x": self.x,
            "y": self.y,
            "childIds": list(self.child_ids),
        }
        if self.parent_id is not None:
            data["parentId"] = self.parent_id
        if self.pinned:
            data["pinned"] = True
        if self.editing:
            data["editing"] = True
        optional = {
            "thinking": self.thinking,
            "thinkingTimeSeconds": self.thinking_time_seconds,
            "model": self.model,
            "providerId": self.provider_id,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatNode":
        """
        Build a node from its serialized form.

        Legacy records carry `isUser` / `isEditing` / `thinkingTime` instead of
        `role` / `editing` / `thinkingTimeSeconds`; both spellings are accepted.
        """
        role = data.get("role")
        if role not in ROLES:
            role = ROLE_USER if data.get("isUser", True) else ROLE_ASSISTANT
        thinking_time = data.get("thinkingTimeSeconds", data.get("thinkingTime"))
        return cls(
            id=str(data["id"]),
            content=data.get("content") or "",
            role=role,
            x=float(data.get("x", 0.0)),
            y=float(data.get("y", 0.0)),
            parent_id=data.get("parentId"),
            child_ids=tuple(data.get("childIds") or ()),
            pinned=bool(data.get("pinned", False)),
            editing=bool(data.get("editing", data.get("isEditing", False))),
            thinking=data.get("thinking"),
            thinking_time_seconds=thinking_time,
            model=data.get("model"),
            provider_id=data.get("providerId"),
        )


@dataclass(frozen=True)
class Conversation:
    """
    A titled forest of ChatNodes.

    `nodes` must be treated as read-only; mutations build a new dict and a new
    Conversation (see MutationEngine).
    """
    id: str
    title: str = DEFAULT_TITLE
    nodes: Dict[str, ChatNode] = field(default_factory=dict)
    last_modified: datetime = field(default_factory=_now)

    @classmethod
    def create(cls, title: str = DEFAULT_TITLE, nodes: Optional[List[ChatNode]] = None) -> "Conversation":
        return cls(id=new_id(), title=title, nodes={n.id: n for n in nodes or []})

    def get(self, node_id: Optional[str]) -> Optional[ChatNode]:
        if node_id is None:
            return None
        return self.nodes.get(node_id)

    def roots(self) -> List[ChatNode]:
        return [n for n in self.nodes.values() if n.parent_id is None]

    def with_nodes(self, nodes: Dict[str, ChatNode]) -> "Conversation":
        return replace(self, nodes=nodes, last_modified=_now())

    def with_title(self, title: str) -> "Conversation":
        return replace(self, title=title, last_modified=_now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "nodes": [n.to_dict() for n in self.nodes.values()],
            "lastModified": self.last_modified.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Conversation":
        nodes = [ChatNode.from_dict(n) for n in data.get("nodes") or []]
        raw_ts = data.get("lastModified")
        try:
            last_modified = datetime.fromisoformat(raw_ts.replace("Z", "+00:00")) if raw_ts else _now()
        except (TypeError, ValueError):
            last_modified = _now()
        if last_modified.tzinfo is None:
            last_modified = last_modified.replace(tzinfo=timezone.utc)
        return cls(
            id=str(data["id"]),
            title=data.get("title") or DEFAULT_TITLE,
            nodes={n.id: n for n in nodes},
            last_modified=last_modified,
        )
