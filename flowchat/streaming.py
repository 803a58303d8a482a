"""
Streaming replies into the conversation.

A completion provider yields StreamEvents carrying the *cumulative* reply text
(never deltas), so applying the latest event is always enough to bring the
placeholder node up to date. StreamingIntegrator owns one in-flight reply per
user node and routes every event through the mutation engine.
"""

import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set

from flowchat.graph import conversation_history
from flowchat.models import ROLE_ASSISTANT, ChatNode, new_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamEvent:
    """One provider event. `content` is the full reply so far."""
    content: str = ""
    thinking: Optional[str] = None
    thinking_time_seconds: Optional[float] = None
    is_thinking: bool = False
    is_complete: bool = False
    error: Optional[str] = None

    def to_patch(self) -> Dict[str, Any]:
        """Node fields this event updates."""
        patch: Dict[str, Any] = {"content": self.content}
        if self.thinking is not None:
            patch["thinking"] = self.thinking
        if self.thinking_time_seconds is not None:
            patch["thinking_time_seconds"] = self.thinking_time_seconds
        return patch


def error_content(message: str) -> str:
    return f"Error: {message}"


class StreamingIntegrator:
    """
    Drives provider streams into assistant placeholder nodes.

    `provider_factory(provider_config)` returns an object with
    `stream(history, model, config, temperature, system_prompt)`.
    """

    def __init__(self, engine, provider_factory: Callable):
        self.engine = engine
        self._provider_factory = provider_factory
        self._in_flight: Set[str] = set()

    @property
    def in_flight(self) -> Set[str]:
        return set(self._in_flight)

    def is_streaming(self, node_id: str) -> bool:
        return node_id in self._in_flight

    def _fail(self, placeholder_id: str, message: str, conversation_id: str) -> None:
        self.engine.update_content(placeholder_id, {"content": error_content(message)},
                                   from_stream=True, conversation_id=conversation_id)

    async def submit(self, node_id: str, provider_config, model: str,
                     temperature: float = 0.7, system_prompt: str = "") -> Optional[ChatNode]:
        """
        Send the root -> `node_id` history and stream the reply under it.

        Returns the final assistant node, or None if nothing was submitted. The
        reply keeps landing in the conversation it was submitted from even if
        another one is opened meanwhile.
        """
        if node_id in self._in_flight:
            logger.warning(f"Reply for {node_id} already streaming")
            return None
        conversation = self.engine.conversation
        if conversation is None or node_id not in conversation.nodes:
            logger.debug(f"submit: node {node_id} not found")
            return None

        conversation_id = conversation.id
        history = conversation_history(conversation.nodes, node_id)
        self.engine.update_content(node_id, {"editing": False}, from_stream=True,
                                   conversation_id=conversation_id)
        placeholder = self.engine.add_child(
            node_id,
            node=ChatNode(
                id=new_id(),
                role=ROLE_ASSISTANT,
                model=model,
                provider_id=getattr(provider_config, "id", None),
            ),
            conversation_id=conversation_id,
        )
        if placeholder is None:
            return None

        self._in_flight.add(node_id)
        logger.info(f"Streaming {model} reply into {placeholder.id}")
        try:
            provider = self._provider_factory(provider_config)
            stream = provider.stream(history, model, provider_config, temperature, system_prompt)
            async with aclosing(stream) as events:
                async for event in events:
                    if event.error:
                        logger.warning(f"Provider reported error for {placeholder.id}: {event.error}")
                        self._fail(placeholder.id, event.error, conversation_id)
                        break
                    self.engine.update_content(placeholder.id, event.to_patch(), from_stream=True,
                                               conversation_id=conversation_id)
                    if event.is_complete:
                        break
        except Exception as e:
            logger.exception(f"Stream for {placeholder.id} failed")
            self._fail(placeholder.id, str(e) or type(e).__name__, conversation_id)
        finally:
            self._in_flight.discard(node_id)
        return self.engine.get(placeholder.id, conversation_id)
