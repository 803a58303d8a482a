"""
Completion providers.

Each provider turns a conversation history into an async stream of
StreamEvents with cumulative content, ending with exactly one event whose
`is_complete` is True. Failures (missing key, network, API errors) come back as
that final event's `error` instead of an exception, so a broken provider
shows up as node content rather than crashing the page. Keep-alive and
malformed chunks inside a stream are skipped; they never end it.

- OpenAIProvider: OpenAI, plus Ollama and LM Studio through their
  OpenAI-compatible /v1 endpoints
- AnthropicProvider: Anthropic message streams
"""

import logging
import time
from typing import AsyncIterator, Callable, Dict, List, Optional, Protocol, runtime_checkable

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from flowchat.config import (
    DEFAULT_TEMPERATURE,
    PROVIDER_ANTHROPIC,
    PROVIDER_LMSTUDIO,
    PROVIDER_OLLAMA,
    PROVIDER_OPENAI,
    ProviderConfig,
    get_api_key,
)
from flowchat.streaming import StreamEvent

logger = logging.getLogger(__name__)

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"
ANTHROPIC_MAX_TOKENS = 4096
# Local servers ignore the key but the SDK insists on one
LOCAL_API_KEY = "not-needed"


@runtime_checkable
class CompletionProvider(Protocol):
    def stream(self, history: List[Dict[str, str]], model: str, config: ProviderConfig,
               temperature: float = DEFAULT_TEMPERATURE,
               system_prompt: str = "") -> AsyncIterator[StreamEvent]:
        ...


def build_messages(history: List[Dict[str, str]], system_prompt: str = "") -> List[Dict[str, str]]:
    """Chat-completions message list, system prompt first when given."""
    messages = []
    if system_prompt and system_prompt.strip():
        messages.append({"role": "system", "content": system_prompt})
    messages.extend({"role": m["role"], "content": m["content"]} for m in history)
    return messages


def _strip_partial_tag(text: str, tag: str) -> str:
    for k in range(len(tag) - 1, 0, -1):
        if text.endswith(tag[:k]):
            return text[:-k]
    return text


class ThinkTagSplitter:
    """
    Separates <think>...</think> reasoning from the visible reply.

    Feed raw text deltas; each call returns an event with the cumulative
    visible content and thinking text. Tags may be split across deltas.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._raw = ""
        self._started: Optional[float] = None
        self._ended: Optional[float] = None

    def _parse(self, final: bool):
        content_parts, thinking_parts = [], []
        rest = self._raw
        is_thinking = False
        while rest:
            start = rest.find(THINK_OPEN)
            if start < 0:
                content_parts.append(rest)
                break
            content_parts.append(rest[:start])
            rest = rest[start + len(THINK_OPEN):]
            end = rest.find(THINK_CLOSE)
            if end < 0:
                thinking_parts.append(rest)
                is_thinking = True
                break
            thinking_parts.append(rest[:end])
            rest = rest[end + len(THINK_CLOSE):]

        content = "".join(content_parts)
        thinking = "".join(thinking_parts)
        if not final:
            if is_thinking:
                thinking = _strip_partial_tag(thinking, THINK_CLOSE)
            else:
                content = _strip_partial_tag(content, THINK_OPEN)
        return content.lstrip("\n") if thinking_parts else content, thinking, is_thinking, bool(thinking_parts)

    def _thinking_time(self) -> Optional[float]:
        if self._started is None:
            return None
        end = self._ended if self._ended is not None else self._clock()
        return float(int(end - self._started))

    def feed(self, delta: str) -> StreamEvent:
        self._raw += delta
        content, thinking, is_thinking, saw_tag = self._parse(final=False)
        if saw_tag and self._started is None:
            self._started = self._clock()
        if saw_tag and not is_thinking and self._ended is None:
            self._ended = self._clock()
        return StreamEvent(
            content=content,
            thinking=thinking or None,
            thinking_time_seconds=self._thinking_time(),
            is_thinking=is_thinking,
        )

    def finish(self, error: Optional[str] = None) -> StreamEvent:
        content, thinking, _, saw_tag = self._parse(final=True)
        if saw_tag and self._ended is None:
            self._ended = self._clock()
        return StreamEvent(
            content=content,
            thinking=thinking or None,
            thinking_time_seconds=self._thinking_time(),
            is_thinking=False,
            is_complete=True,
            error=error,
        )


def _openai_base_url(config: ProviderConfig) -> Optional[str]:
    if not config.base_url:
        return None
    base = config.base_url.rstrip("/")
    if config.provider in (PROVIDER_OLLAMA, PROVIDER_LMSTUDIO) and not base.endswith("/v1"):
        base += "/v1"
    return base


def _chunk_text(chunk) -> Optional[str]:
    """Text delta of a completion chunk; None for keep-alives and malformed chunks."""
    choices = getattr(chunk, "choices", None)
    if not choices:
        return None
    delta = getattr(choices[0], "delta", None)
    content = getattr(delta, "content", None)
    if content is not None and not isinstance(content, str):
        logger.debug(f"Skipping malformed stream chunk: {chunk!r:.80}")
        return None
    return content


class OpenAIProvider:
    """Streams chat completions from OpenAI or an OpenAI-compatible server."""

    def __init__(self, client_factory: Callable = AsyncOpenAI,
                 clock: Callable[[], float] = time.monotonic):
        self._client_factory = client_factory
        self._clock = clock

    def _client(self, config: ProviderConfig):
        api_key = config.api_key or get_api_key(config.provider)
        if not api_key:
            if config.provider == PROVIDER_OPENAI:
                raise ValueError("No API key configured for OpenAI")
            api_key = LOCAL_API_KEY
        return self._client_factory(api_key=api_key, base_url=_openai_base_url(config))

    async def stream(self, history, model, config, temperature=DEFAULT_TEMPERATURE, system_prompt=""):
        splitter = ThinkTagSplitter(self._clock)
        try:
            client = self._client(config)
            response = await client.chat.completions.create(
                model=model,
                messages=build_messages(history, system_prompt),
                temperature=temperature,
                stream=True,
            )
            async for chunk in response:
                delta = _chunk_text(chunk)
                if delta:
                    yield splitter.feed(delta)
        except Exception as e:
            logger.error(f"{config.name} stream failed: {type(e).__name__}: {e}")
            yield splitter.finish(error=str(e) or type(e).__name__)
            return
        yield splitter.finish()

    async def list_models(self, config: ProviderConfig) -> List[str]:
        """Model ids served by the endpoint; falls back to the configured list."""
        try:
            client = self._client(config)
            page = await client.models.list()
            return sorted(m.id for m in page.data)
        except Exception as e:
            logger.warning(f"Could not list models for {config.name}: {e}")
            return list(config.models)


class AnthropicProvider:
    """Streams Claude replies through the Messages API."""

    def __init__(self, client_factory: Callable = AsyncAnthropic,
                 clock: Callable[[], float] = time.monotonic):
        self._client_factory = client_factory
        self._clock = clock

    def _client(self, config: ProviderConfig):
        api_key = config.api_key or get_api_key(PROVIDER_ANTHROPIC)
        if not api_key:
            raise ValueError("No API key configured for Anthropic")
        kwargs = {"api_key": api_key}
        if config.base_url:
            kwargs["base_url"] = config.base_url
        return self._client_factory(**kwargs)

    async def stream(self, history, model, config, temperature=DEFAULT_TEMPERATURE, system_prompt=""):
        splitter = ThinkTagSplitter(self._clock)
        try:
            client = self._client(config)
            kwargs = {
                "model": model,
                "max_tokens": ANTHROPIC_MAX_TOKENS,
                "temperature": temperature,
                "messages": [{"role": m["role"], "content": m["content"]} for m in history],
            }
            if system_prompt and system_prompt.strip():
                kwargs["system"] = system_prompt
            async with client.messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    if isinstance(text, str) and text:
                        yield splitter.feed(text)
        except Exception as e:
            logger.error(f"{config.name} stream failed: {type(e).__name__}: {e}")
            yield splitter.finish(error=str(e) or type(e).__name__)
            return
        yield splitter.finish()

    async def list_models(self, config: ProviderConfig) -> List[str]:
        return list(config.models)


def get_provider(config: ProviderConfig) -> CompletionProvider:
    """Provider implementation for a config's provider kind."""
    if config.provider == PROVIDER_ANTHROPIC:
        return AnthropicProvider()
    if config.provider in (PROVIDER_OPENAI, PROVIDER_OLLAMA, PROVIDER_LMSTUDIO):
        return OpenAIProvider()
    raise ValueError(f"Unsupported provider: {config.provider}")
