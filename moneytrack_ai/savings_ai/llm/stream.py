"""
Streaming chat-completion client and it does:
- Opens one streaming request to the OpenAI-compatible chat service
- Line-buffers the SSE body so events split across reads survive
- Decodes each event into content / tool-call / finish fragments
- Retries transient statuses only before the first streamed byte

Main purpose:
Turn the provider's event stream into a lazy sequence of typed fragments,
and surface every transport-level failure as TransportError.
"""


import asyncio
import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Union

import httpx

from savings_ai.core.config import settings
from savings_ai.core.logging import get_logger

log = get_logger("llm.stream")


class LLMError(RuntimeError):
    pass


class TransportError(LLMError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class ContentDelta:
    text: str


@dataclass(frozen=True)
class ToolCallDelta:
    index: Optional[int]
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: Optional[str] = None


@dataclass(frozen=True)
class FinishSignal:
    reason: str


StreamEvent = Union[ContentDelta, ToolCallDelta, FinishSignal]

_TRANSIENT_STATUSES = (429, 500, 502, 503, 504)
_DONE = "[DONE]"


def _safe_snippet(text: str, n: int = 400) -> str:
    return (text or "")[:n].replace("\n", "\\n").replace("\r", "\\r")


class SSEDecoder:
    """Incremental decoder for ``data:`` lines of a server-sent event body.

    ``feed`` accepts arbitrary text chunks as they come off the socket and
    returns the JSON payloads of every line completed so far; a partial last
    line is held back until the next chunk (or ``flush``).
    """

    def __init__(self):
        self._buffer = ""
        self.done = False

    def feed(self, chunk: str) -> list[dict]:
        if self.done:
            return []
        self._buffer += chunk
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._decode_lines(lines)

    def flush(self) -> list[dict]:
        rest, self._buffer = self._buffer, ""
        if self.done or not rest.strip():
            return []
        return self._decode_lines([rest])

    def _decode_lines(self, lines: list[str]) -> list[dict]:
        out: list[dict] = []
        for line in lines:
            stripped = line.strip()
            if not stripped.startswith("data:"):
                # blank separators, "event:" and ": keep-alive" comments
                continue
            data = stripped[5:].strip()
            if data == _DONE:
                self.done = True
                break
            try:
                parsed = json.loads(data)
            except json.JSONDecodeError:
                log.warning(f"Skipping malformed SSE data line: {_safe_snippet(data)}")
                continue
            if isinstance(parsed, dict):
                out.append(parsed)
        return out


def _str_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _tool_call_delta(tc: Any) -> Optional[ToolCallDelta]:
    if not isinstance(tc, dict):
        log.warning(f"Skipping malformed tool_calls entry: {_safe_snippet(repr(tc))}")
        return None
    index = tc.get("index")
    if isinstance(index, str) and index.strip().isdigit():
        index = int(index)
    if index is not None and (not isinstance(index, int) or isinstance(index, bool)):
        log.warning(f"Skipping tool_calls entry with non-integer index {index!r}")
        return None
    func = tc.get("function")
    if not isinstance(func, dict):
        func = {}
    arguments = func.get("arguments")
    if isinstance(arguments, dict):
        # some providers send the arguments already decoded
        arguments = json.dumps(arguments, ensure_ascii=False)
    return ToolCallDelta(
        index=index,
        id=_str_or_none(tc.get("id")),
        name=_str_or_none(func.get("name")),
        arguments=_str_or_none(arguments),
    )


def events_from_chunk(chunk: dict) -> list[StreamEvent]:
    """Map one decoded provider chunk onto typed stream fragments.

    Entries that do not have the expected shape are logged and skipped.
    """
    choices = chunk.get("choices")
    if not isinstance(choices, list) or not choices:
        return []
    choice = choices[0]
    if not isinstance(choice, dict):
        log.warning(f"Skipping malformed choice: {_safe_snippet(repr(choice))}")
        return []
    delta = choice.get("delta")
    if not isinstance(delta, dict):
        delta = {}

    events: list[StreamEvent] = []
    content = delta.get("content")
    if isinstance(content, str) and content:
        events.append(ContentDelta(content))

    tool_calls = delta.get("tool_calls") or []
    if not isinstance(tool_calls, list):
        log.warning(f"Skipping malformed tool_calls: {_safe_snippet(repr(tool_calls))}")
        tool_calls = []
    for tc in tool_calls:
        event = _tool_call_delta(tc)
        if event is not None:
            events.append(event)

    if choice.get("finish_reason"):
        events.append(FinishSignal(str(choice["finish_reason"])))
    return events


class ChatStreamClient:
    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        model: str,
        temperature: float = 0.5,
        top_p: float = 0.8,
        max_tokens: int = 2000,
        timeout: Optional[httpx.Timeout] = None,
        deadline: float = 180.0,
        max_retries: int = 2,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.url = f"{base_url.rstrip('/')}/chat/completions"
        self.model = model
        self.temperature = temperature
        self.top_p = top_p
        self.max_tokens = max_tokens
        self.timeout = timeout or httpx.Timeout(60.0, connect=10.0)
        self.deadline = deadline
        self.max_retries = max_retries
        self._http_client = http_client

    def _payload(self, messages: list[dict], tools: list[dict]) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": True,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "top_p": self.top_p,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        return payload

    async def stream(self, messages: list[dict], tools: list[dict]) -> AsyncIterator[StreamEvent]:
        """
        Yields fragments of one assistant turn until the service finishes.
        Raises TransportError on non-200, connection errors, timeouts or the
        wall-clock deadline; nothing is retried once bytes were consumed.
        """
        if not self.api_key:
            raise TransportError("Missing LLM_API_KEY. Put it in your .env")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "text/event-stream",
        }
        payload = self._payload(messages, tools)

        if self._http_client is not None:
            async for event in self._stream_with(self._http_client, headers, payload):
                yield event
            return

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            async for event in self._stream_with(client, headers, payload):
                yield event

    async def _stream_with(
        self, client: httpx.AsyncClient, headers: dict, payload: dict
    ) -> AsyncIterator[StreamEvent]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.deadline

        for attempt in range(self.max_retries + 1):
            try:
                async with client.stream("POST", self.url, headers=headers, json=payload) as r:
                    if r.status_code in _TRANSIENT_STATUSES and attempt < self.max_retries:
                        body = (await r.aread()).decode("utf-8", errors="replace")
                        backoff = 0.6 * (2**attempt)
                        log.warning(
                            f"Chat service transient {r.status_code}: {_safe_snippet(body)}. "
                            f"retrying in {backoff:.1f}s (attempt {attempt+1}/{self.max_retries+1})"
                        )
                        await asyncio.sleep(backoff)
                        continue

                    if r.status_code != 200:
                        body = (await r.aread()).decode("utf-8", errors="replace")
                        raise TransportError(
                            f"Chat service error {r.status_code}: {_safe_snippet(body)}",
                            status_code=r.status_code,
                        )

                    decoder = SSEDecoder()
                    async for text in r.aiter_text():
                        if loop.time() > deadline:
                            raise TransportError(
                                f"Chat stream exceeded {self.deadline:.0f}s deadline"
                            )
                        for chunk in decoder.feed(text):
                            for event in events_from_chunk(chunk):
                                yield event
                        if decoder.done:
                            return
                    for chunk in decoder.flush():
                        for event in events_from_chunk(chunk):
                            yield event
                    return

            except httpx.TimeoutException as e:
                raise TransportError(f"Chat service timed out: {e!r}") from e
            except httpx.HTTPError as e:
                raise TransportError(f"Chat service connection failed: {e!r}") from e


def build_chat_client():
    """Pick the chat provider from settings; mock when no key is configured."""
    provider = (settings.LLM_PROVIDER or "").lower().strip()

    if provider == "mock" or (provider in ("clova", "openai") and not settings.LLM_API_KEY):
        if provider != "mock":
            log.warning("LLM_API_KEY is not set, falling back to the mock chat provider")
        from savings_ai.llm.mock import MockChatClient

        return MockChatClient()

    if provider not in ("clova", "openai"):
        raise LLMError(f"Unsupported LLM_PROVIDER={settings.LLM_PROVIDER}. Use clova, openai or mock.")

    return ChatStreamClient(
        api_key=settings.LLM_API_KEY,
        base_url=settings.LLM_BASE_URL,
        model=settings.LLM_MODEL,
        temperature=settings.LLM_TEMPERATURE,
        top_p=settings.LLM_TOP_P,
        max_tokens=settings.LLM_MAX_TOKENS,
        timeout=httpx.Timeout(
            settings.LLM_TIMEOUT_SECONDS, connect=settings.LLM_CONNECT_TIMEOUT_SECONDS
        ),
        deadline=settings.LLM_STREAM_DEADLINE,
        max_retries=settings.LLM_MAX_RETRIES,
    )
