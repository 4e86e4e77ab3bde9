"""
Toolgate Streaming Relay - Turns an event-framed completion stream into text tokens.

The upstream completion endpoint emits newline-delimited records:

    data: {"choices":[{"delta":{"content":"Hel"}}]}
    data: {"choices":[{"delta":{"content":"lo"}}]}
    data: [DONE]

iter_stream_tokens() reassembles records across arbitrary chunk
boundaries and yields the text deltas lazily. Nothing is read from the
upstream until the consumer asks for the next token, and closing the
token iterator closes the upstream.
"""

import codecs
import json
import logging
from contextlib import aclosing
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional, Sequence, Union

import httpx

from toolgate.rag.retrieval import WeightedRetriever, build_context
from toolgate.tools.schema import KnowledgeSourceConfig

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"

_DONE = object()


class RelayError(Exception):
    """Raised when the upstream completion endpoint fails."""

    pass


def extract_text_delta(payload: Any) -> Optional[str]:
    """Return the first text delta in a parsed record, if any."""
    if not isinstance(payload, dict):
        return None

    choices = payload.get("choices")
    if isinstance(choices, list) and choices:
        first = choices[0] if isinstance(choices[0], dict) else {}
        delta = first.get("delta")
        if not isinstance(delta, dict):
            return None
        for key in ("content", "text"):
            value = delta.get(key)
            if isinstance(value, str) and value:
                return value
        return None

    delta = payload.get("delta")
    if isinstance(delta, dict):
        value = delta.get("text")
        if isinstance(value, str) and value:
            return value
    return None


def _parse_line(line: str):
    """Return a token, None (skip), or _DONE for one complete line."""
    line = line.rstrip("\r")
    if not line.startswith(DATA_PREFIX):
        return None

    data = line[len(DATA_PREFIX):].strip()
    if data == DONE_SENTINEL:
        return _DONE

    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        logger.warning("Failed to parse streaming chunk: %s", e)
        return None
    try:
        return extract_text_delta(payload)
    except (AttributeError, TypeError, LookupError) as e:
        logger.warning("Skipping streaming chunk with unexpected shape: %s", e)
        return None


async def iter_stream_tokens(chunks: AsyncIterable[Union[bytes, str]]) -> AsyncIterator[str]:
    """
    Yield text tokens from an event-framed byte stream.

    Args:
        chunks: Raw chunks as read from the wire. A chunk may end mid-line
            or mid-character.

    The stream ends at the ``[DONE]`` record or when the input is
    exhausted. Malformed records are logged and skipped.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    try:
        async for chunk in chunks:
            buffer += decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
            lines = buffer.split("\n")
            buffer = lines.pop()

            for line in lines:
                token = _parse_line(line)
                if token is _DONE:
                    return
                if token:
                    yield token

        buffer += decoder.decode(b"", final=True)
        if buffer:
            token = _parse_line(buffer)
            if token and token is not _DONE:
                yield token
    finally:
        close = getattr(chunks, "aclose", None)
        if close is not None:
            await close()


class ChatStreamClient:
    """
    Client for the upstream chat completion endpoint.

    Example:
        >>> client = ChatStreamClient(httpx.AsyncClient(), "https://api.example.com", api_key)
        >>> async for token in client.stream_chat([{"role": "user", "content": "Hi"}]):
        ...     print(token, end="")
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: float = 120.0,
        app_link: Optional[str] = None,
    ):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.app_link = app_link

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _body(self, messages: List[Dict[str, str]], stream: bool, **kwargs) -> Dict[str, Any]:
        body: Dict[str, Any] = {"messages": messages, "stream": stream}
        if self.model:
            body["modelName"] = self.model
        if self.app_link:
            body["appLink"] = self.app_link
        body.update({k: v for k, v in kwargs.items() if v is not None})
        return body

    async def chat(self, messages: List[Dict[str, str]], **kwargs) -> str:
        """Non-streamed completion. Returns the first choice's content."""
        try:
            response = await self.client.post(
                f"{self.base_url}/v1/chat",
                json=self._body(messages, stream=False, **kwargs),
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise RelayError(f"Chat request failed: {e}")

        try:
            data = response.json()
            choices = data.get("choices") or [{}]
            return (choices[0].get("message") or {}).get("content") or ""
        except (ValueError, AttributeError, TypeError, LookupError) as e:
            raise RelayError(f"Chat response was not a completion: {e}")

    async def stream_chat(self, messages: List[Dict[str, str]], **kwargs) -> AsyncIterator[str]:
        """Streamed completion, yielding text tokens as they arrive."""
        try:
            async with self.client.stream(
                "POST",
                f"{self.base_url}/v1/chat",
                json=self._body(messages, stream=True, **kwargs),
                headers=self._headers(),
                timeout=self.timeout,
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise RelayError(
                        f"Chat stream failed with HTTP {response.status_code}: {response.text[:200]}"
                    )
                async with aclosing(iter_stream_tokens(response.aiter_bytes())) as tokens:
                    async for token in tokens:
                        yield token
        except httpx.HTTPError as e:
            raise RelayError(f"Chat stream failed: {e}")

    async def stream_chat_with_knowledge(
        self,
        message: str,
        system_prompt: Optional[str] = None,
        retriever: Optional[WeightedRetriever] = None,
        sources: Sequence[KnowledgeSourceConfig] = (),
        top_k: int = 5,
    ) -> AsyncIterator[str]:
        """
        Streamed chat that grounds the system prompt in knowledge-base passages
        when a retriever and at least one source are configured.
        """
        if retriever is not None and sources:
            results = await retriever.search(message, sources, top_k)
            system_prompt = (
                f"{system_prompt or 'You are a helpful assistant.'}\n\n"
                "Use the following information from the knowledge base to answer the question:\n\n"
                f"{build_context(results)}\n\n"
                "If the information provided doesn't contain the answer, say so clearly."
            )

        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": message})

        async with aclosing(self.stream_chat(messages)) as tokens:
            async for token in tokens:
                yield token
