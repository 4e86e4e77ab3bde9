"""Tests for the streaming relay."""

import asyncio
import json
from contextlib import aclosing

import httpx
import pytest

from toolgate.providers import ChatStreamClient, RelayError, extract_text_delta, iter_stream_tokens
from toolgate.rag import KnowledgeSearcher, SearchResult, WeightedRetriever
from toolgate.tools import KnowledgeSourceConfig

EXAMPLE = 'data: {"choices":[{"delta":{"content":"ab"}}]}\n\ndata: [DONE]\n\n'


class ChunkSource:
    """Async iterator over fixed chunks that records how far it was read and whether it was closed."""

    def __init__(self, chunks):
        self.chunks = list(chunks)
        self.read = 0
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.closed or self.read >= len(self.chunks):
            raise StopAsyncIteration
        chunk = self.chunks[self.read]
        self.read += 1
        return chunk

    async def aclose(self):
        self.closed = True


def collect(chunks):
    async def run():
        return [token async for token in iter_stream_tokens(ChunkSource(chunks))]

    return asyncio.run(run())


def record(text):
    return "data: " + json.dumps({"choices": [{"delta": {"content": text}}]}, ensure_ascii=False) + "\n"


class TestIterStreamTokens:
    def test_example_split_at_every_index(self):
        data = EXAMPLE.encode()
        for i in range(len(data) + 1):
            assert collect([data[:i], data[i:]]) == ["ab"], f"split at {i}"

    def test_byte_at_a_time(self):
        assert collect([bytes([b]) for b in EXAMPLE.encode()]) == ["ab"]

    def test_multibyte_character_split(self):
        data = record("héllo ✓").encode()
        cut = data.index("✓".encode()) + 1
        assert collect([data[:cut], data[cut:]]) == ["héllo ✓"]

    def test_stops_at_done(self):
        chunks = [record("a"), "data: [DONE]\n", record("never")]
        source = ChunkSource(chunks)

        async def run():
            return [t async for t in iter_stream_tokens(source)]

        assert asyncio.run(run()) == ["a"]
        assert source.closed is True

    def test_malformed_record_skipped(self):
        chunks = [record("a"), "data: {not json\n", record("b"), "data: [DONE]\n"]
        assert collect(chunks) == ["a", "b"]

    def test_non_dict_delta_skipped(self):
        chunks = [
            record("a"),
            'data: {"choices":[{"delta":"oops"}]}\n',
            'data: {"choices":[{"delta":["x"]}]}\n',
            record("b"),
            "data: [DONE]\n",
        ]
        assert collect(chunks) == ["a", "b"]

    def test_ignores_non_data_lines(self):
        chunks = [": keep-alive\n", "event: message\n", record("x"), "\r\n"]
        assert collect(chunks) == ["x"]

    def test_crlf_lines(self):
        chunks = [record("x").replace("\n", "\r\n"), "data: [DONE]\r\n"]
        assert collect(chunks) == ["x"]

    def test_trailing_record_without_newline(self):
        assert collect([record("a"), record("tail").rstrip("\n")]) == ["a", "tail"]

    def test_exhausted_without_done(self):
        assert collect([record("a"), record("b")]) == ["a", "b"]

    def test_empty_deltas_not_emitted(self):
        chunks = ['data: {"choices":[{"delta":{}}]}\n', record(""), record("z")]
        assert collect(chunks) == ["z"]

    def test_early_close_releases_upstream(self):
        source = ChunkSource([record("a"), record("b"), record("c")])

        async def run():
            async with aclosing(iter_stream_tokens(source)) as tokens:
                async for token in tokens:
                    return token

        assert asyncio.run(run()) == "a"
        assert source.closed is True
        assert source.read == 1


class TestExtractTextDelta:
    @pytest.mark.parametrize("payload, expected", [
        ({"choices": [{"delta": {"content": "a"}}]}, "a"),
        ({"choices": [{"delta": {"text": "b"}}]}, "b"),
        ({"delta": {"text": "c"}}, "c"),
        ({"choices": []}, None),
        ({"choices": [{"delta": {"content": None}}]}, None),
        (["not", "a", "dict"], None),
        ({"choices": [{"delta": "oops"}]}, None),
        ({"choices": [{"delta": ["x"]}]}, None),
    ])
    def test_shapes(self, payload, expected):
        assert extract_text_delta(payload) == expected


class StaticSearcher(KnowledgeSearcher):
    async def search(self, source_id, query, top_k):
        return [SearchResult(text="Refunds take 5 days.", score=1.0, source_id=source_id)]


class TestChatStreamClient:
    def sse_body(self, *texts):
        return ("".join(record(t) for t in texts) + "data: [DONE]\n").encode()

    def test_stream_chat(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, content=self.sse_body("Hel", "lo"))

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                relay = ChatStreamClient(client, "https://api.example.com", api_key="k", model="m-1")
                return [t async for t in relay.stream_chat([{"role": "user", "content": "hi"}])]

        assert asyncio.run(run()) == ["Hel", "lo"]
        assert seen["body"]["stream"] is True
        assert seen["body"]["modelName"] == "m-1"
        assert seen["auth"] == "Bearer k"

    def test_stream_chat_http_error(self):
        def handler(request):
            return httpx.Response(500, text="upstream exploded")

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                relay = ChatStreamClient(client, "https://api.example.com")
                return [t async for t in relay.stream_chat([{"role": "user", "content": "hi"}])]

        with pytest.raises(RelayError, match="HTTP 500"):
            asyncio.run(run())

    def test_chat_non_streamed(self):
        def handler(request):
            assert json.loads(request.content)["stream"] is False
            return httpx.Response(200, json={"choices": [{"message": {"content": "done"}}]})

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                relay = ChatStreamClient(client, "https://api.example.com")
                return await relay.chat([{"role": "user", "content": "hi"}])

        assert asyncio.run(run()) == "done"

    def test_knowledge_grounded_system_prompt(self):
        seen = {}

        def handler(request):
            seen["messages"] = json.loads(request.content)["messages"]
            return httpx.Response(200, content=self.sse_body("ok"))

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                relay = ChatStreamClient(client, "https://api.example.com")
                tokens = relay.stream_chat_with_knowledge(
                    "How long do refunds take?",
                    retriever=WeightedRetriever(StaticSearcher()),
                    sources=[KnowledgeSourceConfig(id="kb-1")],
                )
                return [t async for t in tokens]

        assert asyncio.run(run()) == ["ok"]
        system, user = seen["messages"]
        assert system["role"] == "system"
        assert "[1] Refunds take 5 days." in system["content"]
        assert user == {"role": "user", "content": "How long do refunds take?"}

    def test_stream_chat_sends_app_link(self):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=self.sse_body("ok"))

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                relay = ChatStreamClient(client, "https://api.example.com", app_link="https://app.example.com")
                return [t async for t in relay.stream_chat([{"role": "user", "content": "hi"}])]

        assert asyncio.run(run()) == ["ok"]
        assert seen["body"]["appLink"] == "https://app.example.com"

    @pytest.mark.parametrize("response", [
        httpx.Response(200, text="<html>gateway</html>"),
        httpx.Response(200, json=["not", "a", "completion"]),
    ])
    def test_chat_unreadable_body_raises_relay_error(self, response):
        def handler(request):
            return response

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                relay = ChatStreamClient(client, "https://api.example.com")
                return await relay.chat([{"role": "user", "content": "hi"}])

        with pytest.raises(RelayError, match="not a completion"):
            asyncio.run(run())
