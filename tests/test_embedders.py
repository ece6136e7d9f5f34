from __future__ import annotations

import asyncio
import json

import httpx
import numpy as np
import pytest

from heymem.config import EmbeddingConfig
from heymem.embeddings.backends import (
    EmbeddingBackend,
    GeminiEmbedder,
    HashEmbedder,
    OllamaEmbedder,
    OpenAIEmbedder,
    _HTTPEmbedder,
    create_embedder,
)
from heymem.exceptions import EmbeddingError


def _attach(embedder, handler) -> None:
    embedder._client = httpx.AsyncClient(
        base_url=embedder.base_url,
        headers=embedder._headers(),
        transport=httpx.MockTransport(handler),
    )


def test_openai_embedder_orders_by_index():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("authorization")
        body = json.loads(request.content)
        data = [{"index": i, "embedding": [float(i)] * 4} for i, _ in enumerate(body["input"])]
        return httpx.Response(200, json={"data": list(reversed(data))})

    async def _run() -> None:
        emb = OpenAIEmbedder(api_key="sk-test", dims=4)
        _attach(emb, handler)
        try:
            arr = await emb.embed(["a", "b"])
            assert arr.shape == (2, 4)
            assert arr[1][0] == 1.0
            single = await emb.embed_single("c")
            assert single.shape == (4,)
        finally:
            await emb.close()

    asyncio.run(_run())
    assert seen["path"] == "/v1/embeddings"
    assert seen["auth"] == "Bearer sk-test"


def test_gemini_embedder_batch_request():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["key"] = request.headers.get("x-goog-api-key")
        body = json.loads(request.content)
        seen["count"] = len(body["requests"])
        return httpx.Response(200, json={"embeddings": [{"values": [0.5] * 3} for _ in body["requests"]]})

    async def _run() -> np.ndarray:
        emb = GeminiEmbedder(api_key="g-key", dims=3)
        _attach(emb, handler)
        try:
            return await emb.embed(["x", "y", "z"])
        finally:
            await emb.close()

    arr = asyncio.run(_run())
    assert arr.shape == (3, 3)
    assert seen["path"].endswith("/models/text-embedding-004:batchEmbedContents")
    assert seen["key"] == "g-key"
    assert seen["count"] == 3


def test_wrong_dimension_is_a_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": [{"index": 0, "embedding": [0.1, 0.2]}]})

    async def _run() -> None:
        emb = OpenAIEmbedder(api_key="sk-test", dims=4)
        _attach(emb, handler)
        with pytest.raises(EmbeddingError):
            await emb.embed(["a"])
        await emb.close()

    asyncio.run(_run())


def test_http_failures_become_embedding_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "bad key"})

    async def _run() -> None:
        emb = OllamaEmbedder(dims=4)
        _attach(emb, handler)
        with pytest.raises(EmbeddingError):
            await emb.embed_single("a")
        await emb.close()

    asyncio.run(_run())


def test_network_errors_become_embedding_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async def _run() -> None:
        emb = OllamaEmbedder(dims=4)
        _attach(emb, handler)
        with pytest.raises(EmbeddingError):
            await emb.embed(["a"])
        await emb.close()

    asyncio.run(_run())


def test_missing_api_keys(monkeypatch):
    for var in ("OPENAI_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY"):
        monkeypatch.delenv(var, raising=False)

    async def _run() -> None:
        with pytest.raises(EmbeddingError):
            await OpenAIEmbedder().embed(["a"])
        with pytest.raises(EmbeddingError):
            await GeminiEmbedder().embed(["a"])

    asyncio.run(_run())


def test_empty_batch_needs_no_network():
    async def _run() -> np.ndarray:
        return await OpenAIEmbedder(api_key="", dims=8).embed([])

    assert asyncio.run(_run()).shape == (0, 8)


def test_hash_embedder_is_deterministic_and_normalized():
    async def _run() -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        emb = HashEmbedder(dims=128)
        a = await emb.embed_single("list files in directory")
        b = await emb.embed_single("list files in directory")
        empty = await emb.embed_single("")
        return a, b, empty

    a, b, empty = asyncio.run(_run())
    assert np.allclose(a, b)
    assert float(np.linalg.norm(a)) == pytest.approx(1.0, abs=1e-5)
    assert not empty.any()


def test_create_embedder_by_provider():
    assert isinstance(create_embedder(EmbeddingConfig(provider="gemini")), GeminiEmbedder)
    openai = create_embedder(EmbeddingConfig(provider="openai"))
    assert isinstance(openai, OpenAIEmbedder)
    assert openai.dims == 1536
    assert isinstance(create_embedder(EmbeddingConfig(provider="ollama")), OllamaEmbedder)
    hashed = create_embedder(EmbeddingConfig(provider="hash", dims=64))
    assert isinstance(hashed, HashEmbedder)
    assert isinstance(hashed, EmbeddingBackend)
    with pytest.raises(ValueError):
        create_embedder(EmbeddingConfig(provider="nope"))


def test_http_providers_each_implement_embed():
    assert "embed" not in vars(_HTTPEmbedder)
    for embedder in (GeminiEmbedder(api_key="k"), OpenAIEmbedder(api_key="k"), OllamaEmbedder()):
        assert "embed" in vars(type(embedder))
        assert isinstance(embedder, EmbeddingBackend)
