"""Embedding backend abstraction."""

from __future__ import annotations

import asyncio
import hashlib
import os
import re
from typing import Any, Protocol, runtime_checkable

import httpx
import numpy as np

from heymem.config import EmbeddingConfig
from heymem.exceptions import EmbeddingError

GEMINI_DIMS = 768
OPENAI_DIMS = 1536


@runtime_checkable
class EmbeddingBackend(Protocol):
    dims: int
    model: str

    async def embed(self, texts: list[str]) -> np.ndarray: ...
    async def embed_single(self, text: str) -> np.ndarray: ...
    async def close(self) -> None: ...


def _to_matrix(vectors: list[Any], count: int, dims: int) -> np.ndarray:
    """Validate a provider response and stack it into a (count, dims) array."""
    if len(vectors) != count:
        raise EmbeddingError(f"expected {count} embeddings, got {len(vectors)}")
    try:
        arr = np.array(vectors, dtype=np.float32)
    except (TypeError, ValueError) as exc:
        raise EmbeddingError(f"malformed embedding payload: {exc}") from exc
    if arr.ndim != 2 or arr.shape[1] != dims:
        raise EmbeddingError(f"expected {dims}-dim embeddings, got shape {arr.shape}")
    return arr


class _HTTPEmbedder:
    """Shared httpx client handling for remote providers."""

    base_url: str = ""
    timeout: float = 30.0

    def __init__(self) -> None:
        self._client: httpx.AsyncClient | None = None

    def _headers(self) -> dict[str, str]:
        return {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers(),
                timeout=self.timeout,
            )
        return self._client

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        try:
            resp = await client.post(path, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as exc:
            raise EmbeddingError(f"{type(self).__name__} request failed: {exc}") from exc
        except ValueError as exc:
            raise EmbeddingError(f"{type(self).__name__} returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise EmbeddingError(f"{type(self).__name__} returned unexpected payload")
        return data

    async def embed_single(self, text: str) -> np.ndarray:
        return (await self.embed([text]))[0]

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


class GeminiEmbedder(_HTTPEmbedder):
    def __init__(
        self,
        api_key: str | None = None,
        model: str = "text-embedding-004",
        dims: int = GEMINI_DIMS,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 30.0,
    ) -> None:
        super().__init__()
        self.api_key = api_key or os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY", "")
        self.model = model
        self.dims = dims
        self.base_url = base_url
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self.api_key}

    async def embed(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.dims), dtype=np.float32)
        if not self.api_key:
            raise EmbeddingError("GEMINI_API_KEY or GOOGLE_API_KEY is required")
        model_ref = f"models/{self.model}"
        data = await self._post(
            f"/{model_ref}:batchEmbedContents",
            {"requests": [{"model": model_ref, "content": {"parts": [{"text": t}]}} for t in texts]},
        )
        vecs = [(e or {}).get("values") for e in data.get("embeddings", [])]
        return _to_matrix(vecs, len(texts), self.dims)


class OpenAIEmbedder(_HTTPEmbedder):
    def __init__(
        self,
        api_key: str | None = None,
        model: str = "text-embedding-3-small",
        dims: int = OPENAI_DIMS,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
    ) -> None:
        super().__init__()
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY", "")
        self.model = model
        self.dims = dims
        self.base_url = base_url
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def embed(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.dims), dtype=np.float32)
        if not self.api_key:
            raise EmbeddingError("OPENAI_API_KEY is required")
        data = await self._post("/embeddings", {"model": self.model, "input": texts})
        rows = sorted(data.get("data", []), key=lambda x: x.get("index", 0))
        return _to_matrix([x.get("embedding") for x in rows], len(texts), self.dims)


class OllamaEmbedder(_HTTPEmbedder):
    def __init__(
        self,
        model: str = "nomic-embed-text",
        dims: int = 768,
        base_url: str = "http://127.0.0.1:11434",
        timeout: float = 30.0,
    ) -> None:
        super().__init__()
        self.model = model
        self.dims = dims
        self.base_url = base_url
        self.timeout = timeout

    async def embed(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.dims), dtype=np.float32)
        out: list[Any] = []
        for text in texts:
            data = await self._post("/api/embeddings", {"model": self.model, "prompt": text})
            out.append(data.get("embedding"))
        return _to_matrix(out, len(texts), self.dims)


class HashEmbedder:
    """Deterministic local embedder using token hashing (no network/API keys)."""

    _TOKEN_RE = re.compile(r"[a-z0-9_]+")

    def __init__(self, dims: int = 384) -> None:
        self.dims = max(32, int(dims))
        self.model = f"hash-{self.dims}"

    def _encode(self, text: str) -> np.ndarray:
        tokens = self._TOKEN_RE.findall((text or "").lower())
        vec = np.zeros((self.dims,), dtype=np.float32)
        if not tokens:
            return vec

        features = list(tokens)
        features.extend(f"{tokens[i]}_{tokens[i+1]}" for i in range(len(tokens) - 1))
        for feat in features:
            digest = hashlib.blake2b(feat.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little", signed=False) % self.dims
            sign = 1.0 if (digest[4] & 1) == 0 else -1.0
            vec[idx] += sign
        norm = float(np.linalg.norm(vec))
        if norm > 0.0:
            vec /= norm
        return vec

    async def embed(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.dims), dtype=np.float32)
        return np.stack([self._encode(t) for t in texts]).astype(np.float32, copy=False)

    async def embed_single(self, text: str) -> np.ndarray:
        return self._encode(text)

    async def close(self) -> None:
        return None


class SentenceTransformerEmbedder:
    """Local semantic embedder using sentence-transformers."""

    def __init__(self, model: str = "all-MiniLM-L6-v2", dims: int = 384) -> None:
        self.model = model or "all-MiniLM-L6-v2"
        self.dims = max(32, int(dims))
        self._model = None

    def _ensure_model(self):
        if self._model is not None:
            return self._model
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as exc:
            raise EmbeddingError(
                "sentence-transformers is required for provider='sbert'. "
                "Install with: pip install 'heymem[semantic]'"
            ) from exc
        self._model = SentenceTransformer(self.model)
        return self._model

    def _encode_sync(self, texts: list[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.dims), dtype=np.float32)
        model = self._ensure_model()
        vectors = model.encode(texts, normalize_embeddings=True, show_progress_bar=False)
        arr = np.asarray(vectors, dtype=np.float32)
        if arr.ndim == 1:
            arr = arr.reshape(1, -1)
        return _to_matrix(list(arr), len(texts), self.dims)

    async def embed(self, texts: list[str]) -> np.ndarray:
        return await asyncio.to_thread(self._encode_sync, texts)

    async def embed_single(self, text: str) -> np.ndarray:
        return (await self.embed([text]))[0]

    async def close(self) -> None:
        return None


def create_embedder(config: EmbeddingConfig | None = None) -> EmbeddingBackend:
    cfg = config or EmbeddingConfig()
    provider = (cfg.provider or "gemini").strip().lower()
    common: dict[str, Any] = {"timeout": cfg.timeout}
    if cfg.base_url:
        common["base_url"] = cfg.base_url
    if provider in {"gemini", "google", "default"}:
        return GeminiEmbedder(api_key=cfg.api_key or None, model=cfg.model or "text-embedding-004",
                              dims=cfg.dims, **common)
    if provider == "openai":
        dims = OPENAI_DIMS if cfg.dims == GEMINI_DIMS else cfg.dims
        return OpenAIEmbedder(api_key=cfg.api_key or None, model=cfg.model or "text-embedding-3-small",
                              dims=dims, **common)
    if provider in {"ollama", "local"}:
        return OllamaEmbedder(model=cfg.model or "nomic-embed-text", dims=cfg.dims, **common)
    if provider in {"hash", "localhash"}:
        return HashEmbedder(dims=cfg.dims)
    if provider in {"sbert", "sentence-transformers", "sentence_transformers"}:
        return SentenceTransformerEmbedder(model=cfg.model or "all-MiniLM-L6-v2", dims=cfg.dims)
    raise ValueError(f"Unsupported embedding provider: {cfg.provider}")
