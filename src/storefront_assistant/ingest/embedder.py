"""Embedding client contract and concrete implementations."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Any

from storefront_assistant.obs.logger import get_logger

logger = get_logger(__name__)


class Embedder(ABC):
    """Turns text into fixed-length vectors.

    Implementations may return an empty list on failure. Callers treat that
    as "no candidates", never as a fatal error.
    """

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts, preserving order."""


class HashingEmbedder(Embedder):
    """Deterministic sparse-like embedding without external model calls.

    Used for tests and offline development. In production, wrap a real
    provider with `LangChainEmbedder`.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = text.lower().split()
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]


class LangChainEmbedder(Embedder):
    """Adapter over any `langchain_core.embeddings.Embeddings` provider."""

    def __init__(self, embeddings: Any, *, timeout_seconds: float = 5.0) -> None:
        self._embeddings = embeddings
        self._timeout_seconds = timeout_seconds

    async def embed(self, texts: list[str]) -> list[list[float]]:
        try:
            vectors = await asyncio.wait_for(
                self._embeddings.aembed_documents(texts),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Embedding timed out after %.1fs", self._timeout_seconds)
            return []
        except Exception as exc:
            logger.warning("Embedding provider failed: %s", exc)
            return []
        return [list(vector) for vector in vectors]
