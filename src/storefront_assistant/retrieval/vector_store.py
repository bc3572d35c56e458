"""Vector index interfaces and concrete adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from math import sqrt
from typing import Any, Protocol

import httpx

from storefront_assistant.errors import UpstreamError
from storefront_assistant.obs.logger import get_logger
from storefront_assistant.types import Candidate, ProductMetadata

logger = get_logger(__name__)


def tenant_namespace(tenant: str) -> str:
    """Index namespace for a tenant (`shop.myshopify.com` -> `shop_myshopify_com`)."""
    return tenant.strip().replace(".", "_")


@dataclass(slots=True)
class VectorRecord:
    id: str
    values: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)


class VectorIndex(Protocol):
    """Approximate nearest-neighbour index, namespaced per tenant."""

    async def upsert(self, namespace: str, records: list[VectorRecord]) -> None:
        """Insert or update vectors in a namespace."""

    async def query(
        self,
        namespace: str,
        vector: list[float],
        top_k: int,
        include_metadata: bool = True,
    ) -> list[Candidate]:
        """Return the `top_k` nearest candidates, best first."""

    async def aclose(self) -> None:
        """Release transport resources."""


class InMemoryVectorIndex:
    """Deterministic namespaced index used for tests and local prototyping."""

    def __init__(self) -> None:
        self._namespaces: dict[str, dict[str, VectorRecord]] = {}

    async def upsert(self, namespace: str, records: list[VectorRecord]) -> None:
        bucket = self._namespaces.setdefault(namespace, {})
        for record in records:
            bucket[record.id] = record

    async def query(
        self,
        namespace: str,
        vector: list[float],
        top_k: int,
        include_metadata: bool = True,
    ) -> list[Candidate]:
        bucket = self._namespaces.get(namespace, {})
        ranked = sorted(
            bucket.values(),
            key=lambda record: _cosine_similarity(vector, record.values),
            reverse=True,
        )
        return [
            _to_candidate(
                record.id,
                _cosine_similarity(vector, record.values),
                record.metadata if include_metadata else {},
            )
            for record in ranked[:top_k]
        ]

    async def aclose(self) -> None:
        return None


class PineconeVectorIndex:
    """Pinecone data-plane adapter over its REST API."""

    def __init__(
        self,
        *,
        index_host: str,
        api_key: str,
        api_version: str = "2025-10",
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = f"https://{index_host}"
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout_seconds,
            headers={
                "Api-Key": api_key,
                "Content-Type": "application/json",
                "X-Pinecone-Api-Version": api_version,
            },
        )

    async def upsert(self, namespace: str, records: list[VectorRecord]) -> None:
        payload = {
            "namespace": namespace,
            "vectors": [
                {"id": record.id, "values": record.values, "metadata": record.metadata}
                for record in records
            ],
        }
        await self._post("/vectors/upsert", payload)

    async def query(
        self,
        namespace: str,
        vector: list[float],
        top_k: int,
        include_metadata: bool = True,
    ) -> list[Candidate]:
        data = await self._post(
            "/query",
            {
                "namespace": namespace,
                "vector": vector,
                "topK": top_k,
                "includeMetadata": include_metadata,
            },
        )
        matches = data.get("matches") or []
        logger.debug("Namespace %s returned %d matches", namespace, len(matches))
        return [
            _to_candidate(
                str(match.get("id")),
                float(match.get("score") or 0.0),
                match.get("metadata") or {},
            )
            for match in matches
        ]

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(path, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise UpstreamError(
                "pinecone", f"{exc.response.status_code} {exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError("pinecone", str(exc)) from exc
        return response.json()


def _to_candidate(record_id: str, score: float, metadata: dict[str, Any]) -> Candidate:
    return Candidate(
        id=record_id,
        score=score,
        metadata=ProductMetadata.from_raw(record_id, metadata),
    )


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
