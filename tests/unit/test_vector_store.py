import json

import httpx
import pytest

from storefront_assistant.errors import UpstreamError
from storefront_assistant.ingest.embedder import Embedder, HashingEmbedder
from storefront_assistant.ingest.pipeline import ProductIndexer, product_metadata, product_text
from storefront_assistant.retrieval.vector_store import (
    InMemoryVectorIndex,
    PineconeVectorIndex,
    VectorRecord,
    tenant_namespace,
)
from storefront_assistant.types import ProductMetadata


class _ShortEmbedder(Embedder):
    async def embed(self, texts: list[str]) -> list[list[float]]:
        return [[1.0]] * (len(texts) - 1)


def _pinecone(handler) -> PineconeVectorIndex:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="https://shop-index.svc.pinecone.io",
    )
    return PineconeVectorIndex(index_host="shop-index.svc.pinecone.io", api_key="k", client=client)


def test_tenant_namespace_replaces_dots() -> None:
    assert tenant_namespace("demo.myshopify.com") == "demo_myshopify_com"


async def test_in_memory_index_is_namespaced() -> None:
    index = InMemoryVectorIndex()
    await index.upsert("a_com", [VectorRecord(id="1", values=[1.0, 0.0], metadata={"title": "A"})])
    await index.upsert("b_com", [VectorRecord(id="2", values=[1.0, 0.0], metadata={"title": "B"})])

    matches = await index.query("a_com", [1.0, 0.0], top_k=5)

    assert [match.id for match in matches] == ["1"]
    assert matches[0].metadata.title == "A"
    assert await index.query("c_com", [1.0, 0.0], top_k=5) == []


async def test_pinecone_query_maps_matches_to_candidates() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "matches": [
                    {
                        "id": "p-1",
                        "score": 0.82,
                        "metadata": {"title": "Running Sneakers", "price_val": 80, "tags": "shoes, running"},
                    }
                ]
            },
        )

    index = _pinecone(handler)
    matches = await index.query("demo_myshopify_com", [0.1, 0.2], top_k=50)
    await index.aclose()

    assert seen["path"] == "/query"
    assert seen["body"]["namespace"] == "demo_myshopify_com"
    assert seen["body"]["topK"] == 50
    assert matches[0].id == "p-1"
    assert matches[0].metadata.price == 80
    assert matches[0].metadata.tags == ["shoes", "running"]
    assert matches[0].metadata.type == "PRODUCT"


async def test_pinecone_http_error_raises_upstream_error() -> None:
    index = _pinecone(lambda request: httpx.Response(503, text="unavailable"))

    with pytest.raises(UpstreamError) as excinfo:
        await index.query("ns", [0.1], top_k=1)
    await index.aclose()

    assert excinfo.value.provider == "pinecone"
    assert "503" in excinfo.value.detail


async def test_pinecone_upsert_sends_vectors() -> None:
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"upsertedCount": 1})

    index = _pinecone(handler)
    await index.upsert("ns", [VectorRecord(id="p-1", values=[0.5], metadata={"title": "X"})])
    await index.aclose()

    assert bodies == [
        {"namespace": "ns", "vectors": [{"id": "p-1", "values": [0.5], "metadata": {"title": "X"}}]}
    ]


def test_product_text_and_metadata() -> None:
    product = ProductMetadata(
        product_id="p-1",
        title="Trail Backpack",
        price="$1,120.00",
        tags=["bags", "outdoor"],
        product_type="Bags",
        description="Water resistant.",
    )

    assert product_text(product) == "Trail Backpack Bags bags outdoor Water resistant."
    metadata = product_metadata(product)
    assert metadata["price_val"] == 1120.0
    assert metadata["productType"] == "Bags"
    assert metadata["type"] == "PRODUCT"


async def test_indexer_writes_into_tenant_namespace() -> None:
    index = InMemoryVectorIndex()
    embedder = HashingEmbedder()
    products = [ProductMetadata(product_id=f"p-{n}", title=f"Item {n}") for n in range(5)]

    written = await ProductIndexer(embedder, index, batch_size=2).index_products(
        "demo.myshopify.com", products
    )

    [vector] = await embedder.embed(["Item 3"])
    matches = await index.query("demo_myshopify_com", vector, top_k=10)
    assert written == 5
    assert len(matches) == 5


async def test_indexer_skips_batches_with_missing_vectors() -> None:
    products = [ProductMetadata(product_id=f"p-{n}", title=f"Item {n}") for n in range(3)]

    written = await ProductIndexer(_ShortEmbedder(), InMemoryVectorIndex()).index_products(
        "demo.myshopify.com", products
    )

    assert written == 0
