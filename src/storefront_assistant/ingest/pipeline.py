"""Catalog indexing pipeline: product -> text -> embed -> upsert."""

from __future__ import annotations

from typing import Any

from storefront_assistant.ingest.embedder import Embedder
from storefront_assistant.obs.logger import get_logger
from storefront_assistant.retrieval.vector_store import VectorIndex, VectorRecord, tenant_namespace
from storefront_assistant.types import ProductMetadata, parse_price

logger = get_logger(__name__)


def product_text(product: ProductMetadata) -> str:
    """Text that represents a product in the embedding space."""
    parts = [
        product.title,
        product.product_type,
        " ".join(product.tags),
        product.description,
    ]
    return " ".join(part.strip() for part in parts if part and part.strip())


def product_metadata(product: ProductMetadata) -> dict[str, Any]:
    return {
        "product_id": product.product_id,
        "title": product.title,
        "price_val": parse_price(product.price),
        "handle": product.handle,
        "image": product.image,
        "tags": list(product.tags),
        "productType": product.product_type,
        "description": product.description[:1000],
        "type": "PRODUCT",
    }


class ProductIndexer:
    """Keeps a tenant's vector namespace in sync with its catalog.

    Indexing runs outside the chat path (sync jobs, webhooks, deploy
    warm-up); query-time retrieval only reads the namespace.
    """

    def __init__(self, embedder: Embedder, index: VectorIndex, batch_size: int = 64) -> None:
        self._embedder = embedder
        self._index = index
        self._batch_size = batch_size

    async def index_products(self, tenant: str, products: list[ProductMetadata]) -> int:
        """Embed and upsert products; returns the number of records written."""
        namespace = tenant_namespace(tenant)
        written = 0
        for start in range(0, len(products), self._batch_size):
            batch = products[start : start + self._batch_size]
            vectors = await self._embedder.embed([product_text(product) for product in batch])
            if len(vectors) != len(batch):
                logger.warning(
                    "Skipping batch of %d products for %s: embedding returned %d vectors",
                    len(batch),
                    tenant,
                    len(vectors),
                )
                continue
            records = [
                VectorRecord(id=product.product_id, values=vector, metadata=product_metadata(product))
                for product, vector in zip(batch, vectors, strict=True)
            ]
            await self._index.upsert(namespace, records)
            written += len(records)
        logger.info("Indexed %d/%d products for %s", written, len(products), tenant)
        return written
