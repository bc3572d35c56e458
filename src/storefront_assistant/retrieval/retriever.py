"""Sort-aware product retriever combining vector recall with relational routes."""

from __future__ import annotations

import asyncio

from storefront_assistant.config import RetrievalConfig
from storefront_assistant.errors import UpstreamError
from storefront_assistant.ingest.embedder import Embedder
from storefront_assistant.obs.logger import get_logger
from storefront_assistant.retrieval.keywords import is_generic_query
from storefront_assistant.retrieval.scoring import HybridScorer
from storefront_assistant.retrieval.vector_store import VectorIndex, tenant_namespace
from storefront_assistant.store.base import CatalogStore
from storefront_assistant.types import (
    Candidate,
    ProductMetadata,
    RankedResult,
    SearchQuery,
    SortMode,
    parse_price,
)

logger = get_logger(__name__)


class ProductRetriever:
    """Turns a `SearchQuery` into at most `final_k` ranked products.

    `newest` and `best_selling` never touch the vector index: similarity says
    nothing about recency or popularity, so those sorts read the catalog
    directly. Every other sort recalls a broad candidate set from the
    tenant's namespace and hands it to `HybridScorer`.
    """

    def __init__(
        self,
        embedder: Embedder,
        index: VectorIndex,
        catalog: CatalogStore,
        config: RetrievalConfig | None = None,
        scorer: HybridScorer | None = None,
    ) -> None:
        self.embedder = embedder
        self.index = index
        self.catalog = catalog
        self.config = config or RetrievalConfig()
        self.scorer = scorer or HybridScorer(self.config)

    async def retrieve(self, tenant: str, query: SearchQuery) -> RankedResult:
        if query.sort in (SortMode.NEWEST, SortMode.BEST_SELLING):
            try:
                return await self._relational(tenant, query)
            except (asyncio.TimeoutError, UpstreamError) as exc:
                logger.warning(
                    "Relational %s route failed for %s, using vector route: %s",
                    query.sort.value,
                    tenant,
                    exc,
                )
        return await self._vector(tenant, query)

    async def _relational(self, tenant: str, query: SearchQuery) -> RankedResult:
        limit = self.config.relational_limit
        rows: list[ProductMetadata] = []
        sort = query.sort

        if sort is SortMode.BEST_SELLING:
            rows = await asyncio.wait_for(
                self.catalog.top_selling(tenant, limit=limit),
                timeout=self.config.store_timeout_seconds,
            )
            if not rows:
                logger.info("No sales data for %s, falling back to newest", tenant)
                sort = SortMode.NEWEST

        if sort is SortMode.NEWEST:
            text = query.text.strip()
            title_filter = None
            if text and not is_generic_query(text, self.config.generic_query_terms):
                title_filter = text
            rows = await self._newest(tenant, query, title_filter, limit)
            if not rows and title_filter:
                rows = await self._newest(tenant, query, None, limit)

        items: list[Candidate] = []
        for position, meta in enumerate(rows):
            candidate = Candidate(
                id=meta.product_id,
                score=float(limit - position),
                metadata=meta,
                real_price=parse_price(meta.price),
            )
            if query.min_price is not None and candidate.real_price < query.min_price:
                continue
            if query.max_price is not None and candidate.real_price > query.max_price:
                continue
            items.append(candidate)

        return RankedResult(items=items[: self.config.final_k], sort=query.sort)

    async def _newest(
        self,
        tenant: str,
        query: SearchQuery,
        title_filter: str | None,
        limit: int,
    ) -> list[ProductMetadata]:
        return await asyncio.wait_for(
            self.catalog.list_products(
                tenant,
                title_contains=title_filter,
                min_price=query.min_price,
                max_price=query.max_price,
                limit=limit,
            ),
            timeout=self.config.store_timeout_seconds,
        )

    async def _vector(self, tenant: str, query: SearchQuery) -> RankedResult:
        empty = RankedResult(sort=query.sort)
        try:
            vectors = await asyncio.wait_for(
                self.embedder.embed([query.text]),
                timeout=self.config.embed_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Query embedding timed out for %s", tenant)
            return empty
        if not vectors or not vectors[0]:
            return empty

        top_k = (
            self.config.price_sort_top_k
            if query.sort.is_price_sort
            else self.config.relevance_top_k
        )
        try:
            candidates = await asyncio.wait_for(
                self.index.query(tenant_namespace(tenant), vectors[0], top_k, True),
                timeout=self.config.index_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Vector query timed out for %s", tenant)
            return empty
        except UpstreamError as exc:
            logger.warning("Vector query failed for %s: %s", tenant, exc)
            return empty

        outcome = self.scorer.rank(candidates, query)
        if outcome.dropped_count:
            logger.info(
                "Dropped %d candidates without keyword evidence for %r",
                outcome.dropped_count,
                query.text,
            )
        return RankedResult(
            items=outcome.candidates[: self.config.final_k],
            sort=query.sort,
            vector_matches=len(candidates),
            dropped_count=outcome.dropped_count,
        )
