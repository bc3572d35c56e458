"""FastAPI entrypoint for chat, streaming chat, handoff resume and trace endpoints."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from storefront_assistant.agent.campaigns import CampaignMatcher
from storefront_assistant.agent.fallback import DeterministicChatModel
from storefront_assistant.agent.orchestrator import SYSTEM_ERROR, ChatOrchestrator, TurnRequest
from storefront_assistant.billing.credits import CreditGate
from storefront_assistant.config import AgentConfig, RetrievalConfig, Settings, get_settings
from storefront_assistant.errors import InvalidTurnRequest
from storefront_assistant.ingest.embedder import Embedder, HashingEmbedder, LangChainEmbedder
from storefront_assistant.ingest.pipeline import ProductIndexer
from storefront_assistant.obs.logger import get_logger
from storefront_assistant.obs.tracing import TraceStore
from storefront_assistant.retrieval.retriever import ProductRetriever
from storefront_assistant.retrieval.vector_store import (
    InMemoryVectorIndex,
    PineconeVectorIndex,
    VectorIndex,
)
from storefront_assistant.store.base import CatalogStore, SessionStore
from storefront_assistant.store.memory import (
    InMemoryCatalogStore,
    InMemoryCreditStore,
    InMemorySessionStore,
)
from storefront_assistant.types import ProductMetadata, StreamChunk, TurnOutcome

logger = get_logger(__name__)


@dataclass(slots=True)
class Services:
    """Collaborator handles opened at startup and closed at shutdown."""

    orchestrator: ChatOrchestrator
    catalog: CatalogStore
    sessions: SessionStore
    index: VectorIndex
    indexer: ProductIndexer
    trace_store: TraceStore
    llm_configured: bool = False

    async def aclose(self) -> None:
        await self.orchestrator.aclose()
        await self.index.aclose()
        await self.sessions.aclose()


def _create_llm(settings: Settings) -> Any:
    if settings.OPENAI_API_KEY is None:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(
        model=settings.OPENAI_MODEL,
        temperature=settings.MODEL_TEMPERATURE,
        api_key=settings.OPENAI_API_KEY.get_secret_value(),
    )


def _create_embedder(settings: Settings, config: RetrievalConfig) -> Embedder:
    if settings.OPENAI_API_KEY is None:
        return HashingEmbedder()

    from langchain_openai import OpenAIEmbeddings

    return LangChainEmbedder(
        OpenAIEmbeddings(
            model=settings.EMBEDDING_MODEL,
            api_key=settings.OPENAI_API_KEY.get_secret_value(),
        ),
        timeout_seconds=config.embed_timeout_seconds,
    )


def _create_index(settings: Settings, config: RetrievalConfig) -> VectorIndex:
    if settings.PINECONE_API_KEY is None or not settings.PINECONE_INDEX_HOST:
        return InMemoryVectorIndex()
    return PineconeVectorIndex(
        index_host=settings.PINECONE_INDEX_HOST,
        api_key=settings.PINECONE_API_KEY.get_secret_value(),
        api_version=settings.PINECONE_API_VERSION,
        timeout_seconds=config.index_timeout_seconds,
    )


def build_services(settings: Settings | None = None) -> Services:
    settings = settings or get_settings()
    retrieval_config = RetrievalConfig()

    llm = _create_llm(settings)
    embedder = _create_embedder(settings, retrieval_config)
    index = _create_index(settings, retrieval_config)
    catalog = InMemoryCatalogStore()
    sessions = InMemorySessionStore()
    trace_store = TraceStore()

    orchestrator = ChatOrchestrator(
        model=llm if llm is not None else DeterministicChatModel(),
        retriever=ProductRetriever(embedder, index, catalog, retrieval_config),
        catalog=catalog,
        sessions=sessions,
        credits=CreditGate(InMemoryCreditStore()),
        campaigns=CampaignMatcher(catalog),
        trace_store=trace_store,
        config=AgentConfig(),
    )
    return Services(
        orchestrator=orchestrator,
        catalog=catalog,
        sessions=sessions,
        index=index,
        indexer=ProductIndexer(embedder, index),
        trace_store=trace_store,
        llm_configured=llm is not None,
    )


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    session_id: str | None = None
    customer_email: str | None = None


class IndexRequest(BaseModel):
    products: list[dict[str, Any]] = Field(min_length=1)


def outcome_payload(outcome: TurnOutcome) -> dict[str, Any]:
    return jsonable_encoder(asdict(outcome))


def chunk_payload(chunk: StreamChunk) -> dict[str, Any]:
    if chunk.outcome is not None:
        return {"type": chunk.type, "outcome": outcome_payload(chunk.outcome)}
    return {"type": chunk.type, "content": chunk.content}


def create_app(services: Services | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.services = services or build_services()
        logger.info("Storefront assistant started (llm_configured=%s)", app.state.services.llm_configured)
        try:
            yield
        finally:
            await app.state.services.aclose()

    app = FastAPI(title="Storefront Assistant", version="0.1.0", lifespan=lifespan)

    def _services(request: Request) -> Services:
        return request.app.state.services

    @app.get("/health")
    def health(request: Request) -> dict[str, Any]:
        state = _services(request)
        return {
            "status": "ok",
            "llm_configured": state.llm_configured,
            "planner_mode": "langchain" if state.llm_configured else "deterministic",
            "trace_count": len(state.trace_store.list_recent(limit=1000)),
        }

    @app.post("/chat/{tenant}")
    async def chat(tenant: str, body: ChatRequest, request: Request) -> Any:
        turn = TurnRequest(
            tenant=tenant,
            message=body.message,
            session_id=body.session_id,
            customer_email=body.customer_email,
        )
        try:
            outcome = await _services(request).orchestrator.handle_turn(turn)
        except InvalidTurnRequest as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        payload = outcome_payload(outcome)
        if outcome.error == SYSTEM_ERROR:
            return JSONResponse(status_code=500, content=payload)
        return payload

    @app.post("/chat/{tenant}/stream")
    async def chat_stream(tenant: str, body: ChatRequest, request: Request) -> StreamingResponse:
        turn = TurnRequest(
            tenant=tenant,
            message=body.message,
            session_id=body.session_id,
            customer_email=body.customer_email,
        )
        try:
            chunks = await _services(request).orchestrator.stream_turn(turn)
        except InvalidTurnRequest as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        async def events() -> AsyncIterator[str]:
            async for chunk in chunks:
                yield f"data: {json.dumps(chunk_payload(chunk))}\n\n"

        return StreamingResponse(
            events(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    @app.post("/sessions/{tenant}/{session_id}/resume")
    async def resume_session(tenant: str, session_id: str, request: Request) -> dict[str, Any]:
        try:
            await _services(request).sessions.set_human_support(tenant, session_id, False)
        except InvalidTurnRequest as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"session_id": session_id, "human_support": False}

    @app.post("/catalog/{tenant}/index")
    async def index_catalog(tenant: str, body: IndexRequest, request: Request) -> dict[str, Any]:
        products = [
            ProductMetadata.from_raw(str(raw.get("product_id") or raw.get("id") or ""), raw)
            for raw in body.products
        ]
        missing = [position for position, product in enumerate(products) if not product.product_id]
        if missing:
            raise HTTPException(status_code=400, detail=f"Products without id at {missing}")
        indexed = await _services(request).indexer.index_products(tenant, products)
        return {"indexed": indexed}

    @app.get("/traces")
    def traces(request: Request, limit: int = 20) -> dict[str, Any]:
        records = [asdict(record) for record in _services(request).trace_store.list_recent(limit=limit)]
        return {"items": records}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str, request: Request) -> dict[str, Any]:
        try:
            record = _services(request).trace_store.get(trace_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return asdict(record)

    @app.get("/metrics")
    def metrics(request: Request) -> dict[str, Any]:
        return _services(request).trace_store.summary()

    return app


app = create_app()
