from __future__ import annotations

import json
from collections.abc import AsyncIterator
from datetime import timedelta
from typing import Any

import pytest
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage

from storefront_assistant.agent.campaigns import CampaignMatcher
from storefront_assistant.agent.orchestrator import ChatOrchestrator
from storefront_assistant.billing.credits import CreditGate
from storefront_assistant.config import AgentConfig
from storefront_assistant.ingest.embedder import HashingEmbedder
from storefront_assistant.ingest.pipeline import ProductIndexer
from storefront_assistant.obs.tracing import TraceStore
from storefront_assistant.retrieval.retriever import ProductRetriever
from storefront_assistant.retrieval.vector_store import InMemoryVectorIndex
from storefront_assistant.store.memory import (
    InMemoryCatalogStore,
    InMemoryCreditStore,
    InMemorySessionStore,
)
from storefront_assistant.types import ProductMetadata, utc_now

TENANT = "demo.myshopify.com"

PRODUCTS = [
    ProductMetadata(
        product_id="p-sneakers",
        title="Running Sneakers",
        price="80.00",
        handle="running-sneakers",
        tags=["footwear", "running"],
        product_type="Shoes",
        description="Lightweight sneakers for daily runs.",
    ),
    ProductMetadata(
        product_id="p-wallet",
        title="Leather Wallet",
        price="40.00",
        handle="leather-wallet",
        tags=["accessories"],
        product_type="Accessories",
        description="Slim wallet in full grain leather.",
    ),
    ProductMetadata(
        product_id="p-tote",
        title="Classic Tote Bag",
        price="55.00",
        handle="classic-tote-bag",
        tags=["bags"],
        product_type="Bags",
        description="Roomy canvas tote for everyday errands.",
    ),
    ProductMetadata(
        product_id="p-backpack",
        title="Trail Backpack",
        price="120.00",
        handle="trail-backpack",
        tags=["bags", "outdoor"],
        product_type="Bags",
        description="Water resistant backpack with a classic tote bag style pocket.",
    ),
]


class ScriptedChatModel:
    """Chat model double that replays a fixed list of replies.

    Each reply is either a string (final text) or a list of
    `(tool_name, args)` tuples (tool calls). `bind_tools` records the tool
    names it was given; every invocation records the messages it saw.
    """

    def __init__(self, replies: list[Any], *, fail_with: Exception | None = None) -> None:
        self.replies = list(replies)
        self.fail_with = fail_with
        self.calls: list[list[BaseMessage]] = []
        self.bound_tools: list[str] = []

    def bind_tools(self, tools: list[Any], **kwargs: Any) -> "ScriptedChatModel":
        self.bound_tools = [tool.name for tool in tools]
        return self

    async def ainvoke(self, messages: list[BaseMessage], config: Any = None, **kwargs: Any) -> AIMessage:
        self.calls.append(list(messages))
        if self.fail_with is not None:
            raise self.fail_with
        if not self.replies:
            return AIMessage(content="")
        reply = self.replies.pop(0)
        if isinstance(reply, str):
            return AIMessage(content=reply)
        return AIMessage(
            content="",
            tool_calls=[
                {"name": name, "args": args, "id": f"call_{len(self.calls)}_{index}"}
                for index, (name, args) in enumerate(reply)
            ],
        )

    async def astream(
        self, messages: list[BaseMessage], config: Any = None, **kwargs: Any
    ) -> AsyncIterator[AIMessageChunk]:
        message = await self.ainvoke(messages)
        if message.tool_calls:
            yield AIMessageChunk(
                content="",
                tool_call_chunks=[
                    {
                        "name": call["name"],
                        "args": json.dumps(call["args"]),
                        "id": call["id"],
                        "index": index,
                    }
                    for index, call in enumerate(message.tool_calls)
                ],
            )
            return
        for word in str(message.content).split(" "):
            yield AIMessageChunk(content=word + " ")


@pytest.fixture
def catalog() -> InMemoryCatalogStore:
    store = InMemoryCatalogStore()
    now = utc_now()
    for offset, product in enumerate(PRODUCTS):
        store.add_product(TENANT, product, created_at=now - timedelta(days=offset))
    return store


@pytest.fixture
def vector_index() -> InMemoryVectorIndex:
    return InMemoryVectorIndex()


@pytest.fixture
async def retriever(catalog: InMemoryCatalogStore, vector_index: InMemoryVectorIndex) -> ProductRetriever:
    embedder = HashingEmbedder()
    await ProductIndexer(embedder, vector_index).index_products(TENANT, PRODUCTS)
    return ProductRetriever(embedder, vector_index, catalog)


@pytest.fixture
def sessions() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def credit_store() -> InMemoryCreditStore:
    return InMemoryCreditStore()


@pytest.fixture
def build_orchestrator(
    retriever: ProductRetriever,
    catalog: InMemoryCatalogStore,
    sessions: InMemorySessionStore,
    credit_store: InMemoryCreditStore,
):
    def _build(model: Any, config: AgentConfig | None = None) -> ChatOrchestrator:
        return ChatOrchestrator(
            model=model,
            retriever=retriever,
            catalog=catalog,
            sessions=sessions,
            credits=CreditGate(credit_store),
            campaigns=CampaignMatcher(catalog),
            trace_store=TraceStore(),
            config=config,
        )

    return _build


@pytest.fixture
def tenant() -> str:
    return TENANT


@pytest.fixture
def scripted_model():
    return ScriptedChatModel
