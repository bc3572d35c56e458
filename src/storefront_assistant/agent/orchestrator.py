"""Per-turn control flow: credits, handoff, campaigns, then the tool-calling loop."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any
from uuid import uuid4

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage
from pydantic import BaseModel

from storefront_assistant.agent.campaigns import CampaignMatcher
from storefront_assistant.agent.fallback import (
    APOLOGY_MESSAGE,
    ITERATION_LIMIT_MESSAGE,
    ModelInvoker,
    TextSink,
    message_text,
)
from storefront_assistant.agent.prompts import CHAT_PROMPT, build_system_prompt
from storefront_assistant.agent.registry import ToolRegistry
from storefront_assistant.agent.tools import (
    RecommendProductsResult,
    RequestHumanSupportResult,
    ToolContext,
    collect_products,
    register_storefront_tools,
)
from storefront_assistant.billing.credits import CreditGate
from storefront_assistant.config import AgentConfig
from storefront_assistant.errors import InvalidTurnRequest
from storefront_assistant.obs.logger import get_logger, preview
from storefront_assistant.obs.tracing import TraceStore, estimate_token_count
from storefront_assistant.retrieval.keywords import is_refinement_only, normalize_typos
from storefront_assistant.retrieval.retriever import ProductRetriever
from storefront_assistant.store.base import CatalogStore, ChatConfig, SessionStore
from storefront_assistant.types import (
    ConversationTurn,
    CreditCheckResult,
    ProductRef,
    RequestType,
    ResponseType,
    Role,
    Session,
    StreamChunk,
    ToolTrace,
    TurnOutcome,
    TurnPerformance,
    UsageEvent,
)

logger = get_logger(__name__)

HANDOFF_MESSAGE = "I'm currently unavailable. Please contact support."
AI_DISABLED_MESSAGE = "AI Support is currently disabled."
SYSTEM_ERROR = "SYSTEM_ERROR"
SYSTEM_ERROR_MESSAGE = "An unexpected error occurred. Please try again."


@dataclass(slots=True)
class TurnRequest:
    tenant: str
    message: str
    session_id: str | None = None
    customer_email: str | None = None


@dataclass(slots=True)
class _TurnState:
    tool_traces: list[ToolTrace] = field(default_factory=list)
    results: list[BaseModel] = field(default_factory=list)
    model_calls: int = 0
    degraded: str | None = None


class ChatOrchestrator:
    """Runs one chat turn end to end.

    Order of checks: guest migration, credit gate, human-handoff flag,
    campaign match, then the model. Every branch persists its turn pair in a
    single append and records exactly one usage event. Nothing raised inside
    a turn reaches the caller except `InvalidTurnRequest`, which is raised
    before any side effect.
    """

    def __init__(
        self,
        *,
        model: Any,
        retriever: ProductRetriever,
        catalog: CatalogStore,
        sessions: SessionStore,
        credits: CreditGate,
        campaigns: CampaignMatcher | None = None,
        trace_store: TraceStore | None = None,
        config: AgentConfig | None = None,
    ) -> None:
        self.model = model
        self.retriever = retriever
        self.catalog = catalog
        self.sessions = sessions
        self.credits = credits
        self.campaigns = campaigns or CampaignMatcher(catalog)
        self.trace_store = trace_store or TraceStore()
        self.config = config or AgentConfig()
        self._background: set[asyncio.Task[None]] = set()

    async def handle_turn(self, request: TurnRequest) -> TurnOutcome:
        started = perf_counter()
        message = self._validate(request)
        session = await self._open_session(request)
        if session is None:
            return self._system_error(request.session_id or "", message, started)
        return await self._run(session, message, None, started)

    async def stream_turn(self, request: TurnRequest) -> AsyncIterator[StreamChunk]:
        """Start a turn and return its chunk stream.

        Text chunks arrive as the model produces them, followed by one
        `metadata` chunk carrying the outcome. A `reset` chunk tells the
        consumer to discard the text received so far. The turn runs in its
        own task: if the consumer stops reading, emission stops but the turn
        still completes and persists.
        """
        started = perf_counter()
        message = self._validate(request)
        session = await self._open_session(request)
        if session is None:
            outcome = self._system_error(request.session_id or "", message, started)
            return _replay([StreamChunk(type="metadata", outcome=outcome)])

        queue: asyncio.Queue[StreamChunk | None] = asyncio.Queue()
        emit = _QueueSink(queue)

        async def produce() -> None:
            try:
                outcome = await self._run(session, message, emit, started)
                await queue.put(StreamChunk(type="metadata", outcome=outcome))
            finally:
                await queue.put(None)

        task = asyncio.create_task(produce())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return _drain(queue)

    async def aclose(self) -> None:
        """Wait for streamed turns whose consumers went away."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _validate(self, request: TurnRequest) -> str:
        if not request.tenant or not request.tenant.strip():
            raise InvalidTurnRequest("tenant is required")
        if not request.message or not request.message.strip():
            raise InvalidTurnRequest("message is required")
        return normalize_typos(request.message.strip())

    async def _open_session(self, request: TurnRequest) -> Session | None:
        tenant = request.tenant.strip()
        session_id = (request.session_id or "").strip() or f"guest-{uuid4().hex}"
        customer = (request.customer_email or "").strip() or None
        try:
            if customer and customer != session_id:
                if await self.sessions.is_guest_session(tenant, session_id):
                    moved = await self.sessions.migrate_guest(tenant, session_id, customer)
                    if moved:
                        logger.info("Migrated %d turns from %s to %s", moved, session_id, customer)
                else:
                    logger.info("No guest session %s to migrate into %s", session_id, customer)
                session_id = customer
            return await self.sessions.get_or_create(tenant, session_id, customer_id=customer)
        except InvalidTurnRequest:
            raise
        except Exception:
            logger.exception("Could not open session %s for %s", session_id, tenant)
            return None

    async def _run(
        self,
        session: Session,
        message: str,
        emit: TextSink | None,
        started: float,
    ) -> TurnOutcome:
        try:
            return await self._process(session, message, emit, started)
        except Exception as exc:
            logger.exception(
                "Turn failed for %s/%s on %r", session.tenant, session.id, preview(message)
            )
            await self._record(
                session,
                RequestType.AI_CHAT,
                0.0,
                False,
                message,
                started,
                error=type(exc).__name__,
            )
            return self._system_error(session.id, message, started)

    async def _process(
        self,
        session: Session,
        message: str,
        emit: TextSink | None,
        started: float,
    ) -> TurnOutcome:
        tenant = session.tenant
        credit = await self.credits.check(tenant)
        if not credit.can_process_request:
            logger.info("Credit gate closed for %s: %s", tenant, credit.reason)
            return await self._fixed_reply(
                session,
                message,
                emit,
                started,
                text=HANDOFF_MESSAGE,
                response_type=ResponseType.MANUAL_HANDOFF,
                request_type=RequestType.MANUAL_HANDOFF,
                credits_used=0.0,
                successful=False,
                remaining=credit.remaining_credits,
                error=credit.reason,
                handoff=credit.should_handoff,
            )

        if await self.sessions.is_human_support(tenant, session.id):
            await self.sessions.append_turns(
                tenant, session.id, [ConversationTurn(role=Role.USER, content=message)]
            )
            await self._record(session, RequestType.MANUAL_HANDOFF, 0.0, True, message, started)
            return TurnOutcome(
                success=True,
                session_id=session.id,
                response_type=ResponseType.MANUAL_HANDOFF,
                user_message=message,
                assistant_message=None,
                remaining_credits=credit.remaining_credits,
                performance=TurnPerformance(_elapsed_ms(started), 0),
                handoff=True,
            )

        chat_config = await self.catalog.get_chat_config(tenant)
        if chat_config.campaigns_enabled:
            campaign = await self.campaigns.match(tenant, message)
            if campaign is not None:
                cost = self.campaigns.config.flat_credit_cost
                return await self._fixed_reply(
                    session,
                    message,
                    emit,
                    started,
                    text=campaign.response_message,
                    products=list(campaign.products),
                    response_type=ResponseType.KEYWORD,
                    request_type=RequestType.KEYWORD_RESPONSE,
                    credits_used=cost,
                    successful=True,
                    remaining=credit.remaining_credits - cost,
                )

        if not chat_config.ai_enabled:
            return await self._fixed_reply(
                session,
                message,
                emit,
                started,
                text=AI_DISABLED_MESSAGE,
                response_type=ResponseType.AI,
                request_type=RequestType.AI_CHAT,
                credits_used=0.0,
                successful=True,
                remaining=credit.remaining_credits,
            )

        return await self._model_turn(session, message, emit, started, credit, chat_config)

    async def _model_turn(
        self,
        session: Session,
        message: str,
        emit: TextSink | None,
        started: float,
        credit: CreditCheckResult,
        chat_config: ChatConfig,
    ) -> TurnOutcome:
        tenant = session.tenant
        # History is read before this turn's user message is appended.
        history = await self.sessions.read_history(tenant, session.id, self.config.history_window)
        profile = await self.catalog.get_store_profile(tenant)
        system_prompt = build_system_prompt(profile, tenant)

        state = _TurnState()
        registry = ToolRegistry(timeout_seconds=self.config.tool_timeout_seconds)
        register_storefront_tools(
            registry,
            ToolContext(
                tenant=tenant,
                session_id=session.id,
                retriever=self.retriever,
                catalog=self.catalog,
                sessions=self.sessions,
                chat_config=chat_config,
                search_context=self._search_context(message, history),
                refinement_only=is_refinement_only(message, self.config.refinement_max_words),
            ),
        )
        registry.set_observer(state.tool_traces.append)
        invoker = ModelInvoker(
            self.model,
            registry.as_langchain_tools(),
            timeout_seconds=self.config.model_timeout_seconds,
        )

        messages: list[BaseMessage] = CHAT_PROMPT.format_messages(
            system_prompt=system_prompt,
            history=_history_messages(history),
            input=message,
        )
        answer = await self._tool_loop(invoker, registry, messages, emit, state)
        if state.degraded and emit is not None:
            await emit.send(answer)

        products = collect_products(state.results)
        handoff = any(
            isinstance(result, RequestHumanSupportResult) and result.submitted
            for result in state.results
        )
        await self._persist(session, message, answer, products)

        input_tokens = estimate_token_count(
            " ".join([system_prompt, *(turn.content for turn in history), message])
        )
        output_tokens = estimate_token_count(answer)
        credits_used = self.credits.ai_credits(input_tokens + output_tokens)
        successful = state.degraded is None
        await self._record(
            session,
            RequestType.AI_CHAT,
            credits_used,
            successful,
            message,
            started,
            tokens=input_tokens + output_tokens,
            error=state.degraded,
        )

        elapsed = _elapsed_ms(started)
        trace = self.trace_store.create_record(
            tenant=tenant,
            session_id=session.id,
            user_message=message,
            answer=answer,
            response_type=ResponseType.AI.value,
            product_ids=[product.id for product in products],
            tool_traces=state.tool_traces,
            dropped_for_relevance=sum(
                result.dropped_for_relevance
                for result in state.results
                if isinstance(result, RecommendProductsResult)
            ),
            model_calls=state.model_calls,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            credits_used=credits_used if successful else 0.0,
            latency_ms=elapsed,
            success=successful,
        )
        return TurnOutcome(
            success=True,
            session_id=session.id,
            response_type=ResponseType.AI,
            user_message=message,
            assistant_message=answer,
            products=products,
            remaining_credits=credit.remaining_credits - (credits_used if successful else 0.0),
            performance=TurnPerformance(elapsed, len(products)),
            error=state.degraded,
            handoff=handoff,
            trace_id=trace.trace_id,
        )

    async def _tool_loop(
        self,
        invoker: ModelInvoker,
        registry: ToolRegistry,
        messages: list[BaseMessage],
        emit: TextSink | None,
        state: _TurnState,
    ) -> str:
        max_rounds = self.config.max_tool_iterations
        for round_index in range(max_rounds + 1):
            reply = await invoker.invoke(messages, on_text=emit)
            state.model_calls += 1
            if reply is None:
                state.degraded = "MODEL_UNAVAILABLE"
                return APOLOGY_MESSAGE
            if not reply.tool_calls:
                return message_text(reply).strip()
            if emit is not None and message_text(reply):
                # Preamble streamed alongside tool calls is not part of the answer.
                await emit.reset()
            if round_index == max_rounds:
                logger.warning("Tool loop hit %d rounds without a final answer", max_rounds)
                state.degraded = "TOOL_LOOP_LIMIT"
                return ITERATION_LIMIT_MESSAGE

            messages.append(reply)
            calls = reply.tool_calls
            results = await asyncio.gather(
                *(registry.execute(call["name"], call.get("args") or {}) for call in calls)
            )
            for call, result in zip(calls, results, strict=True):
                state.results.append(result)
                messages.append(
                    ToolMessage(
                        content=result.model_dump_json(exclude_none=True),
                        tool_call_id=call.get("id") or "",
                        name=call["name"],
                    )
                )
        return ITERATION_LIMIT_MESSAGE

    async def _fixed_reply(
        self,
        session: Session,
        message: str,
        emit: TextSink | None,
        started: float,
        *,
        text: str,
        response_type: ResponseType,
        request_type: RequestType,
        credits_used: float,
        successful: bool,
        remaining: float,
        products: list[ProductRef] | None = None,
        error: str | None = None,
        handoff: bool = False,
    ) -> TurnOutcome:
        products = products or []
        await self._persist(session, message, text, products)
        if emit is not None:
            await emit.send(text)
        await self._record(session, request_type, credits_used, successful, message, started, error=error)
        return TurnOutcome(
            success=True,
            session_id=session.id,
            response_type=response_type,
            user_message=message,
            assistant_message=text,
            products=products,
            remaining_credits=remaining,
            performance=TurnPerformance(_elapsed_ms(started), len(products)),
            handoff=handoff,
        )

    async def _persist(
        self, session: Session, message: str, answer: str, products: list[ProductRef]
    ) -> None:
        await self.sessions.append_turns(
            session.tenant,
            session.id,
            [
                ConversationTurn(role=Role.USER, content=message),
                ConversationTurn(
                    role=Role.ASSISTANT, content=answer, recommended_products=list(products)
                ),
            ],
        )

    async def _record(
        self,
        session: Session,
        request_type: RequestType,
        credits_used: float,
        successful: bool,
        message: str,
        started: float,
        *,
        tokens: int | None = None,
        error: str | None = None,
    ) -> None:
        await self.credits.record_usage(
            UsageEvent(
                tenant=session.tenant,
                request_type=request_type,
                credits_used=credits_used,
                was_successful=successful,
                response_time_ms=_elapsed_ms(started),
                session_id=session.id,
                customer_id=session.customer_id,
                tokens_used=tokens,
                error_message=error,
                user_message=message,
            )
        )

    def _search_context(self, message: str, history: list[ConversationTurn]) -> str:
        if len(message) >= self.config.short_message_chars:
            return message
        previous = next(
            (turn.content for turn in reversed(history) if turn.role is Role.USER), ""
        )
        return f"{message} {previous}".strip()

    @staticmethod
    def _system_error(session_id: str, message: str, started: float) -> TurnOutcome:
        return TurnOutcome(
            success=False,
            session_id=session_id,
            response_type=ResponseType.AI,
            user_message=message,
            assistant_message=SYSTEM_ERROR_MESSAGE,
            performance=TurnPerformance(_elapsed_ms(started), 0),
            error=SYSTEM_ERROR,
        )


class _QueueSink:
    def __init__(self, queue: asyncio.Queue[StreamChunk | None]) -> None:
        self.queue = queue

    async def send(self, text: str) -> None:
        await self.queue.put(StreamChunk(type="text", content=text))

    async def reset(self) -> None:
        await self.queue.put(StreamChunk(type="reset"))


def _history_messages(history: list[ConversationTurn]) -> list[BaseMessage]:
    messages: list[BaseMessage] = []
    for turn in history:
        if turn.role is Role.USER:
            messages.append(HumanMessage(content=turn.content))
        elif turn.role is Role.ASSISTANT:
            content = turn.content
            if turn.recommended_products:
                refs = "; ".join(product.reference() for product in turn.recommended_products)
                content = f"{content}\n[Products shown: {refs}]"
            messages.append(AIMessage(content=content))
    return messages


def _elapsed_ms(started: float) -> float:
    return (perf_counter() - started) * 1000.0


async def _drain(queue: asyncio.Queue[StreamChunk | None]) -> AsyncIterator[StreamChunk]:
    while True:
        chunk = await queue.get()
        if chunk is None:
            return
        yield chunk


async def _replay(chunks: list[StreamChunk]) -> AsyncIterator[StreamChunk]:
    for chunk in chunks:
        yield chunk
