"""Bounded model invocation with a single fallback path, plus an offline model."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Sequence
from typing import Any, Protocol
from uuid import uuid4

from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage, HumanMessage, ToolMessage
from pydantic import ValidationError

from storefront_assistant.agent.tools import RecommendProductsResult
from storefront_assistant.obs.logger import get_logger

logger = get_logger(__name__)

APOLOGY_MESSAGE = (
    "I'm sorry, I'm having trouble answering right now. Please try again in a moment."
)
ITERATION_LIMIT_MESSAGE = (
    "I'm sorry, I couldn't finish that request. Could you ask about one thing at a time?"
)

class TextSink(Protocol):
    """Receiver of answer text as the model streams it."""

    async def send(self, text: str) -> None: ...

    async def reset(self) -> None:
        """Discard all text sent since the last reset."""


def message_text(message: BaseMessage | None) -> str:
    """Flatten string or content-block message content into plain text."""
    if message is None:
        return ""
    content = message.content
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for item in content:
        if isinstance(item, dict):
            if item.get("type", "text") == "text" and "text" in item:
                parts.append(str(item["text"]))
        else:
            parts.append(str(item))
    return "".join(parts)


class ModelInvoker:
    """Invokes the tool-bound model under a timeout.

    If the primary path raises, times out, or returns neither text nor tool
    calls, the raw model is invoked once more without tools. `None` means
    both paths failed and the caller should answer with a fixed apology.
    Text already streamed by a path that then fails is withdrawn with
    `TextSink.reset` before anything else is sent.
    """

    def __init__(self, model: Any, tools: Sequence[Any], *, timeout_seconds: float = 30.0) -> None:
        self.model = model
        self.bound = model.bind_tools(list(tools)) if tools else model
        self.timeout_seconds = timeout_seconds

    async def invoke(
        self,
        messages: list[BaseMessage],
        on_text: TextSink | None = None,
    ) -> AIMessage | None:
        sent: list[str] = []
        message = await self._attempt(self.bound, messages, on_text, sent, "primary")
        if message is not None and (message_text(message).strip() or message.tool_calls):
            return message

        logger.info("Primary model path gave no usable content, trying fallback")
        await _withdraw(on_text, sent)
        fallback = await self._attempt(self.model, messages, on_text, sent, "fallback")
        text = message_text(fallback).strip()
        if not text:
            await _withdraw(on_text, sent)
            return None
        return AIMessage(content=text)

    async def _attempt(
        self,
        runnable: Any,
        messages: list[BaseMessage],
        on_text: TextSink | None,
        sent: list[str],
        label: str,
    ) -> AIMessage | None:
        try:
            if on_text is None:
                return await asyncio.wait_for(
                    runnable.ainvoke(messages), timeout=self.timeout_seconds
                )
            return await asyncio.wait_for(
                self._stream(runnable, messages, on_text, sent), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning("Model %s path timed out after %.1fs", label, self.timeout_seconds)
        except Exception as exc:
            logger.warning("Model %s path failed: %s", label, exc)
        return None

    @staticmethod
    async def _stream(
        runnable: Any,
        messages: list[BaseMessage],
        on_text: TextSink,
        sent: list[str],
    ) -> AIMessage | None:
        merged: AIMessageChunk | None = None
        async for chunk in runnable.astream(messages):
            merged = chunk if merged is None else merged + chunk
            text = message_text(chunk)
            if text:
                sent.append(text)
                await on_text.send(text)
        if merged is None:
            return None
        return AIMessage(content=merged.content, tool_calls=merged.tool_calls)


async def _withdraw(on_text: TextSink | None, sent: list[str]) -> None:
    if on_text is not None and sent:
        await on_text.reset()
    sent.clear()


class DeterministicChatModel:
    """Offline model used when no provider key is configured.

    Every customer message becomes one `recommend_products` call; the
    follow-up answer only reports how many products were found, which keeps
    replies grounded in tool output.
    """

    def bind_tools(self, tools: Sequence[Any], **kwargs: Any) -> "DeterministicChatModel":
        return self

    async def ainvoke(self, messages: list[BaseMessage], config: Any = None, **kwargs: Any) -> AIMessage:
        last = messages[-1] if messages else None
        if isinstance(last, HumanMessage):
            return AIMessage(
                content="",
                tool_calls=[
                    {
                        "name": "recommend_products",
                        "args": {"search_query": message_text(last)},
                        "id": f"call_{uuid4().hex[:12]}",
                    }
                ],
            )
        return AIMessage(content=_summarize_search(messages))

    async def astream(
        self, messages: list[BaseMessage], config: Any = None, **kwargs: Any
    ) -> AsyncIterator[AIMessageChunk]:
        message = await self.ainvoke(messages)
        yield AIMessageChunk(
            content=message.content,
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


def _summarize_search(messages: list[BaseMessage]) -> str:
    found = 0
    for message in reversed(messages):
        if isinstance(message, HumanMessage):
            break
        if not isinstance(message, ToolMessage):
            continue
        try:
            result = RecommendProductsResult.model_validate_json(message_text(message))
        except ValidationError:
            continue
        found += len(result.products)
    if found:
        return "I found these products for you:"
    return "I couldn't find a match for that. Could you tell me a bit more about what you're looking for?"
