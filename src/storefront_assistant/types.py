"""Shared domain models."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4


class SortMode(str, Enum):
    RELEVANCE = "relevance"
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"
    NEWEST = "newest"
    BEST_SELLING = "best_selling"

    @property
    def is_price_sort(self) -> bool:
        return self in (SortMode.PRICE_ASC, SortMode.PRICE_DESC)


class ResponseType(str, Enum):
    AI = "AI"
    KEYWORD = "KEYWORD"
    MANUAL_HANDOFF = "MANUAL_HANDOFF"


class RequestType(str, Enum):
    AI_CHAT = "AI_CHAT"
    KEYWORD_RESPONSE = "KEYWORD_RESPONSE"
    MANUAL_HANDOFF = "MANUAL_HANDOFF"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ProductMetadata:
    """Product attributes carried by a vector match or a catalog row."""

    product_id: str
    title: str = ""
    price: str | float = 0.0
    handle: str = ""
    image: str = ""
    tags: list[str] = field(default_factory=list)
    product_type: str = ""
    description: str = ""
    type: str = "PRODUCT"

    @classmethod
    def from_raw(cls, product_id: str, raw: dict[str, Any]) -> "ProductMetadata":
        tags = raw.get("tags") or []
        if isinstance(tags, str):
            tags = [tag.strip() for tag in tags.split(",") if tag.strip()]
        price = raw.get("price_val", raw.get("price", 0.0))
        return cls(
            product_id=str(raw.get("product_id") or product_id),
            title=str(raw.get("title") or ""),
            price=price if isinstance(price, (int, float)) else str(price or "0"),
            handle=str(raw.get("handle") or ""),
            image=str(raw.get("image") or ""),
            tags=[str(tag) for tag in tags],
            product_type=str(raw.get("productType") or raw.get("product_type") or ""),
            description=str(raw.get("description") or ""),
            type=str(raw.get("type") or "PRODUCT").upper(),
        )


@dataclass(slots=True)
class Candidate:
    """A scored product candidate for one retrieval call."""

    id: str
    score: float
    metadata: ProductMetadata
    real_price: float | None = None
    has_keyword_match: bool = False


@dataclass(slots=True)
class SearchQuery:
    """Per-turn product query built from a `recommend_products` call."""

    text: str
    min_price: float | None = None
    max_price: float | None = None
    sort: SortMode = SortMode.RELEVANCE
    boost_attribute: str | None = None


@dataclass(slots=True)
class RankedResult:
    """Ordered retrieval output plus diagnostics."""

    items: list[Candidate] = field(default_factory=list)
    sort: SortMode = SortMode.RELEVANCE
    vector_matches: int = 0
    dropped_count: int = 0

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[Candidate]:
        return iter(self.items)


@dataclass(slots=True)
class ProductRef:
    """Compact product form shown to the user and kept in conversation memory."""

    id: str
    title: str = ""
    price: float = 0.0
    handle: str = ""
    image: str = ""
    score: float = 0.0

    @classmethod
    def from_candidate(cls, candidate: Candidate) -> "ProductRef":
        meta = candidate.metadata
        price = candidate.real_price
        if price is None:
            price = _to_float(meta.price)
        return cls(
            id=meta.product_id or candidate.id,
            title=meta.title,
            price=price,
            handle=meta.handle,
            image=meta.image,
            score=candidate.score,
        )

    def reference(self) -> str:
        return f"{self.title} (id={self.id}, ${self.price:.2f})"


@dataclass(slots=True)
class ConversationTurn:
    role: Role
    content: str
    recommended_products: list[ProductRef] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=lambda: uuid4().hex)


@dataclass(slots=True)
class Session:
    id: str
    tenant: str
    customer_id: str | None = None
    guest_id: str | None = None
    is_guest: bool = True
    is_human_support: bool = False


@dataclass(slots=True)
class Campaign:
    name: str
    trigger_keywords: list[str]
    response_message: str
    products: list[ProductRef] = field(default_factory=list)
    is_active: bool = True


@dataclass(slots=True)
class CreditCheckResult:
    can_process_request: bool
    remaining_credits: float
    reason: str | None = None
    should_handoff: bool = False


@dataclass(slots=True)
class UsageEvent:
    tenant: str
    request_type: RequestType
    credits_used: float
    was_successful: bool
    response_time_ms: float
    session_id: str | None = None
    customer_id: str | None = None
    tokens_used: int | None = None
    error_message: str | None = None
    user_message: str | None = None
    created_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
    status: str = "ok"


@dataclass(slots=True)
class TurnPerformance:
    response_time_ms: float
    products_found: int


@dataclass(slots=True)
class TurnOutcome:
    """Result of one chat turn as handed to the transport layer."""

    success: bool
    session_id: str
    response_type: ResponseType
    user_message: str
    assistant_message: str | None
    products: list[ProductRef] = field(default_factory=list)
    remaining_credits: float | None = None
    performance: TurnPerformance | None = None
    error: str | None = None
    handoff: bool = False
    trace_id: str | None = None


@dataclass(slots=True)
class StreamChunk:
    """One frame of a streamed turn: `text`, `reset` (drop text so far) or the final `metadata`."""

    type: str
    content: str = ""
    outcome: TurnOutcome | None = None


def _to_float(value: Any) -> float:
    cleaned = "".join(ch for ch in str(value or "0") if ch.isdigit() or ch == ".")
    try:
        return float(cleaned) if cleaned else 0.0
    except ValueError:
        return 0.0


def parse_price(value: Any) -> float:
    """Parse a catalog price such as ``"$1,299.00"`` into a float."""
    if isinstance(value, (int, float)):
        return float(value)
    return _to_float(value)
