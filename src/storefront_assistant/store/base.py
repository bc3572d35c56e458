"""Collaborator contracts for catalog, session and credit persistence."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from storefront_assistant.types import (
    Campaign,
    ConversationTurn,
    ProductMetadata,
    Session,
    UsageEvent,
    utc_now,
)


@dataclass(slots=True)
class StoreProfile:
    name: str = ""
    domain: str = ""
    location: str = ""
    website: str = ""
    about: str = ""
    policies: dict[str, str] = field(default_factory=dict)
    assistant_name: str = ""
    tone: str = "Helpful, Professional"
    primary_language: str = "English"
    custom_instructions: str = ""


@dataclass(slots=True)
class ChatConfig:
    faq_enabled: bool = True
    campaigns_enabled: bool = True
    discount_suggestions_enabled: bool = True
    ai_enabled: bool = True


@dataclass(slots=True)
class FAQ:
    question: str
    answer: str
    is_active: bool = True


@dataclass(slots=True)
class Discount:
    code: str
    title: str
    is_active: bool = True
    is_suggested: bool = True


@dataclass(slots=True)
class Order:
    order_number: str
    status: str
    total_price: float
    customer_email: str | None = None


@dataclass(slots=True)
class ProductDetails:
    """Full catalog row returned by `get_product_details`."""

    metadata: ProductMetadata
    options: list[str] = field(default_factory=list)
    variants: list[dict[str, object]] = field(default_factory=list)


@dataclass(slots=True)
class CreditAccount:
    tenant: str
    plan_name: str
    monthly_credits: float
    remaining_credits: float
    period_start: datetime = field(default_factory=utc_now)
    period_end: datetime | None = None
    ai_enabled: bool = True
    total_requests: int = 0


class CatalogStore(Protocol):
    """Read-only relational lookups scoped to one tenant."""

    async def list_products(
        self,
        tenant: str,
        *,
        title_contains: str | None = None,
        min_price: float | None = None,
        max_price: float | None = None,
        limit: int = 10,
    ) -> list[ProductMetadata]:
        """Active products, newest first."""

    async def top_selling(self, tenant: str, *, limit: int = 10) -> list[ProductMetadata]:
        """Products ordered by aggregated order quantity; empty without sales."""

    async def get_product(
        self,
        tenant: str,
        *,
        product_id: str | None = None,
        handle: str | None = None,
    ) -> ProductDetails | None: ...

    async def search_faqs(self, tenant: str, query: str, *, limit: int = 3) -> list[FAQ]: ...

    async def list_discounts(self, tenant: str) -> list[Discount]: ...

    async def find_order(self, tenant: str, order_number: str) -> Order | None: ...

    async def list_active_campaigns(self, tenant: str) -> list[Campaign]: ...

    async def get_store_profile(self, tenant: str) -> StoreProfile | None: ...

    async def get_chat_config(self, tenant: str) -> ChatConfig: ...


class SessionStore(Protocol):
    """Session identity plus the per-session message log."""

    async def get_or_create(
        self,
        tenant: str,
        session_id: str,
        *,
        customer_id: str | None = None,
    ) -> Session:
        """Load or create a session; raises `SessionTenantMismatch` across tenants."""

    async def read_history(self, tenant: str, session_id: str, limit: int) -> list[ConversationTurn]:
        """Last `limit` turns, oldest first."""

    async def append_turns(
        self, tenant: str, session_id: str, turns: list[ConversationTurn]
    ) -> None:
        """Append all turns or none."""

    async def set_human_support(self, tenant: str, session_id: str, active: bool) -> None: ...

    async def is_human_support(self, tenant: str, session_id: str) -> bool: ...

    async def is_guest_session(self, tenant: str, session_id: str) -> bool:
        """True when `session_id` names an anonymous session that may be migrated."""

    async def migrate_guest(self, tenant: str, guest_id: str, customer_id: str) -> int:
        """Merge guest history into the customer session and drop the guest copy.

        Returns the number of turns newly merged; repeated calls return 0.
        A source session that belongs to a customer is never merged.
        """

    async def aclose(self) -> None: ...


class CreditStore(Protocol):
    async def get_account(self, tenant: str) -> CreditAccount | None: ...

    async def save_account(self, account: CreditAccount) -> None: ...

    async def append_usage(self, event: UsageEvent) -> None: ...

    async def debit(self, tenant: str, credits: float) -> None:
        """Decrement remaining credits and bump the request counter."""
