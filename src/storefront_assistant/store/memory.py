"""In-memory collaborator implementations for tests and local development."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime

from storefront_assistant.config import RetrievalConfig
from storefront_assistant.errors import SessionTenantMismatch
from storefront_assistant.retrieval.keywords import extract_keywords
from storefront_assistant.store.base import (
    FAQ,
    ChatConfig,
    CreditAccount,
    Discount,
    Order,
    ProductDetails,
    StoreProfile,
)
from storefront_assistant.types import (
    Campaign,
    ConversationTurn,
    ProductMetadata,
    Session,
    UsageEvent,
    parse_price,
    utc_now,
)


@dataclass(slots=True)
class _CatalogRow:
    details: ProductDetails
    created_at: datetime
    is_active: bool = True


class InMemoryCatalogStore:
    """Tenant-partitioned catalog with the same query semantics as the relational store."""

    def __init__(self) -> None:
        self._products: dict[str, dict[str, _CatalogRow]] = defaultdict(dict)
        self._sales: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._faqs: dict[str, list[FAQ]] = defaultdict(list)
        self._discounts: dict[str, list[Discount]] = defaultdict(list)
        self._orders: dict[str, list[Order]] = defaultdict(list)
        self._campaigns: dict[str, list[Campaign]] = defaultdict(list)
        self._profiles: dict[str, StoreProfile] = {}
        self._chat_configs: dict[str, ChatConfig] = {}

    def add_product(
        self,
        tenant: str,
        metadata: ProductMetadata,
        *,
        created_at: datetime | None = None,
        options: list[str] | None = None,
        variants: list[dict[str, object]] | None = None,
    ) -> None:
        self._products[tenant][metadata.product_id] = _CatalogRow(
            details=ProductDetails(
                metadata=metadata,
                options=options or [],
                variants=variants or [],
            ),
            created_at=created_at or utc_now(),
        )

    def record_sale(self, tenant: str, product_id: str, quantity: int = 1) -> None:
        self._sales[tenant][product_id] += quantity

    def add_faq(self, tenant: str, faq: FAQ) -> None:
        self._faqs[tenant].append(faq)

    def add_discount(self, tenant: str, discount: Discount) -> None:
        self._discounts[tenant].append(discount)

    def add_order(self, tenant: str, order: Order) -> None:
        self._orders[tenant].append(order)

    def add_campaign(self, tenant: str, campaign: Campaign) -> None:
        self._campaigns[tenant].append(campaign)

    def set_store_profile(self, tenant: str, profile: StoreProfile) -> None:
        self._profiles[tenant] = profile

    def set_chat_config(self, tenant: str, config: ChatConfig) -> None:
        self._chat_configs[tenant] = config

    def products(self, tenant: str) -> list[ProductMetadata]:
        return [row.details.metadata for row in self._products[tenant].values() if row.is_active]

    async def list_products(
        self,
        tenant: str,
        *,
        title_contains: str | None = None,
        min_price: float | None = None,
        max_price: float | None = None,
        limit: int = 10,
    ) -> list[ProductMetadata]:
        rows = sorted(
            (row for row in self._products[tenant].values() if row.is_active),
            key=lambda row: row.created_at,
            reverse=True,
        )
        needle = title_contains.lower() if title_contains else None
        matched: list[ProductMetadata] = []
        for row in rows:
            meta = row.details.metadata
            price = parse_price(meta.price)
            if needle and needle not in meta.title.lower():
                continue
            if min_price is not None and price < min_price:
                continue
            if max_price is not None and price > max_price:
                continue
            matched.append(meta)
        return matched[:limit]

    async def top_selling(self, tenant: str, *, limit: int = 10) -> list[ProductMetadata]:
        ranked = sorted(self._sales[tenant].items(), key=lambda item: item[1], reverse=True)
        catalog = self._products[tenant]
        return [
            catalog[product_id].details.metadata
            for product_id, quantity in ranked
            if quantity > 0 and product_id in catalog and catalog[product_id].is_active
        ][:limit]

    async def get_product(
        self,
        tenant: str,
        *,
        product_id: str | None = None,
        handle: str | None = None,
    ) -> ProductDetails | None:
        for row in self._products[tenant].values():
            meta = row.details.metadata
            if product_id and meta.product_id == product_id:
                return row.details
            if handle and meta.handle == handle:
                return row.details
        return None

    async def search_faqs(self, tenant: str, query: str, *, limit: int = 3) -> list[FAQ]:
        lowered = query.lower().strip()
        keywords = extract_keywords(query, RetrievalConfig().stop_words)
        scored: list[tuple[int, FAQ]] = []
        for faq in self._faqs[tenant]:
            if not faq.is_active:
                continue
            haystack = f"{faq.question} {faq.answer}".lower()
            if lowered and lowered in haystack:
                scored.append((len(keywords) + 1, faq))
                continue
            hits = sum(1 for keyword in keywords if keyword in haystack)
            if hits:
                scored.append((hits, faq))
        scored.sort(key=lambda item: item[0], reverse=True)
        return [faq for _, faq in scored[:limit]]

    async def list_discounts(self, tenant: str) -> list[Discount]:
        return [
            discount
            for discount in self._discounts[tenant]
            if discount.is_active and discount.is_suggested
        ]

    async def find_order(self, tenant: str, order_number: str) -> Order | None:
        needle = order_number.strip().lstrip("#")
        if not needle:
            return None
        for order in self._orders[tenant]:
            if needle in order.order_number:
                return order
        return None

    async def list_active_campaigns(self, tenant: str) -> list[Campaign]:
        return [campaign for campaign in self._campaigns[tenant] if campaign.is_active]

    async def get_store_profile(self, tenant: str) -> StoreProfile | None:
        return self._profiles.get(tenant)

    async def get_chat_config(self, tenant: str) -> ChatConfig:
        return self._chat_configs.get(tenant) or ChatConfig()


class InMemorySessionStore:
    """Session registry plus a per-session message log keyed by turn id."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._logs: dict[str, dict[str, ConversationTurn]] = {}

    async def get_or_create(
        self,
        tenant: str,
        session_id: str,
        *,
        customer_id: str | None = None,
    ) -> Session:
        session = self._sessions.get(session_id)
        if session is not None:
            if session.tenant != tenant:
                raise SessionTenantMismatch(session_id, tenant)
            return session

        session = Session(
            id=session_id,
            tenant=tenant,
            customer_id=customer_id,
            guest_id=None if customer_id else session_id,
            is_guest=customer_id is None,
        )
        self._sessions[session_id] = session
        self._logs.setdefault(session_id, {})
        return session

    def exists(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def read_history(self, tenant: str, session_id: str, limit: int) -> list[ConversationTurn]:
        self._owned(tenant, session_id)
        turns = sorted(self._logs.get(session_id, {}).values(), key=lambda turn: turn.timestamp)
        return turns[-limit:] if limit > 0 else []

    async def append_turns(
        self, tenant: str, session_id: str, turns: list[ConversationTurn]
    ) -> None:
        self._owned(tenant, session_id)
        log = dict(self._logs.get(session_id, {}))
        for turn in turns:
            log[turn.id] = turn
        self._logs[session_id] = log

    async def set_human_support(self, tenant: str, session_id: str, active: bool) -> None:
        session = self._owned(tenant, session_id)
        if session is not None:
            session.is_human_support = active

    async def is_human_support(self, tenant: str, session_id: str) -> bool:
        session = self._owned(tenant, session_id)
        return bool(session and session.is_human_support)

    async def is_guest_session(self, tenant: str, session_id: str) -> bool:
        session = self._owned(tenant, session_id)
        if session is None:
            return session_id in self._logs
        return session.is_guest and session.customer_id is None

    async def migrate_guest(self, tenant: str, guest_id: str, customer_id: str) -> int:
        if guest_id == customer_id:
            return 0
        guest = self._owned(tenant, guest_id)
        guest_log = self._logs.get(guest_id)
        if guest is None and guest_log is None:
            return 0
        if guest is not None and (not guest.is_guest or guest.customer_id is not None):
            return 0

        customer = await self.get_or_create(tenant, customer_id, customer_id=customer_id)
        merged = dict(self._logs.get(customer_id, {}))
        added = 0
        for turn_id, turn in (guest_log or {}).items():
            if turn_id not in merged:
                merged[turn_id] = turn
                added += 1
        self._logs[customer_id] = merged
        if guest is not None and guest.is_human_support:
            customer.is_human_support = True

        self._logs.pop(guest_id, None)
        self._sessions.pop(guest_id, None)
        return added

    async def aclose(self) -> None:
        return None

    def _owned(self, tenant: str, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        if session is not None and session.tenant != tenant:
            raise SessionTenantMismatch(session_id, tenant)
        return session


class InMemoryCreditStore:
    def __init__(self) -> None:
        self._accounts: dict[str, CreditAccount] = {}
        self.usage: list[UsageEvent] = []

    async def get_account(self, tenant: str) -> CreditAccount | None:
        return self._accounts.get(tenant)

    async def save_account(self, account: CreditAccount) -> None:
        self._accounts[account.tenant] = account

    async def append_usage(self, event: UsageEvent) -> None:
        self.usage.append(event)

    async def debit(self, tenant: str, credits: float) -> None:
        account = self._accounts.get(tenant)
        if account is None:
            return
        account.remaining_credits -= credits
        account.total_requests += 1
