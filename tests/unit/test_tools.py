import pytest

from storefront_assistant.agent.registry import ToolError, ToolRegistry
from storefront_assistant.agent.tools import (
    HUMAN_SUPPORT_SUBMITTED,
    RecommendProductsResult,
    ToolContext,
    collect_products,
    register_storefront_tools,
)
from storefront_assistant.store.base import FAQ, ChatConfig, Discount, Order, StoreProfile
from storefront_assistant.types import ProductMetadata

SESSION = "guest-abc"


@pytest.fixture
async def registry_for(retriever, catalog, sessions, tenant):
    await sessions.get_or_create(tenant, SESSION)

    def _build(
        chat_config: ChatConfig | None = None,
        *,
        search_context: str = "",
        refinement_only: bool = False,
    ) -> ToolRegistry:
        registry = ToolRegistry()
        register_storefront_tools(
            registry,
            ToolContext(
                tenant=tenant,
                session_id=SESSION,
                retriever=retriever,
                catalog=catalog,
                sessions=sessions,
                chat_config=chat_config or ChatConfig(),
                search_context=search_context,
                refinement_only=refinement_only,
            ),
        )
        return registry

    return _build


async def test_catalog_has_eight_tools(registry_for) -> None:
    assert registry_for().names() == [
        "recommend_products",
        "search_faq",
        "get_active_discounts",
        "track_order",
        "get_product_details",
        "get_store_policies",
        "get_store_profile",
        "request_human_support",
    ]


async def test_recommend_products_returns_ranked_summaries(registry_for) -> None:
    result = await registry_for().execute(
        "recommend_products", {"search_query": "sneakers", "sort": "price_asc"}
    )

    assert isinstance(result, RecommendProductsResult)
    assert [product.id for product in result.products] == ["p-sneakers"]
    assert result.products[0].price == 80.0
    assert result.dropped_for_relevance >= 1


async def test_refinement_follow_up_skips_search(registry_for) -> None:
    result = await registry_for(refinement_only=True).execute(
        "recommend_products", {"search_query": "it"}
    )

    assert result.products == []
    assert "already shown" in result.note


async def test_empty_query_uses_search_context(registry_for) -> None:
    result = await registry_for(search_context="Classic Tote Bag").execute(
        "recommend_products", {"search_query": ""}
    )

    assert result.products[0].id == "p-tote"


async def test_invalid_price_bound_is_rejected(registry_for) -> None:
    result = await registry_for().execute(
        "recommend_products", {"search_query": "bag", "max_price": -5}
    )

    assert isinstance(result, ToolError)
    assert result.error == "invalid_arguments"


async def test_faq_search_and_disabled_faq(registry_for, catalog, tenant) -> None:
    catalog.add_faq(tenant, FAQ(question="Do you ship abroad?", answer="Yes, worldwide."))

    enabled = await registry_for().execute("search_faq", {"query": "ship abroad"})
    disabled = await registry_for(ChatConfig(faq_enabled=False)).execute(
        "search_faq", {"query": "ship abroad"}
    )

    assert enabled.faqs[0].answer == "Yes, worldwide."
    assert disabled.faqs == []
    assert "not available" in disabled.note


async def test_discounts_only_lists_suggested(registry_for, catalog, tenant) -> None:
    catalog.add_discount(tenant, Discount(code="WELCOME10", title="10% off"))
    catalog.add_discount(tenant, Discount(code="STAFF50", title="Staff", is_suggested=False))

    result = await registry_for().execute("get_active_discounts", {})
    disabled = await registry_for(ChatConfig(discount_suggestions_enabled=False)).execute(
        "get_active_discounts", {}
    )

    assert [item.code for item in result.discounts] == ["WELCOME10"]
    assert disabled.discounts == []


async def test_track_order_accepts_hash_prefix(registry_for, catalog, tenant) -> None:
    catalog.add_order(tenant, Order(order_number="#1001", status="FULFILLED", total_price=99.5))

    found = await registry_for().execute("track_order", {"order_number": "1001"})
    missing = await registry_for().execute("track_order", {"order_number": "#2002"})

    assert found.found and found.status == "FULFILLED" and found.total == 99.5
    assert not missing.found


async def test_product_details_by_handle(registry_for, catalog, tenant) -> None:
    catalog.add_product(
        tenant,
        ProductMetadata(product_id="p-hat", title="Sun Hat", price="$1,020.00", handle="sun-hat"),
        options=["Size"],
        variants=[{"title": "M", "available": True}],
    )

    result = await registry_for().execute("get_product_details", {"handle": "sun-hat"})
    no_key = await registry_for().execute("get_product_details", {})

    assert result.found
    assert result.price == 1020.0
    assert result.options == ["Size"]
    assert not no_key.found
    assert "product ID or a handle" in no_key.note


async def test_store_policies_and_profile(registry_for, catalog, tenant) -> None:
    catalog.set_store_profile(
        tenant,
        StoreProfile(
            name="Demo Shop",
            location="Lisbon",
            policies={"shipping": "Ships in 2 days.", "refund": "30 day returns."},
        ),
    )

    everything = await registry_for().execute("get_store_policies", {})
    refund = await registry_for().execute("get_store_policies", {"policy": "refund"})
    profile = await registry_for().execute("get_store_profile", {})

    assert everything.policies == {"shipping": "Ships in 2 days.", "refund": "30 day returns."}
    assert refund.policies == {"refund": "30 day returns."}
    assert profile.name == "Demo Shop"
    assert profile.location == "Lisbon"


async def test_human_support_sets_session_flag(registry_for, sessions, tenant) -> None:
    result = await registry_for().execute("request_human_support", {"reason": "refund dispute"})

    assert result.submitted
    assert result.message == HUMAN_SUPPORT_SUBMITTED
    assert await sessions.is_human_support(tenant, SESSION)


async def test_collect_products_keeps_first_occurrence(registry_for) -> None:
    registry = registry_for()
    first = await registry.execute("recommend_products", {"search_query": "Classic Tote Bag"})
    second = await registry.execute("recommend_products", {"search_query": "bag"})
    failure = await registry.execute("track_order", {})

    products = collect_products([first, failure, second])

    ids = [product.id for product in products]
    assert len(ids) == len(set(ids))
    assert ids[0] == "p-tote"
