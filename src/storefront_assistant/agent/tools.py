"""The storefront tool catalog exposed to the model."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from storefront_assistant.agent.registry import ToolError, ToolRegistry, ToolSpec
from storefront_assistant.retrieval.retriever import ProductRetriever
from storefront_assistant.store.base import CatalogStore, ChatConfig, SessionStore
from storefront_assistant.types import ProductRef, SearchQuery, SortMode, parse_price

HUMAN_SUPPORT_SUBMITTED = (
    "I have submitted your request. A human agent will join the chat shortly. Please wait."
)
POLICY_KINDS = ("shipping", "refund", "privacy", "terms")


class ProductSummary(BaseModel):
    id: str
    title: str
    price: float
    handle: str = ""
    image: str = ""
    score: float = 0.0

    @classmethod
    def from_ref(cls, ref: ProductRef) -> "ProductSummary":
        return cls(
            id=ref.id,
            title=ref.title,
            price=ref.price,
            handle=ref.handle,
            image=ref.image,
            score=round(ref.score, 4),
        )

    def to_ref(self) -> ProductRef:
        return ProductRef(
            id=self.id,
            title=self.title,
            price=self.price,
            handle=self.handle,
            image=self.image,
            score=self.score,
        )


class RecommendProductsArgs(BaseModel):
    search_query: str = Field(
        default="",
        description="What the customer is looking for, e.g. 'red sneakers'. Use 'best selling' for generic requests.",
    )
    min_price: float | None = Field(default=None, ge=0)
    max_price: float | None = Field(default=None, ge=0)
    sort: SortMode = Field(
        default=SortMode.RELEVANCE,
        description="relevance, price_asc (cheap), price_desc (expensive), newest or best_selling.",
    )
    boost_attribute: str | None = Field(
        default=None,
        description="Optional attribute to favour, such as a colour or material.",
    )


class RecommendProductsResult(BaseModel):
    tool: Literal["recommend_products"] = "recommend_products"
    products: list[ProductSummary] = Field(default_factory=list)
    dropped_for_relevance: int = 0
    note: str | None = None


class SearchFaqArgs(BaseModel):
    query: str = Field(min_length=1, description="The customer's question.")


class FaqEntry(BaseModel):
    question: str
    answer: str


class SearchFaqResult(BaseModel):
    tool: Literal["search_faq"] = "search_faq"
    faqs: list[FaqEntry] = Field(default_factory=list)
    note: str | None = None


class GetActiveDiscountsArgs(BaseModel):
    pass


class DiscountEntry(BaseModel):
    code: str
    title: str


class GetActiveDiscountsResult(BaseModel):
    tool: Literal["get_active_discounts"] = "get_active_discounts"
    discounts: list[DiscountEntry] = Field(default_factory=list)
    note: str | None = None


class TrackOrderArgs(BaseModel):
    order_number: str = Field(min_length=1, description="The order number, e.g. #1001 or 1001.")


class TrackOrderResult(BaseModel):
    tool: Literal["track_order"] = "track_order"
    found: bool
    status: str | None = None
    total: float | None = None


class GetProductDetailsArgs(BaseModel):
    product_id: str | None = Field(default=None, description="The product id.")
    handle: str | None = Field(default=None, description="The product handle (URL slug).")


class GetProductDetailsResult(BaseModel):
    tool: Literal["get_product_details"] = "get_product_details"
    found: bool
    title: str | None = None
    description: str | None = None
    tags: list[str] = Field(default_factory=list)
    price: float | None = None
    options: list[str] = Field(default_factory=list)
    variants: list[dict[str, object]] = Field(default_factory=list)
    note: str | None = None


class GetStorePoliciesArgs(BaseModel):
    policy: Literal["shipping", "refund", "privacy", "terms"] | None = Field(
        default=None, description="A single policy to fetch; omit for all."
    )


class GetStorePoliciesResult(BaseModel):
    tool: Literal["get_store_policies"] = "get_store_policies"
    policies: dict[str, str] = Field(default_factory=dict)


class GetStoreProfileArgs(BaseModel):
    pass


class GetStoreProfileResult(BaseModel):
    tool: Literal["get_store_profile"] = "get_store_profile"
    name: str = ""
    domain: str = ""
    location: str = ""
    website: str = ""
    about: str = ""


class RequestHumanSupportArgs(BaseModel):
    reason: str = Field(default="", description="Why the customer needs a human agent.")


class RequestHumanSupportResult(BaseModel):
    tool: Literal["request_human_support"] = "request_human_support"
    submitted: bool
    message: str


ToolResult = Annotated[
    Union[
        RecommendProductsResult,
        SearchFaqResult,
        GetActiveDiscountsResult,
        TrackOrderResult,
        GetProductDetailsResult,
        GetStorePoliciesResult,
        GetStoreProfileResult,
        RequestHumanSupportResult,
    ],
    Field(discriminator="tool"),
]


@dataclass(slots=True)
class ToolContext:
    """Everything a tool may touch during one turn."""

    tenant: str
    session_id: str
    retriever: ProductRetriever
    catalog: CatalogStore
    sessions: SessionStore
    chat_config: ChatConfig
    search_context: str = ""
    refinement_only: bool = False


def register_storefront_tools(registry: ToolRegistry, ctx: ToolContext) -> None:
    """Register the fixed eight-tool catalog for one tenant/session turn.

    Tools disabled by the tenant's chat configuration stay registered and
    answer with a "not available" note, so the catalog the model sees is
    identical for every tenant.
    """

    async def _recommend(args: RecommendProductsArgs) -> RecommendProductsResult:
        if ctx.refinement_only:
            return RecommendProductsResult(
                note="The customer is referring to products already shown; answer from the conversation.",
            )
        text = args.search_query.strip() or ctx.search_context.strip()
        if not text and args.sort is SortMode.RELEVANCE:
            text = "best selling"
        result = await ctx.retriever.retrieve(
            ctx.tenant,
            SearchQuery(
                text=text,
                min_price=args.min_price,
                max_price=args.max_price,
                sort=args.sort,
                boost_attribute=args.boost_attribute,
            ),
        )
        products = [ProductSummary.from_ref(ProductRef.from_candidate(item)) for item in result]
        return RecommendProductsResult(
            products=products,
            dropped_for_relevance=result.dropped_count,
            note=None if products else "No matching products found.",
        )

    async def _search_faq(args: SearchFaqArgs) -> SearchFaqResult:
        if not ctx.chat_config.faq_enabled:
            return SearchFaqResult(note="FAQ search is not available for this store.")
        faqs = await ctx.catalog.search_faqs(ctx.tenant, args.query)
        if not faqs:
            return SearchFaqResult(note="No specific FAQ found.")
        return SearchFaqResult(
            faqs=[FaqEntry(question=faq.question, answer=faq.answer) for faq in faqs]
        )

    async def _discounts(args: GetActiveDiscountsArgs) -> GetActiveDiscountsResult:
        if not ctx.chat_config.discount_suggestions_enabled:
            return GetActiveDiscountsResult(note="Discount suggestions are not available for this store.")
        discounts = await ctx.catalog.list_discounts(ctx.tenant)
        if not discounts:
            return GetActiveDiscountsResult(note="No active discounts available to suggest.")
        return GetActiveDiscountsResult(
            discounts=[DiscountEntry(code=item.code, title=item.title) for item in discounts]
        )

    async def _track_order(args: TrackOrderArgs) -> TrackOrderResult:
        order = await ctx.catalog.find_order(ctx.tenant, args.order_number)
        if order is None:
            return TrackOrderResult(found=False)
        return TrackOrderResult(found=True, status=order.status, total=order.total_price)

    async def _product_details(args: GetProductDetailsArgs) -> GetProductDetailsResult:
        if not args.product_id and not args.handle:
            return GetProductDetailsResult(
                found=False, note="Please provide either a product ID or a handle."
            )
        details = await ctx.catalog.get_product(
            ctx.tenant, product_id=args.product_id, handle=args.handle
        )
        if details is None:
            return GetProductDetailsResult(found=False, note="Product not found.")
        meta = details.metadata
        return GetProductDetailsResult(
            found=True,
            title=meta.title,
            description=meta.description,
            tags=list(meta.tags),
            price=parse_price(meta.price),
            options=list(details.options),
            variants=list(details.variants),
        )

    async def _policies(args: GetStorePoliciesArgs) -> GetStorePoliciesResult:
        profile = await ctx.catalog.get_store_profile(ctx.tenant)
        policies = profile.policies if profile else {}
        kinds = (args.policy,) if args.policy else POLICY_KINDS
        return GetStorePoliciesResult(
            policies={
                kind: policies[kind] for kind in kinds if policies.get(kind)
            }
        )

    async def _profile(args: GetStoreProfileArgs) -> GetStoreProfileResult:
        profile = await ctx.catalog.get_store_profile(ctx.tenant)
        if profile is None:
            return GetStoreProfileResult()
        return GetStoreProfileResult(
            name=profile.name,
            domain=profile.domain,
            location=profile.location,
            website=profile.website,
            about=profile.about,
        )

    async def _human_support(args: RequestHumanSupportArgs) -> RequestHumanSupportResult:
        await ctx.sessions.set_human_support(ctx.tenant, ctx.session_id, True)
        return RequestHumanSupportResult(submitted=True, message=HUMAN_SUPPORT_SUBMITTED)

    specs = [
        ToolSpec(
            name="recommend_products",
            description=(
                "Search the store catalog. Call when the customer asks for a recommendation, "
                "a specific product, best sellers or new arrivals. Do not call for greetings."
            ),
            args_schema=RecommendProductsArgs,
            handler=_recommend,
            tags=["retrieval"],
        ),
        ToolSpec(
            name="search_faq",
            description="Search the store's FAQ for answers to general questions.",
            args_schema=SearchFaqArgs,
            handler=_search_faq,
            tags=["faq"],
        ),
        ToolSpec(
            name="get_active_discounts",
            description="List active discount codes that may be suggested to the customer.",
            args_schema=GetActiveDiscountsArgs,
            handler=_discounts,
            tags=["promotions"],
        ),
        ToolSpec(
            name="track_order",
            description="Get the status of an order using the order number.",
            args_schema=TrackOrderArgs,
            handler=_track_order,
            tags=["orders"],
        ),
        ToolSpec(
            name="get_product_details",
            description=(
                "Get full details of one product by id or handle. Use for 'more info', "
                "specifications or comparisons."
            ),
            args_schema=GetProductDetailsArgs,
            handler=_product_details,
            tags=["catalog"],
        ),
        ToolSpec(
            name="get_store_policies",
            description="Fetch the store's shipping, refund, privacy or terms policy.",
            args_schema=GetStorePoliciesArgs,
            handler=_policies,
            tags=["policy"],
        ),
        ToolSpec(
            name="get_store_profile",
            description="Fetch the store's name, location, website and about text.",
            args_schema=GetStoreProfileArgs,
            handler=_profile,
            tags=["profile"],
        ),
        ToolSpec(
            name="request_human_support",
            description=(
                "Hand the conversation to a human agent. Call when the customer asks for a "
                "person or the request cannot be solved with the other tools."
            ),
            args_schema=RequestHumanSupportArgs,
            handler=_human_support,
            tags=["handoff"],
        ),
    ]
    for spec in specs:
        registry.register(spec)


def collect_products(results: list[ToolResult | ToolError]) -> list[ProductRef]:
    """Products from `recommend_products` results, first occurrence wins."""
    seen: set[str] = set()
    merged: list[ProductRef] = []
    for result in results:
        if not isinstance(result, RecommendProductsResult):
            continue
        for product in result.products:
            if product.id in seen:
                continue
            seen.add(product.id)
            merged.append(product.to_ref())
    return merged
