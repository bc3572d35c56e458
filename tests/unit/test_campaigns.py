import pytest

from storefront_assistant.agent.campaigns import CampaignMatcher, matches_keyword
from storefront_assistant.config import CampaignConfig
from storefront_assistant.store.memory import InMemoryCatalogStore
from storefront_assistant.types import Campaign

TENANT = "demo.myshopify.com"


@pytest.fixture
def campaign_catalog() -> InMemoryCatalogStore:
    store = InMemoryCatalogStore()
    store.add_campaign(
        TENANT,
        Campaign(
            name="Best Sellers",
            trigger_keywords=["popular"],
            response_message="Here are our best sellers!",
        ),
    )
    return store


def test_keyword_match_respects_word_boundaries() -> None:
    assert matches_keyword("show me popular items", "popular")
    assert matches_keyword("POPULAR?", "popular")
    assert not matches_keyword("that one is unpopular", "popular")
    assert not matches_keyword("anything", "  ")


async def test_campaign_matches_trigger_keyword(campaign_catalog) -> None:
    matcher = CampaignMatcher(campaign_catalog)

    campaign = await matcher.match(TENANT, "Show me popular items")

    assert campaign is not None
    assert campaign.response_message == "Here are our best sellers!"


async def test_substring_inside_other_word_does_not_trigger(campaign_catalog) -> None:
    matcher = CampaignMatcher(campaign_catalog)

    assert await matcher.match(TENANT, "unpopular item") is None


async def test_campaign_name_synonyms_extend_triggers() -> None:
    store = InMemoryCatalogStore()
    store.add_campaign(
        TENANT,
        Campaign(name="New Arrivals", trigger_keywords=["sale"], response_message="Fresh stock!"),
    )
    matcher = CampaignMatcher(store)

    campaign = await matcher.match(TENANT, "any new arrivals?")

    assert campaign is not None
    assert campaign.name == "New Arrivals"


async def test_synonyms_are_configurable() -> None:
    store = InMemoryCatalogStore()
    store.add_campaign(
        TENANT,
        Campaign(name="Clearance", trigger_keywords=[], response_message="Last chance deals."),
    )
    matcher = CampaignMatcher(store, CampaignConfig(synonyms={"clearance": ["outlet"]}))

    assert await matcher.match(TENANT, "do you have an outlet section") is not None


async def test_inactive_and_silent_campaigns_are_skipped() -> None:
    store = InMemoryCatalogStore()
    store.add_campaign(
        TENANT,
        Campaign(
            name="Summer",
            trigger_keywords=["summer"],
            response_message="Summer picks!",
            is_active=False,
        ),
    )
    store.add_campaign(
        TENANT,
        Campaign(name="Winter", trigger_keywords=["summer"], response_message=""),
    )
    matcher = CampaignMatcher(store)

    assert await matcher.match(TENANT, "summer dresses") is None


async def test_first_matching_campaign_wins(campaign_catalog) -> None:
    campaign_catalog.add_campaign(
        TENANT,
        Campaign(name="Popular Too", trigger_keywords=["popular"], response_message="Second"),
    )
    matcher = CampaignMatcher(campaign_catalog)

    campaign = await matcher.match(TENANT, "popular")

    assert campaign.name == "Best Sellers"


async def test_campaigns_are_tenant_scoped(campaign_catalog) -> None:
    matcher = CampaignMatcher(campaign_catalog)

    assert await matcher.match("other.myshopify.com", "popular items") is None
