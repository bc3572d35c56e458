"""Keyword-triggered campaign responses that bypass the model."""

from __future__ import annotations

import re
from functools import lru_cache

from storefront_assistant.config import CampaignConfig
from storefront_assistant.obs.logger import get_logger
from storefront_assistant.store.base import CatalogStore
from storefront_assistant.types import Campaign

logger = get_logger(__name__)


@lru_cache(maxsize=1024)
def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    return re.compile(rf"(?<!\w){re.escape(keyword)}(?!\w)", re.IGNORECASE)


def matches_keyword(text: str, keyword: str) -> bool:
    """Whole-word match: "popular" hits "popular items" but not "unpopular"."""
    keyword = keyword.strip().lower()
    if not keyword:
        return False
    return bool(_keyword_pattern(keyword).search(text))


class CampaignMatcher:
    def __init__(self, catalog: CatalogStore, config: CampaignConfig | None = None) -> None:
        self.catalog = catalog
        self.config = config or CampaignConfig()
        self._synonyms = {
            name.strip().lower(): list(values) for name, values in self.config.synonyms.items()
        }

    def keywords_for(self, campaign: Campaign) -> list[str]:
        return [
            *campaign.trigger_keywords,
            *self._synonyms.get(campaign.name.strip().lower(), []),
        ]

    def matches(self, campaign: Campaign, text: str) -> bool:
        normalized = text.lower().strip()
        return any(matches_keyword(normalized, keyword) for keyword in self.keywords_for(campaign))

    async def match(self, tenant: str, text: str) -> Campaign | None:
        """First active campaign whose triggers or synonyms appear in `text`."""
        if not text.strip():
            return None
        for campaign in await self.catalog.list_active_campaigns(tenant):
            if not campaign.is_active or not campaign.response_message:
                continue
            if self.matches(campaign, text):
                logger.info("Campaign %r matched for %s", campaign.name, tenant)
                return campaign
        return None
