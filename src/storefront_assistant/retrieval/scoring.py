"""Hybrid scoring, price filtering and relevance gating for product candidates."""

from __future__ import annotations

from dataclasses import dataclass

from storefront_assistant.config import RetrievalConfig
from storefront_assistant.retrieval.keywords import extract_keywords, is_generic_query, singular
from storefront_assistant.types import Candidate, SearchQuery, SortMode, parse_price


@dataclass(slots=True)
class RankOutcome:
    candidates: list[Candidate]
    dropped_count: int


class HybridScorer:
    """Combines vector similarity with rule-based keyword evidence.

    Ranking process:
    1. Keep only `PRODUCT` candidates.
    2. Add field-weighted keyword bonuses (title > tags/type > handle) and the
       exact-name / containment bonuses, recording `has_keyword_match`.
    3. Parse `real_price` and drop candidates outside the requested bounds.
    4. For price sorts on non-generic queries, drop candidates without keyword
       evidence; vector similarity alone does not justify inclusion.
    5. Order by price for price sorts, otherwise by descending hybrid score.
    """

    def __init__(self, config: RetrievalConfig | None = None) -> None:
        self.config = config or RetrievalConfig()

    def rank(self, candidates: list[Candidate], query: SearchQuery) -> RankOutcome:
        lowered_query = query.text.lower().strip()
        keywords = extract_keywords(query.text, self.config.stop_words)
        generic = is_generic_query(lowered_query, self.config.generic_query_terms)
        gated = query.sort.is_price_sort and not generic

        kept: list[Candidate] = []
        dropped = 0
        for candidate in candidates:
            if candidate.metadata.type != "PRODUCT":
                continue

            self.apply_bonus(candidate, lowered_query, keywords, query.boost_attribute)

            candidate.real_price = parse_price(candidate.metadata.price)
            if query.min_price is not None and candidate.real_price < query.min_price:
                continue
            if query.max_price is not None and candidate.real_price > query.max_price:
                continue

            if gated and not candidate.has_keyword_match:
                dropped += 1
                continue
            kept.append(candidate)

        return RankOutcome(candidates=self.order(kept, query.sort), dropped_count=dropped)

    def apply_bonus(
        self,
        candidate: Candidate,
        lowered_query: str,
        keywords: list[str],
        boost_attribute: str | None = None,
    ) -> None:
        meta = candidate.metadata
        title = meta.title.lower()
        handle = meta.handle.lower()
        product_type = meta.product_type.lower()
        tags = " ".join(meta.tags).lower()

        bonus = 0.0
        matched = False

        if lowered_query and (title == lowered_query or handle == lowered_query):
            bonus += self.config.exact_match_boost
            matched = True
        elif lowered_query and lowered_query in title:
            bonus += self.config.substring_boost
            matched = True

        for keyword in keywords:
            base = singular(keyword)
            if keyword in title or base in title:
                bonus += self.config.title_boost
                matched = True
            elif keyword in tags or base in tags or keyword in product_type:
                bonus += self.config.tag_boost
                matched = True
            elif keyword in handle:
                bonus += self.config.handle_boost
                matched = True

        if boost_attribute:
            attribute = boost_attribute.lower().strip()
            if attribute and (attribute in title or attribute in tags):
                bonus += self.config.attribute_boost

        candidate.score = (candidate.score or 0.0) + bonus
        candidate.has_keyword_match = matched

    @staticmethod
    def order(candidates: list[Candidate], sort: SortMode) -> list[Candidate]:
        if sort is SortMode.PRICE_ASC:
            return sorted(candidates, key=lambda item: item.real_price or 0.0)
        if sort is SortMode.PRICE_DESC:
            return sorted(candidates, key=lambda item: item.real_price or 0.0, reverse=True)
        return sorted(candidates, key=lambda item: item.score, reverse=True)
