"""Lexical helpers for query understanding."""

from __future__ import annotations

import re
from collections.abc import Iterable

_SPLIT_PATTERN = re.compile(r"[^a-z0-9]+")
_REFINEMENT_PRONOUNS = re.compile(r"\b(it|that|this|them|those|one|ones)\b", re.IGNORECASE)

_TYPO_FIXES = {
    "trak": "track",
    "oder": "order",
    "shiping": "shipping",
    "retun": "return",
    "pament": "payment",
    "produc": "product",
    "producs": "products",
    "recieve": "receive",
    "recieved": "received",
}
_TYPO_PATTERN = re.compile(r"\b(" + "|".join(_TYPO_FIXES) + r")\b", re.IGNORECASE)

_PRODUCT_PHRASES = (
    "show me", "looking for", "need a", "want to buy", "shopping for",
    "find", "search for", "do you have", "do you sell", "available",
    "tell me about", "tell me any", "which", "what products",
    "show products", "browse", "catalog", "inventory",
    "what do you have", "what can i buy", "what items", "see products",
    "product", "item", "merchandise",
)
_PRICE_WORDS = (
    "cheap", "cheapest", "expensive", "price", "cost", "budget",
    "under", "below", "above", "over", "affordable", "lowest", "highest",
)
_CATEGORY_WORDS = (
    "clothing", "clothes", "apparel", "fashion", "shirt", "dress", "shoes",
    "electronics", "phone", "laptop", "computer", "tablet",
    "furniture", "home", "kitchen", "bedroom", "sofa", "chair",
    "beauty", "skincare", "makeup", "cosmetics", "jewelry", "jewellery",
    "sport", "outdoor", "fitness", "gym", "sneakers", "boots", "jacket",
)


def extract_keywords(text: str, stop_words: Iterable[str]) -> list[str]:
    """Lowercase, tokenize and drop stop words and tokens of two chars or less."""
    stop = {word.lower() for word in stop_words}
    return [
        token
        for token in _SPLIT_PATTERN.split(text.lower())
        if len(token) > 2 and token not in stop
    ]


def normalize_typos(text: str) -> str:
    """Correct common whole-word misspellings of order and shipping vocabulary."""
    return _TYPO_PATTERN.sub(lambda match: _TYPO_FIXES[match.group(0).lower()], text)


def singular(keyword: str) -> str:
    return keyword[:-1] if keyword.endswith("s") else keyword


def is_generic_query(text: str, generic_terms: Iterable[str]) -> bool:
    """True for catalog-wide queries ("cheapest products") that relax gating."""
    lowered = text.lower().strip()
    return any(term.lower() in lowered for term in generic_terms)


def has_product_intent(text: str) -> bool:
    lowered = text.lower().strip()
    return any(
        phrase in lowered
        for phrase in (*_PRODUCT_PHRASES, *_PRICE_WORDS, *_CATEGORY_WORDS)
    )


def is_refinement_only(text: str, max_words: int = 5) -> bool:
    """Detect short pronoun follow-ups ("how much is it?") that need memory, not search."""
    return (
        bool(_REFINEMENT_PRONOUNS.search(text))
        and len(text.split()) < max_words
        and not has_product_intent(text)
    )
