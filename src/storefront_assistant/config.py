"""Configuration models for the storefront assistant."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_STOP_WORDS = [
    "show", "me", "the", "a", "an", "that", "this", "it", "in", "on", "for",
    "do", "you", "have", "please", "i", "need", "want", "looking", "recommend",
]

_DEFAULT_GENERIC_TERMS = [
    "products", "items", "shop", "collection", "best selling", "recommended",
]


class RetrievalConfig(BaseModel):
    """Configures hybrid product retrieval and relevance gating."""

    relevance_top_k: int = Field(default=50, ge=1, le=100)
    price_sort_top_k: int = Field(default=100, ge=1, le=100)
    relational_limit: int = Field(default=10, ge=1)
    final_k: int = Field(default=6, ge=1, le=6)

    exact_match_boost: float = Field(default=10.0, ge=0.0)
    substring_boost: float = Field(default=2.0, ge=0.0)
    title_boost: float = Field(default=0.3, ge=0.0)
    tag_boost: float = Field(default=0.2, ge=0.0)
    handle_boost: float = Field(default=0.15, ge=0.0)
    attribute_boost: float = Field(default=0.5, ge=0.0)

    stop_words: list[str] = Field(default_factory=lambda: list(_DEFAULT_STOP_WORDS))
    generic_query_terms: list[str] = Field(
        default_factory=lambda: list(_DEFAULT_GENERIC_TERMS)
    )

    embed_timeout_seconds: float = Field(default=5.0, gt=0.0)
    index_timeout_seconds: float = Field(default=5.0, gt=0.0)
    store_timeout_seconds: float = Field(default=5.0, gt=0.0)


class CampaignConfig(BaseModel):
    """Configures campaign keyword matching."""

    synonyms: dict[str, list[str]] = Field(
        default_factory=lambda: {
            "Best Sellers": [
                "best seller", "best selling", "bestseller", "bestselling",
                "popular", "popular items", "popular products",
                "trending", "trending items", "trending products",
                "top rated", "top selling", "most popular",
                "hot items", "hot products", "favorites", "favourite", "favourites",
            ],
            "New Arrivals": [
                "new", "new arrival", "new arrivals", "new items", "new products",
                "fresh", "fresh items", "fresh products",
                "just in", "just arrived",
                "latest", "latest items", "latest products",
                "recent", "recently added", "newest",
            ],
        }
    )
    flat_credit_cost: float = Field(default=0.5, ge=0.0)


class AgentConfig(BaseModel):
    """Configures the tool-calling loop and its latency bounds."""

    history_window: int = Field(default=12, ge=1, le=50)
    max_tool_iterations: int = Field(default=3, ge=1)
    model_timeout_seconds: float = Field(default=30.0, gt=0.0)
    tool_timeout_seconds: float = Field(default=10.0, gt=0.0)
    refinement_max_words: int = Field(default=5, ge=1)
    short_message_chars: int = Field(default=10, ge=0)


class CreditConfig(BaseModel):
    """Configures plan defaults and AI credit pricing."""

    free_plan_name: str = "Free"
    free_plan_monthly_credits: float = Field(default=1000, ge=0)
    billing_period_days: int = Field(default=30, ge=1)
    tokens_per_credit: int = Field(default=1000, ge=1)
    minimum_ai_credits: float = Field(default=1, ge=0)


class Settings(BaseSettings):
    """Process settings loaded from the environment or a local ``.env``."""

    ENV: Literal["dev", "prod"] = "dev"
    LOG_LEVEL: str = "INFO"

    OPENAI_API_KEY: SecretStr | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    MODEL_TEMPERATURE: float = 0.3

    PINECONE_API_KEY: SecretStr | None = None
    PINECONE_INDEX_HOST: str | None = None
    PINECONE_API_VERSION: str = "2025-10"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


def get_settings() -> Settings:
    return Settings()
