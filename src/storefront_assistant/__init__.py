"""Storefront assistant package."""

from .config import AgentConfig, CampaignConfig, CreditConfig, RetrievalConfig

__all__ = ["AgentConfig", "CampaignConfig", "CreditConfig", "RetrievalConfig"]
