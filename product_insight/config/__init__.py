"""Configuration module for the product insight engine."""

from product_insight.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
