"""Core module for configuration and utilities."""

from portfolio_media.core.config import settings
