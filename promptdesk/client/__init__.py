"""HTTP client for the PromptDesk API."""

from .api_client import DEFAULT_API_URL, PromptDeskClient

__all__ = ["PromptDeskClient", "DEFAULT_API_URL"]
