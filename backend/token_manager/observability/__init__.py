"""Observability package init."""
from token_manager.observability.logging import configure_logging
from token_manager.observability.request_context import get_request_id

__all__ = ["configure_logging", "get_request_id"]
