"""API package init."""
from token_manager.api.health import router as health_router
from token_manager.api.tokens import router as tokens_router

__all__ = ["health_router", "tokens_router"]
