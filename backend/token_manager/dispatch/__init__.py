"""Task dispatch package init."""
from token_manager.dispatch.dispatcher import TaskDispatcher, validate_recipients

__all__ = ["TaskDispatcher", "validate_recipients"]
