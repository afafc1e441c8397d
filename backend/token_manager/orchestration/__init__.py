"""Operation orchestration package init."""
from token_manager.orchestration.factory import build_orchestrator
from token_manager.orchestration.orchestrator import (
    BackgroundOperation,
    OperationOrchestrator,
    OperationState,
)

__all__ = ["BackgroundOperation", "OperationOrchestrator", "OperationState", "build_orchestrator"]
