"""Aggregation package init."""
from token_manager.aggregation.policies import CollectOutcome, collect_all, first_success, union_by_site

__all__ = ["CollectOutcome", "collect_all", "first_success", "union_by_site"]
