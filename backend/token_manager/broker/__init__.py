"""Broker package init."""
from token_manager.broker.client import BrokerClient
from token_manager.broker.decoder import ReplyStream, ResponseDecoder
from token_manager.broker.schemas import (
    OperationKind,
    ReplyErr,
    ReplyOk,
    ReplyShape,
    RequestType,
    SiteReply,
    TaskEnvelope,
)

__all__ = [
    "BrokerClient",
    "ReplyStream",
    "ResponseDecoder",
    "OperationKind",
    "ReplyErr",
    "ReplyOk",
    "ReplyShape",
    "RequestType",
    "SiteReply",
    "TaskEnvelope",
]
