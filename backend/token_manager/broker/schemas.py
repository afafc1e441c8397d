"""Broker task envelopes and per-site reply shapes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Union
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from token_manager.errors import MalformedReply, SiteError


class RequestType(str, Enum):
    """Request types understood by the Opal side of a bridgehead."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    STATUS = "STATUS"
    SCRIPT = "SCRIPT"


class OperationKind(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    STATUS = "STATUS"
    DISCOVER_TABLES = "DISCOVER_TABLES"

    @property
    def request_type(self) -> RequestType:
        # Table discovery travels as the SCRIPT request on the wire
        if self is OperationKind.DISCOVER_TABLES:
            return RequestType.SCRIPT
        return RequestType(self.value)


class FailureStrategy(str, Enum):
    discard = "discard"


class OpalRequest(BaseModel):
    """Typed request body carried by a task envelope."""

    request_type: RequestType
    name: str | None = None
    project: str | None = None
    token: str | None = None


class TaskEnvelope(BaseModel):
    """Fan-out unit of work submitted to the broker."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    from_: str = Field(alias="from")
    to: tuple[str, ...]
    body: OpalRequest
    ttl: str = "60s"
    failure_strategy: FailureStrategy = FailureStrategy.discard
    metadata: Any = None

    @field_validator("to")
    @classmethod
    def _unique_recipients(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        recipients = tuple(dict.fromkeys(value))
        if not recipients:
            raise ValueError("task must be addressed to at least one recipient")
        return recipients

    @property
    def expected_replies(self) -> int:
        """Number of replies to ask the broker to wait for."""
        return len(self.to)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ============================================================================
# Reply bodies
# ============================================================================

@dataclass(frozen=True)
class ReplyOk:
    value: Any


@dataclass(frozen=True)
class ReplyErr:
    status_code: int
    message: str


ReplyBody = Union[ReplyOk, ReplyErr]


@dataclass(frozen=True)
class SiteReply:
    """One decoded result from a single site."""

    site: str
    body: ReplyBody

    @property
    def ok(self) -> bool:
        return isinstance(self.body, ReplyOk)

    def raise_for_error(self) -> Any:
        """Return the Ok value, or raise SiteError for an Err reply."""
        if isinstance(self.body, ReplyErr):
            raise SiteError(self.site, self.body.status_code, self.body.message)
        return self.body.value


class TokenPayload(BaseModel):
    token: str


class StatusPayload(BaseModel):
    status: str


class TablesPayload(BaseModel):
    tables: list[str]


class ErrorPayload(BaseModel):
    status_code: int = 500
    error_message: str = Field(validation_alias=AliasChoices("error_message", "error"))


class ReplyShape(str, Enum):
    """Success payload expected for a given request."""
    TOKEN = "token"
    STATUS = "status"
    TABLES = "tables"

    @property
    def payload_model(self) -> type[BaseModel]:
        return _PAYLOAD_MODELS[self]


_PAYLOAD_MODELS: dict[ReplyShape, type[BaseModel]] = {
    ReplyShape.TOKEN: TokenPayload,
    ReplyShape.STATUS: StatusPayload,
    ReplyShape.TABLES: TablesPayload,
}


class TaskResultFrame(BaseModel):
    """Raw result message as relayed by the broker."""

    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from")
    body: Any = None
    task: str | None = None
    status: str | None = None


_TEXT_VALUE = TypeAdapter(str)
_TABLES_VALUE = TypeAdapter(Union[str, list[str]])


def _ok_from_payload(raw: Any, shape: ReplyShape) -> ReplyOk:
    if isinstance(raw, dict):
        payload = shape.payload_model.model_validate(raw)
        return ReplyOk(getattr(payload, shape.value))
    # Bare values must already have the shape's type: no str() coercion
    adapter = _TABLES_VALUE if shape is ReplyShape.TABLES else _TEXT_VALUE
    return ReplyOk(adapter.validate_python(raw, strict=True))


def _err_from_payload(raw: Any) -> ReplyErr:
    if isinstance(raw, str):
        return ReplyErr(500, raw)
    payload = ErrorPayload.model_validate(raw)
    return ReplyErr(payload.status_code, payload.error_message)


def decode_body(raw: Any, shape: ReplyShape) -> ReplyBody:
    """Classify a reply body as Ok or Err.

    Explicit ``{"Ok": ...}`` / ``{"Err": ...}`` wrappers win. Otherwise a bare
    string (or, for tables, a list of strings) is a success, and a mapping is
    matched against the success shape first and the error shape second.
    """
    try:
        if isinstance(raw, dict) and len(raw) == 1 and "Ok" in raw:
            return _ok_from_payload(raw["Ok"], shape)
        if isinstance(raw, dict) and len(raw) == 1 and "Err" in raw:
            return _err_from_payload(raw["Err"])
        if not isinstance(raw, dict):
            return _ok_from_payload(raw, shape)
    except ValidationError as exc:
        raise MalformedReply(f"Unexpected reply body {raw!r}: {exc}") from exc

    try:
        return _ok_from_payload(raw, shape)
    except ValidationError:
        pass
    try:
        return _err_from_payload(raw)
    except ValidationError as exc:
        raise MalformedReply(f"Reply body matches neither {shape.value} nor error shape: {raw!r}") from exc


def parse_site_reply(data: str | bytes, shape: ReplyShape) -> SiteReply:
    """Parse one SSE message payload into a SiteReply."""
    try:
        frame = TaskResultFrame.model_validate_json(data)
    except ValidationError as exc:
        raise MalformedReply(f"Failed to deserialize message {data!r} into a result: {exc}") from exc
    if frame.body is None:
        raise MalformedReply(f"Result from {frame.from_} carries no body")
    return SiteReply(site=frame.from_, body=decode_body(frame.body, shape))
