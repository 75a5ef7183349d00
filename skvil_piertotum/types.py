"""
Pydantic models for the skvil-piertotum agent client.

Broker payloads use camelCase on the wire; the models expose snake_case
attributes and accept either spelling.
"""

from __future__ import annotations

import json
from typing import Any, Literal, Union

from pydantic import BaseModel, Field, field_validator

MessageType = Literal["text", "code", "schema", "endpoint", "config"]
MESSAGE_TYPES: tuple[str, ...] = ("text", "code", "schema", "endpoint", "config")

ErrorKind = Literal["http", "protocol", "timeout", "network", "invalid"]


# ============================================================
#  Transport results
# ============================================================


class BrokerOk(BaseModel):
    """Successful broker response carrying the decoded JSON payload."""

    data: Any = Field(default_factory=dict)

    model_config = {"frozen": True}


class BrokerError(BaseModel):
    """Normalized failure of a broker call.

    ``kind`` tells the failure modes apart:

    - ``http``: the broker answered with a non-2xx status (``status_code`` set)
    - ``protocol``: the broker answered 2xx but the body was not usable
    - ``timeout``: no answer within the request timeout
    - ``network``: connection refused, DNS failure, reset, ...
    - ``invalid``: rejected client-side before any request was sent
    """

    kind: ErrorKind
    message: str
    status_code: int | None = None

    model_config = {"frozen": True}

    @property
    def is_not_found(self) -> bool:
        return self.kind == "http" and self.status_code == 404

    def __str__(self) -> str:
        return self.message


BrokerResult = Union[BrokerOk, BrokerError]


# ============================================================
#  Identity
# ============================================================


class Identity(BaseModel):
    """This process's agent identity. Computed once at startup."""

    agent_id: str
    name: str
    project: str = "unknown"
    working_path: str

    model_config = {"frozen": True}


# ============================================================
#  Agents
# ============================================================


class RegisterResult(BaseModel):
    """Result of registering with the broker."""

    total_agents: int | None = Field(None, alias="totalAgents")

    model_config = {"populate_by_name": True}


class AgentInfo(BaseModel):
    """An agent known to the broker."""

    agent_id: str = Field(alias="agentId")
    name: str | None = None
    project: str | None = None
    path: str | None = None
    last_seen: str | None = Field(None, alias="lastSeen")
    unread_messages: int | None = Field(None, alias="unreadMessages")

    model_config = {"populate_by_name": True}


class BrokerStatus(BaseModel):
    """Broker-wide status summary."""

    uptime: float = 0
    total_agents: int = Field(0, alias="totalAgents")
    total_context_keys: int = Field(0, alias="totalContextKeys")
    agents: list[AgentInfo] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


# ============================================================
#  Messages
# ============================================================


def _as_text(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


class Message(BaseModel):
    """A message in this agent's inbox.

    Parsing is lenient: the broker stores whatever senders posted, so
    non-string fields are rendered as text and missing ones get defaults
    rather than failing the whole page.
    """

    id: str | None = None
    from_agent: str = Field("", alias="from")
    from_name: str | None = Field(None, alias="fromName")
    to: str | None = None
    content: str = ""
    type: str = "text"
    timestamp: str | None = None

    model_config = {"populate_by_name": True}

    @field_validator("id", "from_name", "to", "timestamp", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Any:
        return _as_text(value)

    @field_validator("from_agent", "content", mode="before")
    @classmethod
    def _required_text(cls, value: Any) -> Any:
        return "" if value is None else _as_text(value)

    @field_validator("type", mode="before")
    @classmethod
    def _message_type(cls, value: Any) -> Any:
        return "text" if value is None else _as_text(value)


class SendResult(BaseModel):
    """Result of sending a direct message."""

    message_id: str = Field(alias="messageId")

    model_config = {"populate_by_name": True}


class BroadcastResult(BaseModel):
    """Result of a broadcast. ``sent_to`` may be zero."""

    sent_to: int = Field(alias="sentTo")

    model_config = {"populate_by_name": True}


class ReadResult(BaseModel):
    """One page of inbox messages.

    ``ack_error`` is set when the messages were fetched but could not be
    marked as read; they will be returned again by a later read.
    ``skipped`` counts page entries that were not message objects at all;
    those are neither returned nor acknowledged.
    """

    messages: list[Message] = Field(default_factory=list)
    has_more: bool = Field(False, alias="hasMore")
    ack_error: str | None = None
    skipped: int = 0

    model_config = {"populate_by_name": True}


class ClearResult(BaseModel):
    """Result of clearing the inbox."""

    cleared: int = 0


# ============================================================
#  Shared context
# ============================================================


class ContextEntry(BaseModel):
    """A shared key/value entry. ``value`` is an opaque string."""

    key: str
    value: str
    set_by: str | None = Field(None, alias="setBy")
    set_by_name: str | None = Field(None, alias="setByName")
    timestamp: str | None = None

    model_config = {"populate_by_name": True}


class ContextSummary(BaseModel):
    """A context key without its value."""

    key: str
    set_by: str | None = Field(None, alias="setBy")
    timestamp: str | None = None

    model_config = {"populate_by_name": True}
