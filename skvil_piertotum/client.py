"""
skvil-piertotum agent client.

Async HTTP client that keeps one agent registered with the central
broker and exposes messaging and shared-context operations. Uses
``httpx`` for async HTTP.

Usage::

    from skvil_piertotum import PiertotumClient, load_config

    client = PiertotumClient(load_config())
    await client.connect()
    # ... use client.inbox, client.context, client.agents
    await client.close()
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar
from urllib.parse import quote as url_quote

import httpx
from pydantic import BaseModel, Field, ValidationError

from skvil_piertotum.config import ClientConfig
from skvil_piertotum.presence import HEARTBEAT_INTERVAL_S, PresenceLoop
from skvil_piertotum.types import (
    MESSAGE_TYPES,
    AgentInfo,
    BroadcastResult,
    BrokerError,
    BrokerOk,
    BrokerResult,
    BrokerStatus,
    ClearResult,
    ContextEntry,
    ContextSummary,
    Identity,
    Message,
    MessageType,
    ReadResult,
    RegisterResult,
    SendResult,
)

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_S = 5.0
DEREGISTER_TIMEOUT_S = 3.0

DEFAULT_READ_LIMIT = 20
MAX_READ_LIMIT = 50

_M = TypeVar("_M", bound=BaseModel)


class _HttpClient:
    """Thin wrapper around httpx for broker requests.

    Never raises: every outcome is a :class:`BrokerOk` or :class:`BrokerError`.
    """

    def __init__(self, broker_url: str, timeout: float = REQUEST_TIMEOUT_S) -> None:
        self.base_url = broker_url.rstrip("/")
        self._timeout = timeout
        self._closed = False
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Accept": "application/json"},
            timeout=timeout,
        )

    async def request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> BrokerResult:
        """Make one request to the broker with a bounded timeout."""
        if self._closed:
            return BrokerError(kind="network", message="Broker connection is closed")
        effective_timeout = self._timeout if timeout is None else timeout
        try:
            response = await self._client.request(
                method=method,
                url=path,
                json=body,
                timeout=effective_timeout,
            )
        except httpx.TimeoutException:
            return BrokerError(
                kind="timeout",
                message=f"Broker did not respond within {effective_timeout:g}s",
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            return BrokerError(
                kind="network",
                message=f"Failed to connect to broker: {str(exc) or type(exc).__name__}",
            )

        if not response.is_success:
            try:
                err_data = response.json()
            except ValueError:
                err_data = None
            err_msg = err_data.get("error") if isinstance(err_data, dict) else None
            if not err_msg:
                err_msg = f"HTTP {response.status_code} {response.reason_phrase}"
            return BrokerError(
                kind="http",
                message=str(err_msg),
                status_code=response.status_code,
            )

        if response.status_code == 204 or not response.content:
            return BrokerOk(data={})

        try:
            return BrokerOk(data=response.json())
        except ValueError:
            return BrokerError(
                kind="protocol",
                message=f"Invalid response from broker (not JSON) at {path}",
            )

    async def close(self) -> None:
        self._closed = True
        await self._client.aclose()


def _parse(model: type[_M], result: BrokerResult) -> _M | BrokerError:
    """Validate a successful payload against ``model``; pass errors through."""
    if isinstance(result, BrokerError):
        return result
    try:
        return model.model_validate(result.data)
    except ValidationError as exc:
        return BrokerError(
            kind="protocol",
            message=f"Unexpected response from broker: {exc.error_count()} invalid field(s)",
        )


def _check_message_type(message_type: str) -> BrokerError | None:
    if message_type in MESSAGE_TYPES:
        return None
    return BrokerError(
        kind="invalid",
        message=f"Unknown message type {message_type!r}; expected one of {', '.join(MESSAGE_TYPES)}",
    )


class _AgentList(BaseModel):
    agents: list[AgentInfo]


class _MessagePage(BaseModel):
    messages: list[Any]
    has_more: bool = Field(False, alias="hasMore")

    model_config = {"populate_by_name": True}


class _ContextList(BaseModel):
    contexts: list[ContextSummary]


# ============================================================
#  Sub-managers
# ============================================================


class _AgentManager:
    """Registration lifecycle and the broker's agent directory."""

    def __init__(self, http: _HttpClient, identity: Identity) -> None:
        self._http = http
        self._identity = identity

    @property
    def _agent_path(self) -> str:
        return f"/agents/{url_quote(self._identity.agent_id, safe='')}"

    async def register(self) -> RegisterResult | BrokerError:
        """Register (or refresh) this agent with the broker.

        The broker treats re-registration of a known agent as an update,
        so this is safe to call at any time.
        """
        result = await self._http.request(
            "POST",
            "/agents/register",
            {
                "agentId": self._identity.agent_id,
                "name": self._identity.name,
                "project": self._identity.project,
                "path": self._identity.working_path,
            },
        )
        return _parse(RegisterResult, result)

    async def heartbeat(self) -> BrokerResult:
        """Signal liveness. A 404 means the broker no longer knows this agent."""
        return await self._http.request("POST", f"{self._agent_path}/heartbeat")

    async def set_status(self, value: str) -> BrokerResult:
        """Publish ``<agent_id>-status`` to the shared context.

        Advisory only: a failure is logged and otherwise ignored.
        """
        result = await self._http.request(
            "POST",
            "/context",
            {
                "key": f"{self._identity.agent_id}-status",
                "value": value,
                "setBy": self._identity.agent_id,
            },
        )
        if isinstance(result, BrokerError):
            logger.warning("Status update to %r failed: %s", value, result)
        return result

    async def deregister(self) -> BrokerResult:
        """Remove this agent from the broker. Best effort, short timeout."""
        result = await self._http.request(
            "DELETE", self._agent_path, timeout=DEREGISTER_TIMEOUT_S
        )
        if isinstance(result, BrokerError):
            logger.info("Deregistration skipped: %s", result)
        return result

    async def list_agents(self) -> list[AgentInfo] | BrokerError:
        """List every agent currently registered with the broker."""
        page = _parse(_AgentList, await self._http.request("GET", "/agents"))
        if isinstance(page, BrokerError):
            return page
        return page.agents


class _InboxManager:
    """Direct and broadcast messaging between agents."""

    def __init__(self, http: _HttpClient, identity: Identity) -> None:
        self._http = http
        self._identity = identity

    @property
    def _inbox_path(self) -> str:
        return f"/messages/{url_quote(self._identity.agent_id, safe='')}"

    async def send(
        self,
        to: str,
        content: str,
        message_type: MessageType = "text",
    ) -> SendResult | BrokerError:
        """Send a message to agent ``to``.

        Broker errors (e.g. unknown recipient) are returned verbatim;
        use :meth:`_AgentManager.list_agents` to find valid ids.
        """
        invalid = _check_message_type(message_type)
        if invalid:
            return invalid
        result = await self._http.request(
            "POST",
            "/messages/send",
            {
                "from": self._identity.agent_id,
                "to": to,
                "content": content,
                "type": message_type,
            },
        )
        return _parse(SendResult, result)

    async def broadcast(
        self,
        content: str,
        message_type: MessageType = "text",
    ) -> BroadcastResult | BrokerError:
        """Send a message to every other registered agent.

        ``sent_to == 0`` is not an error: no other agent is registered.
        """
        invalid = _check_message_type(message_type)
        if invalid:
            return invalid
        result = _parse(
            BroadcastResult,
            await self._http.request(
                "POST",
                "/messages/broadcast",
                {
                    "from": self._identity.agent_id,
                    "content": content,
                    "type": message_type,
                },
            ),
        )
        if isinstance(result, BroadcastResult) and result.sent_to == 0:
            logger.info("Broadcast delivered to nobody: no other agent is registered")
        return result

    async def read(
        self,
        unread_only: bool = True,
        limit: int = DEFAULT_READ_LIMIT,
    ) -> ReadResult | BrokerError:
        """Fetch one page of messages and acknowledge exactly those.

        Args:
            unread_only: Only return messages not yet acknowledged.
            limit: Page size, capped at 50. Must be at least 1.

        The acknowledgment is a second request issued only after the
        fetch succeeded. If it fails the messages are still returned
        (``ack_error`` is set) and will show up again on a later read.
        """
        if limit < 1:
            return BrokerError(kind="invalid", message=f"limit must be at least 1, got {limit}")
        effective_limit = min(limit, MAX_READ_LIMIT)

        params = f"?unread={'true' if unread_only else 'false'}&limit={effective_limit}"
        page = _parse(_MessagePage, await self._http.request("GET", f"{self._inbox_path}{params}"))
        if isinstance(page, BrokerError):
            return page

        messages: list[Message] = []
        skipped = 0
        for entry in page.messages:
            try:
                messages.append(Message.model_validate(entry))
            except ValidationError:
                skipped += 1
        if skipped:
            logger.warning("Skipped %d malformed inbox entries", skipped)

        ack_error: str | None = None
        ids = [m.id for m in messages if m.id]
        if ids:
            ack = await self._http.request("POST", f"{self._inbox_path}/ack", {"ids": ids})
            if isinstance(ack, BrokerError):
                logger.warning("Acknowledging %d message(s) failed: %s", len(ids), ack)
                ack_error = ack.message

        return ReadResult(
            messages=messages,
            has_more=page.has_more,
            ack_error=ack_error,
            skipped=skipped,
        )

    async def clear(self) -> ClearResult | BrokerError:
        """Delete every message in this agent's inbox, read or unread."""
        return _parse(ClearResult, await self._http.request("DELETE", self._inbox_path))


class _ContextManager:
    """Shared key/value context. Values are opaque strings."""

    def __init__(self, http: _HttpClient, identity: Identity) -> None:
        self._http = http
        self._identity = identity

    async def set(self, key: str, value: str) -> BrokerResult:
        """Create or overwrite ``key``. Last write wins."""
        return await self._http.request(
            "POST",
            "/context",
            {"key": key, "value": value, "setBy": self._identity.agent_id},
        )

    async def get(self, key: str) -> ContextEntry | BrokerError:
        """Fetch one entry by ``key``.

        A missing key comes back as the broker's own error (e.g.
        ``"not found"``), unchanged and without a retry.
        """
        result = await self._http.request("GET", f"/context/{url_quote(key, safe='')}")
        if isinstance(result, BrokerOk) and isinstance(result.data, dict):
            result = BrokerOk(data={"key": key, **result.data})
        return _parse(ContextEntry, result)

    async def list(self) -> list[ContextSummary] | BrokerError:
        """List all context keys with their last writer, without values."""
        page = _parse(_ContextList, await self._http.request("GET", "/context"))
        if isinstance(page, BrokerError):
            return page
        return page.contexts


# ============================================================
#  Main client
# ============================================================


class PiertotumClient:
    """
    Agent client for the skvil-piertotum broker.

    Owns the HTTP connection, the presence loop, and the messaging and
    context accessors. Every accessor returns either its result model or
    a :class:`BrokerError`; none of them raise.
    """

    def __init__(
        self,
        config: ClientConfig,
        heartbeat_interval_s: float = HEARTBEAT_INTERVAL_S,
    ) -> None:
        self._config = config

        self._http = _HttpClient(config.broker_url)

        # Sub-managers
        self.agents = _AgentManager(self._http, config.identity)
        self.inbox = _InboxManager(self._http, config.identity)
        self.context = _ContextManager(self._http, config.identity)
        self.presence = PresenceLoop(self.agents, interval_s=heartbeat_interval_s)

    @property
    def identity(self) -> Identity:
        return self._config.identity

    @property
    def agent_id(self) -> str:
        return self._config.identity.agent_id

    @property
    def broker_url(self) -> str:
        return self._config.broker_url

    async def connect(self) -> RegisterResult | BrokerError:
        """
        Register with the broker and start the heartbeat loop.

        A failed registration does not prevent startup; the heartbeat
        loop keeps running and re-registers once the broker is back.
        """
        return await self.presence.start()

    async def status(self) -> BrokerStatus | BrokerError:
        """Get broker uptime, agent count and per-agent unread counts."""
        return _parse(BrokerStatus, await self._http.request("GET", "/status"))

    async def close(self) -> None:
        """Stop the heartbeat loop and close the HTTP connection."""
        await self.presence.stop()
        await self._http.close()
