"""
skvil-piertotum agent client for Python.

Keeps one agent registered with a central skvil-piertotum broker and
provides direct messages, broadcasts and shared key/value context
between agents.

Example::

    from skvil_piertotum import BrokerError, PiertotumClient, load_config

    client = PiertotumClient(load_config())
    await client.connect()
    print(f"Connected as {client.agent_id}")

    # Send a message
    result = await client.inbox.send(to="front", content="API schema updated")
    if isinstance(result, BrokerError):
        print(f"Send failed: {result.message}")

    # Read (and acknowledge) unread messages
    page = await client.inbox.read(limit=10)

    # Share context
    await client.context.set("api-endpoints", '["/users", "/orders"]')

    # Clean up
    await client.close()
"""

from skvil_piertotum.client import PiertotumClient
from skvil_piertotum.config import ClientConfig, ConfigError, load_config, normalize_agent_id
from skvil_piertotum.presence import PresenceLoop, PresenceState
from skvil_piertotum.shutdown import ShutdownCoordinator
from skvil_piertotum.types import (
    AgentInfo,
    BroadcastResult,
    BrokerError,
    BrokerOk,
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

__all__ = [
    "PiertotumClient",
    "ClientConfig",
    "ConfigError",
    "load_config",
    "normalize_agent_id",
    "PresenceLoop",
    "PresenceState",
    "ShutdownCoordinator",
    "AgentInfo",
    "BroadcastResult",
    "BrokerError",
    "BrokerOk",
    "BrokerStatus",
    "ClearResult",
    "ContextEntry",
    "ContextSummary",
    "Identity",
    "Message",
    "MessageType",
    "ReadResult",
    "RegisterResult",
    "SendResult",
]

__version__ = "0.1.0"
