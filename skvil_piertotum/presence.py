"""
Presence loop for the skvil-piertotum agent client.

Sends a heartbeat at a fixed interval and re-registers when the broker
reports that it no longer knows this agent (e.g. after a broker restart).
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import TYPE_CHECKING

from skvil_piertotum.types import BrokerError, RegisterResult

if TYPE_CHECKING:
    from skvil_piertotum.client import _AgentManager

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL_S = 30.0


class PresenceState(str, enum.Enum):
    REGISTERED = "registered"
    REGISTERING = "registering"
    UNKNOWN = "unknown"  # the broker does not know this agent


class PresenceLoop:
    """Owns the heartbeat task and this agent's registration state.

    ``registered`` is a local hint only; the broker is authoritative.
    At most one heartbeat task runs at a time, and ticks never overlap:
    each tick's requests complete before the next sleep begins.
    """

    def __init__(self, agents: _AgentManager, interval_s: float = HEARTBEAT_INTERVAL_S) -> None:
        self._agents = agents
        self._interval = interval_s
        self._state = PresenceState.UNKNOWN
        self._task: asyncio.Task[None] | None = None
        self._registering: asyncio.Future[RegisterResult | BrokerError] | None = None
        self._stopped = False

    @property
    def state(self) -> PresenceState:
        return self._state

    @property
    def registered(self) -> bool:
        return self._state is PresenceState.REGISTERED

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> RegisterResult | BrokerError:
        """Register, then start the heartbeat task.

        The task starts even if registration failed; the broker may come
        up later and the next heartbeat's 404 triggers registration.
        """
        result = await self._register()
        if isinstance(result, BrokerError):
            logger.warning("Could not register with broker: %s", result)
            logger.warning("Broker operations will fail until the broker is reachable")
        else:
            logger.info("Registered with broker (%s agent(s) online)", result.total_agents)

        # stop() may have run while registration was in flight.
        if not self.is_running and not self._stopped:
            self._task = asyncio.create_task(self._heartbeat_loop())
        return result

    async def stop(self) -> None:
        """Cancel the heartbeat task and settle any registration in flight.

        When this returns, no heartbeat or registration request from this
        loop is pending, so a following deregistration cannot be overtaken.
        Safe to call more than once.
        """
        self._stopped = True
        registering = self._registering
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if registering is not None and not registering.done():
            # Bounded by the request timeout; the transport never raises.
            await registering

    async def tick(self) -> PresenceState:
        """Send one heartbeat and recover from broker state loss."""
        result = await self._agents.heartbeat()
        if not isinstance(result, BrokerError):
            self._state = PresenceState.REGISTERED
            return self._state

        if not result.is_not_found:
            logger.warning("Heartbeat failed: %s", result)
            return self._state

        logger.warning("Heartbeat: broker does not know this agent, re-registering")
        self._state = PresenceState.UNKNOWN
        reg = await self._register()
        if isinstance(reg, BrokerError):
            logger.warning("Re-registration failed: %s", reg)
        else:
            logger.info("Re-registration succeeded")
        return self._state

    async def _register(self) -> RegisterResult | BrokerError:
        self._state = PresenceState.REGISTERING
        registering = asyncio.ensure_future(self._agents.register())
        self._registering = registering
        try:
            # Shielded so cancelling the heartbeat task leaves the request
            # for stop() to await.
            result = await asyncio.shield(registering)
        finally:
            if self._registering is registering:
                self._registering = None
        if isinstance(result, BrokerError):
            self._state = PresenceState.UNKNOWN
        else:
            self._state = PresenceState.REGISTERED
        return result

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.tick()
            except Exception:
                logger.exception("Unexpected error in heartbeat tick")
