"""
Graceful shutdown for a running agent client.

On SIGINT/SIGTERM: stop the heartbeat, mark this agent offline in the
shared context, deregister, close the connection. Runs once no matter
how many signals arrive.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import TYPE_CHECKING, Awaitable, Callable

if TYPE_CHECKING:
    from skvil_piertotum.client import PiertotumClient

logger = logging.getLogger(__name__)

OFFLINE_STATUS = "offline"


class ShutdownCoordinator:
    """Runs the client's teardown exactly once."""

    def __init__(self, client: PiertotumClient) -> None:
        self._client = client
        self._started = False
        self._done = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def is_shutting_down(self) -> bool:
        return self._started

    def install(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Route SIGINT and SIGTERM to :meth:`trigger`."""
        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.trigger, sig)

    def trigger(self, signum: int | None = None) -> None:
        """Schedule shutdown from a signal handler. Extra calls are no-ops."""
        if self._started:
            logger.debug("Shutdown already in progress; ignoring signal %s", signum)
            return
        logger.info("Received signal %s; shutting down", signum)
        self._task = asyncio.ensure_future(self.shutdown())

    async def shutdown(self) -> None:
        """Tear down the client. Only the first call does anything."""
        if self._started:
            return
        self._started = True

        # Heartbeat must be stopped before any other request goes out.
        steps: list[tuple[str, Callable[[], Awaitable[object]]]] = [
            ("stop heartbeat", self._client.presence.stop),
            ("mark offline", lambda: self._client.agents.set_status(OFFLINE_STATUS)),
            ("deregister", self._client.agents.deregister),
            ("close connection", self._client.close),
        ]
        for name, step in steps:
            try:
                await step()
            except Exception:
                logger.exception("Shutdown step %r failed", name)

        logger.info("Agent %s shut down", self._client.agent_id)
        self._done.set()

    async def wait(self) -> None:
        """Block until shutdown has completed."""
        await self._done.wait()
