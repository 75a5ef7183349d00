"""
skvil-piertotum agent entrypoint.

Registers this node with the broker, keeps it alive with heartbeats and
blocks until SIGINT/SIGTERM, then shuts down gracefully.

    BROKER_URL=http://192.168.1.10:4800 AGENT_ID=api skvil-piertotum-agent
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys

from skvil_piertotum.client import PiertotumClient
from skvil_piertotum.config import ClientConfig, ConfigError, load_config
from skvil_piertotum.shutdown import ShutdownCoordinator

logger = logging.getLogger("skvil_piertotum")


def _parse_level(raw: str) -> int:
    raw = raw.strip().upper()
    if not raw:
        return logging.INFO
    if raw.isdigit():
        return int(raw)
    return int(getattr(logging, raw, logging.INFO))


def _configure_logging() -> None:
    # stdout is left to the tool transport; diagnostics go to stderr.
    logging.basicConfig(
        level=_parse_level(os.environ.get("SP_LOG_LEVEL", "")),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


async def serve(config: ClientConfig) -> int:
    """Run the agent until a termination signal has been handled."""
    client = PiertotumClient(config)
    coordinator = ShutdownCoordinator(client)
    coordinator.install()

    logger.info(
        "Agent %s (%s) connecting to %s",
        config.identity.agent_id,
        config.identity.name,
        config.broker_url,
    )
    await client.connect()
    await coordinator.wait()
    return 0


def main() -> int:
    _configure_logging()
    try:
        config = load_config()
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1
    return asyncio.run(serve(config))


if __name__ == "__main__":
    sys.exit(main())
