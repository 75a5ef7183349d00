"""
Client configuration.

Values come from environment variables:

    BROKER_URL    broker base URL (default ``http://localhost:4800``)
    AGENT_ID      unique agent id, normalized to ``[a-z0-9-]`` (default: host name)
    AGENT_NAME    display name (default ``SP-<agent id>``)
    PROJECT_NAME  project label (default ``unknown``)
"""

from __future__ import annotations

import os
import re
import socket
from typing import Mapping
from urllib.parse import urlsplit

from pydantic import BaseModel, ValidationError, field_validator

from skvil_piertotum.types import Identity

DEFAULT_BROKER_URL = "http://localhost:4800"
DEFAULT_PROJECT = "unknown"

_AGENT_ID_INVALID_RE = re.compile(r"[^a-z0-9-]")


class ConfigError(ValueError):
    """Raised when configuration is missing or invalid."""


def normalize_agent_id(raw: str) -> str:
    """Lowercase ``raw`` and replace anything outside ``[a-z0-9-]`` with ``-``."""
    agent_id = _AGENT_ID_INVALID_RE.sub("-", raw.lower())
    if not agent_id:
        raise ConfigError("Agent id is empty; set AGENT_ID")
    return agent_id


class ClientConfig(BaseModel):
    """Validated client settings: broker endpoint plus agent identity."""

    broker_url: str = DEFAULT_BROKER_URL
    identity: Identity

    model_config = {"frozen": True}

    @field_validator("broker_url")
    @classmethod
    def _check_broker_url(cls, value: str) -> str:
        try:
            parts = urlsplit(value)
        except ValueError as exc:
            raise ValueError(f"invalid BROKER_URL {value!r}: {exc}") from exc
        if parts.scheme not in ("http", "https"):
            raise ValueError(
                f"BROKER_URL has unsupported scheme {parts.scheme!r} in {value!r}; "
                "use http:// or https:// (e.g. http://localhost:4800)"
            )
        if not parts.netloc:
            raise ValueError(f"invalid BROKER_URL {value!r}; example: http://localhost:4800")
        return value.rstrip("/")

    @property
    def agent_id(self) -> str:
        return self.identity.agent_id


def load_config(environ: Mapping[str, str] | None = None) -> ClientConfig:
    """
    Build the client configuration from ``environ`` (default ``os.environ``).

    Returns an immutable ClientConfig. Raises ConfigError on failure.
    """
    env = os.environ if environ is None else environ

    agent_id = normalize_agent_id(env.get("AGENT_ID") or socket.gethostname())
    identity = Identity(
        agent_id=agent_id,
        name=env.get("AGENT_NAME") or f"SP-{agent_id}",
        project=env.get("PROJECT_NAME") or DEFAULT_PROJECT,
        working_path=os.getcwd(),
    )

    try:
        return ClientConfig(
            broker_url=env.get("BROKER_URL") or DEFAULT_BROKER_URL,
            identity=identity,
        )
    except ValidationError as exc:
        messages = "; ".join(err["msg"] for err in exc.errors())
        raise ConfigError(messages) from exc
