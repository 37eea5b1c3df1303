"""Push transport factory."""

from __future__ import annotations

from shadowmsg.config import Config
from shadowmsg.remote.base import PushError, Transport, TransportResponse
from shadowmsg.remote.http import HttpxTransport
from shadowmsg.remote.push import BatchResult, PushClient, PushEndpoint, PushResult

__all__ = [
    "BatchResult",
    "HttpxTransport",
    "PushClient",
    "PushEndpoint",
    "PushError",
    "PushResult",
    "Transport",
    "TransportResponse",
    "get_transport",
]


def get_transport(config: Config | None = None) -> Transport:
    """Return the default HTTP transport configured from the push section."""
    timeout = config.push.timeout_seconds if config is not None else 30.0
    return HttpxTransport(timeout=timeout)
