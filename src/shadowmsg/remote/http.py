"""httpx transport for pushing batches to a remote endpoint."""

from __future__ import annotations

import logging

import httpx

from shadowmsg.remote.base import PushError, TransportResponse

logger = logging.getLogger(__name__)


class HttpxTransport:
    """Sends each batch as one blocking POST. No retries."""

    def __init__(self, timeout: float = 30.0, client: httpx.Client | None = None):
        self.timeout = timeout
        self._client = client

    def post(self, url: str, payload: dict, headers: dict[str, str]) -> TransportResponse:
        try:
            if self._client is not None:
                resp = self._client.post(url, json=payload, headers=headers)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    resp = client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise PushError(f"Failed to reach {url}: {e}") from e

        logger.debug("POST %s -> %d", url, resp.status_code)

        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            data = None
        return TransportResponse(status_code=resp.status_code, data=data, text=resp.text)
