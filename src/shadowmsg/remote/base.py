"""Push transport protocol."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


class PushError(RuntimeError):
    """A batch was rejected by the remote or never reached it."""

    def __init__(self, message: str, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@dataclass
class TransportResponse:
    status_code: int
    data: dict | None = None
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@runtime_checkable
class Transport(Protocol):
    """Protocol for delivering one JSON batch to a remote endpoint."""

    def post(self, url: str, payload: dict, headers: dict[str, str]) -> TransportResponse:
        """POST a JSON payload and return the response.

        Network failures raise PushError. HTTP error statuses are returned,
        not raised; the caller decides what counts as success.
        """
        ...
