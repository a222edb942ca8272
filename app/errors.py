"""Error taxonomy shared by the gateway services and the HTTP layer."""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for errors surfaced to API consumers."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ValidationError(GatewayError, ValueError):
    """Malformed identifiers or proxy targets outside the allow-list."""

    status_code = 400


class NotFoundError(GatewayError, LookupError):
    """The requested entity does not exist upstream."""

    status_code = 404


class UpstreamError(GatewayError, RuntimeError):
    """Network failures, timeouts, bad statuses or undecodable platform payloads."""

    status_code = 500
