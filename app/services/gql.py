"""Client for the video platform's GraphQL endpoint."""

from __future__ import annotations

import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from ..config import Settings
from ..errors import UpstreamError
from .schemas import GraphQLResponse

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class GraphQLClient:
    """Single point of contact with the platform API."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._endpoint = str(settings.gql_api_url)

    def _headers(self) -> dict[str, str]:
        return {
            "Client-Id": self._settings.gql_client_id,
            "Accept": "application/json",
            "User-Agent": self._settings.user_agent,
        }

    async def execute(
        self,
        query: str,
        *,
        variables: dict[str, Any] | None = None,
        operation_name: str | None = None,
    ) -> dict[str, Any]:
        """Send ``query`` and return the ``data`` object of the response."""

        payload: dict[str, Any] = {"query": query}
        if operation_name:
            payload["operationName"] = operation_name
        if variables is not None:
            payload["variables"] = variables

        try:
            response = await self._client.post(
                self._endpoint, json=payload, headers=self._headers()
            )
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Platform API request failed: {exc}") from exc

        if not response.is_success:
            raise UpstreamError(f"Platform API HTTP {response.status_code}")

        try:
            envelope = GraphQLResponse.model_validate(response.json())
        except ValueError as exc:
            raise UpstreamError(f"Platform API returned malformed JSON: {exc}") from exc

        if envelope.errors:
            logger.debug(
                "Platform API reported errors: %s",
                "; ".join(error.message for error in envelope.errors),
            )
        return envelope.data or {}

    async def query(
        self,
        query: str,
        schema: type[SchemaT],
        *,
        variables: dict[str, Any] | None = None,
        operation_name: str | None = None,
    ) -> SchemaT:
        """Execute ``query`` and decode its data into ``schema``."""

        data = await self.execute(
            query, variables=variables, operation_name=operation_name
        )
        try:
            return schema.model_validate(data)
        except SchemaError as exc:
            raise UpstreamError(
                f"Unexpected platform response for {schema.__name__}: {exc.error_count()} errors"
            ) from exc
