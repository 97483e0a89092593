"""Indexer search contract and reachability probe.

Parsing indexer responses (Torznab/Newznab XML, JSON REST) belongs to the
indexer adapters themselves; this module only defines what they must
return and how their health is checked.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from snatcharr.clients.base import ClientError, status_failure, transport_failure
from snatcharr.errors import ErrorKind, Result

if TYPE_CHECKING:
    from snatcharr.config import IndexerConfig
    from snatcharr.models.common import SearchResult

logger = logging.getLogger(__name__)

# Indexer types that expose the Torznab/Newznab ``t=caps`` endpoint.
CAPS_TYPES = frozenset({"torznab", "newznab", "jackett"})


class Indexer(Protocol):
    """Source of normalized search results."""

    async def search(self, query: str) -> list[SearchResult]:
        """Search for releases matching a free-text query."""
        ...


async def probe_indexer(config: IndexerConfig) -> Result[dict[str, Any]]:
    """Check that an indexer answers and accepts its API key.

    Torznab/Newznab-style indexers are asked for their capabilities; Prowlarr-style
    ones for their system status.

    Returns:
        A result holding details about the indexer, or a classified failure
    """
    if config.type in CAPS_TYPES:
        path = "/api"
        params: dict[str, str] = {"t": "caps"}
        if config.api_key:
            params["apikey"] = config.api_key
        headers: dict[str, str] = {}
    else:
        path = "/api/v1/system/status"
        params = {}
        headers = {"X-Api-Key": config.api_key or ""}
    url = f"{config.base_url}{path}"

    try:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(config.read_timeout, connect=config.connect_timeout)
        ) as client:
            try:
                response = await client.get(url, params=params, headers=headers)
            except httpx.TransportError as e:
                raise transport_failure(e, url) from e
            if response.status_code >= 400:
                raise status_failure(response, url)
            return Result.success(_describe(config, response))
    except ClientError as e:
        logger.debug("Indexer %s probe failed: %s", config.name, e.failure)
        return Result.from_failure(e.failure)


def _describe(config: IndexerConfig, response: httpx.Response) -> dict[str, Any]:
    if config.type in CAPS_TYPES:
        body = response.text
        if "<error" in body:
            raise ClientError(
                ErrorKind.AUTHENTICATION_FAILED,
                f"Indexer {config.name} rejected the request",
                url=str(response.url),
            )
        return {"type": config.type, "url": config.base_url}
    try:
        data = response.json()
    except ValueError as e:
        raise ClientError(
            ErrorKind.PARSE_ERROR, f"Malformed status from {response.url}", url=str(response.url)
        ) from e
    return {"type": config.type, "version": data.get("version") if isinstance(data, dict) else None}
