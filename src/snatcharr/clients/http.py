"""Adapter for generic key-authenticated JSON REST backends (``generic_http``).

The API key travels in a header (``X-Api-Key`` unless the client's
``api_key_header`` option says otherwise). Endpoints, relative to the
client's URL prefix:

- ``GET /api/status``: ``{"version": ...}``
- ``POST /api/transfers``: JSON ``{"magnet"|"url": ..., "category", "directory", "paused"}``
  or a multipart ``file`` upload, answering ``{"id": ...}``
- ``GET /api/transfers`` and ``GET /api/transfers/{id}``
- ``DELETE /api/transfers/{id}?delete_files=true|false``
- ``POST /api/transfers/{id}/pause`` and ``/resume``
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import TYPE_CHECKING, Any

from snatcharr.clients.base import BaseDownloadClient, ClientError, status_failure
from snatcharr.config import ClientType
from snatcharr.errors import ErrorKind
from snatcharr.models.common import Payload, PayloadKind, TransferState, TransferStatus

if TYPE_CHECKING:
    import httpx

    from snatcharr.config import ClientConfig

DEFAULT_API_KEY_HEADER = "X-Api-Key"

_HANDLE_RE = re.compile(r"^[A-Za-z0-9._~\-]+$")


class HttpApiClient(BaseDownloadClient):
    """Generic JSON REST adapter."""

    client_type = ClientType.GENERIC_HTTP
    display_name = "HTTP client"

    def validate_config(self, config: ClientConfig) -> None:
        if not config.api_key:
            raise ClientError(
                ErrorKind.INVALID_CONFIG, f"API key is required for client {config.name!r}"
            )

    def validate_handle(self, handle: Any) -> str:
        text = str(handle).strip() if handle is not None else ""
        if not _HANDLE_RE.match(text):
            raise ClientError(
                ErrorKind.INVALID_TORRENT, f"Invalid transfer id: {handle!r}", handle=handle
            )
        return text

    def _headers(self, config: ClientConfig) -> dict[str, str]:
        header = str(config.options.get("api_key_header", DEFAULT_API_KEY_HEADER))
        return {header: config.api_key or "", "Accept": "application/json"}

    async def _test_connection(
        self, session: httpx.AsyncClient, config: ClientConfig
    ) -> dict[str, Any]:
        response = await self._request(session, config, "GET", "/api/status")
        return self._json_object(response)

    async def _add(
        self,
        session: httpx.AsyncClient,
        config: ClientConfig,
        payload: Payload,
        options: dict[str, Any],
    ) -> str:
        fields = {
            "category": options["category"],
            "directory": options["download_directory"],
            "paused": options["paused"],
        }
        if payload.kind == PayloadKind.FILE:
            form = {k: str(v).lower() if isinstance(v, bool) else v for k, v in fields.items() if v}
            response = await self._request(
                session,
                config,
                "POST",
                "/api/transfers",
                data=form,
                files={"file": (payload.filename or "upload", payload.content)},
                check_status=False,
            )
        else:
            body = {payload.kind.value: payload.text, **fields}
            response = await self._request(
                session, config, "POST", "/api/transfers", json=body, check_status=False
            )

        if response.status_code == 409:
            raise ClientError(ErrorKind.DUPLICATE_TORRENT, "Transfer already exists")
        if response.status_code >= 400:
            raise status_failure(response, config.url_for("/api/transfers"))
        data = self._json(response)
        if not isinstance(data, dict) or not data.get("id"):
            raise ClientError(ErrorKind.PARSE_ERROR, "Add response carries no transfer id")
        return str(data["id"])

    async def _get_status(
        self, session: httpx.AsyncClient, config: ClientConfig, handle: str
    ) -> TransferStatus:
        response = await self._request(session, config, "GET", f"/api/transfers/{handle}")
        return _to_status(self._json(response))

    async def _list(
        self, session: httpx.AsyncClient, config: ClientConfig
    ) -> list[TransferStatus]:
        response = await self._request(session, config, "GET", "/api/transfers")
        data = self._json(response)
        items = data.get("transfers") or [] if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise ClientError(ErrorKind.PARSE_ERROR, "Transfer list is not an array")
        return [_to_status(item) for item in items]

    async def _remove(
        self,
        session: httpx.AsyncClient,
        config: ClientConfig,
        handle: str,
        delete_files: bool,
    ) -> None:
        await self._request(
            session,
            config,
            "DELETE",
            f"/api/transfers/{handle}",
            params={"delete_files": "true" if delete_files else "false"},
        )

    async def _pause(self, session: httpx.AsyncClient, config: ClientConfig, handle: str) -> None:
        await self._request(session, config, "POST", f"/api/transfers/{handle}/pause")

    async def _resume(self, session: httpx.AsyncClient, config: ClientConfig, handle: str) -> None:
        await self._request(session, config, "POST", f"/api/transfers/{handle}/resume")


def _to_status(item: Any) -> TransferStatus:
    if not isinstance(item, dict):
        raise ClientError(ErrorKind.PARSE_ERROR, "Transfer entry is not an object")
    try:
        state = TransferState(str(item.get("state", "")).lower())
    except ValueError:
        state = TransferState.ERROR
    added = item.get("added_at")
    completed = item.get("completed_at")
    return TransferStatus(
        id=str(item.get("id", "")),
        name=item.get("name", ""),
        state=state,
        progress=float(item.get("progress") or 0),
        download_speed=int(item.get("download_speed") or 0),
        upload_speed=int(item.get("upload_speed") or 0),
        downloaded=int(item.get("downloaded") or 0),
        uploaded=int(item.get("uploaded") or 0),
        size=int(item.get("size") or 0),
        eta=item.get("eta"),
        ratio=item.get("ratio"),
        save_path=item.get("save_path"),
        category=item.get("category"),
        added_at=datetime.fromisoformat(added) if added else None,
        completed_at=datetime.fromisoformat(completed) if completed else None,
        error=item.get("error"),
    )
