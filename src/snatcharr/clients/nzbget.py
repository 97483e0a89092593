"""Adapter for NZBGet-style JSON-RPC backends (``nzb_json_rpc``)."""

from __future__ import annotations

import base64
import logging
from datetime import UTC, datetime
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

import httpx

from snatcharr.clients.base import BaseDownloadClient, ClientError, RequestCounter
from snatcharr.config import ClientType
from snatcharr.errors import ErrorKind
from snatcharr.models.common import Payload, PayloadKind, TransferState, TransferStatus

if TYPE_CHECKING:
    from snatcharr.config import ClientConfig

logger = logging.getLogger(__name__)

PRIORITIES = {"very_low": -100, "low": -50, "normal": 0, "high": 50, "very_high": 100, "force": 900}

_QUEUE_STATES: dict[str, TransferState] = {
    "QUEUED": TransferState.QUEUED,
    "PAUSED": TransferState.PAUSED,
    "DOWNLOADING": TransferState.DOWNLOADING,
    "FETCHING": TransferState.DOWNLOADING,
}

# History status strings look like "SUCCESS/ALL" or "FAILURE/PAR".
_HISTORY_STATES: dict[str, TransferState] = {
    "SUCCESS": TransferState.COMPLETED,
    "WARNING": TransferState.ERROR,
    "FAILURE": TransferState.ERROR,
    "DELETED": TransferState.ERROR,
}


class NzbgetClient(BaseDownloadClient):
    """NZBGet JSON-RPC adapter.

    Each request carries a fresh integer ``id`` from a counter owned by the
    adapter instance, and the response must echo it back.
    """

    client_type = ClientType.NZB_JSON_RPC
    supports_magnets = False
    display_name = "NZBGet"

    def __init__(self) -> None:
        self._ids = RequestCounter()

    def validate_config(self, config: ClientConfig) -> None:
        if not config.username or not config.password:
            raise ClientError(
                ErrorKind.INVALID_CONFIG, "Username and password are required for NZBGet"
            )

    def validate_handle(self, handle: Any) -> int:
        if isinstance(handle, int) and not isinstance(handle, bool):
            return handle
        text = str(handle).strip() if handle is not None else ""
        if not text.isdigit():
            raise ClientError(ErrorKind.INVALID_TORRENT, "Invalid NZB ID format", handle=handle)
        return int(text)

    def _auth(self, config: ClientConfig) -> httpx.Auth | None:
        return httpx.BasicAuth(config.username or "", config.password or "")

    async def call(
        self,
        session: httpx.AsyncClient,
        config: ClientConfig,
        method: str,
        params: list[Any] | None = None,
    ) -> Any:
        """Call a JSON-RPC method and return its ``result``.

        Raises:
            ClientError: On transport, authentication or RPC failures
        """
        request_id = self._ids.next()
        body = {"jsonrpc": "2.0", "method": method, "params": params or [], "id": request_id}
        response = await self._request(session, config, "POST", "/jsonrpc", json=body)
        url = config.url_for("/jsonrpc")

        data = self._json(response)
        if not isinstance(data, dict):
            raise ClientError(ErrorKind.PARSE_ERROR, f"Unexpected JSON-RPC response from {url}")
        if data.get("id") is not None and data.get("id") != request_id:
            raise ClientError(
                ErrorKind.PARSE_ERROR,
                f"JSON-RPC response id {data.get('id')} does not match request id {request_id}",
                url=url,
            )
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ClientError(ErrorKind.API_ERROR, f"NZBGet {method} failed: {message}", url=url)
        if "result" not in data:
            raise ClientError(ErrorKind.PARSE_ERROR, f"JSON-RPC response from {url} has no result")
        return data["result"]

    async def _test_connection(
        self, session: httpx.AsyncClient, config: ClientConfig
    ) -> dict[str, Any]:
        version = await self.call(session, config, "version")
        return {"version": version}

    async def _add(
        self,
        session: httpx.AsyncClient,
        config: ClientConfig,
        payload: Payload,
        options: dict[str, Any],
    ) -> str:
        if payload.kind == PayloadKind.FILE:
            filename = payload.filename or "upload.nzb"
            content = base64.b64encode(payload.content).decode("ascii")
        else:
            # NZBGet fetches the NZB itself when the content parameter is a URL.
            filename = PurePosixPath(urlparse(payload.text).path).name or "download.nzb"
            content = payload.text

        priority = PRIORITIES.get(str(config.options.get("priority", "normal")), 0)
        params = [
            filename,
            content,
            options["category"] or "",
            priority,
            False,  # add to top
            options["paused"],
            "",  # dupe key
            0,  # dupe score
            "SCORE",  # dupe mode
            [],  # post-processing parameters
        ]
        nzb_id = await self.call(session, config, "append", params)
        if not isinstance(nzb_id, int) or nzb_id <= 0:
            raise ClientError(ErrorKind.API_ERROR, f"NZBGet rejected {filename}")
        return str(nzb_id)

    async def _get_status(
        self, session: httpx.AsyncClient, config: ClientConfig, handle: int
    ) -> TransferStatus:
        for status in await self._list(session, config):
            if status.id == str(handle):
                return status
        raise ClientError(ErrorKind.NOT_FOUND, f"NZB {handle} not found", handle=handle)

    async def _list(
        self, session: httpx.AsyncClient, config: ClientConfig
    ) -> list[TransferStatus]:
        groups = await self.call(session, config, "listgroups", [0])
        history = await self.call(session, config, "history", [False])
        statuses = [_queue_status(item) for item in groups or []]
        queued = {s.id for s in statuses}
        statuses.extend(
            _history_status(item)
            for item in history or []
            if str(item.get("NZBID")) not in queued
        )
        return statuses

    async def _remove(
        self,
        session: httpx.AsyncClient,
        config: ClientConfig,
        handle: int,
        delete_files: bool,
    ) -> None:
        command = "GroupFinalDelete" if delete_files else "GroupDelete"
        if await self.call(session, config, "editqueue", [command, "", [handle]]):
            return
        # Already finished: the item lives in history instead of the queue.
        command = "HistoryFinalDelete" if delete_files else "HistoryDelete"
        if not await self.call(session, config, "editqueue", [command, "", [handle]]):
            raise ClientError(ErrorKind.NOT_FOUND, f"NZB {handle} not found", handle=handle)

    async def _pause(self, session: httpx.AsyncClient, config: ClientConfig, handle: int) -> None:
        await self._edit(session, config, "GroupPause", handle)

    async def _resume(self, session: httpx.AsyncClient, config: ClientConfig, handle: int) -> None:
        await self._edit(session, config, "GroupResume", handle)

    async def _edit(
        self, session: httpx.AsyncClient, config: ClientConfig, command: str, handle: int
    ) -> None:
        if not await self.call(session, config, "editqueue", [command, "", [handle]]):
            raise ClientError(ErrorKind.NOT_FOUND, f"NZB {handle} not found", handle=handle)


def _mb(item: dict[str, Any], prefix: str) -> int:
    """Combine NZBGet's split ``*SizeLo``/``*SizeHi`` fields, falling back to ``*SizeMB``."""
    lo = item.get(f"{prefix}SizeLo")
    hi = item.get(f"{prefix}SizeHi")
    if lo is not None and hi is not None:
        return int(hi) * 2**32 + int(lo)
    return int(item.get(f"{prefix}SizeMB", 0)) * 1024 * 1024


def _queue_status(item: dict[str, Any]) -> TransferStatus:
    size = _mb(item, "File")
    remaining = _mb(item, "Remaining")
    progress = (size - remaining) / size * 100 if size else 0.0
    raw_state = str(item.get("Status", ""))
    # Post-processing stages (PP_QUEUED, VERIFYING, UNPACKING...) are still in flight.
    state = _QUEUE_STATES.get(raw_state, TransferState.DOWNLOADING)
    rate = int(item.get("DownloadRate") or 0)
    return TransferStatus(
        id=str(item.get("NZBID", "")),
        name=item.get("NZBName", ""),
        state=state,
        progress=round(progress, 2),
        download_speed=rate,
        downloaded=size - remaining,
        size=size,
        eta=remaining // rate if rate else None,
        save_path=item.get("DestDir"),
        category=item.get("Category") or None,
    )


def _history_status(item: dict[str, Any]) -> TransferStatus:
    raw_state = str(item.get("Status", "")).split("/")[0]
    state = _HISTORY_STATES.get(raw_state, TransferState.ERROR)
    size = _mb(item, "File")
    finished = item.get("HistoryTime")
    return TransferStatus(
        id=str(item.get("NZBID", item.get("ID", ""))),
        name=item.get("Name", item.get("NZBName", "")),
        state=state,
        progress=100.0 if state == TransferState.COMPLETED else 0.0,
        downloaded=size if state == TransferState.COMPLETED else 0,
        size=size,
        save_path=item.get("DestDir"),
        category=item.get("Category") or None,
        completed_at=datetime.fromtimestamp(finished, UTC) if finished else None,
        error=None if state == TransferState.COMPLETED else item.get("Status"),
    )
