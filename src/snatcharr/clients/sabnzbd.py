"""Adapter for SABnzbd-style REST backends (``nzb_rest_apikey``).

All calls are requests to ``/api`` with ``mode``, ``apikey`` and
``output=json`` query parameters.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from snatcharr.clients.base import BaseDownloadClient, ClientError
from snatcharr.config import ClientType
from snatcharr.errors import ErrorKind
from snatcharr.models.common import Payload, PayloadKind, TransferState, TransferStatus

if TYPE_CHECKING:
    import httpx

    from snatcharr.config import ClientConfig

logger = logging.getLogger(__name__)

PRIORITIES = {"paused": -2, "low": -1, "normal": 0, "high": 1, "force": 2}

_NZO_RE = re.compile(r"^[A-Za-z0-9_\-]+$")

_STATES: dict[str, TransferState] = {
    "Queued": TransferState.QUEUED,
    "Grabbing": TransferState.QUEUED,
    "Propagating": TransferState.QUEUED,
    "Downloading": TransferState.DOWNLOADING,
    "Fetching": TransferState.DOWNLOADING,
    "Checking": TransferState.DOWNLOADING,
    "QuickCheck": TransferState.DOWNLOADING,
    "Verifying": TransferState.DOWNLOADING,
    "Repairing": TransferState.DOWNLOADING,
    "Extracting": TransferState.DOWNLOADING,
    "Moving": TransferState.DOWNLOADING,
    "Running": TransferState.DOWNLOADING,
    "Paused": TransferState.PAUSED,
    "Completed": TransferState.COMPLETED,
    "Failed": TransferState.ERROR,
}


def _parse_timeleft(value: str | None) -> int | None:
    """Convert SABnzbd's ``H:MM:SS`` (or ``D:HH:MM:SS``) to seconds."""
    if not value:
        return None
    try:
        parts = [int(p) for p in value.split(":")]
    except ValueError:
        return None
    days = parts.pop(0) if len(parts) == 4 else 0
    seconds = days * 86400
    for index, part in enumerate(reversed(parts)):
        seconds += part * 60**index
    return seconds or None


class SabnzbdClient(BaseDownloadClient):
    """SABnzbd API adapter."""

    client_type = ClientType.NZB_REST_APIKEY
    supports_magnets = False
    display_name = "SABnzbd"

    def validate_config(self, config: ClientConfig) -> None:
        if not config.api_key:
            raise ClientError(ErrorKind.INVALID_CONFIG, "API key is required for SABnzbd")

    def validate_handle(self, handle: Any) -> str:
        text = str(handle).strip() if handle is not None else ""
        if not _NZO_RE.match(text):
            raise ClientError(ErrorKind.INVALID_TORRENT, "Invalid NZO ID format", handle=handle)
        return text

    async def api(
        self,
        session: httpx.AsyncClient,
        config: ClientConfig,
        mode: str,
        *,
        method: str = "GET",
        files: dict[str, Any] | None = None,
        **params: Any,
    ) -> dict[str, Any]:
        """Call an API mode and return the decoded JSON body.

        Raises:
            ClientError: On transport failures, a rejected API key or a
                ``status: false`` answer
        """
        query = {"mode": mode, "apikey": config.api_key, "output": "json"}
        query.update({k: v for k, v in params.items() if v is not None})
        response = await self._request(session, config, method, "/api", params=query, files=files)
        url = config.url_for("/api")

        data = self._json(response)
        if not isinstance(data, dict):
            raise ClientError(ErrorKind.PARSE_ERROR, f"Unexpected response from {url}", url=url)
        error = data.get("error")
        if error:
            kind = (
                ErrorKind.AUTHENTICATION_FAILED
                if "api key" in str(error).lower()
                else ErrorKind.API_ERROR
            )
            raise ClientError(kind, f"SABnzbd {mode} failed: {error}", url=url)
        return data

    async def _test_connection(
        self, session: httpx.AsyncClient, config: ClientConfig
    ) -> dict[str, Any]:
        # The queue call needs a valid key, unlike mode=version.
        data = await self.api(session, config, "queue", limit=0)
        queue = data.get("queue", {})
        return {"version": queue.get("version"), "paused": queue.get("paused", False)}

    async def _add(
        self,
        session: httpx.AsyncClient,
        config: ClientConfig,
        payload: Payload,
        options: dict[str, Any],
    ) -> str:
        priority = PRIORITIES.get(str(config.options.get("priority", "normal")), 0)
        if options["paused"]:
            priority = PRIORITIES["paused"]
        params = {"cat": options["category"], "priority": priority}

        if payload.kind == PayloadKind.FILE:
            files = {
                "name": (payload.filename or "upload.nzb", payload.content, "application/x-nzb")
            }
            data = await self.api(session, config, "addfile", method="POST", files=files, **params)
        else:
            data = await self.api(session, config, "addurl", name=payload.text, **params)

        nzo_ids = data.get("nzo_ids") or []
        if not data.get("status") or not nzo_ids:
            raise ClientError(ErrorKind.API_ERROR, "SABnzbd did not accept the NZB")
        return str(nzo_ids[0])

    async def _get_status(
        self, session: httpx.AsyncClient, config: ClientConfig, handle: str
    ) -> TransferStatus:
        queue = await self.api(session, config, "queue", nzo_ids=handle)
        slots = queue.get("queue", {}).get("slots") or []
        for slot in slots:
            if slot.get("nzo_id") == handle:
                return _queue_status(slot)

        history = await self.api(session, config, "history", nzo_ids=handle)
        for slot in history.get("history", {}).get("slots") or []:
            if slot.get("nzo_id") == handle:
                return _history_status(slot)
        raise ClientError(ErrorKind.NOT_FOUND, f"NZB {handle} not found", handle=handle)

    async def _list(
        self, session: httpx.AsyncClient, config: ClientConfig
    ) -> list[TransferStatus]:
        queue = await self.api(session, config, "queue")
        history = await self.api(session, config, "history", limit=100)
        statuses = [_queue_status(s) for s in queue.get("queue", {}).get("slots") or []]
        statuses.extend(
            _history_status(s) for s in history.get("history", {}).get("slots") or []
        )
        return statuses

    async def _remove(
        self,
        session: httpx.AsyncClient,
        config: ClientConfig,
        handle: str,
        delete_files: bool,
    ) -> None:
        del_files = 1 if delete_files else 0
        data = await self.api(
            session, config, "queue", name="delete", value=handle, del_files=del_files
        )
        if data.get("status"):
            return
        # Finished items are only reachable through history.
        data = await self.api(
            session, config, "history", name="delete", value=handle, del_files=del_files
        )
        if not data.get("status"):
            raise ClientError(ErrorKind.NOT_FOUND, f"NZB {handle} not found", handle=handle)

    async def _pause(self, session: httpx.AsyncClient, config: ClientConfig, handle: str) -> None:
        await self._queue_action(session, config, "pause", handle)

    async def _resume(self, session: httpx.AsyncClient, config: ClientConfig, handle: str) -> None:
        await self._queue_action(session, config, "resume", handle)

    async def _queue_action(
        self, session: httpx.AsyncClient, config: ClientConfig, action: str, handle: str
    ) -> None:
        data = await self.api(session, config, "queue", name=action, value=handle)
        if not data.get("status"):
            raise ClientError(ErrorKind.NOT_FOUND, f"NZB {handle} not found", handle=handle)


def _queue_status(slot: dict[str, Any]) -> TransferStatus:
    size_mb = float(slot.get("mb") or 0)
    left_mb = float(slot.get("mbleft") or 0)
    size = int(size_mb * 1024 * 1024)
    downloaded = int((size_mb - left_mb) * 1024 * 1024)
    progress = float(slot.get("percentage") or 0)
    state = _STATES.get(str(slot.get("status", "")), TransferState.DOWNLOADING)
    speed = int(float(slot.get("kbpersec") or 0) * 1024)
    return TransferStatus(
        id=str(slot.get("nzo_id", "")),
        name=slot.get("filename", ""),
        state=state,
        progress=progress,
        download_speed=speed,
        downloaded=downloaded,
        size=size,
        eta=_parse_timeleft(slot.get("timeleft")),
        category=slot.get("cat") or None,
    )


def _history_status(slot: dict[str, Any]) -> TransferStatus:
    state = _STATES.get(str(slot.get("status", "")), TransferState.DOWNLOADING)
    size = int(slot.get("bytes") or 0)
    completed = slot.get("completed")
    return TransferStatus(
        id=str(slot.get("nzo_id", "")),
        name=slot.get("name", ""),
        state=state,
        progress=100.0 if state == TransferState.COMPLETED else 0.0,
        downloaded=size if state == TransferState.COMPLETED else 0,
        size=size,
        save_path=slot.get("storage"),
        category=slot.get("category") or None,
        completed_at=datetime.fromtimestamp(completed, UTC) if completed else None,
        error=slot.get("fail_message") or None,
    )
