"""Adapter for Transmission-style RPC backends (``bittorrent_rpc_csrf``).

Every call is a POST of ``{"method", "arguments", "tag"}`` to the RPC
endpoint. The backend guards against CSRF by answering 409 with an
``X-Transmission-Session-Id`` header; the request is then repeated once
with that header attached.
"""

from __future__ import annotations

import base64
import logging
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import httpx

from snatcharr.clients.base import BaseDownloadClient, ClientError, RequestCounter, status_failure
from snatcharr.config import ClientType
from snatcharr.errors import ErrorKind
from snatcharr.models.common import Payload, PayloadKind, TransferState, TransferStatus

if TYPE_CHECKING:
    from snatcharr.config import ClientConfig

logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Transmission-Session-Id"
DEFAULT_RPC_PATH = "/transmission/rpc"

_HASH_RE = re.compile(r"^[0-9a-fA-F]{40}$")

_FIELDS = [
    "id",
    "hashString",
    "name",
    "status",
    "percentDone",
    "rateDownload",
    "rateUpload",
    "downloadedEver",
    "uploadedEver",
    "totalSize",
    "eta",
    "uploadRatio",
    "downloadDir",
    "labels",
    "addedDate",
    "doneDate",
    "error",
    "errorString",
]

# 0 stopped, 1 check pending, 2 checking, 3 download pending, 4 downloading,
# 5 seed pending, 6 seeding
_STATUSES: dict[int, TransferState] = {
    1: TransferState.QUEUED,
    2: TransferState.QUEUED,
    3: TransferState.QUEUED,
    4: TransferState.DOWNLOADING,
    5: TransferState.SEEDING,
    6: TransferState.SEEDING,
}


class TransmissionClient(BaseDownloadClient):
    """Transmission RPC adapter.

    Request tags come from a counter owned by the adapter instance, so tags
    increase monotonically across all calls made through it.
    """

    client_type = ClientType.BITTORRENT_RPC_CSRF
    display_name = "Transmission"

    def __init__(self) -> None:
        self._tags = RequestCounter()

    def validate_config(self, config: ClientConfig) -> None:
        if bool(config.username) != bool(config.password):
            raise ClientError(
                ErrorKind.INVALID_CONFIG,
                "Transmission needs both a username and a password, or neither",
            )

    def validate_handle(self, handle: Any) -> int | str:
        if isinstance(handle, int) and not isinstance(handle, bool) and handle > 0:
            return handle
        text = str(handle).strip() if handle is not None else ""
        if text.isdigit() and int(text) > 0:
            return int(text)
        if _HASH_RE.match(text):
            return text.lower()
        raise ClientError(ErrorKind.INVALID_TORRENT, f"Invalid torrent id or hash: {handle!r}")

    def _auth(self, config: ClientConfig) -> httpx.Auth | None:
        if config.username and config.password:
            return httpx.BasicAuth(config.username, config.password)
        return None

    def _rpc_path(self, config: ClientConfig) -> str:
        return str(config.options.get("rpc_path", DEFAULT_RPC_PATH))

    async def rpc(
        self,
        session: httpx.AsyncClient,
        config: ClientConfig,
        method: str,
        arguments: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Call an RPC method and return its ``arguments``.

        Raises:
            ClientError: On transport, authentication or RPC failures
        """
        path = self._rpc_path(config)
        url = config.url_for(path)
        tag = self._tags.next()
        body = {"method": method, "arguments": arguments or {}, "tag": tag}

        response = await self._request(session, config, "POST", path, json=body, check_status=False)
        if response.status_code == 409:
            token = response.headers.get(SESSION_HEADER)
            if not token:
                raise ClientError(
                    ErrorKind.API_ERROR, f"409 from {url} without a session id", url=url
                )
            logger.debug("Refreshing Transmission session id for %s", config.name)
            response = await self._request(
                session,
                config,
                "POST",
                path,
                json=body,
                headers={SESSION_HEADER: token},
                check_status=False,
            )
            if response.status_code == 409:
                raise ClientError(
                    ErrorKind.API_ERROR, f"Session handshake with {url} failed", url=url
                )
        if response.status_code >= 400:
            raise status_failure(response, url)

        data = self._json(response)
        if not isinstance(data, dict):
            raise ClientError(ErrorKind.PARSE_ERROR, f"Unexpected RPC response from {url}", url=url)
        if data.get("tag") is not None and data.get("tag") != tag:
            raise ClientError(
                ErrorKind.PARSE_ERROR,
                f"RPC response tag {data.get('tag')} does not match request tag {tag}",
                url=url,
            )
        result = data.get("result")
        if result != "success":
            raise ClientError(
                ErrorKind.API_ERROR, f"Transmission {method} failed: {result}", url=url
            )
        return data.get("arguments") or {}

    async def _test_connection(
        self, session: httpx.AsyncClient, config: ClientConfig
    ) -> dict[str, Any]:
        args = await self.rpc(
            session, config, "session-get", {"fields": ["version", "rpc-version"]}
        )
        return {"version": args.get("version"), "rpc_version": args.get("rpc-version")}

    async def _add(
        self,
        session: httpx.AsyncClient,
        config: ClientConfig,
        payload: Payload,
        options: dict[str, Any],
    ) -> str:
        arguments: dict[str, Any] = {"paused": options["paused"]}
        if payload.kind == PayloadKind.FILE:
            arguments["metainfo"] = base64.b64encode(payload.content).decode("ascii")
        else:
            arguments["filename"] = payload.text
        if options["download_directory"]:
            arguments["download-dir"] = options["download_directory"]
        if options["category"]:
            arguments["labels"] = [options["category"]]

        args = await self.rpc(session, config, "torrent-add", arguments)
        if "torrent-duplicate" in args:
            existing = args["torrent-duplicate"]
            raise ClientError(
                ErrorKind.DUPLICATE_TORRENT,
                f"Torrent already exists: {existing.get('name', '')}",
                hash=existing.get("hashString"),
            )
        added = args.get("torrent-added")
        if not added or not added.get("hashString"):
            raise ClientError(ErrorKind.PARSE_ERROR, "torrent-add returned no torrent")
        return str(added["hashString"]).lower()

    async def _get_status(
        self, session: httpx.AsyncClient, config: ClientConfig, handle: int | str
    ) -> TransferStatus:
        args = await self.rpc(session, config, "torrent-get", {"ids": [handle], "fields": _FIELDS})
        torrents = args.get("torrents") or []
        if not torrents:
            raise ClientError(ErrorKind.NOT_FOUND, f"Torrent {handle} not found", handle=handle)
        return _to_status(torrents[0])

    async def _list(
        self, session: httpx.AsyncClient, config: ClientConfig
    ) -> list[TransferStatus]:
        args = await self.rpc(session, config, "torrent-get", {"fields": _FIELDS})
        return [_to_status(item) for item in args.get("torrents") or []]

    async def _remove(
        self,
        session: httpx.AsyncClient,
        config: ClientConfig,
        handle: int | str,
        delete_files: bool,
    ) -> None:
        await self.rpc(
            session, config, "torrent-remove", {"ids": [handle], "delete-local-data": delete_files}
        )

    async def _pause(
        self, session: httpx.AsyncClient, config: ClientConfig, handle: int | str
    ) -> None:
        await self.rpc(session, config, "torrent-stop", {"ids": [handle]})

    async def _resume(
        self, session: httpx.AsyncClient, config: ClientConfig, handle: int | str
    ) -> None:
        await self.rpc(session, config, "torrent-start", {"ids": [handle]})


def _to_status(item: dict[str, Any]) -> TransferStatus:
    progress = float(item.get("percentDone") or 0) * 100
    code = int(item.get("status") or 0)
    if item.get("error"):
        state = TransferState.ERROR
    elif code == 0:
        state = TransferState.COMPLETED if progress >= 100 else TransferState.PAUSED
    else:
        state = _STATUSES.get(code, TransferState.ERROR)

    labels = item.get("labels") or []
    eta = item.get("eta")
    added = item.get("addedDate")
    done = item.get("doneDate")
    return TransferStatus(
        id=str(item.get("hashString") or item.get("id", "")).lower(),
        name=item.get("name", ""),
        state=state,
        progress=round(progress, 2),
        download_speed=int(item.get("rateDownload") or 0),
        upload_speed=int(item.get("rateUpload") or 0),
        downloaded=int(item.get("downloadedEver") or 0),
        uploaded=int(item.get("uploadedEver") or 0),
        size=int(item.get("totalSize") or 0),
        eta=eta if isinstance(eta, int) and eta >= 0 else None,
        ratio=item.get("uploadRatio"),
        save_path=item.get("downloadDir"),
        category=labels[0] if labels else None,
        added_at=datetime.fromtimestamp(added, UTC) if added else None,
        completed_at=datetime.fromtimestamp(done, UTC) if done else None,
        error=item.get("errorString") or None,
    )
