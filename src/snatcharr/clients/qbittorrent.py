"""Adapter for qBittorrent-style WebUI REST backends (``bittorrent_rest_ssl``).

Authentication posts the username and password to ``/api/v2/auth/login``,
which answers with an ``SID`` session cookie. The cookie lives in the
per-operation session and is never reused across operations.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from snatcharr.clients.base import BaseDownloadClient, ClientError, status_failure
from snatcharr.config import ClientType
from snatcharr.errors import ErrorKind
from snatcharr.models.common import Payload, PayloadKind, TransferState, TransferStatus

if TYPE_CHECKING:
    import httpx

    from snatcharr.config import ClientConfig

logger = logging.getLogger(__name__)

_HASH_RE = re.compile(r"^[0-9a-fA-F]{40}$")
_MAGNET_HASH_RE = re.compile(r"xt=urn:btih:([0-9a-zA-Z]{32,40})", re.I)

_STATES: dict[str, TransferState] = {
    "downloading": TransferState.DOWNLOADING,
    "metaDL": TransferState.DOWNLOADING,
    "forcedMetaDL": TransferState.DOWNLOADING,
    "forcedDL": TransferState.DOWNLOADING,
    "stalledDL": TransferState.DOWNLOADING,
    "uploading": TransferState.SEEDING,
    "stalledUP": TransferState.SEEDING,
    "forcedUP": TransferState.SEEDING,
    "pausedDL": TransferState.PAUSED,
    "stoppedDL": TransferState.PAUSED,
    "pausedUP": TransferState.COMPLETED,
    "stoppedUP": TransferState.COMPLETED,
    "queuedDL": TransferState.QUEUED,
    "queuedUP": TransferState.QUEUED,
    "checkingDL": TransferState.QUEUED,
    "checkingUP": TransferState.QUEUED,
    "checkingResumeData": TransferState.QUEUED,
    "allocating": TransferState.QUEUED,
    "moving": TransferState.QUEUED,
    "error": TransferState.ERROR,
    "missingFiles": TransferState.ERROR,
}


def info_hash_from_magnet(link: str) -> str | None:
    """Extract the hex info hash from a magnet link, decoding base32 hashes."""
    match = _MAGNET_HASH_RE.search(link)
    if not match:
        return None
    value = match.group(1)
    if len(value) == 40:
        return value.lower()
    if len(value) == 32:
        try:
            return base64.b32decode(value.upper()).hex()
        except ValueError:
            return None
    return None


def info_hash_from_torrent(content: bytes) -> str | None:
    """Compute the info hash of a ``.torrent`` file: SHA-1 of its bencoded ``info`` dict."""
    marker = content.find(b"4:infod")
    if marker < 0:
        return None
    start = marker + len(b"4:info")
    try:
        end = _skip_bencoded(content, start)
    except (ValueError, IndexError):
        return None
    return hashlib.sha1(content[start:end]).hexdigest()


def _skip_bencoded(data: bytes, pos: int) -> int:
    """Return the offset just past the bencoded value starting at ``pos``."""
    lead = data[pos : pos + 1]
    if lead == b"i":
        return data.index(b"e", pos) + 1
    if lead in (b"l", b"d"):
        pos += 1
        while data[pos : pos + 1] != b"e":
            pos = _skip_bencoded(data, pos)
        return pos + 1
    if lead.isdigit():
        colon = data.index(b":", pos)
        return colon + 1 + int(data[pos:colon])
    raise ValueError(f"Invalid bencode at offset {pos}")


class QBittorrentClient(BaseDownloadClient):
    """qBittorrent WebUI API v2 adapter."""

    client_type = ClientType.BITTORRENT_REST_SSL
    display_name = "qBittorrent"

    def validate_config(self, config: ClientConfig) -> None:
        if not config.username or not config.password:
            raise ClientError(
                ErrorKind.INVALID_CONFIG, "Username and password are required for qBittorrent"
            )

    def validate_handle(self, handle: Any) -> str:
        text = str(handle).strip() if handle is not None else ""
        if not _HASH_RE.match(text):
            raise ClientError(
                ErrorKind.INVALID_TORRENT, f"Invalid torrent hash format: {handle!r}"
            )
        return text.lower()

    def _headers(self, config: ClientConfig) -> dict[str, str]:
        # The WebUI rejects requests whose Referer does not match its origin.
        return {"Referer": config.origin}

    async def _login(self, session: httpx.AsyncClient, config: ClientConfig) -> None:
        response = await self._request(
            session,
            config,
            "POST",
            "/api/v2/auth/login",
            data={"username": config.username, "password": config.password},
        )
        if response.text.strip() != "Ok." and "SID" not in response.cookies:
            raise ClientError(
                ErrorKind.AUTHENTICATION_FAILED,
                f"qBittorrent rejected the credentials at {config.url_for('/api/v2/auth/login')}",
                url=config.url_for("/api/v2/auth/login"),
            )

    async def _test_connection(
        self, session: httpx.AsyncClient, config: ClientConfig
    ) -> dict[str, Any]:
        await self._login(session, config)
        version = await self._request(session, config, "GET", "/api/v2/app/version")
        api = await self._request(session, config, "GET", "/api/v2/app/webapiVersion")
        return {"version": version.text.strip(), "api_version": api.text.strip()}

    async def _add(
        self,
        session: httpx.AsyncClient,
        config: ClientConfig,
        payload: Payload,
        options: dict[str, Any],
    ) -> str:
        await self._login(session, config)
        data: dict[str, str] = {"paused": "true" if options["paused"] else "false"}
        if options["category"]:
            data["category"] = options["category"]
        if options["download_directory"]:
            data["savepath"] = options["download_directory"]

        files = None
        expected_hash = None
        if payload.kind == PayloadKind.FILE:
            files = {
                "torrents": (
                    payload.filename or "upload.torrent",
                    payload.content,
                    "application/x-bittorrent",
                )
            }
            expected_hash = info_hash_from_torrent(payload.content)
        else:
            data["urls"] = payload.text
            if payload.kind == PayloadKind.MAGNET:
                expected_hash = info_hash_from_magnet(payload.text)

        response = await self._request(
            session, config, "POST", "/api/v2/torrents/add", data=data, files=files
        )
        if response.text.strip() == "Fails.":
            raise ClientError(
                ErrorKind.DUPLICATE_TORRENT,
                "qBittorrent refused the torrent (already present or invalid)",
            )

        if expected_hash:
            return expected_hash
        return await self._newest_hash(session, config)

    async def _newest_hash(self, session: httpx.AsyncClient, config: ClientConfig) -> str:
        """Find the most recently added torrent, for URL adds whose hash is unknown upfront."""
        response = await self._request(
            session,
            config,
            "GET",
            "/api/v2/torrents/info",
            params={"sort": "added_on", "reverse": "true", "limit": 1},
        )
        torrents = self._json_list(response)
        if not torrents:
            raise ClientError(ErrorKind.API_ERROR, "Torrent was added but could not be found")
        return str(torrents[0].get("hash", "")).lower()

    async def _get_status(
        self, session: httpx.AsyncClient, config: ClientConfig, handle: str
    ) -> TransferStatus:
        await self._login(session, config)
        response = await self._request(
            session, config, "GET", "/api/v2/torrents/info", params={"hashes": handle}
        )
        torrents = self._json_list(response)
        if not torrents:
            raise ClientError(ErrorKind.NOT_FOUND, f"Torrent {handle} not found", handle=handle)
        return _to_status(torrents[0])

    async def _list(
        self, session: httpx.AsyncClient, config: ClientConfig
    ) -> list[TransferStatus]:
        await self._login(session, config)
        response = await self._request(session, config, "GET", "/api/v2/torrents/info")
        return [_to_status(item) for item in self._json_list(response)]

    async def _remove(
        self,
        session: httpx.AsyncClient,
        config: ClientConfig,
        handle: str,
        delete_files: bool,
    ) -> None:
        await self._login(session, config)
        await self._request(
            session,
            config,
            "POST",
            "/api/v2/torrents/delete",
            data={"hashes": handle, "deleteFiles": "true" if delete_files else "false"},
        )

    async def _pause(self, session: httpx.AsyncClient, config: ClientConfig, handle: str) -> None:
        await self._control(session, config, handle, "pause", "stop")

    async def _resume(self, session: httpx.AsyncClient, config: ClientConfig, handle: str) -> None:
        await self._control(session, config, handle, "resume", "start")

    async def _control(
        self,
        session: httpx.AsyncClient,
        config: ClientConfig,
        handle: str,
        action: str,
        v5_action: str,
    ) -> None:
        await self._login(session, config)
        response = await self._request(
            session,
            config,
            "POST",
            f"/api/v2/torrents/{action}",
            data={"hashes": handle},
            check_status=False,
        )
        if response.status_code == 404:
            # qBittorrent 5 renamed pause/resume to stop/start.
            logger.debug("Falling back to /api/v2/torrents/%s", v5_action)
            await self._request(
                session, config, "POST", f"/api/v2/torrents/{v5_action}", data={"hashes": handle}
            )
        elif response.status_code >= 400:
            raise status_failure(response, config.url_for(f"/api/v2/torrents/{action}"))


def _to_status(item: Any) -> TransferStatus:
    if not isinstance(item, dict):
        raise ClientError(ErrorKind.PARSE_ERROR, "Torrent entry is not an object")
    state = _STATES.get(str(item.get("state", "")), TransferState.ERROR)
    progress = float(item.get("progress") or 0) * 100
    eta = item.get("eta")
    added_on = item.get("added_on")
    completion_on = item.get("completion_on")
    return TransferStatus(
        id=str(item.get("hash", "")).lower(),
        name=item.get("name", ""),
        state=state,
        progress=round(progress, 2),
        download_speed=int(item.get("dlspeed") or 0),
        upload_speed=int(item.get("upspeed") or 0),
        downloaded=int(item.get("downloaded") or 0),
        uploaded=int(item.get("uploaded") or 0),
        size=int(item.get("size") or 0),
        eta=eta if isinstance(eta, int) and 0 <= eta < 8640000 else None,
        ratio=item.get("ratio"),
        save_path=item.get("save_path"),
        category=item.get("category") or None,
        added_at=datetime.fromtimestamp(added_on, UTC) if added_on else None,
        completed_at=(
            datetime.fromtimestamp(completion_on, UTC)
            if completion_on and completion_on > 0
            else None
        ),
    )
