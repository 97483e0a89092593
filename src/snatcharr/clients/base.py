"""Base class shared by all download client adapters."""

from __future__ import annotations

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from snatcharr.errors import ErrorKind, Failure, Result
from snatcharr.models.common import (
    ListFilter,
    Payload,
    PayloadKind,
    TransferStatus,
    apply_filter,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from snatcharr.config import ClientConfig, ClientType

logger = logging.getLogger(__name__)


class ClientError(Exception):
    """Carries a classified failure out of adapter internals.

    Raised inside adapters and converted to a failed :class:`Result` by the
    public operations, so it never reaches callers.
    """

    def __init__(self, kind: ErrorKind, message: str, **details: Any) -> None:
        super().__init__(message)
        self.failure = Failure(kind=kind, message=message, details=details)


class RequestCounter:
    """Thread-safe monotonic counter for request tags and JSON-RPC ids."""

    def __init__(self, start: int = 1) -> None:
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            return next(self._counter)


def status_failure(response: httpx.Response, url: str) -> ClientError:
    """Classify an HTTP error status."""
    code = response.status_code
    if code in (401, 403):
        return ClientError(
            ErrorKind.AUTHENTICATION_FAILED,
            f"Authentication failed for {url} (HTTP {code})",
            url=url,
            status_code=code,
        )
    if code == 404:
        return ClientError(ErrorKind.NOT_FOUND, f"Not found: {url}", url=url, status_code=code)
    if code == 429:
        return ClientError(
            ErrorKind.RATE_LIMITED,
            f"Rate limited by {url}",
            url=url,
            status_code=code,
            retry_after=response.headers.get("retry-after"),
        )
    return ClientError(
        ErrorKind.API_ERROR,
        f"HTTP {code} from {url}",
        url=url,
        status_code=code,
    )


def transport_failure(exc: httpx.TransportError, url: str) -> ClientError:
    """Classify a transport-level exception."""
    if isinstance(exc, httpx.TimeoutException):
        return ClientError(ErrorKind.TIMEOUT, f"Request to {url} timed out", url=url)
    if isinstance(exc, httpx.ConnectError):
        return ClientError(
            ErrorKind.CONNECTION_FAILED, f"Could not connect to {url}: {exc}", url=url
        )
    return ClientError(ErrorKind.NETWORK_ERROR, f"Network error talking to {url}: {exc}", url=url)


def _shape_failure(response: httpx.Response, expected: str, data: Any) -> ClientError:
    url = str(response.request.url) if response.request else ""
    return ClientError(
        ErrorKind.PARSE_ERROR,
        f"Expected {expected} from {url}, got {type(data).__name__}",
        url=url,
    )


class BaseDownloadClient(ABC):
    """Uniform lifecycle over one download client wire protocol.

    Adapters hold no per-client state: every operation takes the
    :class:`~snatcharr.config.ClientConfig` it should talk to and opens a
    short-lived HTTP session for that call. Session tokens a backend hands
    out are therefore re-acquired on demand.

    Every public operation validates the configuration and, where one is
    given, the handle before anything goes over the wire, and returns a
    :class:`~snatcharr.errors.Result` rather than raising.

    Subclasses implement the underscore-prefixed hooks and may raise
    :class:`ClientError` from them.
    """

    client_type: ClassVar[ClientType]
    supports_magnets: ClassVar[bool] = True
    display_name: ClassVar[str] = "Download client"

    # --- Validation hooks ---

    def validate_config(self, config: ClientConfig) -> None:
        """Check required credentials locally.

        Raises:
            ClientError: ``invalid_config`` when something required is missing
        """

    def validate_handle(self, handle: Any) -> Any:
        """Check a handle's shape and return it in the backend's native form.

        Raises:
            ClientError: ``invalid_torrent`` for malformed handles
        """
        text = str(handle).strip() if handle is not None else ""
        if not text:
            raise ClientError(ErrorKind.INVALID_TORRENT, "Transfer handle must not be empty")
        return text

    def validate_payload(self, payload: Payload) -> None:
        """Reject payload kinds this backend cannot accept.

        Raises:
            ClientError: ``invalid_torrent`` for unsupported payloads
        """
        if payload.kind == PayloadKind.MAGNET and not self.supports_magnets:
            raise ClientError(
                ErrorKind.INVALID_TORRENT,
                f"{self.display_name} does not support magnet links (Usenet client)",
            )
        if not payload.data:
            raise ClientError(ErrorKind.INVALID_TORRENT, "Payload must not be empty")

    # --- Public operations ---

    async def test_connection(self, config: ClientConfig) -> Result[dict[str, Any]]:
        """Verify the backend is reachable and the credentials work.

        Returns:
            A result holding backend information such as its version
        """
        return await self._run(config, self._test_connection)

    async def add(
        self,
        config: ClientConfig,
        payload: Payload,
        *,
        category: str | None = None,
        download_directory: str | None = None,
        paused: bool = False,
    ) -> Result[str]:
        """Hand a release to the backend.

        Args:
            config: Client to talk to
            payload: Magnet link, file bytes or URL
            category: Category/label, defaults to the configured one
            download_directory: Target directory, defaults to the configured one
            paused: Add in a paused state

        Returns:
            A result holding the transfer handle
        """
        try:
            self.validate_payload(payload)
        except ClientError as e:
            return Result.from_failure(e.failure)
        options = {
            "category": category or config.category,
            "download_directory": download_directory or config.download_directory,
            "paused": paused,
        }
        return await self._run(config, self._add, payload, options)

    async def get_status(self, config: ClientConfig, handle: Any) -> Result[TransferStatus]:
        return await self._run_with_handle(config, handle, self._get_status)

    async def list_transfers(
        self,
        config: ClientConfig,
        *,
        status_filter: ListFilter | None = None,
        ids: Iterable[Any] | None = None,
    ) -> Result[list[TransferStatus]]:
        """List transfers, optionally narrowed by state filter and handles."""
        result = await self._run(config, self._list)
        if not result.ok:
            return result
        wanted = [str(i) for i in ids] if ids is not None else None
        return Result.success(apply_filter(result.value or [], status_filter, wanted))

    async def remove(
        self, config: ClientConfig, handle: Any, *, delete_files: bool = False
    ) -> Result[None]:
        return await self._run_with_handle(config, handle, self._remove, delete_files)

    async def pause(self, config: ClientConfig, handle: Any) -> Result[None]:
        return await self._run_with_handle(config, handle, self._pause)

    async def resume(self, config: ClientConfig, handle: Any) -> Result[None]:
        return await self._run_with_handle(config, handle, self._resume)

    # --- Backend hooks ---

    @abstractmethod
    async def _test_connection(
        self, session: httpx.AsyncClient, config: ClientConfig
    ) -> dict[str, Any]: ...

    @abstractmethod
    async def _add(
        self,
        session: httpx.AsyncClient,
        config: ClientConfig,
        payload: Payload,
        options: dict[str, Any],
    ) -> str: ...

    @abstractmethod
    async def _get_status(
        self, session: httpx.AsyncClient, config: ClientConfig, handle: Any
    ) -> TransferStatus: ...

    @abstractmethod
    async def _list(
        self, session: httpx.AsyncClient, config: ClientConfig
    ) -> list[TransferStatus]: ...

    @abstractmethod
    async def _remove(
        self,
        session: httpx.AsyncClient,
        config: ClientConfig,
        handle: Any,
        delete_files: bool,
    ) -> None: ...

    @abstractmethod
    async def _pause(
        self, session: httpx.AsyncClient, config: ClientConfig, handle: Any
    ) -> None: ...

    @abstractmethod
    async def _resume(
        self, session: httpx.AsyncClient, config: ClientConfig, handle: Any
    ) -> None: ...

    # --- HTTP plumbing ---

    def _session(self, config: ClientConfig) -> httpx.AsyncClient:
        """Create the HTTP session for one operation.

        The session's base URL includes the configured URL prefix, so
        adapters pass endpoint paths only.
        """
        return httpx.AsyncClient(
            base_url=config.base_url,
            headers=self._headers(config),
            auth=self._auth(config),
            timeout=httpx.Timeout(config.read_timeout, connect=config.connect_timeout),
            verify=bool(config.options.get("verify_tls", True)),
        )

    def _headers(self, config: ClientConfig) -> dict[str, str]:
        return {}

    def _auth(self, config: ClientConfig) -> httpx.Auth | None:
        return None

    async def _run(
        self,
        config: ClientConfig,
        operation: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> Result[Any]:
        try:
            self.validate_config(config)
            async with self._session(config) as session:
                value = await operation(session, config, *args)
        except ClientError as e:
            logger.debug("%s %s failed: %s", self.display_name, config.name, e.failure)
            return Result.from_failure(e.failure)
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            # Fields of an unexpected type or shape deep inside a response body.
            logger.debug("%s %s returned an unexpected body: %r", self.display_name, config.name, e)
            return Result.fail(
                ErrorKind.PARSE_ERROR,
                f"Malformed response from {config.base_url}: {e}",
                url=config.base_url,
            )
        return Result.success(value)

    async def _run_with_handle(
        self,
        config: ClientConfig,
        handle: Any,
        operation: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> Result[Any]:
        try:
            self.validate_config(config)
            native = self.validate_handle(handle)
        except ClientError as e:
            return Result.from_failure(e.failure)
        return await self._run(config, operation, native, *args)

    async def _request(
        self,
        session: httpx.AsyncClient,
        config: ClientConfig,
        method: str,
        path: str,
        *,
        check_status: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make an HTTP request with retry on connection failures.

        Connection errors are retried with exponential backoff up to the
        client's ``max_retries``; everything else fails immediately.

        Raises:
            ClientError: On transport failures, and on HTTP error statuses
                when ``check_status`` is set
        """
        url = config.url_for(path)

        @retry(
            stop=stop_after_attempt(config.max_retries),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
            retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
            before_sleep=self._log_retry,
            reraise=True,
        )
        async def _do_request() -> httpx.Response:
            return await session.request(method, path, **kwargs)

        try:
            response = await _do_request()
        except httpx.TransportError as e:
            raise transport_failure(e, url) from e

        if check_status and response.status_code >= 400:
            raise status_failure(response, url)
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        """Decode a JSON body.

        Raises:
            ClientError: ``parse_error`` when the body is not JSON
        """
        try:
            return response.json()
        except ValueError as e:
            url = str(response.request.url) if response.request else ""
            raise ClientError(
                ErrorKind.PARSE_ERROR, f"Malformed JSON from {url}", url=url
            ) from e

    @classmethod
    def _json_list(cls, response: httpx.Response) -> list[Any]:
        """Decode a JSON body that must be an array.

        Raises:
            ClientError: ``parse_error`` when the body is not a JSON array
        """
        data = cls._json(response)
        if not isinstance(data, list):
            raise _shape_failure(response, "a list", data)
        return data

    @classmethod
    def _json_object(cls, response: httpx.Response) -> dict[str, Any]:
        """Decode a JSON body that must be an object.

        Raises:
            ClientError: ``parse_error`` when the body is not a JSON object
        """
        data = cls._json(response)
        if not isinstance(data, dict):
            raise _shape_failure(response, "an object", data)
        return data

    def _log_retry(self, retry_state: Any) -> None:
        """Log retry attempts.

        Args:
            retry_state: Tenacity retry state object
        """
        logger.warning(
            "%s retry attempt %d after error: %s",
            self.display_name,
            retry_state.attempt_number,
            retry_state.outcome.exception() if retry_state.outcome else "unknown",
        )
