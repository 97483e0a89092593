"""Models shared across the package."""

from snatcharr.models.common import (
    DownloadProtocol,
    ListFilter,
    Payload,
    PayloadKind,
    SearchResult,
    TransferState,
    TransferStatus,
    apply_filter,
)

__all__ = [
    "DownloadProtocol",
    "ListFilter",
    "Payload",
    "PayloadKind",
    "SearchResult",
    "TransferState",
    "TransferStatus",
    "apply_filter",
]
