"""Normalized errors raised by the remote board client.

The sync manager branches on these: only BoardItemNotFoundError triggers the
update-to-create fallback, and only the transient family is retried.
"""

from __future__ import annotations


class BoardAPIError(Exception):
    """Base exception for remote board API errors."""


class BoardItemNotFoundError(BoardAPIError):
    """The addressed item does not exist (deleted or never created)."""

    def __init__(self, item_id: str, message: str | None = None) -> None:
        super().__init__(message or f"Board item {item_id} not found")
        self.item_id = item_id


class BoardTransientError(BoardAPIError):
    """Network failure, timeout or 5xx; safe to retry later."""


class BoardRateLimitError(BoardTransientError):
    """The platform rejected the call for rate or complexity budget reasons."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after
