"""Async GraphQL client for the remote board platform (Monday.com API v2).

Provides BoardClient with token/API-version header injection, tenacity retry
on transient and rate-limit failures, and error normalization into the
BoardAPIError family. The client knows boards, items and column values only;
entity semantics live in the sync manager.

Operations: read item, read board columns, paginate board items, create item,
change multiple column values, archive item, and a `me` connection check.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.gymsync.boards.errors import (
    BoardAPIError,
    BoardItemNotFoundError,
    BoardRateLimitError,
    BoardTransientError,
)
from src.gymsync.config import ConfigurationError, Settings
from src.gymsync.core.monitoring import track_board_call

logger = structlog.get_logger(__name__)

DEFAULT_API_URL = "https://api.monday.com/v2"

_ITEM_NOT_FOUND_CODES = frozenset({"InvalidItemIdException", "ItemNotFoundException"})
_RESOURCE_NOT_FOUND_CODE = "ResourceNotFoundException"
_RATE_LIMIT_MARKERS = ("complexity", "rate limit", "ratelimit", "too many requests")

# ── GraphQL Documents ──────────────────────────────────────────────────────

_ITEM_FIELDS = """
    id
    name
    state
    board { id }
    column_values { id text value }
"""

GET_ITEM_QUERY = f"""
query ($ids: [ID!]) {{
    items(ids: $ids) {{ {_ITEM_FIELDS} }}
}}
"""

BOARD_COLUMNS_QUERY = """
query ($boardId: [ID!]) {
    boards(ids: $boardId) {
        id
        name
        columns { id title type settings_str }
    }
}
"""

FIRST_PAGE_QUERY = f"""
query ($boardId: [ID!], $limit: Int!) {{
    boards(ids: $boardId) {{
        items_page(limit: $limit) {{
            cursor
            items {{ {_ITEM_FIELDS} }}
        }}
    }}
}}
"""

NEXT_PAGE_QUERY = f"""
query ($cursor: String!, $limit: Int!) {{
    next_items_page(cursor: $cursor, limit: $limit) {{
        cursor
        items {{ {_ITEM_FIELDS} }}
    }}
}}
"""

CREATE_ITEM_MUTATION = """
mutation ($boardId: ID!, $itemName: String!, $columnValues: JSON) {
    create_item(board_id: $boardId, item_name: $itemName, column_values: $columnValues) {
        id
    }
}
"""

UPDATE_ITEM_MUTATION = """
mutation ($boardId: ID!, $itemId: ID!, $columnValues: JSON!) {
    change_multiple_column_values(board_id: $boardId, item_id: $itemId, column_values: $columnValues) {
        id
    }
}
"""

ARCHIVE_ITEM_MUTATION = """
mutation ($itemId: ID!) {
    archive_item(item_id: $itemId) {
        id
    }
}
"""

ME_QUERY = """
query {
    me { id name email }
}
"""


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "board.retrying",
        attempt=retry_state.attempt_number,
        error=str(exc),
        error_type=type(exc).__name__ if exc else None,
    )


def _error_code(error: dict[str, Any]) -> str:
    extensions = error.get("extensions") or {}
    return str(extensions.get("code") or error.get("error_code") or "")


def _is_item_not_found(error: Any, item_id: str) -> bool:
    if not isinstance(error, dict):
        return False
    code = _error_code(error)
    if code in _ITEM_NOT_FOUND_CODES:
        return True
    if code != _RESOURCE_NOT_FOUND_CODE:
        return False
    extensions = error.get("extensions") or {}
    data = extensions.get("error_data") or error.get("error_data") or {}
    if not isinstance(data, dict):
        return False
    if str(data.get("resource_type", "")).lower() == "item":
        return True
    return item_id in (str(data.get("item_id")), str(data.get("resource_id")))


class BoardClient:
    """Async client for the board platform's GraphQL API.

    Args:
        api_token: Platform API token; required.
        api_url: GraphQL endpoint.
        api_version: Value sent in the API-Version header.
        timeout: Per-request timeout in seconds.
        retry_attempts: Total attempts for transient/rate-limit failures.
        retry_backoff: Base seconds for exponential backoff between attempts.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
        before_retry: Awaited ahead of every retry attempt; the app passes the
            shared rate limiter's acquire so retries count toward the quota.
    """

    def __init__(
        self,
        api_token: str,
        api_url: str = DEFAULT_API_URL,
        api_version: str = "2023-10",
        timeout: float = 30.0,
        retry_attempts: int = 3,
        retry_backoff: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
        before_retry: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        if not api_token:
            raise ConfigurationError("Board API token is required")
        self._api_url = api_url
        self._headers = {
            "Authorization": api_token,
            "API-Version": api_version,
            "Content-Type": "application/json",
        }
        self._timeout = timeout
        self._retry_attempts = max(1, retry_attempts)
        self._retry_backoff = retry_backoff
        self._transport = transport
        self._before_retry = before_retry
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        before_retry: Callable[[], Awaitable[None]] | None = None,
    ) -> BoardClient:
        return cls(
            api_token=settings.require_api_token(),
            api_url=settings.BOARD_API_URL,
            api_version=settings.BOARD_API_VERSION,
            timeout=settings.SYNC_CALL_TIMEOUT_SECONDS,
            retry_attempts=settings.SYNC_RETRY_ATTEMPTS,
            retry_backoff=settings.SYNC_RETRY_BACKOFF_SECONDS,
            before_retry=before_retry,
        )

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=self._headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # ── Transport ───────────────────────────────────────────────────────

    def _retrying(self) -> AsyncRetrying:
        backoff = self._retry_backoff
        return AsyncRetrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=backoff, min=backoff, max=backoff * 10),
            retry=retry_if_exception_type(BoardTransientError),
            before_sleep=_log_retry,
            reraise=True,
        )

    async def _execute(
        self,
        operation: str,
        query: str,
        variables: dict[str, Any] | None = None,
        item_id: str | None = None,
    ) -> dict[str, Any]:
        """Run a GraphQL document with retries and return its ``data`` object."""
        async with track_board_call(operation):
            async for attempt in self._retrying():
                with attempt:
                    if self._before_retry and attempt.retry_state.attempt_number > 1:
                        await self._before_retry()
                    data = await self._post(query, variables, item_id)
        return data

    async def _post(
        self,
        query: str,
        variables: dict[str, Any] | None,
        item_id: str | None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        try:
            response = await self._get_client().post(self._api_url, json=payload)
        except httpx.TransportError as exc:
            raise BoardTransientError(f"Board API unreachable: {exc}") from exc

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise BoardRateLimitError(
                "Board API rate limit exceeded",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        if response.status_code >= 500:
            raise BoardTransientError(f"Board API returned {response.status_code}")

        try:
            body = response.json()
        except ValueError as exc:
            if response.status_code >= 400:
                raise BoardAPIError(f"Board API returned {response.status_code}") from exc
            raise BoardTransientError("Board API returned a non-JSON body") from exc

        errors = body.get("errors")
        if not errors and (body.get("error_message") or body.get("error_code")):
            errors = [
                {
                    "message": body.get("error_message", ""),
                    "error_code": body.get("error_code"),
                    "error_data": body.get("error_data"),
                }
            ]
        if errors:
            raise self._classify_errors(errors, item_id)
        if response.status_code >= 400:
            raise BoardAPIError(f"Board API returned {response.status_code}")

        return body.get("data") or {}

    @staticmethod
    def _classify_errors(errors: list[dict[str, Any]], item_id: str | None) -> BoardAPIError:
        """Map GraphQL error objects onto the normalized error family.

        An item counts as gone only when the error code says so for that
        item; free-text "not found" messages (boards, users, columns) stay
        generic API errors.
        """
        message = json.dumps(errors, default=str)
        lowered = message.lower()
        if any(marker in lowered for marker in _RATE_LIMIT_MARKERS):
            return BoardRateLimitError(f"Board API rate limited: {message}")
        if item_id is not None and any(_is_item_not_found(error, item_id) for error in errors):
            return BoardItemNotFoundError(item_id, f"Board item {item_id} not found: {message}")
        return BoardAPIError(f"Board API error: {message}")

    # ── Reads ───────────────────────────────────────────────────────────

    async def get_item(self, item_id: str) -> dict[str, Any]:
        """Fetch one item with its column values.

        Raises:
            BoardItemNotFoundError: If the item does not exist.
        """
        data = await self._execute("get_item", GET_ITEM_QUERY, {"ids": [item_id]}, item_id=item_id)
        items = data.get("items") or []
        if not items:
            raise BoardItemNotFoundError(item_id)
        return items[0]

    async def get_board_columns(self, board_id: str) -> list[dict[str, Any]]:
        """Return the board's column definitions (id, title, type, settings_str)."""
        data = await self._execute("get_board_columns", BOARD_COLUMNS_QUERY, {"boardId": [board_id]})
        boards = data.get("boards") or []
        return boards[0].get("columns", []) if boards else []

    async def iter_board_items(
        self,
        board_id: str,
        page_size: int = 100,
        before_request: Callable[[], Awaitable[None]] | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield every item on a board, following items_page cursors.

        before_request is awaited ahead of each page fetch so callers can pace
        pagination with their rate limiter.
        """
        if before_request:
            await before_request()
        data = await self._execute(
            "list_items", FIRST_PAGE_QUERY, {"boardId": [board_id], "limit": page_size}
        )
        boards = data.get("boards") or []
        page = boards[0].get("items_page", {}) if boards else {}

        while True:
            for item in page.get("items") or []:
                yield item
            cursor = page.get("cursor")
            if not cursor:
                break
            if before_request:
                await before_request()
            data = await self._execute(
                "list_items", NEXT_PAGE_QUERY, {"cursor": cursor, "limit": page_size}
            )
            page = data.get("next_items_page") or {}

    async def test_connection(self) -> dict[str, Any]:
        """Return the authenticated account (`me`); raises on failure."""
        data = await self._execute("me", ME_QUERY)
        me = data.get("me") or {}
        logger.info("board.connection_ok", user_id=me.get("id"))
        return me

    # ── Mutations ───────────────────────────────────────────────────────

    async def create_item(
        self, board_id: str, item_name: str, column_values: dict[str, Any]
    ) -> str:
        """Create an item and return its id."""
        data = await self._execute(
            "create_item",
            CREATE_ITEM_MUTATION,
            {
                "boardId": board_id,
                "itemName": item_name,
                "columnValues": json.dumps(column_values),
            },
        )
        created = data.get("create_item") or {}
        if not created.get("id"):
            raise BoardAPIError(f"create_item on board {board_id} returned no id")
        item_id = str(created["id"])
        logger.info("board.item_created", board_id=board_id, item_id=item_id)
        return item_id

    async def update_item(
        self, board_id: str, item_id: str, column_values: dict[str, Any]
    ) -> str:
        """Change multiple column values on an existing item.

        Raises:
            BoardItemNotFoundError: If the item no longer exists.
        """
        data = await self._execute(
            "update_item",
            UPDATE_ITEM_MUTATION,
            {
                "boardId": board_id,
                "itemId": item_id,
                "columnValues": json.dumps(column_values),
            },
            item_id=item_id,
        )
        updated = data.get("change_multiple_column_values")
        if not updated:
            raise BoardItemNotFoundError(item_id)
        logger.info(
            "board.item_updated",
            board_id=board_id,
            item_id=item_id,
            columns=list(column_values.keys()),
        )
        return str(updated.get("id", item_id))

    async def archive_item(self, item_id: str) -> str:
        data = await self._execute(
            "archive_item", ARCHIVE_ITEM_MUTATION, {"itemId": item_id}, item_id=item_id
        )
        archived = data.get("archive_item")
        if not archived:
            raise BoardItemNotFoundError(item_id)
        logger.info("board.item_archived", item_id=item_id)
        return str(archived.get("id", item_id))
