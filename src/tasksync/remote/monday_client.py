"""
Async monday.com GraphQL client
Pattern: httpx.AsyncClient with retry, rate-limit backoff and typed errors

Every call goes through _execute_with_retry:
- retryable failures (network, timeout, 5xx) back off exponentially from
  retry_delay (1s, 2s, ...) for up to retry_attempts attempts
- HTTP 429 (or a GraphQL rate/complexity error) waits rate_limit_delay
  (60s by default, or the server's Retry-After)
- auth, not-found and request errors are raised immediately

Board items map to task dicts through the configured column mapping:

    item name              -> title
    task_id column text    -> id
    status / priority /
    description columns    -> status / priority / description
    item id                -> mondayItemId
"""

from typing import Optional, Dict, Any, List, Callable, Awaitable, TypeVar
import asyncio
import json
import logging

import httpx

from ..config import SyncConfig, DEFAULT_COLUMN_MAPPING
from ..errors import (
    ConfigurationError,
    RemoteError,
    RemoteConnectionError,
    RateLimitError,
    RemoteAuthError,
    RemoteRequestError,
    RemoteNotFoundError,
)
from ..sync.protocol import RemoteBackend, TaskSnapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")

API_VERSION = "2024-01"
PAGE_SIZE = 500

_ITEM_FIELDS = "id name column_values { id text value }"

ME_QUERY = "query { me { id } }"

ITEMS_QUERY = f"""
query ($ids: [ID!]) {{
  items(ids: $ids) {{ {_ITEM_FIELDS} }}
}}
"""

BOARD_ITEMS_QUERY = f"""
query ($boardId: [ID!], $limit: Int!) {{
  boards(ids: $boardId) {{
    items_page(limit: $limit) {{ cursor items {{ {_ITEM_FIELDS} }} }}
  }}
}}
"""

NEXT_ITEMS_QUERY = f"""
query ($cursor: String!, $limit: Int!) {{
  next_items_page(cursor: $cursor, limit: $limit) {{ cursor items {{ {_ITEM_FIELDS} }} }}
}}
"""

CREATE_ITEM_MUTATION = """
mutation ($boardId: ID!, $name: String!, $columnValues: JSON) {
  create_item(board_id: $boardId, item_name: $name, column_values: $columnValues) { id }
}
"""

UPDATE_ITEM_MUTATION = """
mutation ($boardId: ID!, $itemId: ID!, $columnValues: JSON!) {
  change_multiple_column_values(board_id: $boardId, item_id: $itemId, column_values: $columnValues) { id }
}
"""

DELETE_ITEM_MUTATION = """
mutation ($itemId: ID!) {
  delete_item(item_id: $itemId) { id }
}
"""

_RATE_LIMIT_MARKERS = ("rate limit", "complexity", "too many requests")


class MondayClient(RemoteBackend):
    """
    RemoteBackend for one monday.com board.

    Keeps a task id -> item id map, filled from board loads and creates.
    """

    def __init__(
        self,
        config: SyncConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_delay: float = 1.0,
        rate_limit_delay: float = 60.0,
    ):
        """
        Args:
            config: Sync settings (api_url, api_key, board_id, timeout, retry_attempts)
            transport: Custom httpx transport (tests pass httpx.MockTransport)
            retry_delay: First backoff delay in seconds
            rate_limit_delay: Wait after a rate-limit rejection in seconds
        """
        self.config = config
        self.api_url = config.api_url
        self.board_id = config.board_id
        self.column_mapping = dict(DEFAULT_COLUMN_MAPPING)
        self.column_mapping.update(config.column_mapping or {})
        self.retry_attempts = max(1, int(config.retry_attempts))
        self.retry_delay = retry_delay
        self.rate_limit_delay = rate_limit_delay

        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._item_ids: Dict[str, str] = {}
        self._items_loaded = False

    async def __aenter__(self):
        """Async context manager entry"""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.close()

    async def initialize(self) -> None:
        """Create the HTTP client. Raises ConfigurationError without an API key."""
        if self._client is not None:
            return
        if not self.config.api_key:
            raise ConfigurationError("Monday.com API key is required")

        self._client = httpx.AsyncClient(
            headers={
                "Authorization": self.config.api_key,
                "Content-Type": "application/json",
                "API-Version": API_VERSION,
            },
            timeout=self.config.timeout,
            transport=self._transport,
        )
        logger.debug(f"Monday.com client ready for board {self.board_id}")

    async def close(self) -> None:
        """Close HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """POST one GraphQL document and return its data, raising typed errors."""
        if self._client is None:
            await self.initialize()

        try:
            response = await self._client.post(
                self.api_url,
                json={"query": query, "variables": variables or {}},
            )
        except httpx.TimeoutException as e:
            raise RemoteConnectionError(f"Request timed out: {e}")
        except httpx.HTTPError as e:
            raise RemoteConnectionError(f"Connection failed: {e}")

        status = response.status_code
        if status == 429:
            raise RateLimitError(retry_after=_retry_after(response))
        if status in (401, 403):
            raise RemoteAuthError(f"Unauthorized ({status})", status_code=status)
        if status == 404:
            raise RemoteNotFoundError("Not found", status_code=status)
        if status >= 500:
            raise RemoteConnectionError(f"Server error ({status})", status_code=status)
        if status >= 400:
            raise RemoteRequestError(f"Bad request ({status}): {response.text[:200]}", status_code=status)

        try:
            payload = response.json()
        except ValueError:
            raise RemoteConnectionError("Invalid JSON in response", status_code=status)

        errors = payload.get("errors") or payload.get("error_message")
        if errors:
            message = _error_message(errors)
            if any(marker in message.lower() for marker in _RATE_LIMIT_MARKERS):
                raise RateLimitError(message)
            raise RemoteRequestError(f"GraphQL error: {message}", status_code=status)

        return payload.get("data") or {}

    async def _execute_with_retry(self, operation: Callable[[], Awaitable[T]]) -> T:
        last_error: Optional[RemoteError] = None

        for attempt in range(1, self.retry_attempts + 1):
            try:
                return await operation()
            except RateLimitError as e:
                last_error = e
                wait = e.retry_after if e.retry_after is not None else self.rate_limit_delay
            except RemoteError as e:
                if not e.retryable:
                    raise
                last_error = e
                wait = self.retry_delay * (2 ** (attempt - 1))

            if attempt < self.retry_attempts:
                logger.warning(
                    f"Monday.com request failed (attempt {attempt}/{self.retry_attempts}), "
                    f"retrying in {wait}s: {last_error}"
                )
                await asyncio.sleep(wait)

        raise last_error

    async def _request(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self._execute_with_retry(lambda: self._graphql(query, variables))

    # ------------------------------------------------------------------
    # RemoteBackend
    # ------------------------------------------------------------------

    async def test_connection(self) -> bool:
        try:
            data = await self._graphql(ME_QUERY)
        except (RemoteError, ConfigurationError) as e:
            logger.debug(f"Monday.com connection test failed: {e}")
            return False
        return bool(data.get("me"))

    async def get_item(self, remote_id: str) -> Dict[str, Any]:
        data = await self._request(ITEMS_QUERY, {"ids": [str(remote_id)]})
        items = data.get("items") or []
        if not items:
            raise RemoteNotFoundError(f"Item {remote_id} not found")
        return items[0]

    async def load_all_tasks(self) -> List[TaskSnapshot]:
        """Load every item on the board, following items_page cursors."""
        data = await self._request(BOARD_ITEMS_QUERY, {"boardId": [self.board_id], "limit": PAGE_SIZE})
        boards = data.get("boards") or []
        if not boards:
            raise RemoteNotFoundError(f"Board {self.board_id} not found")

        page = boards[0].get("items_page") or {}
        items = list(page.get("items") or [])
        cursor = page.get("cursor")

        while cursor:
            data = await self._request(NEXT_ITEMS_QUERY, {"cursor": cursor, "limit": PAGE_SIZE})
            page = data.get("next_items_page") or {}
            items.extend(page.get("items") or [])
            cursor = page.get("cursor")

        tasks = [self.item_to_task(item) for item in items]
        self._item_ids = {t["id"]: t["mondayItemId"] for t in tasks if "id" in t}
        self._items_loaded = True

        logger.debug(f"Loaded {len(tasks)} items from board {self.board_id}")
        return tasks

    async def create_or_update_task(self, task: TaskSnapshot) -> str:
        task_id = str(task["id"])
        remote_id = await self._resolve_item_id(task_id, task.get("mondayItemId"))
        column_values = json.dumps(self.task_to_column_values(task))

        if remote_id:
            await self._request(UPDATE_ITEM_MUTATION, {
                "boardId": self.board_id,
                "itemId": remote_id,
                "columnValues": column_values,
            })
            logger.debug(f"Updated item {remote_id} for task {task_id}")
            return remote_id

        data = await self._request(CREATE_ITEM_MUTATION, {
            "boardId": self.board_id,
            "name": str(task.get("title") or task_id),
            "columnValues": column_values,
        })
        remote_id = str(data["create_item"]["id"])
        self._item_ids[task_id] = remote_id
        logger.info(f"Created item {remote_id} for task {task_id}")
        return remote_id

    async def delete_task(self, task_id: str) -> None:
        remote_id = await self._resolve_item_id(str(task_id))
        if not remote_id:
            logger.debug(f"Task {task_id} has no remote item, nothing to delete")
            return

        await self._request(DELETE_ITEM_MUTATION, {"itemId": remote_id})
        self._item_ids.pop(str(task_id), None)
        logger.info(f"Deleted item {remote_id} for task {task_id}")

    async def update_task_status(self, task_id: str, status: str) -> None:
        remote_id = await self._resolve_item_id(str(task_id))
        if not remote_id:
            raise RemoteNotFoundError(f"Task {task_id} has no remote item")

        column_values = {self.column_mapping["status"]: {"label": str(status)}}
        await self._request(UPDATE_ITEM_MUTATION, {
            "boardId": self.board_id,
            "itemId": remote_id,
            "columnValues": json.dumps(column_values),
        })

    async def _resolve_item_id(self, task_id: str, hint: Optional[str] = None) -> Optional[str]:
        if hint:
            self._item_ids[task_id] = str(hint)
            return str(hint)
        if task_id not in self._item_ids and not self._items_loaded:
            await self.load_all_tasks()
        return self._item_ids.get(task_id)

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def item_to_task(self, item: Dict[str, Any]) -> TaskSnapshot:
        """Map a raw board item to a task dict."""
        columns = {c.get("id"): c for c in item.get("column_values") or []}
        task: TaskSnapshot = {"mondayItemId": str(item["id"])}
        if item.get("name") is not None:
            task["title"] = item["name"]

        task_id_column = columns.get(self.column_mapping["task_id"])
        if task_id_column and task_id_column.get("text"):
            task["id"] = str(task_id_column["text"])

        for field_name in ("status", "priority", "description"):
            column = columns.get(self.column_mapping[field_name])
            if column and column.get("text"):
                task[field_name] = column["text"]

        return task

    def task_to_column_values(self, task: TaskSnapshot) -> Dict[str, Any]:
        """Column values payload for create/update mutations."""
        mapping = self.column_mapping
        values: Dict[str, Any] = {mapping["task_id"]: str(task["id"])}
        if task.get("status"):
            values[mapping["status"]] = {"label": str(task["status"])}
        if task.get("priority"):
            values[mapping["priority"]] = {"label": str(task["priority"])}
        if task.get("description"):
            values[mapping["description"]] = {"text": str(task["description"])}
        if task.get("title"):
            values["name"] = str(task["title"])
        return values


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _error_message(errors: Any) -> str:
    if isinstance(errors, list):
        return "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
    return str(errors)


__all__ = ["MondayClient"]
