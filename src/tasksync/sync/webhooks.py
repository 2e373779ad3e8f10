"""
Inbound webhook ingestion for monday.com board events.

Wire contract (POST /webhooks/monday):

    {"challenge": "<token>"}          -> 200 {"challenge": "<token>"}
    {"event": {...}} valid signature  -> 200 {"status": "processed"}
    {"event": {...}} bad signature    -> 401 {"error": "Invalid signature"}
    anything else                     -> 400 {"error": "Invalid payload"}
    unhandled internal failure        -> 500 {"error": "Internal server error"}

Signatures: when ``webhook_secret`` is configured, the Authorization header
must carry the hex HMAC-SHA256 of the raw request body (optionally prefixed
with ``sha256=``). Without a secret the handler runs in permissive mode and
accepts every event, logging a warning once.

The handler never retries; redelivery is governed by the remote service.
"""

from typing import Optional, Dict, Any, Tuple, TYPE_CHECKING
import hashlib
import hmac
import logging

from ..errors import ValidationError
from ..events import RemoteChangeEvent
from ..utils import canonical_json
from .protocol import TaskSnapshot

if TYPE_CHECKING:
    from .engine import SyncEngine

logger = logging.getLogger(__name__)

WebhookResponse = Tuple[int, Dict[str, Any]]

# Columns whose value maps straight onto a task field
_FIELD_COLUMNS = ("status", "priority", "description")


def _column_text(value: Any) -> Any:
    """Plain value of a webhook column payload (status labels, text columns)."""
    if isinstance(value, dict):
        label = value.get("label")
        if isinstance(label, dict) and "text" in label:
            return label["text"]
        if "text" in value:
            return value["text"]
        if "value" in value:
            return value["value"]
    return value


class WebhookHandler:
    """
    Translates remote board events into ChangeTracker observations.

    Bound to one SyncEngine; reads its config, tracker, stores, bus and
    telemetry.
    """

    def __init__(self, engine: "SyncEngine"):
        self.engine = engine
        self._warned_permissive = False

    async def handle_webhook(
        self,
        body: Any,
        authorization: Optional[str] = None,
        raw_body: Optional[bytes] = None,
    ) -> WebhookResponse:
        """
        Handle one inbound webhook request.

        Args:
            body: Parsed JSON body
            authorization: Value of the Authorization header, if any
            raw_body: Exact request bytes, used for signature verification

        Returns:
            (HTTP status, JSON response body)
        """
        try:
            if isinstance(body, dict) and "challenge" in body:
                logger.info("Webhook challenge received")
                return 200, {"challenge": body["challenge"]}

            event = body.get("event") if isinstance(body, dict) else None
            if not isinstance(event, dict):
                logger.warning("Invalid webhook payload received")
                return 400, {"error": "Invalid payload"}

            if raw_body is None:
                raw_body = canonical_json(body).encode("utf-8")
            if not self.verify_webhook_signature(raw_body, authorization):
                logger.warning("Webhook signature verification failed")
                return 401, {"error": "Invalid signature"}

            await self.process_webhook_event(event)
            return 200, {"status": "processed"}

        except ValidationError as e:
            logger.warning(f"Rejected webhook event: {e}")
            return 400, {"error": "Invalid payload"}
        except Exception as e:
            logger.error(f"Error processing webhook: {e}", exc_info=True)
            return 500, {"error": "Internal server error"}

    def verify_webhook_signature(self, raw_body: bytes, authorization: Optional[str]) -> bool:
        """
        Check the Authorization header against the configured secret.

        Returns:
            True if the event may be processed
        """
        secret = self.engine.config.webhook_secret
        if not secret:
            if not self._warned_permissive:
                logger.warning(
                    "No webhook_secret configured; accepting webhook events without verification"
                )
                self._warned_permissive = True
            return True

        if not authorization:
            return False

        provided = authorization.strip()
        if provided.lower().startswith("sha256="):
            provided = provided[len("sha256="):]

        expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(provided.lower(), expected)

    async def process_webhook_event(self, event: Dict[str, Any]) -> bool:
        """
        Record one board event as a remote change.

        Returns:
            False if the event was for another board and was dropped

        Raises:
            ValidationError: If the event does not identify an item
        """
        event_type = str(event.get("type") or "update_column_value")
        board_id = event.get("boardId")
        pulse_id = event.get("pulseId")
        if pulse_id is None:
            raise ValidationError("Webhook event has no pulseId")
        pulse_id = str(pulse_id)

        logger.info(f"Processing webhook event: {event_type} for item {pulse_id} on board {board_id}")

        config = self.engine.config
        if config.board_id and str(board_id) != config.board_id:
            logger.info(f"Ignoring webhook event from unmonitored board {board_id}")
            return False

        task_id, local_task = await self.extract_task_id(pulse_id)
        remote_data = self._remote_snapshot(task_id, pulse_id, event, local_task)

        engine = self.engine
        engine.change_tracker.record_remote_change(task_id, remote_data)
        engine.telemetry.webhooks_processed += 1

        engine.event_bus.publish(RemoteChangeEvent(
            task_id=task_id,
            change_type=event_type,
            monday_item_id=pulse_id,
            data={
                "columnId": event.get("columnId"),
                "value": event.get("value"),
                "previousValue": event.get("previousValue"),
            },
        ))

        if config.auto_sync:
            engine.schedule_remote_pull()

        return True

    async def extract_task_id(self, monday_item_id: str) -> Tuple[str, Optional[TaskSnapshot]]:
        """
        Resolve a remote item id to a local task id.

        Lookup order: local task carrying the item id, then the remote item's
        task id column, then the remote item id itself.

        Returns:
            (task id, matching local task or None)
        """
        engine = self.engine
        try:
            for task in await engine.local_store.load_tasks():
                if str(task.get("mondayItemId", "")) == monday_item_id:
                    return str(task["id"]), task
        except Exception as e:
            logger.warning(f"Local lookup for item {monday_item_id} failed: {e}")

        column_id = engine.config.column_mapping.get("task_id", "task_id")
        try:
            item = await engine.remote.get_item(monday_item_id)
            for column in item.get("column_values") or []:
                if column.get("id") == column_id:
                    task_id = column.get("text") or column.get("value")
                    if task_id:
                        return str(task_id).strip('"'), None
        except Exception as e:
            logger.warning(f"Remote lookup for item {monday_item_id} failed: {e}")

        logger.debug(f"No task id found for item {monday_item_id}, using item id")
        return monday_item_id, None

    def _remote_snapshot(
        self,
        task_id: str,
        pulse_id: str,
        event: Dict[str, Any],
        local_task: Optional[TaskSnapshot],
    ) -> TaskSnapshot:
        """Best view of the remote task after the event: local copy with the change applied."""
        snapshot = dict(local_task) if local_task else {"id": task_id}
        snapshot["mondayItemId"] = pulse_id

        if event.get("pulseName"):
            snapshot["title"] = event["pulseName"]

        column_id = event.get("columnId")
        if column_id:
            mapping = self.engine.config.column_mapping
            for field_name in _FIELD_COLUMNS:
                if mapping.get(field_name, field_name) == column_id:
                    snapshot[field_name] = _column_text(event.get("value"))
                    break

        return snapshot


__all__ = ["WebhookHandler", "WebhookResponse"]
