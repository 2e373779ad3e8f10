"""
SyncEngine - Orchestrates local/remote task synchronization

Owns one ChangeTracker, OfflineQueue, ConnectivityMonitor, ConflictResolver
and WebhookHandler and drives them through the sync cycle:

1. If online, drain ready offline-queue items to the remote side
2. Detect conflicts and resolve them per policy
3. Push pending local changes (if the direction includes push)
4. Pull authoritative remote state (if the direction includes pull)
5. Validate integrity of key fields between both sides
6. Update telemetry and publish sync.completed

Only one cycle runs at a time: a concurrent call returns
{"status": "already_syncing"} without doing any work. Steps that need the
remote side are skipped while offline; conflict resolution still runs.

Usage:
    engine = SyncEngine(config, remote=MondayClient(config), local_store=JsonTaskStore(path))
    await engine.initialize()

    await engine.record_local_change("T1", "update", {"id": "T1", "title": "A"})
    result = await engine.sync_with_monday(direction="bidirectional")

    await engine.shutdown()
"""

from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any, List, Callable, Set
import asyncio
import logging

from ..config import SyncConfig
from ..errors import ConfigurationError, RemoteError, ValidationError
from ..event_bus import EventBus
from ..events import (
    SyncCompletedEvent,
    SyncErrorEvent,
    RemoteDataPulledEvent,
    ConflictResolvedEvent,
)
from ..utils import content_hash, now_ms
from .change_tracker import ChangeTracker, ConflictRecord
from .conflict_resolver import (
    ConflictResolver,
    ConflictResolution,
    PromptCallback,
    WINNER_LOCAL,
    WINNER_MONDAY,
)
from .connectivity import ConnectivityMonitor
from .offline_queue import OfflineQueue
from .protocol import ChangeType, SyncDirection, RemoteBackend, LocalStore, TaskSnapshot
from .webhooks import WebhookHandler

logger = logging.getLogger(__name__)

PUSH_MAX_RETRIES = 3
INTEGRITY_FIELDS = ("title", "status", "priority", "description")


@dataclass
class Telemetry:
    """Counters describing engine activity since start (or the last reset)."""
    sync_operations: int = 0
    conflicts_resolved: int = 0
    webhooks_processed: int = 0
    errors_encountered: int = 0
    last_sync: Optional[int] = None
    average_sync_time: float = 0.0
    cache_hits: int = 0
    cache_misses: int = 0

    def record_sync(self, duration_ms: int, finished_at: int) -> None:
        """Count a completed cycle and fold its duration into the running mean."""
        self.sync_operations += 1
        n = self.sync_operations
        self.average_sync_time += (duration_ms - self.average_sync_time) / n
        self.last_sync = finished_at

    def reset(self) -> None:
        for name, value in asdict(Telemetry()).items():
            setattr(self, name, value)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SyncEngine:
    """
    Orchestrator of the sync cycle.

    All state is touched from a single event loop; no locks are needed.
    """

    def __init__(
        self,
        config: SyncConfig,
        remote: RemoteBackend,
        local_store: LocalStore,
        offline_queue: Optional[OfflineQueue] = None,
        change_tracker: Optional[ChangeTracker] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        event_bus: Optional[EventBus] = None,
        prompt: Optional[PromptCallback] = None,
        interactive: bool = False,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Args:
            config: Engine settings (read, never mutated)
            remote: Remote backend (monday.com client)
            local_store: Local task persistence
            offline_queue: Durable queue (default: config.queue_file)
            change_tracker: Change tracker (default: new, in-memory)
            connectivity: Connectivity monitor (default: probes remote.test_connection)
            event_bus: Bus for outward notifications (default: new)
            prompt: Async callback for the "prompt" conflict policy
            interactive: Whether prompt may be used
            clock: Returns current time in epoch ms (injectable for tests)
        """
        self.config = config
        self.remote = remote
        self.local_store = local_store
        self._clock = clock

        self.event_bus = event_bus or EventBus()
        self.change_tracker = change_tracker or ChangeTracker(clock=clock)
        self.offline_queue = offline_queue or OfflineQueue(config.queue_file, clock=clock)
        self.connectivity = connectivity or ConnectivityMonitor(
            primary_probe=remote.test_connection,
            event_bus=self.event_bus,
            clock=clock,
        )
        self.conflict_resolver = ConflictResolver(
            policy=config.conflict_resolution,
            prompt=prompt,
            interactive=interactive,
        )
        self.webhook_handler = WebhookHandler(self)
        self.telemetry = Telemetry()

        self.is_syncing = False
        self._initialized = False
        self._background_task: Optional[asyncio.Task] = None
        self._spawned: Set[asyncio.Task] = set()
        self._remote_cache: Optional[List[TaskSnapshot]] = None

    @property
    def is_online(self) -> bool:
        return self.connectivity.is_online

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Load durable state and start monitoring.

        Raises:
            ConfigurationError: If the integration is disabled
        """
        if self._initialized:
            return
        if not self.config.enabled:
            raise ConfigurationError("Monday.com integration is not enabled")

        await self.remote.initialize()
        await self.offline_queue.load()

        self.event_bus.subscribe("connectivity.online", self._on_connectivity_online)
        self.connectivity.start()

        if self.config.auto_sync:
            self.start_background_sync()

        self._initialized = True
        logger.info(
            f"Sync engine initialized (board={self.config.board_id}, "
            f"policy={self.config.conflict_resolution}, queued={len(self.offline_queue)})"
        )

    async def shutdown(self) -> None:
        """Stop timers, flush the queue and close the remote client. Idempotent."""
        self.stop_background_sync()
        self.connectivity.stop()

        for task in list(self._spawned):
            task.cancel()
        self._spawned.clear()

        if self._initialized:
            self.event_bus.unsubscribe("connectivity.online", self._on_connectivity_online)
            await self.offline_queue.save()
            await self.remote.close()
            self._initialized = False
            logger.info("Sync engine shut down")

    # ------------------------------------------------------------------
    # Sync cycle
    # ------------------------------------------------------------------

    async def sync_with_monday(
        self,
        force_full_sync: bool = False,
        direction: Any = SyncDirection.BIDIRECTIONAL,
    ) -> Dict[str, Any]:
        """
        Run one sync cycle.

        Args:
            force_full_sync: Re-record every remote task, even if unchanged
            direction: SyncDirection or its string value

        Returns:
            Cycle summary, or {"status": "already_syncing"}

        Raises:
            ValidationError: If direction is unknown
            Exception: Any unexpected failure, after telemetry and state reset
        """
        try:
            direction = SyncDirection(direction)
        except ValueError:
            raise ValidationError(f"Unknown sync direction: {direction}")

        # Checked and set before the first await
        if self.is_syncing:
            logger.info("Sync already in progress, skipping")
            return {"status": "already_syncing"}
        self.is_syncing = True

        started = self._clock()
        try:
            if not self._initialized:
                await self.initialize()

            self._remote_cache = None
            online = self.is_online
            logger.info(f"Starting {direction.value} sync (online={online})")

            queue_result = None
            if online:
                queue_result = await self.process_offline_queue()

            conflicts = self.change_tracker.detect_conflicts()
            resolved = 0
            if conflicts:
                logger.info(f"Detected {len(conflicts)} conflicts")
                resolved = await self.handle_conflict_resolution(conflicts)

            push_result = None
            if online and direction.includes_push:
                push_result = await self.push_local_changes()

            pull_result = None
            if online and direction.includes_pull:
                pull_result = await self.pull_remote_changes(force_full_sync=force_full_sync)

            integrity = None
            if online:
                integrity = await self.validate_data_integrity()

            finished = self._clock()
            duration = finished - started
            self.telemetry.record_sync(duration, finished)

            self.event_bus.publish(SyncCompletedEvent(
                duration_ms=duration,
                conflicts=len(conflicts),
                direction=direction.value,
                integrity=integrity,
            ))
            logger.info(f"Sync completed in {duration}ms ({len(conflicts)} conflicts)")

            return {
                "status": "completed",
                "direction": direction.value,
                "online": online,
                "duration_ms": duration,
                "conflicts": len(conflicts),
                "conflicts_resolved": resolved,
                "queue": queue_result,
                "pushed": push_result,
                "pulled": pull_result,
                "integrity": integrity,
            }

        except Exception as e:
            self.telemetry.errors_encountered += 1
            logger.error(f"Sync failed: {e}", exc_info=True)
            self.event_bus.publish(SyncErrorEvent(error=str(e), error_type=type(e).__name__))
            raise

        finally:
            self.is_syncing = False
            self._remote_cache = None

    async def process_offline_queue(self) -> Dict[str, int]:
        """Apply ready queue items; failures go back into backoff."""
        processed = 0
        failed = 0

        for item in self.offline_queue.get_ready_items():
            try:
                await self.apply_change_to_monday(item.task_id, item.type, item.data)
            except (RemoteError, ValidationError) as e:
                await self.offline_queue.mark_failed(item.id, e)
                failed += 1
                continue

            await self.offline_queue.mark_processed(item.id)
            # Queue items share their id with the tracker's change record
            self.change_tracker.mark_synced(item.id)
            processed += 1

        if processed or failed:
            logger.info(f"Offline queue: {processed} applied, {failed} failed")
        return {"processed": processed, "failed": failed}

    async def handle_conflict_resolution(self, conflicts: List[ConflictRecord]) -> int:
        """Resolve and apply every conflict. Returns the number resolved."""
        resolved = 0
        for conflict in conflicts:
            resolution = await self.conflict_resolver.resolve(conflict)
            await self.apply_conflict_resolution(resolution)
            resolved += 1
        return resolved

    async def apply_conflict_resolution(self, resolution: ConflictResolution) -> None:
        """
        Make the chosen value the agreed state of the task.

        The winning value is merged over the current local copy, so a partial
        payload (a status change, a rename) keeps the fields it does not
        carry. The merged task is written to the local store and the task's
        sync point moves so the conflict is not reported again. Applying the
        same resolution twice leaves the same local state.
        """
        task_id = resolution.task_id
        current = None
        for local_task in await self.local_store.load_tasks(force_refresh=True):
            if str(local_task.get("id")) == task_id:
                current = local_task
                break

        task = dict(current or {})
        if isinstance(resolution.data, dict):
            task.update(resolution.data)
        task.setdefault("id", task_id)

        if resolution.winner == WINNER_MONDAY:
            # Stale local edits must not be pushed over the remote value
            self.change_tracker.supersede_pending(task_id)
            await self.offline_queue.discard_task(task_id)
        elif resolution.winner == WINNER_LOCAL:
            pending = [c for c in self.change_tracker.get_pending_changes() if c.task_id == task_id]
            if not pending:
                self.change_tracker.record_local_change(task_id, ChangeType.UPDATE, task)

        await self.local_store.save_task(task)

        now = self._clock()
        self.change_tracker.update_local_hash(task_id, task, timestamp=now)
        self.change_tracker.mark_task_synced(task_id, at=now)

        self.telemetry.conflicts_resolved += 1
        self.event_bus.publish(ConflictResolvedEvent(
            task_id=task_id,
            policy=resolution.policy.value,
            winner=resolution.winner,
        ))

    async def push_local_changes(self) -> Dict[str, int]:
        """
        Apply pending tracked changes to the remote side.

        A change failing PUSH_MAX_RETRIES times is dropped from the pending
        set; the offline queue remains responsible for durable retry.
        """
        pushed = 0
        failed = 0
        evicted = 0

        for change in self.change_tracker.get_pending_changes():
            try:
                await self.apply_change_to_monday(change.task_id, change.type, change.data)
            except (RemoteError, ValidationError) as e:
                failed += 1
                change.retry_count += 1
                if change.retry_count >= PUSH_MAX_RETRIES:
                    logger.warning(
                        f"Giving up on change {change.id} for task {change.task_id} "
                        f"after {change.retry_count} attempts: {e}"
                    )
                    self.change_tracker.drop_change(change.id)
                    evicted += 1
                else:
                    logger.warning(
                        f"Push of change {change.id} failed "
                        f"({change.retry_count}/{PUSH_MAX_RETRIES}): {e}"
                    )
                continue

            self.change_tracker.mark_synced(change.id)
            if self.offline_queue.get(change.id) is not None:
                await self.offline_queue.mark_processed(change.id)
            pushed += 1

        return {"pushed": pushed, "failed": failed, "evicted": evicted}

    async def apply_change_to_monday(self, task_id: str, change_type: Any, data: Any) -> Optional[str]:
        """
        Apply one change to the remote side.

        Returns:
            Remote item id for create/update, else None

        Raises:
            RemoteError: If the remote call fails
            ValidationError: If the change cannot be expressed remotely
        """
        try:
            change_type = ChangeType.from_string(change_type)
        except ValueError as e:
            raise ValidationError(str(e))

        if change_type in (ChangeType.CREATE, ChangeType.UPDATE):
            task = dict(data) if isinstance(data, dict) else {}
            task.setdefault("id", task_id)
            remote_id = await self.remote.create_or_update_task(task)
            logger.debug(f"Applied {change_type.value} for task {task_id} (item {remote_id})")
            return remote_id

        if change_type == ChangeType.DELETE:
            await self.remote.delete_task(task_id)
            logger.debug(f"Deleted task {task_id} remotely")
            return None

        status = data.get("status") if isinstance(data, dict) else None
        if not status:
            raise ValidationError(f"Status change for task {task_id} has no status")
        await self.remote.update_task_status(task_id, str(status))
        logger.debug(f"Updated status of task {task_id} to {status}")
        return None

    async def pull_remote_changes(self, force_full_sync: bool = False) -> Dict[str, int]:
        """
        Reload remote state and apply it to tasks without pending local edits.

        Tasks with pending local changes only get their remote observation
        recorded, so the next cycle reports the conflict.
        """
        remote_tasks = await self.remote.load_all_tasks()
        self._remote_cache = remote_tasks

        local_by_id = {
            str(task["id"]): task
            for task in await self.local_store.load_tasks(force_refresh=True)
            if "id" in task
        }
        pending_ids = {c.task_id for c in self.change_tracker.get_pending_changes()}

        applied = 0
        for remote_task in remote_tasks:
            if "id" not in remote_task:
                logger.debug(f"Skipping remote item without task id: {remote_task.get('mondayItemId')}")
                continue
            task_id = str(remote_task["id"])

            observed = self.change_tracker.remote_observation(task_id)
            if force_full_sync or observed is None or observed.content_hash != content_hash(remote_task):
                self.change_tracker.record_remote_change(task_id, remote_task)

            if task_id in pending_ids:
                continue

            local_task = local_by_id.get(task_id)
            merged = dict(local_task or {})
            merged.update(remote_task)
            if local_task is None or content_hash(merged) != content_hash(local_task):
                await self.local_store.save_task(merged)
                applied += 1

            now = self._clock()
            self.change_tracker.update_local_hash(task_id, merged, timestamp=now)
            self.change_tracker.mark_task_synced(task_id, at=now)

        logger.info(f"Pulled {len(remote_tasks)} remote tasks, applied {applied} locally")
        self.event_bus.publish(RemoteDataPulledEvent(task_count=len(remote_tasks), applied=applied))
        return {"task_count": len(remote_tasks), "applied": applied}

    async def validate_data_integrity(self) -> Dict[str, Any]:
        """
        Compare local and remote snapshots on count and key fields.

        A local task with no remote counterpart counts as a mismatch.
        Mismatches are reported, never corrected.
        """
        local_tasks = await self.local_store.load_tasks()

        if self._remote_cache is not None:
            self.telemetry.cache_hits += 1
            remote_tasks = self._remote_cache
        else:
            self.telemetry.cache_misses += 1
            remote_tasks = await self.remote.load_all_tasks()
            self._remote_cache = remote_tasks

        remote_by_id = {str(t["id"]): t for t in remote_tasks if "id" in t}
        mismatched: List[str] = []

        for local_task in local_tasks:
            if "id" not in local_task:
                continue
            remote_task = remote_by_id.get(str(local_task["id"]))
            if remote_task is None:
                mismatched.append(str(local_task["id"]))
                continue
            if any(local_task.get(f) != remote_task.get(f) for f in INTEGRITY_FIELDS):
                mismatched.append(str(local_task["id"]))

        result = {
            "mismatches": len(mismatched),
            "total_tasks": len(local_tasks),
            "local_count": len(local_tasks),
            "remote_count": len(remote_tasks),
            "mismatched_task_ids": mismatched,
        }

        if mismatched or len(local_tasks) != len(remote_tasks):
            logger.warning(
                f"Integrity check: {len(mismatched)} mismatched tasks, "
                f"{len(local_tasks)} local vs {len(remote_tasks)} remote"
            )
        return result

    # ------------------------------------------------------------------
    # Local changes and triggers
    # ------------------------------------------------------------------

    async def record_local_change(self, task_id: str, change_type: Any, data: Any) -> str:
        """
        Track a local mutation, queue it durably and try to apply it now.

        Remote failures leave the change queued for backoff retry.

        Returns:
            The change id (also the queue item id)

        Raises:
            ValidationError: For an unknown change type or a status change without status
        """
        try:
            change_type = ChangeType.from_string(change_type)
        except ValueError as e:
            raise ValidationError(str(e))
        if change_type == ChangeType.STATUS_CHANGE and not (isinstance(data, dict) and data.get("status")):
            raise ValidationError(f"Status change for task {task_id} has no status")

        task_id = str(task_id)
        change_id = self.change_tracker.record_local_change(task_id, change_type, data)
        await self.offline_queue.add(self.change_tracker.get_change(change_id))

        if not self.is_online or self.is_syncing:
            logger.debug(f"Change {change_id} queued (online={self.is_online}, syncing={self.is_syncing})")
            return change_id

        try:
            await self.apply_change_to_monday(task_id, change_type, data)
        except (RemoteError, ValidationError) as e:
            logger.warning(f"Immediate apply of change {change_id} failed, left queued: {e}")
            await self.offline_queue.mark_failed(change_id, e)
            return change_id

        await self.offline_queue.mark_processed(change_id)
        self.change_tracker.mark_synced(change_id)
        return change_id

    async def handle_remote_change(self) -> Optional[Dict[str, Any]]:
        """Pull after a webhook-reported change, unless offline or mid-cycle."""
        if not self.is_online or self.is_syncing:
            logger.debug("Remote change noted; pull deferred to the next cycle")
            return None
        return await self._sync_quietly(SyncDirection.PULL)

    def schedule_remote_pull(self) -> Optional[asyncio.Task]:
        """Run handle_remote_change in the background; the caller does not wait."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("Remote change noted outside an event loop, not pulling")
            return None
        return self._spawn(loop, self.handle_remote_change())

    def _spawn(self, loop: asyncio.AbstractEventLoop, coro: Any) -> asyncio.Task:
        task = loop.create_task(coro)
        self._spawned.add(task)
        task.add_done_callback(self._spawned.discard)
        return task

    async def _sync_quietly(self, direction: SyncDirection = SyncDirection.BIDIRECTIONAL) -> Optional[Dict[str, Any]]:
        try:
            return await self.sync_with_monday(direction=direction)
        except Exception as e:
            logger.warning(f"Triggered {direction.value} sync failed: {e}")
            return None

    def _on_connectivity_online(self, event: Any) -> None:
        if not self.config.auto_sync:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("Connectivity restored outside an event loop, not syncing")
            return

        logger.info("Connectivity restored, scheduling sync")
        self._spawn(loop, self._sync_quietly())

    def start_background_sync(self) -> None:
        """Run a sync cycle every sync_interval seconds. Needs a running loop."""
        if self._background_task is not None and not self._background_task.done():
            return
        self._background_task = asyncio.get_running_loop().create_task(self._background_loop())
        logger.info(f"Background sync started (every {self.config.sync_interval}s)")

    def stop_background_sync(self) -> None:
        """Cancel the background timer. Safe to call more than once."""
        if self._background_task is None:
            return
        if not self._background_task.done():
            self._background_task.cancel()
        self._background_task = None
        logger.info("Background sync stopped")

    async def _background_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.sync_interval)
            if not self.is_online:
                logger.debug("Offline, skipping background sync")
                continue
            await self._sync_quietly()

    # ------------------------------------------------------------------
    # Introspection and maintenance
    # ------------------------------------------------------------------

    def get_webhook_handler(self) -> WebhookHandler:
        return self.webhook_handler

    def get_telemetry(self) -> Dict[str, Any]:
        """Telemetry counters plus current engine state."""
        data = self.telemetry.to_dict()
        data.update({
            "is_online": self.is_online,
            "is_syncing": self.is_syncing,
            "pending_changes": len(self.change_tracker.get_pending_changes()),
            "queue": self.offline_queue.get_stats(),
            "connectivity": self.connectivity.get_status(),
        })
        return data

    async def cleanup(self, queue_max_age_ms: Optional[int] = None) -> Dict[str, int]:
        """Garbage-collect old synced changes and exhausted queue items."""
        changes = self.change_tracker.cleanup()
        if queue_max_age_ms is None:
            queued = await self.offline_queue.cleanup()
        else:
            queued = await self.offline_queue.cleanup(max_age_ms=queue_max_age_ms)
        return {"changes": changes, "queue_items": queued}


__all__ = ["SyncEngine", "Telemetry", "PUSH_MAX_RETRIES", "INTEGRITY_FIELDS"]
