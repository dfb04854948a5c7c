"""Sync orchestrator: the state machine driving sync rounds.

This module provides:
- SyncOrchestrator: Runs rounds against the active provider, owns SyncStatus,
  schedules auto-sync and retry rounds, and emits lifecycle events

Round (download -> detect -> resolve -> upload):
    1. Build the local snapshot from the snapshot source (timestamp = now)
    2. Download the newest remote snapshot (absence is not an error)
    3. Detect conflicts when both snapshots fall within the conflict window
    4. Resolve per mode (latest / merge / manual), or keep the newer snapshot
    5. Upload the result

State machine:
    | From            | Trigger          | To      |
    |-----------------|------------------|---------|
    | idle/success/err| start_round()    | syncing |
    | syncing         | upload succeeded | success |
    | syncing         | any failure      | error   |
    | any             | provider change  | idle    |

Mutual exclusion:
    The auto-sync job, the retry timer and manual triggers go through
    start_round(). Its test-and-set of the SYNCING state is the only guard;
    a request arriving while a round runs is rejected, not queued.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import replace
from typing import TYPE_CHECKING, Any, cast

from apscheduler.schedulers.background import BackgroundScheduler

from settingsync.client.history import HistoryEntry, HistoryLog, HistoryStats
from settingsync.client.local import LocalFileProvider
from settingsync.client.providers import SnapshotProvider, create_provider
from settingsync.client.sync.conflicts import (
    detect_conflicts,
    pick_latest,
    resolve_conflicts,
)
from settingsync.client.sync.events import EventBus
from settingsync.client.sync.types import (
    Conflict,
    ConnectionCheck,
    DeviceInfo,
    SnapshotSource,
    SyncEventListener,
    SyncEventType,
    SyncResult,
    SyncStatus,
)
from settingsync.client.webdav import WebDAVError
from settingsync.core.config import ProviderConfig, SyncSettings
from settingsync.core.snapshot import DeviceIdentity, Snapshot, encode_snapshot, now_ms
from settingsync.core.types import ErrorKind, HistoryAction, ProviderKind, SyncState

if TYPE_CHECKING:
    from settingsync.client.remote import RemoteSyncProvider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[ProviderConfig], SnapshotProvider]
TimerFactory = Callable[[float, Callable[[], None]], Any]
SchedulerFactory = Callable[[], Any]

AUTO_SYNC_JOB = "auto_sync"

# Data outcomes of a download that mean "nothing usable remotely yet"
NO_REMOTE_DATA = (ErrorKind.NOT_FOUND, ErrorKind.SERIALIZATION)

AUTH_HINT = "Please re-check the credentials for this provider."


class SyncOrchestrator:
    """Top-level sync state machine.

    Usage:
        orchestrator = SyncOrchestrator(settings, device, snapshot_source=store.read)
        unsubscribe = orchestrator.subscribe(print)
        result = orchestrator.start_round()
        ...
        orchestrator.close()
    """

    def __init__(
        self,
        settings: SyncSettings,
        device: DeviceIdentity,
        snapshot_source: SnapshotSource,
        history: HistoryLog | None = None,
        provider_factory: ProviderFactory | None = None,
        clock: Callable[[], int] = now_ms,
        timer_factory: TimerFactory = threading.Timer,
        scheduler_factory: SchedulerFactory = BackgroundScheduler,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            settings: Sync configuration (copied by value).
            device: This installation's identity.
            snapshot_source: Returns the current local blob when a round starts.
            history: History log (in-memory if None).
            provider_factory: Builds a provider from its config.
            clock: Millisecond clock.
            timer_factory: Creates one-shot retry timers (threading.Timer signature).
            scheduler_factory: Creates the auto-sync scheduler (BackgroundScheduler API).
        """
        self._settings = replace(settings, providers=list(settings.providers))
        self._device = device
        self._source = snapshot_source
        self._history = history if history is not None else HistoryLog()
        self._clock = clock
        self._timer_factory = timer_factory
        self._scheduler_factory = scheduler_factory
        self._provider_factory: ProviderFactory = provider_factory or (
            lambda config: create_provider(config, device, self._history)
        )

        self._local = LocalFileProvider(device, history=self._history, clock=clock)
        self._events = EventBus()

        self._lock = threading.RLock()
        self._status = SyncStatus()
        self._provider: SnapshotProvider | None = None
        self._provider_config: ProviderConfig | None = None

        # Jobs and timers; the generation invalidates callbacks of torn-down ones
        self._scheduler: Any = None
        self._auto_interval: int | None = None
        self._retry_timer: Any = None
        self._generation = 0
        self._retries_left = self._settings.retry_attempts
        self._auth_halted = False

        self._apply_auto_sync()

    # === Accessors ===

    @property
    def device(self) -> DeviceIdentity:
        """This installation's identity."""
        return self._device

    @property
    def settings(self) -> SyncSettings:
        """Current sync settings (a copy)."""
        with self._lock:
            return replace(self._settings, providers=list(self._settings.providers))

    @property
    def auto_sync_running(self) -> bool:
        """Check if the auto-sync job is scheduled."""
        return self._scheduler is not None

    @property
    def retry_pending(self) -> bool:
        """Check if a retry round is scheduled."""
        return self._retry_timer is not None

    def get_status(self) -> SyncStatus:
        """Get a copy of the current status."""
        with self._lock:
            conflicts = list(self._status.conflicts) if self._status.conflicts else None
            return replace(self._status, conflicts=conflicts)

    def subscribe(self, listener: SyncEventListener) -> Callable[[], None]:
        """Subscribe to lifecycle events.

        Returns:
            A function that unsubscribes the listener.
        """
        return self._events.subscribe(listener)

    # === Settings ===

    def update_settings(self, settings: SyncSettings) -> None:
        """Replace the sync settings.

        Changing the active provider (or its configuration) or disabling
        sync tears down pending timers and resets the state to idle.
        Auto-sync is then re-evaluated.
        """
        with self._lock:
            old = self._settings
            self._settings = replace(settings, providers=list(settings.providers))

            old_active = old.active
            new_active = self._settings.active
            provider_changed = (old_active is None) != (new_active is None) or (
                old_active is not None
                and new_active is not None
                and old_active.to_dict(include_secrets=True)
                != new_active.to_dict(include_secrets=True)
            )
            disabled = old.enabled and not self._settings.enabled

            if provider_changed or disabled:
                logger.info(
                    "Sync %s, resetting state",
                    "disabled" if disabled else "provider changed",
                )
                self._teardown()
                self._status = replace(
                    self._status,
                    state=SyncState.IDLE,
                    progress=None,
                    last_error=None,
                    conflicts=None,
                )
                self._auth_halted = False
            self._retries_left = self._settings.retry_attempts

        self._apply_auto_sync()

    # === Auto-sync ===

    def _apply_auto_sync(self) -> None:
        settings = self._settings
        if (
            settings.enabled
            and settings.auto_sync
            and settings.active is not None
            and not self._auth_halted
        ):
            self.start_auto_sync()
        else:
            self.stop_auto_sync()

    def start_auto_sync(self) -> None:
        """Schedule the recurring auto-sync job (idempotent).

        A running job picks up a changed interval.
        """
        with self._lock:
            if not (self._settings.enabled and self._settings.auto_sync):
                return
            interval = self._settings.sync_interval
            if self._scheduler is not None:
                if interval != self._auto_interval:
                    self._scheduler.reschedule_job(
                        AUTO_SYNC_JOB, trigger="interval", minutes=interval
                    )
                    self._auto_interval = interval
                    logger.info("Auto-sync interval changed to %d minute(s)", interval)
                return

            scheduler = self._scheduler_factory()
            scheduler.add_job(
                self._on_auto_tick,
                trigger="interval",
                minutes=interval,
                args=[self._generation],
                id=AUTO_SYNC_JOB,
                name="Auto-sync",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            scheduler.start()
            self._scheduler = scheduler
            self._auto_interval = interval
            logger.info("Auto-sync every %d minute(s)", interval)

    def stop_auto_sync(self) -> None:
        """Stop the auto-sync scheduler (idempotent)."""
        with self._lock:
            if self._scheduler is None:
                return
            self._shutdown_scheduler()
            logger.info("Auto-sync stopped")

    def _shutdown_scheduler(self) -> None:
        scheduler, self._scheduler = self._scheduler, None
        self._auto_interval = None
        if scheduler is not None:
            scheduler.shutdown(wait=False)

    def _on_auto_tick(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._scheduler is None:
                return
        logger.debug("Auto-sync tick")
        self.start_round()

    def _schedule_retry(self) -> None:
        with self._lock:
            if self._retry_timer is not None or self._retries_left <= 0:
                return
            self._retries_left -= 1
            generation = self._generation
            delay = self._settings.retry_delay
            timer = self._timer_factory(delay, lambda: self._on_retry(generation))
            timer.daemon = True
            self._retry_timer = timer
            timer.start()
        logger.info("Retry scheduled in %.0fs (%d left)", delay, self._retries_left)

    def _on_retry(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._retry_timer is None:
                return
            self._retry_timer = None
        self.start_round()

    def _cancel_retry(self) -> None:
        if self._retry_timer is not None:
            self._retry_timer.cancel()
            self._retry_timer = None

    def _teardown(self) -> None:
        """Cancel all timers and drop the cached provider (lock held)."""
        self._generation += 1
        self._cancel_retry()
        self._shutdown_scheduler()
        if self._provider is not None:
            self._provider.close()
        self._provider = None
        self._provider_config = None

    def _halt_for_auth(self) -> None:
        """Stop automatic rounds until the credential is changed."""
        with self._lock:
            self._auth_halted = True
            self._cancel_retry()
        self.stop_auto_sync()
        logger.warning("Authentication failed, automatic sync halted")

    # === Provider ===

    def _active_provider(self) -> SnapshotProvider | None:
        with self._lock:
            config = self._settings.active
            if config is None:
                return None
            if self._provider is None or self._provider_config != config:
                if self._provider is not None:
                    self._provider.close()
                self._provider = self._provider_factory(config)
                self._provider_config = config
            return self._provider

    def _remote_provider(self) -> RemoteSyncProvider | None:
        config = self._settings.active
        if config is None or config.kind != ProviderKind.REMOTE:
            return None
        return cast("RemoteSyncProvider", self._active_provider())

    # === Rounds ===

    def _set_progress(self, percent: int) -> None:
        with self._lock:
            self._status.progress = percent
        self._events.emit(SyncEventType.SYNC_PROGRESS, {"progress": percent})

    def start_round(self) -> SyncResult:
        """Run one sync round.

        Returns:
            SyncResult with the uploaded snapshot and any conflicts.
        """
        with self._lock:
            if not self._settings.enabled:
                return SyncResult.failure("Sync is disabled")
            if self._status.state == SyncState.SYNCING:
                return SyncResult.failure("Sync already in progress")
            self._status = replace(
                self._status,
                state=SyncState.SYNCING,
                progress=0,
                last_error=None,
            )

        self._events.emit(SyncEventType.SYNC_START)
        try:
            result = self._run_round()
        except Exception as e:
            logger.exception("Sync round crashed")
            result = SyncResult.failure(f"Sync failed: {e}")

        if result.success:
            self._finish_success(result)
        else:
            self._finish_error(result)
        return result

    def _run_round(self) -> SyncResult:
        provider = self._active_provider()
        if provider is None:
            return SyncResult.failure("No active sync provider configured")

        check = provider.check()
        if not check:
            return SyncResult.failure(
                check.message,
                error_kind=check.error_kind,
                retryable=check.retryable,
            )

        data = self._source()
        local = Snapshot.create(
            self._device,
            data.settings,
            data.quick_launch,
            data.custom_search_engines,
            conflict_resolution=self._settings.conflict_resolution,
            timestamp=self._clock(),
        )
        self._set_progress(25)

        downloaded = provider.download()
        remote: Snapshot | None = None
        if downloaded.success:
            remote = downloaded.snapshot
        elif downloaded.error_kind in NO_REMOTE_DATA:
            logger.info("No usable remote data: %s", downloaded.message)
        else:
            return downloaded
        self._set_progress(50)

        final = local
        conflicts: list[Conflict] = []
        if remote is not None:
            conflicts = detect_conflicts(local, remote, self._settings.conflict_window_ms)
            if conflicts:
                self._events.emit(SyncEventType.CONFLICT_DETECTED, {"conflicts": conflicts})
                final = resolve_conflicts(
                    local, remote, conflicts, self._settings.conflict_resolution
                )
                self._events.emit(SyncEventType.CONFLICT_RESOLVED, {"snapshot": final})
            else:
                final = pick_latest(local, remote)
        self._set_progress(75)

        uploaded = provider.upload(final)
        if not uploaded.success:
            return uploaded

        return SyncResult(
            success=True,
            message="Sync completed successfully",
            conflicts=conflicts or None,
            snapshot=final,
        )

    def _finish_success(self, result: SyncResult) -> None:
        with self._lock:
            self._status = SyncStatus(
                state=SyncState.SUCCESS,
                progress=100,
                last_sync=self._clock(),
                conflicts=result.conflicts,
            )
            self._retries_left = self._settings.retry_attempts
            self._cancel_retry()
            provider_name = self._settings.active_provider or ""
            compress = self._provider_config.compress if self._provider_config else False

        conflict_count = len(result.conflicts or [])
        size = len(encode_snapshot(result.snapshot, compress)) if result.snapshot else None
        self._history.append(
            HistoryEntry.record(
                HistoryAction.SYNC,
                provider_name,
                success=True,
                details=result.message,
                data_size=size,
                conflicts=conflict_count or None,
                timestamp=self._clock(),
            )
        )
        logger.info("Sync completed (%d conflict(s))", conflict_count)
        self._events.emit(
            SyncEventType.SYNC_SUCCESS,
            {"snapshot": result.snapshot, "conflicts": result.conflicts or []},
        )

    def _finish_error(self, result: SyncResult) -> None:
        if result.error_kind == ErrorKind.AUTH:
            result.message = f"{result.message}. {AUTH_HINT}"

        with self._lock:
            self._status = replace(
                self._status,
                state=SyncState.ERROR,
                progress=None,
                last_error=result.message,
            )
            provider_name = self._settings.active_provider or ""
            retry_enabled = self._settings.retry_attempts > 0

        logger.error("Sync failed: %s", result.message)
        self._history.append(
            HistoryEntry.record(
                HistoryAction.SYNC,
                provider_name,
                success=False,
                details=result.message,
                timestamp=self._clock(),
            )
        )
        self._events.emit(SyncEventType.SYNC_ERROR, error=result.message)

        if result.error_kind == ErrorKind.AUTH:
            self._halt_for_auth()
        elif retry_enabled and result.retryable:
            self._schedule_retry()

    # === Connection ===

    def test_connection(self, config: ProviderConfig | None = None) -> ConnectionCheck:
        """Test a provider configuration (the active one by default).

        An authentication failure on the active provider halts auto-sync.
        """
        config = config or self._settings.active
        if config is None:
            return ConnectionCheck(ok=False, message="No active sync provider configured")

        provider = self._provider_factory(config)
        try:
            check = provider.check()
        finally:
            provider.close()

        if check.error_kind == ErrorKind.AUTH and config.name == self._settings.active_provider:
            self._halt_for_auth()
            check.message = f"{check.message}. {AUTH_HINT}"
        return check

    # === Devices and retention ===

    def list_device_info(self) -> list[DeviceInfo]:
        """List devices that uploaded to the active remote provider."""
        provider = self._remote_provider()
        if provider is None:
            return []
        try:
            activity = provider.device_activity()
        except WebDAVError as e:
            logger.error("Failed to list devices: %s", e)
            return []
        return [
            DeviceInfo(
                id=device_id,
                name=self._device.name if device_id == self._device.id else f"Device {device_id}",
                last_seen=last_seen,
            )
            for device_id, last_seen in activity.items()
        ]

    def list_devices(self) -> list[str]:
        """List device ids that uploaded to the active remote provider."""
        return [info.id for info in self.list_device_info()]

    def cleanup(self, retention_days: int = 30) -> SyncResult:
        """Delete remote snapshots older than ``retention_days``."""
        provider = self._remote_provider()
        if provider is None:
            return SyncResult.failure("Cleanup needs an active remote provider")
        return provider.cleanup(retention_days)

    # === Export / import ===

    def export(self) -> bytes:
        """Export the current local blob as an envelope file payload."""
        data = self._source()
        return self._local.export(
            data.settings,
            data.quick_launch,
            data.custom_search_engines,
            device_id=self._device.id,
        )

    def backup_filename(self) -> str:
        """Suggest a timestamped file name for an export."""
        return self._local.backup_filename()

    def import_data(self, data: bytes | str) -> SyncResult:
        """Validate an export payload; the caller applies the snapshot."""
        return self._local.import_data(data)

    # === History ===

    def get_history(self) -> list[HistoryEntry]:
        """Get history entries, newest first."""
        return self._history.entries()

    def clear_history(self) -> None:
        """Remove all history entries."""
        self._history.clear()

    def get_stats(self) -> HistoryStats:
        """Aggregate statistics over the history."""
        return self._history.stats()

    # === Lifecycle ===

    def close(self) -> None:
        """Stop all timers, close the provider and drop listeners."""
        with self._lock:
            self._teardown()
        self._events.clear()
