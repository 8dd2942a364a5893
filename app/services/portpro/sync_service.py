"""Service for syncing PortPro loads into NSL loads and tracking events."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import Settings, get_settings
from app.models.sync_run import SyncRunStatus, SyncType
from app.schemas.portpro import PortProLoad
from app.schemas.sync import ConnectionCheck, ReconcileSummary, SampleLoad, SyncSummary
from app.services.number_generator import TrackingNumberGenerator
from app.services.portpro.events import flatten_driver_orders
from app.services.portpro.mappers import build_load_values
from app.services.portpro.portpro_client import PortProClient
from app.services.portpro.repository import ExistingLoad

logger = logging.getLogger(__name__)

MAX_ERROR_MESSAGE_LENGTH = 200
CANCELLED_MESSAGE = "cancelled: budget exceeded"


class SyncRepository(Protocol):
    async def find_by_container_number(self, container_number: str) -> Optional[ExistingLoad]: ...
    async def tracking_number_exists(self, tracking_number: str) -> bool: ...
    async def insert_load(self, values: Dict[str, Any], tracking_number: str) -> str: ...
    async def update_load(self, load_id: str, values: Dict[str, Any]) -> None: ...
    async def replace_synced_events(self, load_id: str, events: List[Dict[str, Any]]) -> int: ...
    async def start_run(self, sync_type: str, metadata: Optional[Dict[str, Any]] = None) -> str: ...
    async def finish_run(self, run_id: str, status: str, **kwargs: Any) -> None: ...


class RecordError(Exception):
    """A failure while processing one upstream load; never aborts the run."""

    def __init__(self, stage: str, reference: str, cause: Exception):
        self.stage = stage
        self.reference = reference
        self.cause = cause
        super().__init__(f"{stage} {reference}: {_short_message(cause)}")


def _short_message(error: Exception) -> str:
    message = str(getattr(error, "orig", None) or error) or type(error).__name__
    message = " ".join(message.split())
    if len(message) > MAX_ERROR_MESSAGE_LENGTH:
        message = message[: MAX_ERROR_MESSAGE_LENGTH - 3] + "..."
    return message


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to an aware UTC datetime; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class _RunState:
    """Counters and per-run bookkeeping for one sync pass."""
    tracking_numbers: TrackingNumberGenerator
    total: int = 0
    synced: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: int = 0
    discrepancies: int = 0
    error_details: List[str] = field(default_factory=list)
    # Loads written during this run, keyed by container number
    seen: Dict[str, ExistingLoad] = field(default_factory=dict)
    started: float = field(default_factory=time.monotonic)

    def record_error(self, error: RecordError) -> None:
        self.errors += 1
        self.error_details.append(str(error))

    @property
    def duration_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)

    def metadata(self) -> Dict[str, Any]:
        return {
            "synced": self.synced,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "discrepancies": self.discrepancies,
            "duration_ms": self.duration_ms,
        }


class PortProSyncService:
    """
    Reconciles PortPro loads against local loads.

    Every variant processes records one at a time: decode, look up by
    container number, insert or update, then regenerate the load's tracking
    events. Per-record failures are counted and reported in the summary;
    configuration and upstream fetch failures abort the run.
    """

    def __init__(
        self,
        repository: SyncRepository,
        client: PortProClient,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        tracking_numbers: Optional[Callable[[], TrackingNumberGenerator]] = None,
    ):
        self.repository = repository
        self.client = client
        self.settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tracking_numbers = tracking_numbers or TrackingNumberGenerator

    def _new_state(self) -> _RunState:
        return _RunState(tracking_numbers=self._tracking_numbers())

    # ------------------------------------------------------------------
    # Run log
    # ------------------------------------------------------------------

    async def _start_run(self, sync_type: SyncType, metadata: Dict[str, Any]) -> Optional[str]:
        try:
            return await self.repository.start_run(sync_type.value, metadata)
        except SQLAlchemyError as e:
            logger.warning(f"Could not record {sync_type.value} sync run start: {e}")
            return None

    async def _finish_run(
        self,
        run_id: Optional[str],
        state: _RunState,
        status: SyncRunStatus,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not run_id:
            return
        try:
            await self.repository.finish_run(
                run_id,
                status.value,
                records_processed=state.total,
                records_failed=state.errors,
                error_message=error_message,
                metadata={**(metadata or {}), **state.metadata()},
            )
        except SQLAlchemyError as e:
            logger.warning(f"Could not record sync run {run_id} completion: {e}")

    # ------------------------------------------------------------------
    # Per-record reconciliation
    # ------------------------------------------------------------------

    async def _next_tracking_number(self, state: _RunState) -> str:
        return await state.tracking_numbers.next_unused(self.repository.tracking_number_exists)

    async def _lookup(self, container_no: str, state: _RunState) -> Optional[ExistingLoad]:
        if container_no in state.seen:
            return state.seen[container_no]
        return await self.repository.find_by_container_number(container_no)

    async def _process(
        self,
        raw: Dict[str, Any],
        state: _RunState,
        timestamp_aware: bool = False,
        reconcile: bool = False,
    ) -> None:
        raw = raw if isinstance(raw, dict) else {}
        reference = str(raw.get("reference_number") or raw.get("_id") or raw.get("containerNo") or "unknown")
        try:
            load = PortProLoad.model_validate(raw)
        except ValidationError as e:
            state.record_error(RecordError("Process", reference, e))
            logger.warning(f"Could not decode PortPro load {reference}: {e}")
            return

        if not load.container_no:
            logger.info(f"Skipping load {load.label} - no container number")
            state.skipped += 1
            return

        try:
            await self._upsert(load, state, timestamp_aware=timestamp_aware, reconcile=reconcile)
        except RecordError as e:
            logger.error(f"PortPro sync error: {e}", exc_info=e.cause)
            state.record_error(e)
        except Exception as e:
            logger.error(f"Error processing PortPro load {load.label}: {e}", exc_info=True)
            state.record_error(RecordError("Process", load.label, e))

    async def _upsert(self, load: PortProLoad, state: _RunState, timestamp_aware: bool, reconcile: bool) -> None:
        now = self._clock()
        container_no = load.container_no

        try:
            existing = await self._lookup(container_no, state)
        except Exception as e:
            raise RecordError("Select", load.label, e) from e

        upstream_updated = as_utc(load.updated_at)
        if timestamp_aware:
            if existing is not None:
                local_updated = as_utc(existing.updated_at)
                if upstream_updated is None or (local_updated is not None and upstream_updated <= local_updated):
                    logger.debug(f"PortPro load {load.label} unchanged since last sync")
                    state.unchanged += 1
                    return
            stamp = upstream_updated or as_utc(now)
        else:
            stamp = as_utc(now)

        values = build_load_values(load, synced_at=stamp)

        if existing is not None:
            if reconcile and existing.status != values["status"]:
                state.discrepancies += 1
                logger.info(f"Discrepancy: {load.label} status {existing.status} -> {values['status']}")
            try:
                await self.repository.update_load(existing.id, values)
            except Exception as e:
                raise RecordError("Update", load.label, e) from e
            load_id = existing.id
            tracking_number = existing.tracking_number
        else:
            try:
                tracking_number = await self._next_tracking_number(state)
                load_id = await self.repository.insert_load(values, tracking_number)
            except Exception as e:
                raise RecordError("Insert", load.label, e) from e

        state.seen[container_no] = ExistingLoad(
            id=load_id,
            tracking_number=tracking_number,
            status=values["status"],
            updated_at=stamp,
        )

        events = flatten_driver_orders(load.driver_order, load_id=load_id, now=now)
        try:
            await self.repository.replace_synced_events(load_id, events)
        except Exception as e:
            raise RecordError("Events", load.label, e) from e

        # A record counts once: synced or updated only when its events landed too
        if existing is not None:
            state.updated += 1
            logger.info(f"Updated load for {load.label} ({container_no})")
        else:
            state.synced += 1
            logger.info(f"Created load for {load.label} ({container_no}) - Tracking: {tracking_number}")

    def _summary(self, state: _RunState, cls=SyncSummary, **extra: Any):
        limit = self.settings.portpro_error_detail_limit
        return cls(
            success=True,
            total=state.total,
            synced=state.synced,
            updated=state.updated,
            unchanged=state.unchanged,
            skipped=state.skipped,
            errors=state.errors,
            error_details=state.error_details[:limit] or None,
            duration_ms=state.duration_ms,
            **extra,
        )

    async def _run_page(
        self,
        sync_type: SyncType,
        skip: int,
        limit: int,
        timestamp_aware: bool,
    ) -> SyncSummary:
        state = self._new_state()
        run_id = await self._start_run(sync_type, {"skip": skip, "limit": limit})
        try:
            return await self._run_page_body(run_id, state, sync_type, skip, limit, timestamp_aware)
        except asyncio.CancelledError:
            await self._record_cancelled(run_id, state, sync_type)
            raise

    async def _record_cancelled(self, run_id: Optional[str], state: _RunState, sync_type: SyncType) -> None:
        logger.warning(f"PortPro {sync_type.value} sync cancelled after {state.total} loads")
        await self._finish_run(run_id, state, SyncRunStatus.FAILED, error_message=CANCELLED_MESSAGE)

    async def _run_page_body(
        self,
        run_id: Optional[str],
        state: _RunState,
        sync_type: SyncType,
        skip: int,
        limit: int,
        timestamp_aware: bool,
    ) -> SyncSummary:
        try:
            raw_loads = await self.client.get_loads(skip=skip, limit=limit)
        except Exception as e:
            logger.error(f"PortPro fetch failed ({sync_type.value} sync): {e}")
            await self._finish_run(run_id, state, SyncRunStatus.FAILED, error_message=str(e))
            raise

        state.total = len(raw_loads)
        logger.info(f"Fetched {state.total} loads from PortPro (skip: {skip}, limit: {limit})")

        for raw in raw_loads:
            await self._process(raw, state, timestamp_aware=timestamp_aware)

        summary = self._summary(
            state,
            message="Sync completed" if raw_loads else "No loads found in PortPro",
            has_more=len(raw_loads) == limit,
            next_skip=skip + len(raw_loads),
            run_id=run_id,
        )
        await self._finish_run(run_id, state, SyncRunStatus.COMPLETED, metadata={"skip": skip, "limit": limit})
        logger.info(
            f"PortPro {sync_type.value} sync finished",
            extra={"sync_type": sync_type.value, **summary.model_dump(exclude={"error_details", "message"})},
        )
        return summary

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def sync_page(self, skip: int = 0, limit: Optional[int] = None) -> SyncSummary:
        """
        Manual admin sync of one page of PortPro loads.

        Every load with a container number is written; loads without one are
        counted as skipped.
        """
        limit = limit or self.settings.portpro_sync_page_size
        return await self._run_page(SyncType.MANUAL, skip, limit, timestamp_aware=False)

    async def poll(self, limit: Optional[int] = None, skip: int = 0) -> SyncSummary:
        """
        Scheduled poll: like :meth:`sync_page`, but an existing load is only
        rewritten when PortPro's ``updatedAt`` is newer than the local
        ``updated_at``. The local row is stamped with the upstream timestamp,
        so polling unchanged data writes nothing.
        """
        limit = limit or self.settings.portpro_poll_limit
        return await self._run_page(SyncType.POLL, skip, limit, timestamp_aware=True)

    async def reconcile(self, batch_size: Optional[int] = None) -> ReconcileSummary:
        """
        Full reconciliation: page through every PortPro load, rewrite every
        load with a container number, and count status discrepancies between
        the local row and PortPro.
        """
        batch_size = batch_size or self.settings.portpro_reconcile_batch_size
        delay = self.settings.portpro_reconcile_batch_delay_seconds
        state = self._new_state()
        run_id = await self._start_run(SyncType.RECONCILE, {"triggered_by": "cron", "batch_size": batch_size})
        try:
            return await self._reconcile_body(run_id, state, batch_size, delay)
        except asyncio.CancelledError:
            await self._record_cancelled(run_id, state, SyncType.RECONCILE)
            raise

    async def _reconcile_body(
        self,
        run_id: Optional[str],
        state: _RunState,
        batch_size: int,
        delay: float,
    ) -> ReconcileSummary:
        raw_loads: List[Dict[str, Any]] = []
        skip = 0
        try:
            while True:
                page = await self.client.get_loads(skip=skip, limit=batch_size)
                raw_loads.extend(page)
                skip += len(page)
                if len(page) < batch_size:
                    break
                # Stay under the PortPro rate limit
                await asyncio.sleep(delay)
        except Exception as e:
            logger.error(f"PortPro reconciliation fetch failed after {len(raw_loads)} loads: {e}")
            await self._finish_run(run_id, state, SyncRunStatus.FAILED, error_message=str(e))
            raise

        state.total = len(raw_loads)
        logger.info(f"Reconciliation: Fetched {state.total} loads from PortPro")

        for raw in raw_loads:
            await self._process(raw, state, reconcile=True)

        summary = self._summary(
            state,
            cls=ReconcileSummary,
            message="Reconciliation completed",
            has_more=False,
            next_skip=state.total,
            discrepancies=state.discrepancies,
            run_id=run_id,
        )
        await self._finish_run(run_id, state, SyncRunStatus.COMPLETED, metadata={"triggered_by": "cron"})

        if state.discrepancies > self.settings.portpro_discrepancy_alert_threshold:
            logger.warning(
                f"Reconciliation drift: {state.discrepancies} status discrepancies across {state.total} loads",
                extra={"discrepancies": state.discrepancies, "total": state.total},
            )
        return summary

    async def check_connection(self) -> ConnectionCheck:
        """Fetch a single load to prove the credentials and endpoint work."""
        loads = await self.client.get_loads(limit=1)
        sample = None
        if loads:
            first = loads[0]
            sample = SampleLoad(reference=first.get("reference_number"), container=first.get("containerNo"))
        return ConnectionCheck(sample_load=sample)
