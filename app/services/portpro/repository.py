"""Persistence for the PortPro sync: loads, their synced events and the run log."""

import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Result
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.load import SYNCED_EVENT_TYPES, Load, LoadEvent
from app.models.sync_run import SyncRun, SyncRunStatus

logger = logging.getLogger(__name__)


@dataclass
class ExistingLoad:
    """The slice of a local load the sync needs to decide insert vs. update."""
    id: str
    tracking_number: str
    status: Optional[str] = None
    updated_at: Optional[datetime] = None


class LoadRepository:
    """Data access for the sync coordinator.

    Each write commits on its own; a failed statement rolls the session back
    and re-raises so the caller can record a per-record error and move on.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[None]:
        try:
            yield
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def _execute(self, statement) -> Result:
        """Run a read; a failed statement rolls the session back so it stays usable."""
        try:
            return await self.db.execute(statement)
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def _first(self, *criteria) -> Optional[ExistingLoad]:
        result = await self._execute(
            select(Load.id, Load.tracking_number, Load.status, Load.updated_at)
            .where(*criteria)
            .order_by(Load.created_at)
            .limit(1)
        )
        row = result.first()
        if row is None:
            return None
        return ExistingLoad(
            id=row.id,
            tracking_number=row.tracking_number,
            status=row.status,
            updated_at=row.updated_at,
        )

    async def find_by_container_number(self, container_number: str) -> Optional[ExistingLoad]:
        return await self._first(Load.container_number == container_number)

    async def find_by_reference(self, reference: str) -> Optional[ExistingLoad]:
        return await self._first(Load.portpro_reference == reference)

    async def tracking_number_exists(self, tracking_number: str) -> bool:
        result = await self._execute(
            select(Load.id).where(Load.tracking_number == tracking_number).limit(1)
        )
        return result.first() is not None

    async def insert_load(self, values: Dict[str, Any], tracking_number: str) -> str:
        """Insert a new load and return its id."""
        load_id = str(uuid.uuid4())
        async with self._transaction():
            self.db.add(Load(id=load_id, tracking_number=tracking_number, **values))
        return load_id

    async def update_load(self, load_id: str, values: Dict[str, Any]) -> None:
        """Update a load in place. The tracking number is never part of ``values``."""
        values = {key: value for key, value in values.items() if key not in ("id", "tracking_number")}
        async with self._transaction():
            await self.db.execute(update(Load).where(Load.id == load_id).values(**values))

    async def replace_synced_events(self, load_id: str, events: List[Dict[str, Any]]) -> int:
        """
        Replace the PortPro-derived events of a load.

        Existing ``move_start`` / ``stop`` rows are deleted and the new set is
        written with a single multi-row insert. Manually added events (notes,
        documents, exceptions) are left alone.
        """
        rows = [{**event, "id": str(uuid.uuid4()), "load_id": load_id} for event in events]
        async with self._transaction():
            await self.db.execute(
                delete(LoadEvent).where(
                    LoadEvent.load_id == load_id,
                    LoadEvent.event_type.in_(SYNCED_EVENT_TYPES),
                )
            )
            if rows:
                await self.db.execute(insert(LoadEvent), rows)
        logger.debug(f"Replaced synced events for load {load_id}: {len(rows)} rows")
        return len(rows)

    async def add_event(self, load_id: str, values: Dict[str, Any]) -> str:
        """Append one timeline entry (status update, document, note) to a load."""
        event_id = str(uuid.uuid4())
        async with self._transaction():
            self.db.add(LoadEvent(id=event_id, load_id=load_id, **values))
        return event_id

    async def start_run(self, sync_type: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        run_id = str(uuid.uuid4())
        async with self._transaction():
            self.db.add(
                SyncRun(
                    id=run_id,
                    sync_type=sync_type,
                    status=SyncRunStatus.RUNNING.value,
                    started_at=datetime.now(timezone.utc),
                    metadata_json=metadata or {},
                )
            )
        return run_id

    async def finish_run(
        self,
        run_id: str,
        status: str,
        records_processed: int = 0,
        records_failed: int = 0,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        async with self._transaction():
            await self.db.execute(
                update(SyncRun)
                .where(SyncRun.id == run_id)
                .values({
                    SyncRun.status: status,
                    SyncRun.completed_at: datetime.now(timezone.utc),
                    SyncRun.records_processed: records_processed,
                    SyncRun.records_failed: records_failed,
                    SyncRun.error_message: error_message,
                    SyncRun.metadata_json: metadata,
                })
            )

    async def list_runs(self, limit: int = 20) -> List[SyncRun]:
        result = await self._execute(
            select(SyncRun).order_by(SyncRun.started_at.desc()).limit(limit)
        )
        return list(result.scalars().all())
