"""In-memory fakes for the sync repository and the PortPro client."""
import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.services.portpro.repository import ExistingLoad


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class FakeLoadRepository:
    """In-memory stand-in for LoadRepository."""

    def __init__(self) -> None:
        self.loads: Dict[str, Dict[str, Any]] = {}
        self.events: Dict[str, List[Dict[str, Any]]] = {}
        self.runs: Dict[str, Dict[str, Any]] = {}
        self.failing_inserts: set = set()
        self.failing_lookups: set = set()
        self.insert_calls = 0
        self.update_calls = 0
        self.event_writes = 0

    def seed(self, container_number: str, tracking_number: str, **values: Any) -> str:
        load_id = f"load-{len(self.loads) + 1}"
        self.loads[load_id] = {
            "id": load_id,
            "container_number": container_number,
            "tracking_number": tracking_number,
            "status": "booked",
            "updated_at": None,
            **values,
        }
        return load_id

    def by_container(self, container_number: str) -> Optional[Dict[str, Any]]:
        for load in self.loads.values():
            if load["container_number"] == container_number:
                return load
        return None

    async def find_by_container_number(self, container_number: str) -> Optional[ExistingLoad]:
        if container_number in self.failing_lookups:
            raise SQLAlchemyError("connection reset")
        load = self.by_container(container_number)
        if load is None:
            return None
        return ExistingLoad(
            id=load["id"],
            tracking_number=load["tracking_number"],
            status=load.get("status"),
            updated_at=load.get("updated_at"),
        )

    async def tracking_number_exists(self, tracking_number: str) -> bool:
        return any(load["tracking_number"] == tracking_number for load in self.loads.values())

    async def insert_load(self, values: Dict[str, Any], tracking_number: str) -> str:
        if values.get("container_number") in self.failing_inserts:
            raise SQLAlchemyError("duplicate key value violates unique constraint")
        self.insert_calls += 1
        load_id = f"load-{len(self.loads) + 1}"
        self.loads[load_id] = {**values, "id": load_id, "tracking_number": tracking_number}
        return load_id

    async def update_load(self, load_id: str, values: Dict[str, Any]) -> None:
        self.update_calls += 1
        self.loads[load_id].update(values)

    async def replace_synced_events(self, load_id: str, events: List[Dict[str, Any]]) -> int:
        self.event_writes += 1
        self.events[load_id] = [dict(event) for event in events]
        return len(events)

    async def start_run(self, sync_type: str, metadata: Optional[Dict[str, Any]] = None) -> str:
        run_id = f"run-{len(self.runs) + 1}"
        self.runs[run_id] = {"sync_type": sync_type, "status": "running", "metadata": metadata}
        return run_id

    async def finish_run(self, run_id: str, status: str, **kwargs: Any) -> None:
        self.runs[run_id].update(status=status, **kwargs)


class FakePortProClient:
    """Serves a fixed list of raw PortPro loads, paginated by skip/limit."""

    def __init__(
        self,
        loads: Optional[List[Dict[str, Any]]] = None,
        error: Optional[Exception] = None,
        delay: float = 0,
    ) -> None:
        self.loads = list(loads or [])
        self.error = error
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    async def get_loads(self, skip: int = 0, limit: int = 50, status=None, type_of_load=None):
        self.calls.append({"skip": skip, "limit": limit})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.loads[skip: skip + limit]


