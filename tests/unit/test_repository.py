from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.models.load import LoadEvent, timeline_order
from app.models.sync_run import SyncRun
from app.schemas.portpro import PortProLoad
from app.services.portpro.events import flatten_driver_orders
from app.services.portpro.mappers import build_load_values
from app.services.portpro.repository import LoadRepository
from tests.fakes import utc

NOW = utc(2026, 1, 20, 12, 0)

RAW_LOAD = {
    "_id": "65a0f1",
    "reference_number": "REF-100",
    "type_of_load": "IMPORT",
    "status": "PICKED UP",
    "containerNo": "MSCU1234567",
    "driverOrder": [
        {
            "driver": {"firstName": "Ana", "lastName": "Diaz"},
            "moves": [{"type": "PULLCONTAINER"}, {"type": "DELIVERLOAD"}],
        }
    ],
}


async def _insert(repository: LoadRepository, raw=RAW_LOAD, tracking_number="NSLTEST0001") -> str:
    load = PortProLoad.model_validate(raw)
    return await repository.insert_load(build_load_values(load, synced_at=NOW), tracking_number)


async def _events(db, load_id):
    result = await db.execute(
        select(LoadEvent).where(LoadEvent.load_id == load_id).order_by(*timeline_order())
    )
    return list(result.scalars().all())


class TestLoads:
    async def test_insert_and_find_by_container(self, db_session):
        repository = LoadRepository(db_session)
        load_id = await _insert(repository)

        existing = await repository.find_by_container_number("MSCU1234567")

        assert existing.id == load_id
        assert existing.tracking_number == "NSLTEST0001"
        assert existing.status == "picked_up"
        assert await repository.find_by_container_number("TGHU0000000") is None

    async def test_find_by_reference(self, db_session):
        repository = LoadRepository(db_session)
        load_id = await _insert(repository)

        assert (await repository.find_by_reference("REF-100")).id == load_id

    async def test_tracking_number_exists(self, db_session):
        repository = LoadRepository(db_session)
        await _insert(repository)

        assert await repository.tracking_number_exists("NSLTEST0001")
        assert not await repository.tracking_number_exists("NSLTEST0002")

    async def test_update_never_touches_tracking_number(self, db_session):
        repository = LoadRepository(db_session)
        load_id = await _insert(repository)

        await repository.update_load(load_id, {"status": "delivered", "tracking_number": "NSLOTHER"})

        existing = await repository.find_by_container_number("MSCU1234567")
        assert existing.status == "delivered"
        assert existing.tracking_number == "NSLTEST0001"


class TestReplaceSyncedEvents:
    async def test_replaces_synced_rows_and_keeps_manual_ones(self, db_session):
        repository = LoadRepository(db_session)
        load_id = await _insert(repository)
        db_session.add(LoadEvent(id="note-1", load_id=load_id, event_type="note", description="Gate appointment moved"))
        await db_session.commit()

        load = PortProLoad.model_validate(RAW_LOAD)
        first = await repository.replace_synced_events(load_id, flatten_driver_orders(load.driver_order, now=NOW))
        second = await repository.replace_synced_events(load_id, flatten_driver_orders(load.driver_order, now=NOW))

        assert first == second == 3
        events = await _events(db_session, load_id)
        assert sorted(event.event_type for event in events) == ["move_start", "note", "stop", "stop"]
        stops = [event for event in events if event.event_type == "stop"]
        assert [stop.stop_number for stop in stops] == [1, 2]
        assert all(stop.driver_name == "Ana Diaz" for stop in stops)
        assert all(stop.portpro_event for stop in stops)

    async def test_move_start_is_stored_without_stop_number_and_sorts_first(self, db_session):
        repository = LoadRepository(db_session)
        load_id = await _insert(repository)
        load = PortProLoad.model_validate(RAW_LOAD)
        await repository.replace_synced_events(load_id, flatten_driver_orders(load.driver_order, now=NOW))

        events = await _events(db_session, load_id)

        assert [event.event_type for event in events] == ["move_start", "stop", "stop"]
        assert [event.stop_number for event in events] == [None, 1, 2]

    async def test_empty_event_set_clears_synced_rows(self, db_session):
        repository = LoadRepository(db_session)
        load_id = await _insert(repository)
        load = PortProLoad.model_validate(RAW_LOAD)
        await repository.replace_synced_events(load_id, flatten_driver_orders(load.driver_order, now=NOW))

        assert await repository.replace_synced_events(load_id, []) == 0
        assert await _events(db_session, load_id) == []


class TestSyncRuns:
    async def test_start_and_finish(self, db_session):
        repository = LoadRepository(db_session)
        run_id = await repository.start_run("poll", {"limit": 100})

        await repository.finish_run(
            run_id,
            "completed",
            records_processed=10,
            records_failed=2,
            metadata={"synced": 3, "updated": 5},
        )
        db_session.expire_all()

        run = (await db_session.execute(select(SyncRun).where(SyncRun.id == run_id))).scalar_one()
        assert run.status == "completed"
        assert run.records_processed == 10
        assert run.records_failed == 2
        assert run.metadata_json == {"synced": 3, "updated": 5}
        assert run.completed_at is not None

    async def test_list_runs_newest_first(self, db_session):
        repository = LoadRepository(db_session)
        first = await repository.start_run("manual")
        second = await repository.start_run("reconcile")

        runs = await repository.list_runs(limit=10)

        assert [run.id for run in runs] == [second, first]


class TestReadFailures:
    @pytest.fixture
    def broken_session(self):
        session = AsyncMock()
        session.execute.side_effect = OperationalError("SELECT", {}, Exception("connection reset"))
        return session

    async def test_tracking_number_lookup_rolls_back(self, broken_session):
        repository = LoadRepository(broken_session)

        with pytest.raises(OperationalError):
            await repository.tracking_number_exists("NSLTEST0001")

        broken_session.rollback.assert_awaited_once()

    async def test_list_runs_rolls_back(self, broken_session):
        repository = LoadRepository(broken_session)

        with pytest.raises(OperationalError):
            await repository.list_runs()

        broken_session.rollback.assert_awaited_once()

    async def test_container_lookup_rolls_back(self, broken_session):
        repository = LoadRepository(broken_session)

        with pytest.raises(OperationalError):
            await repository.find_by_container_number("MSCU1234567")

        broken_session.rollback.assert_awaited_once()
