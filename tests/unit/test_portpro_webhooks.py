from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from app.models.load import Load, LoadEvent
from app.models.webhook import PortProDeadLetter, PortProWebhookLog
from app.schemas.webhook import PortProWebhookEvent
from app.services.number_generator import is_tracking_number
from app.services.portpro.dead_letters import DeadLetterQueue, backoff_delay
from app.services.portpro.webhooks import PortProWebhookService, idempotency_key
from tests.fakes import utc


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **delta):
        self.now = self.now + timedelta(**delta)


@pytest.fixture
def clock():
    return Clock(utc(2026, 1, 20, 12, 0))


@pytest.fixture
def service(db_session, test_settings, clock):
    return PortProWebhookService(db_session, settings=test_settings, clock=clock)


def _created(reference="REF-1", container="MSCU0000001", **data):
    return {
        "event_type": "load#created",
        "reference_number": reference,
        "data": {
            "_id": f"pp-{reference}",
            "reference_number": reference,
            "containerNo": container,
            "status": "PENDING",
            "caller": {"company_name": "Acme Imports", "email": "ops@acme.test"},
            "createdAt": "2026-01-20T11:00:00Z",
            **data,
        },
    }


def _status(reference="REF-1", status="DISPATCHED", updated_at="2026-01-20T11:30:00Z"):
    return {
        "eventType": "load#status_updated",
        "data": {"reference_number": reference, "status": status, "updatedAt": updated_at},
    }


async def _load(db, reference="REF-1"):
    db.expire_all()
    return (await db.execute(select(Load).where(Load.portpro_reference == reference))).scalar_one_or_none()


async def _events(db, load_id):
    result = await db.execute(select(LoadEvent).where(LoadEvent.load_id == load_id).order_by(LoadEvent.created_at))
    return list(result.scalars().all())


class TestIdempotencyKey:
    def test_type_reference_and_timestamp(self):
        payload = _status()
        key = idempotency_key(PortProWebhookEvent.model_validate(payload), payload)
        assert key == "load_status_updated:REF-1:2026-01-20T11:30:00Z"

    def test_unsafe_characters_are_replaced(self):
        payload = {"event_type": "load#created", "reference_number": "A/B C", "data": {"createdAt": "x"}}
        key = idempotency_key(PortProWebhookEvent.model_validate(payload), payload)
        assert key == "load_created:A_B_C:x"

    def test_payloads_without_timestamp_are_told_apart(self):
        first = {"event_type": "load#status_updated", "reference_number": "REF-1", "data": {"status": "DISPATCHED"}}
        second = {"event_type": "load#status_updated", "reference_number": "REF-1", "data": {"status": "DROPPED"}}

        first_key = idempotency_key(PortProWebhookEvent.model_validate(first), first)
        second_key = idempotency_key(PortProWebhookEvent.model_validate(second), second)

        assert first_key != second_key
        assert first_key.startswith("load_status_updated:REF-1:")


class TestReceive:
    async def test_load_created_inserts_load_and_event(self, service, db_session):
        ack = await service.receive(_created())

        assert ack.success is True
        assert ack.event == "load#created"
        load = await _load(db_session)
        assert is_tracking_number(load.tracking_number)
        assert load.container_number == "MSCU0000001"
        assert load.status == "booked"
        assert load.customer_name == "Acme Imports"
        assert load.portpro_load_id == "pp-REF-1"
        events = await _events(db_session, load.id)
        assert [event.description for event in events] == ["Load created in PortPro: REF-1"]

    async def test_load_created_with_driver_orders_builds_timeline(self, service, db_session):
        await service.receive(_created(driverOrder=[{"moves": [{"type": "PULLCONTAINER"}, {"type": "DELIVERLOAD"}]}]))

        load = await _load(db_session)
        kinds = sorted(event.event_type for event in await _events(db_session, load.id))
        assert kinds == ["move_start", "status_update", "stop", "stop"]

    async def test_load_created_for_known_container_is_ignored(self, service, db_session):
        db_session.add(Load(id="load-1", tracking_number="NSLEXISTING1", status="in_transit", container_number="MSCU0000001"))
        await db_session.commit()

        ack = await service.receive(_created())

        assert ack.success is True
        assert (await db_session.execute(select(Load))).scalars().all()[0].tracking_number == "NSLEXISTING1"
        assert len((await db_session.execute(select(Load))).scalars().all()) == 1

    async def test_status_update_maps_status_and_adds_event(self, service, db_session):
        await service.receive(_created())

        ack = await service.receive(_status(status="DISPATCHED"))

        assert ack.success is True
        load = await _load(db_session)
        assert load.status == "in_transit"
        descriptions = [event.description for event in await _events(db_session, load.id)]
        assert "Container dispatched and in transit" in descriptions

    async def test_status_update_without_known_description(self, service, db_session):
        await service.receive(_created())

        await service.receive(_status(status="CUSTOMS HOLD"))

        load = await _load(db_session)
        assert load.status == "at_terminal"
        descriptions = [event.description for event in await _events(db_session, load.id)]
        assert "Status updated to at_terminal" in descriptions

    async def test_status_from_changed_values(self, service, db_session):
        await service.receive(_created())

        await service.receive({
            "event_type": "load#status_updated",
            "reference_number": "REF-1",
            "changedValues": {"status": "DROPPED"},
        })

        assert (await _load(db_session)).status == "out_for_delivery"

    async def test_dates_update(self, service, db_session):
        await service.receive(_created())

        await service.receive({
            "event_type": "load#dates_updated",
            "reference_number": "REF-1",
            "data": {
                "deliveryTimes": [{"deliveryFromTime": "2026-01-22T09:00:00Z"}],
                "pickupTimes": [{"pickupFromTime": "2026-01-21T07:00:00Z"}],
                "updatedAt": "2026-01-20T11:40:00Z",
            },
        })

        load = await _load(db_session)
        assert load.eta.replace(tzinfo=None) == utc(2026, 1, 22, 9, 0).replace(tzinfo=None)
        assert load.pickup_time.replace(tzinfo=None) == utc(2026, 1, 21, 7, 0).replace(tzinfo=None)
        assert load.container_number == "MSCU0000001"

    async def test_equipment_update(self, service, db_session):
        await service.receive(_created())

        await service.receive({
            "event_type": "load#equipment_updated",
            "reference_number": "REF-1",
            "data": {"chassisNo": "CH-77", "sealNo": "SL-9", "updatedAt": "2026-01-20T11:45:00Z"},
        })

        load = await _load(db_session)
        assert load.chassis_number == "CH-77"
        assert load.seal_number == "SL-9"
        assert load.container_number == "MSCU0000001"

    async def test_pod_marks_load_delivered(self, service, db_session):
        await service.receive(_created())

        await service.receive({"event_type": "document#pod_added", "reference_number": "REF-1", "data": {}})

        load = await _load(db_session)
        assert load.status == "delivered"
        descriptions = [event.description for event in await _events(db_session, load.id)]
        assert "POD document added" in descriptions
        assert "Proof of delivery received" in descriptions

    async def test_delivery_order_document(self, service, db_session):
        await service.receive(_created())

        await service.receive({"event_type": "document#delivery_order_added", "reference_number": "REF-1", "data": {}})

        load = await _load(db_session)
        assert load.status == "booked"
        events = await _events(db_session, load.id)
        assert any(event.event_type == "document" and event.description == "DO document added" for event in events)

    async def test_tender_status_changed(self, service, db_session):
        await service.receive(_created())

        await service.receive({
            "event_type": "tender#status_changed",
            "data": {"loadReferenceNumber": "REF-1", "status": "ACCEPTED"},
        })

        load = await _load(db_session)
        assert "Tender accepted" in [event.description for event in await _events(db_session, load.id)]

    async def test_unhandled_and_unknown_loads_are_acknowledged(self, service, db_session):
        assert (await service.receive({"event_type": "driver#location", "data": {}})).success is True
        assert (await service.receive(_status(reference="NOPE"))).success is True
        assert (await db_session.execute(select(Load))).scalars().all() == []

    async def test_every_delivery_is_logged(self, service, db_session):
        await service.receive(_created())
        await service.receive(_status())

        logs = (await db_session.execute(select(PortProWebhookLog))).scalars().all()
        assert sorted(log.event_type for log in logs) == ["load#created", "load#status_updated"]
        assert all(log.processed for log in logs)


class TestRedelivery:
    async def test_redelivery_is_reported_as_duplicate(self, service, db_session):
        first = await service.receive(_status())
        second = await service.receive(_status())

        assert first.duplicate is None
        assert second.duplicate is True
        assert second.success is True

    async def test_redelivery_after_the_window_is_processed_again(self, service, clock):
        await service.receive(_status())
        clock.advance(hours=25)

        ack = await service.receive(_status())

        assert ack.duplicate is None

    async def test_failed_delivery_is_not_a_duplicate(self, service, db_session, monkeypatch):
        monkeypatch.setattr(service, "dispatch", AsyncMock(side_effect=RuntimeError("boom")))
        await service.receive(_status())
        monkeypatch.setattr(service, "dispatch", AsyncMock())

        ack = await service.receive(_status())

        assert ack.success is True
        assert ack.duplicate is None


class TestDeadLetters:
    async def test_failure_is_queued_and_acknowledged(self, service, db_session, clock, monkeypatch):
        monkeypatch.setattr(service, "dispatch", AsyncMock(side_effect=RuntimeError("boom")))

        ack = await service.receive(_status())

        assert ack.success is False
        assert ack.queued is True
        assert ack.error == "Processing failed, queued for retry"
        item = (await db_session.execute(select(PortProDeadLetter))).scalar_one()
        assert item.event_type == "load#status_updated"
        assert item.attempts == 1
        assert item.error == "boom"
        assert item.next_retry_at.replace(tzinfo=None) == (clock.now + timedelta(seconds=300)).replace(tzinfo=None)
        log = (await db_session.execute(select(PortProWebhookLog))).scalar_one()
        assert log.processed is False
        assert log.error_message == "boom"

    async def test_retry_waits_for_backoff(self, service, db_session, clock, monkeypatch):
        monkeypatch.setattr(service, "dispatch", AsyncMock(side_effect=RuntimeError("boom")))
        await service.receive(_status())

        summary = await service.retry_dead_letters()

        assert summary.retried == 0

    async def test_successful_retry_removes_item_and_applies_event(self, service, db_session, clock, monkeypatch):
        await service.receive(_created())
        original_dispatch = service.dispatch
        monkeypatch.setattr(service, "dispatch", AsyncMock(side_effect=RuntimeError("db down")))
        await service.receive(_status(status="COMPLETED"))
        monkeypatch.setattr(service, "dispatch", original_dispatch)
        clock.advance(minutes=6)

        summary = await service.retry_dead_letters()

        assert (summary.retried, summary.succeeded, summary.failed) == (1, 1, 0)
        assert (await db_session.execute(select(PortProDeadLetter))).scalars().all() == []
        assert (await _load(db_session)).status == "delivered"
        assert (await service.receive(_status(status="COMPLETED"))).duplicate is True

    async def test_failed_retries_back_off_until_exhausted(self, service, db_session, clock, monkeypatch):
        monkeypatch.setattr(service, "dispatch", AsyncMock(side_effect=RuntimeError("boom")))
        await service.receive(_status())

        for _ in range(10):
            clock.advance(hours=5)
            await service.retry_dead_letters()

        db_session.expire_all()
        item = (await db_session.execute(select(PortProDeadLetter))).scalar_one()
        assert item.attempts == _max_retries(service)
        assert item.next_retry_at is None
        stats = await service.dead_letters.stats()
        assert stats.max_retries_reached == 1

    async def test_manual_retry(self, service, db_session, monkeypatch):
        await service.receive(_created())
        original_dispatch = service.dispatch
        monkeypatch.setattr(service, "dispatch", AsyncMock(side_effect=RuntimeError("boom")))
        await service.receive(_status(status="DROPPED"))
        monkeypatch.setattr(service, "dispatch", original_dispatch)
        item_id = (await db_session.execute(select(PortProDeadLetter.id))).scalar_one()

        assert await service.retry_dead_letter(item_id) is True
        assert await service.retry_dead_letter("missing") is None
        assert (await _load(db_session)).status == "out_for_delivery"


def _max_retries(service) -> int:
    return service.settings.portpro_dlq_max_retries


class TestDeadLetterQueue:
    def test_backoff_schedule(self):
        assert [backoff_delay(n).total_seconds() for n in range(0, 7)] == [60, 300, 900, 3600, 14400, 14400, 14400]

    async def test_stats_remove_and_clear(self, db_session, test_settings, clock):
        queue = DeadLetterQueue(db_session, test_settings, clock=clock)
        first = await queue.push("load#created", {"event_type": "load#created"}, "boom")
        clock.advance(minutes=1)
        await queue.push("load#status_updated", {"event_type": "load#status_updated"}, "boom")
        await queue.push("load#status_updated", {"event_type": "load#status_updated"}, "boom")

        stats = await queue.stats()

        assert stats.count == 3
        assert stats.by_event_type == {"load#created": 1, "load#status_updated": 2}
        assert stats.max_retries_reached == 0
        assert stats.oldest_item.replace(tzinfo=None) == utc(2026, 1, 20, 12, 0).replace(tzinfo=None)
        assert await queue.remove(first) is True
        assert await queue.remove(first) is False
        assert await queue.clear() == 2
        assert (await queue.stats()).count == 0
