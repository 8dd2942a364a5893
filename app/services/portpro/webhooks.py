"""
PortPro webhook ingestion.

Each delivery is logged, checked against recently processed deliveries with
the same idempotency key, and applied to the matching local load. A delivery
that fails is parked in the dead-letter queue and retried later, and PortPro
still gets a 200 for it.
"""

import hashlib
import json
import logging
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.models.load import LoadEventType, LoadStatus
from app.models.webhook import PortProWebhookLog
from app.schemas.portpro import PortProLoad
from app.schemas.webhook import DeadLetterResponse, DeadLetterRetrySummary, PortProWebhookEvent, WebhookAck
from app.services.number_generator import TrackingNumberGenerator
from app.services.portpro.dead_letters import DeadLetterQueue
from app.services.portpro.events import flatten_driver_orders
from app.services.portpro.mappers import build_load_values, map_status
from app.services.portpro.repository import ExistingLoad, LoadRepository

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^a-zA-Z0-9:_-]")

STATUS_DESCRIPTIONS: Dict[str, str] = {
    LoadStatus.BOOKED.value: "Load booked and confirmed",
    LoadStatus.IN_TRANSIT.value: "Container dispatched and in transit",
    LoadStatus.OUT_FOR_DELIVERY.value: "Container dropped for delivery",
    LoadStatus.DELIVERED.value: "Load completed",
}

DOCUMENT_LABELS: Dict[str, str] = {
    "pod": "POD",
    "delivery_order": "DO",
}


def idempotency_key(event: PortProWebhookEvent, payload: Dict[str, Any]) -> str:
    """
    ``<event type>:<reference>:<timestamp>`` with unsafe characters replaced.

    Deliveries without an ``updatedAt``/``createdAt`` are keyed by a hash of
    the payload instead, so two different updates of the same load are never
    mistaken for one another.
    """
    marker = event.timestamp
    if not marker:
        canonical = json.dumps(payload, sort_keys=True, default=str).encode()
        marker = hashlib.sha256(canonical).hexdigest()[:16]
    key = f"{event.event_type or 'unknown'}:{event.reference or 'unknown'}:{marker}"
    return _UNSAFE_KEY_CHARS.sub("_", key)


class PortProWebhookService:
    """Applies PortPro webhook events to local loads and their timelines."""

    def __init__(
        self,
        db: AsyncSession,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        tracking_numbers: Optional[TrackingNumberGenerator] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.repository = LoadRepository(db)
        self.dead_letters = DeadLetterQueue(db, self.settings, clock=self._clock)
        self._tracking_numbers = tracking_numbers or TrackingNumberGenerator()
        self._handlers: Dict[str, Callable[[PortProWebhookEvent], Awaitable[None]]] = {
            "load#created": self._load_created,
            "load#status_updated": self._status_updated,
            "load#info_updated": self._details_updated,
            "load#dates_updated": self._details_updated,
            "load#equipment_updated": self._equipment_updated,
            "tender#status_changed": self._tender_status_changed,
            "customer#created": self._customer_created,
        }

    # ------------------------------------------------------------------
    # Delivery log and redelivery detection
    # ------------------------------------------------------------------

    async def is_processed(self, key: str) -> bool:
        """True when a delivery with ``key`` was processed within the dedup window.

        A failing lookup lets the delivery through.
        """
        since = self._clock() - timedelta(hours=self.settings.portpro_webhook_dedup_hours)
        try:
            result = await self.db.execute(
                select(PortProWebhookLog.id)
                .where(
                    PortProWebhookLog.idempotency_key == key,
                    PortProWebhookLog.processed.is_(True),
                    PortProWebhookLog.processed_at >= since,
                )
                .limit(1)
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Webhook dedup lookup failed for {key}: {e}")
            return False
        return result.first() is not None

    async def _log_delivery(self, event: PortProWebhookEvent, key: str, payload: Dict[str, Any]) -> str:
        log_id = str(uuid.uuid4())
        self.db.add(
            PortProWebhookLog(
                id=log_id,
                event_type=event.event_type or "unknown",
                reference_number=event.reference,
                idempotency_key=key,
                payload=payload,
                created_at=self._clock(),
            )
        )
        await self._commit()
        return log_id

    async def _mark_processed(self, key: str) -> None:
        await self.db.execute(
            update(PortProWebhookLog)
            .where(PortProWebhookLog.idempotency_key == key)
            .values(processed=True, processed_at=self._clock(), error_message=None)
        )
        await self._commit()

    async def _mark_failed(self, log_id: str, error: str) -> None:
        await self.db.execute(
            update(PortProWebhookLog).where(PortProWebhookLog.id == log_id).values(error_message=error)
        )
        await self._commit()

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def receive(self, payload: Dict[str, Any]) -> WebhookAck:
        """
        Process one webhook delivery.

        Returns a duplicate acknowledgement for a redelivery, and a queued
        acknowledgement when processing failed and the event was parked in
        the dead-letter queue. Database failures while logging or queueing
        propagate so the sender retries.
        """
        event = PortProWebhookEvent.model_validate(payload)
        event_type = event.event_type or "unknown"
        logger.info(f"PortPro Webhook received: {event_type} {event.reference or ''}".rstrip())

        key = idempotency_key(event, payload)
        if await self.is_processed(key):
            logger.info(f"PortPro Webhook: duplicate event {key}, skipping")
            return WebhookAck(event=event.event_type, duplicate=True)

        log_id = await self._log_delivery(event, key, payload)
        try:
            await self.dispatch(event)
        except Exception as e:
            logger.error(f"Error processing PortPro webhook {event_type}: {e}", exc_info=True)
            await self._mark_failed(log_id, str(e))
            await self.dead_letters.push(event_type, payload, str(e), idempotency_key=key)
            return WebhookAck(
                success=False,
                event=event.event_type,
                queued=True,
                error="Processing failed, queued for retry",
            )

        await self._mark_processed(key)
        return WebhookAck(event=event.event_type)

    async def dispatch(self, event: PortProWebhookEvent) -> None:
        """Apply one event. Raises when the event could not be applied."""
        event_type = event.event_type or ""
        handler = self._handlers.get(event_type)
        if handler is not None:
            await handler(event)
        elif event_type.startswith("document#") and event_type.endswith("_added"):
            await self._document_added(event, event_type[len("document#"):-len("_added")])
        else:
            logger.info(f"Unhandled PortPro webhook event: {event_type}")

    async def retry_dead_letters(self) -> DeadLetterRetrySummary:
        """Re-dispatch every dead letter whose retry time has come."""
        stats = await self.dead_letters.stats()
        if stats.count >= self.settings.portpro_dlq_alert_threshold:
            logger.warning(
                f"PortPro DLQ holds {stats.count} failed webhooks",
                extra={"by_event_type": stats.by_event_type, "max_retries_reached": stats.max_retries_reached},
            )

        items = await self.dead_letters.ready_for_retry()
        logger.info(f"DLQ Retry: {len(items)} items ready for retry")

        summary = DeadLetterRetrySummary()
        for item in items:
            summary.retried += 1
            if await self._retry(item):
                summary.succeeded += 1
            else:
                summary.failed += 1
        return summary

    async def retry_dead_letter(self, item_id: str) -> Optional[bool]:
        """Retry one dead letter now. ``None`` if there is no such item."""
        item = await self.dead_letters.get(item_id)
        if item is None:
            return None
        return await self._retry(item)

    async def _retry(self, item: DeadLetterResponse) -> bool:
        try:
            event = PortProWebhookEvent.model_validate(item.payload)
            event.event_type = item.event_type
            await self.dispatch(event)
        except Exception as e:
            logger.warning(f"DLQ Retry: {item.id} failed: {e}")
            await self.dead_letters.record_attempt(item.id, item.attempts, success=False, error=str(e))
            return False

        await self.dead_letters.record_attempt(item.id, item.attempts, success=True)
        if item.idempotency_key:
            await self._mark_processed(item.idempotency_key)
        logger.info(f"DLQ Retry: {item.id} succeeded")
        return True

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    async def _find(self, reference: Optional[str], event_type: str) -> Optional[ExistingLoad]:
        if not reference:
            logger.warning(f"PortPro webhook {event_type} has no reference number")
            return None
        existing = await self.repository.find_by_reference(reference)
        if existing is None:
            logger.info(f"PortPro webhook {event_type}: no local load for {reference}")
        return existing

    async def _add_event(self, load_id: str, event_type: LoadEventType, description: str, status: Optional[str] = None):
        await self.repository.add_event(
            load_id,
            {"event_type": event_type.value, "status": status, "description": description, "created_at": self._clock()},
        )

    async def _load_created(self, event: PortProWebhookEvent) -> None:
        reference = event.reference
        load = PortProLoad.model_validate(event.data)
        if reference and await self.repository.find_by_reference(reference):
            logger.info(f"Load {reference} already exists, skipping")
            return
        if load.container_no and await self.repository.find_by_container_number(load.container_no):
            logger.info(f"Load for container {load.container_no} already exists, skipping")
            return

        now = self._clock()
        values = build_load_values(load, synced_at=now)
        values["portpro_reference"] = values["portpro_reference"] or reference
        tracking_number = await self._tracking_numbers.next_unused(self.repository.tracking_number_exists)
        load_id = await self.repository.insert_load(values, tracking_number)
        if load.driver_order:
            await self.repository.replace_synced_events(
                load_id, flatten_driver_orders(load.driver_order, load_id=load_id, now=now)
            )
        await self._add_event(
            load_id, LoadEventType.STATUS_UPDATE, f"Load created in PortPro: {reference}", status=values["status"]
        )
        logger.info(f"Created load {tracking_number} from PortPro {reference}")

    async def _status_updated(self, event: PortProWebhookEvent) -> None:
        data = event.data or event.changed_values
        raw_status = data.get("status") or data.get("newStatus") or event.changed_values.get("status")
        if not raw_status:
            logger.info(f"PortPro status update for {event.reference} carries no status")
            return
        existing = await self._find(event.reference, "load#status_updated")
        if existing is None:
            return

        status = map_status(str(raw_status))
        await self.repository.update_load(existing.id, {"status": status, "updated_at": self._clock()})
        description = STATUS_DESCRIPTIONS.get(status, f"Status updated to {status}")
        await self._add_event(existing.id, LoadEventType.STATUS_UPDATE, description, status=status)
        logger.info(f"Updated load {event.reference} status to {status}")

    async def _details_updated(self, event: PortProWebhookEvent) -> None:
        existing = await self._find(event.reference, event.event_type or "load#info_updated")
        if existing is None:
            return
        load = PortProLoad.model_validate(event.data)
        updates: Dict[str, Any] = {
            "eta": load.delivery_times[0].delivery_from_time if load.delivery_times else None,
            "pickup_time": load.pickup_times[0].pickup_from_time if load.pickup_times else None,
            "container_number": load.container_no,
            "container_size": load.container_size,
        }
        await self._apply_updates(existing, updates)

    async def _equipment_updated(self, event: PortProWebhookEvent) -> None:
        existing = await self._find(event.reference, "load#equipment_updated")
        if existing is None:
            return
        load = PortProLoad.model_validate(event.data)
        updates: Dict[str, Any] = {
            "container_number": load.container_no,
            "chassis_number": load.chassis_no,
            "seal_number": load.seal_no,
        }
        await self._apply_updates(existing, updates)

    async def _apply_updates(self, existing: ExistingLoad, updates: Dict[str, Any]) -> None:
        values = {key: value for key, value in updates.items() if value is not None}
        values["updated_at"] = self._clock()
        await self.repository.update_load(existing.id, values)

    async def _document_added(self, event: PortProWebhookEvent, document_type: str) -> None:
        existing = await self._find(event.reference, f"document#{document_type}_added")
        if existing is None:
            return
        label = DOCUMENT_LABELS.get(document_type, document_type.replace("_", " ").upper())
        await self._add_event(existing.id, LoadEventType.DOCUMENT, f"{label} document added")

        if document_type == "pod":
            delivered = LoadStatus.DELIVERED.value
            await self.repository.update_load(existing.id, {"status": delivered, "updated_at": self._clock()})
            await self._add_event(existing.id, LoadEventType.STATUS_UPDATE, "Proof of delivery received", status=delivered)

    async def _tender_status_changed(self, event: PortProWebhookEvent) -> None:
        reference = event.data.get("loadReferenceNumber") or event.reference
        tender_status = event.data.get("status")
        if not tender_status:
            return
        existing = await self._find(reference, "tender#status_changed")
        if existing is None:
            return
        await self._add_event(existing.id, LoadEventType.STATUS_UPDATE, f"Tender {str(tender_status).lower()}")

    async def _customer_created(self, event: PortProWebhookEvent) -> None:
        name = event.data.get("company_name") or event.data.get("name")
        logger.info(f"New customer in PortPro: {name}")
