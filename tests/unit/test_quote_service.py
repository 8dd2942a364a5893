import pytest

from app.models.quote import Quote, QuoteStatus
from app.services.quote import QuoteService, can_transition
from tests.fakes import utc


async def _seed(db, status=QuoteStatus.ACCEPTED) -> Quote:
    quote = Quote(id="quote-1", status=status.value, customer_name="Acme Imports")
    db.add(quote)
    await db.commit()
    return quote


class TestCanTransition:
    def test_forward_paths(self):
        assert can_transition("pending", "in_review")
        assert can_transition("quoted", "accepted")
        assert can_transition("accepted", "converted")

    def test_terminal_and_unknown_states(self):
        assert not can_transition("converted", "pending")
        assert not can_transition("pending", "converted")
        assert not can_transition("pending", "archived")
        assert not can_transition("archived", "pending")


class TestQuoteService:
    async def test_get_missing(self, db_session):
        with pytest.raises(ValueError, match="Quote not found"):
            await QuoteService(db_session).get("missing")

    async def test_transition(self, db_session):
        await _seed(db_session, QuoteStatus.PENDING)

        quote = await QuoteService(db_session).transition("quote-1", "in_review")

        assert quote.status == "in_review"

    async def test_rejects_invalid_transition(self, db_session):
        await _seed(db_session, QuoteStatus.REJECTED)

        with pytest.raises(ValueError, match="Cannot move quote"):
            await QuoteService(db_session).transition("quote-1", QuoteStatus.ACCEPTED)

    async def test_mark_converted(self, db_session):
        await _seed(db_session)
        converted_at = utc(2026, 1, 21, 9, 30)

        quote = await QuoteService(db_session).mark_converted("quote-1", "load-1", converted_at=converted_at)

        assert quote.status == "converted"
        assert quote.load_id == "load-1"
        assert quote.converted_at is not None

    async def test_mark_converted_is_idempotent_for_same_load(self, db_session):
        await _seed(db_session)
        service = QuoteService(db_session)
        await service.mark_converted("quote-1", "load-1")

        quote = await service.mark_converted("quote-1", "load-1")

        assert quote.load_id == "load-1"

    async def test_mark_converted_to_another_load(self, db_session):
        await _seed(db_session)
        service = QuoteService(db_session)
        await service.mark_converted("quote-1", "load-1")

        with pytest.raises(ValueError, match="already converted"):
            await service.mark_converted("quote-1", "load-2")

    async def test_cannot_convert_pending_quote(self, db_session):
        await _seed(db_session, QuoteStatus.PENDING)

        with pytest.raises(ValueError, match="Cannot convert"):
            await QuoteService(db_session).mark_converted("quote-1", "load-1")
