"""
Test per il registro pagamenti (LedgerService).
"""

import asyncio
import datetime
import uuid
from decimal import Decimal

import pytest
import pytest_asyncio

from noleggio.core.exceptions import BusinessValidationError, NotFoundError
from noleggio.schemas.rental import PaymentCreate, PaymentMethod, PaymentStatus, PaymentType
from noleggio.services.events import PAYMENT_DELETED, PAYMENT_POSTED
from noleggio.services.ledger_service import derive_ledger

from conftest import dt


@pytest_asyncio.fixture
async def rental(rental_service, mock_db, make_rental_data):
    """Noleggio dello scenario A: 5 giorni a 100, totale 500."""
    return await rental_service.create(mock_db, make_rental_data())


# ============================================================
# derive_ledger
# ============================================================


class TestDeriveLedger:
    """Test per la classificazione dello stato di pagamento."""

    @pytest.mark.parametrize(
        "total, paid, remaining, status",
        [
            ("500", "0", "500", PaymentStatus.PENDING),
            ("500", "100", "400", PaymentStatus.PARTIAL),
            ("500", "500", "0", PaymentStatus.PAID),
            ("500", "650", "0", PaymentStatus.PAID),
        ],
    )
    def test_classification(self, total, paid, remaining, status):
        assert derive_ledger(Decimal(total), Decimal(paid)) == (Decimal(remaining), status)

    def test_zero_total_is_paid(self):
        _, status = derive_ledger(Decimal("0"), Decimal("0"))
        assert status == PaymentStatus.PAID


# ============================================================
# Registrazione pagamenti
# ============================================================


class TestPost:
    """Test per LedgerService.post."""

    async def test_partial_payment(self, ledger_service, mock_db, rental):
        await ledger_service.post(mock_db, rental.id, PaymentCreate(amount=Decimal("100")))

        assert rental.paid_amount == Decimal("100")
        assert rental.remaining_amount == Decimal("400")
        assert rental.payment_status == PaymentStatus.PARTIAL.value

    async def test_full_payment_in_two_postings(self, ledger_service, mock_db, rental):
        await ledger_service.post(mock_db, rental.id, PaymentCreate(amount=Decimal("300")))
        await ledger_service.post(
            mock_db,
            rental.id,
            PaymentCreate(amount=Decimal("200"), payment_method=PaymentMethod.CARD),
        )

        assert rental.paid_amount == Decimal("500")
        assert rental.remaining_amount == Decimal("0")
        assert rental.payment_status == PaymentStatus.PAID.value

    async def test_overpayment_keeps_remaining_at_zero(self, ledger_service, mock_db, rental):
        await ledger_service.post(mock_db, rental.id, PaymentCreate(amount=Decimal("600")))

        assert rental.paid_amount == Decimal("600")
        assert rental.remaining_amount == Decimal("0")
        assert rental.payment_status == PaymentStatus.PAID.value

    async def test_payment_date_defaults_to_clock(self, ledger_service, mock_db, rental, clock):
        payment = await ledger_service.post(mock_db, rental.id, PaymentCreate(amount=Decimal("50")))
        assert payment.payment_date == clock.now()
        assert payment.payment_method is None

    @pytest.mark.parametrize("amount", ["0", "-10"])
    async def test_non_positive_amount_rejected(self, ledger_service, mock_db, rental, amount):
        with pytest.raises(BusinessValidationError) as exc_info:
            await ledger_service.post(mock_db, rental.id, PaymentCreate(amount=Decimal(amount)))

        assert "amount" in exc_info.value.errors
        assert rental.paid_amount == Decimal("0")

    async def test_unknown_rental(self, ledger_service, mock_db):
        with pytest.raises(NotFoundError):
            await ledger_service.post(mock_db, uuid.uuid4(), PaymentCreate(amount=Decimal("10")))

    async def test_event_published(self, ledger_service, mock_db, rental, published_events):
        payment = await ledger_service.post(mock_db, rental.id, PaymentCreate(amount=Decimal("100")))

        event = published_events[-1]
        assert event.name == PAYMENT_POSTED
        assert event.rental_id == rental.id
        assert event.payload["payment_id"] == str(payment.id)
        assert event.payload["payment_status"] == "partial"


# ============================================================
# Eliminazione e ricalcolo
# ============================================================


class TestDelete:
    """Test per LedgerService.delete."""

    async def test_delete_recomputes(self, ledger_service, mock_db, rental):
        first = await ledger_service.post(mock_db, rental.id, PaymentCreate(amount=Decimal("100")))
        await ledger_service.post(mock_db, rental.id, PaymentCreate(amount=Decimal("400")))
        assert rental.payment_status == PaymentStatus.PAID.value

        summary = await ledger_service.delete(mock_db, first.id, rental_id=rental.id)

        assert summary.paid_amount == Decimal("400")
        assert summary.remaining_amount == Decimal("100")
        assert summary.payment_status == PaymentStatus.PARTIAL
        assert rental.paid_amount == Decimal("400")

    async def test_delete_last_payment_returns_to_pending(self, ledger_service, mock_db, rental):
        payment = await ledger_service.post(mock_db, rental.id, PaymentCreate(amount=Decimal("100")))

        summary = await ledger_service.delete(mock_db, payment.id)

        assert summary.payment_status == PaymentStatus.PENDING
        assert rental.remaining_amount == Decimal("500")

    async def test_delete_outside_rental_scope(
        self, rental_service, ledger_service, mock_db, rental, make_rental_data, other_car
    ):
        other = await rental_service.create(mock_db, make_rental_data(car_id=other_car.id))
        payment = await ledger_service.post(mock_db, rental.id, PaymentCreate(amount=Decimal("100")))

        with pytest.raises(NotFoundError):
            await ledger_service.delete(mock_db, payment.id, rental_id=other.id)

        assert rental.paid_amount == Decimal("100")

    async def test_delete_unknown_payment(self, ledger_service, mock_db, rental):
        with pytest.raises(NotFoundError):
            await ledger_service.delete(mock_db, uuid.uuid4())

    async def test_concurrent_deletes_of_same_payment(self, ledger_service, mock_db, rental):
        payment = await ledger_service.post(mock_db, rental.id, PaymentCreate(amount=Decimal("100")))

        results = await asyncio.gather(
            ledger_service.delete(mock_db, payment.id),
            ledger_service.delete(mock_db, payment.id),
            return_exceptions=True,
        )

        summaries = [r for r in results if not isinstance(r, BaseException)]
        failures = [r for r in results if isinstance(r, BaseException)]
        assert len(summaries) == 1
        assert summaries[0].payment_status == PaymentStatus.PENDING
        assert len(failures) == 1
        assert isinstance(failures[0], NotFoundError)
        assert rental.paid_amount == Decimal("0")

    async def test_delete_event(self, ledger_service, mock_db, rental, published_events):
        payment = await ledger_service.post(mock_db, rental.id, PaymentCreate(amount=Decimal("100")))
        await ledger_service.delete(mock_db, payment.id)

        assert published_events[-1].name == PAYMENT_DELETED
        assert published_events[-1].payload["payment_status"] == "pending"


class TestRecomputeAndTotals:
    async def test_recompute_after_total_change(self, ledger_service, mock_db, rental):
        await ledger_service.post(mock_db, rental.id, PaymentCreate(amount=Decimal("500")))
        rental.total_amount = Decimal("800")

        summary = await ledger_service.recompute(mock_db, rental.id)

        assert summary.remaining_amount == Decimal("300")
        assert summary.payment_status == PaymentStatus.PARTIAL

    async def test_totals_by_type(self, ledger_service, mock_db, rental):
        await ledger_service.post(mock_db, rental.id, PaymentCreate(amount=Decimal("100")))
        await ledger_service.post(
            mock_db, rental.id, PaymentCreate(amount=Decimal("150"), payment_type=PaymentType.DEPOSIT)
        )
        await ledger_service.post(
            mock_db, rental.id, PaymentCreate(amount=Decimal("40"), payment_type=PaymentType.FINE)
        )

        totals = await ledger_service.totals_by_type(mock_db, rental.id)

        assert totals.totals == {
            "rental": Decimal("100"),
            "deposit": Decimal("150"),
            "fine": Decimal("40"),
            "extra": Decimal("0"),
        }
        assert totals.grand_total == Decimal("290")

    async def test_list_payments(self, ledger_service, mock_db, rental):
        await ledger_service.post(mock_db, rental.id, PaymentCreate(amount=Decimal("100")))
        payments = await ledger_service.list_payments(mock_db, rental.id)
        assert [p.amount for p in payments] == [Decimal("100")]

    async def test_list_payments_unknown_rental(self, ledger_service, mock_db):
        with pytest.raises(NotFoundError):
            await ledger_service.list_payments(mock_db, uuid.uuid4())


# ============================================================
# Statistiche
# ============================================================


class TestPaymentStats:
    """Test per LedgerService.payment_stats."""

    async def test_totals_by_type(self, ledger_service, mock_db, rental):
        await ledger_service.post(mock_db, rental.id, PaymentCreate(amount=Decimal("100")))
        await ledger_service.post(
            mock_db,
            rental.id,
            PaymentCreate(
                amount=Decimal("150"),
                payment_type=PaymentType.DEPOSIT,
                payment_date=dt(2024, 2, 10),
            ),
        )

        stats = await ledger_service.payment_stats(mock_db)

        assert stats.total_payments == 2
        assert stats.total_amount == Decimal("250")
        assert stats.by_type == {
            "rental": Decimal("100"),
            "deposit": Decimal("150"),
            "fine": Decimal("0"),
            "extra": Decimal("0"),
        }

    async def test_filtered_by_payment_date(self, ledger_service, mock_db, rental):
        await ledger_service.post(mock_db, rental.id, PaymentCreate(amount=Decimal("100")))
        await ledger_service.post(
            mock_db, rental.id, PaymentCreate(amount=Decimal("150"), payment_date=dt(2024, 2, 10))
        )

        stats = await ledger_service.payment_stats(
            mock_db, date_from=datetime.date(2024, 1, 1), date_to=datetime.date(2024, 1, 31)
        )

        assert stats.total_payments == 1
        assert stats.total_amount == Decimal("100")
