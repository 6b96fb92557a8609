"""
Test per le estensioni dei noleggi (ExtensionService).
"""

import datetime
import uuid
from decimal import Decimal

import pytest
import pytest_asyncio

from noleggio.core.config import RentalPolicy
from noleggio.core.exceptions import BusinessValidationError, NotFoundError, UnavailableError
from noleggio.schemas.rental import (
    FuelLevel,
    PaymentCreate,
    PaymentStatus,
    RentalActivate,
    RentalCancel,
    RentalComplete,
    RentalStatus,
)
from noleggio.services.events import EXTENSION_PAID, RENTAL_EXTENDED
from noleggio.services.rental_service import RentalService

from conftest import dt


@pytest_asyncio.fixture
async def active_rental(rental_service, mock_db, make_rental_data):
    """Noleggio attivo dal 1 al 5 gennaio, 100 al giorno."""
    rental = await rental_service.create(mock_db, make_rental_data())
    await rental_service.confirm(mock_db, rental.id)
    await rental_service.activate(
        mock_db, rental.id, RentalActivate(odometer_start=1000, fuel_level_start=FuelLevel.FULL)
    )
    return rental


# ============================================================
# Applicazione
# ============================================================


class TestApply:
    """Test per ExtensionService.apply."""

    async def test_extend_three_days(self, extension_service, mock_db, active_rental):
        approver = uuid.uuid4()
        extension = await extension_service.apply(
            mock_db, active_rental.id, dt(2024, 1, 8), approver_id=approver
        )

        assert extension.extension_days == 3
        assert extension.extension_amount == Decimal("300.00")
        assert extension.original_end_date == dt(2024, 1, 5)
        assert extension.payment_status == "pending"
        assert extension.approved_by == approver

        assert active_rental.end_date == dt(2024, 1, 8)
        assert active_rental.rental_duration_days == 8
        assert active_rental.total_amount == Decimal("800.00")
        assert active_rental.remaining_amount == Decimal("800.00")
        assert active_rental.status == RentalStatus.EXTENDED.value

    async def test_deposit_not_recomputed(self, extension_service, mock_db, active_rental):
        await extension_service.apply(mock_db, active_rental.id, dt(2024, 1, 8))
        assert active_rental.deposit_amount == Decimal("100.00")

    async def test_extend_twice(self, extension_service, mock_db, active_rental):
        await extension_service.apply(mock_db, active_rental.id, dt(2024, 1, 8))
        await extension_service.apply(mock_db, active_rental.id, dt(2024, 1, 10))

        extensions = await extension_service.list_extensions(mock_db, active_rental.id)
        assert [e.extension_days for e in extensions] == [3, 2]
        assert active_rental.total_amount == Decimal("1000.00")
        assert active_rental.status == RentalStatus.EXTENDED.value

    async def test_extension_reopens_paid_ledger(
        self, extension_service, ledger_service, mock_db, active_rental
    ):
        await ledger_service.post(mock_db, active_rental.id, PaymentCreate(amount=Decimal("500")))
        assert active_rental.payment_status == PaymentStatus.PAID.value

        await extension_service.apply(mock_db, active_rental.id, dt(2024, 1, 8))

        assert active_rental.remaining_amount == Decimal("300.00")
        assert active_rental.payment_status == PaymentStatus.PARTIAL.value

    async def test_extension_with_driver_uses_combined_rate(
        self, rental_service, extension_service, mock_db, make_rental_data
    ):
        rental = await rental_service.create(
            mock_db,
            make_rental_data(
                with_driver=True,
                driver_name="Luca Bianchi",
                driver_phone="3331234567",
                driver_daily_rate=Decimal("40"),
            ),
        )
        await rental_service.confirm(mock_db, rental.id)
        await rental_service.activate(
            mock_db, rental.id, RentalActivate(odometer_start=5, fuel_level_start=FuelLevel.HALF)
        )

        extension = await extension_service.apply(mock_db, rental.id, dt(2024, 1, 7))

        assert extension.extension_amount == Decimal("280.00")
        assert rental.total_amount == Decimal("980.00")

    @pytest.mark.parametrize("new_end", [dt(2024, 1, 5), dt(2024, 1, 4)])
    async def test_new_end_not_after_current(self, extension_service, mock_db, active_rental, new_end):
        with pytest.raises(UnavailableError) as exc_info:
            await extension_service.apply(mock_db, active_rental.id, new_end)

        assert exc_info.value.reason_code == "new_end_before_current"
        assert active_rental.status == RentalStatus.ACTIVE.value

    async def test_blocked_by_following_rental(
        self, rental_service, extension_service, mock_db, active_rental, make_rental_data, store
    ):
        await rental_service.create(
            mock_db, make_rental_data(start_date=dt(2024, 1, 6), end_date=dt(2024, 1, 7))
        )

        with pytest.raises(UnavailableError) as exc_info:
            await extension_service.apply(mock_db, active_rental.id, dt(2024, 1, 8))

        assert exc_info.value.reason_code == "car_not_available"
        assert active_rental.end_date == dt(2024, 1, 5)
        assert active_rental.total_amount == Decimal("500.00")
        assert active_rental.status == RentalStatus.ACTIVE.value
        assert store.extensions == {}

    async def test_up_to_following_rental(
        self, rental_service, extension_service, mock_db, active_rental, make_rental_data
    ):
        await rental_service.create(
            mock_db, make_rental_data(start_date=dt(2024, 1, 6), end_date=dt(2024, 1, 7))
        )

        extension = await extension_service.apply(mock_db, active_rental.id, dt(2024, 1, 6))

        assert extension.extension_days == 1

    async def test_maximum_duration(self, extension_service, mock_db, active_rental):
        with pytest.raises(BusinessValidationError) as exc_info:
            await extension_service.apply(mock_db, active_rental.id, dt(2024, 4, 15))

        assert "new_end_date" in exc_info.value.errors
        assert active_rental.end_date == dt(2024, 1, 5)

    async def test_unknown_rental(self, extension_service, mock_db):
        with pytest.raises(NotFoundError):
            await extension_service.apply(mock_db, uuid.uuid4(), dt(2024, 1, 8))

    async def test_event(self, extension_service, mock_db, active_rental, published_events):
        extension = await extension_service.apply(mock_db, active_rental.id, dt(2024, 1, 8))

        event = published_events[-1]
        assert event.name == RENTAL_EXTENDED
        assert event.payload["extension_id"] == str(extension.id)
        assert event.payload["extension_days"] == 3
        assert event.payload["extension_amount"] == "300.00"


# ============================================================
# Verifica preventiva
# ============================================================


class TestCanExtend:
    """Test per ExtensionService.can_extend."""

    async def test_allowed(self, extension_service, mock_db, active_rental):
        check = await extension_service.can_extend(mock_db, active_rental.id, dt(2024, 1, 8))

        assert check.allowed is True
        assert check.reason_code is None
        assert check.extension_days == 3
        assert check.extension_amount == Decimal("300.00")
        assert active_rental.end_date == dt(2024, 1, 5)

    async def test_new_end_before_current(self, extension_service, mock_db, active_rental):
        check = await extension_service.can_extend(mock_db, active_rental.id, dt(2024, 1, 3))

        assert check.allowed is False
        assert check.reason_code == "new_end_before_current"

    async def test_car_not_available(
        self, rental_service, extension_service, mock_db, active_rental, make_rental_data
    ):
        await rental_service.create(
            mock_db, make_rental_data(start_date=dt(2024, 1, 6), end_date=dt(2024, 1, 7))
        )

        check = await extension_service.can_extend(mock_db, active_rental.id, dt(2024, 1, 8))

        assert check.allowed is False
        assert check.reason_code == "car_not_available"
        assert check.extension_amount is None

    async def test_pending_rental_not_extendable(self, rental_service, extension_service, mock_db, make_rental_data):
        rental = await rental_service.create(mock_db, make_rental_data())

        check = await extension_service.can_extend(mock_db, rental.id, dt(2024, 1, 8))

        assert check.allowed is False
        assert check.reason_code == "status_not_extendable"
        assert check.extension_days is None

    async def test_cancelled_rental_not_extendable(self, rental_service, extension_service, mock_db, active_rental):
        await rental_service.cancel(mock_db, active_rental.id, RentalCancel(reason="Guasto al motore"))

        check = await extension_service.can_extend(mock_db, active_rental.id, dt(2024, 1, 8))

        assert check.allowed is False
        assert check.reason_code == "status_not_extendable"

    async def test_completed_rental_not_extendable(self, rental_service, extension_service, mock_db, active_rental):
        await rental_service.complete(
            mock_db, active_rental.id, RentalComplete(odometer_end=1300, fuel_level_end=FuelLevel.FULL)
        )

        check = await extension_service.can_extend(mock_db, active_rental.id, dt(2024, 1, 8))

        assert check.allowed is False
        assert check.reason_code == "status_not_extendable"

    async def test_extended_rental_can_extend_again(self, extension_service, mock_db, active_rental):
        await extension_service.apply(mock_db, active_rental.id, dt(2024, 1, 8))

        check = await extension_service.can_extend(mock_db, active_rental.id, dt(2024, 1, 10))

        assert check.allowed is True
        assert check.extension_days == 2

    async def test_maximum_duration(self, extension_service, mock_db, active_rental):
        check = await extension_service.can_extend(mock_db, active_rental.id, dt(2024, 4, 15))

        assert check.allowed is False
        assert check.reason_code == "max_duration_exceeded"

        with pytest.raises(BusinessValidationError):
            await extension_service.apply(mock_db, active_rental.id, dt(2024, 4, 15))

    async def test_maximum_duration_from_policy(
        self, mock_db, active_rental, clock, event_bus, repository_factory
    ):
        service = RentalService(
            RentalPolicy(max_days=6), clock=clock, events=event_bus, repository_factory=repository_factory
        )

        too_long = await service.extensions.can_extend(mock_db, active_rental.id, dt(2024, 1, 20))
        within = await service.extensions.can_extend(mock_db, active_rental.id, dt(2024, 1, 6))

        assert too_long.allowed is False
        assert too_long.reason_code == "max_duration_exceeded"
        assert within.allowed is True
        assert within.extension_days == 1


# ============================================================
# Pagamento estensioni
# ============================================================


class TestMarkPaid:
    """Test per ExtensionService.mark_paid."""

    async def test_mark_paid_is_idempotent(self, extension_service, mock_db, active_rental, published_events):
        extension = await extension_service.apply(mock_db, active_rental.id, dt(2024, 1, 8))

        await extension_service.mark_paid(mock_db, extension.id, rental_id=active_rental.id)
        again = await extension_service.mark_paid(mock_db, extension.id)

        assert again.payment_status == "paid"
        assert [e.name for e in published_events].count(EXTENSION_PAID) == 1

    async def test_mark_paid_does_not_post_payments(self, extension_service, mock_db, active_rental):
        extension = await extension_service.apply(mock_db, active_rental.id, dt(2024, 1, 8))

        await extension_service.mark_paid(mock_db, extension.id)

        assert active_rental.paid_amount == Decimal("0")
        assert active_rental.payment_status == PaymentStatus.PENDING.value

    async def test_mark_paid_wrong_rental(self, extension_service, mock_db, active_rental):
        extension = await extension_service.apply(mock_db, active_rental.id, dt(2024, 1, 8))

        with pytest.raises(NotFoundError):
            await extension_service.mark_paid(mock_db, extension.id, rental_id=uuid.uuid4())

        assert extension.payment_status == "pending"

    async def test_mark_paid_unknown(self, extension_service, mock_db):
        with pytest.raises(NotFoundError):
            await extension_service.mark_paid(mock_db, uuid.uuid4())


# ============================================================
# Statistiche
# ============================================================


class TestExtensionStats:
    """Test per ExtensionService.extension_stats."""

    async def test_totals_by_payment_status(self, extension_service, mock_db, active_rental):
        first = await extension_service.apply(mock_db, active_rental.id, dt(2024, 1, 8))
        await extension_service.apply(mock_db, active_rental.id, dt(2024, 1, 10))
        await extension_service.mark_paid(mock_db, first.id)

        stats = await extension_service.extension_stats(mock_db)

        assert stats.total_extensions == 2
        assert stats.total_days == 5
        assert stats.total_amount == Decimal("500.00")
        assert stats.paid_amount == Decimal("300.00")
        assert stats.pending_amount == Decimal("200.00")

    async def test_period_without_extensions(self, extension_service, mock_db, active_rental):
        await extension_service.apply(mock_db, active_rental.id, dt(2024, 1, 8))

        stats = await extension_service.extension_stats(mock_db, date_to=datetime.date(2000, 1, 31))

        assert stats.total_extensions == 0
        assert stats.total_amount == Decimal("0")
