"""
Pytest configuration and fixtures per i service dei noleggi.

I service ricevono una repository_factory: qui viene sostituita da un
repository in memoria che rispetta lo stesso contratto di
RentalRepository (transazioni rientranti, lock per auto con
asyncio.Lock), così i test girano senza PostgreSQL.
"""

import asyncio
import datetime
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from noleggio.core.calendar import intervals_overlap, start_of_day, start_of_next_day
from noleggio.core.config import RentalPolicy
from noleggio.core.exceptions import ConflictError, NotFoundError
from noleggio.models import Car, Rental, RentalExtension, RentalPayment
from noleggio.schemas.rental import BLOCKING_STATUSES, RentalCreate, RentalFilters, RentalStatus
from noleggio.services.events import EventBus, RentalEvent
from noleggio.services.rental_service import RentalService

UTC = datetime.timezone.utc


def dt(year: int, month: int, day: int, hour: int = 0) -> datetime.datetime:
    """Timestamp UTC per i test."""
    return datetime.datetime(year, month, day, hour, tzinfo=UTC)


# ============================================================
# Orologio e repository in memoria
# ============================================================


class FixedClock:
    """Orologio fermo, spostabile dai test."""

    def __init__(self, now: datetime.datetime) -> None:
        self.current = now

    def now(self) -> datetime.datetime:
        return self.current


class InMemoryStore:
    """Stato condiviso tra i repository (equivalente del database)."""

    def __init__(self) -> None:
        self.cars: dict[uuid.UUID, Car] = {}
        self.rentals: dict[uuid.UUID, Rental] = {}
        self.payments: dict[uuid.UUID, RentalPayment] = {}
        self.extensions: dict[uuid.UUID, RentalExtension] = {}
        self.car_locks: defaultdict[uuid.UUID, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.rental_locks: defaultdict[uuid.UUID, asyncio.Lock] = defaultdict(asyncio.Lock)
        # Equivalente del lock advisory sulla numerazione giornaliera
        self.number_lock = asyncio.Lock()

    def add_car(self, **kwargs) -> Car:
        car = Car(
            id=kwargs.get("id", uuid.uuid4()),
            plate_number=kwargs.get("plate_number", "AB123CD"),
            brand=kwargs.get("brand", "Fiat"),
            model=kwargs.get("model", "Panda"),
            daily_rate=kwargs.get("daily_rate", Decimal("100.00")),
            current_odometer=kwargs.get("current_odometer", None),
            is_active=kwargs.get("is_active", True),
            status=kwargs.get("status", "available"),
            current_rental_id=kwargs.get("current_rental_id", None),
        )
        self.cars[car.id] = car
        return car


class InMemoryRentalRepository:
    """Implementazione in memoria del contratto di RentalRepository."""

    def __init__(self, store: InMemoryStore) -> None:
        self.store = store
        self._depth = 0
        self._locked_cars: set[uuid.UUID] = set()
        self._locked_rentals: set[uuid.UUID] = set()
        self._held_locks: list[asyncio.Lock] = []
        self._holds_number_lock = False

    @asynccontextmanager
    async def transaction(self):
        if self._depth > 0:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        self._depth = 1
        try:
            yield self
        finally:
            for lock in self._held_locks:
                lock.release()
            self._held_locks.clear()
            self._locked_cars.clear()
            self._locked_rentals.clear()
            self._holds_number_lock = False
            self._depth = 0

    @asynccontextmanager
    async def reserve_car(self, car_id: uuid.UUID):
        async with self.transaction():
            car = self.store.cars.get(car_id)
            if car is None:
                raise NotFoundError(f"Auto con ID {car_id} non trovata")
            if car_id not in self._locked_cars:
                lock = self.store.car_locks[car_id]
                await lock.acquire()
                self._held_locks.append(lock)
                self._locked_cars.add(car_id)
            yield car

    def holds_car_lock(self, car_id: uuid.UUID) -> bool:
        return car_id in self._locked_cars

    async def flush(self) -> None:
        await asyncio.sleep(0)

    # --- noleggi ---

    async def get_rental(self, rental_id: uuid.UUID, for_update: bool = False) -> Optional[Rental]:
        # Lock sulla riga del noleggio, rilasciato alla fine della transazione
        if for_update and self._depth > 0 and rental_id not in self._locked_rentals:
            lock = self.store.rental_locks[rental_id]
            await lock.acquire()
            self._held_locks.append(lock)
            self._locked_rentals.add(rental_id)
        return self.store.rentals.get(rental_id)

    async def list_blocking_rentals(self, car_id, exclude_rental_id=None) -> list[Rental]:
        # Cede il controllo: senza lock due richieste vedrebbero lo stesso stato
        await asyncio.sleep(0)
        blocking = {s.value for s in BLOCKING_STATUSES}
        return [
            r for r in self.store.rentals.values()
            if r.car_id == car_id and r.status in blocking and r.id != exclude_rental_id
        ]

    async def list_rentals(self, filters: RentalFilters, page: int = 1, per_page: int = 20):
        rentals = list(self.store.rentals.values())
        if filters.status:
            rentals = [r for r in rentals if r.status == filters.status.value]
        if filters.payment_status:
            rentals = [r for r in rentals if r.payment_status == filters.payment_status.value]
        if filters.car_id:
            rentals = [r for r in rentals if r.car_id == filters.car_id]
        if filters.customer_id:
            rentals = [r for r in rentals if r.customer_id == filters.customer_id]
        if filters.branch_id:
            rentals = [r for r in rentals if r.branch_id == filters.branch_id]
        if filters.date_from:
            rentals = [r for r in rentals if r.start_date >= start_of_day(filters.date_from)]
        if filters.date_to:
            rentals = [r for r in rentals if r.start_date < start_of_next_day(filters.date_to)]
        if filters.search:
            term = filters.search.lower()
            rentals = [
                r for r in rentals
                if term in r.rental_number.lower() or term in (r.driver_name or "").lower()
            ]
        rentals.sort(key=lambda r: r.created_at, reverse=True)
        offset = (page - 1) * per_page
        return rentals[offset:offset + per_page], len(rentals)

    async def next_rental_number(self, day: datetime.date, prefix: str) -> str:
        if not self._holds_number_lock:
            await self.store.number_lock.acquire()
            self._held_locks.append(self.store.number_lock)
            self._holds_number_lock = True
        day_prefix = f"{prefix}{day.strftime('%Y%m%d')}"
        sequences = [
            int(r.rental_number[len(day_prefix):])
            for r in self.store.rentals.values()
            if r.rental_number.startswith(day_prefix)
        ]
        next_sequence = max(sequences, default=0) + 1
        if next_sequence > 9999:
            raise ConflictError("Limite contratti giornalieri raggiunto")
        return f"{day_prefix}{next_sequence:04d}"

    async def add_rental(self, rental: Rental) -> Rental:
        if not self.holds_car_lock(rental.car_id):
            raise RuntimeError("add_rental richiede il lock sull'auto (usare reserve_car)")
        await asyncio.sleep(0)
        if rental.id is None:
            rental.id = uuid.uuid4()
        rental.created_at = rental.created_at or datetime.datetime.now(UTC)
        rental.updated_at = rental.created_at
        self.store.rentals[rental.id] = rental
        return rental

    async def delete_rental(self, rental: Rental) -> None:
        for payment_id in [p.id for p in self.store.payments.values() if p.rental_id == rental.id]:
            del self.store.payments[payment_id]
        for extension_id in [e.id for e in self.store.extensions.values() if e.rental_id == rental.id]:
            del self.store.extensions[extension_id]
        del self.store.rentals[rental.id]

    # --- pagamenti ---

    async def get_payment(self, payment_id: uuid.UUID, for_update: bool = False) -> Optional[RentalPayment]:
        await asyncio.sleep(0)
        return self.store.payments.get(payment_id)

    async def list_payments(self, rental_id: uuid.UUID) -> list[RentalPayment]:
        payments = [p for p in self.store.payments.values() if p.rental_id == rental_id]
        return sorted(payments, key=lambda p: p.payment_date, reverse=True)

    async def add_payment(self, payment: RentalPayment) -> RentalPayment:
        if payment.id is None:
            payment.id = uuid.uuid4()
        payment.created_at = datetime.datetime.now(UTC)
        self.store.payments[payment.id] = payment
        return payment

    async def delete_payment(self, payment: RentalPayment) -> None:
        del self.store.payments[payment.id]

    async def sum_payments(self, rental_id: uuid.UUID) -> Decimal:
        return sum(
            (p.amount for p in self.store.payments.values() if p.rental_id == rental_id),
            Decimal("0"),
        )

    async def payment_totals_by_type(self, rental_id: uuid.UUID) -> dict[str, Decimal]:
        totals: dict[str, Decimal] = {}
        for p in self.store.payments.values():
            if p.rental_id == rental_id:
                totals[p.payment_type] = totals.get(p.payment_type, Decimal("0")) + p.amount
        return totals

    # --- estensioni ---

    async def get_extension(self, extension_id, for_update: bool = False) -> Optional[RentalExtension]:
        return self.store.extensions.get(extension_id)

    async def list_extensions(self, rental_id: uuid.UUID) -> list[RentalExtension]:
        extensions = [e for e in self.store.extensions.values() if e.rental_id == rental_id]
        return sorted(extensions, key=lambda e: e.created_at)

    async def add_extension(self, extension: RentalExtension) -> RentalExtension:
        rental = self.store.rentals.get(extension.rental_id)
        if rental is None or not self.holds_car_lock(rental.car_id):
            raise RuntimeError("add_extension richiede il lock sull'auto (usare reserve_car)")
        if extension.id is None:
            extension.id = uuid.uuid4()
        extension.created_at = datetime.datetime.now(UTC)
        self.store.extensions[extension.id] = extension
        return extension

    # --- reportistica ---

    async def list_overdue(self, now: datetime.datetime) -> list[Rental]:
        in_use = {RentalStatus.ACTIVE.value, RentalStatus.EXTENDED.value}
        overdue = [r for r in self.store.rentals.values() if r.status in in_use and r.end_date < now]
        return sorted(overdue, key=lambda r: r.end_date)

    async def list_for_calendar(self, start, end) -> list[Rental]:
        rentals = [
            r for r in self.store.rentals.values()
            if r.status != RentalStatus.CANCELLED.value and r.start_date <= end and r.end_date >= start
        ]
        return sorted(rentals, key=lambda r: r.start_date)

    async def rental_stats(self, date_from=None, date_to=None, branch_id=None):
        rows: dict[str, list] = {}
        for r in self.store.rentals.values():
            if branch_id and r.branch_id != branch_id:
                continue
            if date_from and r.created_at < start_of_day(date_from):
                continue
            if date_to and r.created_at >= start_of_next_day(date_to):
                continue
            row = rows.setdefault(r.status, [r.status, 0, Decimal("0"), Decimal("0"), Decimal("0")])
            row[1] += 1
            row[2] += r.total_amount
            row[3] += r.paid_amount
            row[4] += r.remaining_amount
        return [tuple(row) for row in rows.values()]

    async def payment_stats(self, date_from=None, date_to=None):
        rows: dict[str, list] = {}
        for p in self.store.payments.values():
            if date_from and p.payment_date < start_of_day(date_from):
                continue
            if date_to and p.payment_date >= start_of_next_day(date_to):
                continue
            row = rows.setdefault(p.payment_type, [p.payment_type, 0, Decimal("0")])
            row[1] += 1
            row[2] += p.amount
        return [tuple(row) for row in rows.values()]

    async def extension_stats(self, date_from=None, date_to=None):
        extensions = [
            e for e in self.store.extensions.values()
            if not (date_from and e.created_at < start_of_day(date_from))
            and not (date_to and e.created_at >= start_of_next_day(date_to))
        ]
        paid = [e for e in extensions if e.payment_status == "paid"]
        pending = [e for e in extensions if e.payment_status != "paid"]
        return (
            len(extensions),
            sum(e.extension_days for e in extensions),
            sum((e.extension_amount for e in extensions), Decimal("0")),
            sum((e.extension_amount for e in paid), Decimal("0")),
            sum((e.extension_amount for e in pending), Decimal("0")),
        )


# ============================================================
# Fixtures
# ============================================================


@pytest.fixture
def mock_db():
    """Crea un mock di AsyncSession (non usato dal repository in memoria)."""
    db = AsyncMock(spec=AsyncSession)
    db.execute = AsyncMock()
    db.add = MagicMock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.flush = AsyncMock()
    db.delete = AsyncMock()
    return db


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def repository_factory(store):
    return lambda db: InMemoryRentalRepository(store)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(dt(2024, 1, 1, 8))


@pytest.fixture
def published_events() -> list[RentalEvent]:
    return []


@pytest.fixture
def event_bus(published_events) -> EventBus:
    bus = EventBus(with_default_logger=False)
    bus.subscribe(published_events.append)
    return bus


@pytest.fixture
def policy() -> RentalPolicy:
    return RentalPolicy(min_days=1, max_days=90, deposit_percentage=Decimal("20"), number_prefix="RNT")


@pytest.fixture
def rental_service(policy, clock, event_bus, repository_factory) -> RentalService:
    return RentalService(policy, clock=clock, events=event_bus, repository_factory=repository_factory)


@pytest.fixture
def ledger_service(rental_service):
    return rental_service.ledger


@pytest.fixture
def extension_service(rental_service):
    return rental_service.extensions


@pytest.fixture
def car(store) -> Car:
    """Auto X dei testi di scenario."""
    return store.add_car(plate_number="XX000XX")


@pytest.fixture
def other_car(store) -> Car:
    return store.add_car(plate_number="YY111YY", brand="Renault", model="Clio")


@pytest.fixture
def make_rental_data(car):
    """Factory di RentalCreate con i valori dello scenario A."""

    def factory(**overrides) -> RentalCreate:
        values = {
            "customer_id": uuid.uuid4(),
            "car_id": car.id,
            "start_date": dt(2024, 1, 1),
            "end_date": dt(2024, 1, 5),
            "daily_rate": Decimal("100.00"),
        }
        values.update(overrides)
        return RentalCreate(**values)

    return factory
