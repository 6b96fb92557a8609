"""
Repository per i Noleggi
Progetto: Fleet Rental Manager (Gestionale Noleggio)

Unico componente che legge e scrive noleggi, pagamenti ed estensioni.
Espone:
- transaction(): confine transazionale (rientrante) con traduzione degli
  errori SQLAlchemy in ConflictError / RepositoryError
- reserve_car(): transazione + lock pessimistico sulla riga dell'auto
  (SELECT ... FOR UPDATE), dentro cui verifica di disponibilità e
  scrittura avvengono atomicamente
- CRUD per Rental, RentalPayment, RentalExtension
- query di reportistica (scaduti, calendario, statistiche)
"""

import datetime
import logging
import uuid
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Optional

from sqlalchemy import and_, case, delete, func, or_, select, text
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from noleggio.core.calendar import start_of_day, start_of_next_day
from noleggio.core.exceptions import ConflictError, NotFoundError, RepositoryError
from noleggio.models import Car, Rental, RentalExtension, RentalPayment
from noleggio.schemas.rental import (
    BLOCKING_STATUSES,
    IN_USE_STATUSES,
    ExtensionPaymentStatus,
    RentalFilters,
    RentalStatus,
)

# Logger per questo modulo
logger = logging.getLogger(__name__)

# SQLSTATE PostgreSQL: serialization failure, deadlock, lock_timeout scaduto
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01", "55P03"})

MAX_DAILY_SEQUENCE = 9999


class RentalRepository:
    """
    Repository SQLAlchemy async per noleggi, pagamenti ed estensioni.

    Un'istanza vive per la durata di una richiesta e usa la sessione
    ricevuta. Le letture dentro una transazione ricaricano sempre lo stato
    dal database (populate_existing): nessuna entità viene riusata tra
    operazioni diverse.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self._depth = 0
        self._locked_cars: set[uuid.UUID] = set()

    # -------------------------------------------------------------------
    # Transazioni e lock
    # -------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["RentalRepository"]:
        """
        Apre una transazione, o riusa quella corrente se già aperta da
        questo repository.

        Commit all'uscita, rollback su qualunque eccezione.

        Raises:
            ConflictError: Violazione di vincolo, serialization failure o deadlock
            RepositoryError: Qualunque altro errore del database
        """
        if self._depth > 0:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        # Chiude l'eventuale transazione implicita aperta da letture precedenti
        if self.db.in_transaction():
            await self.db.commit()

        self._depth = 1
        try:
            async with self.db.begin():
                yield self
        except SQLAlchemyError as e:
            raise self._translate_error(e) from e
        finally:
            self._depth = 0
            self._locked_cars.clear()

    @asynccontextmanager
    async def reserve_car(self, car_id: uuid.UUID) -> AsyncIterator[Car]:
        """
        Transazione con lock esclusivo sulla riga dell'auto.

        Tutte le operazioni che occupano un intervallo dell'auto (creazione,
        modifica date/auto, estensione) verificano la disponibilità e
        scrivono dentro questo blocco: due richieste concorrenti sulla
        stessa auto vengono serializzate dal database.

        Raises:
            NotFoundError: Se l'auto non esiste
        """
        async with self.transaction():
            result = await self.db.execute(
                select(Car)
                .where(Car.id == car_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            car = result.scalar_one_or_none()
            if car is None:
                raise NotFoundError(f"Auto con ID {car_id} non trovata")
            self._locked_cars.add(car_id)
            yield car

    def holds_car_lock(self, car_id: uuid.UUID) -> bool:
        return car_id in self._locked_cars

    def _translate_error(self, exc: SQLAlchemyError) -> Exception:
        """Traduce un errore SQLAlchemy nell'eccezione di dominio."""
        if isinstance(exc, IntegrityError):
            logger.warning("Violazione di vincolo durante la transazione: %s", exc.orig)
            return ConflictError("Scrittura concorrente in conflitto, riprovare")

        if isinstance(exc, DBAPIError):
            orig = exc.orig
            sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
            if sqlstate in RETRYABLE_SQLSTATES:
                logger.warning("Transazione annullata dal database (SQLSTATE %s)", sqlstate)
                return ConflictError("Transazione annullata per concorrenza, riprovare")

        logger.error("Errore database: %s - %s", exc.__class__.__name__, exc)
        return RepositoryError()

    async def flush(self) -> None:
        await self.db.flush()

    # -------------------------------------------------------------------
    # Noleggi
    # -------------------------------------------------------------------

    async def get_rental(self, rental_id: uuid.UUID, for_update: bool = False) -> Optional[Rental]:
        """
        Recupera un noleggio per ID.

        Args:
            rental_id: UUID del noleggio
            for_update: Se True acquisisce il lock sulla riga (solo in transazione)
        """
        stmt = select(Rental).where(Rental.id == rental_id).execution_options(populate_existing=True)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_blocking_rentals(
        self,
        car_id: uuid.UUID,
        exclude_rental_id: Optional[uuid.UUID] = None,
    ) -> list[Rental]:
        """Noleggi dell'auto negli stati che occupano l'intervallo."""
        conditions = [
            Rental.car_id == car_id,
            Rental.status.in_([s.value for s in BLOCKING_STATUSES]),
        ]
        if exclude_rental_id is not None:
            conditions.append(Rental.id != exclude_rental_id)

        result = await self.db.execute(
            select(Rental)
            .where(and_(*conditions))
            .order_by(Rental.start_date)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_rentals(
        self,
        filters: RentalFilters,
        page: int = 1,
        per_page: int = 20,
    ) -> tuple[list[Rental], int]:
        """
        Lista paginata dei noleggi.

        Returns:
            Tuple di (lista noleggi, totale count)
        """
        conditions = []

        if filters.status:
            conditions.append(Rental.status == filters.status.value)
        if filters.payment_status:
            conditions.append(Rental.payment_status == filters.payment_status.value)
        if filters.branch_id:
            conditions.append(Rental.branch_id == filters.branch_id)
        if filters.customer_id:
            conditions.append(Rental.customer_id == filters.customer_id)
        if filters.car_id:
            conditions.append(Rental.car_id == filters.car_id)
        if filters.date_from:
            conditions.append(Rental.start_date >= start_of_day(filters.date_from))
        if filters.date_to:
            conditions.append(Rental.start_date < start_of_next_day(filters.date_to))
        if filters.search:
            search_term = f"%{filters.search}%"
            conditions.append(
                or_(
                    Rental.rental_number.ilike(search_term),
                    Rental.driver_name.ilike(search_term),
                )
            )

        query = select(Rental)
        count_query = select(func.count()).select_from(Rental)
        if conditions:
            query = query.where(and_(*conditions))
            count_query = count_query.where(and_(*conditions))

        offset = (page - 1) * per_page
        query = query.order_by(Rental.created_at.desc()).offset(offset).limit(per_page)

        result = await self.db.execute(query)
        rentals = list(result.scalars().all())

        count_result = await self.db.execute(count_query)
        total = count_result.scalar_one()

        return rentals, total

    async def next_rental_number(self, day: datetime.date, prefix: str) -> str:
        """
        Genera il numero contratto progressivo giornaliero.

        Formato: PREFISSO + YYYYMMDD + NNNN (es. RNT202401010001).
        L'advisory lock sul giorno serializza le generazioni concorrenti
        fino al termine della transazione.

        Raises:
            ConflictError: Se si supera il limite di 9999 contratti al giorno
        """
        day_key = int(day.strftime("%Y%m%d"))
        day_prefix = f"{prefix}{day.strftime('%Y%m%d')}"

        await self.db.execute(text("SELECT pg_advisory_xact_lock(:lock_key)"), {"lock_key": day_key})

        result = await self.db.execute(
            select(Rental.rental_number)
            .where(Rental.rental_number.like(f"{day_prefix}%"))
            .order_by(Rental.rental_number.desc())
            .limit(1)
        )
        last_number = result.scalar_one_or_none()

        next_sequence = int(last_number[len(day_prefix):]) + 1 if last_number else 1
        if next_sequence > MAX_DAILY_SEQUENCE:
            logger.error("Limite contratti giornalieri raggiunto per %s", day)
            raise ConflictError(f"Raggiunto il limite di {MAX_DAILY_SEQUENCE} contratti per il giorno {day}")

        return f"{day_prefix}{next_sequence:04d}"

    async def add_rental(self, rental: Rental) -> Rental:
        """
        Inserisce un nuovo noleggio.

        Raises:
            RuntimeError: Se chiamato senza il lock sull'auto
        """
        if not self.holds_car_lock(rental.car_id):
            raise RuntimeError("add_rental richiede il lock sull'auto (usare reserve_car)")
        self.db.add(rental)
        await self.db.flush()
        return rental

    async def delete_rental(self, rental: Rental) -> None:
        """Elimina definitivamente il noleggio con pagamenti ed estensioni."""
        await self.db.execute(delete(RentalPayment).where(RentalPayment.rental_id == rental.id))
        await self.db.execute(delete(RentalExtension).where(RentalExtension.rental_id == rental.id))
        await self.db.delete(rental)
        await self.db.flush()

    # -------------------------------------------------------------------
    # Pagamenti
    # -------------------------------------------------------------------

    async def get_payment(self, payment_id: uuid.UUID, for_update: bool = False) -> Optional[RentalPayment]:
        stmt = select(RentalPayment).where(RentalPayment.id == payment_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_payments(self, rental_id: uuid.UUID) -> list[RentalPayment]:
        result = await self.db.execute(
            select(RentalPayment)
            .where(RentalPayment.rental_id == rental_id)
            .order_by(RentalPayment.payment_date.desc())
        )
        return list(result.scalars().all())

    async def add_payment(self, payment: RentalPayment) -> RentalPayment:
        self.db.add(payment)
        await self.db.flush()
        return payment

    async def delete_payment(self, payment: RentalPayment) -> None:
        await self.db.delete(payment)
        await self.db.flush()

    async def sum_payments(self, rental_id: uuid.UUID) -> Decimal:
        """Somma di tutti i movimenti esistenti del noleggio."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(RentalPayment.amount), 0))
            .where(RentalPayment.rental_id == rental_id)
        )
        return Decimal(str(result.scalar_one()))

    async def payment_totals_by_type(self, rental_id: uuid.UUID) -> dict[str, Decimal]:
        result = await self.db.execute(
            select(RentalPayment.payment_type, func.sum(RentalPayment.amount))
            .where(RentalPayment.rental_id == rental_id)
            .group_by(RentalPayment.payment_type)
        )
        return {payment_type: Decimal(str(total)) for payment_type, total in result.all()}

    # -------------------------------------------------------------------
    # Estensioni
    # -------------------------------------------------------------------

    async def get_extension(self, extension_id: uuid.UUID, for_update: bool = False) -> Optional[RentalExtension]:
        stmt = select(RentalExtension).where(RentalExtension.id == extension_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_extensions(self, rental_id: uuid.UUID) -> list[RentalExtension]:
        result = await self.db.execute(
            select(RentalExtension)
            .where(RentalExtension.rental_id == rental_id)
            .order_by(RentalExtension.created_at)
        )
        return list(result.scalars().all())

    async def add_extension(self, extension: RentalExtension) -> RentalExtension:
        """
        Inserisce un'estensione.

        Raises:
            RuntimeError: Se chiamato senza il lock sull'auto
        """
        rental = await self.db.get(Rental, extension.rental_id)
        if rental is None or not self.holds_car_lock(rental.car_id):
            raise RuntimeError("add_extension richiede il lock sull'auto (usare reserve_car)")
        self.db.add(extension)
        await self.db.flush()
        return extension

    # -------------------------------------------------------------------
    # Reportistica
    # -------------------------------------------------------------------

    async def list_overdue(self, now: datetime.datetime) -> list[Rental]:
        """Noleggi in corso con data di fine già passata."""
        result = await self.db.execute(
            select(Rental)
            .where(
                Rental.status.in_([s.value for s in IN_USE_STATUSES]),
                Rental.end_date < now,
            )
            .order_by(Rental.end_date)
        )
        return list(result.scalars().all())

    async def list_for_calendar(
        self,
        start: datetime.datetime,
        end: datetime.datetime,
    ) -> list[Rental]:
        """Noleggi non annullati che intersecano la finestra [start, end]."""
        result = await self.db.execute(
            select(Rental)
            .where(
                Rental.status != RentalStatus.CANCELLED.value,
                Rental.start_date <= end,
                Rental.end_date >= start,
            )
            .order_by(Rental.start_date)
        )
        return list(result.scalars().all())

    async def rental_stats(
        self,
        date_from: Optional[datetime.date] = None,
        date_to: Optional[datetime.date] = None,
        branch_id: Optional[uuid.UUID] = None,
    ) -> list[tuple[str, int, Decimal, Decimal, Decimal]]:
        """
        Aggregati per stato: (status, count, totale, incassato, residuo).

        Il filtro per data si applica alla data di creazione del noleggio.
        """
        conditions = []
        if date_from:
            conditions.append(Rental.created_at >= start_of_day(date_from))
        if date_to:
            conditions.append(Rental.created_at < start_of_next_day(date_to))
        if branch_id:
            conditions.append(Rental.branch_id == branch_id)

        query = select(
            Rental.status,
            func.count(),
            func.coalesce(func.sum(Rental.total_amount), 0),
            func.coalesce(func.sum(Rental.paid_amount), 0),
            func.coalesce(func.sum(Rental.remaining_amount), 0),
        ).group_by(Rental.status)
        if conditions:
            query = query.where(and_(*conditions))

        result = await self.db.execute(query)
        return [
            (status, count, Decimal(str(total)), Decimal(str(paid)), Decimal(str(remaining)))
            for status, count, total, paid, remaining in result.all()
        ]

    async def payment_stats(
        self,
        date_from: Optional[datetime.date] = None,
        date_to: Optional[datetime.date] = None,
    ) -> list[tuple[str, int, Decimal]]:
        """Movimenti per tipo nel periodo (data del pagamento): (tipo, count, importo)."""
        conditions = []
        if date_from:
            conditions.append(RentalPayment.payment_date >= start_of_day(date_from))
        if date_to:
            conditions.append(RentalPayment.payment_date < start_of_next_day(date_to))

        query = select(
            RentalPayment.payment_type,
            func.count(),
            func.coalesce(func.sum(RentalPayment.amount), 0),
        ).group_by(RentalPayment.payment_type)
        if conditions:
            query = query.where(and_(*conditions))

        result = await self.db.execute(query)
        return [(payment_type, count, Decimal(str(total))) for payment_type, count, total in result.all()]

    async def extension_stats(
        self,
        date_from: Optional[datetime.date] = None,
        date_to: Optional[datetime.date] = None,
    ) -> tuple[int, int, Decimal, Decimal, Decimal]:
        """Estensioni create nel periodo: (count, giorni, importo, pagato, da pagare)."""
        paid = ExtensionPaymentStatus.PAID.value
        conditions = []
        if date_from:
            conditions.append(RentalExtension.created_at >= start_of_day(date_from))
        if date_to:
            conditions.append(RentalExtension.created_at < start_of_next_day(date_to))

        query = select(
            func.count(),
            func.coalesce(func.sum(RentalExtension.extension_days), 0),
            func.coalesce(func.sum(RentalExtension.extension_amount), 0),
            func.coalesce(
                func.sum(case((RentalExtension.payment_status == paid, RentalExtension.extension_amount), else_=0)),
                0,
            ),
            func.coalesce(
                func.sum(case((RentalExtension.payment_status != paid, RentalExtension.extension_amount), else_=0)),
                0,
            ),
        )
        if conditions:
            query = query.where(and_(*conditions))

        result = await self.db.execute(query)
        count, days, total, paid_total, pending_total = result.one()
        return count, int(days), Decimal(str(total)), Decimal(str(paid_total)), Decimal(str(pending_total))
