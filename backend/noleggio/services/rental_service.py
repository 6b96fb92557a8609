"""
Service Layer per i Noleggi
Progetto: Fleet Rental Manager (Gestionale Noleggio)

Macchina a stati del noleggio:

    pending → confirmed → active → extended → completed
        ↘          ↘          ↘         ↘
                         cancelled

Ogni azione passa per la matrice RENTAL_TRANSITIONS; una coppia
(stato, azione) non prevista solleva InvalidTransitionError e lascia il
noleggio invariato. Creazione e modifica verificano la disponibilità
dell'auto sotto lock, nella stessa transazione della scrittura.

L'auto punta al noleggio che la occupa (status rented, current_rental_id):
assegnata alla creazione se libera e sempre all'attivazione, liberata a
completamento, annullamento ed eliminazione se punta ancora allo stesso
noleggio.
"""

import datetime
import logging
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from noleggio.core.calendar import Clock, SystemClock, ensure_aware, rental_days
from noleggio.core.config import RentalPolicy
from noleggio.core.exceptions import BusinessValidationError, InvalidTransitionError, NotFoundError
from noleggio.models import Car, Rental, RentalExtension
from noleggio.repositories.rental_repository import RentalRepository
from noleggio.schemas.rental import (
    DEFAULT_STATUS_COLOR,
    EDITABLE_STATUSES,
    STATUS_COLORS,
    AvailabilityRead,
    CalendarEvent,
    CarStatus,
    PaymentStatus,
    PaymentType,
    RentalAction,
    RentalActivate,
    RentalCancel,
    RentalComplete,
    RentalCreate,
    RentalFilters,
    RentalStats,
    RentalStatus,
    RentalUpdate,
    resolve_transition,
)
from noleggio.services import events as ev
from noleggio.services.availability_service import AvailabilityService
from noleggio.services.events import EventBus, RentalEvent
from noleggio.services.extension_service import ExtensionService
from noleggio.services.ledger_service import ZERO, LedgerService

# Logger per questo modulo
logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# Campi che, se modificati, richiedono una nuova verifica di disponibilità
_INTERVAL_FIELDS = frozenset({"car_id", "start_date", "end_date"})


class RentalService:
    """
    Service per il ciclo di vita dei noleggi.

    Riceve esplicitamente la policy (durate, caparra), l'orologio e il bus
    degli eventi: non legge mai le impostazioni globali.
    """

    def __init__(
        self,
        policy: RentalPolicy,
        clock: Optional[Clock] = None,
        events: Optional[EventBus] = None,
        availability: Optional[AvailabilityService] = None,
        ledger: Optional[LedgerService] = None,
        extensions: Optional[ExtensionService] = None,
        repository_factory: Callable[[AsyncSession], RentalRepository] = RentalRepository,
    ) -> None:
        self.policy = policy
        self.clock = clock or SystemClock()
        self.events = events or EventBus()
        self.availability = availability or AvailabilityService(repository_factory)
        self.ledger = ledger or LedgerService(self.clock, self.events, repository_factory)
        self.extensions = extensions or ExtensionService(
            policy,
            clock=self.clock,
            events=self.events,
            availability=self.availability,
            ledger=self.ledger,
            repository_factory=repository_factory,
        )
        self._repository_factory = repository_factory

    # -------------------------------------------------------------------
    # Validazione e calcolo importi
    # -------------------------------------------------------------------

    def _validate_terms(self, values: dict[str, Any], require_customer: bool) -> dict[str, str]:
        """
        Valida parti, intervallo, tariffe e dati autista.

        Returns:
            Mappa campo → motivo (vuota se i dati sono validi)
        """
        errors: dict[str, str] = {}

        if require_customer and not values.get("customer_id"):
            errors["customer_id"] = "Il cliente è obbligatorio"
        if not values.get("car_id"):
            errors["car_id"] = "L'auto è obbligatoria"

        start = values.get("start_date")
        end = values.get("end_date")
        if start is None:
            errors["start_date"] = "La data di inizio è obbligatoria"
        if end is None:
            errors["end_date"] = "La data di fine è obbligatoria"
        if start is not None and end is not None:
            start = ensure_aware(start)
            end = ensure_aware(end)
            if end <= start:
                errors["end_date"] = "La data di fine deve essere successiva alla data di inizio"
            else:
                days = rental_days(start, end)
                if days < self.policy.min_days:
                    errors["end_date"] = f"La durata minima del noleggio è di {self.policy.min_days} giorni"
                elif days > self.policy.max_days:
                    errors["end_date"] = f"La durata massima del noleggio è di {self.policy.max_days} giorni"

        daily_rate = values.get("daily_rate")
        if daily_rate is None or daily_rate <= 0:
            errors["daily_rate"] = "La tariffa giornaliera deve essere positiva"

        if values.get("with_driver"):
            if not (values.get("driver_name") or "").strip():
                errors["driver_name"] = "Il nome dell'autista è obbligatorio"
            if not (values.get("driver_phone") or "").strip():
                errors["driver_phone"] = "Il telefono dell'autista è obbligatorio"
            driver_rate = values.get("driver_daily_rate")
            if driver_rate is None or driver_rate <= 0:
                errors["driver_daily_rate"] = "La tariffa giornaliera dell'autista deve essere positiva"

        return errors

    def compute_amounts(
        self,
        daily_rate: Decimal,
        with_driver: bool,
        driver_daily_rate: Optional[Decimal],
        days: int,
        extensions_total: Decimal = ZERO,
    ) -> tuple[Decimal, Decimal]:
        """
        Calcola totale e caparra.

        total = (tariffa + tariffa autista) × giorni + estensioni
        deposit = total × percentuale caparra / 100

        Returns:
            Tuple di (total_amount, deposit_amount)
        """
        rate = daily_rate
        if with_driver and driver_daily_rate:
            rate += driver_daily_rate
        total = (rate * days + extensions_total).quantize(CENT, rounding=ROUND_HALF_UP)
        deposit = (total * self.policy.deposit_percentage / Decimal("100")).quantize(
            CENT, rounding=ROUND_HALF_UP
        )
        return total, deposit

    def _publish(
        self,
        name: str,
        rental: Rental,
        actor_id: Optional[uuid.UUID],
        **payload: Any,
    ) -> None:
        payload.setdefault("rental_number", rental.rental_number)
        payload.setdefault("status", rental.status)
        self.events.publish(RentalEvent(name=name, rental_id=rental.id, actor_id=actor_id, payload=payload))

    async def _load_for_action(
        self,
        repo: RentalRepository,
        rental_id: uuid.UUID,
        action: RentalAction,
    ) -> tuple[Rental, RentalStatus]:
        """
        Blocca il noleggio e risolve lo stato di arrivo dell'azione.

        Raises:
            NotFoundError: Se il noleggio non esiste
            InvalidTransitionError: Se l'azione non è consentita nello stato corrente
        """
        rental = await repo.get_rental(rental_id, for_update=True)
        if rental is None:
            raise NotFoundError(f"Noleggio con ID {rental_id} non trovato")
        try:
            target = resolve_transition(RentalStatus(rental.status), action)
        except InvalidTransitionError:
            logger.warning(
                "Transizione non consentita su %s: %s da stato %s",
                rental.rental_number,
                action.value,
                rental.status,
            )
            raise
        return rental, target

    # -------------------------------------------------------------------
    # Occupazione dell'auto
    # -------------------------------------------------------------------

    @staticmethod
    def _occupy_car(car: Car, rental: Rental, force: bool = False) -> None:
        """Associa l'auto al noleggio. Senza force solo se l'auto è libera."""
        if car.current_rental_id is not None and not force:
            return
        car.status = CarStatus.RENTED.value
        car.current_rental_id = rental.id

    @staticmethod
    def _free_car(car: Car, rental: Rental) -> None:
        """Libera l'auto solo se è occupata da questo noleggio."""
        if car.current_rental_id != rental.id:
            return
        car.status = CarStatus.AVAILABLE.value
        car.current_rental_id = None
        logger.info("Auto %s di nuovo libera (noleggio %s)", car.plate_number, rental.rental_number)

    async def _release_car(
        self,
        repo: RentalRepository,
        rental: Rental,
        car_id: Optional[uuid.UUID] = None,
    ) -> None:
        async with repo.reserve_car(car_id or rental.car_id) as car:
            self._free_car(car, rental)
            await repo.flush()

    # -------------------------------------------------------------------
    # Letture
    # -------------------------------------------------------------------

    async def get_by_id(self, db: AsyncSession, rental_id: uuid.UUID) -> Rental:
        """
        Recupera un noleggio per ID.

        Raises:
            NotFoundError: Se il noleggio non esiste
        """
        repo = self._repository_factory(db)
        rental = await repo.get_rental(rental_id)
        if rental is None:
            raise NotFoundError(f"Noleggio con ID {rental_id} non trovato")
        return rental

    async def get_all(
        self,
        db: AsyncSession,
        filters: Optional[RentalFilters] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> tuple[list[Rental], int]:
        """
        Recupera la lista paginata dei noleggi.

        Returns:
            Tuple di (lista noleggi, totale count)
        """
        repo = self._repository_factory(db)
        return await repo.list_rentals(filters or RentalFilters(), page, per_page)

    async def check_availability(
        self,
        db: AsyncSession,
        car_id: uuid.UUID,
        start: datetime.datetime,
        end: datetime.datetime,
        exclude_rental_id: Optional[uuid.UUID] = None,
    ) -> AvailabilityRead:
        """Verifica indicativa di disponibilità, per l'interfaccia di prenotazione."""
        available = await self.availability.is_available(db, car_id, start, end, exclude_rental_id)
        return AvailabilityRead(
            car_id=car_id,
            start_date=ensure_aware(start),
            end_date=ensure_aware(end),
            available=available,
        )

    async def list_overdue(self, db: AsyncSession) -> list[Rental]:
        """Noleggi in corso con riconsegna scaduta rispetto all'orologio del service."""
        repo = self._repository_factory(db)
        return await repo.list_overdue(self.clock.now())

    async def calendar(
        self,
        db: AsyncSession,
        start: datetime.datetime,
        end: datetime.datetime,
    ) -> list[CalendarEvent]:
        """Eventi del calendario per i noleggi non annullati nella finestra."""
        repo = self._repository_factory(db)
        rentals = await repo.list_for_calendar(ensure_aware(start), ensure_aware(end))

        events = []
        for rental in rentals:
            status = RentalStatus(rental.status)
            title = rental.rental_number
            if rental.with_driver and rental.driver_name:
                title = f"{title} - {rental.driver_name}"
            events.append(CalendarEvent(
                id=rental.id,
                title=title,
                start=rental.start_date,
                end=rental.end_date,
                status=status,
                color=STATUS_COLORS.get(status, DEFAULT_STATUS_COLOR),
                car_id=rental.car_id,
                customer_id=rental.customer_id,
            ))
        return events

    async def stats(
        self,
        db: AsyncSession,
        date_from: Optional[datetime.date] = None,
        date_to: Optional[datetime.date] = None,
        branch_id: Optional[uuid.UUID] = None,
    ) -> RentalStats:
        """Conteggi per stato e totali economici, filtrati per data di creazione e filiale."""
        repo = self._repository_factory(db)
        rows = await repo.rental_stats(date_from, date_to, branch_id)

        stats = RentalStats(by_status={s.value: 0 for s in RentalStatus})
        for status, count, total, paid, remaining in rows:
            stats.by_status[status] = count
            stats.total_rentals += count
            stats.total_revenue += total
            stats.total_paid += paid
            stats.total_remaining += remaining
        return stats

    # -------------------------------------------------------------------
    # Creazione e modifica
    # -------------------------------------------------------------------

    async def create(
        self,
        db: AsyncSession,
        data: RentalCreate,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Rental:
        """
        Crea un nuovo noleggio in stato pending.

        Verifica di disponibilità, inserimento ed eventuali pagamenti
        iniziali avvengono in un'unica transazione sotto il lock dell'auto.

        Args:
            db: Sessione database
            data: Dati del noleggio
            actor_id: Operatore che crea il noleggio

        Returns:
            Rental: Il noleggio creato

        Raises:
            BusinessValidationError: Dati non validi (mappa campo → motivo)
            NotFoundError: Se l'auto non esiste
            UnavailableError: car_not_available se l'intervallo è occupato
            ConflictError: Se la transazione perde una corsa concorrente
        """
        values = data.model_dump()
        errors = self._validate_terms(values, require_customer=True)
        for field in ("initial_payment", "deposit_payment"):
            amount = values.get(field)
            if amount is not None and amount < 0:
                errors[field] = "L'importo del pagamento non può essere negativo"
        if errors:
            logger.warning("Creazione noleggio rifiutata: %s", errors)
            raise BusinessValidationError("Dati del noleggio non validi", errors=errors)

        days = rental_days(data.start_date, data.end_date)
        driver_rate = data.driver_daily_rate if data.with_driver else None
        total, deposit = self.compute_amounts(data.daily_rate, data.with_driver, driver_rate, days)
        now = self.clock.now()

        repo = self._repository_factory(db)
        async with self.availability.reserve(repo, data.car_id, data.start_date, data.end_date) as car:
            if not car.is_active:
                raise BusinessValidationError(
                    "Auto non noleggiabile",
                    errors={"car_id": "L'auto è stata ritirata dalla flotta"},
                )

            rental = Rental(
                rental_number=await repo.next_rental_number(now.date(), self.policy.number_prefix),
                customer_id=data.customer_id,
                car_id=data.car_id,
                branch_id=data.branch_id,
                created_by=actor_id,
                start_date=data.start_date,
                end_date=data.end_date,
                rental_duration_days=days,
                daily_rate=data.daily_rate,
                with_driver=data.with_driver,
                driver_name=data.driver_name if data.with_driver else None,
                driver_phone=data.driver_phone if data.with_driver else None,
                driver_daily_rate=driver_rate,
                total_amount=total,
                deposit_amount=deposit,
                paid_amount=ZERO,
                remaining_amount=total,
                payment_status=PaymentStatus.PENDING.value,
                status=RentalStatus.PENDING.value,
                notes=data.notes,
            )
            await repo.add_rental(rental)
            self._occupy_car(car, rental)
            await repo.flush()

            initial_postings = (
                (data.initial_payment, PaymentType.RENTAL),
                (data.deposit_payment, PaymentType.DEPOSIT),
            )
            for amount, payment_type in initial_postings:
                if amount:
                    payment = self.ledger.initial_payment(amount, payment_type, data.payment_method, now)
                    await self.ledger.post_in_transaction(repo, rental, payment, actor_id)

        logger.info(
            "Creato noleggio %s: auto %s dal %s al %s, %s giorni, totale %s",
            rental.rental_number,
            rental.car_id,
            rental.start_date,
            rental.end_date,
            days,
            total,
        )
        self._publish(
            ev.RENTAL_CREATED,
            rental,
            actor_id,
            total_amount=str(rental.total_amount),
            paid_amount=str(rental.paid_amount),
        )
        return rental

    async def update(
        self,
        db: AsyncSession,
        rental_id: uuid.UUID,
        data: RentalUpdate,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Rental:
        """
        Modifica un noleggio in stato pending o confirmed.

        Se cambiano auto o date la disponibilità viene verificata di nuovo
        (escludendo il noleggio stesso) sotto il lock della nuova auto.
        Importi e registro vengono ricalcolati.

        Raises:
            NotFoundError: Se il noleggio non esiste
            InvalidTransitionError: Se il noleggio non è più modificabile
            BusinessValidationError: Dati non validi
            UnavailableError: car_not_available se il nuovo intervallo è occupato
        """
        changes = data.model_dump(exclude_unset=True)
        repo = self._repository_factory(db)

        async with repo.transaction():
            rental = await repo.get_rental(rental_id, for_update=True)
            if rental is None:
                raise NotFoundError(f"Noleggio con ID {rental_id} non trovato")
            if RentalStatus(rental.status) not in EDITABLE_STATUSES:
                logger.warning("Modifica rifiutata: noleggio %s in stato %s", rental.rental_number, rental.status)
                raise InvalidTransitionError(rental.status, "update")

            values = {
                field: getattr(rental, field)
                for field in (
                    "customer_id", "car_id", "branch_id", "start_date", "end_date", "daily_rate",
                    "with_driver", "driver_name", "driver_phone", "driver_daily_rate", "notes",
                )
            }
            values.update(changes)
            errors = self._validate_terms(values, require_customer=True)
            if errors:
                logger.warning("Modifica noleggio %s rifiutata: %s", rental.rental_number, errors)
                raise BusinessValidationError("Dati del noleggio non validi", errors=errors)

            previous_car_id = rental.car_id
            if _INTERVAL_FIELDS & changes.keys():
                async with self.availability.reserve(
                    repo,
                    values["car_id"],
                    values["start_date"],
                    values["end_date"],
                    exclude_rental_id=rental.id,
                ) as car:
                    await self._apply_update(repo, rental, values)
                    if car.id != previous_car_id:
                        await self._release_car(repo, rental, previous_car_id)
                        self._occupy_car(car, rental)
                        await repo.flush()
            else:
                await self._apply_update(repo, rental, values)

        logger.info("Aggiornato noleggio %s: %s", rental.rental_number, sorted(changes))
        self._publish(ev.RENTAL_UPDATED, rental, actor_id, fields=sorted(changes))
        return rental

    async def _apply_update(self, repo: RentalRepository, rental: Rental, values: dict[str, Any]) -> None:
        with_driver = bool(values["with_driver"])
        days = rental_days(values["start_date"], values["end_date"])
        driver_rate = values["driver_daily_rate"] if with_driver else None
        total, deposit = self.compute_amounts(values["daily_rate"], with_driver, driver_rate, days)

        rental.car_id = values["car_id"]
        rental.branch_id = values["branch_id"]
        rental.start_date = ensure_aware(values["start_date"])
        rental.end_date = ensure_aware(values["end_date"])
        rental.rental_duration_days = days
        rental.daily_rate = values["daily_rate"]
        rental.with_driver = with_driver
        rental.driver_name = values["driver_name"] if with_driver else None
        rental.driver_phone = values["driver_phone"] if with_driver else None
        rental.driver_daily_rate = driver_rate
        rental.notes = values["notes"]
        rental.total_amount = total
        rental.deposit_amount = deposit
        await self.ledger.recompute_in_transaction(repo, rental)

    # -------------------------------------------------------------------
    # Transizioni di stato
    # -------------------------------------------------------------------

    async def confirm(
        self,
        db: AsyncSession,
        rental_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Rental:
        """
        Conferma un noleggio (pending → confirmed).

        Raises:
            NotFoundError: Se il noleggio non esiste
            InvalidTransitionError: Se il noleggio non è pending
        """
        repo = self._repository_factory(db)
        async with repo.transaction():
            rental, target = await self._load_for_action(repo, rental_id, RentalAction.CONFIRM)
            rental.status = target.value
            rental.confirmed_by = actor_id
            rental.confirmed_at = self.clock.now()
            await repo.flush()

        logger.info("Noleggio %s confermato", rental.rental_number)
        self._publish(ev.RENTAL_CONFIRMED, rental, actor_id)
        return rental

    async def activate(
        self,
        db: AsyncSession,
        rental_id: uuid.UUID,
        data: RentalActivate,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Rental:
        """
        Consegna l'auto al cliente (confirmed → active).

        Raises:
            NotFoundError: Se il noleggio non esiste
            InvalidTransitionError: Se il noleggio non è confirmed
            BusinessValidationError: Se mancano chilometraggio o livello carburante
        """
        repo = self._repository_factory(db)
        async with repo.transaction():
            rental, target = await self._load_for_action(repo, rental_id, RentalAction.ACTIVATE)

            errors: dict[str, str] = {}
            if data.odometer_start is None:
                errors["odometer_start"] = "Il chilometraggio alla consegna è obbligatorio"
            if data.fuel_level_start is None:
                errors["fuel_level_start"] = "Il livello carburante alla consegna è obbligatorio"
            if errors:
                raise BusinessValidationError("Dati di consegna incompleti", errors=errors)

            rental.status = target.value
            rental.odometer_start = data.odometer_start
            rental.fuel_level_start = data.fuel_level_start.value
            rental.car_condition_start = data.car_condition_start
            rental.activated_by = actor_id
            rental.activated_at = self.clock.now()

            # L'auto consegnata è occupata da questo noleggio anche se era associata a un altro
            async with repo.reserve_car(rental.car_id) as car:
                self._occupy_car(car, rental, force=True)
            await repo.flush()

        logger.info("Noleggio %s attivato (km %s)", rental.rental_number, rental.odometer_start)
        self._publish(ev.RENTAL_ACTIVATED, rental, actor_id, odometer_start=rental.odometer_start)
        return rental

    async def extend(
        self,
        db: AsyncSession,
        rental_id: uuid.UUID,
        new_end: datetime.datetime,
        actor_id: Optional[uuid.UUID] = None,
    ) -> RentalExtension:
        """
        Estende il noleggio (active|extended → extended).

        Delegato a ExtensionService.apply.
        """
        return await self.extensions.apply(db, rental_id, new_end, approver_id=actor_id)

    async def complete(
        self,
        db: AsyncSession,
        rental_id: uuid.UUID,
        data: RentalComplete,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Rental:
        """
        Chiude il noleggio alla riconsegna (active|extended → completed).

        Registra la data effettiva di riconsegna e aggiorna il
        chilometraggio dell'auto.

        Raises:
            NotFoundError: Se il noleggio non esiste
            InvalidTransitionError: Se il noleggio non è active o extended
            BusinessValidationError: Dati mancanti o chilometraggio incoerente
        """
        repo = self._repository_factory(db)
        async with repo.transaction():
            rental, target = await self._load_for_action(repo, rental_id, RentalAction.COMPLETE)

            errors: dict[str, str] = {}
            if data.odometer_end is None:
                errors["odometer_end"] = "Il chilometraggio alla riconsegna è obbligatorio"
            elif rental.odometer_start is not None and data.odometer_end < rental.odometer_start:
                errors["odometer_end"] = (
                    "Il chilometraggio finale non può essere inferiore a quello iniziale "
                    f"({rental.odometer_start})"
                )
            if data.fuel_level_end is None:
                errors["fuel_level_end"] = "Il livello carburante alla riconsegna è obbligatorio"
            if errors:
                raise BusinessValidationError("Dati di riconsegna non validi", errors=errors)

            now = self.clock.now()
            rental.status = target.value
            rental.odometer_end = data.odometer_end
            rental.fuel_level_end = data.fuel_level_end.value
            rental.car_condition_end = data.car_condition_end
            rental.actual_return_date = now
            rental.completed_by = actor_id
            rental.completed_at = now

            async with repo.reserve_car(rental.car_id) as car:
                if car.current_odometer is None or data.odometer_end > car.current_odometer:
                    car.current_odometer = data.odometer_end
                    logger.info("Aggiornato chilometraggio auto %s: %s km", car.plate_number, data.odometer_end)
                self._free_car(car, rental)
            await repo.flush()

        logger.info("Noleggio %s completato", rental.rental_number)
        self._publish(
            ev.RENTAL_COMPLETED,
            rental,
            actor_id,
            odometer_end=rental.odometer_end,
            actual_return_date=rental.actual_return_date.isoformat(),
        )
        return rental

    async def cancel(
        self,
        db: AsyncSession,
        rental_id: uuid.UUID,
        data: RentalCancel,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Rental:
        """
        Annulla il noleggio. L'auto torna subito disponibile per l'intervallo.

        Raises:
            NotFoundError: Se il noleggio non esiste
            InvalidTransitionError: Se il noleggio è già completato o annullato
            BusinessValidationError: Se manca il motivo
        """
        repo = self._repository_factory(db)
        async with repo.transaction():
            rental, target = await self._load_for_action(repo, rental_id, RentalAction.CANCEL)

            reason = (data.reason or "").strip()
            if not reason:
                raise BusinessValidationError(
                    "Motivo dell'annullamento mancante",
                    errors={"reason": "Il motivo dell'annullamento è obbligatorio"},
                )

            previous_status = rental.status
            rental.status = target.value
            rental.cancellation_reason = reason
            rental.cancelled_by = actor_id
            rental.cancelled_at = self.clock.now()
            await self._release_car(repo, rental)

        logger.info("Noleggio %s annullato (era %s): %s", rental.rental_number, previous_status, reason)
        self._publish(ev.RENTAL_CANCELLED, rental, actor_id, previous_status=previous_status, reason=reason)
        return rental

    async def delete(
        self,
        db: AsyncSession,
        rental_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
    ) -> None:
        """
        Elimina definitivamente un noleggio con pagamenti ed estensioni.

        Non consentito mentre il noleggio è active.

        Raises:
            NotFoundError: Se il noleggio non esiste
            InvalidTransitionError: Se il noleggio è active
        """
        repo = self._repository_factory(db)
        async with repo.transaction():
            rental = await repo.get_rental(rental_id, for_update=True)
            if rental is None:
                raise NotFoundError(f"Noleggio con ID {rental_id} non trovato")
            if rental.status == RentalStatus.ACTIVE.value:
                logger.warning("Eliminazione rifiutata: noleggio %s attivo", rental.rental_number)
                raise InvalidTransitionError(rental.status, "delete")

            rental_number = rental.rental_number
            previous_status = rental.status
            await self._release_car(repo, rental)
            await repo.delete_rental(rental)

        logger.info("Eliminato noleggio %s", rental_number)
        self.events.publish(RentalEvent(
            name=ev.RENTAL_DELETED,
            rental_id=rental_id,
            actor_id=actor_id,
            payload={"rental_number": rental_number, "status": previous_status},
        ))
