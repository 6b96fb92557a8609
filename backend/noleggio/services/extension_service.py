"""
Service per le estensioni dei noleggi
Progetto: Fleet Rental Manager (Gestionale Noleggio)

Un'estensione sposta in avanti la data di fine di un noleggio active o
extended. Si verifica la disponibilità solo per il tratto aggiunto
[fine attuale, nuova fine), escludendo il noleggio stesso.
"""

import datetime
import logging
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from noleggio.core.calendar import Clock, SystemClock, ensure_aware, extension_days, rental_days
from noleggio.core.config import RentalPolicy
from noleggio.core.exceptions import BusinessValidationError, NotFoundError, UnavailableError
from noleggio.models import Rental, RentalExtension
from noleggio.repositories.rental_repository import RentalRepository
from noleggio.schemas.rental import (
    RENTAL_TRANSITIONS,
    ExtensionCheck,
    ExtensionPaymentStatus,
    ExtensionStats,
    RentalAction,
    RentalStatus,
    resolve_transition,
)
from noleggio.services.availability_service import CAR_NOT_AVAILABLE, AvailabilityService
from noleggio.services.events import EXTENSION_PAID, RENTAL_EXTENDED, EventBus, RentalEvent
from noleggio.services.ledger_service import LedgerService

# Logger per questo modulo
logger = logging.getLogger(__name__)

NEW_END_BEFORE_CURRENT = "new_end_before_current"
STATUS_NOT_EXTENDABLE = "status_not_extendable"
MAX_DURATION_EXCEEDED = "max_duration_exceeded"
CENT = Decimal("0.01")


class ExtensionService:
    """
    Service per verifica, applicazione e pagamento delle estensioni.
    """

    def __init__(
        self,
        policy: RentalPolicy,
        clock: Optional[Clock] = None,
        events: Optional[EventBus] = None,
        availability: Optional[AvailabilityService] = None,
        ledger: Optional[LedgerService] = None,
        repository_factory: Callable[[AsyncSession], RentalRepository] = RentalRepository,
    ) -> None:
        self.policy = policy
        self.clock = clock or SystemClock()
        self.events = events or EventBus()
        self.availability = availability or AvailabilityService(repository_factory)
        self.ledger = ledger or LedgerService(self.clock, self.events, repository_factory)
        self._repository_factory = repository_factory

    @staticmethod
    def extension_amount(rental: Rental, days: int) -> Decimal:
        """Importo dell'estensione: giorni aggiunti × tariffa complessiva."""
        return (rental.effective_daily_rate * days).quantize(CENT, rounding=ROUND_HALF_UP)

    async def _evaluate(
        self,
        repo: RentalRepository,
        rental: Rental,
        new_end: datetime.datetime,
    ) -> ExtensionCheck:
        new_end = ensure_aware(new_end)
        if (RentalStatus(rental.status), RentalAction.EXTEND) not in RENTAL_TRANSITIONS:
            return ExtensionCheck(allowed=False, reason_code=STATUS_NOT_EXTENDABLE)
        if new_end <= ensure_aware(rental.end_date):
            return ExtensionCheck(allowed=False, reason_code=NEW_END_BEFORE_CURRENT)
        if rental_days(rental.start_date, new_end) > self.policy.max_days:
            return ExtensionCheck(allowed=False, reason_code=MAX_DURATION_EXCEEDED)

        conflicts = await self.availability.conflicting_rentals(
            repo, rental.car_id, rental.end_date, new_end, exclude_rental_id=rental.id
        )
        if conflicts:
            return ExtensionCheck(allowed=False, reason_code=CAR_NOT_AVAILABLE)

        days = extension_days(rental.start_date, rental.end_date, new_end)
        return ExtensionCheck(
            allowed=True,
            extension_days=days,
            extension_amount=self.extension_amount(rental, days),
        )

    async def can_extend(
        self,
        db: AsyncSession,
        rental_id: uuid.UUID,
        new_end: datetime.datetime,
    ) -> ExtensionCheck:
        """
        Verifica (indicativa) se il noleggio può essere esteso fino a new_end.

        Args:
            db: Sessione database
            rental_id: UUID del noleggio
            new_end: Nuova data di fine richiesta

        Returns:
            ExtensionCheck: allowed, reason_code e, se consentita, giorni e importo

        Raises:
            NotFoundError: Se il noleggio non esiste
        """
        repo = self._repository_factory(db)
        rental = await repo.get_rental(rental_id)
        if rental is None:
            raise NotFoundError(f"Noleggio con ID {rental_id} non trovato")
        return await self._evaluate(repo, rental, new_end)

    async def apply(
        self,
        db: AsyncSession,
        rental_id: uuid.UUID,
        new_end: datetime.datetime,
        approver_id: Optional[uuid.UUID] = None,
    ) -> RentalExtension:
        """
        Estende il noleggio fino a new_end.

        Inserisce la riga di estensione, aggiorna fine, durata e totale,
        ricalcola il registro e porta lo stato a extended. Tutto avviene
        sotto il lock dell'auto.

        Args:
            db: Sessione database
            rental_id: UUID del noleggio
            new_end: Nuova data di fine
            approver_id: Operatore che approva l'estensione

        Returns:
            RentalExtension: L'estensione creata

        Raises:
            NotFoundError: Se il noleggio non esiste
            InvalidTransitionError: Se il noleggio non è active o extended
            UnavailableError: new_end_before_current o car_not_available
            BusinessValidationError: Se la durata complessiva supera il massimo
        """
        new_end = ensure_aware(new_end)
        repo = self._repository_factory(db)

        async with repo.transaction():
            rental = await repo.get_rental(rental_id, for_update=True)
            if rental is None:
                raise NotFoundError(f"Noleggio con ID {rental_id} non trovato")

            target = resolve_transition(RentalStatus(rental.status), RentalAction.EXTEND)

            original_end = ensure_aware(rental.end_date)
            if new_end <= original_end:
                logger.warning(
                    "Estensione rifiutata per %s: nuova fine %s non successiva a %s",
                    rental.rental_number,
                    new_end,
                    original_end,
                )
                raise UnavailableError(
                    NEW_END_BEFORE_CURRENT,
                    "La nuova data di fine deve essere successiva a quella attuale",
                )

            total_days = rental_days(rental.start_date, new_end)
            if total_days > self.policy.max_days:
                raise BusinessValidationError(
                    "Durata del noleggio non valida",
                    errors={
                        "new_end_date": f"La durata massima del noleggio è di {self.policy.max_days} giorni",
                    },
                )

            async with self.availability.reserve(
                repo, rental.car_id, original_end, new_end, exclude_rental_id=rental.id
            ):
                days = extension_days(rental.start_date, original_end, new_end)
                amount = self.extension_amount(rental, days)

                extension = RentalExtension(
                    rental_id=rental.id,
                    original_end_date=original_end,
                    new_end_date=new_end,
                    extension_days=days,
                    extension_amount=amount,
                    payment_status=ExtensionPaymentStatus.PENDING.value,
                    approved_by=approver_id,
                )
                await repo.add_extension(extension)

                rental.end_date = new_end
                rental.rental_duration_days = total_days
                rental.total_amount = rental.total_amount + amount
                rental.status = target.value
                await self.ledger.recompute_in_transaction(repo, rental)

        logger.info(
            "Noleggio %s esteso al %s: +%s giorni, +%s (totale %s)",
            rental.rental_number,
            new_end,
            days,
            amount,
            rental.total_amount,
        )
        self.events.publish(RentalEvent(
            name=RENTAL_EXTENDED,
            rental_id=rental.id,
            actor_id=approver_id,
            payload={
                "extension_id": str(extension.id),
                "original_end_date": original_end.isoformat(),
                "new_end_date": new_end.isoformat(),
                "extension_days": days,
                "extension_amount": str(amount),
            },
        ))
        return extension

    async def mark_paid(
        self,
        db: AsyncSession,
        extension_id: uuid.UUID,
        rental_id: Optional[uuid.UUID] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> RentalExtension:
        """
        Segna come pagata un'estensione.

        L'operazione è idempotente e non registra movimenti nel registro
        pagamenti del noleggio.

        Raises:
            NotFoundError: Se l'estensione non esiste o appartiene a un altro noleggio
        """
        repo = self._repository_factory(db)

        async with repo.transaction():
            extension = await repo.get_extension(extension_id, for_update=True)
            if extension is None or (rental_id is not None and extension.rental_id != rental_id):
                raise NotFoundError(f"Estensione con ID {extension_id} non trovata")

            if extension.payment_status == ExtensionPaymentStatus.PAID.value:
                return extension

            extension.payment_status = ExtensionPaymentStatus.PAID.value
            await repo.flush()

        logger.info("Estensione %s segnata come pagata", extension_id)
        self.events.publish(RentalEvent(
            name=EXTENSION_PAID,
            rental_id=extension.rental_id,
            actor_id=actor_id,
            payload={"extension_id": str(extension_id), "amount": str(extension.extension_amount)},
        ))
        return extension

    async def list_extensions(self, db: AsyncSession, rental_id: uuid.UUID) -> list[RentalExtension]:
        """Estensioni del noleggio in ordine di creazione."""
        repo = self._repository_factory(db)
        if await repo.get_rental(rental_id) is None:
            raise NotFoundError(f"Noleggio con ID {rental_id} non trovato")
        return await repo.list_extensions(rental_id)

    async def extension_stats(
        self,
        db: AsyncSession,
        date_from: Optional[datetime.date] = None,
        date_to: Optional[datetime.date] = None,
    ) -> ExtensionStats:
        """Estensioni create nel periodo, con importi pagati e da incassare."""
        repo = self._repository_factory(db)
        count, days, total, paid, pending = await repo.extension_stats(date_from, date_to)
        return ExtensionStats(
            total_extensions=count,
            total_days=days,
            total_amount=total,
            paid_amount=paid,
            pending_amount=pending,
        )
