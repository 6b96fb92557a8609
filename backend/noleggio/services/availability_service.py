"""
Service per la verifica di disponibilità delle auto
Progetto: Fleet Rental Manager (Gestionale Noleggio)

Un'auto è occupata per [start, end) da ogni noleggio in stato pending,
confirmed, active o extended. I noleggi completati o annullati non
bloccano mai.
"""

import datetime
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from noleggio.core.calendar import ensure_aware, intervals_overlap
from noleggio.core.exceptions import BusinessValidationError, UnavailableError
from noleggio.models import Car, Rental
from noleggio.repositories.rental_repository import RentalRepository

# Logger per questo modulo
logger = logging.getLogger(__name__)

CAR_NOT_AVAILABLE = "car_not_available"


class AvailabilityService:
    """
    Verifica di disponibilità di un'auto per un intervallo.

    `is_available` chiamato fuori da `reserve` dà solo una risposta
    indicativa: l'unica garanzia contro le doppie prenotazioni è
    `reserve`, che esegue verifica e scrittura sotto il lock dell'auto.
    """

    def __init__(
        self,
        repository_factory: Callable[[AsyncSession], RentalRepository] = RentalRepository,
    ) -> None:
        self._repository_factory = repository_factory

    async def conflicting_rentals(
        self,
        repo: RentalRepository,
        car_id: uuid.UUID,
        start: datetime.datetime,
        end: datetime.datetime,
        exclude_rental_id: Optional[uuid.UUID] = None,
    ) -> list[Rental]:
        """
        Noleggi bloccanti dell'auto che intersecano [start, end).

        Raises:
            BusinessValidationError: Se start non precede end
        """
        start = ensure_aware(start)
        end = ensure_aware(end)
        if start >= end:
            raise BusinessValidationError(
                "Intervallo non valido",
                errors={"end_date": "La data di fine deve essere successiva alla data di inizio"},
            )

        blocking = await repo.list_blocking_rentals(car_id, exclude_rental_id)
        return [
            rental for rental in blocking
            if intervals_overlap(rental.start_date, rental.end_date, start, end)
        ]

    async def is_available(
        self,
        db: AsyncSession,
        car_id: uuid.UUID,
        start: datetime.datetime,
        end: datetime.datetime,
        exclude_rental_id: Optional[uuid.UUID] = None,
    ) -> bool:
        """
        Verifica indicativa di disponibilità, senza lock.

        Args:
            db: Sessione database
            car_id: UUID dell'auto
            start: Inizio dell'intervallo richiesto
            end: Fine dell'intervallo richiesto
            exclude_rental_id: Noleggio da ignorare (es. quello in modifica)

        Returns:
            True se nessun noleggio bloccante interseca l'intervallo
        """
        repo = self._repository_factory(db)
        conflicts = await self.conflicting_rentals(repo, car_id, start, end, exclude_rental_id)
        return not conflicts

    async def ensure_available(
        self,
        repo: RentalRepository,
        car_id: uuid.UUID,
        start: datetime.datetime,
        end: datetime.datetime,
        exclude_rental_id: Optional[uuid.UUID] = None,
    ) -> None:
        """
        Raises:
            UnavailableError: car_not_available se l'intervallo è occupato
        """
        conflicts = await self.conflicting_rentals(repo, car_id, start, end, exclude_rental_id)
        if conflicts:
            logger.warning(
                "Auto %s non disponibile per %s - %s (in conflitto con %s)",
                car_id,
                start,
                end,
                ", ".join(r.rental_number for r in conflicts),
            )
            raise UnavailableError(CAR_NOT_AVAILABLE)

    @asynccontextmanager
    async def reserve(
        self,
        repo: RentalRepository,
        car_id: uuid.UUID,
        start: datetime.datetime,
        end: datetime.datetime,
        exclude_rental_id: Optional[uuid.UUID] = None,
    ) -> AsyncIterator[Car]:
        """
        Blocca l'auto, verifica la disponibilità e lascia scrivere il
        chiamante nella stessa transazione.

        Esempio:
            async with availability.reserve(repo, car_id, start, end):
                await repo.add_rental(rental)

        Raises:
            NotFoundError: Se l'auto non esiste
            UnavailableError: car_not_available se l'intervallo è occupato
        """
        async with repo.reserve_car(car_id) as car:
            await self.ensure_available(repo, car_id, start, end, exclude_rental_id)
            yield car
