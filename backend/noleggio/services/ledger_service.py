"""
Service per il registro pagamenti dei noleggi
Progetto: Fleet Rental Manager (Gestionale Noleggio)

paid_amount, remaining_amount e payment_status del noleggio sono sempre
ricalcolati dalla somma dei movimenti esistenti, nella stessa transazione
di ogni registrazione o eliminazione. La riga del noleggio viene bloccata
per evitare aggiornamenti persi tra registrazioni concorrenti.
"""

import datetime
import logging
import uuid
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from noleggio.core.calendar import Clock, SystemClock
from noleggio.core.exceptions import BusinessValidationError, NotFoundError
from noleggio.models import Rental, RentalPayment
from noleggio.repositories.rental_repository import RentalRepository
from noleggio.schemas.rental import (
    LedgerSummary,
    PaymentCreate,
    PaymentMethod,
    PaymentStats,
    PaymentStatus,
    PaymentTotals,
    PaymentType,
)
from noleggio.services.events import PAYMENT_DELETED, PAYMENT_POSTED, EventBus, RentalEvent

# Logger per questo modulo
logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def derive_ledger(total: Decimal, paid: Decimal) -> tuple[Decimal, PaymentStatus]:
    """
    Calcola residuo e stato di pagamento.

    - remaining = max(total - paid, 0)
    - paid se paid >= total, pending se paid = 0, altrimenti partial

    Returns:
        Tuple di (remaining_amount, payment_status)
    """
    remaining = max(total - paid, ZERO)
    if paid >= total:
        status = PaymentStatus.PAID
    elif paid == 0:
        status = PaymentStatus.PENDING
    else:
        status = PaymentStatus.PARTIAL
    return remaining, status


class LedgerService:
    """
    Service per registrazione, eliminazione e ricalcolo dei pagamenti.

    I metodi `*_in_transaction` lavorano su un repository con transazione
    già aperta e sono usati dagli altri service (creazione noleggio,
    estensioni). Gli altri metodi aprono la propria transazione.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        events: Optional[EventBus] = None,
        repository_factory: Callable[[AsyncSession], RentalRepository] = RentalRepository,
    ) -> None:
        self.clock = clock or SystemClock()
        self.events = events or EventBus()
        self._repository_factory = repository_factory

    # -------------------------------------------------------------------
    # Operazioni dentro una transazione esistente
    # -------------------------------------------------------------------

    async def recompute_in_transaction(self, repo: RentalRepository, rental: Rental) -> LedgerSummary:
        """Ricalcola i campi derivati del noleggio dalla somma dei movimenti."""
        paid = await repo.sum_payments(rental.id)
        remaining, status = derive_ledger(rental.total_amount, paid)

        rental.paid_amount = paid
        rental.remaining_amount = remaining
        rental.payment_status = status.value
        await repo.flush()

        return LedgerSummary(
            total_amount=rental.total_amount,
            paid_amount=paid,
            remaining_amount=remaining,
            payment_status=status,
        )

    async def post_in_transaction(
        self,
        repo: RentalRepository,
        rental: Rental,
        data: PaymentCreate,
        actor_id: Optional[uuid.UUID] = None,
    ) -> RentalPayment:
        """
        Registra un movimento e ricalcola il registro.

        Raises:
            BusinessValidationError: Se l'importo non è positivo
        """
        self.validate_amount(data.amount)

        payment = RentalPayment(
            rental_id=rental.id,
            amount=data.amount,
            payment_type=data.payment_type.value,
            payment_method=data.payment_method.value if data.payment_method else None,
            payment_date=data.payment_date or self.clock.now(),
            reference_number=data.reference_number,
            receipt_path=data.receipt_path,
            notes=data.notes,
            created_by=actor_id,
        )
        await repo.add_payment(payment)
        await self.recompute_in_transaction(repo, rental)
        return payment

    @staticmethod
    def validate_amount(amount: Optional[Decimal], field: str = "amount") -> None:
        if amount is None or amount <= 0:
            raise BusinessValidationError(
                "Importo del pagamento non valido",
                errors={field: "L'importo del pagamento deve essere positivo"},
            )

    # -------------------------------------------------------------------
    # Operazioni pubbliche
    # -------------------------------------------------------------------

    async def post(
        self,
        db: AsyncSession,
        rental_id: uuid.UUID,
        data: PaymentCreate,
        actor_id: Optional[uuid.UUID] = None,
    ) -> RentalPayment:
        """
        Registra un pagamento su un noleggio.

        Args:
            db: Sessione database
            rental_id: UUID del noleggio
            data: Dati del pagamento
            actor_id: Operatore che registra il pagamento

        Returns:
            RentalPayment: Il movimento creato

        Raises:
            BusinessValidationError: Se l'importo non è positivo
            NotFoundError: Se il noleggio non esiste
        """
        self.validate_amount(data.amount)
        repo = self._repository_factory(db)

        async with repo.transaction():
            rental = await repo.get_rental(rental_id, for_update=True)
            if rental is None:
                raise NotFoundError(f"Noleggio con ID {rental_id} non trovato")
            payment = await self.post_in_transaction(repo, rental, data, actor_id)
            summary = LedgerSummary(
                total_amount=rental.total_amount,
                paid_amount=rental.paid_amount,
                remaining_amount=rental.remaining_amount,
                payment_status=PaymentStatus(rental.payment_status),
            )

        logger.info(
            "Registrato pagamento %s di %s su noleggio %s (residuo %s)",
            payment.id,
            payment.amount,
            rental.rental_number,
            summary.remaining_amount,
        )
        self.events.publish(RentalEvent(
            name=PAYMENT_POSTED,
            rental_id=rental_id,
            actor_id=actor_id,
            payload={
                "payment_id": str(payment.id),
                "amount": str(payment.amount),
                "payment_type": payment.payment_type,
                "payment_status": summary.payment_status.value,
            },
        ))
        return payment

    async def delete(
        self,
        db: AsyncSession,
        payment_id: uuid.UUID,
        rental_id: Optional[uuid.UUID] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LedgerSummary:
        """
        Elimina un pagamento e ricalcola il registro del noleggio.

        Args:
            db: Sessione database
            payment_id: UUID del pagamento
            rental_id: Noleggio a cui il pagamento deve appartenere
            actor_id: Operatore che elimina il pagamento

        Returns:
            LedgerSummary: Registro ricalcolato

        Raises:
            NotFoundError: Se il pagamento non esiste o appartiene a un altro noleggio
        """
        repo = self._repository_factory(db)

        async with repo.transaction():
            payment = await repo.get_payment(payment_id)
            if payment is None or (rental_id is not None and payment.rental_id != rental_id):
                raise NotFoundError(f"Pagamento con ID {payment_id} non trovato")

            rental = await repo.get_rental(payment.rental_id, for_update=True)
            if rental is None:
                raise NotFoundError(f"Noleggio con ID {payment.rental_id} non trovato")

            # Riletto sotto il lock del noleggio: un'eliminazione concorrente può averlo già rimosso
            payment = await repo.get_payment(payment_id, for_update=True)
            if payment is None:
                logger.warning("Pagamento %s già eliminato da un'altra richiesta", payment_id)
                raise NotFoundError(f"Pagamento con ID {payment_id} non trovato")

            amount = payment.amount
            await repo.delete_payment(payment)
            summary = await self.recompute_in_transaction(repo, rental)

        logger.info("Eliminato pagamento %s dal noleggio %s", payment_id, rental.rental_number)
        self.events.publish(RentalEvent(
            name=PAYMENT_DELETED,
            rental_id=rental.id,
            actor_id=actor_id,
            payload={
                "payment_id": str(payment_id),
                "amount": str(amount),
                "payment_status": summary.payment_status.value,
            },
        ))
        return summary

    async def recompute(self, db: AsyncSession, rental_id: uuid.UUID) -> LedgerSummary:
        """
        Ricalcola e salva i campi derivati del registro di un noleggio.

        Raises:
            NotFoundError: Se il noleggio non esiste
        """
        repo = self._repository_factory(db)
        async with repo.transaction():
            rental = await repo.get_rental(rental_id, for_update=True)
            if rental is None:
                raise NotFoundError(f"Noleggio con ID {rental_id} non trovato")
            return await self.recompute_in_transaction(repo, rental)

    async def list_payments(self, db: AsyncSession, rental_id: uuid.UUID) -> list[RentalPayment]:
        """Movimenti del noleggio, dal più recente."""
        repo = self._repository_factory(db)
        if await repo.get_rental(rental_id) is None:
            raise NotFoundError(f"Noleggio con ID {rental_id} non trovato")
        return await repo.list_payments(rental_id)

    async def totals_by_type(self, db: AsyncSession, rental_id: uuid.UUID) -> PaymentTotals:
        """Totale incassato per ciascun tipo di movimento."""
        repo = self._repository_factory(db)
        if await repo.get_rental(rental_id) is None:
            raise NotFoundError(f"Noleggio con ID {rental_id} non trovato")
        totals = await repo.payment_totals_by_type(rental_id)
        return PaymentTotals(
            rental_id=rental_id,
            totals={t.value: totals.get(t.value, ZERO) for t in PaymentType},
        )

    async def payment_stats(
        self,
        db: AsyncSession,
        date_from: Optional[datetime.date] = None,
        date_to: Optional[datetime.date] = None,
    ) -> PaymentStats:
        """Numero e importo dei movimenti di tutti i noleggi, filtrati per data del pagamento."""
        repo = self._repository_factory(db)
        rows = await repo.payment_stats(date_from, date_to)

        stats = PaymentStats(by_type={t.value: ZERO for t in PaymentType})
        for payment_type, count, total in rows:
            stats.by_type[payment_type] = total
            stats.total_payments += count
            stats.total_amount += total
        return stats

    def initial_payment(
        self,
        amount: Decimal,
        payment_type: PaymentType,
        method: Optional[PaymentMethod],
        when: datetime.datetime,
    ) -> PaymentCreate:
        """Movimento registrato contestualmente alla creazione del noleggio."""
        return PaymentCreate(
            amount=amount,
            payment_type=payment_type,
            payment_method=method,
            payment_date=when,
            notes="Pagamento iniziale" if payment_type == PaymentType.RENTAL else "Caparra iniziale",
        )
