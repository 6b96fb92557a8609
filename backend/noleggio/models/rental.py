"""
Modelli SQLAlchemy per i Noleggi
Progetto: Fleet Rental Manager (Gestionale Noleggio)

Contiene:
- Rental: Contratto di noleggio (intervallo, tariffe, stato, registro)
- RentalExtension: Estensioni della data di fine (append-only)
"""

from __future__ import annotations

import datetime
import uuid
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from noleggio.models import Base
from noleggio.models.mixins import TimestampMixin, UUIDMixin


class Rental(Base, UUIDMixin, TimestampMixin):
    """
    Modello per i contratti di noleggio.

    I campi paid_amount, remaining_amount e payment_status sono derivati
    dal registro pagamenti e vengono ricalcolati dal LedgerService nella
    stessa transazione di ogni movimento: non vanno mai scritti a mano.

    Attributes:
        id: UUID primary key, generato automaticamente
        rental_number: Numero contratto (formato: RNTYYYYMMDDNNNN)
        customer_id: UUID del cliente
        car_id: UUID dell'auto noleggiata
        branch_id: UUID della filiale (opzionale)
        created_by: UUID dell'operatore che ha creato il noleggio
        start_date: Inizio del periodo di noleggio
        end_date: Fine del periodo di noleggio
        daily_rate: Tariffa giornaliera dell'auto
        with_driver: Flag noleggio con autista
        driver_name: Nome autista (solo se with_driver)
        driver_phone: Telefono autista (solo se with_driver)
        driver_daily_rate: Tariffa giornaliera autista (solo se with_driver)
        rental_duration_days: Giorni inclusivi del periodo
        total_amount: Totale dovuto (noleggio + autista + estensioni)
        deposit_amount: Caparra richiesta
        paid_amount: Totale incassato (derivato)
        remaining_amount: Residuo da incassare (derivato)
        payment_status: pending | partial | paid (derivato)
        status: pending | confirmed | active | extended | completed | cancelled
    """

    __tablename__ = "rentals"

    # ------------------------------------------------------------
    # Colonne Identificazione e Relazioni
    # ------------------------------------------------------------
    rental_number: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        unique=True,
        doc="Numero contratto progressivo giornaliero",
    )

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        index=True,
        doc="UUID del cliente",
    )

    car_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("cars.id", ondelete="RESTRICT"),
        nullable=False,
        doc="UUID dell'auto noleggiata",
    )

    branch_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        nullable=True,
        index=True,
        doc="UUID della filiale",
    )

    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        nullable=True,
        doc="UUID dell'operatore che ha creato il noleggio",
    )

    # ------------------------------------------------------------
    # Colonne Periodo
    # ------------------------------------------------------------
    start_date: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        doc="Inizio del periodo di noleggio",
    )

    end_date: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        doc="Fine del periodo di noleggio",
    )

    rental_duration_days: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        doc="Giorni inclusivi tra inizio e fine",
    )

    actual_return_date: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        doc="Data/ora effettiva di riconsegna",
    )

    # ------------------------------------------------------------
    # Colonne Tariffe e Autista
    # ------------------------------------------------------------
    daily_rate: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        doc="Tariffa giornaliera dell'auto",
    )

    with_driver: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        doc="Flag noleggio con autista",
    )

    driver_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    driver_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    driver_daily_rate: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)

    # ------------------------------------------------------------
    # Colonne Importi
    # ------------------------------------------------------------
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        doc="Totale dovuto (incluse le estensioni)",
    )

    deposit_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
        doc="Caparra richiesta",
    )

    paid_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
        doc="Totale incassato (derivato dal registro pagamenti)",
    )

    remaining_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0.00"),
        doc="Residuo da incassare (derivato dal registro pagamenti)",
    )

    payment_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        doc="Stato pagamento: pending, partial, paid",
    )

    # ------------------------------------------------------------
    # Colonne Stato e Attori
    # ------------------------------------------------------------
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        doc="Stato del noleggio",
    )

    confirmed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    confirmed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    activated_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    activated_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    completed_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    cancelled_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    cancellation_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        doc="Motivo dell'annullamento",
    )

    # ------------------------------------------------------------
    # Colonne Consegna / Riconsegna
    # ------------------------------------------------------------
    odometer_start: Mapped[int | None] = mapped_column(Integer, nullable=True)
    odometer_end: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fuel_level_start: Mapped[str | None] = mapped_column(String(20), nullable=True)
    fuel_level_end: Mapped[str | None] = mapped_column(String(20), nullable=True)

    car_condition_start: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        doc="Note sullo stato dell'auto alla consegna",
    )

    car_condition_end: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        doc="Note sullo stato dell'auto alla riconsegna",
    )

    notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        doc="Note interne",
    )

    # ------------------------------------------------------------
    # Properties Calcolate
    # ------------------------------------------------------------
    @property
    def effective_daily_rate(self) -> Decimal:
        """Tariffa giornaliera complessiva (auto + eventuale autista)."""
        rate = self.daily_rate
        if self.with_driver and self.driver_daily_rate:
            rate += self.driver_daily_rate
        return rate

    # ------------------------------------------------------------
    # Indici e Vincoli
    # ------------------------------------------------------------
    __table_args__ = (
        # Ricerca dei noleggi bloccanti per auto
        Index("ix_rentals_car_status", "car_id", "status"),
        Index("ix_rentals_start_date", "start_date"),
        Index("ix_rentals_end_date", "end_date"),
        Index("ix_rentals_status", "status"),
        CheckConstraint("end_date >= start_date", name="ck_rentals_interval"),
        CheckConstraint("daily_rate > 0", name="ck_rentals_daily_rate_positive"),
        CheckConstraint("total_amount >= 0", name="ck_rentals_total_positive"),
        CheckConstraint("paid_amount >= 0", name="ck_rentals_paid_positive"),
        CheckConstraint("remaining_amount >= 0", name="ck_rentals_remaining_positive"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'active', 'extended', 'completed', 'cancelled')",
            name="ck_rentals_status",
        ),
        CheckConstraint(
            "payment_status IN ('pending', 'partial', 'paid')",
            name="ck_rentals_payment_status",
        ),
    )

    def __repr__(self) -> str:
        return f"<Rental(id={self.id}, number={self.rental_number}, status={self.status})>"


class RentalExtension(Base, UUIDMixin, TimestampMixin):
    """
    Modello per le estensioni di un noleggio.

    Le righe sono create solo da un'estensione riuscita e non vengono mai
    modificate, a parte lo stato di pagamento dell'estensione stessa.

    Attributes:
        id: UUID primary key, generato automaticamente
        rental_id: UUID del noleggio esteso
        original_end_date: Data di fine prima dell'estensione
        new_end_date: Nuova data di fine
        extension_days: Giorni aggiunti
        extension_amount: Importo aggiuntivo
        payment_status: pending | paid
        approved_by: UUID dell'operatore che ha approvato
    """

    __tablename__ = "rental_extensions"

    rental_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("rentals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        doc="UUID del noleggio esteso",
    )

    original_end_date: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    new_end_date: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    extension_days: Mapped[int] = mapped_column(Integer, nullable=False)

    extension_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
    )

    payment_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        doc="Stato pagamento dell'estensione: pending, paid",
    )

    approved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    __table_args__ = (
        CheckConstraint("new_end_date > original_end_date", name="ck_rental_extensions_interval"),
        CheckConstraint("extension_days >= 0", name="ck_rental_extensions_days_positive"),
        CheckConstraint("extension_amount >= 0", name="ck_rental_extensions_amount_positive"),
        CheckConstraint(
            "payment_status IN ('pending', 'paid')",
            name="ck_rental_extensions_payment_status",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<RentalExtension(id={self.id}, rental_id={self.rental_id}, "
            f"days={self.extension_days}, amount={self.extension_amount})>"
        )
