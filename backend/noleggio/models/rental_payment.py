"""
Modello SQLAlchemy per il registro pagamenti dei noleggi
Progetto: Fleet Rental Manager (Gestionale Noleggio)
"""

from __future__ import annotations

import datetime
import uuid
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from noleggio.models import Base
from noleggio.models.mixins import TimestampMixin, UUIDMixin


class RentalPayment(Base, UUIDMixin, TimestampMixin):
    """
    Movimento del registro pagamenti di un noleggio.

    I movimenti sono immutabili: si possono solo creare o eliminare.
    Ogni creazione/eliminazione ricalcola i campi derivati del noleggio.

    Attributes:
        id: UUID primary key, generato automaticamente
        rental_id: UUID del noleggio
        amount: Importo incassato (> 0)
        payment_type: rental | deposit | fine | extra
        payment_method: Metodo di pagamento (NULL = contanti)
        payment_date: Data/ora dell'incasso
        reference_number: Riferimento esterno (es. CRO bonifico)
        receipt_path: Riferimento alla ricevuta archiviata
        notes: Note libere
        created_by: UUID dell'operatore che ha registrato il pagamento
    """

    __tablename__ = "rental_payments"

    rental_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("rentals.id", ondelete="CASCADE"),
        nullable=False,
        doc="UUID del noleggio",
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        doc="Importo incassato",
    )

    payment_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="rental",
        doc="Tipo movimento: rental, deposit, fine, extra",
    )

    payment_method: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        doc="Metodo di pagamento (NULL = contanti)",
    )

    payment_date: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        doc="Data/ora dell'incasso",
    )

    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    receipt_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    @property
    def method_label(self) -> str:
        """Metodo di pagamento con il default contanti."""
        return self.payment_method or "cash"

    __table_args__ = (
        Index("ix_rental_payments_rental_id", "rental_id"),
        Index("ix_rental_payments_payment_date", "payment_date"),
        CheckConstraint("amount > 0", name="ck_rental_payments_amount_positive"),
        CheckConstraint(
            "payment_type IN ('rental', 'deposit', 'fine', 'extra')",
            name="ck_rental_payments_type",
        ),
    )

    def __repr__(self) -> str:
        return f"<RentalPayment(id={self.id}, rental_id={self.rental_id}, amount={self.amount})>"
