"""
Modello SQLAlchemy per l'entità Car
Progetto: Fleet Rental Manager (Gestionale Noleggio)

Rappresenta le auto della flotta. La riga dell'auto è anche il punto di
lock pessimistico per le operazioni che occupano un intervallo.
"""

import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from noleggio.models import Base
from noleggio.models.mixins import TimestampMixin, UUIDMixin


class Car(Base, UUIDMixin, TimestampMixin):
    """
    Modello per le auto della flotta.

    Attributes:
        id: UUID primary key, generato automaticamente
        plate_number: Targa (obbligatoria, univoca)
        brand: Marca
        model: Modello
        year: Anno di immatricolazione (opzionale)
        daily_rate: Tariffa giornaliera di listino (proposta in creazione)
        current_odometer: Ultimo chilometraggio registrato
        is_active: False = auto ritirata dalla flotta
        status: available | rented
        current_rental_id: Noleggio che occupa l'auto (None se libera)
    """

    __tablename__ = "cars"

    plate_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
        doc="Targa dell'auto",
    )

    brand: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        doc="Marca dell'auto",
    )

    model: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        doc="Modello dell'auto",
    )

    year: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        doc="Anno di immatricolazione",
    )

    daily_rate: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal("0"),
        doc="Tariffa giornaliera di listino",
    )

    current_odometer: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        doc="Ultimo chilometraggio registrato",
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        doc="False = auto ritirata dalla flotta",
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="available",
        server_default="available",
        doc="Occupazione: available | rented",
    )

    # Riferimento circolare con rentals.car_id: vincolo creato con ALTER
    current_rental_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey(
            "rentals.id",
            ondelete="SET NULL",
            use_alter=True,
            name="fk_cars_current_rental_id",
        ),
        nullable=True,
        doc="Noleggio che occupa l'auto",
    )

    __table_args__ = (
        CheckConstraint("daily_rate >= 0", name="ck_cars_daily_rate_positive"),
        CheckConstraint("status IN ('available', 'rented')", name="ck_cars_status"),
    )

    def __repr__(self) -> str:
        return f"<Car(id={self.id}, plate={self.plate_number}, status={self.status})>"

    @property
    def display_name(self) -> str:
        """Nome visualizzato: "Marca Modello (Targa)"."""
        return f"{self.brand} {self.model} ({self.plate_number})"
