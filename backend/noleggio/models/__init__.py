"""
Modelli Database SQLAlchemy
Progetto: Fleet Rental Manager (Gestionale Noleggio)

Import centralizzato di tutti i modelli per Alembic e usage generico.

Modelli:
- Car: Auto della flotta (risorsa prenotabile)
- Rental: Contratto di noleggio
- RentalExtension: Estensioni della data di fine
- RentalPayment: Movimenti del registro pagamenti
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class per tutti i modelli SQLAlchemy."""
    pass


from noleggio.models.car import Car
from noleggio.models.rental import Rental, RentalExtension
from noleggio.models.rental_payment import RentalPayment

# Esportazione di tutti i modelli per Alembic
__all__ = [
    "Base",
    "Car",
    "Rental",
    "RentalExtension",
    "RentalPayment",
]
