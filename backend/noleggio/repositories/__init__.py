"""
Repository di persistenza
Progetto: Fleet Rental Manager (Gestionale Noleggio)
"""

from noleggio.repositories.rental_repository import RentalRepository

__all__ = ["RentalRepository"]
