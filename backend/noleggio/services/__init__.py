"""
Service Layer
Progetto: Fleet Rental Manager (Gestionale Noleggio)
"""

from noleggio.services.availability_service import AvailabilityService
from noleggio.services.events import EventBus, RentalEvent
from noleggio.services.extension_service import ExtensionService
from noleggio.services.ledger_service import LedgerService
from noleggio.services.rental_service import RentalService

__all__ = [
    "AvailabilityService",
    "EventBus",
    "ExtensionService",
    "LedgerService",
    "RentalEvent",
    "RentalService",
]
