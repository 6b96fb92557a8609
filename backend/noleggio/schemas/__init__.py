"""
Schemas Pydantic
Progetto: Fleet Rental Manager (Gestionale Noleggio)
"""

from noleggio.schemas.rental import (
    RENTAL_TRANSITIONS,
    AvailabilityRead,
    CalendarEvent,
    CarStatus,
    ExtensionCheck,
    ExtensionPaymentStatus,
    ExtensionRead,
    ExtensionStats,
    FuelLevel,
    LedgerSummary,
    PaymentCreate,
    PaymentMethod,
    PaymentRead,
    PaymentStats,
    PaymentStatus,
    PaymentTotals,
    PaymentType,
    RentalAction,
    RentalActivate,
    RentalCancel,
    RentalComplete,
    RentalCreate,
    RentalExtend,
    RentalFilters,
    RentalList,
    RentalRead,
    RentalStats,
    RentalStatus,
    RentalUpdate,
)

__all__ = [
    "RENTAL_TRANSITIONS",
    "AvailabilityRead",
    "CalendarEvent",
    "CarStatus",
    "ExtensionCheck",
    "ExtensionPaymentStatus",
    "ExtensionRead",
    "ExtensionStats",
    "FuelLevel",
    "LedgerSummary",
    "PaymentCreate",
    "PaymentMethod",
    "PaymentRead",
    "PaymentStats",
    "PaymentStatus",
    "PaymentTotals",
    "PaymentType",
    "RentalAction",
    "RentalActivate",
    "RentalCancel",
    "RentalComplete",
    "RentalCreate",
    "RentalExtend",
    "RentalFilters",
    "RentalList",
    "RentalRead",
    "RentalStats",
    "RentalStatus",
    "RentalUpdate",
]
