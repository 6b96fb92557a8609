"""
Eventi di dominio dei noleggi
Progetto: Fleet Rental Manager (Gestionale Noleggio)

I service pubblicano un RentalEvent dopo ogni modifica confermata
(commit riuscito). I sottoscrittori (audit, notifiche, generazione
documenti) sono registrati dal livello esterno; quello di default
scrive l'evento nel log.
"""

import datetime
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from noleggio.core.calendar import utcnow

# Logger per questo modulo
logger = logging.getLogger(__name__)

# Nomi degli eventi emessi
RENTAL_CREATED = "rental.created"
RENTAL_UPDATED = "rental.updated"
RENTAL_CONFIRMED = "rental.confirmed"
RENTAL_ACTIVATED = "rental.activated"
RENTAL_EXTENDED = "rental.extended"
RENTAL_COMPLETED = "rental.completed"
RENTAL_CANCELLED = "rental.cancelled"
RENTAL_DELETED = "rental.deleted"
PAYMENT_POSTED = "payment.posted"
PAYMENT_DELETED = "payment.deleted"
EXTENSION_PAID = "extension.paid"


@dataclass(frozen=True)
class RentalEvent:
    """Snapshot di una modifica a un noleggio."""

    name: str
    rental_id: uuid.UUID
    actor_id: Optional[uuid.UUID] = None
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime.datetime = field(default_factory=utcnow)


EventHandler = Callable[[RentalEvent], None]


def log_event(event: RentalEvent) -> None:
    """Sottoscrittore di default: registra l'evento nel log applicativo."""
    logger.info(
        "Evento %s noleggio=%s attore=%s dati=%s",
        event.name,
        event.rental_id,
        event.actor_id,
        event.payload,
    )


class EventBus:
    """
    Bus di eventi in-process.

    I gestori sono invocati in ordine di registrazione. Un gestore che
    solleva un'eccezione viene loggato e non interrompe gli altri: la
    modifica che ha generato l'evento è già stata confermata.
    """

    def __init__(self, with_default_logger: bool = True) -> None:
        self._handlers: list[EventHandler] = []
        if with_default_logger:
            self.subscribe(log_event)

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def publish(self, event: RentalEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Errore nel gestore dell'evento %s", event.name)
