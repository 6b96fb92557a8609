"""
Dependency Injection per contesto chiamante e service
Progetto: Fleet Rental Manager (Gestionale Noleggio)

L'autenticazione è a carico del livello a monte (gateway / backoffice),
che inoltra l'identità dell'operatore e le sue capability negli header:

- X-Actor-Id: UUID dell'operatore
- X-Actor-Capabilities: elenco separato da virgole
  (create, edit, manage, manage_payments, delete)
"""

import uuid
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Callable, Optional

from fastapi import Depends, Header

from noleggio.core.config import get_settings
from noleggio.core.exceptions import AuthorizationError, BusinessValidationError
from noleggio.services.events import EventBus
from noleggio.services.ledger_service import LedgerService
from noleggio.services.rental_service import RentalService

CAPABILITIES = frozenset({"create", "edit", "manage", "manage_payments", "delete"})


@dataclass(frozen=True)
class ActorContext:
    """Identità e capability dell'operatore che invoca l'operazione."""

    actor_id: Optional[uuid.UUID] = None
    capabilities: frozenset[str] = field(default_factory=frozenset)

    def can(self, capability: str) -> bool:
        return capability in self.capabilities


async def get_actor(
    x_actor_id: Optional[str] = Header(None, description="UUID dell'operatore"),
    x_actor_capabilities: Optional[str] = Header(None, description="Capability separate da virgola"),
) -> ActorContext:
    """
    Dependency per ottenere il contesto del chiamante dagli header.

    Raises:
        BusinessValidationError: Se X-Actor-Id non è un UUID valido
    """
    actor_id = None
    if x_actor_id:
        try:
            actor_id = uuid.UUID(x_actor_id)
        except ValueError:
            raise BusinessValidationError(
                "Identità operatore non valida",
                errors={"X-Actor-Id": "Deve essere un UUID valido"},
            )

    capabilities = frozenset(
        c.strip().lower()
        for c in (x_actor_capabilities or "").split(",")
        if c.strip()
    )
    return ActorContext(actor_id=actor_id, capabilities=capabilities & CAPABILITIES)


def require_capability(capability: str) -> Callable:
    """
    Factory di dependency che verifica una capability del chiamante.

    Esempio:
        actor: ActorContext = Depends(require_capability("manage"))

    Raises:
        AuthorizationError: Se il chiamante non ha la capability
    """

    async def checker(actor: ActorContext = Depends(get_actor)) -> ActorContext:
        if not actor.can(capability):
            raise AuthorizationError(f"Operazione non consentita: capability '{capability}' richiesta")
        return actor

    return checker


# ------------------------------------------------------------
# Service singleton
# ------------------------------------------------------------

@lru_cache()
def get_event_bus() -> EventBus:
    """Bus eventi condiviso dall'applicazione."""
    return EventBus()


@lru_cache()
def get_rental_service() -> RentalService:
    """RentalService configurato con la policy delle impostazioni."""
    return RentalService(get_settings().rental_policy(), events=get_event_bus())


def get_ledger_service() -> LedgerService:
    return get_rental_service().ledger
