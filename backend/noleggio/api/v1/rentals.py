"""
Router FastAPI per i Noleggi
Progetto: Fleet Rental Manager (Gestionale Noleggio)

Adattatore HTTP sottile sopra RentalService, LedgerService ed
ExtensionService. Gli errori di dominio sono tradotti in risposte HTTP
dall'handler registrato in main.py.
"""

import datetime
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from noleggio.core.database import get_db
from noleggio.core.deps import (
    ActorContext,
    get_ledger_service,
    get_rental_service,
    require_capability,
)
from noleggio.schemas.rental import (
    AvailabilityRead,
    CalendarEvent,
    ExtensionCheck,
    ExtensionRead,
    ExtensionStats,
    LedgerSummary,
    PaymentCreate,
    PaymentRead,
    PaymentStats,
    PaymentStatus,
    PaymentTotals,
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
from noleggio.services.ledger_service import LedgerService
from noleggio.services.rental_service import RentalService

# Logger per questo modulo
logger = logging.getLogger(__name__)

# Router con prefix e tag
router = APIRouter(
    prefix="/rentals",
    tags=["Noleggi"],
)


# -------------------------------------------------------------------
# Endpoints di consultazione
# -------------------------------------------------------------------

@router.get(
    "/",
    name="noleggi_lista",
    summary="Lista noleggi",
    description="Recupera la lista paginata dei noleggi con eventuali filtri.",
    response_model=RentalList,
)
async def list_rentals(
    page: int = Query(1, ge=1, description="Numero pagina"),
    per_page: int = Query(20, ge=1, le=100, description="Elementi per pagina"),
    status_filter: Optional[RentalStatus] = Query(None, alias="status", description="Filtro per stato"),
    payment_status: Optional[PaymentStatus] = Query(None, description="Filtro per stato pagamento"),
    branch_id: Optional[uuid.UUID] = Query(None, description="Filtro per filiale"),
    customer_id: Optional[uuid.UUID] = Query(None, description="Filtro per cliente"),
    car_id: Optional[uuid.UUID] = Query(None, description="Filtro per auto"),
    date_from: Optional[datetime.date] = Query(None, description="Inizio noleggio dal giorno"),
    date_to: Optional[datetime.date] = Query(None, description="Inizio noleggio fino al giorno"),
    search: Optional[str] = Query(None, description="Ricerca su numero contratto e nome autista"),
    db: AsyncSession = Depends(get_db),
    service: RentalService = Depends(get_rental_service),
) -> RentalList:
    filters = RentalFilters(
        status=status_filter,
        payment_status=payment_status,
        branch_id=branch_id,
        customer_id=customer_id,
        car_id=car_id,
        date_from=date_from,
        date_to=date_to,
        search=search,
    )
    rentals, total = await service.get_all(db, filters=filters, page=page, per_page=per_page)
    return RentalList(
        items=[RentalRead.model_validate(r) for r in rentals],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get(
    "/overdue",
    name="noleggi_scaduti",
    summary="Noleggi con riconsegna scaduta",
    response_model=list[RentalRead],
)
async def list_overdue_rentals(
    db: AsyncSession = Depends(get_db),
    service: RentalService = Depends(get_rental_service),
) -> list[RentalRead]:
    rentals = await service.list_overdue(db)
    return [RentalRead.model_validate(r) for r in rentals]


@router.get(
    "/calendar",
    name="noleggi_calendario",
    summary="Calendario noleggi",
    description="Noleggi non annullati che intersecano la finestra indicata, con colore per stato.",
    response_model=list[CalendarEvent],
)
async def rentals_calendar(
    start: datetime.datetime = Query(..., description="Inizio finestra"),
    end: datetime.datetime = Query(..., description="Fine finestra"),
    db: AsyncSession = Depends(get_db),
    service: RentalService = Depends(get_rental_service),
) -> list[CalendarEvent]:
    return await service.calendar(db, start, end)


@router.get(
    "/stats",
    name="noleggi_statistiche",
    summary="Statistiche noleggi",
    response_model=RentalStats,
)
async def rentals_stats(
    date_from: Optional[datetime.date] = Query(None, description="Creati dal giorno"),
    date_to: Optional[datetime.date] = Query(None, description="Creati fino al giorno"),
    branch_id: Optional[uuid.UUID] = Query(None, description="Filtro per filiale"),
    db: AsyncSession = Depends(get_db),
    service: RentalService = Depends(get_rental_service),
) -> RentalStats:
    return await service.stats(db, date_from=date_from, date_to=date_to, branch_id=branch_id)


@router.get(
    "/payments/stats",
    name="noleggi_statistiche_pagamenti",
    summary="Statistiche pagamenti",
    response_model=PaymentStats,
)
async def payments_stats(
    date_from: Optional[datetime.date] = Query(None, description="Pagati dal giorno"),
    date_to: Optional[datetime.date] = Query(None, description="Pagati fino al giorno"),
    db: AsyncSession = Depends(get_db),
    ledger: LedgerService = Depends(get_ledger_service),
) -> PaymentStats:
    return await ledger.payment_stats(db, date_from=date_from, date_to=date_to)


@router.get(
    "/extensions/stats",
    name="noleggi_statistiche_estensioni",
    summary="Statistiche estensioni",
    response_model=ExtensionStats,
)
async def extensions_stats(
    date_from: Optional[datetime.date] = Query(None, description="Create dal giorno"),
    date_to: Optional[datetime.date] = Query(None, description="Create fino al giorno"),
    db: AsyncSession = Depends(get_db),
    service: RentalService = Depends(get_rental_service),
) -> ExtensionStats:
    return await service.extensions.extension_stats(db, date_from=date_from, date_to=date_to)


@router.get(
    "/availability",
    name="noleggi_disponibilita",
    summary="Verifica disponibilità auto",
    description="Risposta indicativa: la garanzia è data solo dalla creazione sotto lock.",
    response_model=AvailabilityRead,
)
async def check_availability(
    car_id: uuid.UUID = Query(..., description="UUID dell'auto"),
    start_date: datetime.datetime = Query(..., description="Inizio intervallo"),
    end_date: datetime.datetime = Query(..., description="Fine intervallo"),
    exclude_rental_id: Optional[uuid.UUID] = Query(None, description="Noleggio da ignorare"),
    db: AsyncSession = Depends(get_db),
    service: RentalService = Depends(get_rental_service),
) -> AvailabilityRead:
    return await service.check_availability(db, car_id, start_date, end_date, exclude_rental_id)


@router.get(
    "/{rental_id}",
    name="noleggio_dettaglio",
    summary="Dettaglio noleggio",
    response_model=RentalRead,
)
async def get_rental(
    rental_id: uuid.UUID = Path(..., description="UUID del noleggio"),
    db: AsyncSession = Depends(get_db),
    service: RentalService = Depends(get_rental_service),
) -> RentalRead:
    rental = await service.get_by_id(db, rental_id)
    return RentalRead.model_validate(rental)


# -------------------------------------------------------------------
# Endpoints di creazione e modifica
# -------------------------------------------------------------------

@router.post(
    "/",
    name="noleggio_crea",
    summary="Crea noleggio",
    description="Crea un noleggio in stato pending, con eventuali pagamenti iniziali.",
    response_model=RentalRead,
    status_code=status.HTTP_201_CREATED,
)
async def create_rental(
    data: RentalCreate,
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(require_capability("create")),
    service: RentalService = Depends(get_rental_service),
) -> RentalRead:
    rental = await service.create(db, data, actor_id=actor.actor_id)
    return RentalRead.model_validate(rental)


@router.patch(
    "/{rental_id}",
    name="noleggio_modifica",
    summary="Modifica noleggio",
    description="Modifica un noleggio in stato pending o confirmed.",
    response_model=RentalRead,
)
async def update_rental(
    data: RentalUpdate,
    rental_id: uuid.UUID = Path(..., description="UUID del noleggio"),
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(require_capability("edit")),
    service: RentalService = Depends(get_rental_service),
) -> RentalRead:
    rental = await service.update(db, rental_id, data, actor_id=actor.actor_id)
    return RentalRead.model_validate(rental)


@router.delete(
    "/{rental_id}",
    name="noleggio_elimina",
    summary="Elimina noleggio",
    description="Elimina definitivamente il noleggio con pagamenti ed estensioni (non se active).",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_rental(
    rental_id: uuid.UUID = Path(..., description="UUID del noleggio"),
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(require_capability("delete")),
    service: RentalService = Depends(get_rental_service),
) -> Response:
    await service.delete(db, rental_id, actor_id=actor.actor_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# -------------------------------------------------------------------
# Endpoints di ciclo di vita
# -------------------------------------------------------------------

@router.post(
    "/{rental_id}/confirm",
    name="noleggio_conferma",
    summary="Conferma noleggio",
    response_model=RentalRead,
)
async def confirm_rental(
    rental_id: uuid.UUID = Path(..., description="UUID del noleggio"),
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(require_capability("manage")),
    service: RentalService = Depends(get_rental_service),
) -> RentalRead:
    rental = await service.confirm(db, rental_id, actor_id=actor.actor_id)
    return RentalRead.model_validate(rental)


@router.post(
    "/{rental_id}/activate",
    name="noleggio_attiva",
    summary="Consegna auto",
    response_model=RentalRead,
)
async def activate_rental(
    data: RentalActivate,
    rental_id: uuid.UUID = Path(..., description="UUID del noleggio"),
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(require_capability("manage")),
    service: RentalService = Depends(get_rental_service),
) -> RentalRead:
    rental = await service.activate(db, rental_id, data, actor_id=actor.actor_id)
    return RentalRead.model_validate(rental)


@router.get(
    "/{rental_id}/extension-check",
    name="noleggio_verifica_estensione",
    summary="Verifica estensione",
    response_model=ExtensionCheck,
)
async def check_extension(
    rental_id: uuid.UUID = Path(..., description="UUID del noleggio"),
    new_end_date: datetime.datetime = Query(..., description="Nuova data di fine"),
    db: AsyncSession = Depends(get_db),
    service: RentalService = Depends(get_rental_service),
) -> ExtensionCheck:
    return await service.extensions.can_extend(db, rental_id, new_end_date)


@router.post(
    "/{rental_id}/extend",
    name="noleggio_estendi",
    summary="Estendi noleggio",
    response_model=ExtensionRead,
    status_code=status.HTTP_201_CREATED,
)
async def extend_rental(
    data: RentalExtend,
    rental_id: uuid.UUID = Path(..., description="UUID del noleggio"),
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(require_capability("manage")),
    service: RentalService = Depends(get_rental_service),
) -> ExtensionRead:
    extension = await service.extend(db, rental_id, data.new_end_date, actor_id=actor.actor_id)
    return ExtensionRead.model_validate(extension)


@router.post(
    "/{rental_id}/complete",
    name="noleggio_completa",
    summary="Riconsegna auto",
    response_model=RentalRead,
)
async def complete_rental(
    data: RentalComplete,
    rental_id: uuid.UUID = Path(..., description="UUID del noleggio"),
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(require_capability("manage")),
    service: RentalService = Depends(get_rental_service),
) -> RentalRead:
    rental = await service.complete(db, rental_id, data, actor_id=actor.actor_id)
    return RentalRead.model_validate(rental)


@router.post(
    "/{rental_id}/cancel",
    name="noleggio_annulla",
    summary="Annulla noleggio",
    response_model=RentalRead,
)
async def cancel_rental(
    data: RentalCancel,
    rental_id: uuid.UUID = Path(..., description="UUID del noleggio"),
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(require_capability("manage")),
    service: RentalService = Depends(get_rental_service),
) -> RentalRead:
    rental = await service.cancel(db, rental_id, data, actor_id=actor.actor_id)
    return RentalRead.model_validate(rental)


# -------------------------------------------------------------------
# Endpoints per Pagamenti ed Estensioni
# -------------------------------------------------------------------

@router.get(
    "/{rental_id}/payments",
    name="noleggio_pagamenti",
    summary="Pagamenti del noleggio",
    response_model=list[PaymentRead],
)
async def list_payments(
    rental_id: uuid.UUID = Path(..., description="UUID del noleggio"),
    db: AsyncSession = Depends(get_db),
    ledger: LedgerService = Depends(get_ledger_service),
) -> list[PaymentRead]:
    payments = await ledger.list_payments(db, rental_id)
    return [PaymentRead.model_validate(p) for p in payments]


@router.get(
    "/{rental_id}/payments/totals",
    name="noleggio_pagamenti_totali",
    summary="Totali incassati per tipo",
    response_model=PaymentTotals,
)
async def payment_totals(
    rental_id: uuid.UUID = Path(..., description="UUID del noleggio"),
    db: AsyncSession = Depends(get_db),
    ledger: LedgerService = Depends(get_ledger_service),
) -> PaymentTotals:
    return await ledger.totals_by_type(db, rental_id)


@router.post(
    "/{rental_id}/payments",
    name="noleggio_registra_pagamento",
    summary="Registra pagamento",
    response_model=PaymentRead,
    status_code=status.HTTP_201_CREATED,
)
async def post_payment(
    data: PaymentCreate,
    rental_id: uuid.UUID = Path(..., description="UUID del noleggio"),
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(require_capability("manage_payments")),
    ledger: LedgerService = Depends(get_ledger_service),
) -> PaymentRead:
    payment = await ledger.post(db, rental_id, data, actor_id=actor.actor_id)
    return PaymentRead.model_validate(payment)


@router.delete(
    "/{rental_id}/payments/{payment_id}",
    name="noleggio_elimina_pagamento",
    summary="Elimina pagamento",
    response_model=LedgerSummary,
)
async def delete_payment(
    rental_id: uuid.UUID = Path(..., description="UUID del noleggio"),
    payment_id: uuid.UUID = Path(..., description="UUID del pagamento"),
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(require_capability("manage_payments")),
    ledger: LedgerService = Depends(get_ledger_service),
) -> LedgerSummary:
    return await ledger.delete(db, payment_id, rental_id=rental_id, actor_id=actor.actor_id)


@router.get(
    "/{rental_id}/extensions",
    name="noleggio_estensioni",
    summary="Estensioni del noleggio",
    response_model=list[ExtensionRead],
)
async def list_extensions(
    rental_id: uuid.UUID = Path(..., description="UUID del noleggio"),
    db: AsyncSession = Depends(get_db),
    service: RentalService = Depends(get_rental_service),
) -> list[ExtensionRead]:
    extensions = await service.extensions.list_extensions(db, rental_id)
    return [ExtensionRead.model_validate(e) for e in extensions]


@router.post(
    "/{rental_id}/extensions/{extension_id}/mark-paid",
    name="noleggio_estensione_pagata",
    summary="Segna estensione come pagata",
    response_model=ExtensionRead,
)
async def mark_extension_paid(
    rental_id: uuid.UUID = Path(..., description="UUID del noleggio"),
    extension_id: uuid.UUID = Path(..., description="UUID dell'estensione"),
    db: AsyncSession = Depends(get_db),
    actor: ActorContext = Depends(require_capability("manage_payments")),
    service: RentalService = Depends(get_rental_service),
) -> ExtensionRead:
    extension = await service.extensions.mark_paid(
        db, extension_id, rental_id=rental_id, actor_id=actor.actor_id
    )
    return ExtensionRead.model_validate(extension)
