"""
Schemas Pydantic per i Noleggi
Progetto: Fleet Rental Manager (Gestionale Noleggio)

Contiene:
- Enums: RentalStatus, RentalAction, PaymentStatus, PaymentType,
  PaymentMethod, FuelLevel, ExtensionPaymentStatus, CarStatus
- Matrice delle transizioni di stato (RENTAL_TRANSITIONS)
- Schemas per Rental (create, update, azioni di ciclo di vita, lettura, lista)
- Schemas per Payment e Extension
- Schemas di reportistica (calendario, statistiche, disponibilità)

I vincoli di business (durata, tariffe positive, dati autista, importi
positivi) sono verificati dai service, che restituiscono una mappa
campo → motivo. Qui si validano solo formato e tipi.
"""

import datetime
import uuid
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
)

from noleggio.core.calendar import ensure_aware
from noleggio.core.exceptions import InvalidTransitionError


# -------------------------------------------------------------------
# Enum
# -------------------------------------------------------------------

class RentalStatus(str, Enum):
    """Stati del ciclo di vita di un noleggio."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    EXTENDED = "extended"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RentalAction(str, Enum):
    """Azioni che muovono un noleggio nella macchina a stati."""
    CONFIRM = "confirm"
    ACTIVATE = "activate"
    EXTEND = "extend"
    COMPLETE = "complete"
    CANCEL = "cancel"


class PaymentStatus(str, Enum):
    """Stato di pagamento derivato dal registro."""
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"


class PaymentType(str, Enum):
    """Tipi di movimento del registro pagamenti."""
    RENTAL = "rental"
    DEPOSIT = "deposit"
    FINE = "fine"
    EXTRA = "extra"


class PaymentMethod(str, Enum):
    """Metodi di pagamento supportati (assente = contanti)."""
    CASH = "cash"
    CARD = "card"
    POS = "pos"
    BANK_TRANSFER = "bank_transfer"
    CHECK = "check"
    OTHER = "other"


class FuelLevel(str, Enum):
    """Livello carburante rilevato alla consegna e alla riconsegna."""
    EMPTY = "empty"
    QUARTER = "quarter"
    HALF = "half"
    THREE_QUARTERS = "three_quarters"
    FULL = "full"


class ExtensionPaymentStatus(str, Enum):
    """Stato di pagamento di una singola estensione."""
    PENDING = "pending"
    PAID = "paid"


class CarStatus(str, Enum):
    """Occupazione dell'auto da parte di un noleggio."""
    AVAILABLE = "available"
    RENTED = "rented"


# -------------------------------------------------------------------
# Matrice delle transizioni di stato
# -------------------------------------------------------------------

# Unica source of truth per la macchina a stati, usata da RentalService.
# Le coppie (stato, azione) assenti sono transizioni non consentite.
RENTAL_TRANSITIONS: dict[tuple[RentalStatus, RentalAction], RentalStatus] = {
    (RentalStatus.PENDING, RentalAction.CONFIRM): RentalStatus.CONFIRMED,
    (RentalStatus.PENDING, RentalAction.CANCEL): RentalStatus.CANCELLED,
    (RentalStatus.CONFIRMED, RentalAction.ACTIVATE): RentalStatus.ACTIVE,
    (RentalStatus.CONFIRMED, RentalAction.CANCEL): RentalStatus.CANCELLED,
    (RentalStatus.ACTIVE, RentalAction.EXTEND): RentalStatus.EXTENDED,
    (RentalStatus.ACTIVE, RentalAction.COMPLETE): RentalStatus.COMPLETED,
    (RentalStatus.ACTIVE, RentalAction.CANCEL): RentalStatus.CANCELLED,
    (RentalStatus.EXTENDED, RentalAction.EXTEND): RentalStatus.EXTENDED,
    (RentalStatus.EXTENDED, RentalAction.COMPLETE): RentalStatus.COMPLETED,
    (RentalStatus.EXTENDED, RentalAction.CANCEL): RentalStatus.CANCELLED,
}

# Stati che occupano l'auto per il loro intervallo
BLOCKING_STATUSES: frozenset[RentalStatus] = frozenset({
    RentalStatus.PENDING,
    RentalStatus.CONFIRMED,
    RentalStatus.ACTIVE,
    RentalStatus.EXTENDED,
})

TERMINAL_STATUSES: frozenset[RentalStatus] = frozenset({
    RentalStatus.COMPLETED,
    RentalStatus.CANCELLED,
})

# Stati in cui i dati del contratto sono ancora modificabili
EDITABLE_STATUSES: frozenset[RentalStatus] = frozenset({
    RentalStatus.PENDING,
    RentalStatus.CONFIRMED,
})

# Stati con l'auto presso il cliente (riconsegna attesa)
IN_USE_STATUSES: frozenset[RentalStatus] = frozenset({
    RentalStatus.ACTIVE,
    RentalStatus.EXTENDED,
})

# Colori del calendario per stato
STATUS_COLORS: dict[RentalStatus, str] = {
    RentalStatus.PENDING: "#ffc107",
    RentalStatus.CONFIRMED: "#17a2b8",
    RentalStatus.ACTIVE: "#28a745",
    RentalStatus.EXTENDED: "#6f42c1",
    RentalStatus.COMPLETED: "#6c757d",
    RentalStatus.CANCELLED: "#dc3545",
}
DEFAULT_STATUS_COLOR = "#007bff"


def resolve_transition(current: RentalStatus, action: RentalAction) -> RentalStatus:
    """
    Stato di arrivo per l'azione richiesta.

    Raises:
        InvalidTransitionError: Se la coppia (stato, azione) non è nella matrice
    """
    target = RENTAL_TRANSITIONS.get((current, action))
    if target is None:
        raise InvalidTransitionError(current.value, action.value)
    return target


def _aware(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    if value is None:
        return None
    return ensure_aware(value)


# -------------------------------------------------------------------
# Schemas per Rental (input)
# -------------------------------------------------------------------

class RentalCreate(BaseModel):
    """
    Schema per la creazione di un noleggio.

    Può includere un pagamento iniziale e una caparra, registrati
    atomicamente con la creazione.
    """

    customer_id: Optional[uuid.UUID] = Field(None, description="UUID del cliente")
    car_id: Optional[uuid.UUID] = Field(None, description="UUID dell'auto")
    branch_id: Optional[uuid.UUID] = Field(None, description="UUID della filiale")
    start_date: datetime.datetime = Field(..., description="Inizio del noleggio")
    end_date: datetime.datetime = Field(..., description="Fine del noleggio")
    daily_rate: Decimal = Field(..., description="Tariffa giornaliera dell'auto")
    with_driver: bool = Field(default=False, description="Noleggio con autista")
    driver_name: Optional[str] = Field(None, max_length=255, description="Nome autista")
    driver_phone: Optional[str] = Field(None, max_length=50, description="Telefono autista")
    driver_daily_rate: Optional[Decimal] = Field(None, description="Tariffa giornaliera autista")
    notes: Optional[str] = Field(None, description="Note interne")
    initial_payment: Optional[Decimal] = Field(
        None,
        description="Pagamento iniziale di tipo rental (opzionale)",
    )
    deposit_payment: Optional[Decimal] = Field(
        None,
        description="Caparra incassata alla creazione (opzionale)",
    )
    payment_method: Optional[PaymentMethod] = Field(
        None,
        description="Metodo dei pagamenti iniziali (assente = contanti)",
    )

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_timezone(cls, v: datetime.datetime) -> datetime.datetime:
        """I timestamp senza timezone sono interpretati come UTC."""
        return ensure_aware(v)


class RentalUpdate(BaseModel):
    """
    Schema per l'aggiornamento di un noleggio in stato pending o confirmed.

    Tutti i campi sono opzionali per permettere aggiornamenti parziali.
    """

    car_id: Optional[uuid.UUID] = None
    branch_id: Optional[uuid.UUID] = None
    start_date: Optional[datetime.datetime] = None
    end_date: Optional[datetime.datetime] = None
    daily_rate: Optional[Decimal] = None
    with_driver: Optional[bool] = None
    driver_name: Optional[str] = Field(None, max_length=255)
    driver_phone: Optional[str] = Field(None, max_length=50)
    driver_daily_rate: Optional[Decimal] = None
    notes: Optional[str] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_timezone(cls, v: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
        return _aware(v)


class RentalActivate(BaseModel):
    """Dati rilevati alla consegna dell'auto."""

    odometer_start: Optional[int] = Field(None, ge=0, description="Chilometraggio alla consegna")
    fuel_level_start: Optional[FuelLevel] = Field(None, description="Livello carburante alla consegna")
    car_condition_start: Optional[str] = Field(None, description="Note sullo stato dell'auto")


class RentalComplete(BaseModel):
    """Dati rilevati alla riconsegna dell'auto."""

    odometer_end: Optional[int] = Field(None, ge=0, description="Chilometraggio alla riconsegna")
    fuel_level_end: Optional[FuelLevel] = Field(None, description="Livello carburante alla riconsegna")
    car_condition_end: Optional[str] = Field(None, description="Note sullo stato dell'auto")


class RentalCancel(BaseModel):
    """Motivo dell'annullamento."""

    reason: Optional[str] = Field(None, max_length=2000, description="Motivo dell'annullamento")


class RentalExtend(BaseModel):
    """Nuova data di fine richiesta."""

    new_end_date: datetime.datetime = Field(..., description="Nuova data di fine")

    @field_validator("new_end_date")
    @classmethod
    def normalize_timezone(cls, v: datetime.datetime) -> datetime.datetime:
        return ensure_aware(v)


class RentalFilters(BaseModel):
    """Filtri per la lista dei noleggi."""

    status: Optional[RentalStatus] = None
    payment_status: Optional[PaymentStatus] = None
    branch_id: Optional[uuid.UUID] = None
    customer_id: Optional[uuid.UUID] = None
    car_id: Optional[uuid.UUID] = None
    date_from: Optional[datetime.date] = Field(None, description="Inizio noleggio dal giorno")
    date_to: Optional[datetime.date] = Field(None, description="Inizio noleggio fino al giorno")
    search: Optional[str] = Field(None, description="Ricerca su numero contratto e nome autista")


# -------------------------------------------------------------------
# Schemas per Rental (output)
# -------------------------------------------------------------------

class RentalRead(BaseModel):
    """Schema per la lettura di un noleggio."""

    id: uuid.UUID
    rental_number: str
    customer_id: uuid.UUID
    car_id: uuid.UUID
    branch_id: Optional[uuid.UUID] = None
    created_by: Optional[uuid.UUID] = None
    start_date: datetime.datetime
    end_date: datetime.datetime
    rental_duration_days: int
    daily_rate: Decimal
    with_driver: bool
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    driver_daily_rate: Optional[Decimal] = None
    total_amount: Decimal
    deposit_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    payment_status: PaymentStatus
    status: RentalStatus
    confirmed_by: Optional[uuid.UUID] = None
    confirmed_at: Optional[datetime.datetime] = None
    activated_by: Optional[uuid.UUID] = None
    activated_at: Optional[datetime.datetime] = None
    completed_by: Optional[uuid.UUID] = None
    completed_at: Optional[datetime.datetime] = None
    cancelled_by: Optional[uuid.UUID] = None
    cancelled_at: Optional[datetime.datetime] = None
    cancellation_reason: Optional[str] = None
    odometer_start: Optional[int] = None
    odometer_end: Optional[int] = None
    fuel_level_start: Optional[FuelLevel] = None
    fuel_level_end: Optional[FuelLevel] = None
    car_condition_start: Optional[str] = None
    car_condition_end: Optional[str] = None
    actual_return_date: Optional[datetime.datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def is_terminal(self) -> bool:
        """True se il noleggio è completato o annullato."""
        return self.status in TERMINAL_STATUSES

    @computed_field
    @property
    def driven_kilometers(self) -> Optional[int]:
        """Chilometri percorsi, disponibili dopo la riconsegna."""
        if self.odometer_start is None or self.odometer_end is None:
            return None
        return self.odometer_end - self.odometer_start


class RentalList(BaseModel):
    """
    Schema per risposte paginate.

    Include la lista dei noleggi con metadati di paginazione.
    """

    items: list[RentalRead] = Field(default_factory=list, description="Lista dei noleggi")
    total: int = Field(..., ge=0, description="Numero totale di noleggi")
    page: int = Field(..., ge=1, description="Numero pagina corrente")
    per_page: int = Field(..., ge=1, description="Numero elementi per pagina")

    @computed_field
    def total_pages(self) -> int:
        """Numero totale di pagine: ceil(total / per_page)."""
        if self.per_page > 0:
            return (self.total + self.per_page - 1) // self.per_page
        return 0


# -------------------------------------------------------------------
# Schemas per Payment
# -------------------------------------------------------------------

class PaymentCreate(BaseModel):
    """Schema per la registrazione di un pagamento."""

    amount: Decimal = Field(..., description="Importo incassato (> 0)")
    payment_type: PaymentType = Field(default=PaymentType.RENTAL, description="Tipo movimento")
    payment_method: Optional[PaymentMethod] = Field(None, description="Metodo (assente = contanti)")
    payment_date: Optional[datetime.datetime] = Field(
        None,
        description="Data/ora dell'incasso (default: adesso)",
    )
    reference_number: Optional[str] = Field(None, max_length=100)
    receipt_path: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = None

    @field_validator("payment_date")
    @classmethod
    def normalize_timezone(cls, v: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
        return _aware(v)


class PaymentRead(BaseModel):
    """Schema per la lettura di un movimento del registro."""

    id: uuid.UUID
    rental_id: uuid.UUID
    amount: Decimal
    payment_type: PaymentType
    payment_method: Optional[str] = None
    payment_date: datetime.datetime
    reference_number: Optional[str] = None
    receipt_path: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime.datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LedgerSummary(BaseModel):
    """Campi derivati del registro pagamenti di un noleggio."""

    total_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    payment_status: PaymentStatus


class PaymentTotals(BaseModel):
    """Totali incassati per tipo di movimento."""

    rental_id: uuid.UUID
    totals: dict[str, Decimal] = Field(default_factory=dict)

    @computed_field
    @property
    def grand_total(self) -> Decimal:
        return sum(self.totals.values(), Decimal("0"))


# -------------------------------------------------------------------
# Schemas per Extension
# -------------------------------------------------------------------

class ExtensionCheck(BaseModel):
    """Esito della verifica di estendibilità."""

    allowed: bool
    reason_code: Optional[str] = None
    extension_days: Optional[int] = None
    extension_amount: Optional[Decimal] = None


class ExtensionRead(BaseModel):
    """Schema per la lettura di un'estensione."""

    id: uuid.UUID
    rental_id: uuid.UUID
    original_end_date: datetime.datetime
    new_end_date: datetime.datetime
    extension_days: int
    extension_amount: Decimal
    payment_status: ExtensionPaymentStatus
    approved_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime.datetime] = None

    model_config = ConfigDict(from_attributes=True)


# -------------------------------------------------------------------
# Schemas di reportistica
# -------------------------------------------------------------------

class AvailabilityRead(BaseModel):
    """Esito (indicativo) della verifica di disponibilità di un'auto."""

    car_id: uuid.UUID
    start_date: datetime.datetime
    end_date: datetime.datetime
    available: bool


class CalendarEvent(BaseModel):
    """Evento del calendario noleggi."""

    id: uuid.UUID
    title: str
    start: datetime.datetime
    end: datetime.datetime
    status: RentalStatus
    color: str
    car_id: uuid.UUID
    customer_id: uuid.UUID


class RentalStats(BaseModel):
    """Statistiche aggregate sui noleggi."""

    total_rentals: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    total_revenue: Decimal = Decimal("0")
    total_paid: Decimal = Decimal("0")
    total_remaining: Decimal = Decimal("0")


class PaymentStats(BaseModel):
    """Movimenti registrati nel periodo, per tipo."""

    total_payments: int = 0
    total_amount: Decimal = Decimal("0")
    by_type: dict[str, Decimal] = Field(default_factory=dict)


class ExtensionStats(BaseModel):
    """Estensioni create nel periodo."""

    total_extensions: int = 0
    total_days: int = 0
    total_amount: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")
    pending_amount: Decimal = Decimal("0")
