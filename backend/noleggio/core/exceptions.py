"""
Eccezioni Custom per l'applicazione.
Progetto: Fleet Rental Manager (Gestionale Noleggio)

Definisce eccezioni specifiche del dominio per una gestione
centralizzata degli errori.

Mappatura verso HTTP (gestita in main.py):
- BusinessValidationError → 422 (con mappa campo → motivo)
- InvalidTransitionError  → 409 (stato corrente + azione tentata)
- UnavailableError        → 409 (reason_code)
- ConflictError           → 409 (ritentabile)
- NotFoundError           → 404
- RepositoryError         → 500 (nessun dettaglio interno esposto)

NOTA: BusinessValidationError è volutamente distinta da pydantic.ValidationError.
- pydantic.ValidationError: errori di formato/tipo nei dati di input (gestiti da FastAPI → 422)
- BusinessValidationError: violazioni delle regole di business logic (gestiti dal nostro handler → 422)
"""

from typing import Any, Dict, Optional

__all__ = [
    "AppException",
    "NotFoundError",
    "BusinessValidationError",
    "ValidationError",       # alias di BusinessValidationError
    "InvalidTransitionError",
    "UnavailableError",
    "ConflictError",
    "RepositoryError",
    "AuthorizationError",
]


class AppException(Exception):
    """
    Base exception per l'applicazione.

    Tutte le eccezioni custom ereditano da questa classe base.

    Attributes:
        status_code: HTTP status code da restituire al client
        error_code: Identificativo univoco dell'errore per il frontend
        detail: Messaggio di errore leggibile per l'utente
        extra: Dizionario con dati aggiuntivi per il frontend
    """

    status_code: int = 500
    error_code: str = "INTERNAL_SERVER_ERROR"

    def __init__(
        self,
        detail: str,
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Inizializza l'eccezione.

        Args:
            detail: Messaggio di errore dettagliato
            error_code: Identificativo univoco (default: quello di classe)
            extra: Dati aggiuntivi da passare al frontend (default: None)
        """
        self.detail = detail
        self.error_code = error_code if error_code is not None else self.error_code
        self.extra = extra
        self.status_code = self.__class__.status_code
        super().__init__(detail)

    def to_dict(self) -> Dict[str, Any]:
        """Payload JSON restituito al client."""
        payload: Dict[str, Any] = {"detail": self.detail, "error_code": self.error_code}
        if self.extra:
            payload.update(self.extra)
        return payload


class NotFoundError(AppException):
    """
    Eccezione sollevata quando una risorsa non viene trovata.

    Utilizzata per noleggi, pagamenti, estensioni o auto inesistenti,
    e per pagamenti che non appartengono al noleggio indicato.
    """

    status_code: int = 404
    error_code: str = "RESOURCE_NOT_FOUND"

    def __init__(
        self,
        detail: str = "Risorsa non trovata",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)


class BusinessValidationError(ValueError, AppException):
    """
    Eccezione sollevata per violazioni delle regole di business logic.

    Eredita da ValueError per essere catturata dai validatori Pydantic.
    Trasporta una mappa campo → motivo in `errors`.

    Esempi di utilizzo:
        - "La durata minima del noleggio è di 1 giorno"
        - "Il chilometraggio finale non può essere inferiore a quello iniziale"
        - "L'importo del pagamento deve essere positivo"
    """

    status_code: int = 422
    error_code: str = "BUSINESS_VALIDATION_ERROR"

    def __init__(
        self,
        detail: str = "Validazione dati fallita",
        errors: Optional[Dict[str, str]] = None,
        error_code: Optional[str] = None,
    ) -> None:
        """
        Inizializza l'eccezione BusinessValidationError.

        Args:
            detail: Messaggio di errore (default: "Validazione dati fallita")
            errors: Mappa campo → motivo del rifiuto
            error_code: Identificativo univoco (default: "BUSINESS_VALIDATION_ERROR")
        """
        self.errors = dict(errors or {})
        # Chiama AppException.__init__ direttamente per evitare ValueError
        AppException.__init__(self, detail, error_code, {"errors": self.errors})


# Alias per compatibilità
ValidationError = BusinessValidationError


class InvalidTransitionError(AppException):
    """
    Eccezione sollevata quando la macchina a stati rifiuta un'azione.

    Lo stato del noleggio resta invariato.
    """

    status_code: int = 409
    error_code: str = "INVALID_TRANSITION"

    def __init__(self, current_status: str, action: str) -> None:
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Azione '{action}' non consentita su un noleggio in stato '{current_status}'",
            extra={"current_status": current_status, "action": action},
        )


class UnavailableError(AppException):
    """
    Eccezione sollevata quando l'auto non è disponibile per l'intervallo richiesto.

    reason_code:
        - car_not_available: intervallo già occupato da un altro noleggio
        - new_end_before_current: la nuova data di fine non è successiva a quella attuale
    """

    status_code: int = 409
    error_code: str = "UNAVAILABLE"

    def __init__(self, reason_code: str, detail: Optional[str] = None) -> None:
        self.reason_code = reason_code
        super().__init__(
            detail or "Auto non disponibile per il periodo richiesto",
            extra={"reason_code": reason_code},
        )


class ConflictError(AppException):
    """
    Eccezione sollevata per conflitti di scrittura concorrente.

    Il chiamante può ritentare l'operazione.
    """

    status_code: int = 409
    error_code: str = "CONFLICT_STATE"

    def __init__(
        self,
        detail: str = "Conflitto di stato",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = {"retryable": True}
        if extra:
            merged.update(extra)
        super().__init__(detail, error_code, merged)


class RepositoryError(AppException):
    """
    Eccezione sollevata per errori di persistenza o di trasporto verso il database.

    Il messaggio originale viene loggato ma mai esposto al client.
    """

    status_code: int = 500
    error_code: str = "REPOSITORY_ERROR"

    def __init__(
        self,
        detail: str = "Errore del database",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": "Errore interno del server", "error_code": self.error_code}


class AuthorizationError(AppException):
    """
    Eccezione sollevata per accesso non autorizzato.

    Utilizzata quando il contesto del chiamante non include la
    capability richiesta dall'operazione (create, edit, manage, delete).
    """

    status_code: int = 403
    error_code: str = "FORBIDDEN"

    def __init__(
        self,
        detail: str = "Accesso non autorizzato",
        error_code: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(detail, error_code, extra)
