"""
Utility di calendario per i noleggi
Progetto: Fleet Rental Manager (Gestionale Noleggio)

Aritmetica sulle date usata da tutti i service:
- conteggio giorni inclusivo tra due timestamp
- test di sovrapposizione tra intervalli semiaperti [start, end)
- normalizzazione dei timestamp in UTC
- orologio iniettabile per i test
"""

import datetime
from typing import Protocol

ONE_DAY = datetime.timedelta(days=1)


class Clock(Protocol):
    """Sorgente dell'istante corrente."""

    def now(self) -> datetime.datetime:
        ...


class SystemClock:
    """Orologio di sistema in UTC."""

    def now(self) -> datetime.datetime:
        return utcnow()


def utcnow() -> datetime.datetime:
    """Istante corrente con timezone UTC."""
    return datetime.datetime.now(datetime.timezone.utc)


def ensure_aware(value: datetime.datetime) -> datetime.datetime:
    """
    Restituisce il timestamp con timezone.

    I timestamp naive sono interpretati come UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def rental_days(start: datetime.datetime, end: datetime.datetime) -> int:
    """
    Numero di giorni inclusivi tra inizio e fine: floor(end - start) + 1.

    Esempio: 2024-01-01 00:00 → 2024-01-05 00:00 = 5 giorni.

    Raises:
        ValueError: Se end precede start
    """
    start = ensure_aware(start)
    end = ensure_aware(end)
    if end < start:
        raise ValueError("La data di fine precede la data di inizio")
    return (end - start) // ONE_DAY + 1


def extension_days(
    start: datetime.datetime,
    original_end: datetime.datetime,
    new_end: datetime.datetime,
) -> int:
    """Giorni aggiunti da un'estensione: days(new_end) - days(original_end)."""
    return rental_days(start, new_end) - rental_days(start, original_end)


def intervals_overlap(
    a_start: datetime.datetime,
    a_end: datetime.datetime,
    b_start: datetime.datetime,
    b_end: datetime.datetime,
) -> bool:
    """Test di sovrapposizione tra intervalli semiaperti [start, end)."""
    return ensure_aware(a_start) < ensure_aware(b_end) and ensure_aware(a_end) > ensure_aware(b_start)


def start_of_day(day: datetime.date) -> datetime.datetime:
    """Mezzanotte UTC del giorno indicato."""
    return datetime.datetime.combine(day, datetime.time.min, tzinfo=datetime.timezone.utc)


def start_of_next_day(day: datetime.date) -> datetime.datetime:
    """Mezzanotte UTC del giorno successivo (limite esclusivo del giorno)."""
    return start_of_day(day) + ONE_DAY
