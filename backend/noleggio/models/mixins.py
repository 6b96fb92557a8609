"""
Mixin SQLAlchemy per i modelli dei noleggi
Progetto: Fleet Rental Manager (Gestionale Noleggio)
"""

import datetime
import uuid

from sqlalchemy import DateTime, Uuid, event
from sqlalchemy.orm import Mapped, Session, mapped_column
from sqlalchemy.sql import func


class UUIDMixin:
    """Chiave primaria UUID generata dall'applicazione all'inserimento."""

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)


class TimestampMixin:
    """
    created_at / updated_at in UTC.

    I valori sono assegnati dal listener before_flush, così sono leggibili
    subito dopo il flush (numero contratto, risposta API) senza refresh;
    il server_default copre gli inserimenti SQL diretti.
    """

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


@event.listens_for(Session, "before_flush")
def stamp_timestamps(session: Session, flush_context, instances) -> None:
    now = datetime.datetime.now(datetime.timezone.utc)

    for obj in session.new:
        if isinstance(obj, TimestampMixin):
            obj.created_at = obj.created_at or now
            obj.updated_at = now

    for obj in session.dirty:
        if isinstance(obj, TimestampMixin) and session.is_modified(obj, include_collections=False):
            obj.updated_at = now
