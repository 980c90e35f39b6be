"""CRUD helpers for users, events, and participants."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Sequence

from sqlalchemy import Boolean, delete, func, insert, literal, select, update
from sqlalchemy.orm import Session

from .models import Event, Participant, User
from .utils import normalize_email, to_naive_utc, utcnow


def _now() -> datetime:
    return utcnow()


def _validate_capacity(max_participants: int | None) -> int | None:
    if max_participants is None:
        return None
    if isinstance(max_participants, bool) or int(max_participants) != max_participants:
        raise ValueError("Maximum participants must be an integer")
    if max_participants < 1:
        raise ValueError("Maximum participants must be a positive integer")
    return int(max_participants)


def create_user(session: Session, *, email: str, name: str | None = None) -> User:
    normalized = normalize_email(email)
    if not normalized:
        raise ValueError("User email is required")
    user = User(email=normalized, name=name, created_at=_now())
    session.add(user)
    session.flush()
    return user


def create_event(
    session: Session,
    *,
    title: str,
    start_time: datetime,
    description: str | None = None,
    location: str | None = None,
    max_participants: int | None = None,
    owner: User | None = None,
    is_active: bool = True,
) -> Event:
    """Create and persist a new event."""
    if not (title or "").strip():
        raise ValueError("Event title is required")
    event = Event(
        title=title.strip(),
        description=description,
        location=location,
        start_time=to_naive_utc(start_time),
        max_participants=_validate_capacity(max_participants),
        owner=owner,
        is_active=is_active,
    )
    session.add(event)
    session.flush()
    return event


def update_event(
    session: Session,
    event: Event,
    *,
    title: str,
    start_time: datetime,
    description: str | None = None,
    location: str | None = None,
    max_participants: int | None = None,
    is_active: bool = True,
) -> Event:
    """Update an existing event."""
    event.title = title
    event.start_time = to_naive_utc(start_time)
    event.description = description
    event.location = location
    event.max_participants = _validate_capacity(max_participants)
    event.is_active = is_active
    event.last_modified = _now()
    session.add(event)
    session.flush()
    return event


def get_event(
    session: Session, event_id: str, *, for_update: bool = False
) -> Event | None:
    """Return an active event, optionally locking its row for the transaction."""
    stmt = select(Event).where(Event.id == event_id, Event.is_active.is_(True))
    if for_update:
        stmt = stmt.with_for_update()
    return session.scalars(stmt).first()


def get_events_starting_between(
    session: Session, start: datetime, end: datetime
) -> Sequence[Event]:
    """Active events whose start falls in the half-open range ``[start, end)``."""
    stmt = (
        select(Event)
        .where(
            Event.is_active.is_(True),
            Event.start_time >= to_naive_utc(start),
            Event.start_time < to_naive_utc(end),
        )
        .order_by(Event.start_time.asc(), Event.id.asc())
    )
    return session.scalars(stmt).all()


def count_participants(session: Session, event_id: str) -> int:
    stmt = (
        select(func.count())
        .select_from(Participant)
        .where(Participant.event_id == event_id)
    )
    return session.scalar(stmt) or 0


def get_participant(session: Session, event_id: str, email: str) -> Participant | None:
    stmt = select(Participant).where(
        Participant.event_id == event_id,
        Participant.email == normalize_email(email),
    )
    return session.scalars(stmt).first()


def get_participants(session: Session, event_id: str) -> Sequence[Participant]:
    stmt = (
        select(Participant)
        .where(Participant.event_id == event_id)
        .order_by(Participant.created_at.desc(), Participant.id.desc())
    )
    return session.scalars(stmt).all()


def get_unnotified_participants(
    session: Session, event_id: str
) -> Sequence[Participant]:
    stmt = (
        select(Participant)
        .where(Participant.event_id == event_id, Participant.notified.is_(False))
        .order_by(Participant.created_at.asc(), Participant.id.asc())
    )
    return session.scalars(stmt).all()


def add_participant(
    session: Session, *, event: Event, email: str, name: str | None = None
) -> Participant:
    """Insert a participant without any capacity check."""
    participant = Participant(
        event=event,
        email=normalize_email(email),
        name=name,
        notified=False,
        created_at=_now(),
    )
    session.add(participant)
    session.flush()
    return participant


def insert_participant_within_capacity(
    session: Session, *, event: Event, email: str, name: str | None = None
) -> Participant | None:
    """Insert a participant only while the event still has room.

    The count and the insert run as a single ``INSERT ... SELECT`` statement so
    two writers cannot both take the last place. Returns ``None`` when the
    event is full.
    """
    if event.max_participants is None:
        return add_participant(session, event=event, email=email, name=name)

    participant_id = str(uuid.uuid4())
    current = (
        select(func.count())
        .select_from(Participant)
        .where(Participant.event_id == event.id)
        .scalar_subquery()
    )
    row = select(
        literal(participant_id, Participant.id.type),
        literal(event.id, Participant.event_id.type),
        literal(normalize_email(email), Participant.email.type),
        literal(name, Participant.name.type),
        literal(False, Boolean()),
        literal(_now(), Participant.created_at.type),
    ).where(current < event.max_participants)
    stmt = insert(Participant).from_select(
        ["id", "event_id", "email", "name", "notified", "created_at"], row
    )
    result = session.execute(stmt)
    if result.rowcount != 1:
        return None
    return session.get(Participant, participant_id)


def delete_participant(session: Session, event_id: str, email: str) -> bool:
    stmt = delete(Participant).where(
        Participant.event_id == event_id,
        Participant.email == normalize_email(email),
    )
    result = session.execute(stmt)
    return (result.rowcount or 0) > 0


def mark_participant_notified(session: Session, participant_id: str) -> None:
    """Set the reminder-sent flag. Never clears it."""
    stmt = (
        update(Participant)
        .where(Participant.id == participant_id)
        .values(notified=True)
        .execution_options(synchronize_session="fetch")
    )
    session.execute(stmt)
