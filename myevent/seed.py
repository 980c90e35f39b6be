"""Development helpers for populating fake events and participants."""

from __future__ import annotations

import random
from datetime import datetime, timedelta

from faker import Faker
from sqlalchemy.orm import Session

from .crud import add_participant, create_event, create_user
from .database import get_session
from .models import Event, User
from .storage import init_db
from .utils import utcnow

_event_types = [
    "Meetup",
    "Workshop",
    "Conference",
    "Hackathon",
    "Concert",
    "Dinner",
    "Book Club",
    "Running Session",
]


def seed_fake_data(
    *,
    event_count: int = 4,
    participants_per_event: int = 3,
) -> dict[str, int]:
    """Populate the database with synthetic events.

    Every other event starts about 23.5 hours from now so the next reminder
    pass has something to send.
    """
    if event_count < 1:
        raise ValueError("event_count must be >= 1")
    if participants_per_event < 0:
        raise ValueError("participants_per_event must be >= 0")

    init_db()
    fake = Faker()
    stats = {"events": 0, "due_tomorrow": 0, "participants": 0}

    with get_session() as session:
        owner = create_user(session, email=fake.unique.email(), name=fake.name())
        for index in range(event_count):
            due_tomorrow = index % 2 == 0
            event = _create_event(session, fake, owner=owner, due_tomorrow=due_tomorrow)
            stats["events"] += 1
            stats["due_tomorrow"] += int(due_tomorrow)
            stats["participants"] += _create_participants(
                session, fake, event, participants_per_event
            )

    return stats


def _create_event(
    session: Session, fake: Faker, *, owner: User, due_tomorrow: bool
) -> Event:
    capacity = random.choice([None, 10, 25, 50])
    return create_event(
        session,
        title=f"{fake.city()} {random.choice(_event_types)}",
        description=fake.paragraph(),
        location=fake.address().replace("\n", ", "),
        start_time=_start_time(due_tomorrow),
        max_participants=capacity,
        owner=owner,
    )


def _start_time(due_tomorrow: bool) -> datetime:
    now = utcnow()
    if due_tomorrow:
        return now + timedelta(hours=23, minutes=random.randint(5, 55))
    return now + timedelta(days=random.randint(2, 30), minutes=random.randint(0, 23 * 60))


def _create_participants(session: Session, fake: Faker, event: Event, total: int) -> int:
    if event.max_participants is not None:
        total = min(total, event.max_participants)
    for _ in range(total):
        add_participant(
            session, event=event, email=fake.unique.email(), name=fake.name()
        )
    return total
