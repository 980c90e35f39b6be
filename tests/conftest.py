"""Shared pytest fixtures for MyEvent."""

from __future__ import annotations

import sys
from concurrent.futures import Future
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from myevent import database, storage
from myevent.database import get_session
from myevent.models import Base
from myevent.notifications import NotificationDispatcher, Pacer
from myevent.scheduler import ReminderScheduler
from myevent.subscriptions import SubscriptionManager

NOW = datetime(2026, 10, 19, 7, 0, 0)


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    session_factory = scoped_session(
        sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield


class RecordingTransport:
    """Collects sent messages; addresses in ``failing`` are rejected."""

    def __init__(self, failing: set[str] | None = None, connected: bool = True):
        self.failing = set(failing or ())
        self.connected = connected
        self.sent: list[tuple[str, str, str]] = []
        self.text_bodies: list[str] = []
        self.attempts: list[str] = []

    def send(
        self, to: str, subject: str, html_body: str, text_body: str = ""
    ) -> bool:
        self.attempts.append(to)
        if to in self.failing:
            return False
        self.sent.append((to, subject, html_body))
        self.text_bodies.append(text_body)
        return True

    def verify(self) -> bool:
        return self.connected

    @property
    def recipients(self) -> list[str]:
        return [to for to, _, _ in self.sent]


class InlineExecutor:
    """Runs submitted work immediately on the calling thread."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, /, *args, **kwargs):
        self.submitted += 1
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future

    def shutdown(self, wait: bool = True) -> None:
        pass


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture()
def session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def clock():
    return FixedClock(NOW)


@pytest.fixture()
def transport():
    return RecordingTransport()


@pytest.fixture()
def sleeps():
    return []


@pytest.fixture()
def pacer(sleeps):
    return Pacer(1.0, 2.0, sleep=sleeps.append)


@pytest.fixture()
def dispatcher(transport, pacer):
    return NotificationDispatcher(transport, pacer=pacer, timezone="Europe/Paris")


@pytest.fixture()
def executor():
    return InlineExecutor()


@pytest.fixture()
def subscriptions(dispatcher, executor, clock):
    return SubscriptionManager(get_session, dispatcher, executor, clock=clock)


@pytest.fixture()
def reminder_scheduler(dispatcher, clock):
    return ReminderScheduler(get_session, dispatcher, clock=clock)


@pytest.fixture()
def make_event(clock):
    """Create an event relative to the test clock and return its id."""

    from myevent.crud import add_participant, create_event

    def _make(
        *,
        starts_in: timedelta = timedelta(days=2),
        capacity: int | None = None,
        is_active: bool = True,
        title: str = "Team Meetup",
        participants: tuple[tuple[str, bool], ...] = (),
    ) -> str:
        with get_session() as db:
            event = create_event(
                db,
                title=title,
                start_time=clock() + starts_in,
                max_participants=capacity,
                is_active=is_active,
            )
            for email, notified in participants:
                participant = add_participant(db, event=event, email=email)
                participant.notified = notified
            return event.id

    return _make
