"""Capacity-gated subscribe/unsubscribe."""

from __future__ import annotations

import logging
from concurrent.futures import Executor, Future
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Callable, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import crud
from .errors import CapacityExceeded, EventAlreadyStarted, NotFound
from .models import Event, Participant
from .notifications import NotificationDispatcher, NotificationKind
from .utils import normalize_email, to_naive_utc, utcnow

logger = logging.getLogger("uvicorn.error")

SessionFactory = Callable[[], AbstractContextManager[Session]]


class SubscriptionManager:
    def __init__(
        self,
        session_factory: SessionFactory,
        dispatcher: NotificationDispatcher,
        executor: Executor,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.executor = executor
        self.clock = clock

    def subscribe(
        self, event_id: str, email: str, name: str | None = None
    ) -> Participant:
        """Register ``email`` for an event and queue its confirmation email.

        Subscribing twice with the same address returns the existing
        participant and does not use up a place.
        """
        normalized = normalize_email(email)
        if not normalized:
            raise ValueError("Email is required")

        try:
            with self.session_factory() as session:
                participant, event = self._subscribe(session, event_id, normalized, name)
        except IntegrityError:
            # Lost a race against the same address; the other insert won.
            with self.session_factory() as session:
                participant = crud.get_participant(session, event_id, normalized)
            if participant is None:
                raise
            return participant

        if event is not None:
            logger.info(
                "Subscribed %s to event %s (participant %s)",
                normalized,
                event.id,
                participant.id,
            )
            self._queue_confirmation(participant, event)
        return participant

    def _subscribe(
        self, session: Session, event_id: str, email: str, name: str | None
    ) -> tuple[Participant, Event | None]:
        """Return the participant and, when newly created, its event."""
        event = crud.get_event(session, event_id, for_update=True)
        if event is None:
            raise NotFound()
        if event.start_time <= to_naive_utc(self.clock()):
            raise EventAlreadyStarted()

        existing = crud.get_participant(session, event.id, email)
        if existing is not None:
            return existing, None

        participant = crud.insert_participant_within_capacity(
            session, event=event, email=email, name=name
        )
        if participant is None:
            logger.info(
                "Rejected %s for event %s: capacity %s reached",
                email,
                event.id,
                event.max_participants,
            )
            raise CapacityExceeded()
        return participant, event

    def _queue_confirmation(self, participant: Participant, event: Event) -> None:
        try:
            future = self.executor.submit(
                self.dispatcher.send_one,
                NotificationKind.CONFIRMATION,
                participant.email,
                event.title,
                event.start_time,
                event_id=event.id,
                participant_name=participant.name,
            )
        except RuntimeError:
            logger.warning(
                "Confirmation for %s (event %s) not queued: executor is shut down",
                participant.email,
                event.id,
            )
            return
        future.add_done_callback(
            lambda done: self._log_confirmation(done, participant.email, event.id)
        )

    @staticmethod
    def _log_confirmation(future: Future, email: str, event_id: str) -> None:
        if future.cancelled():
            logger.warning("Confirmation for %s (event %s) was cancelled", email, event_id)
            return
        exc = future.exception()
        if exc is not None:
            logger.error(
                "Confirmation for %s (event %s) crashed: %s", email, event_id, exc
            )
        elif not future.result():
            logger.warning(
                "Confirmation for %s (event %s) could not be delivered", email, event_id
            )

    def unsubscribe(self, event_id: str, email: str) -> bool:
        normalized = normalize_email(email)
        if not normalized:
            return False
        with self.session_factory() as session:
            removed = crud.delete_participant(session, event_id, normalized)
        if removed:
            logger.info("Unsubscribed %s from event %s", normalized, event_id)
        return removed

    def list_participants(self, event_id: str) -> Sequence[Participant]:
        with self.session_factory() as session:
            if crud.get_event(session, event_id) is None:
                raise NotFound()
            return crud.get_participants(session, event_id)
