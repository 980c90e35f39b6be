"""Daily reminder pass driven by APScheduler."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from . import crud
from .errors import NotFound
from .models import Event
from .notifications import (
    DispatchOutcome,
    NotificationDispatcher,
    NotificationKind,
    Pacer,
    ReminderItem,
)
from .subscriptions import SessionFactory
from .utils import ensure_aware, humanize_time, utcnow

logger = logging.getLogger("uvicorn.error")

REMINDER_JOB_ID = "daily-reminders"


@dataclass(frozen=True)
class SchedulerStatus:
    running: bool
    next_run_description: str | None = None

    def as_dict(self) -> dict:
        payload: dict = {"running": self.running}
        if self.next_run_description:
            payload["next_run_description"] = self.next_run_description
        return payload


@dataclass(frozen=True)
class ManualRunResult:
    success: bool
    message: str
    outcome: DispatchOutcome = field(default_factory=DispatchOutcome)

    def as_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "outcome": self.outcome.as_dict(),
        }


class ReminderScheduler:
    """Sends next-day reminders once a day at a fixed wall-clock time.

    Each pass selects active events starting in ``[now + 23h, now + 24h)``,
    emails every participant that has not been reminded yet and sets
    ``notified`` for the ones whose send succeeded. Passes keep their counts
    local, so a manual run may overlap the scheduled one.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        dispatcher: NotificationDispatcher,
        *,
        hour: int = 9,
        minute: int = 0,
        timezone: str = "Europe/Paris",
        window: tuple[timedelta, timedelta] = (timedelta(hours=23), timedelta(hours=24)),
        pacer: Pacer | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.hour = hour
        self.minute = minute
        self.timezone = timezone
        self.window = window
        self.pacer = pacer or dispatcher.pacer
        self.clock = clock
        self._scheduler: BackgroundScheduler | None = None

    @property
    def schedule_description(self) -> str:
        return f"Daily at {self.hour:02d}:{self.minute:02d} ({self.timezone})"

    @property
    def running(self) -> bool:
        return bool(self._scheduler and self._scheduler.running)

    def start(self) -> None:
        if self.running:
            logger.warning("Reminder scheduler already running")
            return
        scheduler = BackgroundScheduler(timezone=self.timezone)
        scheduler.add_job(
            self.run_daily_pass,
            CronTrigger(hour=self.hour, minute=self.minute, timezone=self.timezone),
            id=REMINDER_JOB_ID,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=3600,
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Reminder scheduler started: %s", self.schedule_description)

    def stop(self) -> None:
        if not self.running:
            self._scheduler = None
            return
        # An in-flight pass is allowed to finish on its own thread.
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Reminder scheduler stopped")

    def status(self) -> SchedulerStatus:
        if not self.running:
            return SchedulerStatus(running=False)
        description = self.schedule_description
        job = self._scheduler.get_job(REMINDER_JOB_ID)
        next_run = getattr(job, "next_run_time", None) if job else None
        if next_run is not None:
            description = (
                f"{description}; next run {next_run.strftime('%Y-%m-%d %H:%M %Z')} "
                f"({humanize_time(next_run, now=ensure_aware(self.clock()))})"
            )
        return SchedulerStatus(running=True, next_run_description=description)

    def reminder_window(self, now: datetime | None = None) -> tuple[datetime, datetime]:
        now = ensure_aware(now or self.clock())
        start_offset, end_offset = self.window
        return now + start_offset, now + end_offset

    def run_daily_pass(self) -> DispatchOutcome:
        window_start, window_end = self.reminder_window()
        with self.session_factory() as session:
            events = crud.get_events_starting_between(session, window_start, window_end)
            event_ids = [event.id for event in events]
        logger.info(
            "Reminder pass started: %d event(s) between %s and %s",
            len(event_ids),
            window_start.isoformat(),
            window_end.isoformat(),
        )

        total = DispatchOutcome()
        for index, event_id in enumerate(event_ids):
            if index:
                self.pacer.between_events()
            try:
                total += self._remind_event(event_id)
            except Exception:
                logger.exception("Reminder processing failed for event %s", event_id)

        logger.info(
            "Reminder pass finished: events=%d sent=%d failed=%d",
            len(event_ids),
            total.sent,
            total.failed,
        )
        return total

    def _remind_event(self, event_id: str, event: Event | None = None) -> DispatchOutcome:
        with self.session_factory() as session:
            event = event or crud.get_event(session, event_id)
            if event is None:
                return DispatchOutcome()
            pending = crud.get_unnotified_participants(session, event.id)
            items = [
                ReminderItem(
                    recipient=participant.email,
                    event_title=event.title,
                    event_start=event.start_time,
                    participant_id=participant.id,
                    event_id=event.id,
                    participant_name=participant.name,
                )
                for participant in pending
            ]
        if not items:
            logger.info("No participants awaiting a reminder for event %s", event_id)
            return DispatchOutcome()

        logger.info(
            "Sending %d reminder(s) for event %s (%s)", len(items), event_id, event.title
        )
        result = self.dispatcher.send_batch(NotificationKind.REMINDER, items)
        if result.delivered:
            with self.session_factory() as session:
                for participant_id in result.delivered:
                    crud.mark_participant_notified(session, participant_id)
        return result.outcome

    def run_manual_pass(self) -> ManualRunResult:
        logger.info("Manual reminder pass requested")
        try:
            outcome = self.run_daily_pass()
        except Exception as exc:
            logger.exception("Manual reminder pass failed")
            return ManualRunResult(
                success=False, message=f"Reminder pass failed: {type(exc).__name__}"
            )
        return ManualRunResult(
            success=True,
            message=f"Reminders processed: {outcome.sent} sent, {outcome.failed} failed",
            outcome=outcome,
        )

    def run_for_event(self, event_id: str) -> ManualRunResult:
        """Remind one event's participants now, whatever its start time."""
        logger.info("Reminder requested for event %s", event_id)
        with self.session_factory() as session:
            event = crud.get_event(session, event_id)
            if event is None:
                raise NotFound(f"Event {event_id} not found or inactive.")
            participant_count = crud.count_participants(session, event.id)
        if participant_count == 0:
            return ManualRunResult(
                success=False, message=f"Event {event_id} has no participants."
            )

        try:
            outcome = self._remind_event(event_id, event)
        except Exception as exc:
            logger.exception("Reminder for event %s failed", event_id)
            return ManualRunResult(
                success=False, message=f"Reminder failed: {type(exc).__name__}"
            )
        if outcome.attempted == 0:
            return ManualRunResult(
                success=True,
                message=f"All participants of event {event_id} were already reminded.",
                outcome=outcome,
            )
        return ManualRunResult(
            success=True,
            message=f"Reminders sent: {outcome.sent} succeeded, {outcome.failed} failed",
            outcome=outcome,
        )
