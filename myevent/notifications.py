"""Notification dispatcher: renders confirmation/reminder emails and paces bulk sends."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Callable, Protocol, Sequence

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .config import Settings
from .utils import format_local, utcnow

logger = logging.getLogger("uvicorn.error")

TEMPLATE_DIR = Path(__file__).parent / "templates" / "email"


class NotificationKind(str, Enum):
    CONFIRMATION = "confirmation"
    REMINDER = "reminder"


SUBJECTS = {
    NotificationKind.CONFIRMATION: "Subscription confirmed - {title}",
    NotificationKind.REMINDER: "Reminder - {title} starts in 24 hours",
}


class Transport(Protocol):
    def send(
        self, to: str, subject: str, html_body: str, text_body: str = ""
    ) -> bool: ...

    def verify(self) -> bool: ...


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html_body: str
    text_body: str


@dataclass(frozen=True)
class DispatchOutcome:
    sent: int = 0
    failed: int = 0

    @property
    def attempted(self) -> int:
        return self.sent + self.failed

    def __add__(self, other: "DispatchOutcome") -> "DispatchOutcome":
        return DispatchOutcome(self.sent + other.sent, self.failed + other.failed)

    def as_dict(self) -> dict[str, int]:
        return {"sent": self.sent, "failed": self.failed}


@dataclass(frozen=True)
class ReminderItem:
    recipient: str
    event_title: str
    event_start: datetime
    participant_id: str | None = None
    event_id: str | None = None
    participant_name: str | None = None


@dataclass
class BatchResult:
    outcome: DispatchOutcome
    delivered: list[str] = field(default_factory=list)


class Pacer:
    """Sleeps between outbound messages and between events in a pass."""

    def __init__(
        self,
        message_delay: float = 1.0,
        event_delay: float = 2.0,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.message_delay = message_delay
        self.event_delay = event_delay
        self._sleep = sleep

    @classmethod
    def from_settings(cls, config: Settings) -> "Pacer":
        return cls(config.message_delay_seconds, config.event_delay_seconds)

    def _pause(self, seconds: float) -> None:
        if seconds > 0:
            self._sleep(seconds)

    def between_messages(self) -> None:
        self._pause(self.message_delay)

    def between_events(self) -> None:
        self._pause(self.event_delay)


def _template_env() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape(["html"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )


class NotificationDispatcher:
    def __init__(
        self,
        transport: Transport,
        *,
        pacer: Pacer | None = None,
        app_name: str = "My Event",
        timezone: str = "UTC",
    ):
        self.transport = transport
        self.pacer = pacer or Pacer()
        self.app_name = app_name
        self.timezone = timezone
        self._env = _template_env()

    def render(
        self,
        kind: NotificationKind,
        *,
        event_title: str,
        event_start: datetime,
        participant_name: str | None = None,
    ) -> RenderedEmail:
        """Render the HTML and plain-text bodies of a message kind."""
        kind = NotificationKind(kind)
        context = {
            "app_name": self.app_name,
            "event_title": event_title,
            "event_start": format_local(event_start, self.timezone),
            "participant_name": participant_name,
        }
        return RenderedEmail(
            subject=SUBJECTS[kind].format(title=event_title),
            html_body=self._env.get_template(f"{kind.value}.html").render(**context),
            text_body=self._env.get_template(f"{kind.value}.txt").render(**context),
        )

    def send_one(
        self,
        kind: NotificationKind,
        recipient: str,
        event_title: str,
        event_start: datetime,
        *,
        event_id: str | None = None,
        participant_name: str | None = None,
    ) -> bool:
        kind = NotificationKind(kind)
        try:
            message = self.render(
                kind,
                event_title=event_title,
                event_start=event_start,
                participant_name=participant_name,
            )
            delivered = bool(
                self.transport.send(
                    recipient, message.subject, message.html_body, message.text_body
                )
            )
        except Exception:
            logger.exception(
                "Unexpected error sending %s email to %s for event %s",
                kind.value,
                recipient,
                event_id,
            )
            return False
        if delivered:
            logger.info(
                "Sent %s email to %s for event %s", kind.value, recipient, event_id
            )
        else:
            logger.error(
                "Failed to send %s email to %s for event %s",
                kind.value,
                recipient,
                event_id,
            )
        return delivered

    def send_batch(
        self, kind: NotificationKind, items: Sequence[ReminderItem]
    ) -> BatchResult:
        kind = NotificationKind(kind)
        sent = failed = 0
        delivered: list[str] = []
        logger.info("Starting %s batch of %d email(s)", kind.value, len(items))
        for index, item in enumerate(items):
            if index:
                self.pacer.between_messages()
            ok = self.send_one(
                kind,
                item.recipient,
                item.event_title,
                item.event_start,
                event_id=item.event_id,
                participant_name=item.participant_name,
            )
            if ok:
                sent += 1
                if item.participant_id:
                    delivered.append(item.participant_id)
            else:
                failed += 1
        outcome = DispatchOutcome(sent=sent, failed=failed)
        logger.info(
            "Finished %s batch: sent=%d failed=%d total=%d",
            kind.value,
            outcome.sent,
            outcome.failed,
            len(items),
        )
        return BatchResult(outcome=outcome, delivered=delivered)

    def send_test(self, kind: NotificationKind, recipient: str) -> bool:
        """Send a sample message about a fictitious event starting tomorrow."""
        return self.send_one(
            kind,
            recipient,
            f"Test event - {self.app_name}",
            utcnow() + timedelta(days=1),
            event_id="test-event",
        )

    def check_connection(self) -> bool:
        return bool(self.transport.verify())
