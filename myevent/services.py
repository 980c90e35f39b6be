"""Composition root wiring the mail transport, dispatcher, and scheduler."""

from __future__ import annotations

from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass

from .config import Settings
from .database import get_session
from .mailer import SMTPTransport
from .notifications import NotificationDispatcher, Pacer, Transport
from .scheduler import ReminderScheduler
from .subscriptions import SessionFactory, SubscriptionManager


@dataclass
class Services:
    dispatcher: NotificationDispatcher
    subscriptions: SubscriptionManager
    scheduler: ReminderScheduler
    executor: Executor

    def shutdown(self) -> None:
        self.scheduler.stop()
        self.executor.shutdown(wait=True)


def build_services(
    config: Settings,
    *,
    transport: Transport | None = None,
    pacer: Pacer | None = None,
    executor: Executor | None = None,
    session_factory: SessionFactory = get_session,
) -> Services:
    pacer = pacer or Pacer.from_settings(config)
    dispatcher = NotificationDispatcher(
        transport or SMTPTransport(config),
        pacer=pacer,
        app_name=config.mail_from_name,
        timezone=config.email_timezone,
    )
    executor = executor or ThreadPoolExecutor(
        max_workers=config.confirmation_workers,
        thread_name_prefix="confirmation-mail",
    )
    subscriptions = SubscriptionManager(session_factory, dispatcher, executor)
    scheduler = ReminderScheduler(
        session_factory,
        dispatcher,
        hour=config.reminder_hour,
        minute=config.reminder_minute,
        timezone=config.reminder_timezone,
        window=config.reminder_window,
        pacer=pacer,
    )
    return Services(
        dispatcher=dispatcher,
        subscriptions=subscriptions,
        scheduler=scheduler,
        executor=executor,
    )
