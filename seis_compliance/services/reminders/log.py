"""Persistent log of reminders the sweep has delivered."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Protocol
from uuid import UUID

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from seis_compliance.config import settings
from seis_compliance.core.sql import backend_tag, session_scope, shared_engine
from seis_compliance.models.compliance import ReminderLogEntry
from seis_compliance.models.records import ReminderLogRecord
from seis_compliance.observability.metrics import metrics
from seis_compliance.services.errors import PersistenceError

logger = logging.getLogger(__name__)


class ReminderLogRepository(Protocol):
    """One row per reminder handed to a notifier that reported success."""

    def add(self, entry: ReminderLogEntry) -> ReminderLogEntry:
        ...

    def list_for_company(self, company_id: UUID) -> list[ReminderLogEntry]:
        ...


class InMemoryReminderLogRepository(ReminderLogRepository):
    def __init__(self) -> None:
        self._entries: list[ReminderLogEntry] = []
        self._lock = Lock()

    def add(self, entry: ReminderLogEntry) -> ReminderLogEntry:
        with self._lock:
            self._entries.append(entry)
        metrics.increment("reminders.log.recorded", tags={"repository": "memory"})
        return entry

    def list_for_company(self, company_id: UUID) -> list[ReminderLogEntry]:
        with self._lock:
            matches = [entry for entry in self._entries if entry.company_id == company_id]
        return sorted(matches, key=lambda entry: entry.sent_at, reverse=True)


class SQLReminderLogRepository(ReminderLogRepository):
    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._metrics_tags = {"repository": backend_tag(engine.url)}

    def add(self, entry: ReminderLogEntry) -> ReminderLogEntry:
        try:
            with session_scope(self._engine) as session:
                session.add(ReminderLogRecord.from_entry(entry))
                session.commit()
        except SQLAlchemyError as exc:
            logger.exception(
                "reminders.log.error",
                extra={"company_id": str(entry.company_id), "reminder_type": entry.reminder_type.value},
            )
            raise PersistenceError("Failed to record reminder.", code="500_PERSISTENCE") from exc
        metrics.increment("reminders.log.recorded", tags=self._metrics_tags)
        return entry

    def list_for_company(self, company_id: UUID) -> list[ReminderLogEntry]:
        try:
            with session_scope(self._engine) as session:
                statement = (
                    select(ReminderLogRecord)
                    .where(ReminderLogRecord.company_id == company_id)
                    .order_by(ReminderLogRecord.sent_at.desc())
                )
                return [record.to_entry() for record in session.exec(statement).all()]
        except SQLAlchemyError as exc:
            logger.exception("reminders.log.error", extra={"company_id": str(company_id)})
            raise PersistenceError("Failed to list reminders.", code="500_PERSISTENCE") from exc


def build_reminder_log(database_url: str | None = None) -> ReminderLogRepository:
    resolved_url = database_url or settings.database_url
    if not resolved_url:
        return InMemoryReminderLogRepository()
    return SQLReminderLogRepository(shared_engine(resolved_url))


_REMINDER_LOG: ReminderLogRepository | None = None


def get_reminder_log() -> ReminderLogRepository:
    """Singleton accessor shared by the sweep."""
    global _REMINDER_LOG  # noqa: PLW0603
    if _REMINDER_LOG is None:
        _REMINDER_LOG = build_reminder_log()
    return _REMINDER_LOG
