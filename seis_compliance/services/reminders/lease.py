"""Single-flight lease preventing overlapping reminder sweeps."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from threading import Lock
from typing import Protocol

from sqlalchemy import delete
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from seis_compliance.config import settings
from seis_compliance.core.sql import session_scope, shared_engine
from seis_compliance.models.compliance import ensure_utc
from seis_compliance.models.records import SweepLeaseRecord
from seis_compliance.services.errors import PersistenceError

logger = logging.getLogger(__name__)

SWEEP_LEASE_NAME = "reminder_sweep"


class SweepLease(Protocol):
    def acquire(self, holder: str, now: datetime, ttl: timedelta) -> bool:
        """Take the lease unless another holder owns an unexpired one."""
        ...

    def release(self, holder: str) -> None:
        ...


class InMemorySweepLease(SweepLease):
    def __init__(self) -> None:
        self._lock = Lock()
        self._holder: str | None = None
        self._expires_at: datetime | None = None

    def acquire(self, holder: str, now: datetime, ttl: timedelta) -> bool:
        now = ensure_utc(now)
        with self._lock:
            if (
                self._holder is not None
                and self._holder != holder
                and self._expires_at is not None
                and self._expires_at > now
            ):
                return False
            self._holder = holder
            self._expires_at = now + ttl
            return True

    def release(self, holder: str) -> None:
        with self._lock:
            if self._holder == holder:
                self._holder = None
                self._expires_at = None

    @property
    def held(self) -> bool:
        with self._lock:
            return self._holder is not None


class SQLSweepLease(SweepLease):
    """Lease stored as a row in ``sweep_leases``; expired rows are taken over."""

    def __init__(self, engine: Engine, name: str = SWEEP_LEASE_NAME) -> None:
        self._engine = engine
        self._name = name

    def acquire(self, holder: str, now: datetime, ttl: timedelta) -> bool:
        now = ensure_utc(now)
        try:
            with session_scope(self._engine) as session:
                row = session.get(SweepLeaseRecord, self._name, with_for_update=True)
                if row is None:
                    session.add(
                        SweepLeaseRecord(name=self._name, holder=holder, expires_at=now + ttl)
                    )
                elif row.holder != holder and ensure_utc(row.expires_at) > now:
                    session.rollback()
                    return False
                else:
                    row.holder = holder
                    row.expires_at = now + ttl
                session.commit()
        except IntegrityError:
            # Another process inserted the lease row first.
            return False
        except SQLAlchemyError as exc:
            logger.exception("reminders.lease.error", extra={"lease": self._name})
            raise PersistenceError("Failed to acquire sweep lease.", code="500_PERSISTENCE") from exc
        return True

    def release(self, holder: str) -> None:
        statement = delete(SweepLeaseRecord).where(
            SweepLeaseRecord.name == self._name, SweepLeaseRecord.holder == holder
        )
        try:
            with session_scope(self._engine) as session:
                session.execute(statement)
                session.commit()
        except SQLAlchemyError:
            # The lease expires on its own; a failed release only delays the next sweep.
            logger.exception("reminders.lease.release_failed", extra={"lease": self._name})


def build_sweep_lease(database_url: str | None = None) -> SweepLease:
    resolved_url = database_url or settings.database_url
    if not resolved_url:
        return InMemorySweepLease()
    return SQLSweepLease(shared_engine(resolved_url))
