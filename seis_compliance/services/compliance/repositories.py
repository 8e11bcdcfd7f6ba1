"""Persistence backends for compliance records, authorisations, and company lookups."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from threading import Lock
from typing import Protocol, TypeVar
from uuid import UUID

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import col, select

from seis_compliance.config import settings
from seis_compliance.core.sql import backend_tag, session_scope, shared_engine
from seis_compliance.models.compliance import (
    Authorisation,
    CompanyContact,
    ComplianceRecord,
    ensure_utc,
)
from seis_compliance.models.records import (
    AuthorisationRecord,
    CompanyRecord,
    ComplianceTrackingRecord,
)
from seis_compliance.observability.metrics import metrics
from seis_compliance.services.errors import PersistenceError

logger = logging.getLogger(__name__)

_T = TypeVar("_T")
RecordKey = tuple[UUID, UUID]
Mutation = Callable[[ComplianceRecord | None], tuple[ComplianceRecord | None, _T]]

_INSERT_RACE_ATTEMPTS = 2


class ComplianceRepository(Protocol):
    """Persistence contract for compliance records keyed by (company, round)."""

    def get(self, company_id: UUID, round_id: UUID) -> ComplianceRecord | None:
        ...

    def list_open(self) -> list[ComplianceRecord]:
        """Records without a submission, or carrying a reminder due date."""
        ...

    def transition(self, company_id: UUID, round_id: UUID, mutate: Mutation[_T]) -> _T:
        """Run ``mutate`` as one atomic read-modify-write on the keyed record.

        ``mutate`` receives the stored record (or None) and returns the record
        to persist (None or an unchanged record skips the write) plus a value
        handed back to the caller.
        """
        ...


class AuthorisationRepository(Protocol):
    def add(self, authorisation: Authorisation) -> Authorisation:
        ...

    def get(self, authorisation_id: UUID) -> Authorisation | None:
        ...

    def list_for_company(self, company_id: UUID) -> list[Authorisation]:
        ...

    def expire_due(self, now: datetime) -> list[Authorisation]:
        """Flip every valid authorisation with expires_at <= now; return only those flipped."""
        ...

    def list_expiring(self, now: datetime, until: datetime) -> list[Authorisation]:
        ...


class CompanyDirectory(Protocol):
    """Read-only lookup into the company-record collaborator."""

    def lookup(self, company_id: UUID) -> CompanyContact | None:
        ...


def _is_open(record: ComplianceRecord) -> bool:
    return record.submitted_at is None or record.next_reminder_due is not None


class InMemoryComplianceRepository(ComplianceRepository):
    """Thread-safe repository with per-record locks."""

    def __init__(self) -> None:
        self._records: dict[RecordKey, ComplianceRecord] = {}
        self._key_locks: dict[RecordKey, Lock] = {}
        self._guard = Lock()

    @contextmanager
    def _hold(self, key: RecordKey) -> Iterator[None]:
        with self._guard:
            lock = self._key_locks.setdefault(key, Lock())
        with lock:
            yield

    def get(self, company_id: UUID, round_id: UUID) -> ComplianceRecord | None:
        with self._guard:
            return self._records.get((company_id, round_id))

    def list_open(self) -> list[ComplianceRecord]:
        with self._guard:
            return [record for record in self._records.values() if _is_open(record)]

    def transition(self, company_id: UUID, round_id: UUID, mutate: Mutation[_T]) -> _T:
        key = (company_id, round_id)
        with self._hold(key):
            with self._guard:
                current = self._records.get(key)
            updated, result = mutate(current)
            if updated is not None and updated != current:
                with self._guard:
                    self._records[key] = updated
                metrics.increment("compliance.persistence.persisted", tags={"repository": "memory"})
        return result

    def put(self, record: ComplianceRecord) -> None:
        """Store a row verbatim, bypassing transitions (fixtures and imports)."""
        with self._guard:
            self._records[(record.company_id, record.round_id)] = record


class SQLComplianceRepository(ComplianceRepository):
    """SQLModel-backed repository; transitions lock the row with SELECT ... FOR UPDATE."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._metrics_tags = {"repository": backend_tag(engine.url)}

    def get(self, company_id: UUID, round_id: UUID) -> ComplianceRecord | None:
        try:
            with session_scope(self._engine) as session:
                row = session.exec(self._keyed(company_id, round_id)).first()
                return row.to_record() if row else None
        except SQLAlchemyError as exc:
            logger.exception(
                "compliance.persistence.error",
                extra={"company_id": str(company_id), "round_id": str(round_id)},
            )
            raise PersistenceError(
                "Failed to load compliance record.", code="500_PERSISTENCE"
            ) from exc

    def list_open(self) -> list[ComplianceRecord]:
        statement = select(ComplianceTrackingRecord).where(
            col(ComplianceTrackingRecord.seis1_eis1_submitted_at).is_(None)
            | col(ComplianceTrackingRecord.next_reminder_due).is_not(None)
        )
        try:
            with session_scope(self._engine) as session:
                return [row.to_record() for row in session.exec(statement).all()]
        except SQLAlchemyError as exc:
            logger.exception("compliance.persistence.error", extra={"operation": "list_open"})
            raise PersistenceError(
                "Failed to list compliance records.", code="500_PERSISTENCE"
            ) from exc

    def transition(self, company_id: UUID, round_id: UUID, mutate: Mutation[_T]) -> _T:
        for attempt in range(1, _INSERT_RACE_ATTEMPTS + 1):
            try:
                return self._transition_once(company_id, round_id, mutate)
            except IntegrityError as exc:
                # A concurrent first event inserted the row; retry against it.
                logger.warning(
                    "compliance.persistence.conflict",
                    extra={
                        "company_id": str(company_id),
                        "round_id": str(round_id),
                        "attempt": attempt,
                    },
                )
                if attempt == _INSERT_RACE_ATTEMPTS:
                    raise PersistenceError(
                        "Concurrent update conflict on compliance record.", code="409_CONFLICT"
                    ) from exc
            except SQLAlchemyError as exc:
                logger.exception(
                    "compliance.persistence.error",
                    extra={"company_id": str(company_id), "round_id": str(round_id)},
                )
                raise PersistenceError(
                    "Failed to update compliance record.", code="500_PERSISTENCE"
                ) from exc
        raise AssertionError("unreachable")  # pragma: no cover

    def _transition_once(self, company_id: UUID, round_id: UUID, mutate: Mutation[_T]) -> _T:
        with session_scope(self._engine) as session:
            row = session.exec(self._keyed(company_id, round_id).with_for_update()).first()
            current = row.to_record() if row else None
            updated, result = mutate(current)
            if updated is None or updated == current:
                session.rollback()
                return result
            if row is None:
                row = ComplianceTrackingRecord(
                    company_id=company_id,
                    round_id=round_id,
                    created_at=updated.created_at,
                )
                session.add(row)
            row.apply(updated)
            session.commit()
        metrics.increment("compliance.persistence.persisted", tags=self._metrics_tags)
        return result

    @staticmethod
    def _keyed(company_id: UUID, round_id: UUID):
        return select(ComplianceTrackingRecord).where(
            ComplianceTrackingRecord.company_id == company_id,
            ComplianceTrackingRecord.round_id == round_id,
        )


class InMemoryAuthorisationRepository(AuthorisationRepository):
    def __init__(self) -> None:
        self._items: dict[UUID, Authorisation] = {}
        self._lock = Lock()

    def add(self, authorisation: Authorisation) -> Authorisation:
        with self._lock:
            if authorisation.id in self._items:
                raise PersistenceError("Authorisation already exists.", code="409_CONFLICT")
            self._items[authorisation.id] = authorisation
        return authorisation

    def get(self, authorisation_id: UUID) -> Authorisation | None:
        with self._lock:
            return self._items.get(authorisation_id)

    def list_for_company(self, company_id: UUID) -> list[Authorisation]:
        with self._lock:
            matches = [item for item in self._items.values() if item.company_id == company_id]
        return sorted(matches, key=lambda item: item.expires_at, reverse=True)

    def expire_due(self, now: datetime) -> list[Authorisation]:
        cutoff = ensure_utc(now)
        flipped: list[Authorisation] = []
        with self._lock:
            for key, item in self._items.items():
                if item.is_valid and ensure_utc(item.expires_at) <= cutoff:
                    expired = item.model_copy(update={"is_valid": False})
                    self._items[key] = expired
                    flipped.append(expired)
        return flipped

    def list_expiring(self, now: datetime, until: datetime) -> list[Authorisation]:
        start, end = ensure_utc(now), ensure_utc(until)
        with self._lock:
            return [
                item
                for item in self._items.values()
                if item.is_valid and start < ensure_utc(item.expires_at) <= end
            ]


class SQLAuthorisationRepository(AuthorisationRepository):
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def add(self, authorisation: Authorisation) -> Authorisation:
        record = AuthorisationRecord.from_authorisation(
            authorisation.model_copy(update={"expires_at": ensure_utc(authorisation.expires_at)})
        )
        try:
            with session_scope(self._engine) as session:
                session.add(record)
                session.commit()
                session.refresh(record)
                return record.to_authorisation()
        except IntegrityError as exc:
            raise PersistenceError("Authorisation already exists.", code="409_CONFLICT") from exc
        except SQLAlchemyError as exc:
            logger.exception(
                "authorisation.persistence.error", extra={"authorisation_id": str(authorisation.id)}
            )
            raise PersistenceError("Failed to save authorisation.", code="500_PERSISTENCE") from exc

    def get(self, authorisation_id: UUID) -> Authorisation | None:
        with session_scope(self._engine) as session:
            record = session.get(AuthorisationRecord, authorisation_id)
            return record.to_authorisation() if record else None

    def list_for_company(self, company_id: UUID) -> list[Authorisation]:
        statement = (
            select(AuthorisationRecord)
            .where(AuthorisationRecord.company_id == company_id)
            .order_by(col(AuthorisationRecord.expires_at).desc())
        )
        with session_scope(self._engine) as session:
            return [record.to_authorisation() for record in session.exec(statement).all()]

    def expire_due(self, now: datetime) -> list[Authorisation]:
        statement = (
            select(AuthorisationRecord)
            .where(
                col(AuthorisationRecord.is_valid).is_(True),
                AuthorisationRecord.expires_at <= ensure_utc(now),
            )
            .with_for_update(skip_locked=True)
        )
        try:
            with session_scope(self._engine) as session:
                records = session.exec(statement).all()
                for record in records:
                    record.is_valid = False
                session.commit()
                return [record.to_authorisation() for record in records]
        except SQLAlchemyError as exc:
            logger.exception("authorisation.persistence.error", extra={"operation": "expire_due"})
            raise PersistenceError(
                "Failed to expire authorisations.", code="500_PERSISTENCE"
            ) from exc

    def list_expiring(self, now: datetime, until: datetime) -> list[Authorisation]:
        statement = select(AuthorisationRecord).where(
            col(AuthorisationRecord.is_valid).is_(True),
            AuthorisationRecord.expires_at > ensure_utc(now),
            AuthorisationRecord.expires_at <= ensure_utc(until),
        )
        with session_scope(self._engine) as session:
            return [record.to_authorisation() for record in session.exec(statement).all()]


class InMemoryCompanyDirectory(CompanyDirectory):
    def __init__(self, contacts: list[CompanyContact] | None = None) -> None:
        self._contacts = {contact.company_id: contact for contact in contacts or []}

    def register(self, contact: CompanyContact) -> None:
        self._contacts[contact.company_id] = contact

    def lookup(self, company_id: UUID) -> CompanyContact | None:
        return self._contacts.get(company_id)


class SQLCompanyDirectory(CompanyDirectory):
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def lookup(self, company_id: UUID) -> CompanyContact | None:
        try:
            with session_scope(self._engine) as session:
                record = session.get(CompanyRecord, company_id)
                return record.to_contact() if record else None
        except SQLAlchemyError as exc:
            logger.exception("companies.lookup.error", extra={"company_id": str(company_id)})
            raise PersistenceError("Failed to look up company.", code="500_PERSISTENCE") from exc


def build_compliance_repository(database_url: str | None = None) -> ComplianceRepository:
    resolved_url = database_url or settings.database_url
    if not resolved_url:
        logger.info("compliance.repository.initialized", extra={"backend": "memory"})
        return InMemoryComplianceRepository()
    logger.info("compliance.repository.initialized", extra={"backend": "database"})
    return SQLComplianceRepository(shared_engine(resolved_url))


def build_authorisation_repository(database_url: str | None = None) -> AuthorisationRepository:
    resolved_url = database_url or settings.database_url
    if not resolved_url:
        return InMemoryAuthorisationRepository()
    return SQLAuthorisationRepository(shared_engine(resolved_url))


def build_company_directory(database_url: str | None = None) -> CompanyDirectory:
    resolved_url = database_url or settings.database_url
    if not resolved_url:
        return InMemoryCompanyDirectory()
    return SQLCompanyDirectory(shared_engine(resolved_url))


_COMPLIANCE_REPOSITORY: ComplianceRepository | None = None
_AUTHORISATION_REPOSITORY: AuthorisationRepository | None = None
_COMPANY_DIRECTORY: CompanyDirectory | None = None


def get_compliance_repository() -> ComplianceRepository:
    global _COMPLIANCE_REPOSITORY  # noqa: PLW0603
    if _COMPLIANCE_REPOSITORY is None:
        _COMPLIANCE_REPOSITORY = build_compliance_repository()
    return _COMPLIANCE_REPOSITORY


def get_authorisation_repository() -> AuthorisationRepository:
    global _AUTHORISATION_REPOSITORY  # noqa: PLW0603
    if _AUTHORISATION_REPOSITORY is None:
        _AUTHORISATION_REPOSITORY = build_authorisation_repository()
    return _AUTHORISATION_REPOSITORY


def get_company_directory() -> CompanyDirectory:
    global _COMPANY_DIRECTORY  # noqa: PLW0603
    if _COMPANY_DIRECTORY is None:
        _COMPANY_DIRECTORY = build_company_directory()
    return _COMPANY_DIRECTORY
