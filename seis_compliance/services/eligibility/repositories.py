"""Append-only persistence for eligibility audit records."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Protocol
from uuid import UUID

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import select

from seis_compliance.config import settings
from seis_compliance.core.sql import backend_tag, session_scope, shared_engine
from seis_compliance.models.eligibility import EligibilityCheck
from seis_compliance.models.records import EligibilityCheckRecord
from seis_compliance.observability.metrics import metrics
from seis_compliance.services.errors import PersistenceError

logger = logging.getLogger(__name__)


class EligibilityCheckRepository(Protocol):
    """Audit trail of evaluations; rows are inserted, never updated."""

    def add(self, check: EligibilityCheck) -> EligibilityCheck:
        ...

    def list_for_round(self, round_id: UUID) -> list[EligibilityCheck]:
        ...


class InMemoryEligibilityCheckRepository(EligibilityCheckRepository):
    """Thread-safe repository used for API/local development."""

    def __init__(self) -> None:
        self._checks: list[EligibilityCheck] = []
        self._ids: set[UUID] = set()
        self._lock = Lock()

    def add(self, check: EligibilityCheck) -> EligibilityCheck:
        with self._lock:
            if check.id in self._ids:
                raise PersistenceError(
                    "Eligibility check already recorded.", code="409_CONFLICT"
                )
            self._ids.add(check.id)
            self._checks.append(check)
        metrics.increment("eligibility.persistence.recorded", tags={"repository": "memory"})
        return check

    def list_for_round(self, round_id: UUID) -> list[EligibilityCheck]:
        with self._lock:
            matches = [check for check in self._checks if check.round_id == round_id]
        return sorted(matches, key=lambda check: check.result.evaluated_at, reverse=True)


class SQLEligibilityCheckRepository(EligibilityCheckRepository):
    """SQLModel-backed audit trail in Postgres/Supabase."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._metrics_tags = {"repository": backend_tag(engine.url)}

    def add(self, check: EligibilityCheck) -> EligibilityCheck:
        record = EligibilityCheckRecord.from_check(check)
        try:
            with session_scope(self._engine) as session:
                session.add(record)
                session.commit()
                session.refresh(record)
                persisted = record.to_check()
        except IntegrityError as exc:
            logger.warning(
                "eligibility.persistence.conflict",
                extra={"check_id": str(check.id), "round_id": str(check.round_id)},
            )
            raise PersistenceError(
                "Eligibility check already recorded.", code="409_CONFLICT"
            ) from exc
        except SQLAlchemyError as exc:
            logger.exception(
                "eligibility.persistence.error",
                extra={"check_id": str(check.id), "round_id": str(check.round_id)},
            )
            raise PersistenceError(
                "Failed to persist eligibility check.", code="500_PERSISTENCE"
            ) from exc
        metrics.increment("eligibility.persistence.recorded", tags=self._metrics_tags)
        return persisted

    def list_for_round(self, round_id: UUID) -> list[EligibilityCheck]:
        try:
            with session_scope(self._engine) as session:
                statement = (
                    select(EligibilityCheckRecord)
                    .where(EligibilityCheckRecord.round_id == round_id)
                    .order_by(EligibilityCheckRecord.evaluated_at.desc())
                )
                return [record.to_check() for record in session.exec(statement).all()]
        except SQLAlchemyError as exc:
            logger.exception("eligibility.persistence.error", extra={"round_id": str(round_id)})
            raise PersistenceError(
                "Failed to list eligibility checks.", code="500_PERSISTENCE"
            ) from exc


def build_eligibility_repository(database_url: str | None = None) -> EligibilityCheckRepository:
    """Instantiate the audit repository using DATABASE_URL when available."""
    resolved_url = database_url or settings.database_url
    if not resolved_url:
        logger.info("eligibility.repository.initialized", extra={"backend": "memory"})
        return InMemoryEligibilityCheckRepository()
    repository = SQLEligibilityCheckRepository(shared_engine(resolved_url))
    logger.info("eligibility.repository.initialized", extra={"backend": "database"})
    return repository


_REPOSITORY: EligibilityCheckRepository | None = None


def get_eligibility_repository() -> EligibilityCheckRepository:
    """Singleton accessor used by API routes."""
    global _REPOSITORY  # noqa: PLW0603
    if _REPOSITORY is None:
        _REPOSITORY = build_eligibility_repository()
    return _REPOSITORY
