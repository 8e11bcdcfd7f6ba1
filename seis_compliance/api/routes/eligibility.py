"""API endpoints for SEIS/EIS eligibility evaluation and its audit trail."""
# ruff: noqa: UP017

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID, uuid4

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from seis_compliance.models.eligibility import (
    CompanySnapshot,
    EligibilityCheck,
    FundingRoundSnapshot,
)
from seis_compliance.services.eligibility.engine import evaluate
from seis_compliance.services.eligibility.repositories import (
    EligibilityCheckRepository,
    get_eligibility_repository,
)
from seis_compliance.services.errors import ComplianceCoreError, EligibilityInputError

router = APIRouter()
logger = logging.getLogger(__name__)


class EligibilityRequest(BaseModel):
    """Snapshots supplied by the company-record collaborator for one round."""

    company_id: UUID
    round_id: UUID
    company: CompanySnapshot
    funding_round: FundingRoundSnapshot
    as_of: datetime | None = Field(
        default=None,
        description="Evaluation instant (timezone-aware); defaults to now.",
    )
    performed_by: str | None = Field(default=None, max_length=255)


@router.post(
    "/eligibility", response_model=EligibilityCheck, status_code=status.HTTP_201_CREATED
)
def create_eligibility_check(
    payload: EligibilityRequest,
    repository: EligibilityCheckRepository = Depends(get_eligibility_repository),
) -> EligibilityCheck:
    """Evaluate a company/round pair and record the result."""
    as_of = payload.as_of or datetime.now(timezone.utc)
    try:
        result = evaluate(payload.company, payload.funding_round, as_of=as_of)
        check = EligibilityCheck(
            id=uuid4(),
            company_id=payload.company_id,
            round_id=payload.round_id,
            performed_by=payload.performed_by,
            result=result,
        )
        return repository.add(check)
    except EligibilityInputError as exc:
        logger.warning(
            "eligibility.api_rejected",
            extra={"company_id": str(payload.company_id), "field": exc.field, "code": exc.code},
        )
        raise HTTPException(
            status_code=_map_error_code(exc.code),
            detail={"message": str(exc), "field": exc.field},
        ) from exc
    except ComplianceCoreError as exc:
        logger.error(
            "eligibility.api_error",
            extra={"company_id": str(payload.company_id), "code": exc.code},
        )
        raise HTTPException(status_code=_map_error_code(exc.code), detail=str(exc)) from exc


@router.get("/eligibility/{round_id}", response_model=list[EligibilityCheck])
def list_eligibility_checks(
    round_id: UUID,
    repository: EligibilityCheckRepository = Depends(get_eligibility_repository),
) -> list[EligibilityCheck]:
    """Return the audit history for a round, newest first."""
    try:
        return repository.list_for_round(round_id)
    except ComplianceCoreError as exc:
        raise HTTPException(status_code=_map_error_code(exc.code), detail=str(exc)) from exc


def _map_error_code(code: str) -> int:
    if code == "422_INVALID_SNAPSHOT":
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if code == "409_CONFLICT":
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR
