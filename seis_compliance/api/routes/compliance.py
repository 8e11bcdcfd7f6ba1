"""API endpoints driving the post-issuance compliance clock."""
# ruff: noqa: UP017

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, model_validator

from seis_compliance.models.compliance import (
    ComplianceRecord,
    ComplianceState,
    TransitionOutcome,
    TransitionResult,
    ensure_utc,
    overdue_days,
)
from seis_compliance.services.compliance.manager import (
    ComplianceRecordManager,
    get_compliance_manager,
)
from seis_compliance.services.errors import ComplianceCoreError, InvalidTransitionError

router = APIRouter()
logger = logging.getLogger(__name__)


class ComplianceKey(BaseModel):
    company_id: UUID
    round_id: UUID


class ComplianceUpdateRequest(ComplianceKey):
    """Either or both compliance events; both are applied atomically."""

    share_issue_date: date | None = None
    seis1_eis1_submitted_at: datetime | None = None

    @model_validator(mode="after")
    def _require_event(self) -> ComplianceUpdateRequest:
        if self.share_issue_date is None and self.seis1_eis1_submitted_at is None:
            raise ValueError("share_issue_date or seis1_eis1_submitted_at is required")
        return self


class SharesIssuedRequest(ComplianceKey):
    share_issue_date: date


class SubmissionRequest(ComplianceKey):
    submitted_at: datetime | None = Field(
        default=None, description="Submission instant; defaults to now."
    )


class ComplianceResponse(BaseModel):
    company_id: UUID
    round_id: UUID
    state: ComplianceState
    share_issue_date: date | None = None
    next_reminder_due: datetime | None = None
    submitted_at: datetime | None = None
    overdue: bool = False
    overdue_days: int = 0
    outcome: TransitionOutcome | None = None
    detail: str | None = None

    @classmethod
    def from_record(
        cls, record: ComplianceRecord, *, result: TransitionResult | None = None
    ) -> ComplianceResponse:
        now = datetime.now(timezone.utc)
        overdue = record.is_overdue(now)
        return cls(
            company_id=record.company_id,
            round_id=record.round_id,
            state=record.state,
            share_issue_date=record.share_issue_date,
            next_reminder_due=(
                ensure_utc(record.next_reminder_due) if record.next_reminder_due else None
            ),
            submitted_at=ensure_utc(record.submitted_at) if record.submitted_at else None,
            overdue=overdue,
            overdue_days=overdue_days(record.next_reminder_due, now) if overdue else 0,
            outcome=result.outcome if result else None,
            detail=result.detail if result else None,
        )


@router.post("/compliance/update", response_model=ComplianceResponse)
def update_compliance(
    payload: ComplianceUpdateRequest,
    manager: ComplianceRecordManager = Depends(get_compliance_manager),
) -> ComplianceResponse:
    """Apply a share issue and/or a SEIS1/EIS1 submission."""
    return _run(
        payload,
        lambda: manager.apply_update(
            payload.company_id,
            payload.round_id,
            share_issue_date=payload.share_issue_date,
            submitted_at=payload.seis1_eis1_submitted_at,
        ),
    )


@router.post("/compliance/shares-issued", response_model=ComplianceResponse)
def record_shares_issued(
    payload: SharesIssuedRequest,
    manager: ComplianceRecordManager = Depends(get_compliance_manager),
) -> ComplianceResponse:
    return _run(
        payload,
        lambda: manager.record_share_issue(
            payload.company_id, payload.round_id, payload.share_issue_date
        ),
    )


@router.post("/compliance/submission", response_model=ComplianceResponse)
def record_submission(
    payload: SubmissionRequest,
    manager: ComplianceRecordManager = Depends(get_compliance_manager),
) -> ComplianceResponse:
    return _run(
        payload,
        lambda: manager.record_submission(
            payload.company_id, payload.round_id, payload.submitted_at
        ),
    )


@router.get("/compliance/{company_id}/{round_id}", response_model=ComplianceResponse)
def get_compliance(
    company_id: UUID,
    round_id: UUID,
    manager: ComplianceRecordManager = Depends(get_compliance_manager),
) -> ComplianceResponse:
    """Return the current compliance state, including the derived overdue flag."""
    try:
        record = manager.get(company_id, round_id)
    except ComplianceCoreError as exc:
        raise HTTPException(status_code=_map_error_code(exc.code), detail=str(exc)) from exc
    if record is None:
        raise HTTPException(status_code=404, detail="Compliance record not found.")
    return ComplianceResponse.from_record(record)


def _run(payload: ComplianceKey, handler) -> ComplianceResponse:
    try:
        result = handler()
        if result.outcome is TransitionOutcome.INVALID_TRANSITION:
            raise InvalidTransitionError(result.detail or "Invalid compliance transition.")
    except ComplianceCoreError as exc:
        logger.warning(
            "compliance.api_error",
            extra={
                "company_id": str(payload.company_id),
                "round_id": str(payload.round_id),
                "code": exc.code,
            },
        )
        raise HTTPException(status_code=_map_error_code(exc.code), detail=str(exc)) from exc
    return ComplianceResponse.from_record(result.record, result=result)


def _map_error_code(code: str) -> int:
    if code in {"409_INVALID_TRANSITION", "409_CONFLICT"}:
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR
