"""Registration and lookup of agent authorisations tracked by the sweep."""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID, uuid4

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from seis_compliance.models.compliance import Authorisation, ensure_utc
from seis_compliance.services.compliance.repositories import (
    AuthorisationRepository,
    get_authorisation_repository,
)
from seis_compliance.services.errors import ComplianceCoreError

router = APIRouter()
logger = logging.getLogger(__name__)


class AuthorisationRequest(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    company_id: UUID
    expires_at: datetime


@router.post(
    "/authorisations", response_model=Authorisation, status_code=status.HTTP_201_CREATED
)
def create_authorisation(
    payload: AuthorisationRequest,
    repository: AuthorisationRepository = Depends(get_authorisation_repository),
) -> Authorisation:
    authorisation = Authorisation(
        id=payload.id,
        company_id=payload.company_id,
        expires_at=ensure_utc(payload.expires_at),
    )
    try:
        return repository.add(authorisation)
    except ComplianceCoreError as exc:
        logger.warning(
            "authorisation.api_error",
            extra={"authorisation_id": str(payload.id), "code": exc.code},
        )
        status_code = 409 if exc.code == "409_CONFLICT" else 500
        raise HTTPException(status_code=status_code, detail=str(exc)) from exc


@router.get("/authorisations/{company_id}", response_model=list[Authorisation])
def list_authorisations(
    company_id: UUID,
    repository: AuthorisationRepository = Depends(get_authorisation_repository),
) -> list[Authorisation]:
    return repository.list_for_company(company_id)
