"""Scheduled and manual triggers for the reminder sweep."""

from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, status

from seis_compliance.config import settings
from seis_compliance.models.compliance import SweepReport
from seis_compliance.services.errors import ComplianceCoreError
from seis_compliance.services.reminders.sweep import ReminderSweep, get_reminder_sweep

router = APIRouter()
logger = logging.getLogger(__name__)


def _secret_matches(provided: str | None, expected: str | None, *, trigger: str) -> None:
    if not expected:
        logger.error("reminders.trigger.unconfigured", extra={"trigger": trigger})
        raise HTTPException(status_code=503, detail=f"{trigger} trigger is not configured")
    if not provided or not hmac.compare_digest(provided, expected):
        logger.warning("reminders.trigger.unauthorized", extra={"trigger": trigger})
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_cron_secret(authorization: str | None = Header(default=None)) -> None:
    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization.split(" ", 1)[1].strip()
    _secret_matches(token, settings.cron_secret, trigger="cron")


def require_admin_key(x_admin_key: str | None = Header(default=None)) -> None:
    _secret_matches(x_admin_key, settings.admin_secret, trigger="manual")


@router.post(
    "/reminders/run",
    response_model=SweepReport,
    dependencies=[Depends(require_cron_secret)],
)
def run_scheduled_sweep(
    sweep: ReminderSweep = Depends(get_reminder_sweep),
) -> SweepReport:
    """Cron entry point; authenticated with the shared cron secret."""
    return _run_sweep(sweep, trigger="cron")


@router.post(
    "/reminders/run/manual",
    response_model=SweepReport,
    dependencies=[Depends(require_admin_key)],
)
def run_manual_sweep(
    sweep: ReminderSweep = Depends(get_reminder_sweep),
) -> SweepReport:
    """Operator-triggered sweep; same behaviour and report as the cron trigger."""
    return _run_sweep(sweep, trigger="manual")


def _run_sweep(sweep: ReminderSweep, *, trigger: str) -> SweepReport:
    logger.info("reminders.trigger.received", extra={"trigger": trigger})
    try:
        return sweep.run()
    except ComplianceCoreError as exc:
        logger.error("reminders.trigger.failed", extra={"trigger": trigger, "code": exc.code})
        raise HTTPException(status_code=_map_error_code(exc.code), detail=str(exc)) from exc


def _map_error_code(code: str) -> int:
    if code == "409_SWEEP_IN_PROGRESS":
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR
