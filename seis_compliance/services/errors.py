"""Shared error classes for the eligibility engine, compliance manager, and sweep."""

from __future__ import annotations


class ComplianceCoreError(RuntimeError):
    """Base exception carrying a machine-readable code."""

    def __init__(self, message: str, code: str = "COMPLIANCE_CORE_ERROR") -> None:
        super().__init__(message)
        self.code = code


class EligibilityInputError(ComplianceCoreError):
    """Raised when a snapshot cannot be evaluated; carries the offending field."""

    def __init__(self, message: str, *, field: str, code: str = "422_INVALID_SNAPSHOT") -> None:
        super().__init__(message, code=code)
        self.field = field


class InvalidTransitionError(ComplianceCoreError):
    """Raised when a compliance event is not valid from the record's current state."""

    def __init__(self, message: str, code: str = "409_INVALID_TRANSITION") -> None:
        super().__init__(message, code=code)


class PersistenceError(ComplianceCoreError):
    """Raised when a repository fails to load or save rows."""


class SweepInProgressError(ComplianceCoreError):
    """Raised when another sweep holds the lease."""

    def __init__(self, message: str, code: str = "409_SWEEP_IN_PROGRESS") -> None:
        super().__init__(message, code=code)


class NotificationError(ComplianceCoreError):
    """Raised by notifiers when a reminder cannot be delivered."""

    def __init__(self, message: str, code: str = "502_NOTIFICATION") -> None:
        super().__init__(message, code=code)
