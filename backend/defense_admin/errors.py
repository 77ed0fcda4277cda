"""
Exceptions raised by the defense administration engine.

Engine components raise these; the service facade turns them into result
envelopes and the HTTP layer maps ``kind`` to a status code.

Usage:
    from defense_admin.errors import NotFoundError, ValidationFailedError

    if topic is None:
        raise NotFoundError("Topic", topic_code)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Optional

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    """Failure categories exposed to callers."""
    NOT_FOUND = "NotFound"
    VALIDATION_FAILURE = "ValidationFailure"
    CONFLICT = "Conflict"
    AUTHORIZATION_DENIED = "AuthorizationDenied"
    CANCELLED = "Cancelled"
    STORE_FAILURE = "StoreFailure"


class FailureKind(str, Enum):
    """Reasons a proposed placement or roster change is rejected."""
    TOPIC_ALREADY_ASSIGNED = "TopicAlreadyAssigned"
    TOPIC_NOT_ELIGIBLE = "TopicNotEligible"
    TOPIC_NOT_ASSIGNED = "TopicNotAssigned"
    MISSING_CHAIR = "MissingChair"
    INVALID_SCHEDULE = "InvalidSchedule"
    NO_CAPACITY = "NoCapacity"
    SLOT_TAKEN = "SlotTaken"
    LECTURER_CONFLICT = "LecturerConflict"
    SUPERVISOR_CONFLICT = "SupervisorConflict"
    NO_TAG_MATCH = "NoTagMatch"
    INVALID_COMPOSITION = "InvalidComposition"
    CHAIR_NOT_ELIGIBLE = "ChairNotEligible"
    QUOTA_EXCEEDED = "QuotaExceeded"
    DUPLICATE_CODE = "DuplicateCode"
    INVALID_INPUT = "InvalidInput"


@dataclass(frozen=True)
class ValidationFailure:
    """First unmet check of a validation run."""
    kind: FailureKind
    detail: str

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind.value, "detail": self.detail}


class DefenseAdminError(Exception):
    """Base exception for all engine errors"""

    kind: ErrorKind = ErrorKind.VALIDATION_FAILURE

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


class NotFoundError(DefenseAdminError):
    """Unknown business code"""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity_type: str, code: str, message: Optional[str] = None):
        super().__init__(
            message or f"{entity_type} with code '{code}' not found",
            code=f"{entity_type.upper()}_NOT_FOUND",
            details={"entity_type": entity_type, "entity_code": code}
        )
        self.entity_type = entity_type
        self.entity_code = code


class ValidationFailedError(DefenseAdminError):
    """A validation check rejected the request"""

    kind = ErrorKind.VALIDATION_FAILURE

    def __init__(self, failure: ValidationFailure, details: Optional[Dict[str, Any]] = None):
        payload = {"failure_kind": failure.kind.value}
        payload.update(details or {})
        super().__init__(failure.detail, code=failure.kind.value, details=payload)
        self.failure = failure

    @classmethod
    def of(cls, kind: FailureKind, detail: str, **details: Any) -> "ValidationFailedError":
        return cls(ValidationFailure(kind, detail), details or None)


class ConflictError(DefenseAdminError):
    """Stored state no longer matches what the request was validated against"""

    kind = ErrorKind.CONFLICT

    def __init__(self, message: str, blocking: Optional[Iterable[str]] = None):
        details = {"blocking": sorted(blocking)} if blocking is not None else {}
        super().__init__(message, code="CONFLICT", details=details)


class AuthorizationDenied(DefenseAdminError):
    """Caller lacks the administrative role"""

    kind = ErrorKind.AUTHORIZATION_DENIED

    def __init__(self, message: str = "Administrative role required"):
        super().__init__(message, code="NOT_AUTHORIZED")


class OperationCancelled(DefenseAdminError):
    """Caller aborted the request before commit"""

    kind = ErrorKind.CANCELLED

    def __init__(self, operation: str):
        super().__init__(
            f"{operation} was cancelled before commit",
            code="CANCELLED",
            details={"operation": operation}
        )


class StoreFailure(DefenseAdminError):
    """The entity store could not complete a commit"""

    kind = ErrorKind.STORE_FAILURE

    def __init__(self, message: str):
        super().__init__(message, code="STORE_FAILURE")


def raise_if_cancelled(cancel_event: Optional[threading.Event], operation: str) -> None:
    """Called right before a commit; a set event aborts with nothing written."""
    if cancel_event is not None and cancel_event.is_set():
        logger.info("%s cancelled before commit", operation)
        raise OperationCancelled(operation)


__all__ = [
    "raise_if_cancelled",
    "ErrorKind",
    "FailureKind",
    "ValidationFailure",
    "DefenseAdminError",
    "NotFoundError",
    "ValidationFailedError",
    "ConflictError",
    "AuthorizationDenied",
    "OperationCancelled",
    "StoreFailure",
]
