# backend/app/core/exceptions.py
"""
Domain-specific exceptions for the lesson registration engine.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
Rejections always carry the complete list of violations or conflicts
in ``details`` so a caller can fix every issue in one round trip.
"""

from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        """Convert to an HTTPException using the class status code."""
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when field or rule validation fails. Never has side effects."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        code: Optional[str] = None,
    ) -> None:
        self.errors = list(errors or [])
        super().__init__(message, code=code or "VALIDATION_FAILED", details={"errors": self.errors})


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class EligibilityException(BusinessRuleException):
    """Raised when a student is not eligible to enroll (age, grade, parent contact)."""

    def __init__(self, errors: List[str], message: Optional[str] = None) -> None:
        self.errors = list(errors)
        super().__init__(
            message=message or f"Student not eligible for enrollment: {', '.join(self.errors)}",
            code="NOT_ELIGIBLE",
            details={"errors": self.errors},
        )


class RegistrationConflictException(ConflictException):
    """Raised when a registration collides with existing registrations."""

    def __init__(
        self,
        conflicts: List[Dict[str, Any]],
        message: Optional[str] = None,
    ) -> None:
        self.conflicts = list(conflicts)
        joined = "; ".join(str(c.get("message", "")) for c in self.conflicts)
        super().__init__(
            message=message or f"Registration conflicts detected: {joined}",
            code="REGISTRATION_CONFLICT",
            details={"conflicts": self.conflicts},
        )


class ApprovalRequiredException(BusinessRuleException):
    """
    Raised by the cancellation workflow when managerial approval is needed.

    Not a failure: the application service turns it into a structured
    ``pending_approval`` result without touching storage.
    """

    status_code = status.HTTP_202_ACCEPTED

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message=message, code="APPROVAL_REQUIRED", details=details)


class InvalidStatusTransitionException(BusinessRuleException):
    """Raised when a registration status change is not in the allowed transition set."""

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(
            message=f"Cannot change registration status from {current} to {requested}",
            code="INVALID_STATUS_TRANSITION",
            details={"current_status": current, "requested_status": requested},
        )


class UnitOfWorkDisposedException(ServiceException):
    """Raised when a disposed unit of work is asked for a repository."""

    def __init__(self) -> None:
        super().__init__("UnitOfWork has been disposed", code="UNIT_OF_WORK_DISPOSED")


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """


class StorageException(RepositoryException, DomainException):
    """Wraps lower-layer I/O failures from the backing store."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        DomainException.__init__(self, message, code="STORAGE_FAILURE", details=details)
