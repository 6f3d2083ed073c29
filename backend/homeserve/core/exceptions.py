# backend/homeserve/core/exceptions.py
"""
Domain-specific exceptions for the homeserve platform.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


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
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when input is malformed or missing."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a booking, wallet, coupon or worker is absent."""

    status_code = status.HTTP_404_NOT_FOUND


class UnauthorizedException(DomainException):
    """Raised when the caller is not authenticated."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def to_http_exception(self) -> HTTPException:
        exc = super().to_http_exception()
        exc.headers = {"WWW-Authenticate": "Bearer"}
        return exc


class ForbiddenException(DomainException):
    """Raised when the actor is neither the booking's customer, its worker, nor an admin."""

    status_code = status.HTTP_403_FORBIDDEN


class StateConflictException(DomainException):
    """
    Raised when an operation conflicts with persisted state.

    Covers illegal transitions, code mismatch or expiry, exhausted or expired
    coupons, coin cap violations and insufficient balances.
    """

    status_code = status.HTTP_400_BAD_REQUEST


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": {},
            },
        )


class ExternalServiceException(ServiceException):
    """Raised when the payment processor call fails. No ledger mutation is performed."""


# Specific business exceptions


class InvalidOtpException(StateConflictException):
    """Raised for any start/completion code failure without revealing the cause."""

    def __init__(self) -> None:
        super().__init__(message="Invalid OTP", code="INVALID_OTP")


class InsufficientBalanceException(StateConflictException):
    """Raised when a debit exceeds the available balance."""

    def __init__(self, message: str = "Insufficient balance", *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="INSUFFICIENT_BALANCE", details=details or {})


class InvalidTransitionException(StateConflictException):
    """Raised when a status change is not permitted from the current status."""

    def __init__(self, current: str, target: str):
        super().__init__(
            message=f"Cannot change status from '{current}' to '{target}'",
            code="INVALID_TRANSITION",
            details={"current_status": current, "requested_status": target},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    Used when data access operations fail, such as connection issues,
    query failures, or constraint violations.
    """
