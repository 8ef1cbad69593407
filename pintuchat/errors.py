"""
Domain exceptions for the messaging core.

Services raise these; the API layer turns them into HTTP responses through
``to_http_exception``. ``DeliveryFailure`` never reaches the API layer.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class DomainException(Exception):
    """Base exception for all messaging errors."""

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

    def headers(self) -> Optional[Dict[str, str]]:
        return None

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
            headers=self.headers(),
        )


class ValidationError(DomainException):
    """Rejected before persistence: bad content, self-addressed message, bad cursor."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(DomainException):
    """The receiver does not exist or cannot be messaged."""

    status_code = status.HTTP_404_NOT_FOUND


class StoreUnavailableError(DomainException):
    """The message store failed; the caller may retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def headers(self) -> Optional[Dict[str, str]]:
        return {"Retry-After": "1"}


class DeliveryFailure(DomainException):
    """A push to a connection or to the realtime bus failed."""
