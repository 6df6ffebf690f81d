"""Domain error taxonomy and explicit result types.

Services return ``Ok`` or ``Err`` instead of raising for expected failures
(bad input, capacity, timing, provider outage). Routers translate ``Err``
into HTTP responses via ``http_status``.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar, Union

from fastapi import HTTPException

T = TypeVar("T")


class ErrorCode(Enum):
    """Domain error codes"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    CAPACITY_ERROR = "CAPACITY_ERROR"
    TIMING_ERROR = "TIMING_ERROR"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    NOT_FOUND = "NOT_FOUND"
    WEBHOOK_SIGNATURE_ERROR = "WEBHOOK_SIGNATURE_ERROR"


HTTP_STATUS = {
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.CAPACITY_ERROR: 400,
    ErrorCode.TIMING_ERROR: 400,
    ErrorCode.PROVIDER_ERROR: 500,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.WEBHOOK_SIGNATURE_ERROR: 400,
}


@dataclass(frozen=True)
class DomainError(Exception):
    """Base domain error with code and user-safe message"""

    code: ErrorCode
    message: str

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self.code]

    def to_detail(self) -> dict:
        return {"code": self.code.value, "message": self.message}


class ValidationError(DomainError):
    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.VALIDATION_ERROR, message=message)


class CapacityError(DomainError):
    def __init__(self, available: int, requested: int) -> None:
        super().__init__(
            code=ErrorCode.CAPACITY_ERROR,
            message="Not enough places available",
        )
        self.available = available
        self.requested = requested


class TimingError(DomainError):
    def __init__(self, message: str = "Event has already started") -> None:
        super().__init__(code=ErrorCode.TIMING_ERROR, message=message)


class ProviderError(DomainError):
    """External payment provider failure; ``message`` is already redacted when needed"""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(code=ErrorCode.PROVIDER_ERROR, message=message)
        self.provider = provider


class NotFoundError(DomainError):
    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(code=ErrorCode.NOT_FOUND, message=message)


class WebhookSignatureError(DomainError):
    def __init__(self, message: str = "Invalid webhook signature") -> None:
        super().__init__(code=ErrorCode.WEBHOOK_SIGNATURE_ERROR, message=message)


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    error: DomainError


Result = Union[Ok[T], Err]


def to_http_exception(error: DomainError, status_code: Optional[int] = None) -> HTTPException:
    """Translate a domain error into an HTTPException with a structured detail"""
    return HTTPException(status_code or error.http_status, detail=error.to_detail())
