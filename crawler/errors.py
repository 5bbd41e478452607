"""
Error taxonomy for the crawl engine.

Every failure that crosses a stage boundary is expressed as a ``DomainError``.
Its ``retryable`` flag is derived from ``type`` once, at construction, so
callers can branch on it without re-deriving classification.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

import requests
from sqlalchemy.exc import (
    DBAPIError,
    DisconnectionError,
    IntegrityError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from crawler.workers.cancellation import OperationCancelledError


class ErrorType(str, Enum):
    PARSING_TEMPORARY = "parsing_temporary"
    PARSING_PERMANENT = "parsing_permanent"
    BUSINESS = "business"
    VALIDATION = "validation"
    INFRASTRUCTURE = "infrastructure"
    DATABASE = "database"
    NETWORK = "network"
    EXTERNAL = "external"


# DATABASE is deliberately absent: connection-level failures are classified as
# INFRASTRUCTURE by classify_exception, constraint and data errors stay DATABASE.
_RETRYABLE_TYPES: frozenset[ErrorType] = frozenset(
    {
        ErrorType.PARSING_TEMPORARY,
        ErrorType.NETWORK,
        ErrorType.EXTERNAL,
        ErrorType.INFRASTRUCTURE,
    }
)

_TRANSIENT_MARKERS = ("EOF", "connection reset", "timeout", "timed out")


def is_retryable_type(error_type: ErrorType) -> bool:
    return ErrorType(error_type) in _RETRYABLE_TYPES


class DomainError(Exception):
    """
    Typed crawl failure carrying structured context and the original cause.
    """

    def __init__(
        self,
        error_type: ErrorType | str,
        code: str,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        cause: BaseException | None = None,
        trace_id: str | None = None,
    ) -> None:
        self.type = ErrorType(error_type)
        self.code = code
        self.message = message
        self.context: dict[str, Any] = dict(context or {})
        self.cause = cause
        self.trace_id = trace_id
        self.timestamp = datetime.now(timezone.utc)
        self._retryable = is_retryable_type(self.type)
        super().__init__(str(self))
        if cause is not None:
            self.__cause__ = cause

    @property
    def retryable(self) -> bool:
        return self._retryable

    def __str__(self) -> str:
        if self.cause is not None:
            return f"[{self.type.value}:{self.code}] {self.message}: {self.cause}"
        return f"[{self.type.value}:{self.code}] {self.message}"

    def matches(self, other: DomainError) -> bool:
        return self.type == other.type and self.code == other.code

    def with_context(self, **values: Any) -> DomainError:
        self.context.update(values)
        return self

    def with_trace_id(self, trace_id: str | None) -> DomainError:
        if trace_id:
            self.trace_id = trace_id
        return self

    def root_cause(self) -> BaseException:
        current: BaseException = self
        while True:
            nested = current.cause if isinstance(current, DomainError) else current.__cause__
            if nested is None:
                return current
            current = nested

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type.value,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.context:
            payload["context"] = self.context
        if self.trace_id:
            payload["trace_id"] = self.trace_id
        if self.cause is not None:
            payload["cause"] = str(self.cause)
        return payload


def wrap_error(
    cause: BaseException,
    error_type: ErrorType | str,
    code: str,
    message: str,
    **context: Any,
) -> DomainError:
    return DomainError(error_type, code, message, context=context, cause=cause)


def new_not_found_error(resource: str, external_id: str, *, url: str | None = None) -> DomainError:
    context: dict[str, Any] = {"resource": resource, "external_id": external_id}
    if url:
        context["url"] = url
    return DomainError(
        ErrorType.PARSING_PERMANENT,
        "NOT_FOUND",
        f"{resource} {external_id} not found",
        context=context,
    )


def new_invalid_format_error(
    field: str,
    value: Any,
    *,
    cause: BaseException | None = None,
) -> DomainError:
    return DomainError(
        ErrorType.PARSING_PERMANENT,
        "INVALID_FORMAT",
        f"invalid format for {field}",
        context={"field": field, "value": value},
        cause=cause,
    )


def new_rate_limit_error(url: str, *, retry_after: str | None = None) -> DomainError:
    context: dict[str, Any] = {"url": url, "status_code": 429}
    if retry_after:
        context["retry_after"] = retry_after
    return DomainError(ErrorType.EXTERNAL, "RATE_LIMITED", "rate limited by source", context=context)


def new_network_error(url: str, cause: BaseException | None = None) -> DomainError:
    return DomainError(
        ErrorType.NETWORK,
        "NETWORK_ERROR",
        "transport failure",
        context={"url": url},
        cause=cause,
    )


def new_server_error(url: str, status_code: int) -> DomainError:
    return DomainError(
        ErrorType.EXTERNAL,
        "SERVER_ERROR",
        f"unexpected status: {status_code}",
        context={"url": url, "status_code": status_code},
    )


def new_access_denied_error(url: str, status_code: int) -> DomainError:
    return DomainError(
        ErrorType.BUSINESS,
        "ACCESS_DENIED",
        f"access denied: {status_code}",
        context={"url": url, "status_code": status_code},
    )


def new_http_status_error(url: str, status_code: int, *, retry_after: str | None = None) -> DomainError:
    """
    Classify a non-2xx response.
    """

    if status_code == 404:
        error = new_not_found_error("page", url, url=url)
        return error.with_context(status_code=status_code)
    if status_code == 429:
        return new_rate_limit_error(url, retry_after=retry_after)
    if status_code in {401, 403}:
        return new_access_denied_error(url, status_code)
    if status_code >= 500:
        return new_server_error(url, status_code)
    return DomainError(
        ErrorType.VALIDATION,
        "BAD_REQUEST",
        f"unexpected status: {status_code}",
        context={"url": url, "status_code": status_code},
    )


def new_validation_error(field: str, reason: str) -> DomainError:
    return DomainError(
        ErrorType.VALIDATION,
        "VALIDATION_FAILED",
        f"{field}: {reason}",
        context={"field": field},
    )


def new_business_error(code: str, message: str, **context: Any) -> DomainError:
    return DomainError(ErrorType.BUSINESS, code, message, context=context)


def new_parse_error(
    entity: str,
    url: str,
    cause: BaseException | None = None,
    *,
    permanent: bool = False,
) -> DomainError:
    error_type = ErrorType.PARSING_PERMANENT if permanent else ErrorType.PARSING_TEMPORARY
    return DomainError(
        error_type,
        "PARSE_FAILED",
        f"failed to parse {entity}",
        context={"entity": entity, "url": url},
        cause=cause,
    )


def new_database_error(operation: str, cause: BaseException) -> DomainError:
    """
    Classify a SQLAlchemy failure: connectivity is retryable, data is not.
    """

    if _is_connection_failure(cause):
        return DomainError(
            ErrorType.INFRASTRUCTURE,
            "DB_UNAVAILABLE",
            f"database unavailable during {operation}",
            context={"operation": operation},
            cause=cause,
        )
    code = "CONSTRAINT_VIOLATION" if isinstance(cause, IntegrityError) else "DB_ERROR"
    return DomainError(
        ErrorType.DATABASE,
        code,
        f"database failure during {operation}",
        context={"operation": operation},
        cause=cause,
    )


def _is_connection_failure(exc: BaseException) -> bool:
    if isinstance(exc, (DisconnectionError, PoolTimeoutError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, OperationalError) and not isinstance(exc, IntegrityError)


def is_transient_transport_error(exc: BaseException) -> bool:
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    text = str(exc)
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def classify_exception(exc: BaseException, **context: Any) -> DomainError:
    """
    Map an arbitrary exception onto the taxonomy.
    """

    if isinstance(exc, DomainError):
        return exc.with_context(**context) if context else exc
    if isinstance(exc, OperationCancelledError):
        return wrap_error(exc, ErrorType.INFRASTRUCTURE, "CANCELLED", "operation cancelled", **context)
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        url = exc.response.url or context.get("url", "")
        return new_http_status_error(url, exc.response.status_code).with_context(**context)
    if isinstance(exc, requests.RequestException) or is_transient_transport_error(exc):
        return new_network_error(context.get("url", ""), exc).with_context(**context)
    if isinstance(exc, SQLAlchemyError):
        return new_database_error(context.get("operation", "write"), exc).with_context(**context)
    if isinstance(exc, (ValueError, KeyError, IndexError, TypeError)):
        return wrap_error(exc, ErrorType.PARSING_PERMANENT, "INVALID_DATA", "invalid data", **context)
    return wrap_error(exc, ErrorType.INFRASTRUCTURE, "UNKNOWN_ERROR", "unexpected error occurred", **context)


def should_retry(exc: BaseException) -> bool:
    """
    True when a failed unit is worth queueing again.

    Cancellation is never a failure of the unit, whether it arrives raw or
    already wrapped in a DomainError.
    """

    if isinstance(exc, OperationCancelledError):
        return False
    error = classify_exception(exc)
    return error.retryable and not isinstance(error.root_cause(), OperationCancelledError)
