"""
Error logging and in-process retry on top of the error taxonomy.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from crawler.backoff import BackoffStrategy, ExponentialJitterBackoff
from crawler.errors import DomainError, ErrorType, classify_exception, should_retry
from crawler.logging_utils import log_event
from crawler.parsing_context import parsing_context_from
from crawler.workers.cancellation import CancellationToken, OperationCancelledError

logger = logging.getLogger(__name__)

_TEMPORARY_TYPES = frozenset({ErrorType.PARSING_TEMPORARY, ErrorType.NETWORK})
_PERMANENT_TYPES = frozenset(
    {ErrorType.PARSING_PERMANENT, ErrorType.BUSINESS, ErrorType.VALIDATION}
)


class ErrorHandler:
    """
    Classifies, logs and optionally retries failed operations.
    """

    def __init__(
        self,
        *,
        max_retries: int = 3,
        backoff: BackoffStrategy | None = None,
    ) -> None:
        self._max_retries = max(0, max_retries)
        self._backoff = backoff or ExponentialJitterBackoff()

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def handle(self, exc: BaseException, *, token: CancellationToken | None = None) -> DomainError:
        """
        Classify and log one error without retrying.
        """

        error = classify_exception(exc)
        context = parsing_context_from(token)
        if context is not None:
            error.with_trace_id(context.session_id)
        self._log(error, context_fields=context.to_log_fields() if context else None)
        return error

    def handle_with_retry(
        self,
        exc: BaseException,
        operation: Callable[[], Any],
        *,
        token: CancellationToken,
    ) -> DomainError | None:
        """
        Retry ``operation`` while the failure stays retryable.

        Returns None once an attempt succeeds, otherwise the last error.
        """

        error = self.handle(exc, token=token)
        if not should_retry(error):
            return error

        for attempt in range(self._max_retries):
            wait_seconds = self._backoff.delay(attempt)
            log_event(
                logger,
                logging.INFO,
                "operation_retry_scheduled",
                attempt=attempt + 1,
                max_retries=self._max_retries,
                wait_seconds=round(wait_seconds, 3),
                error_code=error.code,
            )
            if token.wait(wait_seconds):
                return classify_exception(OperationCancelledError("retry aborted by cancellation"))
            try:
                operation()
            except Exception as retry_exc:  # noqa: BLE001
                error = self.handle(retry_exc, token=token)
                if not should_retry(error):
                    return error
                continue
            log_event(logger, logging.INFO, "operation_retry_succeeded", attempt=attempt + 1)
            return None

        log_event(
            logger,
            logging.ERROR,
            "operation_retry_exhausted",
            max_retries=self._max_retries,
            error_code=error.code,
        )
        return error

    @staticmethod
    def _log(error: DomainError, *, context_fields: dict[str, Any] | None) -> None:
        fields = error.to_dict()
        if context_fields:
            fields["parsing_context"] = context_fields
        if error.type in _TEMPORARY_TYPES:
            log_event(logger, logging.WARNING, "temporary_error", **fields)
        elif error.type in _PERMANENT_TYPES:
            log_event(logger, logging.ERROR, "permanent_error", **fields)
        else:
            log_event(logger, logging.ERROR, "error", **fields)
