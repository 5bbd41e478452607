"""
Single-host HTTP client with a hard inter-request delay and transport retries.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping

import requests

from crawler.backoff import BackoffStrategy, StepBackoff
from crawler.errors import (
    DomainError,
    ErrorType,
    is_transient_transport_error,
    new_http_status_error,
    new_network_error,
)
from crawler.logging_utils import log_event
from crawler.workers.cancellation import CancellationToken, OperationCancelledError

logger = logging.getLogger(__name__)

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

_BASE_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "ru-RU,ru;q=0.9,en;q=0.8",
    "Connection": "keep-alive",
}


class FetchClient:
    """
    HTTP client for one source host.

    All requests made through one instance are serialized behind a lock; the
    configured delay is measured from the end of the previous request to the
    start of the next one. Transport failures are retried, non-2xx statuses
    fail immediately.
    """

    def __init__(
        self,
        *,
        source: str,
        base_url: str,
        delay_seconds: float = 0.15,
        timeout_seconds: float = 30.0,
        max_attempts: int = 3,
        backoff: BackoffStrategy | None = None,
        user_agent: str = BROWSER_USER_AGENT,
        session: requests.Session | None = None,
    ) -> None:
        self.source = source
        self.base_url = base_url.rstrip("/")
        self._delay_seconds = max(0.0, delay_seconds)
        self._timeout_seconds = timeout_seconds
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff or StepBackoff()
        self._headers = {"User-Agent": user_agent, **_BASE_HEADERS}
        self._session = session or requests.Session()
        self._lock = threading.Lock()
        self._last_request_end: float | None = None

    @property
    def delay_seconds(self) -> float:
        return self._delay_seconds

    def resolve_url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self.base_url}{path}"

    def get(self, path: str, *, token: CancellationToken | None = None) -> bytes:
        """
        GET ``path`` relative to the base URL (or an absolute URL).
        """

        return self._request_rate_limited("GET", self.resolve_url(path), form=None, token=token)

    def get_url(self, url: str, *, token: CancellationToken | None = None) -> bytes:
        return self._request_rate_limited("GET", url, form=None, token=token)

    def post_form(
        self,
        path: str,
        form: Mapping[str, str],
        *,
        token: CancellationToken | None = None,
    ) -> bytes:
        """
        POST form-encoded fields, e.g. a replayed ASP.NET postback.
        """

        return self._request_rate_limited("POST", self.resolve_url(path), form=dict(form), token=token)

    def close(self) -> None:
        self._session.close()

    def _request_rate_limited(
        self,
        method: str,
        url: str,
        *,
        form: dict[str, str] | None,
        token: CancellationToken | None,
    ) -> bytes:
        with self._lock:
            if token is not None:
                token.raise_if_cancelled()
            if self._last_request_end is not None:
                remaining = self._delay_seconds - (time.monotonic() - self._last_request_end)
                if remaining > 0:
                    self._sleep(remaining, token)
            try:
                return self._request_with_retry(method, url, form=form, token=token)
            finally:
                self._last_request_end = time.monotonic()

    def _request_with_retry(
        self,
        method: str,
        url: str,
        *,
        form: dict[str, str] | None,
        token: CancellationToken | None,
    ) -> bytes:
        headers = dict(self._headers)
        if form is not None:
            headers["Content-Type"] = "application/x-www-form-urlencoded"

        last_error: Exception | None = None
        for attempt in range(1, self._max_attempts + 1):
            started = time.monotonic()
            log_event(
                logger,
                logging.DEBUG,
                "http_request",
                source=self.source,
                method=method,
                url=url,
                attempt=attempt,
            )
            try:
                response = self._session.request(
                    method,
                    url,
                    data=form,
                    headers=headers,
                    timeout=self._timeout_seconds,
                )
            except (requests.exceptions.InvalidURL, requests.exceptions.MissingSchema) as exc:
                raise DomainError(
                    ErrorType.VALIDATION,
                    "INVALID_URL",
                    "request URL is invalid",
                    context={"url": url},
                    cause=exc,
                ) from exc
            except requests.RequestException as exc:
                last_error = exc
                elapsed_ms = int((time.monotonic() - started) * 1000)
                log_event(
                    logger,
                    logging.WARNING,
                    "http_request_failed",
                    source=self.source,
                    url=url,
                    attempt=attempt,
                    elapsed_ms=elapsed_ms,
                    error=str(exc),
                )
                if is_transient_transport_error(exc) and attempt < self._max_attempts:
                    self._sleep(self._backoff.delay(attempt), token)
                    continue
                raise new_network_error(url, exc).with_context(attempts=attempt) from exc

            elapsed_ms = int((time.monotonic() - started) * 1000)
            if not 200 <= response.status_code < 300:
                log_event(
                    logger,
                    logging.WARNING,
                    "http_unexpected_status",
                    source=self.source,
                    url=url,
                    status_code=response.status_code,
                    elapsed_ms=elapsed_ms,
                )
                raise new_http_status_error(
                    url,
                    response.status_code,
                    retry_after=response.headers.get("Retry-After"),
                )

            body = response.content
            log_event(
                logger,
                logging.DEBUG,
                "http_response",
                source=self.source,
                url=url,
                elapsed_ms=elapsed_ms,
                size=len(body),
            )
            return body

        raise new_network_error(url, last_error).with_context(attempts=self._max_attempts)

    @staticmethod
    def _sleep(seconds: float, token: CancellationToken | None) -> None:
        if token is None:
            time.sleep(seconds)
            return
        if token.wait(seconds):
            raise OperationCancelledError("fetch aborted by cancellation")
