"""
tests/test_errors.py

Pytest unit tests for the crawl error taxonomy, backoff curves and the
logging ErrorHandler.

Coverage
--------
- HTTP status classification and the derived retryable flag
- Transport, database and generic exception classification
- DomainError context, trace id, root cause and dict contract
- Backoff curves for every named strategy
- ErrorHandler.handle logs exactly once with the parsing context
- ErrorHandler.handle_with_retry success, exhaustion, permanent and cancelled paths
"""

from __future__ import annotations

import json
import logging
import random

import pytest
import requests
from sqlalchemy.exc import IntegrityError, OperationalError

from crawler.backoff import (
    ExponentialJitterBackoff,
    LinearBackoff,
    PowerOfTwoBackoff,
    StepBackoff,
)
from crawler.error_handler import ErrorHandler
from crawler.errors import (
    DomainError,
    ErrorType,
    classify_exception,
    is_retryable_type,
    new_database_error,
    new_access_denied_error,
    new_business_error,
    new_http_status_error,
    new_invalid_format_error,
    new_network_error,
    new_not_found_error,
    new_parse_error,
    new_rate_limit_error,
    new_server_error,
    new_validation_error,
    should_retry,
    wrap_error,
)
from crawler.parsing_context import ParsingContext, parsing_context_from, with_parsing_context
from crawler.workers.cancellation import CancellationToken, OperationCancelledError


class _NoWait:
    def delay(self, attempt: int) -> float:
        return 0.0


def _events(caplog, logger_name: str) -> list[dict]:
    return [json.loads(record.getMessage()) for record in caplog.records if record.name == logger_name]


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class TestHttpStatusClassification:
    @pytest.mark.parametrize(
        ("status", "error_type", "code", "retryable"),
        [
            (404, ErrorType.PARSING_PERMANENT, "NOT_FOUND", False),
            (429, ErrorType.EXTERNAL, "RATE_LIMITED", True),
            (403, ErrorType.BUSINESS, "ACCESS_DENIED", False),
            (500, ErrorType.EXTERNAL, "SERVER_ERROR", True),
            (503, ErrorType.EXTERNAL, "SERVER_ERROR", True),
            (400, ErrorType.VALIDATION, "BAD_REQUEST", False),
        ],
    )
    def test_status_maps_to_type(self, status, error_type, code, retryable) -> None:
        error = new_http_status_error("https://example.test/x", status)
        assert error.type == error_type
        assert error.code == code
        assert error.retryable is retryable
        assert error.context["status_code"] == status

    def test_retry_after_is_kept_for_rate_limits(self) -> None:
        error = new_http_status_error("https://example.test/x", 429, retry_after="120")
        assert error.context["retry_after"] == "120"


class TestRetryableTypes:
    def test_database_type_is_not_retryable(self) -> None:
        assert is_retryable_type(ErrorType.DATABASE) is False

    @pytest.mark.parametrize(
        "error_type",
        [ErrorType.PARSING_TEMPORARY, ErrorType.NETWORK, ErrorType.EXTERNAL, ErrorType.INFRASTRUCTURE],
    )
    def test_transient_types_are_retryable(self, error_type) -> None:
        assert DomainError(error_type, "X", "x").retryable is True

    def test_parse_error_permanence_switch(self) -> None:
        assert new_parse_error("team", "u").retryable is True
        assert new_parse_error("team", "u", permanent=True).retryable is False


class TestClassifyException:
    def test_domain_error_passes_through(self) -> None:
        original = new_http_status_error("u", 500)
        assert classify_exception(original) is original

    def test_context_is_merged_into_domain_error(self) -> None:
        error = classify_exception(new_http_status_error("u", 500), job_type="team")
        assert error.context["job_type"] == "team"

    def test_connection_error_is_network(self) -> None:
        error = classify_exception(requests.ConnectionError("refused"), url="https://example.test")
        assert error.type == ErrorType.NETWORK
        assert error.context["url"] == "https://example.test"
        assert error.retryable

    def test_transient_text_is_network(self) -> None:
        error = classify_exception(RuntimeError("connection reset by peer"))
        assert error.type == ErrorType.NETWORK

    def test_value_error_is_permanent_parse_failure(self) -> None:
        error = classify_exception(ValueError("bad date"))
        assert error.type == ErrorType.PARSING_PERMANENT
        assert error.code == "INVALID_DATA"
        assert not error.retryable

    def test_unknown_exception_is_infrastructure(self) -> None:
        error = classify_exception(RuntimeError("boom"))
        assert error.type == ErrorType.INFRASTRUCTURE
        assert error.code == "UNKNOWN_ERROR"

    def test_cancellation_is_not_retried(self) -> None:
        assert should_retry(OperationCancelledError("stop")) is False
        assert classify_exception(OperationCancelledError("stop")).code == "CANCELLED"

    def test_wrapped_cancellation_is_not_retried(self) -> None:
        wrapped = classify_exception(OperationCancelledError("stop"))
        assert wrapped.retryable
        assert should_retry(wrapped) is False
        assert should_retry(wrap_error(wrapped, ErrorType.NETWORK, "FETCH_FAILED", "fetch failed")) is False


class TestDatabaseClassification:
    def test_connection_failure_is_retryable_infrastructure(self) -> None:
        cause = OperationalError("INSERT ...", {}, Exception("server closed the connection"))
        error = new_database_error("upsert", cause)
        assert error.type == ErrorType.INFRASTRUCTURE
        assert error.code == "DB_UNAVAILABLE"
        assert error.retryable

    def test_constraint_violation_is_not_retryable(self) -> None:
        cause = IntegrityError("INSERT ...", {}, Exception("duplicate key"))
        error = classify_exception(cause, operation="upsert")
        assert error.type == ErrorType.DATABASE
        assert error.code == "CONSTRAINT_VIOLATION"
        assert not error.retryable


class TestConstructionHelpers:
    @pytest.mark.parametrize(
        ("error", "error_type", "code", "retryable"),
        [
            (new_not_found_error("team", "3"), ErrorType.PARSING_PERMANENT, "NOT_FOUND", False),
            (new_invalid_format_error("birth_date", "31.02"), ErrorType.PARSING_PERMANENT, "INVALID_FORMAT", False),
            (new_rate_limit_error("https://x", retry_after="30"), ErrorType.EXTERNAL, "RATE_LIMITED", True),
            (new_network_error("https://x"), ErrorType.NETWORK, "NETWORK_ERROR", True),
            (new_server_error("https://x", 502), ErrorType.EXTERNAL, "SERVER_ERROR", True),
            (new_access_denied_error("https://x", 403), ErrorType.BUSINESS, "ACCESS_DENIED", False),
            (new_validation_error("season", "empty"), ErrorType.VALIDATION, "VALIDATION_FAILED", False),
            (new_business_error("SEASON_CLOSED", "season closed"), ErrorType.BUSINESS, "SEASON_CLOSED", False),
        ],
    )
    def test_type_code_and_retryable(self, error, error_type, code, retryable) -> None:
        assert (error.type, error.code, error.retryable) == (error_type, code, retryable)

    def test_context_is_attached(self) -> None:
        assert new_not_found_error("team", "3", url="https://x/Team").context == {
            "resource": "team",
            "external_id": "3",
            "url": "https://x/Team",
        }
        assert new_rate_limit_error("https://x", retry_after="30").context["retry_after"] == "30"
        assert new_business_error("SEASON_CLOSED", "closed", season="2024").context == {"season": "2024"}

    def test_network_error_keeps_cause(self) -> None:
        cause = requests.ConnectionError("refused")
        error = new_network_error("https://x", cause)
        assert error.root_cause() is cause
        assert error.__cause__ is cause


class TestDomainError:
    def test_str_includes_cause(self) -> None:
        error = wrap_error(KeyError("id"), ErrorType.VALIDATION, "MISSING", "missing id")
        assert str(error).startswith("[validation:MISSING] missing id")
        assert "id" in str(error)

    def test_root_cause_follows_chain(self) -> None:
        inner = ValueError("inner")
        middle = wrap_error(inner, ErrorType.BUSINESS, "B", "b")
        outer = wrap_error(middle, ErrorType.EXTERNAL, "E", "e")
        assert outer.root_cause() is inner

    def test_matches_compares_type_and_code(self) -> None:
        assert new_http_status_error("a", 500).matches(new_http_status_error("b", 502))
        assert not new_http_status_error("a", 500).matches(new_http_status_error("a", 404))

    def test_to_dict_contract(self) -> None:
        error = new_http_status_error("u", 502).with_trace_id("abc").with_context(team="x")
        payload = error.to_dict()
        assert payload["type"] == "external"
        assert payload["retryable"] is True
        assert payload["trace_id"] == "abc"
        assert payload["context"]["team"] == "x"
        assert "timestamp" in payload

    def test_blank_trace_id_is_ignored(self) -> None:
        error = new_http_status_error("u", 500).with_trace_id("one").with_trace_id(None)
        assert error.trace_id == "one"


# ---------------------------------------------------------------------------
# Backoff curves
# ---------------------------------------------------------------------------


class TestBackoff:
    def test_linear(self) -> None:
        curve = LinearBackoff(300.0)
        assert [curve.delay(n) for n in range(3)] == [300.0, 600.0, 900.0]

    def test_step(self) -> None:
        curve = StepBackoff()
        assert [curve.delay(n) for n in (1, 2, 3)] == [1.0, 2.0, 3.0]

    def test_power_of_two(self) -> None:
        curve = PowerOfTwoBackoff()
        assert [curve.delay(n) for n in (1, 2, 3)] == [4.0, 8.0, 16.0]

    def test_jitter_stays_within_spread_and_cap(self) -> None:
        curve = ExponentialJitterBackoff(
            initial_seconds=1.0,
            multiplier=2.0,
            max_delay_seconds=5.0,
            jitter=0.2,
            rng=random.Random(7),
        )
        assert 0.8 <= curve.delay(0) <= 1.2
        assert 3.2 <= curve.delay(2) <= 4.8
        assert 4.0 <= curve.delay(10) <= 6.0


# ---------------------------------------------------------------------------
# ErrorHandler
# ---------------------------------------------------------------------------


class TestParsingContext:
    def test_inherited_by_child_tokens(self) -> None:
        context = ParsingContext(source="fhspb", domain="https://x", entity_type="team", entity_id="spb:100:3", url="u")
        token = with_parsing_context(CancellationToken(), context)
        assert parsing_context_from(token.child(timeout_seconds=5)) is context
        assert parsing_context_from(CancellationToken()) is None
        assert parsing_context_from(None) is None

    def test_log_fields(self) -> None:
        context = ParsingContext(
            source="mihf",
            domain="https://x",
            entity_type="player",
            entity_id="501",
            url="u",
            session_id="abc",
        ).with_metadata(attempt=2)
        fields = context.to_log_fields()
        assert fields["session_id"] == "abc"
        assert fields["entity_id"] == "501"
        assert fields["metadata"] == {"attempt": 2}
        assert fields["duration_ms"] >= 0


@pytest.fixture()
def scoped_token() -> CancellationToken:
    context = ParsingContext(
        source="fhspb",
        domain="https://example.test",
        entity_type="team",
        entity_id="spb:100:3",
        url="https://example.test/Team",
    )
    return with_parsing_context(CancellationToken(), context)


class TestErrorHandlerHandle:
    def test_logs_once_with_parsing_context(self, caplog, scoped_token) -> None:
        caplog.set_level(logging.DEBUG)
        error = ErrorHandler().handle(new_http_status_error("u", 500), token=scoped_token)

        events = _events(caplog, "crawler.error_handler")
        assert len(events) == 1
        assert events[0]["event"] == "error"
        assert events[0]["parsing_context"]["entity_id"] == "spb:100:3"
        assert error.trace_id == parsing_context_from(scoped_token).session_id

    def test_temporary_errors_log_as_warning(self, caplog) -> None:
        caplog.set_level(logging.DEBUG)
        ErrorHandler().handle(requests.ConnectionError("refused"))
        records = [r for r in caplog.records if r.name == "crawler.error_handler"]
        assert records[0].levelno == logging.WARNING
        assert json.loads(records[0].getMessage())["event"] == "temporary_error"

    def test_permanent_errors_log_as_error(self, caplog) -> None:
        caplog.set_level(logging.DEBUG)
        ErrorHandler().handle(new_http_status_error("u", 404))
        events = _events(caplog, "crawler.error_handler")
        assert events[0]["event"] == "permanent_error"


class TestErrorHandlerRetry:
    def test_returns_none_once_operation_succeeds(self) -> None:
        calls = {"count": 0}

        def operation() -> None:
            calls["count"] += 1
            if calls["count"] < 2:
                raise new_http_status_error("u", 502)

        handler = ErrorHandler(max_retries=3, backoff=_NoWait())
        result = handler.handle_with_retry(
            new_http_status_error("u", 500),
            operation,
            token=CancellationToken(),
        )
        assert result is None
        assert calls["count"] == 2

    def test_permanent_error_is_not_retried(self) -> None:
        calls = []
        handler = ErrorHandler(max_retries=3, backoff=_NoWait())
        result = handler.handle_with_retry(
            new_http_status_error("u", 404),
            lambda: calls.append(1),
            token=CancellationToken(),
        )
        assert result is not None and result.code == "NOT_FOUND"
        assert calls == []

    def test_exhaustion_returns_last_error(self) -> None:
        calls = []

        def operation() -> None:
            calls.append(1)
            raise new_http_status_error("u", 503)

        handler = ErrorHandler(max_retries=2, backoff=_NoWait())
        result = handler.handle_with_retry(new_http_status_error("u", 500), operation, token=CancellationToken())
        assert result is not None
        assert result.context["status_code"] == 503
        assert len(calls) == 2

    def test_cancelled_token_aborts_retry(self) -> None:
        token = CancellationToken()
        token.cancel()
        calls = []
        handler = ErrorHandler(max_retries=3, backoff=_NoWait())
        result = handler.handle_with_retry(new_http_status_error("u", 500), lambda: calls.append(1), token=token)
        assert result is not None and result.code == "CANCELLED"
        assert calls == []

    def test_negative_max_retries_is_clamped(self) -> None:
        assert ErrorHandler(max_retries=-1).max_retries == 0
