"""Unit tests for :mod:`budgetbot.partner.classifier`."""

from __future__ import annotations

import pytest

from budgetbot.core.models import ErrorKind
from budgetbot.partner.classifier import (
    BUSINESS_ERRORS,
    classify_error,
    classify_timeout,
    classify_transport,
)


def test_whitelist_detected_from_message() -> None:
    c = classify_error("error_param", "Your IP address 1.2.3.4 is undeclared")
    assert c.kind is ErrorKind.WHITELIST_ERROR
    assert c.whitelist_error
    assert c.fatal_for_shop
    assert not c.retryable


def test_whitelist_wins_over_code() -> None:
    c = classify_error("error_rate_limit", "ip undeclared")
    assert c.whitelist_error
    assert not c.rate_limited


def test_rate_limit_is_retryable() -> None:
    c = classify_error("error_rate_limit", "")
    assert c.kind is ErrorKind.RATE_LIMITED
    assert c.retryable
    assert c.rate_limited
    assert not c.fatal_for_shop


@pytest.mark.parametrize("code", ["error_auth", "error_permission"])
def test_auth_codes_are_fatal(code: str) -> None:
    c = classify_error(code, "invalid access_token")
    assert c.kind is ErrorKind.AUTH_ERROR
    assert c.auth_error
    assert c.fatal_for_shop
    assert not c.retryable


def test_server_error_retryable_without_amplification() -> None:
    c = classify_error("error_server", "internal")
    assert c.kind is ErrorKind.SERVER_ERROR
    assert c.retryable
    assert not c.rate_limited


@pytest.mark.parametrize("code", sorted(BUSINESS_ERRORS))
def test_business_errors_scoped_to_schedule(code: str) -> None:
    c = classify_error(code, "whatever")
    assert c.kind is ErrorKind.BUSINESS_ERROR
    assert c.business_error
    assert not c.retryable
    assert not c.fatal_for_shop
    assert c.friendly_message == BUSINESS_ERRORS[code]


def test_unknown_carries_message_and_code() -> None:
    c = classify_error("error_weird", "Something odd")
    assert c.kind is ErrorKind.UNKNOWN_UPSTREAM_ERROR
    assert c.friendly_message == "Something odd (code: error_weird)"
    assert not c.retryable


def test_unknown_without_message_uses_code() -> None:
    assert classify_error("error_weird", "").friendly_message == "error_weird (code: error_weird)"


def test_classification_is_deterministic() -> None:
    assert classify_error("error_rate_limit", "slow down") == classify_error(
        "error_rate_limit", "slow down"
    )
    assert classify_error("x", "ip undeclared") == classify_error("x", "ip undeclared")


def test_timeout_is_retryable_transport() -> None:
    c = classify_timeout(15)
    assert c.kind is ErrorKind.TRANSPORT_TIMEOUT
    assert c.retryable
    assert "15" in c.friendly_message


def test_other_transport_failures_not_retried() -> None:
    c = classify_transport(ConnectionError("refused"))
    assert c.kind is ErrorKind.UNKNOWN_UPSTREAM_ERROR
    assert not c.retryable
    assert "refused" in c.friendly_message
