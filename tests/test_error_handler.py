"""Failure classification and credential masking."""

import httpx
import pytest

from session_guard.error_handler import (
    AttemptResult,
    ErrorClass,
    classify_error,
    mask_credential,
)

REQUEST = httpx.Request("GET", "https://api.example.test/api/orders")


@pytest.mark.parametrize(
    "status_code, expected",
    [
        (401, ErrorClass.AUTHORIZATION),
        (500, ErrorClass.SERVER_ERROR),
        (503, ErrorClass.SERVER_ERROR),
        (400, ErrorClass.CLIENT_ERROR),
        (403, ErrorClass.CLIENT_ERROR),
        (404, ErrorClass.CLIENT_ERROR),
    ],
)
def test_response_classification(status_code, expected):
    classified = classify_error(httpx.Response(status_code, request=REQUEST))
    assert classified.error_class == expected
    assert classified.status_code == status_code


@pytest.mark.parametrize(
    "exc, expected",
    [
        (httpx.ConnectTimeout("t", request=REQUEST), ErrorClass.TIMEOUT),
        (httpx.ReadTimeout("t", request=REQUEST), ErrorClass.TIMEOUT),
        (httpx.PoolTimeout("t", request=REQUEST), ErrorClass.TIMEOUT),
        (httpx.ConnectError("c", request=REQUEST), ErrorClass.NETWORK_UNREACHABLE),
        (httpx.RemoteProtocolError("r", request=REQUEST), ErrorClass.NETWORK_UNREACHABLE),
    ],
)
def test_exception_classification(exc, expected):
    assert classify_error(exc).error_class == expected


def test_status_error_classified_by_its_response():
    response = httpx.Response(502, request=REQUEST)
    exc = httpx.HTTPStatusError("bad gateway", request=REQUEST, response=response)
    assert classify_error(exc).error_class == ErrorClass.SERVER_ERROR


def test_unrelated_exception_is_not_a_transport_failure():
    with pytest.raises(TypeError):
        classify_error(ValueError("nope"))


def test_client_errors_are_not_recoverable():
    assert not classify_error(httpx.Response(422, request=REQUEST)).is_recoverable
    assert classify_error(httpx.Response(401, request=REQUEST)).is_recoverable


def test_attempt_result():
    ok = AttemptResult.from_response(httpx.Response(204, request=REQUEST))
    assert ok.ok and ok.response.status_code == 204

    failed = AttemptResult.from_response(httpx.Response(500, request=REQUEST))
    assert not failed.ok
    assert failed.error.response.status_code == 500

    timed_out = AttemptResult.from_exception(httpx.ReadTimeout("t", request=REQUEST))
    assert timed_out.error.error_class == ErrorClass.TIMEOUT
    assert timed_out.error.response is None


def test_mask_credential():
    assert mask_credential("eyJhbGciOi.payload.signature123") == "...ure123"
    assert mask_credential("short") == "***"
    assert mask_credential(None) == "<none>"
