"""
Unit tests for the Guesty API client: retries, 401 handling and response parsing.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Optional
from unittest.mock import Mock, patch

import pytest
import requests

from sync_guesty.cache import IssuedToken, TokenCache
from sync_guesty.errors import UpstreamError
from sync_guesty.network.client import GuestyClient, extract_calendar_days, should_retry


def _response(status_code: int, body: Optional[Any] = None) -> Mock:
    res = Mock(status_code=status_code, headers={}, content=b"{}" if body is not None else b"")
    res.json.return_value = body
    if status_code >= 400:
        res.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    else:
        res.raise_for_status.return_value = None
    return res


@pytest.mark.unit
def test_should_retry_rules() -> None:
    """Test the retry matrix: 429 always, 5xx and timeouts only for GET."""
    assert should_retry("POST", _response(429), None) is True
    assert should_retry("GET", _response(503), None) is True
    assert should_retry("POST", _response(503), None) is False
    assert should_retry("GET", None, requests.Timeout()) is True
    assert should_retry("POST", None, requests.Timeout()) is False
    assert should_retry("GET", _response(404), None) is False


@pytest.mark.unit
@pytest.mark.parametrize(
    "body",
    [
        {"data": {"days": [{"date": "2026-11-01"}]}},
        {"days": [{"date": "2026-11-01"}]},
        {"data": [{"date": "2026-11-01"}]},
        [{"date": "2026-11-01"}],
    ],
)
def test_extract_calendar_days_shapes(body: Any) -> None:
    """Test that all known calendar response shapes yield the day list."""
    assert extract_calendar_days(body) == [{"date": "2026-11-01"}]


@pytest.mark.unit
@patch("sync_guesty.network.client.time.sleep")
@patch("sync_guesty.network.client.requests.request")
def test_get_retried_after_server_error(mock_request: Mock, mock_sleep: Mock) -> None:
    """Test that a GET is retried after a 503 and returns the second answer."""
    mock_request.side_effect = [_response(503), _response(200, {"days": []})]
    client = GuestyClient(lambda: "tok")

    assert client.get_calendar("L1", date(2026, 11, 1), date(2026, 11, 3)) == []
    assert mock_request.call_count == 2
    mock_sleep.assert_called_once()


@pytest.mark.unit
@patch("sync_guesty.network.client.time.sleep")
@patch("sync_guesty.network.client.requests.request")
def test_get_gives_up_after_max_retries(mock_request: Mock, mock_sleep: Mock) -> None:
    """Test that persistent 5xx raises UpstreamError after max_retries + 1 attempts."""
    mock_request.side_effect = [_response(500), _response(500), _response(500)]
    client = GuestyClient(lambda: "tok", max_retries=2)

    with pytest.raises(UpstreamError) as exc_info:
        client.get_listing("L1")

    assert exc_info.value.status_code == 500
    assert mock_request.call_count == 3


@pytest.mark.unit
@patch("sync_guesty.network.client.time.sleep")
@patch("sync_guesty.network.client.requests.request")
def test_post_not_retried_on_server_error(mock_request: Mock, mock_sleep: Mock) -> None:
    """Test that a failed reservation create is not blindly re-posted."""
    mock_request.return_value = _response(502)
    client = GuestyClient(lambda: "tok")

    with pytest.raises(UpstreamError):
        client.create_reservation({"listingId": "L1"})

    assert mock_request.call_count == 1
    mock_sleep.assert_not_called()


@pytest.mark.unit
@patch("sync_guesty.network.client.time.sleep")
@patch("sync_guesty.network.client.requests.request")
def test_rate_limited_post_is_retried(mock_request: Mock, mock_sleep: Mock) -> None:
    """Test that a 429 is retried (Guesty did not process it) and Retry-After is honoured."""
    limited = _response(429)
    limited.headers = {"Retry-After": "2"}
    mock_request.side_effect = [limited, _response(200, {"_id": "res_456"})]
    client = GuestyClient(lambda: "tok")

    assert client.create_reservation({"listingId": "L1"}) == "res_456"
    mock_sleep.assert_called_once_with(2.0)


@pytest.mark.unit
@patch("sync_guesty.network.client.requests.request")
def test_unauthorized_invalidates_token_and_retries(mock_request: Mock) -> None:
    """Test that a 401 drops the cached token and the retry carries a fresh one."""
    issuer = Mock(side_effect=[IssuedToken("tok-1", 86400), IssuedToken("tok-2", 86400)])
    tokens = TokenCache(issuer=issuer)
    client = GuestyClient(tokens.get_token, on_unauthorized=tokens.invalidate)
    mock_request.side_effect = [_response(401), _response(200, {"_id": "L1"})]

    assert client.get_listing("L1") == {"_id": "L1"}

    first_auth = mock_request.call_args_list[0].kwargs["headers"]["Authorization"]
    second_auth = mock_request.call_args_list[1].kwargs["headers"]["Authorization"]
    assert first_auth == "Bearer tok-1"
    assert second_auth == "Bearer tok-2"


@pytest.mark.unit
@patch("sync_guesty.network.client.requests.request")
def test_calendar_request_uses_timeout_and_range(mock_request: Mock) -> None:
    """Test that the calendar call passes the date range and a bounded timeout."""
    mock_request.return_value = _response(200, {"data": {"days": []}})
    client = GuestyClient(lambda: "tok", timeout=7)

    client.get_calendar("L1", date(2026, 11, 1), date(2027, 5, 1))

    kwargs = mock_request.call_args.kwargs
    assert kwargs["params"] == {"from": "2026-11-01", "to": "2027-05-01"}
    assert kwargs["timeout"] == 7
    assert mock_request.call_args.args[1].endswith("listings/L1/calendar")


@pytest.mark.unit
@patch("sync_guesty.network.client.requests.request")
def test_create_reservation_without_id_raises(mock_request: Mock) -> None:
    mock_request.return_value = _response(200, {"status": "ok"})
    client = GuestyClient(lambda: "tok")

    with pytest.raises(UpstreamError, match="no id"):
        client.create_reservation({})


@pytest.mark.unit
@patch("sync_guesty.network.client.requests.request")
def test_get_reservation(mock_request: Mock) -> None:
    mock_request.return_value = _response(200, {"_id": "res_456", "status": "confirmed"})
    client = GuestyClient(lambda: "tok")

    assert client.get_reservation("res_456")["status"] == "confirmed"
    assert mock_request.call_args.args[0] == "GET"
    assert mock_request.call_args.args[1].endswith("reservations/res_456")
