"""
Unit tests for operator alerts.
"""

from __future__ import annotations

from unittest.mock import Mock, patch

import pytest
import requests

from sync_guesty.services.alerts import AlertNotifier

BOOKING = {
    "id": "b-1",
    "booking_reference": "LFT-1001",
    "property_key": "kant",
    "guest_first_name": "Anna",
    "guest_last_name": "Schmidt",
    "guest_email": "anna@example.com",
    "guesty_sync_attempts": 0,
}


@pytest.mark.unit
@patch("sync_guesty.services.alerts.requests.post")
def test_disabled_without_recipient(mock_post: Mock) -> None:
    notifier = AlertNotifier(recipient=None, webhook_url="https://hooks.example.com/x")

    notifier.sync_failed(BOOKING, "boom")

    assert notifier.enabled is False
    mock_post.assert_not_called()


@pytest.mark.unit
@patch("sync_guesty.services.alerts.requests.post")
def test_alert_posted_to_webhook(mock_post: Mock) -> None:
    """Test that an enabled notifier posts the booking details and error."""
    notifier = AlertNotifier(recipient="ops@example.com", webhook_url="https://hooks.example.com/x")

    notifier.sync_failed(BOOKING, "Guesty 503")

    alert = mock_post.call_args.kwargs["json"]
    assert alert["to"] == "ops@example.com"
    assert alert["booking_reference"] == "LFT-1001"
    assert alert["error"] == "Guesty 503"
    assert alert["attempts"] == 1


@pytest.mark.unit
@patch("sync_guesty.services.alerts.requests.post")
def test_delivery_failure_is_swallowed(mock_post: Mock) -> None:
    """Test that a failed alert delivery never raises into the sync path."""
    mock_post.side_effect = requests.ConnectionError("relay down")
    notifier = AlertNotifier(recipient="ops@example.com", webhook_url="https://hooks.example.com/x")

    notifier.sync_failed(BOOKING, "Guesty 503")
