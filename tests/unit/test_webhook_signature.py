"""
Unit tests for Guesty webhook signature verification.
"""

from __future__ import annotations

import hashlib
import hmac

import pytest

from sync_guesty.errors import WebhookVerificationError
from sync_guesty.services.pms_webhooks import verify_guesty_signature

SECRET = "s3cret"
BODY = b'{"event":"reservation.updated"}'
DIGEST = hmac.new(SECRET.encode(), BODY, hashlib.sha256).hexdigest()


@pytest.mark.unit
@pytest.mark.parametrize("header", [DIGEST, f"sha256={DIGEST}", DIGEST.upper()])
def test_valid_signature_formats(header: str) -> None:
    verify_guesty_signature(BODY, header, SECRET)


@pytest.mark.unit
@pytest.mark.parametrize("header", [None, "", "deadbeef", f"sha256={'0' * 64}"])
def test_invalid_signatures_rejected(header: str) -> None:
    with pytest.raises(WebhookVerificationError):
        verify_guesty_signature(BODY, header, SECRET)


@pytest.mark.unit
def test_signature_bound_to_body() -> None:
    """Test that a valid signature for one body does not authenticate another."""
    with pytest.raises(WebhookVerificationError):
        verify_guesty_signature(BODY + b" ", DIGEST, SECRET)
