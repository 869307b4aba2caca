"""
Log masking tests
"""
from pydantic import SecretStr

from orchestrator.core.logger import MASK, mask_secrets


def test_sensitive_keys_are_masked():
    event = mask_secrets(None, "info", {
        "event": "Provider created",
        "credential": "sk-live-secret",
        "Authorization": "Bearer admin",
        "has_credential": True,
    })

    assert event["credential"] == MASK
    assert event["Authorization"] == MASK
    assert event["has_credential"] is True
    assert "sk-live-secret" not in str(event)


def test_secret_values_are_masked_under_any_key():
    event = mask_secrets(None, "info", {"event": "x", "value": SecretStr("hidden")})
    assert event["value"] == MASK


def test_missing_credential_stays_none():
    event = mask_secrets(None, "info", {"event": "x", "credential": None})
    assert event["credential"] is None
