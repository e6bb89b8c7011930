from __future__ import annotations

from lifecycleops.services.audit import sanitize_metadata


def test_audit_redacts_secrets_and_tokens() -> None:
    # Redact credential-bearing fields in audit metadata.
    payload = {
        "client_secret": "super-secret",
        "access_token": "eyJ0eXAi",
        "new_password": "hunter2",
        "session_id": "lcs_abc",
        "nested": {"authorization": "Bearer abc", "items": [{"refresh_token": "r"}]},
        "application_id": "app-1",
    }
    sanitized = sanitize_metadata(payload)
    assert sanitized["client_secret"] == "[REDACTED]"
    assert sanitized["access_token"] == "[REDACTED]"
    assert sanitized["new_password"] == "[REDACTED]"
    assert sanitized["session_id"] == "[REDACTED]"
    assert sanitized["nested"]["authorization"] == "[REDACTED]"
    assert sanitized["nested"]["items"][0]["refresh_token"] == "[REDACTED]"
    assert sanitized["application_id"] == "app-1"


def test_audit_sanitizer_leaves_input_untouched() -> None:
    payload = {"client_secret": "x"}
    sanitize_metadata(payload)
    assert payload == {"client_secret": "x"}
