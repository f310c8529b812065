from core.logging_config import REDACTED, redact, redact_sensitive


def test_redact_masks_nested_secrets():
    payload = {
        "email": "ana@example.com",
        "Password": "Voyage#2024!",
        "tokens": [{"refresh_token": "r.t", "token_type": "bearer"}],
    }
    cleaned = redact(payload)
    assert cleaned["email"] == "ana@example.com"
    assert cleaned["Password"] == REDACTED
    assert cleaned["tokens"][0] == {"refresh_token": REDACTED, "token_type": "bearer"}
    assert payload["Password"] == "Voyage#2024!"


def test_processor_redacts_event_dict():
    event = redact_sensitive(None, "info", {"event": "signin_attempt", "authorization": "Bearer x"})
    assert event == {"event": "signin_attempt", "authorization": REDACTED}
