from dubai_analysis.logging import RedactingProcessor, redact, redact_str


def test_redact_str_scrubs_key_shapes_and_known_secrets():
    text = "auth Bearer abcdef123456 key sk-proj-AAAAAAAAAAAAAAAAAAAA gemini AIzaSyA1234567890123456789 pin 4242"
    out = redact_str(text, secrets=["4242"])
    assert "abcdef123456" not in out
    assert "sk-proj-" not in out
    assert "AIzaSy" not in out
    assert "4242" not in out
    assert out.count("[REDACTED]") == 4


def test_redact_str_masks_gemini_query_key_and_emails():
    url = "https://generativelanguage.googleapis.com/v1beta/models/gemini-pro:generateContent?key=g-123&alt=json"
    assert redact_str(url).endswith("?key=[REDACTED]&alt=json")
    assert redact_str("listing agent jane@agency.ae") == "listing agent [EMAIL_REDACTED]"


def test_redact_walks_nested_containers():
    out = redact({"attempts": (1, "Bearer abcdef123456"), "OPENAI_API_KEY": "x", "n": None})
    assert out == {"attempts": (1, "Bearer [REDACTED]"), "OPENAI_API_KEY": "[REDACTED]", "n": None}


def test_processor_redacts_sensitive_keys():
    processor = RedactingProcessor(["s3cr3t-value", ""])
    event = {
        "event": "provider_request",
        "headers": {"Authorization": "Bearer xyz", "Content-Type": "application/json"},
        "fernet_key": "whatever",
        "detail": "used s3cr3t-value",
    }
    out = processor(None, "info", event)
    assert out["headers"]["Authorization"] == "[REDACTED]"
    assert out["headers"]["Content-Type"] == "application/json"
    assert out["fernet_key"] == "[REDACTED]"
    assert out["detail"] == "used [REDACTED]"
    assert processor.secrets == ("s3cr3t-value",)
