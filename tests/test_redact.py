from utils.redact import redact_mapping, redact_text


def test_redact_text_masks_bearer_and_literal_secrets():
    text = "401 Authorization: Bearer abc.def-123 for key sk-999"
    out = redact_text(text, ["sk-999"])
    assert "abc.def-123" not in out
    assert "sk-999" not in out
    assert out.count("***") == 2


def test_redact_text_passes_empty_through():
    assert redact_text("", ["x"]) == ""


def test_redact_mapping_is_shallow_and_case_insensitive():
    src = {"amount": 10, "Card_Number": "4111", "nested": {"cvv": "123"}}
    out = redact_mapping(src)
    assert out["Card_Number"] == "***"
    assert out["amount"] == 10
    assert out["nested"] == {"cvv": "123"}
    assert src["Card_Number"] == "4111"
