import pytest

from nojs_chat.core.errors import ValidationError
from nojs_chat.core.validation import (
    MESSAGE_EMPTY,
    MESSAGE_REQUIRED,
    MESSAGE_UNSAFE,
    SESSION_INVALID,
    generate_session_id,
    has_suspicious_content,
    is_valid_model_name,
    is_valid_session_id,
    validate_message,
    validate_model_name,
    validate_role,
    validate_session_id,
    validate_system_prompt,
)


class TestSessionIds:
    @pytest.mark.parametrize("sid", ["abcdefghij", "A1b2C3d4E5", "x" * 50])
    def test_accepts_alphanumeric_in_range(self, sid):
        assert is_valid_session_id(sid)

    @pytest.mark.parametrize(
        "sid",
        [None, "", "short", "x" * 51, "abcdefghi!", "abc-defghij", 1234567890, "abcdefghij\n", " abcdefghij"],
    )
    def test_rejects_everything_else(self, sid):
        assert not is_valid_session_id(sid)

    def test_validate_raises_with_fixed_message(self):
        with pytest.raises(ValidationError) as exc:
            validate_session_id("nope")
        assert exc.value.message == SESSION_INVALID

    def test_generated_ids_are_valid_and_distinct(self):
        ids = {generate_session_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(len(i) == 15 and is_valid_session_id(i) for i in ids)


class TestMessages:
    def test_returns_trimmed_text(self):
        assert validate_message("  hello there \n") == "hello there"

    def test_missing_message(self):
        with pytest.raises(ValidationError) as exc:
            validate_message(None)
        assert exc.value.message == MESSAGE_REQUIRED

    def test_whitespace_only_message(self):
        with pytest.raises(ValidationError) as exc:
            validate_message("   \t ")
        assert exc.value.message == MESSAGE_EMPTY

    def test_length_limit_applies_after_trim(self):
        assert validate_message("  " + "a" * 10 + "  ", max_length=10) == "a" * 10
        with pytest.raises(ValidationError, match="under 10 characters"):
            validate_message("a" * 11, max_length=10)

    @pytest.mark.parametrize(
        "text",
        ["<script>alert(1)</script>", "click javascript:void(0)", "<img onerror=x>", "eval(code)"],
    )
    def test_suspicious_content_rejected(self, text):
        assert has_suspicious_content(text)
        with pytest.raises(ValidationError) as exc:
            validate_message(text)
        assert exc.value.message == MESSAGE_UNSAFE

    def test_suspicious_check_can_be_disabled(self):
        assert validate_message("use eval(x) carefully", check_unsafe=False) == "use eval(x) carefully"


def test_roles():
    assert validate_role("user") == "user"
    assert validate_role("assistant") == "assistant"
    with pytest.raises(ValidationError):
        validate_role("system")


def test_system_prompt():
    assert validate_system_prompt(None) == ""
    assert validate_system_prompt("  be brief ") == "be brief"
    with pytest.raises(ValidationError):
        validate_system_prompt("x" * 11, max_length=10)


def test_model_names():
    assert is_valid_model_name("llama3.2:1b")
    assert is_valid_model_name("org/model") is False
    assert is_valid_model_name("") is False
    assert is_valid_model_name("llama3.2\n") is False


def test_validate_model_name_applies_pattern():
    assert validate_model_name("  mistral:latest ") == "mistral:latest"
    with pytest.raises(ValidationError, match="Model name is required"):
        validate_model_name("   ")
    with pytest.raises(ValidationError, match="Invalid model name"):
        validate_model_name("llama; rm -rf /")
