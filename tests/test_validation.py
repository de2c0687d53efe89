import pydantic
import pytest

from dalle_mcp.models import MAX_PROMPT_LENGTH
from dalle_mcp.validation import (
    ErrorKind,
    ValidationError,
    parse_save,
    validate,
    validate_n,
)


def _fails(params) -> ValidationError:
    with pytest.raises(ValidationError) as exc_info:
        validate(params)
    return exc_info.value


# --- defaults ---

class TestDefaults:
    def test_prompt_only_gets_dalle3_defaults(self):
        result = validate({"prompt": "a red fox"})
        assert result.prompt == "a red fox"
        assert result.model == "dall-e-3"
        assert result.size == "1024x1024"
        assert result.quality == "standard"
        assert result.style == "vivid"
        assert result.n == 1
        assert result.save is None
        assert result.response_format is None

    def test_to_dict_omits_absent_fields(self):
        data = validate({"prompt": "x", "model": "dall-e-2"}).to_dict()
        assert "style" not in data
        assert "save" not in data
        assert "response_format" not in data

    def test_empty_strings_take_defaults(self):
        result = validate({"prompt": "x", "model": "", "size": "", "quality": ""})
        assert result.model == "dall-e-3"
        assert result.size == "1024x1024"
        assert result.quality == "standard"


# --- prompt ---

class TestPrompt:
    def test_prompt_is_trimmed(self):
        assert validate({"prompt": "  a cat  \n"}).prompt == "a cat"

    @pytest.mark.parametrize("prompt", ["", "   "])
    def test_empty_or_whitespace_fails_on_prompt(self, prompt):
        assert _fails({"prompt": prompt}).field == "prompt"

    def test_missing_prompt(self):
        err = _fails({})
        assert err.field == "prompt"
        assert err.kind == ErrorKind.MISSING_FIELD

    def test_whitespace_is_out_of_range(self):
        assert _fails({"prompt": "\t \n"}).kind == ErrorKind.OUT_OF_RANGE

    def test_non_string_prompt(self):
        err = _fails({"prompt": 42})
        assert err.field == "prompt"
        assert err.kind == ErrorKind.INVALID_TYPE

    def test_max_length_accepted(self):
        prompt = "a" * MAX_PROMPT_LENGTH
        assert validate({"prompt": prompt}).prompt == prompt

    def test_max_length_counts_after_trim(self):
        prompt = "  " + "a" * MAX_PROMPT_LENGTH + "  "
        assert len(validate({"prompt": prompt}).prompt) == MAX_PROMPT_LENGTH

    def test_too_long(self):
        err = _fails({"prompt": "a" * (MAX_PROMPT_LENGTH + 1)})
        assert err.field == "prompt"
        assert err.kind == ErrorKind.OUT_OF_RANGE
        assert "4000" in err.message

    def test_prompt_checked_before_model(self):
        assert _fails({"model": "dall-e-4"}).field == "prompt"


# --- model / size / quality ---

class TestModelConstraints:
    def test_unknown_model(self):
        err = _fails({"prompt": "x", "model": "dall-e-4"})
        assert err.field == "model"
        assert err.kind == ErrorKind.INVALID_ENUM

    def test_unknown_size(self):
        err = _fails({"prompt": "x", "size": "2048x2048"})
        assert err.field == "size"
        assert err.kind == ErrorKind.INVALID_ENUM

    def test_size_unsupported_for_model_names_allowed_set(self):
        err = _fails({"prompt": "x", "model": "dall-e-3", "size": "256x256"})
        assert err.field == "size"
        assert err.kind == ErrorKind.UNSUPPORTED
        assert "1792x1024" in err.message

    def test_dalle2_small_size(self):
        assert validate({"prompt": "x", "model": "dall-e-2", "size": "512x512"}).size == "512x512"

    def test_wide_size_on_dalle2_unsupported(self):
        err = _fails({"prompt": "x", "model": "dall-e-2", "size": "1792x1024"})
        assert err.kind == ErrorKind.UNSUPPORTED

    def test_hd_unsupported_on_dalle2(self):
        err = _fails({"prompt": "x", "model": "dall-e-2", "quality": "hd"})
        assert err.field == "quality"
        assert err.kind == ErrorKind.UNSUPPORTED

    def test_hd_on_dalle3(self):
        assert validate({"prompt": "x", "quality": "hd"}).quality == "hd"

    def test_unknown_quality(self):
        err = _fails({"prompt": "x", "quality": "ultra"})
        assert err.field == "quality"
        assert err.kind == ErrorKind.INVALID_ENUM


# --- style ---

class TestStyle:
    def test_style_dropped_for_dalle2(self):
        result = validate({"prompt": "x", "model": "dall-e-2", "style": "vivid"})
        assert result.style is None
        assert "style" not in result.to_dict()

    def test_invalid_style_still_dropped_for_dalle2(self):
        assert validate({"prompt": "x", "model": "dall-e-2", "style": "sketchy"}).style is None

    def test_natural_on_dalle3(self):
        assert validate({"prompt": "x", "style": "natural"}).style == "natural"

    def test_unknown_style_on_dalle3(self):
        err = _fails({"prompt": "x", "style": "sketchy"})
        assert err.field == "style"
        assert err.kind == ErrorKind.INVALID_ENUM


# --- n ---

class TestN:
    def test_dalle3_rejects_two(self):
        err = _fails({"prompt": "x", "model": "dall-e-3", "n": 2})
        assert err.field == "n"
        assert err.kind == ErrorKind.OUT_OF_RANGE
        assert "between 1 and 1" in err.message

    def test_dalle2_accepts_two(self):
        assert validate({"prompt": "x", "model": "dall-e-2", "n": 2}).n == 2

    @pytest.mark.parametrize("n", [0, 11, -1])
    def test_dalle2_range(self, n):
        err = _fails({"prompt": "x", "model": "dall-e-2", "n": n})
        assert err.kind == ErrorKind.OUT_OF_RANGE

    def test_numeric_string_coerced(self):
        assert validate({"prompt": "x", "model": "dall-e-2", "n": "3"}).n == 3

    def test_integral_float_coerced(self):
        assert validate_n(4.0, "dall-e-2") == 4

    @pytest.mark.parametrize("n", ["three", "2.5", 2.5, True, [1]])
    def test_not_integer(self, n):
        err = _fails({"prompt": "x", "model": "dall-e-2", "n": n})
        assert err.field == "n"
        assert err.kind == ErrorKind.INVALID_TYPE


# --- response_format / save ---

class TestOptionalFlags:
    def test_response_format(self):
        assert validate({"prompt": "x", "response_format": "b64_json"}).response_format == "b64_json"

    def test_bad_response_format(self):
        err = _fails({"prompt": "x", "response_format": "jpeg"})
        assert err.field == "response_format"
        assert err.kind == ErrorKind.INVALID_ENUM

    @pytest.mark.parametrize("raw,expected", [
        (True, True),
        (False, False),
        ("true", True),
        ("false", False),
        ("FALSE", False),
        ("0", False),
        ("yes", True),
        (1, True),
        (0, False),
    ])
    def test_parse_save(self, raw, expected):
        assert parse_save(raw) is expected

    def test_string_false_means_false(self):
        assert validate({"prompt": "x", "save": "false"}).save is False

    def test_unparseable_save(self):
        err = _fails({"prompt": "x", "save": "maybe"})
        assert err.field == "save"
        assert err.kind == ErrorKind.INVALID_TYPE


# --- general ---

class TestValidate:
    def test_non_mapping(self):
        err = _fails(["prompt"])
        assert err.field == "params"
        assert err.kind == ErrorKind.INVALID_TYPE

    def test_idempotent(self):
        params = {"prompt": " a lighthouse ", "model": "dall-e-2", "n": "2", "style": "vivid", "save": "no"}
        assert validate(params) == validate(params)

    def test_revalidating_output_is_stable(self):
        first = validate({"prompt": "a cat", "quality": "hd", "style": "natural", "save": True})
        assert validate(first.to_dict()) == first

    def test_result_is_frozen(self):
        result = validate({"prompt": "x"})
        with pytest.raises(pydantic.ValidationError):
            result.n = 5

    def test_error_to_dict(self):
        err = _fails({"prompt": "x", "model": "dall-e-2", "quality": "hd"})
        assert err.to_dict() == {"field": "quality", "kind": "Unsupported", "message": err.message}
