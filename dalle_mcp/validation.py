"""Request validation for DALL-E image generation.

Every field is resolved against the selected model's entry in
``MODEL_CAPABILITIES``, so the returned parameters are always a combination
the OpenAI Images API accepts for that model.  Failures raise
``ValidationError`` carrying the offending field and an ``ErrorKind``.
"""

import logging
import re
from collections.abc import Mapping
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

from dalle_mcp.models import (
    DEFAULT_MODEL,
    DEFAULT_QUALITY,
    DEFAULT_SIZE,
    DEFAULT_STYLE,
    MAX_PROMPT_LENGTH,
    MODEL_CAPABILITIES,
    MODELS,
    QUALITIES,
    RESPONSE_FORMATS,
    SIZES,
    STYLES,
)

logger = logging.getLogger("dalle_mcp.validation")

_INT_RE = re.compile(r"^[+-]?\d+$")
_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off", ""}


class ErrorKind(str, Enum):
    MISSING_FIELD = "MissingField"
    INVALID_TYPE = "InvalidType"
    INVALID_ENUM = "InvalidEnum"
    OUT_OF_RANGE = "OutOfRange"
    UNSUPPORTED = "Unsupported"


class ValidationError(Exception):
    def __init__(self, field: str, kind: ErrorKind, message: str):
        self.field = field
        self.kind = kind
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "kind": self.kind.value, "message": self.message}


class ValidatedParameters(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt: str
    model: Literal["dall-e-2", "dall-e-3"]
    size: Literal["256x256", "512x512", "1024x1024", "1792x1024", "1024x1792"]
    quality: Literal["standard", "hd"]
    n: int
    style: Literal["vivid", "natural"] | None = None
    save: bool | None = None
    response_format: Literal["url", "b64_json"] | None = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


def _absent(value: Any) -> bool:
    return value is None or value == ""


def validate_prompt(prompt: Any) -> str:
    if _absent(prompt):
        raise ValidationError("prompt", ErrorKind.MISSING_FIELD, "Prompt is required")
    if not isinstance(prompt, str):
        raise ValidationError("prompt", ErrorKind.INVALID_TYPE, "Prompt must be a string")

    trimmed = prompt.strip()
    if not trimmed:
        raise ValidationError(
            "prompt", ErrorKind.OUT_OF_RANGE, "Prompt cannot be empty or only whitespace",
        )
    if len(trimmed) > MAX_PROMPT_LENGTH:
        raise ValidationError(
            "prompt",
            ErrorKind.OUT_OF_RANGE,
            f"Prompt must not exceed {MAX_PROMPT_LENGTH} characters (got {len(trimmed)})",
        )
    return trimmed


def validate_model(model: Any) -> str:
    if _absent(model):
        return DEFAULT_MODEL
    if model not in MODELS:
        raise ValidationError("model", ErrorKind.INVALID_ENUM, f"Model must be one of: {', '.join(MODELS)}")
    return model


def validate_size(size: Any, model: str = DEFAULT_MODEL) -> str:
    if _absent(size):
        return DEFAULT_SIZE
    if size not in SIZES:
        raise ValidationError("size", ErrorKind.INVALID_ENUM, f"Size must be one of: {', '.join(SIZES)}")

    allowed = MODEL_CAPABILITIES[model]["sizes"]
    if size not in allowed:
        raise ValidationError(
            "size",
            ErrorKind.UNSUPPORTED,
            f"Size {size} is not supported for model {model}. Allowed sizes: {', '.join(allowed)}",
        )
    return size


def validate_quality(quality: Any, model: str = DEFAULT_MODEL) -> str:
    if _absent(quality):
        return DEFAULT_QUALITY
    if quality not in QUALITIES:
        raise ValidationError(
            "quality", ErrorKind.INVALID_ENUM, f"Quality must be one of: {', '.join(QUALITIES)}",
        )

    allowed = MODEL_CAPABILITIES[model]["qualities"]
    if quality not in allowed:
        raise ValidationError(
            "quality",
            ErrorKind.UNSUPPORTED,
            f"Quality {quality} is not supported for model {model}. Allowed qualities: {', '.join(allowed)}",
        )
    return quality


def validate_style(style: Any, model: str = DEFAULT_MODEL) -> str | None:
    """Return the style for ``model``, or None when the model has no style option.

    A style sent for a model without style support is dropped, not rejected.
    """
    allowed = MODEL_CAPABILITIES[model]["styles"]
    if allowed is None:
        if not _absent(style):
            logger.warning("Style parameter is not supported for %s, ignoring", model)
        return None

    if _absent(style):
        return DEFAULT_STYLE
    if style not in STYLES:
        raise ValidationError("style", ErrorKind.INVALID_ENUM, f"Style must be one of: {', '.join(STYLES)}")
    if style not in allowed:
        raise ValidationError(
            "style",
            ErrorKind.UNSUPPORTED,
            f"Style {style} is not supported for model {model}. Allowed styles: {', '.join(allowed)}",
        )
    return style


def _coerce_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str) and _INT_RE.match(value.strip()):
        return int(value.strip())
    return None


def validate_n(n: Any, model: str = DEFAULT_MODEL) -> int:
    if n is None:
        return 1

    value = _coerce_int(n)
    if value is None:
        raise ValidationError("n", ErrorKind.INVALID_TYPE, "n must be an integer")

    low, high = MODEL_CAPABILITIES[model]["n"]
    if not low <= value <= high:
        raise ValidationError(
            "n", ErrorKind.OUT_OF_RANGE, f"n must be between {low} and {high} for model {model}",
        )
    return value


def validate_response_format(value: Any) -> str:
    if value not in RESPONSE_FORMATS:
        raise ValidationError(
            "response_format",
            ErrorKind.INVALID_ENUM,
            'response_format must be either "url" or "b64_json"',
        )
    return value


def parse_save(value: Any) -> bool:
    """Parse the ``save`` flag.

    The literal string ``"false"`` (and ``"0"``, ``"no"``, ``"off"``) means False.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ValidationError("save", ErrorKind.INVALID_TYPE, "save must be a boolean")


def validate(params: Mapping[str, Any]) -> ValidatedParameters:
    """Validate a raw generation request.

    Model-dependent fields are checked after the model is resolved, in the
    order prompt, model, size, quality, style, n, response_format, save.
    """
    if not isinstance(params, Mapping):
        raise ValidationError("params", ErrorKind.INVALID_TYPE, "Parameters must be an object")

    try:
        prompt = validate_prompt(params.get("prompt"))
        model = validate_model(params.get("model"))
        size = validate_size(params.get("size"), model)
        quality = validate_quality(params.get("quality"), model)
        style = validate_style(params.get("style"), model)
        n = validate_n(params.get("n"), model)

        response_format = None
        if params.get("response_format") is not None:
            response_format = validate_response_format(params["response_format"])

        save = None
        if params.get("save") is not None:
            save = parse_save(params["save"])
    except ValidationError as exc:
        logger.warning("Validation failed: %s (field: %s)", exc.message, exc.field)
        raise

    validated = ValidatedParameters(
        prompt=prompt,
        model=model,
        size=size,
        quality=quality,
        n=n,
        style=style,
        save=save,
        response_format=response_format,
    )
    logger.debug("Validation successful for params: %s", validated.model_dump_json(exclude_none=True))
    return validated
