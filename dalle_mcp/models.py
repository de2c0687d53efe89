from typing import Any

DEFAULT_MODEL = "dall-e-3"
DEFAULT_SIZE = "1024x1024"
DEFAULT_QUALITY = "standard"
DEFAULT_STYLE = "vivid"

MODELS = ["dall-e-2", "dall-e-3"]
SIZES = ["256x256", "512x512", "1024x1024", "1792x1024", "1024x1792"]
QUALITIES = ["standard", "hd"]
STYLES = ["vivid", "natural"]
RESPONSE_FORMATS = ["url", "b64_json"]

MAX_PROMPT_LENGTH = 4000

# "styles": None means the model does not accept a style parameter at all.
MODEL_CAPABILITIES: dict[str, dict[str, Any]] = {
    "dall-e-2": {
        "sizes": ["256x256", "512x512", "1024x1024"],
        "qualities": ["standard"],
        "styles": None,
        "n": (1, 10),
    },
    "dall-e-3": {
        "sizes": ["1024x1024", "1792x1024", "1024x1792"],
        "qualities": ["standard", "hd"],
        "styles": ["vivid", "natural"],
        "n": (1, 1),
    },
}
