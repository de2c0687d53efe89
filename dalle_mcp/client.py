"""OpenAI Images API client.

Only ever receives ``ValidatedParameters``; callers run ``validation.validate``
first.  Generated images can be downloaded into the output directory that the
retention sweeper manages.
"""

import asyncio
import base64
import logging
import os
import time
from typing import Any

import aiofiles
import aiofiles.os
import httpx
from fastapi import HTTPException

from dalle_mcp.config import ServiceConfig
from dalle_mcp.metrics import track_image_generation
from dalle_mcp.models import (
    DEFAULT_MODEL,
    DEFAULT_QUALITY,
    DEFAULT_SIZE,
    DEFAULT_STYLE,
    MAX_PROMPT_LENGTH,
    MODELS,
    QUALITIES,
    SIZES,
    STYLES,
)
from dalle_mcp.validation import ValidatedParameters

logger = logging.getLogger("dalle_mcp.client")

GENERATIONS_URL = "https://api.openai.com/v1/images/generations"
TOOL_NAME = "generate_image"
GENERATION_TIMEOUT = 120.0

# Error codes the Images API uses when the prompt or output is blocked.
SAFETY_CODES = {"content_policy_violation", "moderation_blocked"}


def image_filename(index: int = 0, count: int = 1, timestamp_ms: int | None = None) -> str:
    stamp = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    return f"image_{stamp}.png" if count == 1 else f"image_{stamp}_{index + 1}.png"


def api_error(response: httpx.Response) -> HTTPException:
    """Translate a failed Images API response into the error our callers see.

    Error bodies look like ``{"error": {"message", "type", "code", "param"}}``.
    Blocked prompts become 422 and OpenAI rate limits or exhausted quota stay
    429. Everything else, including a rejected API key, is a 502.
    """
    try:
        payload = response.json()
    except ValueError:
        payload = None
    error = payload.get("error") if isinstance(payload, dict) else None
    if not isinstance(error, dict):
        return HTTPException(status_code=502, detail=f"OpenAI Images API returned HTTP {response.status_code}.")

    message = error.get("message") or f"HTTP {response.status_code}"
    code = error.get("code") or ""
    error_type = error.get("type") or ""

    if code in SAFETY_CODES or "safety system" in message.lower():
        return HTTPException(
            status_code=422,
            detail="Your prompt was blocked by the OpenAI safety system. Try rephrasing your description.",
        )
    if response.status_code == 401 or code == "invalid_api_key":
        return HTTPException(status_code=502, detail=f"OpenAI rejected the configured API key: {message}")
    if response.status_code == 429 or error_type == "insufficient_quota":
        return HTTPException(status_code=429, detail=f"OpenAI rate limit or quota exceeded: {message}")
    if error_type == "server_error" or response.status_code >= 500:
        return HTTPException(status_code=502, detail=f"OpenAI server error: {message}")
    return HTTPException(status_code=502, detail=f"OpenAI rejected the request ({error_type or code}): {message}")


class ImageGenerationClient:
    def __init__(self, config: ServiceConfig) -> None:
        self.config = config
        self.output_dir = os.path.abspath(config.output_dir)

    def get_api_key(self) -> str:
        if not self.config.api_key:
            raise HTTPException(status_code=400, detail="OpenAI API key not found in OPENAI_API_KEY")
        return self.config.api_key

    def request_body(self, params: ValidatedParameters) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": params.model,
            "prompt": params.prompt,
            "n": params.n,
            "size": params.size,
            "quality": params.quality,
            "response_format": params.response_format or "url",
        }
        if params.style is not None:
            body["style"] = params.style
        return body

    async def generate(self, params: ValidatedParameters) -> list[dict[str, Any]]:
        api_key = self.get_api_key()
        logger.info('Generating image with prompt: "%s..."', params.prompt[:50])
        logger.debug(
            "Image generation parameters: model=%s, size=%s, quality=%s, style=%s, n=%d",
            params.model, params.size, params.quality, params.style, params.n,
        )

        start = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=GENERATION_TIMEOUT) as client:
                response = await client.post(
                    GENERATIONS_URL,
                    headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
                    json=self.request_body(params),
                )
            if response.status_code >= 400:
                raise api_error(response)
            try:
                images = response.json().get("data") or []
            except (ValueError, AttributeError):
                raise HTTPException(status_code=502, detail="OpenAI Images API returned a malformed response.")
            if not images:
                raise HTTPException(status_code=502, detail="OpenAI Images API returned no images.")
        except HTTPException as exc:
            duration = (time.perf_counter() - start) * 1000
            track_image_generation(params.model, duration, False, error=str(exc.status_code))
            logger.error("Error generating image: %s", exc.detail)
            raise
        except httpx.HTTPError as exc:
            duration = (time.perf_counter() - start) * 1000
            track_image_generation(params.model, duration, False, error=type(exc).__name__)
            logger.error("Error generating image: %s", exc)
            raise HTTPException(status_code=502, detail=f"OpenAI request failed: {exc}")

        duration = (time.perf_counter() - start) * 1000
        track_image_generation(params.model, duration, True)
        logger.info("Image generated successfully in %.0fms", duration)
        return images

    async def _download(self, url: str, path: str) -> None:
        async with httpx.AsyncClient(timeout=self.config.download_timeout) as client:
            async with client.stream("GET", url) as response:
                if response.status_code >= 400:
                    raise HTTPException(
                        status_code=502,
                        detail=f"Image download failed ({response.status_code}).",
                    )
                async with aiofiles.open(path, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        await f.write(chunk)

    async def _discard(self, path: str) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove partial download %s: %s", path, exc)

    async def save_image(self, url: str, filename: str) -> str:
        """Download ``url`` into the output directory and return the file path.

        The download is bounded by ``download_timeout``; a partially written
        file is removed on timeout, cancellation or error.
        """
        await aiofiles.os.makedirs(self.output_dir, exist_ok=True)
        path = os.path.join(self.output_dir, filename)
        try:
            await asyncio.wait_for(self._download(url, path), timeout=self.config.download_timeout)
        except asyncio.TimeoutError:
            await self._discard(path)
            logger.error("Timed out downloading image to %s", path)
            raise HTTPException(status_code=504, detail="Timed out downloading the generated image.")
        except httpx.HTTPError as exc:
            await self._discard(path)
            logger.error("Error downloading image from %s: %s", url, exc)
            raise HTTPException(status_code=502, detail=f"Image download failed: {exc}")
        except BaseException:
            await self._discard(path)
            raise
        logger.info("Image saved to %s", path)
        return path

    async def save_b64(self, data_b64: str, filename: str) -> str:
        await aiofiles.os.makedirs(self.output_dir, exist_ok=True)
        path = os.path.join(self.output_dir, filename)
        try:
            async with aiofiles.open(path, "wb") as f:
                await f.write(base64.b64decode(data_b64))
        except BaseException:
            await self._discard(path)
            raise
        logger.info("Image saved to %s", path)
        return path

    async def generate_and_save(self, params: ValidatedParameters) -> list[dict[str, Any]]:
        """Generate, then save each image. A failed save is reported on that image, not raised."""
        images = await self.generate(params)
        stamp = int(time.time() * 1000)
        results = []
        for i, image in enumerate(images):
            item = dict(image)
            filename = image_filename(i, len(images), stamp)
            try:
                if image.get("url"):
                    item["file_path"] = await self.save_image(image["url"], filename)
                elif image.get("b64_json"):
                    item["file_path"] = await self.save_b64(image["b64_json"], filename)
            except (HTTPException, OSError) as exc:
                logger.error("Failed to save image %s: %s", filename, exc)
                item["save_error"] = str(getattr(exc, "detail", exc))
            results.append(item)
        return results


def tool_descriptor() -> dict[str, Any]:
    """MCP tool definition for ``generate_image``."""
    return {
        "name": TOOL_NAME,
        "description": "Generate an image using OpenAI DALL-E",
        "inputSchema": {
            "type": "object",
            "properties": {
                "prompt": {
                    "type": "string",
                    "description": "A detailed text description of the image to generate",
                    "minLength": 1,
                    "maxLength": MAX_PROMPT_LENGTH,
                },
                "model": {
                    "type": "string",
                    "enum": MODELS,
                    "description": "The DALL-E model to use",
                    "default": DEFAULT_MODEL,
                },
                "size": {
                    "type": "string",
                    "enum": SIZES,
                    "description": "Image size. dall-e-2: 256x256, 512x512, 1024x1024; dall-e-3: 1024x1024, 1792x1024, 1024x1792",
                    "default": DEFAULT_SIZE,
                },
                "quality": {
                    "type": "string",
                    "enum": QUALITIES,
                    "description": "Image quality (hd is dall-e-3 only)",
                    "default": DEFAULT_QUALITY,
                },
                "style": {
                    "type": "string",
                    "enum": STYLES,
                    "description": "Image style (dall-e-3 only)",
                    "default": DEFAULT_STYLE,
                },
                "n": {
                    "type": "integer",
                    "description": "Number of images (dall-e-3 supports only 1)",
                    "default": 1,
                    "minimum": 1,
                    "maximum": 10,
                },
                "response_format": {
                    "type": "string",
                    "enum": ["url", "b64_json"],
                    "description": "Return image URLs or base64 data",
                    "default": "url",
                },
                "save": {
                    "type": "boolean",
                    "description": "Whether to save the generated image to the filesystem",
                    "default": True,
                },
            },
            "required": ["prompt"],
        },
    }
