"""JSON-RPC 2.0 over stdio, the transport MCP clients such as Claude Desktop spawn.

One JSON object per line on stdin, one response per line on stdout.  Nothing
else may be written to stdout; logging goes to stderr.
"""

import asyncio
import json
import logging
import sys
from typing import Any, TextIO

from dotenv import load_dotenv
from fastapi import HTTPException

from dalle_mcp import __version__
from dalle_mcp.client import TOOL_NAME, ImageGenerationClient, tool_descriptor
from dalle_mcp.config import ServiceConfig, load_config
from dalle_mcp.handlers import handle_generate
from dalle_mcp.log import configure_logging
from dalle_mcp.validation import ValidationError

logger = logging.getLogger("dalle_mcp.stdio")

PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "openai-image-generation"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
TOOL_ERROR = -32000


def _result(req_id: Any, result: dict) -> dict:
    return {"jsonrpc": "2.0", "id": req_id, "result": result}


def _error(req_id: Any, code: int, message: str, data: Any = None) -> dict:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": req_id, "error": error}


def render_tool_result(prompt: str, data: list[dict[str, Any]]) -> dict:
    """Build the MCP ``content`` blocks for a successful generation."""
    text = f"Image generated successfully!\n\nPrompt: {prompt}"
    content: list[dict[str, Any]] = []
    for i, image in enumerate(data, 1):
        if len(data) > 1:
            text += f"\n\nImage {i}:"
        if image.get("file_path"):
            text += f"\n\nSaved to: {image['file_path']}"
        elif image.get("save_error"):
            text += "\n\nNote: Failed to save image locally, but it was generated successfully."
        if image.get("url"):
            text += f"\n\nImage URL: {image['url']}"
        if image.get("revised_prompt"):
            text += f"\n\nRevised prompt: {image['revised_prompt']}"
        if image.get("b64_json"):
            content.append({"type": "image", "data": image["b64_json"], "mimeType": "image/png"})
    return {"content": [{"type": "text", "text": text}, *content]}


class StdioServer:
    def __init__(self, client: ImageGenerationClient, output: TextIO | None = None) -> None:
        self.client = client
        self.output = output or sys.stdout
        self.initialized = False
        self._write_lock = asyncio.Lock()
        self._pending: set[asyncio.Task] = set()

    async def handle_request(self, request: Any) -> dict | None:
        """Handle one decoded message. Returns None for notifications."""
        if not isinstance(request, dict):
            return _error(None, INVALID_REQUEST, "Invalid Request", "request must be an object")

        req_id = request.get("id")
        method = request.get("method")
        params = request.get("params") or {}
        is_notification = "id" not in request

        if request.get("jsonrpc") != "2.0":
            return _error(req_id, INVALID_REQUEST, "Invalid Request", 'jsonrpc must be "2.0"')
        if not isinstance(method, str):
            return _error(req_id, INVALID_REQUEST, "Invalid Request", "method must be a string")

        try:
            if method.startswith("notifications/"):
                if method == "notifications/initialized":
                    self.initialized = True
                return None
            if method == "initialize":
                return _result(req_id, {
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": {"tools": {}},
                    "serverInfo": {"name": SERVER_NAME, "version": __version__},
                })
            if method == "ping":
                return _result(req_id, {})
            if method == "tools/list":
                return _result(req_id, {"tools": [tool_descriptor()]})
            if method == "resources/list":
                return _result(req_id, {"resources": []})
            if method == "prompts/list":
                return _result(req_id, {"prompts": []})
            if method == "tools/call":
                return await self._call_tool(req_id, params)
        except Exception as exc:
            logger.exception("Error handling %s", method)
            return _error(req_id, INTERNAL_ERROR, "Internal error", str(exc))

        if is_notification:
            return None
        return _error(req_id, METHOD_NOT_FOUND, "Method not found")

    async def _call_tool(self, req_id: Any, params: Any) -> dict:
        if not isinstance(params, dict):
            return _error(req_id, INVALID_PARAMS, "params must be an object")
        name = params.get("name")
        if name != TOOL_NAME:
            return _error(req_id, INVALID_PARAMS, f"Unknown tool: {name}")

        try:
            validated, result = await handle_generate(params.get("arguments") or {}, self.client)
        except ValidationError as exc:
            return _error(req_id, INVALID_PARAMS, f"Invalid parameters: {exc.message}", exc.to_dict())
        except HTTPException as exc:
            logger.error("Error in generate_image: %s", exc.detail)
            return _error(req_id, TOOL_ERROR, f"Failed to generate image: {exc.detail}")

        if not result["data"]:
            return _error(req_id, TOOL_ERROR, "Failed to generate image: No image was generated")
        return _result(req_id, render_tool_result(validated.prompt, result["data"]))

    async def handle_line(self, line: str) -> dict | None:
        try:
            request = json.loads(line)
        except json.JSONDecodeError as exc:
            logger.error("Error parsing JSON: %s", exc)
            return _error(None, PARSE_ERROR, "Parse error", str(exc))
        return await self.handle_request(request)

    async def write(self, message: dict) -> None:
        async with self._write_lock:
            self.output.write(json.dumps(message) + "\n")
            self.output.flush()

    async def _process(self, line: str) -> None:
        response = await self.handle_line(line)
        if response is not None:
            await self.write(response)

    async def serve(self, reader: TextIO | None = None) -> None:
        """Read requests until EOF. Requests are handled concurrently."""
        reader = reader or sys.stdin
        logger.info("MCP Server ready")
        while True:
            line = await asyncio.to_thread(reader.readline)
            if not line:
                logger.info("Input stream ended")
                break
            if not line.strip():
                continue
            task = asyncio.create_task(self._process(line))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        if self._pending:
            await asyncio.gather(*self._pending)


def run(config: ServiceConfig | None = None) -> None:
    load_dotenv()
    config = config or load_config()
    configure_logging(config.log_level, config.log_to_file, config.log_file_path, stream=sys.stderr)
    logger.info("MCP Server starting...")
    if not config.api_key:
        logger.warning("OPENAI_API_KEY not set. Image generation will fail.")

    server = StdioServer(ImageGenerationClient(config))
    try:
        asyncio.run(server.serve())
    except KeyboardInterrupt:
        logger.info("Received interrupt, shutting down")


if __name__ == "__main__":
    run()
