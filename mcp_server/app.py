"""
Jimeng MCP Server

Exposes jimeng image and video generation as MCP tools over stdio. Generated
media is downloaded into a private temp directory and handed back to the
client as URLs on an ephemeral loopback static server.
"""
import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from mcp.server import Server
from mcp.server.lowlevel.helper_types import ReadResourceContents
from mcp.server.stdio import stdio_server
from mcp.types import CallToolResult, Resource, TextContent, Tool
from pydantic import BaseModel, Field, ValidationError

from asset_store.errors import AssetError
from asset_store.localizer import AssetLocalizer, LocalizedAsset
from asset_store.settings import Settings, load_jimeng_dotenv
from mcp_server.static_server import EphemeralStaticServer
from provider_api.client import (
    CompositionOptions,
    ImageOptions,
    ProviderClient,
    ProviderError,
    VideoOptions,
)
from provider_api.models import (
    IMAGE_DEFAULT_MODEL,
    IMAGE_MODELS,
    SEEDANCE_DEFAULT_MODEL,
    VIDEO_DEFAULT_MODEL,
    VIDEO_MODELS,
    model_catalogue,
)
from provider_api.sessions import NoSessionConfiguredError, SessionPool

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)
load_jimeng_dotenv(Path(__file__).parent)

SERVER_NAME = "jimeng-free-api"
SERVER_VERSION = "0.8.6"

mcp_jimeng = Server(SERVER_NAME, version=SERVER_VERSION)


@dataclass
class ToolContext:
    """Collaborators shared by every tool call in this process."""
    sessions: SessionPool
    provider: ProviderClient
    localizer: AssetLocalizer
    static_server: EphemeralStaticServer


def build_tool_context(settings: Settings) -> ToolContext:
    return ToolContext(
        sessions=SessionPool(settings.session_ids),
        provider=ProviderClient(settings.provider_base_url, timeout=settings.provider_timeout),
        localizer=AssetLocalizer(settings.mcp_temp_root, timeout=settings.download_timeout),
        static_server=EphemeralStaticServer(settings.mcp_temp_root),
    )


class GenerateImageRequest(BaseModel):
    model: Optional[str] = None
    prompt: str
    ratio: str = "1:1"
    resolution: str = "2k"
    negative_prompt: str = ""
    sample_strength: float = Field(default=0.5, ge=0.0, le=1.0)
    n: int = Field(default=1, ge=1, le=10)


class ComposeImagesRequest(BaseModel):
    model: Optional[str] = None
    prompt: str
    images: list[str] = Field(..., min_length=1, max_length=10)
    ratio: str = "1:1"
    resolution: str = "2k"
    sample_strength: float = Field(default=0.5, ge=0.0, le=1.0)


class GenerateVideoRequest(BaseModel):
    model: Optional[str] = None
    prompt: str = ""
    ratio: str = "1:1"
    resolution: str = "720p"
    duration: int = 5
    file_paths: list[str] = Field(default_factory=list)


class GenerateSeedanceRequest(BaseModel):
    model: Optional[str] = None
    prompt: str = ""
    ratio: str = "4:3"
    duration: int = Field(default=4, ge=4, le=15)
    file_urls: list[str] = Field(default_factory=list)


class CheckTokenRequest(BaseModel):
    token: str


class GetPointsRequest(BaseModel):
    token: Optional[str] = None


RATIO_DESCRIPTION = "Aspect ratio: 1:1, 4:3, 3:4, 16:9, 9:16, 3:2, 2:3, 21:9. Default: 1:1"

GENERATE_IMAGE_INPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "model": {
            "type": "string",
            "description": f"Model name (e.g., jimeng-5.0, jimeng-4.6, jimeng-4.5). Default: {IMAGE_DEFAULT_MODEL}",
            "default": IMAGE_DEFAULT_MODEL,
        },
        "prompt": {"type": "string", "description": "Text prompt describing the image to generate"},
        "ratio": {"type": "string", "description": RATIO_DESCRIPTION, "default": "1:1"},
        "resolution": {"type": "string", "description": "Resolution: 1k, 2k, 4k. Default: 2k", "default": "2k"},
        "negative_prompt": {
            "type": "string",
            "description": "Negative prompt - things to avoid in the image",
            "default": "",
        },
        "sample_strength": {
            "type": "number",
            "description": "Sampling strength (refinement). Range: 0.0-1.0. Default: 0.5",
            "default": 0.5,
        },
        "n": {"type": "number", "description": "Number of images to generate (1-10). Default: 1", "default": 1},
    },
    "required": ["prompt"],
}
COMPOSE_IMAGES_INPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "model": {
            "type": "string",
            "description": f"Model name (e.g., jimeng-5.0, jimeng-4.6, jimeng-4.5). Default: {IMAGE_DEFAULT_MODEL}",
            "default": IMAGE_DEFAULT_MODEL,
        },
        "prompt": {"type": "string", "description": "Text prompt describing how to compose/transform the images"},
        "images": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Array of image URLs (1-10 images)",
        },
        "ratio": {"type": "string", "description": RATIO_DESCRIPTION, "default": "1:1"},
        "resolution": {"type": "string", "description": "Resolution: 1k, 2k, 4k. Default: 2k", "default": "2k"},
        "sample_strength": {
            "type": "number",
            "description": "Sampling strength (transformation intensity). Range: 0.0-1.0. Default: 0.5",
            "default": 0.5,
        },
    },
    "required": ["prompt", "images"],
}
GENERATE_VIDEO_INPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "model": {
            "type": "string",
            "description": "Video model: " + ", ".join(VIDEO_MODELS[:5]) + f". Default: {VIDEO_DEFAULT_MODEL}",
            "default": VIDEO_DEFAULT_MODEL,
        },
        "prompt": {"type": "string", "description": "Text prompt describing the video content"},
        "ratio": {"type": "string", "description": "Aspect ratio: 1:1, 4:3, 3:4, 16:9, 9:16. Default: 1:1", "default": "1:1"},
        "resolution": {"type": "string", "description": "Resolution: 480p, 720p, 1080p. Default: 720p", "default": "720p"},
        "duration": {"type": "number", "description": "Video duration in seconds: 5 or 10. Default: 5", "default": 5},
        "file_paths": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Optional first/last frame image URLs",
        },
    },
    "required": ["prompt"],
}
GENERATE_SEEDANCE_INPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "model": {
            "type": "string",
            "description": "Seedance model: " + ", ".join(VIDEO_MODELS[5:]) + f". Default: {SEEDANCE_DEFAULT_MODEL}",
            "default": SEEDANCE_DEFAULT_MODEL,
        },
        "prompt": {
            "type": "string",
            "description": "Text prompt. Use @1, @2 to reference uploaded files. Example: '@1 and @2 start dancing together'",
        },
        "ratio": {"type": "string", "description": "Aspect ratio: 1:1, 4:3, 3:4, 16:9, 9:16. Default: 4:3", "default": "4:3"},
        "duration": {"type": "number", "description": "Video duration in seconds: 4-15. Default: 4", "default": 4},
        "file_urls": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Input file URLs (images/videos/audio), referenced in the prompt as @1, @2, etc.",
        },
    },
    "required": ["prompt"],
}
CHECK_TOKEN_INPUT_SCHEMA = {
    "type": "object",
    "properties": {"token": {"type": "string", "description": "The session token to check"}},
    "required": ["token"],
}
GET_POINTS_INPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "token": {
            "type": "string",
            "description": "The session token (optional, uses configured token if not provided)",
        },
    },
}


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    input_schema: dict[str, Any]


TOOL_DEFINITIONS = [
    ToolDefinition(
        name="generate_image",
        description=(
            "Generate images from text prompt (text-to-image). "
            "Returns locally fetchable URLs and file paths."
        ),
        input_schema=GENERATE_IMAGE_INPUT_SCHEMA,
    ),
    ToolDefinition(
        name="compose_images",
        description=(
            "Compose/generate images from existing images (image-to-image). "
            "Supports 1-10 input images for multi-image composition."
        ),
        input_schema=COMPOSE_IMAGES_INPUT_SCHEMA,
    ),
    ToolDefinition(
        name="generate_video",
        description="Generate video from text prompt.",
        input_schema=GENERATE_VIDEO_INPUT_SCHEMA,
    ),
    ToolDefinition(
        name="generate_seedance",
        description=(
            "Generate video using Seedance 2.0 model. Supports multi-modal input "
            "(images, videos, audio); use @1, @2 placeholders to reference uploaded files."
        ),
        input_schema=GENERATE_SEEDANCE_INPUT_SCHEMA,
    ),
    ToolDefinition(
        name="check_token",
        description="Check if a jimeng session token is valid",
        input_schema=CHECK_TOKEN_INPUT_SCHEMA,
    ),
    ToolDefinition(
        name="get_points",
        description="Get the remaining points/credits for a jimeng account",
        input_schema=GET_POINTS_INPUT_SCHEMA,
    ),
]

RESOURCE_DEFINITIONS = [
    ("models://image", "Image Models", "List of available image generation models"),
    ("models://video", "Video Models", "List of available video generation models"),
    ("models://all", "All Models", "List of all available models"),
]


@mcp_jimeng.list_tools()
async def handle_list_tools() -> list[Tool]:
    """List all available MCP tools."""
    return [
        Tool(
            name=definition.name,
            description=definition.description,
            inputSchema=definition.input_schema,
        )
        for definition in TOOL_DEFINITIONS
    ]


@mcp_jimeng.list_resources()
async def handle_list_resources() -> list[Resource]:
    return [
        Resource(uri=uri, name=name, description=description, mimeType="application/json")
        for uri, name, description in RESOURCE_DEFINITIONS
    ]


def read_model_resource(uri: str) -> str:
    """Return the JSON catalogue for a models:// resource URI."""
    normalized = str(uri).rstrip("/")
    if normalized == "models://image":
        data: Any = list(IMAGE_MODELS)
    elif normalized == "models://video":
        data = list(VIDEO_MODELS)
    elif normalized == "models://all":
        data = model_catalogue()
    else:
        raise ValueError(f"Unknown resource: {uri}")
    return json.dumps(data, indent=2)


@mcp_jimeng.read_resource()
async def handle_read_resource(uri: Any) -> list[ReadResourceContents]:
    return [ReadResourceContents(content=read_model_resource(str(uri)), mime_type="application/json")]


def _build_call_tool_result(payload: dict[str, Any], is_error: Optional[bool] = None) -> CallToolResult:
    if is_error is None:
        is_error = isinstance(payload.get("error"), dict)
    return CallToolResult(
        content=[TextContent(type="text", text=json.dumps(payload, indent=2, ensure_ascii=False))],
        structuredContent=payload,
        isError=is_error,
    )


def _error_result(code: str, message: str) -> CallToolResult:
    return _build_call_tool_result({"error": {"code": code, "message": message}}, is_error=True)


async def _localize_for_client(
    context: ToolContext,
    remote_urls: list[str],
    asset_type: str,
) -> list[tuple[str, LocalizedAsset]]:
    await context.static_server.ensure_started()
    assets = await context.localizer.localize_all(remote_urls, asset_type)
    results = []
    for remote_url, asset in zip(remote_urls, assets):
        local_url = context.static_server.to_local_url(asset.output_path)
        logger.info("asset localized: %s -> %s", remote_url, local_url)
        results.append((local_url, asset))
    return results


async def handle_generate_image(arguments: dict[str, Any], context: ToolContext) -> CallToolResult:
    """Text-to-image generation.

    Examples:
        - {"prompt": "a red fox in snow"} → one image
        - {"prompt": "city at night", "ratio": "16:9", "n": 4}

    Returns:
        - structuredContent: {"urls": [...], "local_paths": [...]}
    """
    req = GenerateImageRequest(**arguments)
    options = ImageOptions(
        ratio=req.ratio,
        resolution=req.resolution,
        sample_strength=req.sample_strength,
        negative_prompt=req.negative_prompt,
        n=req.n,
    )
    remote_urls = await context.provider.generate_images(
        req.model or IMAGE_DEFAULT_MODEL, req.prompt, options, context.sessions.pick()
    )
    localized = await _localize_for_client(context, remote_urls, "images")
    return _build_call_tool_result({
        "urls": [url for url, _ in localized],
        "local_paths": [str(asset.output_path) for _, asset in localized],
    })


async def handle_compose_images(arguments: dict[str, Any], context: ToolContext) -> CallToolResult:
    """Image-to-image composition from 1-10 source image URLs."""
    if not isinstance(arguments.get("images"), list) or not arguments["images"]:
        return _error_result(
            "INVALID_ARGUMENTS",
            "images array is required and must contain at least 1 image URL",
        )
    req = ComposeImagesRequest(**arguments)
    options = CompositionOptions(
        ratio=req.ratio,
        resolution=req.resolution,
        sample_strength=req.sample_strength,
    )
    remote_urls = await context.provider.compose_images(
        req.model or IMAGE_DEFAULT_MODEL, req.prompt, req.images, options, context.sessions.pick()
    )
    localized = await _localize_for_client(context, remote_urls, "images")
    return _build_call_tool_result({
        "urls": [url for url, _ in localized],
        "local_paths": [str(asset.output_path) for _, asset in localized],
    })


async def handle_generate_video(arguments: dict[str, Any], context: ToolContext) -> CallToolResult:
    req = GenerateVideoRequest(**arguments)
    options = VideoOptions(
        ratio=req.ratio,
        resolution=req.resolution,
        duration=req.duration,
        file_paths=req.file_paths,
    )
    remote_url = await context.provider.generate_video(
        req.model or VIDEO_DEFAULT_MODEL, req.prompt, options, context.sessions.pick()
    )
    [(local_url, asset)] = await _localize_for_client(context, [remote_url], "videos")
    return _build_call_tool_result({"url": local_url, "local_path": str(asset.output_path)})


async def handle_generate_seedance(arguments: dict[str, Any], context: ToolContext) -> CallToolResult:
    req = GenerateSeedanceRequest(**arguments)
    options = VideoOptions(ratio=req.ratio, duration=req.duration, file_paths=req.file_urls)
    remote_url = await context.provider.generate_seedance(
        req.model or SEEDANCE_DEFAULT_MODEL, req.prompt, options, context.sessions.pick()
    )
    [(local_url, asset)] = await _localize_for_client(context, [remote_url], "videos")
    return _build_call_tool_result({"url": local_url, "local_path": str(asset.output_path)})


async def handle_check_token(arguments: dict[str, Any], context: ToolContext) -> CallToolResult:
    req = CheckTokenRequest(**arguments)
    credit = await context.provider.get_credit(req.token)
    return _build_call_tool_result({
        "valid": credit.total_credit > 0 or credit.gift_credit > 0,
        "points": credit.total_credit,
        "rewardPoints": credit.gift_credit,
    })


async def handle_get_points(arguments: dict[str, Any], context: ToolContext) -> CallToolResult:
    req = GetPointsRequest(**arguments)
    token = req.token or context.sessions.pick()
    credit = await context.provider.get_credit(token)
    return _build_call_tool_result({
        "totalPoints": credit.total_credit,
        "rewardPoints": credit.gift_credit,
        "total": credit.total_credit + credit.gift_credit,
    })


TOOL_HANDLERS = {
    "generate_image": handle_generate_image,
    "compose_images": handle_compose_images,
    "generate_video": handle_generate_video,
    "generate_seedance": handle_generate_seedance,
    "check_token": handle_check_token,
    "get_points": handle_get_points,
}


async def dispatch_tool_call(
    name: str,
    arguments: Optional[dict[str, Any]],
    context: ToolContext,
) -> CallToolResult:
    """Run a tool and turn every failure into an isError result."""
    handler = TOOL_HANDLERS.get(name)
    if handler is None:
        return _error_result("INVALID_TOOL", f"Unknown tool: {name}")
    try:
        return await handler(arguments or {}, context)
    except ValidationError as e:
        logger.warning("MCP Tool Error [%s]: invalid arguments: %s", name, e)
        return _error_result("INVALID_ARGUMENTS", str(e))
    except (AssetError, ProviderError, NoSessionConfiguredError) as e:
        logger.error("MCP Tool Error [%s]: %s", name, e)
        return _error_result(e.code, str(e))
    except Exception as e:
        logger.error(f"Error handling tool {name}: {e}", exc_info=True)
        return _error_result("INTERNAL_ERROR", str(e))


def build_call_tool_handler(context: ToolContext):
    """Bind tool dispatch to one set of collaborators."""
    async def handle_call_tool(name: str, arguments: dict[str, Any]) -> CallToolResult:
        """Dispatch MCP tool calls and return structured JSON errors."""
        return await dispatch_tool_call(name, arguments, context)

    return handle_call_tool


async def main() -> None:
    """Main entry point for the stdio MCP server.

    The static file server is not started here; the first media tool call
    starts it.
    """
    settings = Settings.from_env()
    logging.getLogger().setLevel(settings.log_level)
    context = build_tool_context(settings)
    logger.info("MCP: Loaded %d session ID(s) from environment", len(context.sessions))
    mcp_jimeng.call_tool()(build_call_tool_handler(context))

    logger.info("Starting %s MCP server (stdio mode)", SERVER_NAME)
    try:
        async with stdio_server() as streams:
            await mcp_jimeng.run(
                streams[0],
                streams[1],
                mcp_jimeng.create_initialization_options(),
            )
    finally:
        await context.static_server.stop()


if __name__ == "__main__":
    asyncio.run(main())
