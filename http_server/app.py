"""
HTTP API for the jimeng proxy.

Forwards generation requests upstream, localizes the resulting media under
the public directory and serves it back from /public/<path>.
"""
import logging
import time
from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from asset_store.base_url import fallback_base_url, localize_all_to_urls, resolve_base_url
from asset_store.errors import (
    AssetError,
    AssetNotFoundError,
    DownloadFailedError,
    EmptyPathError,
    PathTraversalError,
)
from asset_store.localizer import AssetLocalizer
from asset_store.public_files import IMMUTABLE_CACHE_CONTROL, open_public_file
from asset_store.settings import Settings, load_jimeng_dotenv
from provider_api.client import (
    CompositionOptions,
    ImageOptions,
    ProviderClient,
    ProviderError,
    VideoOptions,
)
from provider_api.models import IMAGE_DEFAULT_MODEL, VIDEO_DEFAULT_MODEL, model_catalogue
from provider_api.sessions import NoSessionConfiguredError, SessionPool

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)
load_jimeng_dotenv(Path(__file__).parent)

SERVICE_NAME = "jimeng-free-api"
SERVICE_VERSION = "0.8.6"

ERROR_STATUS_CODES = {
    EmptyPathError: 400,
    PathTraversalError: 400,
    AssetNotFoundError: 404,
    DownloadFailedError: 502,
}


class ImageGenerationRequest(BaseModel):
    model: str = IMAGE_DEFAULT_MODEL
    prompt: str = Field(..., min_length=1)
    ratio: str = "1:1"
    resolution: str = "2k"
    negative_prompt: str = ""
    sample_strength: float = Field(default=0.5, ge=0.0, le=1.0)
    n: int = Field(default=1, ge=1, le=10)


class ImageCompositionRequest(BaseModel):
    model: str = IMAGE_DEFAULT_MODEL
    prompt: str = Field(..., min_length=1)
    images: list[str] = Field(..., min_length=1, max_length=10)
    ratio: str = "1:1"
    resolution: str = "2k"
    sample_strength: float = Field(default=0.5, ge=0.0, le=1.0)


class VideoGenerationRequest(BaseModel):
    model: str = VIDEO_DEFAULT_MODEL
    prompt: str = ""
    ratio: str = "1:1"
    resolution: str = "720p"
    duration: int = 5
    file_paths: list[str] = Field(default_factory=list)


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": {"code": code, "message": message}})


def create_app(
    settings: Optional[Settings] = None,
    provider: Optional[ProviderClient] = None,
    localizer: Optional[AssetLocalizer] = None,
) -> FastAPI:
    """Build the FastAPI application around explicit settings and collaborators."""
    settings = settings or Settings.from_env()
    provider = provider or ProviderClient(settings.provider_base_url, timeout=settings.provider_timeout)
    localizer = localizer or AssetLocalizer(
        settings.public_dir_path,
        partition_prefix="generated",
        timeout=settings.download_timeout,
    )
    configured_sessions = SessionPool(settings.session_ids)

    app = FastAPI(
        title="Jimeng Free API",
        description="Proxy for jimeng image and video generation with local asset hosting",
        version=SERVICE_VERSION,
    )
    app.state.settings = settings
    app.state.provider = provider
    app.state.localizer = localizer

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AssetError)
    async def handle_asset_error(request: Request, exc: AssetError):
        status_code = ERROR_STATUS_CODES.get(type(exc), 500)
        if status_code >= 500:
            logger.error("Asset error on %s: %s", request.url.path, exc)
        return _error_response(status_code, exc.code, str(exc))

    @app.exception_handler(ProviderError)
    async def handle_provider_error(request: Request, exc: ProviderError):
        logger.error("Provider error on %s: %s", request.url.path, exc)
        return _error_response(502, exc.code, str(exc))

    @app.exception_handler(NoSessionConfiguredError)
    async def handle_no_session(request: Request, exc: NoSessionConfiguredError):
        return _error_response(401, exc.code, str(exc))

    def _pick_session(authorization: Optional[str]) -> str:
        return SessionPool.from_authorization(authorization).or_fallback(configured_sessions).pick()

    def _public_base_url(request: Request) -> str:
        return resolve_base_url(request.headers, settings.url_prefix) or fallback_base_url(
            settings.public_dir_url, settings.url_prefix
        )

    def _data_response(urls: list[str]) -> dict[str, Any]:
        return {"created": int(time.time()), "data": [{"url": url} for url in urls]}

    @app.get("/")
    def root():
        """Root endpoint with API information."""
        return {
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "endpoints": {
                "images": "/v1/images/generations",
                "compositions": "/v1/images/compositions",
                "videos": "/v1/videos/generations",
                "models": "/v1/models",
                "public": "/public/<path>",
                "health": "/healthcheck",
            },
        }

    @app.get("/ping")
    def ping():
        return PlainTextResponse("pong")

    @app.get("/healthcheck")
    def healthcheck():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": SERVICE_NAME,
            "sessions_configured": len(configured_sessions),
        }

    @app.get("/v1/models")
    def list_models():
        catalogue = model_catalogue()
        models = [
            {"id": name, "object": "model", "owned_by": SERVICE_NAME, "type": kind}
            for kind, names in catalogue.items()
            for name in names
        ]
        return {"object": "list", "data": models}

    @app.get("/public/{file_path:path}")
    async def serve_public_file(file_path: str):
        """Serve a localized asset from the public directory."""
        public_file = open_public_file(settings.public_dir_path, file_path)
        return FileResponse(
            path=str(public_file.path),
            media_type=public_file.media_type,
            headers={"Cache-Control": IMMUTABLE_CACHE_CONTROL},
        )

    @app.post("/v1/images/generations")
    async def generate_images(
        body: ImageGenerationRequest,
        request: Request,
        authorization: Optional[str] = Header(None),
    ):
        options = ImageOptions(
            ratio=body.ratio,
            resolution=body.resolution,
            sample_strength=body.sample_strength,
            negative_prompt=body.negative_prompt,
            n=body.n,
        )
        remote_urls = await provider.generate_images(body.model, body.prompt, options, _pick_session(authorization))
        urls = await localize_all_to_urls(localizer, remote_urls, "images", _public_base_url(request))
        return _data_response(urls)

    @app.post("/v1/images/compositions")
    async def compose_images(
        body: ImageCompositionRequest,
        request: Request,
        authorization: Optional[str] = Header(None),
    ):
        options = CompositionOptions(
            ratio=body.ratio,
            resolution=body.resolution,
            sample_strength=body.sample_strength,
        )
        remote_urls = await provider.compose_images(
            body.model, body.prompt, body.images, options, _pick_session(authorization)
        )
        urls = await localize_all_to_urls(localizer, remote_urls, "images", _public_base_url(request))
        return _data_response(urls)

    @app.post("/v1/videos/generations")
    async def generate_video(
        body: VideoGenerationRequest,
        request: Request,
        authorization: Optional[str] = Header(None),
    ):
        options = VideoOptions(
            ratio=body.ratio,
            resolution=body.resolution,
            duration=body.duration,
            file_paths=body.file_paths,
        )
        remote_url = await provider.generate_video(body.model, body.prompt, options, _pick_session(authorization))
        urls = await localize_all_to_urls(localizer, [remote_url], "videos", _public_base_url(request))
        return _data_response(urls)

    return app


def main(port: Optional[int] = None) -> None:
    import uvicorn

    settings = Settings.from_env()
    logging.getLogger().setLevel(settings.log_level)
    app = create_app(settings)
    listen_port = port or settings.port
    logger.info("Starting %s HTTP server on %s:%s", SERVICE_NAME, settings.host, listen_port)
    logger.info("Public directory: %s", settings.public_dir_path)
    if not settings.session_ids:
        logger.warning("JIMENG_SESSION_ID not set; callers must send Authorization: Bearer <session>")
    uvicorn.run(app, host=settings.host, port=listen_port, reload=False)


if __name__ == "__main__":
    main()
