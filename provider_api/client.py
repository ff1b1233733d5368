"""
Async client for the upstream generation provider.

Every generation call returns remote URLs only; downloading and serving the
assets is done by asset_store.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from pydantic import BaseModel, Field

from provider_api.models import (
    IMAGE_DEFAULT_MODEL,
    SEEDANCE_DEFAULT_MODEL,
    VIDEO_DEFAULT_MODEL,
)

logger = logging.getLogger(__name__)

PROVIDER_TIMEOUT_SECONDS = 300.0


class ProviderError(Exception):
    code = "PROVIDER_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ImageOptions(BaseModel):
    ratio: str = "1:1"
    resolution: str = "2k"
    sample_strength: float = Field(default=0.5, ge=0.0, le=1.0)
    negative_prompt: str = ""
    n: int = Field(default=1, ge=1, le=10)


class CompositionOptions(BaseModel):
    ratio: str = "1:1"
    resolution: str = "2k"
    sample_strength: float = Field(default=0.5, ge=0.0, le=1.0)


class VideoOptions(BaseModel):
    ratio: str = "1:1"
    resolution: str = "720p"
    duration: int = 5
    file_paths: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class Credit:
    gift_credit: int = 0
    purchase_credit: int = 0
    vip_credit: int = 0

    @property
    def total_credit(self) -> int:
        return self.gift_credit + self.purchase_credit + self.vip_credit


def _extract_urls(payload: Any) -> list[str]:
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, list):
        return []
    urls = []
    for item in data:
        url = item.get("url") if isinstance(item, dict) else None
        if isinstance(url, str) and url:
            urls.append(url)
    return urls


class ProviderClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = PROVIDER_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _post(self, path: str, payload: dict[str, Any], session_id: str) -> Any:
        headers = {
            "Authorization": f"Bearer {session_id}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProviderError(f"Provider request timed out: {path}") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"Provider request failed: {exc}") from exc

        if response.status_code != 200:
            error_text = response.text
            try:
                error_json = response.json()
                if isinstance(error_json, dict) and "message" in error_json:
                    error_text = str(error_json["message"])
            except ValueError:
                pass
            raise ProviderError(
                f"Provider API Error ({response.status_code}): {error_text}",
                status_code=response.status_code,
            )

        try:
            result = response.json()
        except ValueError as exc:
            raise ProviderError(f"Provider returned invalid JSON for {path}") from exc
        if isinstance(result, dict) and result.get("code") not in (None, 0):
            raise ProviderError(f"Provider error {result.get('code')}: {result.get('message', 'unknown error')}")
        return result

    async def _post_for_urls(self, path: str, payload: dict[str, Any], session_id: str) -> list[str]:
        result = await self._post(path, payload, session_id)
        urls = _extract_urls(result)
        if not urls:
            raise ProviderError(f"Provider returned no results for {path}")
        logger.info("Provider %s returned %d url(s)", path, len(urls))
        return urls

    async def generate_images(
        self,
        model: Optional[str],
        prompt: str,
        options: ImageOptions,
        session_id: str,
    ) -> list[str]:
        payload = {"model": model or IMAGE_DEFAULT_MODEL, "prompt": prompt, **options.model_dump()}
        return await self._post_for_urls("/v1/images/generations", payload, session_id)

    async def compose_images(
        self,
        model: Optional[str],
        prompt: str,
        images: list[str],
        options: CompositionOptions,
        session_id: str,
    ) -> list[str]:
        payload = {
            "model": model or IMAGE_DEFAULT_MODEL,
            "prompt": prompt,
            "images": list(images),
            **options.model_dump(),
        }
        return await self._post_for_urls("/v1/images/compositions", payload, session_id)

    async def generate_video(
        self,
        model: Optional[str],
        prompt: str,
        options: VideoOptions,
        session_id: str,
    ) -> str:
        payload = {"model": model or VIDEO_DEFAULT_MODEL, "prompt": prompt, **options.model_dump()}
        urls = await self._post_for_urls("/v1/videos/generations", payload, session_id)
        return urls[0]

    async def generate_seedance(
        self,
        model: Optional[str],
        prompt: str,
        options: VideoOptions,
        session_id: str,
    ) -> str:
        payload = {"model": model or SEEDANCE_DEFAULT_MODEL, "prompt": prompt, **options.model_dump()}
        urls = await self._post_for_urls("/v1/videos/generations", payload, session_id)
        return urls[0]

    async def get_credit(self, session_id: str) -> Credit:
        result = await self._post("/token/points", {}, session_id)
        entries = result if isinstance(result, list) else [result]
        points: dict[str, Any] = {}
        for entry in entries:
            if isinstance(entry, dict) and isinstance(entry.get("points"), dict):
                points = entry["points"]
                break
        return Credit(
            gift_credit=int(points.get("giftCredit") or 0),
            purchase_credit=int(points.get("purchaseCredit") or 0),
            vip_credit=int(points.get("vipCredit") or 0),
        )
