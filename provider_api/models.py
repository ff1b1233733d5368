"""
Model catalogue exposed by the proxy.

- IMAGE_MODELS: text-to-image and image-to-image models.
- VIDEO_MODELS: text/image-to-video models, Seedance included.
- SEEDANCE_MODELS: multi-modal Seedance 2.0 variants.
"""

IMAGE_DEFAULT_MODEL = "jimeng-4.5"
VIDEO_DEFAULT_MODEL = "jimeng-video-3.0"
SEEDANCE_DEFAULT_MODEL = "jimeng-video-seedance-2.0"

IMAGE_MODELS = (
    "jimeng-5.0",
    "jimeng-4.6",
    "jimeng-4.5",
    "jimeng-4.1",
    "jimeng-4.0",
    "jimeng-3.1",
    "jimeng-3.0",
    "jimeng-2.1",
    "jimeng-2.0-pro",
    "jimeng-2.0",
    "jimeng-1.4",
    "jimeng-xl-pro",
)

SEEDANCE_MODELS = (
    "jimeng-video-seedance-2.0",
    "seedance-2.0",
    "seedance-2.0-pro",
    "jimeng-video-seedance-2.0-fast",
    "seedance-2.0-fast",
)

VIDEO_MODELS = (
    "jimeng-video-3.5-pro",
    "jimeng-video-3.0",
    "jimeng-video-3.0-pro",
    "jimeng-video-2.0",
    "jimeng-video-2.0-pro",
) + SEEDANCE_MODELS


def model_catalogue() -> dict[str, list[str]]:
    return {"image": list(IMAGE_MODELS), "video": list(VIDEO_MODELS)}
