"""
fal.ai generation backend.

Each generative node type maps to a ``FalModel``: which endpoint to call for a
given set of auxiliary media, what arguments to send, and whether the result is
rehosted in Supabase storage. ``FalClient`` talks to the fal queue REST API
(submit, poll status, fetch result) with httpx.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Literal

import httpx

from pipedream import config
from pipedream.generation.media_storage import rehost_or_passthrough
from pipedream.services.executors.generative import DYNAMIC_IMAGES_KEY, MediaGenerator, MediaInputs

logger = logging.getLogger(__name__)

_DONE_STATUSES = {"COMPLETED"}
_PENDING_STATUSES = {"IN_QUEUE", "IN_PROGRESS"}


class FalError(RuntimeError):
    """Raised when a fal.ai request fails or returns no usable result."""


# ---------------------------------------------------------------------------
# Queue client
# ---------------------------------------------------------------------------


class FalClient:
    def __init__(
        self,
        key: str | None = None,
        *,
        queue_url: str | None = None,
        poll_interval: float | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._key = key
        self.queue_url = (queue_url or config.fal_queue_url()).rstrip("/")
        self.poll_interval = config.fal_poll_interval_seconds() if poll_interval is None else poll_interval
        self.timeout = config.fal_request_timeout_seconds() if timeout is None else timeout
        self._transport = transport

    @property
    def key(self) -> str:
        if not self._key:
            self._key = config.fal_key()
        return self._key

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Key {self.key}", "Content-Type": "application/json"}

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.status_code >= 400:
            detail = response.text[:500]
            raise FalError(f"fal.ai {action} failed ({response.status_code}): {detail}")

    async def subscribe(self, endpoint_id: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """Submit a request to the queue and wait for its result payload."""
        deadline = time.monotonic() + self.timeout if self.timeout else None
        http_timeout = httpx.Timeout(60.0, connect=20.0)

        async with httpx.AsyncClient(timeout=http_timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self.queue_url}/{endpoint_id}", headers=self._headers(), json=arguments
            )
            self._raise_for_status(response, "submit")
            submitted = response.json()

            request_id = submitted.get("request_id")
            if not request_id:
                raise FalError(f"fal.ai submit returned no request_id for {endpoint_id}")
            base = f"{self.queue_url}/{endpoint_id}/requests/{request_id}"
            status_url = submitted.get("status_url") or f"{base}/status"
            response_url = submitted.get("response_url") or base
            logger.debug("Submitted %s request %s", endpoint_id, request_id)

            while True:
                response = await client.get(status_url, headers=self._headers())
                self._raise_for_status(response, "status")
                status = response.json().get("status")
                if status in _DONE_STATUSES:
                    break
                if status not in _PENDING_STATUSES:
                    raise FalError(f"fal.ai request {request_id} ended with status {status}")
                if deadline is not None and time.monotonic() >= deadline:
                    raise FalError(
                        f"fal.ai request {request_id} timed out after {self.timeout:.0f}s"
                    )
                await asyncio.sleep(self.poll_interval)

            response = await client.get(response_url, headers=self._headers())
            self._raise_for_status(response, "result")
            return response.json()


# ---------------------------------------------------------------------------
# Model catalog
# ---------------------------------------------------------------------------

_VEO31_VIDEO = {"duration": "8s", "resolution": "720p", "generate_audio": True}


@dataclass(frozen=True)
class FalModel:
    node_type: str
    media_type: Literal["image", "video"]
    endpoint: Callable[[MediaInputs], str]
    arguments: Callable[[str, MediaInputs], dict[str, Any]]
    rehost: bool = True

    @property
    def extension(self) -> str:
        return "png" if self.media_type == "image" else "mp4"


def _fixed(endpoint_id: str) -> Callable[[MediaInputs], str]:
    return lambda media: endpoint_id


def _prompt_only(**extra: Any) -> Callable[[str, MediaInputs], dict[str, Any]]:
    return lambda prompt, media: {"prompt": prompt, **extra}


def _nano_banana_endpoint(media: MediaInputs) -> str:
    return "fal-ai/nano-banana/edit" if media.get(DYNAMIC_IMAGES_KEY) else "fal-ai/nano-banana"


def _nano_banana_arguments(prompt: str, media: MediaInputs) -> dict[str, Any]:
    images = media.get(DYNAMIC_IMAGES_KEY)
    if images:
        return {"prompt": prompt, "image_urls": list(images)}
    return {"prompt": prompt}


def _veo3_fast_endpoint(media: MediaInputs) -> str:
    return "fal-ai/veo3/fast/image-to-video" if media.get("image") else "fal-ai/veo3/fast"


def _veo3_fast_arguments(prompt: str, media: MediaInputs) -> dict[str, Any]:
    if media.get("image"):
        return {"prompt": prompt, "image_url": media["image"]}
    return {"prompt": prompt}


def _image_to_video(prompt: str, media: MediaInputs) -> dict[str, Any]:
    return {"prompt": prompt, "image_url": media["image"], **_VEO31_VIDEO}


def _reference_to_video(prompt: str, media: MediaInputs) -> dict[str, Any]:
    return {"prompt": prompt, "image_urls": [media["image"]], **_VEO31_VIDEO}


def _keyframes(prompt: str, media: MediaInputs) -> dict[str, Any]:
    return {
        "prompt": prompt,
        "first_frame_url": media["firstFrame"],
        "last_frame_url": media["lastFrame"],
        **_VEO31_VIDEO,
    }


FAL_MODELS: dict[str, FalModel] = {
    m.node_type: m
    for m in [
        # ---- Image models ----
        FalModel("fluxDev", "image", _fixed("fal-ai/flux/dev"), _prompt_only(), rehost=False),
        FalModel("nanoBanana", "image", _nano_banana_endpoint, _nano_banana_arguments),
        FalModel(
            "recraftV3",
            "image",
            _fixed("fal-ai/recraft/v3/text-to-image"),
            _prompt_only(style="realistic_image"),
        ),
        # ---- Text-to-video models ----
        FalModel("veo31", "video", _fixed("fal-ai/veo3.1"), _prompt_only(**_VEO31_VIDEO, enhance_prompt=True)),
        FalModel(
            "veo31Fast", "video", _fixed("fal-ai/veo3.1/fast"), _prompt_only(**_VEO31_VIDEO, enhance_prompt=True)
        ),
        FalModel(
            "klingVideo",
            "video",
            _fixed("fal-ai/kling-video/v2.5-turbo/pro/text-to-video"),
            _prompt_only(duration="5", aspect_ratio="16:9"),
        ),
        # ---- Image-to-video models ----
        FalModel("veo3Fast", "video", _veo3_fast_endpoint, _veo3_fast_arguments, rehost=False),
        FalModel("veo31I2v", "video", _fixed("fal-ai/veo3.1/image-to-video"), _image_to_video),
        FalModel("veo31FastI2v", "video", _fixed("fal-ai/veo3.1/fast/image-to-video"), _image_to_video),
        FalModel("veo31Ref", "video", _fixed("fal-ai/veo3.1/reference-to-video"), _reference_to_video),
        # ---- Keyframe models ----
        FalModel("veo31Keyframe", "video", _fixed("fal-ai/veo3.1/first-last-frame-to-video"), _keyframes),
        FalModel(
            "veo31FastKeyframe", "video", _fixed("fal-ai/veo3.1/fast/first-last-frame-to-video"), _keyframes
        ),
    ]
}


def extract_result_url(payload: dict[str, Any], media_type: str) -> str:
    """Pull the artifact URL out of a fal result: ``images[0].url`` or ``video.url``."""
    if media_type == "image":
        images = payload.get("images") or []
        url = images[0].get("url") if images and isinstance(images[0], dict) else None
        if not url:
            raise FalError("No image generated")
        return url

    video = payload.get("video")
    url = video.get("url") if isinstance(video, dict) else None
    if not url:
        raise FalError("No video generated")
    return url


# ---------------------------------------------------------------------------
# Generators
# ---------------------------------------------------------------------------


class FalGenerator:
    """``generate(prompt, media) -> url`` for one fal model."""

    def __init__(self, model: FalModel, client: FalClient, rehost: Callable[..., Any] = rehost_or_passthrough):
        self.model = model
        self.client = client
        self._rehost = rehost

    def endpoint_for(self, media: MediaInputs) -> str:
        return self.model.endpoint(media)

    async def __call__(self, prompt: str, media: MediaInputs) -> str:
        endpoint_id = self.model.endpoint(media)
        logger.info("%s: calling %s with prompt: %s", self.model.node_type, endpoint_id, prompt[:100])

        payload = await self.client.subscribe(endpoint_id, self.model.arguments(prompt, media))
        url = extract_result_url(payload, self.model.media_type)

        if self.model.rehost:
            url = await self._rehost(url, self.model.extension)
        return url


def build_fal_generators(
    client: FalClient | None = None,
    *,
    wrap: Callable[[FalGenerator], MediaGenerator] | None = None,
) -> dict[str, MediaGenerator]:
    """
    One generator per generative node type.

    ``wrap`` decorates every generator, e.g. with per-call billing.
    """
    client = client or FalClient()
    generators: dict[str, MediaGenerator] = {}
    for node_type, model in FAL_MODELS.items():
        generator = FalGenerator(model, client)
        generators[node_type] = wrap(generator) if wrap is not None else generator
    return generators
