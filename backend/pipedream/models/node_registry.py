"""
Node type registry: source of truth for what each node type accepts and produces.

Maps editor node type strings to the connection types their input handles
accept, the media type a generative node produces, and which auxiliary media
handles it reads (and whether they are required).
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

ConnectionDataType = Literal["text", "text[]", "image", "image[]", "video", "video[]", "any"]

ALL_CONCRETE_TYPES: list[ConnectionDataType] = [
    "text", "text[]", "image", "image[]", "video", "video[]",
]

# nanoBanana exposes image_0 .. image_9 as optional edit references.
DYNAMIC_IMAGE_HANDLE_PREFIX = "image_"
MAX_DYNAMIC_IMAGE_HANDLES = 10


class HandleSpec(BaseModel):
    accepts: list[ConnectionDataType]


class MediaHandle(BaseModel):
    """An auxiliary media input on a generative node."""

    key: str
    required: bool = True
    label: str = ""

    @property
    def display_name(self) -> str:
        return self.label or self.key


class ModelSpec(BaseModel):
    node_type: str
    media_type: Literal["image", "video"]
    media_handles: list[MediaHandle] = Field(default_factory=list)
    dynamic_image_handles: bool = False


_PROMPT = HandleSpec(accepts=["text", "text[]"])
_IMAGE = HandleSpec(accepts=["image", "image[]"])


# ---------------------------------------------------------------------------
# Handle specs
# ---------------------------------------------------------------------------
# Keys match the editor node `type` values; handle ids come from the editor's
# Handle definitions.

HANDLE_SPECS: dict[str, dict[str, HandleSpec]] = {
    # ---- Image models ----
    "fluxDev": {"prompt": _PROMPT},
    "nanoBanana": {"prompt": _PROMPT},
    "recraftV3": {"prompt": _PROMPT},

    # ---- Text-to-video models ----
    "veo31": {"prompt": _PROMPT},
    "veo31Fast": {"prompt": _PROMPT},
    "klingVideo": {"prompt": _PROMPT},

    # ---- Image-to-video models ----
    "veo3Fast": {"prompt": _PROMPT, "image": _IMAGE},
    "veo31I2v": {"prompt": _PROMPT, "image": _IMAGE},
    "veo31FastI2v": {"prompt": _PROMPT, "image": _IMAGE},
    "veo31Ref": {"prompt": _PROMPT, "image": _IMAGE},

    # ---- Keyframe models ----
    "veo31Keyframe": {"prompt": _PROMPT, "firstFrame": _IMAGE, "lastFrame": _IMAGE},
    "veo31FastKeyframe": {"prompt": _PROMPT, "firstFrame": _IMAGE, "lastFrame": _IMAGE},

    # ---- Sinks ----
    "outputGallery": {"default": HandleSpec(accepts=["image", "video"])},
    "output": {"value": HandleSpec(accepts=list(ALL_CONCRETE_TYPES))},
}


# ---------------------------------------------------------------------------
# Generative model specs
# ---------------------------------------------------------------------------

MODEL_SPECS: dict[str, ModelSpec] = {
    "fluxDev": ModelSpec(node_type="fluxDev", media_type="image"),
    "recraftV3": ModelSpec(node_type="recraftV3", media_type="image"),
    "nanoBanana": ModelSpec(
        node_type="nanoBanana", media_type="image", dynamic_image_handles=True
    ),
    "veo31": ModelSpec(node_type="veo31", media_type="video"),
    "veo31Fast": ModelSpec(node_type="veo31Fast", media_type="video"),
    "klingVideo": ModelSpec(node_type="klingVideo", media_type="video"),
    "veo3Fast": ModelSpec(
        node_type="veo3Fast",
        media_type="video",
        media_handles=[MediaHandle(key="image", required=False, label="start image")],
    ),
    "veo31I2v": ModelSpec(
        node_type="veo31I2v",
        media_type="video",
        media_handles=[MediaHandle(key="image", label="start image")],
    ),
    "veo31FastI2v": ModelSpec(
        node_type="veo31FastI2v",
        media_type="video",
        media_handles=[MediaHandle(key="image", label="start image")],
    ),
    "veo31Ref": ModelSpec(
        node_type="veo31Ref",
        media_type="video",
        media_handles=[MediaHandle(key="image", label="reference image")],
    ),
    "veo31Keyframe": ModelSpec(
        node_type="veo31Keyframe",
        media_type="video",
        media_handles=[
            MediaHandle(key="firstFrame", label="first frame"),
            MediaHandle(key="lastFrame", label="last frame"),
        ],
    ),
    "veo31FastKeyframe": ModelSpec(
        node_type="veo31FastKeyframe",
        media_type="video",
        media_handles=[
            MediaHandle(key="firstFrame", label="first frame"),
            MediaHandle(key="lastFrame", label="last frame"),
        ],
    ),
}


def get_handle_spec(node_type: str, handle_id: str) -> HandleSpec | None:
    """Look up a static handle spec, returning None if the pair is not declared."""
    return HANDLE_SPECS.get(node_type, {}).get(handle_id)


def get_model_spec(node_type: str) -> ModelSpec | None:
    """Look up a generative model spec, returning None for non-generative types."""
    return MODEL_SPECS.get(node_type)


def is_dynamic_image_handle(handle_id: str) -> bool:
    suffix = handle_id[len(DYNAMIC_IMAGE_HANDLE_PREFIX):]
    return handle_id.startswith(DYNAMIC_IMAGE_HANDLE_PREFIX) and suffix.isdigit()
