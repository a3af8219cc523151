import base64
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AssetKind(str, Enum):
    """Asset classes that can be extracted from a flyer."""
    PROPERTY_PHOTO = "property_photo"
    FLOOR_PLAN = "floor_plan"


# Display names used in user-facing messages
ASSET_LABELS = {
    AssetKind.PROPERTY_PHOTO: "外観写真",
    AssetKind.FLOOR_PLAN: "間取り図",
}


class ImagePayload(BaseModel):
    """Opaque image bytes plus the prompt that produced them. Immutable."""
    model_config = ConfigDict(frozen=True)

    data: bytes = Field(repr=False)
    mime_type: str = "image/png"
    prompt: str = ""
    aspect_ratio: Optional[str] = None

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


class ExtractedAsset(BaseModel):
    """Result of one extraction run; owned by that run only."""
    intermediate: Optional[ImagePayload] = None
    final: Optional[ImagePayload] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.final is not None and self.error is None

    @classmethod
    def failed(cls, error: str, intermediate: Optional[ImagePayload] = None) -> "ExtractedAsset":
        return cls(intermediate=intermediate, final=None, error=error)
