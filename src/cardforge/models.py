"""
CardForge Data Models
Pydantic models shared by the generation, transform and manifest stages.
"""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SizeName = Literal["small", "medium", "large"]
SIZE_NAMES: tuple = ("small", "medium", "large")

ImageFormat = Literal["png", "webp", "jpeg"]


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model persisted with camelCase keys (checkpoint and manifest files)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CardDefinition(CamelModel):
    """A content item to generate artwork for. Unknown keys are kept as-is."""

    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    type: str = Field(default="action", description="action | event | resource | character | modifier")
    rarity: Optional[str] = Field(default=None, description="common | uncommon | rare | legendary")
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    series: Optional[str] = None


class ImageSize(CamelModel):
    width: int = Field(gt=0)
    height: int = Field(gt=0)

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height


class OutputSizes(CamelModel):
    small: ImageSize = Field(default_factory=lambda: ImageSize(width=98, height=140))
    medium: ImageSize = Field(default_factory=lambda: ImageSize(width=140, height=200))
    large: ImageSize = Field(default_factory=lambda: ImageSize(width=280, height=400))

    def get(self, size: SizeName) -> ImageSize:
        return getattr(self, size)


class OutputSpec(CamelModel):
    """Target dimensions and encoding for processed card art."""

    sizes: OutputSizes = Field(default_factory=OutputSizes)
    format: ImageFormat = "webp"
    quality: int = Field(default=90, ge=1, le=100)
    with_frame: bool = True


class SizedPaths(CamelModel):
    small: str = ""
    medium: str = ""
    large: str = ""


class ProcessingResult(CamelModel):
    """Outcome of one transform run for a single card."""

    task_id: str
    card_id: str
    input_path: str
    output_paths: SizedPaths
    framed_paths: Optional[SizedPaths] = None
