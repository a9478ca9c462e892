"""
Image Transform Data Models

Inputs and reports for the crop/resize/frame stage.
"""

from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from ..models import OutputSpec


class ProcessOptions(BaseModel):
    """Everything needed to turn one raw artwork into sized card images."""

    input_path: Path
    output_dir: Path
    card_id: str
    output_spec: OutputSpec = Field(default_factory=OutputSpec)
    frames_dir: Optional[Path] = None
    rarity: Optional[str] = None


class BatchItem(BaseModel):
    """One entry of a process_batch() call."""

    input_path: Path
    card_id: str
    rarity: Optional[str] = None


class CropRegion(BaseModel):
    """Rectangle in source-pixel coordinates."""

    left: int
    top: int
    width: int
    height: int

    @property
    def box(self) -> Tuple[int, int, int, int]:
        """Pillow crop box (left, upper, right, lower)."""
        return (self.left, self.top, self.left + self.width, self.top + self.height)


class ImageInfo(BaseModel):
    width: int
    height: int
    format: str = Field(description="png | jpeg | webp | ... | unknown")
    size: int = Field(description="File size in bytes")


class ValidationReport(BaseModel):
    valid: bool
    issues: List[str] = Field(default_factory=list)
