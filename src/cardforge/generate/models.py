"""
Generation Data Models

Tasks, provider payloads and the persisted checkpoint for batch generation.
"""

from datetime import datetime
from typing import List, Literal, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, Field

from ..models import CamelModel, CardDefinition, ImageSize, SizedPaths, utcnow

TaskStatus = Literal["pending", "generating", "review", "approved", "rejected", "failed"]


class GenerateOptions(CamelModel):
    """Request sent to an image provider."""

    prompt: str
    negative_prompt: Optional[str] = None
    size: Optional[ImageSize] = None
    quality: Optional[Literal["standard", "hd"]] = None
    style: Optional[Literal["vivid", "natural"]] = None
    seed: Optional[int] = None
    n: int = 1


class GeneratedImage(CamelModel):
    """Image returned by a provider, either inline base64 or a download URL."""

    data: str
    type: Literal["base64", "url"] = "base64"
    revised_prompt: Optional[str] = None
    seed: Optional[int] = None


class GenerationMetadata(CamelModel):
    provider: str
    model: str
    generated_at: datetime = Field(default_factory=utcnow)
    prompt: str
    revised_prompt: Optional[str] = None
    seed: Optional[int] = None


class GenerationResult(CamelModel):
    """Output of a successful generation task."""

    task_id: str
    raw_image_path: str
    processed_images: SizedPaths = Field(default_factory=SizedPaths)
    framed_images: Optional[SizedPaths] = None
    metadata: GenerationMetadata


class GenerationTask(CamelModel):
    """
    One card's journey from prompt to approved artwork.

    Keyed by item_id inside BatchManager; 'generating' only ever exists in
    memory while a provider call is in flight.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    item_id: str
    item: Optional[CardDefinition] = None
    theme: str
    prompt: str
    negative_prompt: Optional[str] = None
    status: TaskStatus = "pending"
    attempts: int = Field(default=0, ge=0)
    max_attempts: int = Field(default=3, ge=1)
    result: Optional[GenerationResult] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def touch(self) -> None:
        self.updated_at = utcnow()


class BatchStatus(BaseModel):
    """Counts by status bucket; progress = (approved + review) / total, in percent."""

    total: int = 0
    pending: int = 0
    generating: int = 0
    review: int = 0
    approved: int = 0
    rejected: int = 0
    failed: int = 0
    completed: int = 0
    progress: int = 0


class BatchCheckpoint(CamelModel):
    """On-disk shape of batch-state.json."""

    saved_at: datetime = Field(default_factory=utcnow)
    tasks: List[Tuple[str, GenerationTask]] = Field(default_factory=list)
