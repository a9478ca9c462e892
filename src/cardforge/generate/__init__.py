"""
Batch Artwork Generation

Prompt building, image providers and the resumable batch orchestrator.
"""

from .batch import BatchAlreadyRunningError, BatchHooks, BatchManager
from .generator import GenerationOutput, ImageGenerator
from .models import (
    BatchStatus,
    GeneratedImage,
    GenerateOptions,
    GenerationResult,
    GenerationTask,
)
from .prompts import PromptBuilder, StyleGuide, StyleGuideNotFoundError, StyleGuideStore
from .providers import (
    ImageProvider,
    MockProvider,
    OpenAIProvider,
    ProviderConfigError,
    ProviderError,
    create_provider,
)

__all__ = [
    # Orchestration
    "BatchManager",
    "BatchHooks",
    "BatchAlreadyRunningError",
    "BatchStatus",
    # Models
    "GenerationTask",
    "GenerationResult",
    "GenerateOptions",
    "GeneratedImage",
    # Generation
    "ImageGenerator",
    "GenerationOutput",
    "ImageProvider",
    "MockProvider",
    "OpenAIProvider",
    "ProviderError",
    "ProviderConfigError",
    "create_provider",
    # Prompts
    "PromptBuilder",
    "StyleGuide",
    "StyleGuideStore",
    "StyleGuideNotFoundError",
]
