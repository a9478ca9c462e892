"""
Image Providers

Clients that turn a prompt into image data. OpenAIProvider talks to an
OpenAI-compatible images endpoint over httpx; MockProvider renders a local
placeholder for tests and dry runs.
"""

import asyncio
import base64
import hashlib
import io
import logging
import random
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

import httpx
from PIL import Image, ImageDraw

from ..config import settings
from ..models import ImageSize
from .models import GeneratedImage, GenerateOptions

logger = logging.getLogger(__name__)


class ProviderError(RuntimeError):
    """Raised when a provider call fails or returns an unusable response."""
    pass


class ProviderConfigError(ValueError):
    """Raised for unknown provider types or missing credentials."""
    pass


class ImageProvider(ABC):
    """Interface every image provider implements."""

    name: str = "provider"
    type: str = "unknown"

    @abstractmethod
    async def generate(self, options: GenerateOptions) -> GeneratedImage:
        """Generate a single image for options.prompt."""

    @abstractmethod
    def get_model_info(self) -> Dict[str, str]:
        """Return {"model": ..., "version": ...}."""

    async def is_available(self) -> bool:
        return True

    async def aclose(self) -> None:
        """Release network resources, if any."""


def placeholder_image(seed_text: str, size: Tuple[int, int] = (256, 256)) -> str:
    """
    Render a flat-colored PNG derived from seed_text.

    Returns:
        Base64 encoded PNG
    """
    digest = hashlib.sha256(seed_text.encode("utf-8")).digest()
    color = (digest[0], digest[1], digest[2])

    image = Image.new("RGB", size, color=color)
    draw = ImageDraw.Draw(image)
    # Diagonal stripe so crops are visibly positioned when debugging
    draw.line([(0, 0), size], fill=(255 - color[0], 255 - color[1], 255 - color[2]), width=8)

    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("utf-8")


class MockProvider(ImageProvider):
    """Provider that never touches the network."""

    name = "Mock Provider"
    type = "mock"

    def __init__(
        self,
        delay: float = 0.1,
        failure_rate: float = 0.0,
        fixed_image: Optional[str] = None,
        image_size: Tuple[int, int] = (256, 256),
    ):
        """
        Args:
            delay: Simulated latency in seconds
            failure_rate: Probability (0-1) of raising ProviderError
            fixed_image: Base64 payload to return instead of a placeholder
            image_size: Placeholder dimensions
        """
        self.delay = delay
        self.failure_rate = failure_rate
        self.fixed_image = fixed_image
        self.image_size = image_size
        self.call_count = 0

    async def generate(self, options: GenerateOptions) -> GeneratedImage:
        self.call_count += 1

        if self.delay > 0:
            await asyncio.sleep(self.delay)

        if self.failure_rate > 0 and random.random() < self.failure_rate:
            raise ProviderError("Mock provider simulated failure")

        data = self.fixed_image or placeholder_image(options.prompt, self.image_size)

        return GeneratedImage(
            data=data,
            type="base64",
            revised_prompt=f"[MOCK] {options.prompt}",
            seed=random.randint(0, 999_999),
        )

    def get_model_info(self) -> Dict[str, str]:
        return {"model": "mock-model", "version": "1.0.0"}

    def reset_call_count(self) -> None:
        self.call_count = 0


class OpenAIProvider(ImageProvider):
    """
    DALL-E via the OpenAI images API.

    Only dall-e-3 style single-image requests are issued; dall-e-2 accepts n.
    """

    name = "OpenAI DALL-E"
    type = "openai"

    MAX_PROMPT_LENGTH = 4000

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        default_quality: Optional[str] = None,
        default_style: Optional[str] = None,
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key or settings.openai_api_key
        if not self.api_key:
            raise ProviderConfigError(
                "OpenAI API key is required. Set OPENAI_API_KEY or pass api_key."
            )

        self.base_url = (base_url or settings.openai_base_url).rstrip("/")
        self.model = model or settings.openai_model
        self.default_quality = default_quality or settings.openai_quality
        self.default_style = default_style or settings.openai_style
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def generate(self, options: GenerateOptions) -> GeneratedImage:
        payload = {
            "model": self.model,
            "prompt": self._prepare_prompt(options.prompt),
            "n": 1 if self.model == "dall-e-3" else options.n,
            "size": self._map_size(options.size),
            "response_format": "b64_json",
        }
        if self.model == "dall-e-3":
            payload["quality"] = options.quality or self.default_quality
            payload["style"] = options.style or self.default_style

        try:
            response = await self.client.post(
                f"{self.base_url}/images/generations",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json=payload,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"OpenAI API error: {e.response.text} ({e.response.status_code})"
            ) from e

        data = response.json().get("data") or []
        if not data:
            raise ProviderError("No image data in response")

        image_data = data[0]
        if not image_data.get("b64_json"):
            raise ProviderError("No b64_json data in response")

        return GeneratedImage(
            data=image_data["b64_json"],
            type="base64",
            revised_prompt=image_data.get("revised_prompt"),
        )

    async def is_available(self) -> bool:
        try:
            response = await self.client.get(
                f"{self.base_url}/models",
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.warning(f"OpenAI not reachable at {self.base_url}: {e}")
            return False

    def get_model_info(self) -> Dict[str, str]:
        return {
            "model": self.model,
            "version": "3.0" if self.model == "dall-e-3" else "2.0",
        }

    async def aclose(self) -> None:
        await self.client.aclose()

    def _map_size(self, size: Optional[ImageSize]) -> str:
        """Map a requested size onto the sizes DALL-E accepts."""
        if size is None:
            return "1024x1024"

        if self.model == "dall-e-3":
            ratio = size.width / size.height
            if ratio > 1.5:
                return "1792x1024"
            if ratio < 0.67:
                return "1024x1792"
            return "1024x1024"

        if size.width <= 256 or size.height <= 256:
            return "256x256"
        if size.width <= 512 or size.height <= 512:
            return "512x512"
        return "1024x1024"

    def _prepare_prompt(self, prompt: str) -> str:
        prepared = prompt
        if "high quality" not in prompt.lower():
            prepared = f"high quality, {prepared}"
        return prepared[: self.MAX_PROMPT_LENGTH]


def create_provider(provider_type: Optional[str] = None, **kwargs) -> ImageProvider:
    """
    Build a provider from settings.

    Args:
        provider_type: "mock" or "openai" (default: settings.provider)
        **kwargs: Passed through to the provider constructor

    Raises:
        ProviderConfigError: Unknown type or missing credentials
    """
    provider_type = provider_type or settings.provider

    if provider_type == "mock":
        kwargs.setdefault("delay", settings.mock_delay_seconds)
        kwargs.setdefault("failure_rate", settings.mock_failure_rate)
        return MockProvider(**kwargs)

    if provider_type == "openai":
        return OpenAIProvider(**kwargs)

    raise ProviderConfigError(f"Unknown provider type: {provider_type}")
