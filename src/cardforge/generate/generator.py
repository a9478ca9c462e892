"""
Image Generator

Wraps an ImageProvider with short in-call retries and saves the returned
image under the theme's raw directory.
"""

import asyncio
import base64
import logging
from pathlib import Path
from typing import Optional

import httpx
from pydantic import BaseModel

from ..config import settings
from .models import GeneratedImage, GenerateOptions
from .providers import ImageProvider

logger = logging.getLogger(__name__)


class GenerationOutput(BaseModel):
    image: GeneratedImage
    saved_path: Optional[str] = None


class ProviderInfo(BaseModel):
    name: str
    type: str
    model: str
    version: Optional[str] = None


class ImageGenerator:
    """
    Provider call + persistence for one image.

    Retries here are immediate and short-lived (linear backoff); the attempt
    budget that spans run() invocations lives in BatchManager.
    """

    def __init__(
        self,
        provider: ImageProvider,
        output_dir: Path,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.provider = provider
        self.output_dir = Path(output_dir)
        self.max_retries = max(1, max_retries if max_retries is not None else settings.provider_retries)
        self.retry_delay = retry_delay if retry_delay is not None else settings.retry_delay_seconds
        self._http_client = http_client

    async def generate(
        self,
        options: GenerateOptions,
        save_as: Optional[str] = None,
    ) -> GenerationOutput:
        """
        Generate one image, retrying up to max_retries times.

        Args:
            options: Prompt and provider options
            save_as: Filename under output_dir; nothing is written when omitted

        Returns:
            GenerationOutput with the provider payload and saved path

        Raises:
            The last provider error once retries are exhausted
        """
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                image = await self.provider.generate(options)

                saved_path = None
                if save_as:
                    saved_path = str(await self.save_image(image, save_as))

                return GenerationOutput(image=image, saved_path=saved_path)

            except Exception as e:
                last_error = e
                logger.warning(f"Generation attempt {attempt}/{self.max_retries} failed: {e}")

                if attempt == self.max_retries:
                    break

                await asyncio.sleep(self.retry_delay * attempt)

        raise last_error

    async def save_image(self, image: GeneratedImage, filename: str) -> Path:
        """Write a base64 payload or download a URL payload to output_dir/filename."""
        file_path = self.output_dir / filename
        file_path.parent.mkdir(parents=True, exist_ok=True)

        if image.type == "base64":
            content = base64.b64decode(image.data)
        else:
            content = await self._download(image.data)

        file_path.write_bytes(content)
        logger.debug(f"Saved {len(content)} bytes to {file_path}")
        return file_path

    async def _download(self, url: str) -> bytes:
        if self._http_client is not None:
            response = await self._http_client.get(url)
            response.raise_for_status()
            return response.content

        async with httpx.AsyncClient(timeout=60.0) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.content

    async def check_availability(self) -> bool:
        return await self.provider.is_available()

    def get_provider_info(self) -> ProviderInfo:
        model_info = self.provider.get_model_info()
        return ProviderInfo(
            name=self.provider.name,
            type=self.provider.type,
            model=model_info.get("model", "unknown"),
            version=model_info.get("version"),
        )

    async def aclose(self) -> None:
        await self.provider.aclose()
