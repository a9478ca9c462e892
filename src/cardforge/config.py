"""
CardForge Configuration
Pydantic Settings for the asset generation pipeline.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pipeline settings loaded from environment variables or .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Storage Paths ---
    output_dir: Path = Field(default=Path("./asset-pipeline-output"))

    # --- Image Provider ---
    provider: Literal["mock", "openai"] = "mock"
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: Literal["dall-e-2", "dall-e-3"] = "dall-e-3"
    openai_quality: Literal["standard", "hd"] = "standard"
    openai_style: Literal["vivid", "natural"] = "vivid"

    # --- Mock Provider ---
    mock_delay_seconds: float = 0.1
    mock_failure_rate: float = 0.0  # 0-1

    # --- Batch Generation ---
    concurrency: int = 3  # Tasks per chunk
    max_attempts: int = 3  # Attempt budget across run() calls
    provider_retries: int = 2  # In-call retries inside ImageGenerator
    retry_delay_seconds: float = 2.0  # Multiplied by the attempt number
    provider_timeout: float = 300.0  # Per generator call, seconds
    enable_review: bool = True  # Successful tasks land in 'review' instead of 'approved'

    # --- Logging ---
    log_level: str = "INFO"

    def ensure_directories(self) -> None:
        """Create the output root if it doesn't exist."""
        self.output_dir.mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()
