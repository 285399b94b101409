"""
Podpulse Configuration
Pydantic Settings for all configurable options.
"""

import secrets
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables or .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- API Security ---
    api_token: str = Field(default_factory=lambda: secrets.token_urlsafe(32))

    # --- Storage Paths ---
    storage_path: Path = Field(default=Path.home() / "_PODPULSE")
    lancedb_path: Path = Field(default=Path.home() / "_PODPULSE" / ".lancedb")

    # --- Blob Storage ---
    blob_backend: Literal["local", "s3"] = "local"
    bucket_name: str = ""
    bucket_endpoint: str = ""
    bucket_region: str = "auto"
    bucket_key_id: str = ""
    bucket_access_key: str = ""

    # --- Speech-to-Text ---
    speech_base_url: str = "https://api.cloudflare.com/client/v4/accounts/ACCOUNT/ai/run"
    speech_model: str = "@cf/openai/whisper-large-v3-turbo"
    speech_api_key: str = ""
    speech_timeout: float = 300.0
    transcription_language: str = "en"
    transcribe_chunk_bytes: int = 8 * 1024 * 1024  # One chunk in memory at a time

    # --- Text Generation ---
    llm_provider: Literal["ollama", "openai", "workers-ai"] = "ollama"
    ollama_model: str = "llama3.2:3b"
    ollama_base_url: str = "http://localhost:11434"
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = "https://api.openai.com/v1"
    openai_api_key: str = ""
    workers_ai_model: str = "@cf/zai-org/glm-4.7-flash"
    workers_ai_base_url: str = "https://api.cloudflare.com/client/v4/accounts/ACCOUNT/ai/run"
    workers_ai_api_key: str = ""
    llm_timeout: float = 300.0

    # --- Analysis ---
    analysis_max_chars: int = 50000  # ~12k tokens, leaves room for the response
    analysis_fallback_chars: int = 2000
    segment_target_words: int = 15

    # --- Weekly Report ---
    weekly_window_days: int = 7
    weekly_cache_hours: int = 24

    # --- Step Retry Policies ---
    download_max_retries: int = 3
    download_base_delay: float = 30.0
    download_timeout: float = 600.0
    transcribe_max_retries: int = 2
    transcribe_base_delay: float = 10.0
    transcribe_timeout: float = 300.0
    analyze_max_retries: int = 2
    analyze_base_delay: float = 15.0
    analyze_timeout: float = 300.0
    step_backoff_multiplier: float = 2.0

    # --- Feed Polling ---
    import_past_limit: int = 5

    # --- Server ---
    api_port: int = 8000
    api_host: str = "0.0.0.0"

    def ensure_directories(self) -> None:
        """Create storage directories if they don't exist."""
        self.storage_path.mkdir(parents=True, exist_ok=True)
        self.lancedb_path.mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()
