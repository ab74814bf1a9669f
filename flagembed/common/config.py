"""Configuration management for the embedding library.

Builds on ``pydantic_settings.BaseSettings`` so configuration can be provided
via environment variables, ``.env`` files, keyword arguments, or defaults.

Highlights
- One field per recognized option; names map to upper-case env vars
  (``ml_max_length`` reads ``ML_MAX_LENGTH``)
- Out-of-range values resolve to defaults instead of failing

Usage
- ``config = EmbeddingConfig()`` or ``get_config(ml_max_length=256)``
"""

import json
from typing import Annotated, Any, List, Optional

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from flagembed.artifacts.models import DEFAULT_MODEL, EmbeddingModel

DEFAULT_MAX_LENGTH = 512
DEFAULT_BATCH_SIZE = 512
DEFAULT_CACHE_DIR = "local_cache"

_POSITIVE_DEFAULTS = {
    "ml_max_length": DEFAULT_MAX_LENGTH,
    "ml_batch_size": DEFAULT_BATCH_SIZE,
}


class EmbeddingConfig(BaseSettings):
    """Configuration for the embedding service.

    Notes
    - ``ml_execution_providers`` is passed opaquely to onnxruntime; from the
      environment it is a comma list (``CUDAExecutionProvider,CPUExecutionProvider``)
      or a JSON array
    - ``ml_max_concurrency`` of ``None`` leaves chunk fan-out unbounded
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )
    
    # Model
    ml_embedding_model: EmbeddingModel = Field(default=DEFAULT_MODEL)
    ml_max_length: int = Field(default=DEFAULT_MAX_LENGTH)
    
    # Inference engine
    ml_execution_providers: Annotated[List[str], NoDecode] = Field(default_factory=lambda: ["CPUExecutionProvider"])
    ml_onnx_path: Optional[str] = Field(default=None)
    
    # Artifact cache
    ml_cache_dir: str = Field(default=DEFAULT_CACHE_DIR)
    ml_show_download_progress: bool = Field(default=True)
    ml_download_timeout: float = Field(default=300.0)
    ml_download_max_attempts: int = Field(default=3)
    
    # Batching
    ml_batch_size: int = Field(default=DEFAULT_BATCH_SIZE)
    ml_max_concurrency: Optional[int] = Field(default=None)
    
    # Logging
    ml_log_level: str = Field(default="INFO")
    ml_log_format: str = Field(default="json")
    
    @field_validator("ml_max_length", "ml_batch_size", mode="before")
    @classmethod
    def _default_non_positive(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None or value == "" or int(value) <= 0:
            return _POSITIVE_DEFAULTS[info.field_name]
        return value
    
    @field_validator("ml_cache_dir", mode="before")
    @classmethod
    def _default_cache_dir(cls, value: Any) -> Any:
        return value or DEFAULT_CACHE_DIR
    
    @field_validator("ml_max_concurrency", mode="before")
    @classmethod
    def _unbounded_concurrency(cls, value: Any) -> Any:
        if value is None or value == "" or int(value) <= 0:
            return None
        return value
    
    @field_validator("ml_download_max_attempts", mode="before")
    @classmethod
    def _at_least_one_attempt(cls, value: Any) -> Any:
        if value is None or value == "" or int(value) <= 0:
            return 1
        return value
    
    @field_validator("ml_execution_providers", mode="before")
    @classmethod
    def _split_providers(cls, value: Any) -> Any:
        if isinstance(value, str):
            text = value.strip()
            if text.startswith("["):
                value = json.loads(text)
            else:
                value = [item.strip() for item in text.split(",") if item.strip()]
        return value or ["CPUExecutionProvider"]


def get_config(**overrides: Any) -> EmbeddingConfig:
    """Build a fresh configuration, applying keyword overrides over env values."""
    return EmbeddingConfig(**overrides)
