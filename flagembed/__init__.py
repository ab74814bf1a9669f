"""Text embeddings from pretrained ONNX transformer models.

Subpackages:
- ``flagembed.common``: configuration, logging, metrics, and errors.
- ``flagembed.artifacts``: supported models and the local artifact cache.
- ``flagembed.encoders``: tokenization and tensor assembly.
- ``flagembed.runtime``: inference engine environment and the inference port.
- ``flagembed.pipelines``: normalization, per-chunk pipeline, and batch scheduling.

Usage:
- from flagembed.service import EmbeddingService
"""

from flagembed.artifacts.models import EmbeddingModel
from flagembed.common.config import EmbeddingConfig
from flagembed.service import EmbeddingService

__all__ = ["EmbeddingConfig", "EmbeddingModel", "EmbeddingService"]
