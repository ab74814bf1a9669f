"""Embedding service facade.

Resolves the configured model into the local cache, loads its tokenizer and
ONNX weights, and exposes plain, query and passage embedding over the batch
scheduler.

Lifecycle
- ``service = EmbeddingService(config)``
- ``await service.initialize()`` (downloads on a cold cache, nothing after)
- ``await service.embed(...)`` / ``query_embed`` / ``passage_embed``
- ``await service.cleanup()`` tears down the inference environment it started

``async with EmbeddingService(config) as service:`` does the same.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional, Sequence

import httpx
import numpy as np
import structlog

from flagembed.artifacts.models import ModelInfo, get_model_info
from flagembed.artifacts.store import ArtifactStore, ModelArtifact
from flagembed.common.config import EmbeddingConfig
from flagembed.common.logging import configure_logging
from flagembed.common.metrics import MetricsCollector, get_metrics_collector
from flagembed.encoders.encoder import Encoder
from flagembed.pipelines.chunk import ChunkPipeline
from flagembed.pipelines.retry_handler import RetryConfig, RetryHandler
from flagembed.pipelines.scheduler import BatchScheduler
from flagembed.runtime.environment import RuntimeEnvironment, get_runtime_environment
from flagembed.runtime.inference import InferencePort, OnnxInferencePort

logger = structlog.get_logger("embedding_service")

QUERY_PREFIX = "query: "
PASSAGE_PREFIX = "passage: "


class EmbeddingService:
    """Public entry point for generating embeddings.

    Parameters
    - config: ``EmbeddingConfig``; read from the environment when omitted
    - store: Artifact store; built from the config when omitted
    - port: Inference port; an ``OnnxInferencePort`` over the resolved weights
      when omitted
    - environment: Runtime environment handle; the process-wide one by default
    """

    def __init__(
        self,
        config: Optional[EmbeddingConfig] = None,
        *,
        store: Optional[ArtifactStore] = None,
        port: Optional[InferencePort] = None,
        environment: Optional[RuntimeEnvironment] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config or EmbeddingConfig()
        self.model = self.config.ml_embedding_model
        configure_logging("flagembed", self.config.ml_log_level, self.config.ml_log_format)
        self.info: ModelInfo = get_model_info(self.model)
        self.metrics = metrics or get_metrics_collector()
        self.environment = environment or get_runtime_environment()
        self.store = store or ArtifactStore(
            self.config.ml_cache_dir,
            show_progress=self.config.ml_show_download_progress,
            timeout=self.config.ml_download_timeout,
            retry_handler=RetryHandler(
                RetryConfig(
                    max_attempts=self.config.ml_download_max_attempts,
                    retryable_exceptions=(httpx.TransportError,),
                )
            ),
            metrics=self.metrics,
        )
        self.artifact: Optional[ModelArtifact] = None
        self.encoder: Optional[Encoder] = None
        self.port: Optional[InferencePort] = None
        self._injected_port = port
        self._scheduler: Optional[BatchScheduler] = None
        self._owns_environment = False

    async def __aenter__(self) -> "EmbeddingService":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.cleanup()

    async def initialize(self) -> None:
        """Resolve the model artifact and load tokenizer and inference session."""
        if self._scheduler is not None:
            return
        try:
            await asyncio.to_thread(self._load)
        except Exception as e:
            logger.error("Failed to initialize embedding service", model=self.model.value, error=str(e))
            raise
        logger.info(
            "Embedding service initialized",
            model=self.model.value,
            path=str(self.artifact.local_path),
            max_length=self.config.ml_max_length,
            dimension=self.dimension,
        )

    def _load(self) -> None:
        self.artifact = self.store.resolve_artifact(self.model)
        self._owns_environment = not self.environment.is_initialized
        self.environment.initialize(
            library_path=self.config.ml_onnx_path,
            providers=self.config.ml_execution_providers,
        )
        self.encoder = Encoder.from_file(self.artifact.tokenizer_config, max_length=self.config.ml_max_length)
        self.port = self._injected_port or OnnxInferencePort(
            self.artifact.weights_file, environment=self.environment
        )

        pipeline = ChunkPipeline(
            self.encoder,
            self.port,
            metrics=self.metrics,
            model_name=self.model.value,
        )
        self._scheduler = BatchScheduler(
            pipeline,
            max_concurrency=self.config.ml_max_concurrency,
            metrics=self.metrics,
            model_name=self.model.value,
        )

    @property
    def dimension(self) -> int:
        return self.info.dimension

    def _require_scheduler(self) -> BatchScheduler:
        if self._scheduler is None:
            raise RuntimeError("EmbeddingService.initialize() must be awaited before embedding")
        return self._scheduler

    async def embed(self, inputs: Sequence[str], batch_size: Optional[int] = None) -> List[np.ndarray]:
        """Embed ``inputs`` in order, ``batch_size`` inputs per chunk.

        A missing or non-positive ``batch_size`` falls back to ``ml_batch_size``.
        """
        return await self._embed(inputs, batch_size, task="embed")

    async def query_embed(self, text: str) -> np.ndarray:
        """Embed a single search query with the ``"query: "`` instruction prefix."""
        vectors = await self._embed([QUERY_PREFIX + text], 1, task="query")
        return vectors[0]

    async def passage_embed(self, inputs: Sequence[str], batch_size: Optional[int] = None) -> List[np.ndarray]:
        """Embed documents with the ``"passage: "`` instruction prefix."""
        return await self._embed([PASSAGE_PREFIX + text for text in inputs], batch_size, task="passage")

    async def _embed(self, inputs: Sequence[str], batch_size: Optional[int], task: str) -> List[np.ndarray]:
        scheduler = self._require_scheduler()
        if batch_size is None or batch_size <= 0:
            batch_size = self.config.ml_batch_size

        start = time.perf_counter()
        vectors = await scheduler.run_all(list(inputs), batch_size)
        duration = time.perf_counter() - start
        self.metrics.record_embedding(self.model.value, task, duration)

        logger.info(
            "Embeddings generated",
            model=self.model.value,
            task=task,
            count=len(vectors),
            batch_size=batch_size,
            duration_ms=duration * 1000,
        )
        return vectors

    def model_info(self) -> Dict[str, Any]:
        """Describe the configured model and where it lives."""
        return {
            "name": self.model.value,
            "description": self.info.description,
            "dimension": self.info.dimension,
            "max_length": self.config.ml_max_length,
            "path": str(self.artifact.local_path) if self.artifact else None,
        }

    async def health_check(self) -> bool:
        """Check whether the service is ready to embed."""
        return self._scheduler is not None and self.environment.is_initialized

    async def cleanup(self) -> None:
        """Release the pipeline.

        The inference environment is torn down only if this service initialized
        it; one that was already running is left for its owner.
        """
        self._scheduler = None
        self.encoder = None
        self.port = None
        if self._owns_environment:
            self.environment.destroy()
            self._owns_environment = False
        logger.info("Embedding service cleanup completed", model=self.model.value)
