"""Single-chunk embedding pipeline: encode → assemble → infer → normalize."""

import time
from typing import List, Optional, Sequence

import numpy as np

from flagembed.common.errors import TensorShapeError
from flagembed.common.metrics import MetricsCollector, get_metrics_collector
from flagembed.encoders.encoder import Encoder
from flagembed.encoders.tensors import TensorAssembler
from flagembed.pipelines.normalizer import Normalizer
from flagembed.runtime.inference import InferencePort, check_output_shape


class ChunkPipeline:
    """Blocking pipeline for one chunk; safe to run from several threads at once.

    Every collaborator is read-only after construction, so no locking is done
    here.
    """

    def __init__(
        self,
        encoder: Encoder,
        port: InferencePort,
        *,
        assembler: Optional[TensorAssembler] = None,
        normalizer: Optional[Normalizer] = None,
        metrics: Optional[MetricsCollector] = None,
        model_name: str = "unknown",
    ):
        self.encoder = encoder
        self.port = port
        self.assembler = assembler or TensorAssembler(encoder.max_length)
        self.normalizer = normalizer or Normalizer()
        self.metrics = metrics or get_metrics_collector()
        self.model_name = model_name

    def run(self, batch: Sequence[str]) -> List[np.ndarray]:
        batch_size = len(batch)
        max_length = self.encoder.max_length

        sequences = self.encoder.encode(batch)
        ids, mask, type_ids = self.assembler.assemble(sequences)

        start = time.perf_counter()
        hidden = self.port.infer(ids, mask, type_ids, batch_size, max_length)
        self.metrics.record_inference(self.model_name, time.perf_counter() - start)
        check_output_shape(hidden, batch_size, max_length)

        embeddings = self.normalizer.normalize(hidden)
        if len(embeddings) != batch_size:
            raise TensorShapeError(f"got {len(embeddings)} embeddings for {batch_size} inputs")
        return embeddings

    __call__ = run
