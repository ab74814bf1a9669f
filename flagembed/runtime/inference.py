"""Forward pass through an exported ONNX transformer.

``InferencePort`` is the protocol the pipeline depends on; ``OnnxInferencePort``
implements it with one ``onnxruntime.InferenceSession`` per model. The session
is created once and shared read-only by all chunk threads. Each call binds its
inputs through a fresh IO binding that is cleared in ``finally`` whether the
run succeeds or not.
"""

from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Union

import numpy as np
import onnxruntime as ort
import structlog

from flagembed.common.errors import InferenceError, RuntimeEnvironmentError, TensorShapeError
from flagembed.encoders.tensors import TensorBuffer
from flagembed.runtime.environment import RuntimeEnvironment, get_runtime_environment

logger = structlog.get_logger("inference")

INPUT_NAMES = ("input_ids", "attention_mask", "token_type_ids")
OUTPUT_NAME = "last_hidden_state"


class InferencePort(Protocol):
    """Boundary into the inference engine."""

    def infer(
        self,
        ids: TensorBuffer,
        mask: TensorBuffer,
        type_ids: TensorBuffer,
        batch_size: int,
        max_length: int,
    ) -> TensorBuffer:
        """Return hidden states shaped ``[batch_size, max_length, hidden_dim]``."""


def check_input_shapes(
    buffers: Sequence[TensorBuffer], batch_size: int, max_length: int
) -> None:
    expected = (batch_size, max_length)
    for name, buffer in zip(INPUT_NAMES, buffers):
        if tuple(buffer.shape) != expected:
            raise TensorShapeError(
                f"{name} has shape {list(buffer.shape)}, expected {list(expected)}"
            )


def check_output_shape(hidden: TensorBuffer, batch_size: int, max_length: int) -> None:
    if len(hidden.shape) != 3 or tuple(hidden.shape[:2]) != (batch_size, max_length):
        raise TensorShapeError(
            f"{OUTPUT_NAME} has shape {list(hidden.shape)}, expected [{batch_size}, {max_length}, hidden_dim]"
        )


class OnnxInferencePort:
    """Runs ``model_optimized.onnx`` with onnxruntime.

    Parameters
    - model_path: Path to the ONNX weights file
    - environment: Initialized runtime environment (providers come from it)
    - providers: Overrides the environment's execution providers
    """

    def __init__(
        self,
        model_path: Union[str, Path],
        environment: Optional[RuntimeEnvironment] = None,
        providers: Optional[List[str]] = None,
        session_options: Optional[ort.SessionOptions] = None,
    ):
        self.environment = environment or get_runtime_environment()
        if not self.environment.is_initialized:
            raise RuntimeEnvironmentError("inference environment is not initialized")

        self.model_path = Path(model_path)
        self.providers = providers or list(self.environment.providers)
        try:
            self.session = ort.InferenceSession(
                str(self.model_path),
                sess_options=session_options,
                providers=self.providers,
            )
        except Exception as exc:
            raise InferenceError(f"failed to load model {self.model_path}: {exc}") from exc

        declared = {node.name for node in self.session.get_inputs()}
        self.input_names = [name for name in INPUT_NAMES if name in declared]
        logger.info(
            "Inference session created",
            model_path=str(self.model_path),
            providers=self.session.get_providers(),
            inputs=self.input_names,
        )

    def infer(
        self,
        ids: TensorBuffer,
        mask: TensorBuffer,
        type_ids: TensorBuffer,
        batch_size: int,
        max_length: int,
    ) -> TensorBuffer:
        check_input_shapes((ids, mask, type_ids), batch_size, max_length)
        arrays = dict(zip(INPUT_NAMES, (ids.as_array(), mask.as_array(), type_ids.as_array())))

        binding = self.session.io_binding()
        try:
            for name in self.input_names:
                binding.bind_cpu_input(name, np.ascontiguousarray(arrays[name]))
            binding.bind_output(OUTPUT_NAME)
            self.session.run_with_iobinding(binding)
            output = binding.copy_outputs_to_cpu()[0]
        except Exception as exc:
            raise InferenceError(f"forward pass failed for batch of {batch_size}: {exc}") from exc
        finally:
            binding.clear_binding_inputs()
            binding.clear_binding_outputs()

        hidden = TensorBuffer.from_array(np.asarray(output, dtype=np.float32))
        check_output_shape(hidden, batch_size, max_length)
        return hidden
