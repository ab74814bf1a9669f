"""Supported embedding models and their static metadata."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Union


class EmbeddingModel(str, Enum):
    """Closed set of models published as downloadable archives."""

    ALL_MINILM_L6_V2 = "fast-all-MiniLM-L6-v2"
    BGE_BASE_EN = "fast-bge-base-en"
    BGE_SMALL_EN = "fast-bge-small-en"

    def __str__(self) -> str:
        return self.value


DEFAULT_MODEL = EmbeddingModel.BGE_SMALL_EN

TOKENIZER_FILE = "tokenizer.json"
WEIGHTS_FILE = "model_optimized.onnx"


@dataclass(frozen=True)
class ModelInfo:
    """Static description of a supported model."""

    model: EmbeddingModel
    dimension: int
    description: str
    tokenizer_file: str = TOKENIZER_FILE
    weights_file: str = WEIGHTS_FILE


_MODEL_INFO: Dict[EmbeddingModel, ModelInfo] = {
    EmbeddingModel.ALL_MINILM_L6_V2: ModelInfo(
        model=EmbeddingModel.ALL_MINILM_L6_V2,
        dimension=384,
        description="Sentence Transformer model, MiniLM-L6-v2",
    ),
    EmbeddingModel.BGE_BASE_EN: ModelInfo(
        model=EmbeddingModel.BGE_BASE_EN,
        dimension=768,
        description="Base English model",
    ),
    EmbeddingModel.BGE_SMALL_EN: ModelInfo(
        model=EmbeddingModel.BGE_SMALL_EN,
        dimension=384,
        description="Fast and default English model",
    ),
}


def get_model_info(model: Union[EmbeddingModel, str]) -> ModelInfo:
    """Return metadata for ``model``; raises ``ValueError`` for unknown names."""
    return _MODEL_INFO[EmbeddingModel(model)]


def list_models() -> List[ModelInfo]:
    return list(_MODEL_INFO.values())
