"""Exception hierarchy for the embedding library.

Every failure surfaced to callers derives from ``EmbeddingError`` so a single
``except`` clause can catch them. Third-party exceptions (httpx, tarfile,
tokenizers, onnxruntime) are wrapped at the component that talks to them and
chained with ``raise ... from``.
"""

from typing import Optional


class EmbeddingError(Exception):
    """Base exception for embedding errors."""


class ArtifactError(EmbeddingError):
    """Raised when a model artifact cannot be made available locally."""


class ArtifactDownloadError(ArtifactError):
    """Raised on a non-2xx response or a transport failure while downloading."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        status_text: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.status_text = status_text


class ArtifactExtractError(ArtifactError):
    """Raised when the archive is corrupt or cannot be written to disk."""


class FilesystemError(EmbeddingError):
    """Raised when the cache directory is unreadable or unwritable."""


class EncodingError(EmbeddingError):
    """Raised when the tokenizer fails to encode a batch."""


class TensorShapeError(EmbeddingError):
    """Raised when tensor buffers disagree with their declared shapes."""


class InferenceError(EmbeddingError):
    """Raised when the inference engine fails to execute the forward pass."""


class RuntimeEnvironmentError(EmbeddingError):
    """Raised when the inference engine environment cannot be initialized."""
