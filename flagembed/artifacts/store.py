"""Local cache of model artifacts.

Resolves a model identifier to ``<cache_dir>/<model>``, downloading and
unpacking ``<base_url>/<model>.tar.gz`` on a cache miss.

Notes
- A cache hit is the existence of the model directory; contents are not
  validated
- Archives are extracted into a hidden staging directory inside the cache and
  moved into place with a single rename, so an interrupted download never
  leaves a directory that resolves as a hit; staging directories older than
  ``stale_staging_after`` are swept on the next miss
- Only directory and regular-file entries are extracted; links, devices and
  other entry types are skipped
"""

import io
import os
import shutil
import tarfile
import tempfile
import time
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional, Union

import httpx
import structlog
from tqdm import tqdm

from flagembed.artifacts.models import EmbeddingModel, get_model_info
from flagembed.common.errors import (
    ArtifactDownloadError,
    ArtifactExtractError,
    FilesystemError,
)
from flagembed.common.metrics import MetricsCollector, get_metrics_collector, measure_time
from flagembed.pipelines.retry_handler import RetryConfig, RetryHandler

logger = structlog.get_logger("artifact_store")

DEFAULT_BASE_URL = "https://storage.googleapis.com/qdrant-fastembed"
STAGING_PREFIX = ".staging-"
STALE_STAGING_AFTER = 3600.0


@dataclass(frozen=True)
class ModelArtifact:
    """A resolved model directory and the files the pipeline reads from it."""

    local_path: Path
    tokenizer_config: Path
    weights_file: Path


class _ChunkReader(io.RawIOBase):
    """Readable file object over an iterator of byte chunks."""

    def __init__(self, chunks: Iterable[bytes]):
        self._chunks = iter(chunks)
        self._pending = b""

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        while not self._pending:
            try:
                self._pending = next(self._chunks)
            except StopIteration:
                return 0
        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size


class ArtifactStore:
    """Resolves models to populated local directories.

    Parameters
    - cache_dir: Root of the cache; one sub-directory per model
    - show_progress: Wrap the download stream in a ``tqdm`` progress bar
    - base_url: Bucket URL the ``<model>.tar.gz`` archives are served from
    - timeout: Seconds allowed per network operation of the GET
    - retry_handler: Retries transport failures; HTTP error statuses are not retried
    - client_factory: Builds the ``httpx.Client`` used per download
    - stale_staging_after: Age in seconds after which a leftover staging
      directory is treated as abandoned and removed on the next cache miss
    """

    def __init__(
        self,
        cache_dir: Union[str, Path] = "local_cache",
        *,
        show_progress: bool = True,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 300.0,
        retry_handler: Optional[RetryHandler] = None,
        client_factory: Optional[Callable[[], httpx.Client]] = None,
        metrics: Optional[MetricsCollector] = None,
        stale_staging_after: float = STALE_STAGING_AFTER,
    ):
        self.cache_dir = Path(cache_dir)
        self.stale_staging_after = stale_staging_after
        self.show_progress = show_progress
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_handler = retry_handler or RetryHandler(
            RetryConfig(retryable_exceptions=(httpx.TransportError,))
        )
        self._client_factory = client_factory or self._default_client
        self.metrics = metrics or get_metrics_collector()

    def _default_client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, follow_redirects=True)

    def download_url(self, model: Union[EmbeddingModel, str]) -> str:
        return f"{self.base_url}/{EmbeddingModel(model).value}.tar.gz"

    def model_dir(self, model: Union[EmbeddingModel, str]) -> Path:
        return self.cache_dir / EmbeddingModel(model).value

    def is_cached(self, model: Union[EmbeddingModel, str]) -> bool:
        return self.model_dir(model).exists()

    def resolve(self, model: Union[EmbeddingModel, str]) -> Path:
        """Return the local directory for ``model``, downloading it if absent."""
        model = EmbeddingModel(model)
        target = self.model_dir(model)

        if target.exists():
            self.metrics.record_cache_hit("model_artifact")
            logger.debug("Model artifact cache hit", model=model.value, path=str(target))
            return target

        self.metrics.record_cache_miss("model_artifact")
        logger.info("Model artifact cache miss", model=model.value, cache_dir=str(self.cache_dir))

        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FilesystemError(f"cannot create cache directory {self.cache_dir}: {exc}") from exc

        self._sweep_stale_staging()
        return self._download(model)

    def _sweep_stale_staging(self) -> None:
        """Remove staging directories abandoned by interrupted downloads."""
        cutoff = time.time() - self.stale_staging_after
        for entry in self.cache_dir.iterdir():
            if not entry.name.startswith(STAGING_PREFIX) or not entry.is_dir():
                continue
            try:
                if entry.stat().st_mtime >= cutoff:
                    continue
            except FileNotFoundError:
                continue
            logger.info("Removing stale staging directory", path=str(entry))
            shutil.rmtree(entry, ignore_errors=True)

    def resolve_artifact(self, model: Union[EmbeddingModel, str]) -> ModelArtifact:
        """Resolve ``model`` and describe the files inside its directory."""
        info = get_model_info(model)
        path = self.resolve(model)
        return ModelArtifact(
            local_path=path,
            tokenizer_config=path / info.tokenizer_file,
            weights_file=path / info.weights_file,
        )

    @measure_time("download_artifact")
    def _download(self, model: EmbeddingModel) -> Path:
        url = self.download_url(model)
        try:
            return self.retry_handler.execute_with_retry(
                self._fetch_and_extract,
                model,
                url,
                operation_name=f"download_{model.value}",
            )
        except httpx.TransportError as exc:
            raise ArtifactDownloadError(f"model download failed: {exc}") from exc

    def _fetch_and_extract(self, model: EmbeddingModel, url: str) -> Path:
        logger.info("Downloading model artifact", model=model.value, url=url)

        with self._client_factory() as client:
            with client.stream("GET", url) as response:
                if not response.is_success:
                    status = f"{response.status_code} {response.reason_phrase}".strip()
                    raise ArtifactDownloadError(
                        f"model download failed: {status}",
                        status_code=response.status_code,
                        status_text=status,
                    )

                total = int(response.headers.get("Content-Length", 0)) or None
                received = [0]

                def counted(chunks: Iterator[bytes]) -> Iterator[bytes]:
                    for chunk in chunks:
                        received[0] += len(chunk)
                        yield chunk

                chunks = counted(response.iter_bytes())
                if self.show_progress:
                    chunks = self._with_progress(chunks, total, f"Downloading {model.value}")

                path = self._extract(model, chunks)

        self.metrics.record_download(model.value, received[0])
        logger.info(
            "Model artifact ready",
            model=model.value,
            path=str(path),
            bytes=received[0],
        )
        return path

    @staticmethod
    def _with_progress(chunks: Iterator[bytes], total: Optional[int], desc: str) -> Iterator[bytes]:
        with tqdm(total=total, unit="B", unit_scale=True, unit_divisor=1024, desc=desc) as bar:
            for chunk in chunks:
                bar.update(len(chunk))
                yield chunk

    def _extract(self, model: EmbeddingModel, chunks: Iterable[bytes]) -> Path:
        """Stream-extract a gzip tarball and move the model directory into place."""
        target = self.model_dir(model)
        try:
            staging = Path(tempfile.mkdtemp(prefix=f"{STAGING_PREFIX}{model.value}-", dir=self.cache_dir))
        except OSError as exc:
            raise FilesystemError(f"cannot create staging directory in {self.cache_dir}: {exc}") from exc

        try:
            stream = io.BufferedReader(_ChunkReader(chunks))
            with tarfile.open(fileobj=stream, mode="r|gz") as archive:
                for member in archive:
                    _extract_member(archive, member, staging)

            extracted = staging / model.value
            if not extracted.is_dir():
                # archive without a top-level model directory
                extracted = staging

            try:
                os.rename(extracted, target)
            except OSError:
                if not target.exists():
                    raise
                logger.info("Model artifact populated concurrently", model=model.value, path=str(target))
            return target
        except (tarfile.TarError, zlib.error, EOFError, OSError) as exc:
            raise ArtifactExtractError(f"failed to extract {model.value}: {exc}") from exc
        finally:
            shutil.rmtree(staging, ignore_errors=True)


def _extract_member(archive: tarfile.TarFile, member: tarfile.TarInfo, root: Path) -> None:
    root = root.resolve()
    destination = (root / member.name).resolve()
    if destination != root and root not in destination.parents:
        raise ArtifactExtractError(f"archive entry escapes target directory: {member.name}")

    if member.isdir():
        destination.mkdir(parents=True, exist_ok=True)
    elif member.isreg():
        destination.parent.mkdir(parents=True, exist_ok=True)
        source = archive.extractfile(member)
        with open(destination, "wb") as fh:
            shutil.copyfileobj(source, fh)
    else:
        logger.debug("Skipping archive entry", name=member.name, type=member.type)

