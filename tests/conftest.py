import logging

import httpx
import pytest
from prometheus_client import CollectorRegistry

from flagembed.artifacts.models import EmbeddingModel
from flagembed.common.metrics import MetricsCollector
from tests.helpers import make_tokenizer


@pytest.fixture
def metrics():
    """Collector on a private registry so tests don't share counters."""
    return MetricsCollector("test-service", registry=CollectorRegistry())


@pytest.fixture
def tokenizer():
    return make_tokenizer()


@pytest.fixture
def cached_model_dir(tmp_path):
    """A warm cache holding ``fast-bge-small-en`` with a real tokenizer.json."""
    cache_dir = tmp_path / "cache"
    model_dir = cache_dir / EmbeddingModel.BGE_SMALL_EN.value
    model_dir.mkdir(parents=True)
    make_tokenizer().save(str(model_dir / "tokenizer.json"))
    (model_dir / "model_optimized.onnx").write_bytes(b"onnx-weights")
    return model_dir


@pytest.fixture
def offline_client_factory():
    """httpx client whose transport fails the test on any request."""
    def handler(request: httpx.Request) -> httpx.Response:
        pytest.fail(f"unexpected network request: {request.url}")

    return lambda: httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture
def restore_logging():
    """Put the root logger level back after a test reconfigures logging."""
    root = logging.getLogger()
    level = root.level
    yield root
    root.setLevel(level)
