"""Integration tests with the real fast-bge-small-en archive."""

import os

import numpy as np
import pytest

from flagembed.common.config import EmbeddingConfig
from flagembed.runtime.environment import RuntimeEnvironment
from flagembed.service import EmbeddingService

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        os.environ.get("FLAGEMBED_INTEGRATION") != "1",
        reason="set FLAGEMBED_INTEGRATION=1 to download the model and run",
    ),
]


@pytest.fixture(scope="module")
def cache_dir(tmp_path_factory):
    return tmp_path_factory.mktemp("model_cache")


@pytest.mark.asyncio
async def test_real_model_embeddings(cache_dir):
    config = EmbeddingConfig(ml_cache_dir=str(cache_dir), ml_max_length=128, ml_show_download_progress=False)

    async with EmbeddingService(config, environment=RuntimeEnvironment()) as service:
        query = await service.query_embed("hello world")
        first = await service.embed(["hello world", "foo"], 1)
        second = await service.embed(["hello world", "foo"], 1)

    assert query.shape == (384,)
    assert float(np.linalg.norm(query)) == pytest.approx(1.0, abs=1e-4)
    for a, b in zip(first, second):
        assert a.tobytes() == b.tobytes()
