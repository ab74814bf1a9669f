"""Tests for common utilities."""

import logging

import pytest
from pydantic import ValidationError

from flagembed.artifacts.models import EmbeddingModel, get_model_info, list_models
from flagembed.common.config import EmbeddingConfig, get_config
from flagembed.common.logging import configure_logging
from flagembed.common.metrics import get_metrics_collector
from flagembed.pipelines.retry_handler import RetryConfig, RetryHandler


def test_config_defaults():
    """Test configuration defaults."""
    config = EmbeddingConfig()
    assert config.ml_embedding_model == EmbeddingModel.BGE_SMALL_EN
    assert config.ml_max_length == 512
    assert config.ml_cache_dir == "local_cache"
    assert config.ml_show_download_progress is True
    assert config.ml_execution_providers == ["CPUExecutionProvider"]
    assert config.ml_onnx_path is None
    assert config.ml_batch_size == 512
    assert config.ml_max_concurrency is None


def test_config_non_positive_values_fall_back_to_defaults():
    """Configuration never fails for out-of-range sizes."""
    config = get_config(ml_max_length=0, ml_batch_size=-3, ml_cache_dir="", ml_max_concurrency=0)
    assert config.ml_max_length == 512
    assert config.ml_batch_size == 512
    assert config.ml_cache_dir == "local_cache"
    assert config.ml_max_concurrency is None


def test_config_from_environment(monkeypatch):
    """Test environment variables override defaults."""
    monkeypatch.setenv("ML_MAX_LENGTH", "128")
    monkeypatch.setenv("ML_EMBEDDING_MODEL", "fast-all-MiniLM-L6-v2")
    monkeypatch.setenv("ML_SHOW_DOWNLOAD_PROGRESS", "false")
    monkeypatch.setenv("ML_EXECUTION_PROVIDERS", '["CUDAExecutionProvider", "CPUExecutionProvider"]')

    config = EmbeddingConfig()
    assert config.ml_max_length == 128
    assert config.ml_embedding_model == EmbeddingModel.ALL_MINILM_L6_V2
    assert config.ml_show_download_progress is False
    assert config.ml_execution_providers == ["CUDAExecutionProvider", "CPUExecutionProvider"]


def test_config_providers_from_comma_separated_string():
    config = get_config(ml_execution_providers="CUDAExecutionProvider, CPUExecutionProvider")
    assert config.ml_execution_providers == ["CUDAExecutionProvider", "CPUExecutionProvider"]


def test_config_providers_from_plain_environment_string(monkeypatch):
    """Comma lists and single names are accepted from the environment."""
    monkeypatch.setenv("ML_EXECUTION_PROVIDERS", "CPUExecutionProvider")
    assert EmbeddingConfig().ml_execution_providers == ["CPUExecutionProvider"]

    monkeypatch.setenv("ML_EXECUTION_PROVIDERS", "CUDAExecutionProvider, CPUExecutionProvider")
    assert EmbeddingConfig().ml_execution_providers == ["CUDAExecutionProvider", "CPUExecutionProvider"]

    monkeypatch.setenv("ML_EXECUTION_PROVIDERS", "")
    assert EmbeddingConfig().ml_execution_providers == ["CPUExecutionProvider"]


def test_config_rejects_unknown_model():
    with pytest.raises(ValidationError):
        get_config(ml_embedding_model="not-a-model")


def test_model_registry():
    """Test model metadata lookup."""
    assert get_model_info("fast-bge-base-en").dimension == 768
    assert get_model_info(EmbeddingModel.BGE_SMALL_EN).dimension == 384
    assert get_model_info(EmbeddingModel.ALL_MINILM_L6_V2).weights_file == "model_optimized.onnx"
    assert {info.model for info in list_models()} == set(EmbeddingModel)
    with pytest.raises(ValueError):
        get_model_info("unknown")


def test_logging_configuration():
    """Test logging configuration."""
    # This should not raise an exception
    configure_logging("test-service", "INFO", "json")
    configure_logging("test-service", "debug", "console", model="fast-bge-small-en")


def test_logging_configuration_sets_root_level(restore_logging):
    configure_logging("test-service", "DEBUG", "json")
    assert logging.getLogger().level == logging.DEBUG

    configure_logging("test-service", "warning", "json")
    assert logging.getLogger().level == logging.WARNING


def test_metrics_collector(metrics):
    """Test metrics collector."""
    assert metrics.service_name == "test-service"

    metrics.record_embedding("fast-bge-small-en", "query", 0.1)
    metrics.record_inference("fast-bge-small-en", 0.05)
    metrics.record_chunk_failure("fast-bge-small-en")
    metrics.record_cache_hit("model_artifact")
    metrics.record_cache_miss("model_artifact")
    metrics.record_download("fast-bge-small-en", 1024)

    output = metrics.get_metrics()
    assert isinstance(output, str)
    assert "ml_embedding_requests_total" in output
    assert "ml_inference_duration_seconds" in output
    assert "ml_artifact_downloaded_bytes_total" in output


def test_metrics_collector_singleton():
    assert get_metrics_collector() is get_metrics_collector()


def test_retry_handler_retries_then_succeeds():
    attempts = []
    delays = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("reset")
        return "ok"

    handler = RetryHandler(
        RetryConfig(max_attempts=3, base_delay=1.0, jitter=False, retryable_exceptions=(ConnectionError,)),
        sleep=delays.append,
    )
    assert handler.execute_with_retry(flaky, operation_name="flaky") == "ok"
    assert len(attempts) == 3
    assert delays == [1.0, 2.0]


def test_retry_handler_does_not_retry_other_errors():
    attempts = []

    def broken():
        attempts.append(1)
        raise ValueError("bad input")

    handler = RetryHandler(
        RetryConfig(max_attempts=5, retryable_exceptions=(ConnectionError,)),
        sleep=lambda _: None,
    )
    with pytest.raises(ValueError):
        handler.execute_with_retry(broken)
    assert len(attempts) == 1


def test_retry_handler_reraises_last_error():
    handler = RetryHandler(
        RetryConfig(max_attempts=2, retryable_exceptions=(ConnectionError,)),
        sleep=lambda _: None,
    )

    def always_down():
        raise ConnectionError("down")

    with pytest.raises(ConnectionError, match="down"):
        handler.execute_with_retry(always_down)
