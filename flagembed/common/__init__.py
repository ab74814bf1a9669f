"""Common utilities shared across components.

Includes:
- ``config``: pydantic-settings configuration from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics helpers.
- ``errors``: exception hierarchy raised at component boundaries.

Import pattern:
- from flagembed.common.config import EmbeddingConfig
- from flagembed.common.logging import configure_logging
"""
