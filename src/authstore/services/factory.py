"""Factory functions for creating and wiring adapters.

Provides a production factory that resolves connection settings into an
adapter, a test factory backed by an in-memory database, and loading of
model descriptors from JSON schema files.
"""

import json
from pathlib import Path
from typing import Any

import structlog

from authstore.errors import ConfigurationError
from authstore.models.config import MEMORY_URL
from authstore.models.schema import ModelSchema
from authstore.services.adapter import Adapter, ModelsInput, normalize_models
from authstore.services.connection import create_async_engine_from_url


def create_adapter(
    models: ModelsInput,
    url: str,
    auth_token: str | None = None,
    sync_url: str | None = None,
    sync_interval: float | None = None,
    **options: Any,
) -> Adapter:
    """Create an Adapter for a local, remote or embedded-replica database.

    Args:
        models: Model descriptors, or a mapping of model name to descriptor.
        url: Local path, ":memory:", or a libsql/http(s)/ws(s) URL.
        auth_token: Credential for remote and replica modes.
        sync_url: Remote URL to replicate from; makes ``url`` an embedded replica.
        sync_interval: Seconds between background replica syncs.
        **options: Remaining adapter options (use_plural, debug_logs, ...).

    Returns:
        Configured Adapter; the connection opens on first use.
    """
    logger = structlog.get_logger(__name__)

    settings = {"url": url, "auth_token": auth_token, "sync_url": sync_url, "sync_interval": sync_interval}
    config = {key: value for key, value in settings.items() if value is not None}
    return Adapter(models, config=config, logger=logger, **options)


def create_test_adapter(models: ModelsInput, **options: Any) -> Adapter:
    """Create an Adapter over a fresh in-memory database for testing.

    Each call creates independent storage, so tests don't interfere.
    """
    logger = structlog.get_logger(__name__)

    engine = create_async_engine_from_url(MEMORY_URL, foreign_keys=options.get("foreign_keys", True))
    return Adapter(models, client=engine, logger=logger, **options)


def load_models(path: Path) -> list[ModelSchema]:
    """Load model descriptors from a JSON schema file.

    The file maps each model name to ``{"fields": {...}, "table_name": ...}``.

    Args:
        path: Path to the JSON schema file.

    Returns:
        Validated model descriptors in file order.

    Raises:
        ConfigurationError: If the file is missing, not JSON, or invalid.
    """
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"cannot read schema file {path}", driver_message=str(exc)) from exc
    if not isinstance(raw, dict):
        raise ConfigurationError(f"schema file {path} must contain a JSON object")
    return normalize_models(raw)

