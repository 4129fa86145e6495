"""
Unit Tests: Configuration and Logging

Tests:
    - S3Config validation, environment loading, client kwargs
    - DatastoreConfig validation and environment loading
    - JSON log formatting
"""

import io
import json
import logging
import sys

import pytest

from datastore_s3.storage.config import DatastoreConfig, S3Config
from datastore_s3.observability.logging import (
    JsonFormatter,
    LogLevel,
    StructuredLogger,
    setup_logging,
)


class TestS3Config:
    """Tests for S3Config."""

    def test_defaults(self):
        """Test default connection settings."""
        config = S3Config(bucket_name="blocks")
        assert config.region == "us-east-1"
        assert config.endpoint_url is None
        assert config.addressing_style == "auto"

    @pytest.mark.parametrize("kwargs", [
        {"bucket_name": ""},
        {"bucket_name": "ab"},
        {"bucket_name": "blocks", "addressing_style": "sideways"},
        {"bucket_name": "blocks", "max_concurrency": 0},
        {"bucket_name": "blocks", "read_timeout_seconds": 0},
        {"bucket_name": "blocks", "max_retries": -1},
    ])
    def test_invalid(self, kwargs):
        """Test invariant violations raise ValueError."""
        with pytest.raises(ValueError):
            S3Config(**kwargs)

    def test_from_env(self, monkeypatch):
        """Test loading from S3_* variables."""
        monkeypatch.setenv("S3_BUCKET", "blocks")
        monkeypatch.setenv("S3_REGION", "eu-west-1")
        monkeypatch.setenv("S3_ENDPOINT_URL", "http://localhost:9000")
        monkeypatch.setenv("S3_ADDRESSING_STYLE", "path")
        monkeypatch.setenv("S3_VERIFY_SSL", "false")
        monkeypatch.setenv("S3_MAX_CONCURRENCY", "4")

        config = S3Config.from_env()
        assert config.bucket_name == "blocks"
        assert config.region == "eu-west-1"
        assert config.addressing_style == "path"
        assert config.max_concurrency == 4
        assert config.verify_ssl is False

        kwargs = config.get_client_kwargs()
        assert kwargs["endpoint_url"] == "http://localhost:9000"
        assert kwargs["region_name"] == "eu-west-1"
        assert kwargs["verify"] is False

    def test_from_env_requires_bucket(self, monkeypatch):
        """Test a missing bucket variable is rejected."""
        monkeypatch.delenv("S3_BUCKET", raising=False)
        with pytest.raises(ValueError, match="S3_BUCKET"):
            S3Config.from_env()

    def test_session_kwargs(self):
        """Test credentials are only passed when both halves are set."""
        assert S3Config(bucket_name="blocks", access_key_id="id").get_session_kwargs() == {}
        kwargs = S3Config(
            bucket_name="blocks", access_key_id="id", secret_access_key="secret",
        ).get_session_kwargs()
        assert kwargs == {"aws_access_key_id": "id", "aws_secret_access_key": "secret"}


class TestDatastoreConfig:
    """Tests for DatastoreConfig."""

    def test_defaults(self):
        """Test documented defaults."""
        config = DatastoreConfig()
        assert config.path == ""
        assert config.create_if_missing is False
        assert config.cache_enabled is False
        assert config.cache_ttl_ms == 10_000
        assert config.not_found_cache_ttl_ms == 2_000
        assert config.cache_max_entries == 10_000
        assert config.treat_forbidden_as_missing is False
        assert config.lock_conditional_put is True
        assert config.list_page_size == 1000

    @pytest.mark.parametrize("kwargs", [
        {"cache_ttl_ms": 0},
        {"not_found_cache_ttl_ms": -1},
        {"cache_max_entries": 0},
        {"list_page_size": 0},
        {"list_page_size": 1001},
    ])
    def test_invalid(self, kwargs):
        """Test invariant violations raise ValueError."""
        with pytest.raises(ValueError):
            DatastoreConfig(**kwargs)

    def test_from_env(self, monkeypatch):
        """Test loading from DATASTORE_* variables."""
        monkeypatch.setenv("DATASTORE_PATH", ".ipfs/datastore")
        monkeypatch.setenv("DATASTORE_CREATE_IF_MISSING", "true")
        monkeypatch.setenv("DATASTORE_CACHE_ENABLED", "1")
        monkeypatch.setenv("DATASTORE_NOT_FOUND_CACHE_TTL_MS", "500")
        monkeypatch.setenv("DATASTORE_CACHE_MAX_ENTRIES", "64")
        monkeypatch.setenv("DATASTORE_LIST_PAGE_SIZE", "50")
        monkeypatch.setenv("DATASTORE_LOCK_CONDITIONAL_PUT", "no")

        config = DatastoreConfig.from_env()
        assert config.path == ".ipfs/datastore"
        assert config.create_if_missing is True
        assert config.cache_enabled is True
        assert config.not_found_cache_ttl_ms == 500
        assert config.cache_max_entries == 64
        assert config.list_page_size == 50
        assert config.lock_conditional_put is False

    def test_frozen(self):
        """Test configs are immutable."""
        config = DatastoreConfig()
        with pytest.raises(AttributeError):
            config.path = "other"


class TestStructuredLogging:
    """Tests for JSON log output."""

    def test_json_fields(self):
        """Test keyword extras and context fields reach the JSON record."""
        stream = io.StringIO()
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        setup_logging(LogLevel.DEBUG, json_output=True, stream=stream)
        try:
            logger = StructuredLogger("datastore_s3.tests").with_extra(component="test")
            with StructuredLogger.context(request_id="r-1"):
                logger.info("Datastore opened", bucket="blocks")

            record = json.loads(stream.getvalue().strip().splitlines()[-1])
            assert record["message"] == "Datastore opened"
            assert record["level"] == "INFO"
            assert record["logger"] == "datastore_s3.tests"
            assert record["bucket"] == "blocks"
            assert record["component"] == "test"
            assert record["request_id"] == "r-1"
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

    def test_formatter_includes_exception(self):
        """Test exc_info is rendered into the record."""
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord(
                "datastore_s3", logging.ERROR, __file__, 1, "failed", None,
                exc_info=sys.exc_info(),
            )
        data = json.loads(JsonFormatter().format(record))
        assert "ValueError: boom" in data["exception"]
