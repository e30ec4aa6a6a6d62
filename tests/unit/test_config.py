"""
Unit tests for engine configuration.

Tests cover:
- Defaults
- Environment overrides with the MMS_ prefix
- Validation of inconsistent settings
"""

import pytest
from pydantic import ValidationError

from dashboard.mms_engine.config import (
    MAX_BATCH_OPERATIONS,
    EngineSettings,
    StoreBackend,
    load_settings,
)


class TestEngineSettings:
    """Tests for EngineSettings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("MMS_STORE_BACKEND", raising=False)
        settings = EngineSettings()
        assert settings.store_backend == StoreBackend.MEMORY
        assert settings.batch_limit == MAX_BATCH_OPERATIONS
        assert settings.fetch_cooldown_seconds == 120.0
        assert settings.inactivity_delay_seconds == 600.0
        assert settings.members_collection == "members"

    def test_env_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MMS_STORE_BACKEND", "sqlite")
        monkeypatch.setenv("MMS_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("MMS_BATCH_LIMIT", "100")

        settings = load_settings()

        assert settings.store_backend == StoreBackend.SQLITE
        assert settings.batch_limit == 100
        assert settings.database_path == str(tmp_path / "mms.db")

    def test_batch_limit_capped(self):
        with pytest.raises(ValidationError):
            EngineSettings(batch_limit=MAX_BATCH_OPERATIONS + 1)

    def test_same_collection_rejected(self):
        settings = EngineSettings(members_collection="docs", events_collection="docs")
        with pytest.raises(ValueError):
            settings.validate_settings()

    def test_unknown_log_format_rejected(self):
        settings = EngineSettings(log_format="xml")
        with pytest.raises(ValueError):
            settings.validate_settings()
