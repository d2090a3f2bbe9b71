"""Tests for mediarelay.core.config — configuration management.

Tests cover:
- Default values for all configuration fields.
- Environment variable overrides via the MEDIARELAY_ prefix.
- Automatic directory creation on initialisation.
- Derived paths and the port candidate list.
- Pydantic validation constraints (port range, log level literal).
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from mediarelay.core.config import RelayConfig


def _config(temp_dir: Path, **overrides) -> RelayConfig:
    return RelayConfig(
        _env_file=None,
        data_dir=temp_dir / "data",
        static_dir=temp_dir / "public",
        **overrides,
    )


class TestConfigDefaults:
    """Verify that RelayConfig provides sensible defaults."""

    def test_default_ports(self, monkeypatch, temp_dir):
        monkeypatch.delenv("MEDIARELAY_SERVER_PORT", raising=False)
        monkeypatch.delenv("MEDIARELAY_FALLBACK_PORT", raising=False)
        cfg = _config(temp_dir)
        assert cfg.server_port == 5007
        assert cfg.fallback_port == 5008

    def test_default_records_file(self, test_config: RelayConfig):
        assert test_config.records_file == "videos.json"
        assert test_config.records_path == test_config.data_dir / "videos.json"

    def test_default_image_prefix(self, test_config: RelayConfig):
        assert test_config.images_url_prefix == "/images"
        assert test_config.images_dir == test_config.static_dir / "images"

    def test_default_services(self, monkeypatch, temp_dir):
        monkeypatch.delenv("MEDIARELAY_VISION_MODEL", raising=False)
        cfg = _config(temp_dir)
        assert cfg.generation_base_url == "https://api.lumalabs.ai/dream-machine/v1"
        assert cfg.vision_model == "llama-3.2-11b-vision-preview"
        assert cfg.description_timeout == 30.0

    def test_credentials_default_to_none(self, monkeypatch, temp_dir):
        for name in ("LUMAAI_API_KEY", "GROQ_API_KEY", "IMGUR_CLIENT_ID"):
            monkeypatch.delenv(f"MEDIARELAY_{name}", raising=False)
        cfg = _config(temp_dir)
        assert cfg.lumaai_api_key is None
        assert cfg.groq_api_key is None
        assert cfg.imgur_client_id is None


class TestEnvironmentOverrides:
    """Environment variables with the MEDIARELAY_ prefix override defaults."""

    def test_port_from_env(self, monkeypatch, temp_dir):
        monkeypatch.setenv("MEDIARELAY_SERVER_PORT", "6001")
        assert _config(temp_dir).server_port == 6001

    def test_api_key_from_env(self, monkeypatch, temp_dir):
        monkeypatch.setenv("MEDIARELAY_LUMAAI_API_KEY", "luma-from-env")
        assert _config(temp_dir).lumaai_api_key == "luma-from-env"

    def test_env_is_case_insensitive(self, monkeypatch, temp_dir):
        monkeypatch.setenv("mediarelay_log_level", "DEBUG")
        assert _config(temp_dir).log_level == "DEBUG"


class TestDirectories:
    """Directories are created when the configuration is built."""

    def test_directories_created(self, temp_dir):
        cfg = _config(temp_dir)
        assert cfg.data_dir.is_dir()
        assert cfg.images_dir.is_dir()


class TestCandidatePorts:
    """Test RelayConfig.candidate_ports."""

    def test_primary_then_fallback(self, temp_dir):
        assert _config(temp_dir, server_port=5007, fallback_port=5008).candidate_ports == [5007, 5008]

    def test_no_fallback(self, temp_dir):
        assert _config(temp_dir, server_port=5007, fallback_port=None).candidate_ports == [5007]

    def test_duplicate_fallback_ignored(self, temp_dir):
        assert _config(temp_dir, server_port=5007, fallback_port=5007).candidate_ports == [5007]


class TestValidation:
    """Pydantic validation constraints."""

    def test_port_below_range(self, temp_dir):
        with pytest.raises(ValidationError):
            _config(temp_dir, server_port=80)

    def test_port_above_range(self, temp_dir):
        with pytest.raises(ValidationError):
            _config(temp_dir, server_port=70000)

    def test_invalid_log_level(self, temp_dir):
        with pytest.raises(ValidationError):
            _config(temp_dir, log_level="LOUD")

    def test_timeout_must_be_positive(self, temp_dir):
        with pytest.raises(ValidationError):
            _config(temp_dir, description_timeout=0)
