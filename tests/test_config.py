"""Tests for the configuration system."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from codegen_orchestrator.config import Config, _apply_env_overrides, _apply_toml, load_config
from codegen_orchestrator.errors import ConfigError


def test_config_defaults():
	"""Config should have sensible defaults."""
	config = Config()
	assert config.config_dir.is_absolute()
	assert config.data_dir.is_absolute()
	assert config.log_dir == config.data_dir / "logs"
	assert config.sandbox_dir == config.data_dir / "sandbox"
	assert set(config.providers) == {"openai", "anthropic", "google", "ollama"}
	assert set(config.caches) == {"conversation", "code", "execution"}
	assert config.gateway.retries == 2
	assert config.workflow.max_clarifications == 3
	assert config.workflow.quality == "production"


def test_config_env_overrides():
	"""Environment variables should override defaults."""
	config = Config()
	with patch.dict(os.environ, {
		"CODEGEN_ORCHESTRATOR_DATA_DIR": "/tmp/test-data",
		"CODEGEN_ORCHESTRATOR_CONFIG_DIR": "/tmp/test-config",
		"CODEGEN_ORCHESTRATOR_STRATEGY": "least_connections",
		"CODEGEN_ORCHESTRATOR_MAX_CLARIFICATIONS": "1",
	}):
		config = _apply_env_overrides(config)
		assert config.data_dir == Path("/tmp/test-data")
		assert config.config_dir == Path("/tmp/test-config")
		# Derived paths should be recomputed
		assert config.log_dir == Path("/tmp/test-data/logs")
		assert config.gateway.strategy == "least_connections"
		assert config.workflow.max_clarifications == 1


def test_config_toml_tables(tmp_path: Path):
	"""Nested toml tables should land on the matching settings."""
	toml_path = tmp_path / "config.toml"
	toml_path.write_text(
		'log_level = "DEBUG"\n'
		"[gateway]\n"
		'strategy = "weighted"\n'
		"retries = 4\n"
		"[providers.openai]\n"
		"weight = 3.0\n"
		"[providers.local]\n"
		'models = ["tiny"]\n'
		'base_url = "http://localhost:9000"\n'
		"[cache.code]\n"
		"max_size = 5\n"
		'policy = "fifo"\n'
		"[workflow]\n"
		'on_clarifications_exhausted = "fail"\n'
	)
	config = _apply_toml(Config(), toml_path)

	assert config.log_level == "DEBUG"
	assert config.gateway.strategy == "weighted"
	assert config.gateway.retries == 4
	assert config.providers["openai"].weight == 3.0
	assert config.providers["openai"].api_key_env == "OPENAI_API_KEY"
	assert config.providers["local"].name == "local"
	assert config.providers["local"].default_model == "tiny"
	assert config.caches["code"].max_size == 5
	assert config.caches["code"].policy == "fifo"
	assert config.workflow.on_clarifications_exhausted == "fail"


def test_config_ensure_dirs(tmp_path: Path):
	"""ensure_dirs should create all required directories."""
	config = Config(
		config_dir=tmp_path / "config",
		data_dir=tmp_path / "data",
	)
	assert not config.config_dir.exists()
	assert not config.data_dir.exists()

	config.ensure_dirs()

	assert config.config_dir.exists()
	assert config.data_dir.exists()
	assert config.log_dir.exists()
	assert config.sandbox_dir.exists()


def test_load_config_creates_dirs(tmp_path: Path):
	"""load_config should create directories."""
	with patch.dict(os.environ, {
		"CODEGEN_ORCHESTRATOR_DATA_DIR": str(tmp_path / "data"),
		"CODEGEN_ORCHESTRATOR_CONFIG_DIR": str(tmp_path / "config"),
	}):
		config = load_config()
		assert config.data_dir.exists()
		assert config.config_dir.exists()


class TestValidation:
	"""Invalid values are reported together as field errors."""

	def test_defaults_are_valid(self):
		Config().validate()

	def test_collects_every_error(self):
		config = Config()
		config.gateway.strategy = "random"
		config.caches["code"].policy = "mru"
		config.workflow.quality = "perfect"

		with pytest.raises(ConfigError) as exc_info:
			config.validate()

		fields = {e.field for e in exc_info.value.errors}
		assert fields == {"gateway.strategy", "cache.code.policy", "workflow.quality"}
		assert "random" in str(exc_info.value)

	def test_negative_clarifications_rejected(self):
		config = Config()
		config.workflow.max_clarifications = -1
		with pytest.raises(ConfigError):
			config.validate()

	def test_load_config_validates(self, tmp_path: Path):
		with patch.dict(os.environ, {
			"CODEGEN_ORCHESTRATOR_DATA_DIR": str(tmp_path / "data"),
			"CODEGEN_ORCHESTRATOR_CONFIG_DIR": str(tmp_path / "config"),
			"CODEGEN_ORCHESTRATOR_QUALITY": "sloppy",
		}):
			with pytest.raises(ConfigError):
				load_config()


def test_provider_api_key_from_env():
	config = Config()
	with patch.dict(os.environ, {"ANTHROPIC_API_KEY": "  key-123  "}):
		assert config.providers["anthropic"].api_key == "key-123"
	assert config.providers["ollama"].api_key == ""
