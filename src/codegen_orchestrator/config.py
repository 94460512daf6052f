"""Configuration system using platformdirs for cross-platform paths."""

import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import platformdirs
from dotenv import load_dotenv

from .errors import ConfigError, FieldError

APP_NAME = "codegen-orchestrator"
APP_AUTHOR = "codegen-orchestrator"
ENV_PREFIX = "CODEGEN_ORCHESTRATOR_"

STRATEGIES = ("round_robin", "least_connections", "weighted")
BACKOFFS = ("linear", "exponential")
EVICTION_POLICIES = ("lru", "fifo")
QUALITY_LEVELS = ("draft", "production", "optimized")
EXHAUSTION_POLICIES = ("proceed", "fail")


@dataclass
class ProviderSettings:
	"""One backing model provider reachable through the gateway."""
	name: str
	models: list[str] = field(default_factory=list)
	api_key_env: str = ""
	base_url: str = ""
	weight: float = 1.0
	enabled: bool = True
	# USD per 1K tokens, used for the running cost estimate
	prompt_cost_per_1k: float = 0.0
	completion_cost_per_1k: float = 0.0

	@property
	def api_key(self) -> str:
		return os.getenv(self.api_key_env, "").strip() if self.api_key_env else ""

	@property
	def default_model(self) -> str:
		return self.models[0] if self.models else ""


def _default_providers() -> dict[str, ProviderSettings]:
	return {
		"openai": ProviderSettings(
			name="openai",
			models=["gpt-4o-mini", "gpt-4o"],
			api_key_env="OPENAI_API_KEY",
			prompt_cost_per_1k=0.00015,
			completion_cost_per_1k=0.0006,
		),
		"anthropic": ProviderSettings(
			name="anthropic",
			models=["claude-3-5-haiku-latest", "claude-3-5-sonnet-latest"],
			api_key_env="ANTHROPIC_API_KEY",
			prompt_cost_per_1k=0.0008,
			completion_cost_per_1k=0.004,
		),
		"google": ProviderSettings(
			name="google",
			models=["gemini-1.5-flash", "gemini-1.5-pro"],
			api_key_env="GEMINI_API_KEY",
			prompt_cost_per_1k=0.000075,
			completion_cost_per_1k=0.0003,
		),
		"ollama": ProviderSettings(
			name="ollama",
			models=["llama3.1"],
			base_url="http://localhost:11434",
			enabled=False,
		),
	}


@dataclass
class GatewaySettings:
	"""Provider selection, retry and concurrency for the LLM gateway."""
	default_provider: str = "openai"
	strategy: str = "round_robin"
	retries: int = 2
	backoff: str = "exponential"
	base_delay: float = 0.5
	max_delay: float = 8.0
	timeout: float = 60.0
	temperature: float = 0.2
	max_tokens: int = 4096
	max_in_flight: int = 8
	failover: bool = True


@dataclass
class SandboxSettings:
	"""Execution pool limits and per-session defaults."""
	max_sessions: int = 4
	session_lifetime: float = 600.0
	idle_timeout: float = 120.0
	reap_interval: float = 15.0
	timeout: float = 10.0
	memory_limit_mb: int = 256
	max_output_bytes: int = 64_000
	max_code_bytes: int = 200_000
	allowed_languages: list[str] = field(default_factory=lambda: ["python", "javascript", "bash"])


@dataclass
class CacheSettings:
	"""One named cache."""
	ttl: float = 600.0
	max_size: int = 128
	policy: str = "lru"


def _default_caches() -> dict[str, CacheSettings]:
	return {
		"conversation": CacheSettings(ttl=300.0, max_size=256, policy="lru"),
		"code": CacheSettings(ttl=1800.0, max_size=64, policy="lru"),
		"execution": CacheSettings(ttl=600.0, max_size=128, policy="fifo"),
	}


@dataclass
class WorkflowSettings:
	"""Defaults for WorkflowOptions."""
	max_clarifications: int = 3
	timeout: float = 300.0
	retries: int = 2
	quality: str = "production"
	on_clarifications_exhausted: str = "proceed"
	max_history: int = 100


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	log_dir: Path = field(init=False)
	sandbox_dir: Path = field(init=False)

	log_level: str = "INFO"

	gateway: GatewaySettings = field(default_factory=GatewaySettings)
	providers: dict[str, ProviderSettings] = field(default_factory=_default_providers)
	sandbox: SandboxSettings = field(default_factory=SandboxSettings)
	caches: dict[str, CacheSettings] = field(default_factory=_default_caches)
	workflow: WorkflowSettings = field(default_factory=WorkflowSettings)

	def __post_init__(self) -> None:
		self.log_dir = self.data_dir / "logs"
		self.sandbox_dir = self.data_dir / "sandbox"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)
		self.sandbox_dir.mkdir(parents=True, exist_ok=True)

	def validate(self) -> None:
		"""Raise ConfigError listing every invalid value."""
		errors: list[FieldError] = []

		def check(cond: bool, name: str, message: str, value: Any) -> None:
			if not cond:
				errors.append(FieldError(field=name, message=message, value=value))

		g = self.gateway
		check(g.strategy in STRATEGIES, "gateway.strategy", f"must be one of {STRATEGIES}", g.strategy)
		check(g.backoff in BACKOFFS, "gateway.backoff", f"must be one of {BACKOFFS}", g.backoff)
		check(g.retries >= 0, "gateway.retries", "must be >= 0", g.retries)
		check(g.timeout > 0, "gateway.timeout", "must be > 0", g.timeout)
		check(g.max_in_flight >= 1, "gateway.max_in_flight", "must be >= 1", g.max_in_flight)
		check(g.default_provider in self.providers, "gateway.default_provider", "unknown provider", g.default_provider)

		for name, p in self.providers.items():
			check(p.weight >= 0, f"providers.{name}.weight", "must be >= 0", p.weight)

		s = self.sandbox
		check(s.max_sessions >= 1, "sandbox.max_sessions", "must be >= 1", s.max_sessions)
		check(s.timeout > 0, "sandbox.timeout", "must be > 0", s.timeout)
		check(s.memory_limit_mb >= 16, "sandbox.memory_limit_mb", "must be >= 16", s.memory_limit_mb)

		for name, c in self.caches.items():
			check(c.policy in EVICTION_POLICIES, f"cache.{name}.policy", f"must be one of {EVICTION_POLICIES}", c.policy)
			check(c.max_size >= 1, f"cache.{name}.max_size", "must be >= 1", c.max_size)
			check(c.ttl > 0, f"cache.{name}.ttl", "must be > 0", c.ttl)

		w = self.workflow
		check(w.max_clarifications >= 0, "workflow.max_clarifications", "must be >= 0", w.max_clarifications)
		check(w.timeout > 0, "workflow.timeout", "must be > 0", w.timeout)
		check(w.quality in QUALITY_LEVELS, "workflow.quality", f"must be one of {QUALITY_LEVELS}", w.quality)
		check(
			w.on_clarifications_exhausted in EXHAUSTION_POLICIES,
			"workflow.on_clarifications_exhausted",
			f"must be one of {EXHAUSTION_POLICIES}",
			w.on_clarifications_exhausted,
		)

		if errors:
			raise ConfigError(errors)


def _update_dataclass(target: Any, data: dict[str, Any]) -> None:
	"""Copy known keys from a toml table onto a settings dataclass."""
	names = {f.name for f in fields(target)}
	for key, val in data.items():
		if key in names:
			setattr(target, key, val)


def _apply_env_overrides(config: Config) -> Config:
	"""Apply CODEGEN_ORCHESTRATOR_* environment variable overrides."""
	path_map = {
		f"{ENV_PREFIX}CONFIG_DIR": "config_dir",
		f"{ENV_PREFIX}DATA_DIR": "data_dir",
	}
	for env_key, attr in path_map.items():
		val = os.getenv(env_key)
		if val:
			setattr(config, attr, Path(val))

	if val := os.getenv(f"{ENV_PREFIX}LOG_LEVEL"):
		config.log_level = val
	if val := os.getenv(f"{ENV_PREFIX}PROVIDER"):
		config.gateway.default_provider = val
	if val := os.getenv(f"{ENV_PREFIX}STRATEGY"):
		config.gateway.strategy = val
	if val := os.getenv(f"{ENV_PREFIX}QUALITY"):
		config.workflow.quality = val
	if val := os.getenv(f"{ENV_PREFIX}MAX_CLARIFICATIONS"):
		config.workflow.max_clarifications = int(val)

	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def _apply_toml(config: Config, toml_path: Optional[Path] = None) -> Config:
	"""Apply config.toml overrides if file exists."""
	toml_path = toml_path or config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	for key in ("config_dir", "data_dir"):
		if key in data:
			setattr(config, key, Path(os.path.expanduser(data[key])))
	if "log_level" in data:
		config.log_level = data["log_level"]

	_update_dataclass(config.gateway, data.get("gateway", {}))
	_update_dataclass(config.sandbox, data.get("sandbox", {}))
	_update_dataclass(config.workflow, data.get("workflow", {}))

	for name, table in data.get("providers", {}).items():
		settings = config.providers.get(name) or ProviderSettings(name=name)
		_update_dataclass(settings, table)
		settings.name = name
		config.providers[name] = settings

	for name, table in data.get("cache", {}).items():
		settings = config.caches.get(name) or CacheSettings()
		_update_dataclass(settings, table)
		config.caches[name] = settings

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config(toml_path: Optional[Path] = None) -> Config:
	"""Load config with precedence: env vars > config.toml > defaults."""
	load_dotenv()
	config = Config()
	config = _apply_toml(config, toml_path)
	config = _apply_env_overrides(config)
	config.validate()
	config.ensure_dirs()
	return config


# Singleton
_config: Config | None = None


def get_config() -> Config:
	"""Get or create the global config instance."""
	global _config
	if _config is None:
		_config = load_config()
	return _config
