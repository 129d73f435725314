"""Configuration system using platformdirs for cross-platform paths."""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import platformdirs

APP_NAME = "alphie"
APP_AUTHOR = "alphie"


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	config_file: Path = field(init=False)
	log_dir: Path = field(init=False)
	learnings_file: Path = field(init=False)

	# User-configurable
	worktree_base_dir: Path = field(
		default_factory=lambda: Path.home() / ".cache" / APP_NAME / "worktrees"
	)
	claude_binary: str = "claude"
	default_model: str = "claude-sonnet-4-20250514"
	task_timeout: float = 20 * 60
	gate_timeout: float = 5 * 60
	startup_timeout: float = 45.0
	max_startup_attempts: int = 3
	startup_backoff: float = 2.0
	progress_interval: float = 2.0
	max_retry_attempts: int = 5
	tiers: dict = field(default_factory=dict)

	def __post_init__(self) -> None:
		self.config_file = self.config_dir / "config.toml"
		self.log_dir = self.data_dir / "logs"
		self.learnings_file = self.data_dir / "learnings.jsonl"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)


_PATH_FIELDS = {"config_dir", "data_dir", "worktree_base_dir"}
_FLOAT_FIELDS = {"task_timeout", "gate_timeout", "startup_timeout", "startup_backoff", "progress_interval"}
_INT_FIELDS = {"max_startup_attempts", "max_retry_attempts"}


def _coerce(attr: str, val):
	if attr in _PATH_FIELDS:
		return Path(os.path.expanduser(str(val)))
	if attr in _FLOAT_FIELDS:
		return float(val)
	if attr in _INT_FIELDS:
		return int(val)
	return val


def _apply_env_overrides(config: Config) -> Config:
	"""Apply ALPHIE_* environment variable overrides."""
	env_map = {
		"ALPHIE_CONFIG_DIR": "config_dir",
		"ALPHIE_DATA_DIR": "data_dir",
		"ALPHIE_WORKTREE_DIR": "worktree_base_dir",
		"ALPHIE_CLAUDE_BINARY": "claude_binary",
		"ALPHIE_MODEL": "default_model",
		"ALPHIE_TASK_TIMEOUT": "task_timeout",
		"ALPHIE_GATE_TIMEOUT": "gate_timeout",
		"ALPHIE_STARTUP_TIMEOUT": "startup_timeout",
		"ALPHIE_MAX_RETRY_ATTEMPTS": "max_retry_attempts",
	}
	for env_key, attr in env_map.items():
		val = os.getenv(env_key)
		if val:
			setattr(config, attr, _coerce(attr, val))
	# Recompute derived paths after overrides
	config.__post_init__()
	return config


def _apply_toml(config: Config) -> Config:
	"""Apply config.toml overrides if file exists."""
	toml_path = config.config_dir / "config.toml"
	if not toml_path.exists():
		return config

	with open(toml_path, "rb") as f:
		data = tomllib.load(f)

	for key, val in data.items():
		if key.startswith("_") or not hasattr(config, key):
			continue
		if key in ("config_file", "log_dir", "learnings_file"):
			continue
		setattr(config, key, _coerce(key, val))

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def _install_tier_table(config: Config) -> None:
	"""Freeze the [tiers.*] overrides into the process-wide iteration table."""
	if not config.tiers:
		return

	from .models import Tier
	from .ralph.iteration import TierConfig, get_tier_configs, set_tier_configs

	table = get_tier_configs()
	for name, values in config.tiers.items():
		tier = Tier.parse(name)
		if tier is None:
			continue
		current = table.get(tier, TierConfig(threshold=5, max_iterations=3))
		table[tier] = TierConfig(
			threshold=int(values.get("threshold", current.threshold)),
			max_iterations=int(values.get("max_iterations", current.max_iterations)),
		)
	set_tier_configs(table)


def load_config() -> Config:
	"""Load config with precedence: env vars > config.toml > defaults."""
	config = Config()
	# The config dir decides which config.toml is read
	if os.getenv("ALPHIE_CONFIG_DIR"):
		config.config_dir = _coerce("config_dir", os.environ["ALPHIE_CONFIG_DIR"])
		config.__post_init__()
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.ensure_dirs()
	_install_tier_table(config)
	return config


# Singleton
_config: Config | None = None


def get_config() -> Config:
	"""Get or create the global config instance."""
	global _config
	if _config is None:
		_config = load_config()
	return _config
