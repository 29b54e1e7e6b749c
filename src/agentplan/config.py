"""Configuration system using platformdirs for cross-platform paths."""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import platformdirs

APP_NAME = "agentplan"
APP_AUTHOR = "agentplan"

# Command lines used when config.toml has no [agents] table.
# The prompt is written to the command's stdin.
DEFAULT_AGENT_COMMANDS: dict[str, list[str]] = {
	"claude": ["claude", "-p"],
	"gemini": ["gemini"],
	"codex": ["codex", "exec", "-"],
	"ollama": ["ollama", "run", "llama3.2"],
}


@dataclass
class Config:
	"""Central configuration with XDG/platform conventions."""

	config_dir: Path = field(default_factory=lambda: Path(platformdirs.user_config_dir(APP_NAME)))
	data_dir: Path = field(default_factory=lambda: Path(platformdirs.user_data_dir(APP_NAME)))

	# Derived paths
	config_file: Path = field(init=False)
	profiles_file: Path = field(init=False)
	log_dir: Path = field(init=False)

	# Execution defaults
	max_concurrency: int = 3
	default_timeout: float = 300.0
	confidence_threshold: float = 0.6
	fallback_agent: str = "claude"
	default_profile: str = "smart-efficient"
	agents: dict[str, list[str]] = field(default_factory=lambda: dict(DEFAULT_AGENT_COMMANDS))

	def __post_init__(self) -> None:
		self.config_file = self.config_dir / "config.toml"
		self.profiles_file = self.config_dir / "profiles.json"
		self.log_dir = self.data_dir / "logs"

	def ensure_dirs(self) -> None:
		"""Create all required directories."""
		self.config_dir.mkdir(parents=True, exist_ok=True)
		self.data_dir.mkdir(parents=True, exist_ok=True)
		self.log_dir.mkdir(parents=True, exist_ok=True)


_PATH_FIELDS = {"config_dir", "data_dir"}
_NUMBER_FIELDS = {"max_concurrency": int, "default_timeout": float, "confidence_threshold": float}


def _apply_env_overrides(config: Config) -> Config:
	"""Apply AGENTPLAN_* environment variable overrides."""
	env_map = {
		"AGENTPLAN_CONFIG_DIR": "config_dir",
		"AGENTPLAN_DATA_DIR": "data_dir",
		"AGENTPLAN_MAX_CONCURRENCY": "max_concurrency",
		"AGENTPLAN_DEFAULT_TIMEOUT": "default_timeout",
		"AGENTPLAN_CONFIDENCE_THRESHOLD": "confidence_threshold",
		"AGENTPLAN_FALLBACK_AGENT": "fallback_agent",
		"AGENTPLAN_DEFAULT_PROFILE": "default_profile",
	}
	for env_key, attr in env_map.items():
		val = os.getenv(env_key)
		if not val:
			continue
		if attr in _PATH_FIELDS:
			setattr(config, attr, Path(val))
		elif attr in _NUMBER_FIELDS:
			setattr(config, attr, _NUMBER_FIELDS[attr](val))
		else:
			setattr(config, attr, val)
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
		if key == "agents" and isinstance(val, dict):
			# Per-agent entries replace the default command for that agent only
			config.agents.update({name: list(cmd) for name, cmd in val.items()})
		elif key in _PATH_FIELDS:
			setattr(config, key, Path(os.path.expanduser(val)))
		elif key in _NUMBER_FIELDS:
			setattr(config, key, _NUMBER_FIELDS[key](val))
		elif hasattr(config, key):
			setattr(config, key, val)

	# Recompute derived paths after toml overrides
	config.__post_init__()
	return config


def load_config() -> Config:
	"""
	Load config with precedence: env vars > config.toml > defaults.

	The config directory itself can only be moved by the environment,
	since it is where config.toml is looked up.
	"""
	config = Config()
	env_dir = os.getenv("AGENTPLAN_CONFIG_DIR")
	if env_dir:
		config.config_dir = Path(env_dir)
		config.__post_init__()
	config = _apply_toml(config)
	config = _apply_env_overrides(config)
	config.ensure_dirs()
	return config
