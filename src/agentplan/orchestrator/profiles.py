"""
Orchestration profiles - named policies for turning a task into a plan.

A profile lists the modes it prefers, which agents it may use, and
execution limits. Profiles are stored as JSON next to config.toml; the
built-in defaults are used when no file exists.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from ..compiler.builders import PipelineStep
from ..plans.models import KNOWN_AGENTS, AgentName, StepAction

logger = logging.getLogger(__name__)

KNOWN_MODES: list[str] = [
	"single",
	"compare",
	"pipeline",
	"auto",
	"debate",
	"consensus",
	"correction",
	"pickbuild",
	"pkpoet",
	"poetiq",
	"adversary",
	"selfdiscover",
	"codereason",
	"largefeature",
	"supervise",
]

_KNOWN_AGENT_NAMES = [a.value for a in KNOWN_AGENTS]


class ProfileError(Exception):
	"""Raised when a profile is missing or fails validation."""
	pass


class ProfilePipelineStep(BaseModel):
	"""Pipeline stage as written in a profile file."""
	agent: str
	action: str
	model: Optional[str] = None
	prompt_template: Optional[str] = None

	def to_pipeline_step(self) -> PipelineStep:
		try:
			action = StepAction(self.action)
		except ValueError:
			action = StepAction.CUSTOM
		template = self.prompt_template
		if action is StepAction.CUSTOM and not template:
			# Unknown action names become a custom stage headed by the action name
			template = f"{self.action}:\n\n{{{{prompt}}}}"
		return PipelineStep(
			agent=AgentName(self.agent),
			action=action,
			model=self.model,
			prompt_template=template,
		)


class OrchestrationProfile(BaseModel):
	"""A named orchestration policy."""
	name: str = Field(default="")
	preferred_modes: list[str] = Field(default_factory=list, description="Modes in order of preference")
	max_concurrency: int = Field(default=2)
	consensus_rounds: int = Field(default=1)
	require_review: bool = Field(default=False)
	allow_agents: list[str] = Field(default_factory=list, description="Agents this profile may use")
	pipeline_steps: Optional[list[ProfilePipelineStep]] = Field(default=None)
	use_context_compression: bool = Field(default=False)
	timeout_budget_ms: int = Field(default=120000)

	@property
	def allowed_agent_names(self) -> list[AgentName]:
		return [AgentName(a) for a in self.allow_agents if a in _KNOWN_AGENT_NAMES]

	@property
	def timeout_budget(self) -> float:
		"""Timeout budget in seconds."""
		return self.timeout_budget_ms / 1000


class OrchestrationConfig(BaseModel):
	"""Set of profiles plus the one used when none is named."""
	default_profile: str = Field(default="smart-efficient")
	profiles: dict[str, OrchestrationProfile] = Field(default_factory=dict)


_DEFAULT_PROFILES: dict[str, dict[str, Any]] = {
	"speed": {
		"name": "speed",
		"preferred_modes": ["single", "pipeline"],
		"max_concurrency": 4,
		"consensus_rounds": 1,
		"require_review": False,
		"allow_agents": list(_KNOWN_AGENT_NAMES),
		"use_context_compression": False,
		"timeout_budget_ms": 60000,
	},
	"balanced": {
		"name": "balanced",
		"preferred_modes": ["pipeline", "supervise", "consensus"],
		"max_concurrency": 3,
		"consensus_rounds": 2,
		"require_review": False,
		"allow_agents": list(_KNOWN_AGENT_NAMES),
		"use_context_compression": True,
		"timeout_budget_ms": 120000,
	},
	"quality": {
		"name": "quality",
		"preferred_modes": ["consensus", "pickbuild", "supervise", "pipeline"],
		"max_concurrency": 2,
		"consensus_rounds": 3,
		"require_review": True,
		"allow_agents": ["claude", "gemini", "codex", "mistral"],
		"use_context_compression": True,
		"timeout_budget_ms": 180000,
	},
	"smart-efficient": {
		"name": "smart-efficient",
		"preferred_modes": ["pipeline"],
		"max_concurrency": 2,
		"consensus_rounds": 1,
		"require_review": False,
		"allow_agents": ["claude", "factory"],
		"pipeline_steps": [
			{"agent": "factory", "action": "plan"},
			{"agent": "claude", "action": "plan"},
			{"agent": "factory", "action": "code"},
			{"agent": "factory", "action": "refine"},
		],
		"use_context_compression": True,
		"timeout_budget_ms": 120000,
	},
}


def get_default_profiles() -> dict[str, OrchestrationProfile]:
	"""Fresh copies of the built-in profiles."""
	return {name: OrchestrationProfile.model_validate(data) for name, data in _DEFAULT_PROFILES.items()}


def get_default_orchestration_config() -> OrchestrationConfig:
	return OrchestrationConfig(default_profile="smart-efficient", profiles=get_default_profiles())


def validate_profile(profile: OrchestrationProfile) -> list[str]:
	"""
	Check a profile for semantic errors.

	Returns:
		Error messages, empty when the profile is valid
	"""
	errors: list[str] = []

	if not profile.name.strip():
		errors.append("Profile name is required.")

	if not profile.preferred_modes:
		errors.append("preferred_modes must be a non-empty list.")
	else:
		unknown_modes = [m for m in profile.preferred_modes if m not in KNOWN_MODES]
		if unknown_modes:
			errors.append("Unknown preferred_modes: " + ", ".join(unknown_modes))

	if profile.max_concurrency < 1:
		errors.append("max_concurrency must be >= 1.")

	if profile.consensus_rounds < 1:
		errors.append("consensus_rounds must be >= 1.")

	if not profile.allow_agents:
		errors.append("allow_agents must be a non-empty list.")
	else:
		unknown_agents = [a for a in profile.allow_agents if a not in _KNOWN_AGENT_NAMES]
		if unknown_agents:
			errors.append("Unknown allow_agents: " + ", ".join(unknown_agents))

	if profile.pipeline_steps is not None:
		if not profile.pipeline_steps:
			errors.append("pipeline_steps must be a non-empty list when provided.")
		for i, step in enumerate(profile.pipeline_steps):
			if step.agent not in _KNOWN_AGENT_NAMES:
				errors.append(f"pipeline_steps[{i}].agent must be a known agent.")
			if not step.action.strip():
				errors.append(f"pipeline_steps[{i}].action must be a non-empty string.")
			if step.model is not None and not step.model.strip():
				errors.append(f"pipeline_steps[{i}].model must be a non-empty string when provided.")
			if step.prompt_template is not None and not step.prompt_template.strip():
				errors.append(f"pipeline_steps[{i}].prompt_template must be a non-empty string when provided.")

	if profile.timeout_budget_ms < 1000:
		errors.append("timeout_budget_ms must be >= 1000.")

	return errors


def validate_orchestration_config(config: OrchestrationConfig) -> list[str]:
	"""Validate every profile plus the default profile reference."""
	errors: list[str] = []

	if not config.default_profile.strip():
		errors.append("default_profile is required.")

	if not config.profiles:
		errors.append("profiles must contain at least one profile.")

	for key, profile in config.profiles.items():
		if profile.name != key:
			errors.append(f"Profile name must match key: {key}")
		errors.extend(validate_profile(profile))

	if config.default_profile and config.profiles and config.default_profile not in config.profiles:
		errors.append(f"default_profile does not match any profile: {config.default_profile}")

	return errors


def normalize_orchestration_config(
	config: Optional[Union[OrchestrationConfig, dict[str, Any]]] = None,
) -> OrchestrationConfig:
	"""
	Overlay user profiles on the defaults.

	User profiles replace defaults of the same name; a profile without a
	name takes its key.
	"""
	defaults = get_default_orchestration_config()
	if config is None:
		return defaults

	if isinstance(config, OrchestrationConfig):
		data = config.model_dump()
	else:
		data = dict(config)

	profiles = dict(defaults.profiles)
	for key, raw in (data.get("profiles") or {}).items():
		profile = OrchestrationProfile.model_validate(raw)
		if not profile.name:
			profile = profile.model_copy(update={"name": key})
		profiles[key] = profile

	return OrchestrationConfig(
		default_profile=data.get("default_profile") or defaults.default_profile,
		profiles=profiles,
	)


def load_profiles_file(path: Path) -> Optional[OrchestrationConfig]:
	"""
	Load profiles from a JSON file.

	Returns:
		The normalized config, or None if the file is missing or unreadable
	"""
	if not path.exists():
		return None

	try:
		data = json.loads(path.read_text())
		return normalize_orchestration_config(data)
	except (OSError, json.JSONDecodeError, ValidationError, TypeError, AttributeError) as e:
		logger.warning(f"Ignoring unreadable profiles file {path}: {e}")
		return None


def save_profiles_file(config: OrchestrationConfig, path: Path) -> None:
	"""Write profiles as indented JSON."""
	path.parent.mkdir(parents=True, exist_ok=True)
	path.write_text(json.dumps(config.model_dump(mode="json", exclude_none=True), indent=2))


def resolve_orchestration_config(
	path: Optional[Path] = None,
	settings: Optional[Union[OrchestrationConfig, dict[str, Any]]] = None,
) -> OrchestrationConfig:
	"""Profiles file if present and readable, otherwise settings overlaid on defaults."""
	if path is not None:
		from_file = load_profiles_file(path)
		if from_file is not None:
			return from_file
	return normalize_orchestration_config(settings)


def get_profile(config: OrchestrationConfig, name: Optional[str] = None) -> OrchestrationProfile:
	"""
	Look up a profile and validate it.

	Raises:
		ProfileError: If the profile does not exist or is invalid
	"""
	key = name or config.default_profile
	profile = config.profiles.get(key)
	if profile is None:
		available = ", ".join(sorted(config.profiles))
		raise ProfileError(f"Unknown profile '{key}' (available: {available})")

	errors = validate_profile(profile)
	if errors:
		raise ProfileError(f"Invalid profile '{key}': " + " ".join(errors))
	return profile
