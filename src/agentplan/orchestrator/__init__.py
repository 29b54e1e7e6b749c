"""Orchestrator module - Profiles and the selector that picks a plan for a task."""

from .profiles import (
	OrchestrationConfig,
	OrchestrationProfile,
	ProfileError,
	get_default_profiles,
	get_profile,
	resolve_orchestration_config,
	validate_profile,
)
from .selector import ProfileSelection, SelectionMode, select_plan_for_profile

__all__ = [
	"OrchestrationConfig",
	"OrchestrationProfile",
	"ProfileError",
	"get_default_profiles",
	"get_profile",
	"resolve_orchestration_config",
	"validate_profile",
	"ProfileSelection",
	"SelectionMode",
	"select_plan_for_profile",
]
