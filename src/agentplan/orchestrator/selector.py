"""
Profile selector - decides which kind of plan to build for a task.

Looks at the profile, the router's confidence, and how complex the task
text looks, then delegates to the plan builders. It never executes
anything.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

from ..compiler.builders import (
	PipelineOptions,
	build_pipeline_plan,
	build_profile_pipeline_steps,
	build_single_agent_plan,
)
from ..compiler.moa import (
	ConsensusOptions,
	PickBuildOptions,
	build_consensus_plan,
	build_pick_build_plan,
)
from ..plans.models import AgentName, Plan
from ..scheduler.protocols import RoutingPolicy
from .profiles import OrchestrationProfile

logger = logging.getLogger(__name__)


class SelectionMode(str, Enum):
	SINGLE = "single"
	PIPELINE = "pipeline"
	CONSENSUS = "consensus"
	PICKBUILD = "pickbuild"
	SUPERVISE = "supervise"


AGENT_PRIORITY: list[AgentName] = [
	AgentName.CLAUDE,
	AgentName.GEMINI_SAFE,
	AgentName.CODEX_SAFE,
	AgentName.GEMINI,
	AgentName.CODEX,
	AgentName.GEMINI_UNSAFE,
	AgentName.CODEX_UNSAFE,
	AgentName.MISTRAL,
	AgentName.OLLAMA,
	AgentName.FACTORY,
	AgentName.CRUSH,
]

COMPLEXITY_KEYWORDS = [
	"architecture",
	"refactor",
	"migration",
	"multi-file",
	"pipeline",
	"workflow",
	"orchestration",
	"consensus",
	"pickbuild",
	"review",
	"tests",
]

COMPLEX_WORD_COUNT = 120

_SELECTABLE_MODES = {m.value for m in SelectionMode}


@dataclass
class ProfileSelection:
	"""
	What the selector decided.

	plan is None for supervise, which runs outside the Scheduler.
	"""
	mode: SelectionMode
	primary_agent: AgentName
	rationale: str
	agents: list[AgentName] = field(default_factory=list)
	plan: Optional[Plan] = None
	orchestrate_mode: Optional[str] = None


def is_complex_task(task: str) -> bool:
	"""Long tasks, or tasks mentioning a complexity keyword."""
	lowered = task.lower()
	if len(task.split()) >= COMPLEX_WORD_COUNT:
		return True
	return any(keyword in lowered for keyword in COMPLEXITY_KEYWORDS)


def filter_agents(allow_agents: Sequence[AgentName]) -> list[AgentName]:
	"""Allowed agents in priority order; an empty allow-list allows all."""
	allowed = list(allow_agents) or AGENT_PRIORITY
	return [a for a in AGENT_PRIORITY if a in allowed]


async def get_route(
	task: str,
	allow_agents: Sequence[AgentName],
	router: Optional[RoutingPolicy] = None,
) -> tuple[AgentName, float]:
	"""
	Ask the router for an agent.

	Falls back to the first allowed agent with confidence 0 when the router
	is missing, unavailable, or picks an agent outside the allow-list.
	"""
	if router is not None:
		try:
			if await router.available():
				route = await router.route(task, list(allow_agents))
				if route.agent is not None and route.agent in allow_agents:
					return AgentName(route.agent), route.confidence
		except Exception as e:
			logger.warning(f"Router failed, using fallback agent: {e}")

	fallback = allow_agents[0] if allow_agents else AgentName.CLAUDE
	return AgentName(fallback), 0.0


async def select_plan_for_profile(
	task: str,
	profile: OrchestrationProfile,
	router: Optional[RoutingPolicy] = None,
	confidence_threshold: float = 0.6,
) -> ProfileSelection:
	"""
	Choose a mode and build its plan.

	First match wins: supervise when the profile requires review, consensus
	when the router is unsure, pick-build for complex tasks, pipeline for
	complex tasks, then single, then whatever the profile lists first.
	"""
	allow_agents = profile.allowed_agent_names
	primary, confidence = await get_route(task, allow_agents, router)

	supported = [m for m in profile.preferred_modes if m in _SELECTABLE_MODES]
	complex_task = is_complex_task(task)
	low_confidence = confidence < confidence_threshold

	logger.debug(
		f"Profile {profile.name}: primary={primary.value} confidence={confidence:.2f} "
		f"complex={complex_task} supported={supported}"
	)

	if profile.require_review and "supervise" in supported:
		return _supervise_selection(profile, primary, "profile requires review")

	if low_confidence and "consensus" in supported:
		return _consensus_selection(task, profile, primary, "low router confidence")

	if complex_task and "pickbuild" in supported:
		return _pick_build_selection(task, profile, primary, "complex task signals detected")

	if complex_task and "pipeline" in supported:
		return _pipeline_selection(task, profile, primary, "pipeline preferred for complex task")

	if "single" in supported:
		return _single_selection(task, primary, "defaulting to single")

	if supported:
		first = supported[0]
		if first == "pipeline":
			return _pipeline_selection(task, profile, primary, "fallback to pipeline")
		if first == "consensus":
			return _consensus_selection(task, profile, primary, "fallback to consensus")
		if first == "pickbuild":
			return _pick_build_selection(task, profile, primary, "fallback to pickbuild")

	return _single_selection(task, primary, "fallback to single")


def _single_selection(task: str, primary: AgentName, reason: str) -> ProfileSelection:
	return ProfileSelection(
		mode=SelectionMode.SINGLE,
		plan=build_single_agent_plan(task, primary),
		agents=[primary],
		primary_agent=primary,
		rationale=f"Selected single mode ({reason}).",
	)


def _pipeline_selection(
	task: str,
	profile: OrchestrationProfile,
	primary: AgentName,
	reason: str,
) -> ProfileSelection:
	agents = filter_agents(profile.allowed_agent_names)
	if profile.pipeline_steps:
		steps = [s.to_pipeline_step() for s in profile.pipeline_steps]
	else:
		steps = build_profile_pipeline_steps(primary, agents, include_review=profile.require_review)

	return ProfileSelection(
		mode=SelectionMode.PIPELINE,
		plan=build_pipeline_plan(task, PipelineOptions(steps=steps)),
		agents=agents,
		primary_agent=primary,
		rationale=f"Selected pipeline mode ({reason}).",
	)


def _consensus_selection(
	task: str,
	profile: OrchestrationProfile,
	primary: AgentName,
	reason: str,
) -> ProfileSelection:
	agents = filter_agents(profile.allowed_agent_names)[:3]
	plan = build_consensus_plan(task, ConsensusOptions(
		agents=agents,
		max_rounds=profile.consensus_rounds,
		synthesizer=primary,
	))
	return ProfileSelection(
		mode=SelectionMode.CONSENSUS,
		plan=plan,
		agents=agents,
		primary_agent=primary,
		rationale=f"Selected consensus mode ({reason}).",
	)


def _pick_build_selection(
	task: str,
	profile: OrchestrationProfile,
	primary: AgentName,
	reason: str,
) -> ProfileSelection:
	agents = filter_agents(profile.allowed_agent_names)[:2]
	reviewer = agents[1] if profile.require_review and len(agents) > 1 else None
	plan = build_pick_build_plan(task, PickBuildOptions(
		agents=agents,
		picker=primary,
		build_agent=primary,
		reviewer=reviewer,
		sequential=False,
		format="json",
		skip_review=not profile.require_review,
	))
	return ProfileSelection(
		mode=SelectionMode.PICKBUILD,
		plan=plan,
		agents=agents,
		primary_agent=primary,
		rationale=f"Selected pickbuild mode ({reason}).",
	)


def _supervise_selection(
	profile: OrchestrationProfile,
	primary: AgentName,
	reason: str,
) -> ProfileSelection:
	agents = filter_agents(profile.allowed_agent_names)[:2]
	supervisor = agents[0] if agents else primary
	worker = agents[1] if len(agents) > 1 else primary
	return ProfileSelection(
		mode=SelectionMode.SUPERVISE,
		orchestrate_mode="supervise",
		agents=[supervisor, worker],
		primary_agent=supervisor,
		rationale=f"Selected supervise mode ({reason}).",
	)
