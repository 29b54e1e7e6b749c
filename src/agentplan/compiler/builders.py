"""
Plan builders for the basic execution modes.

Each builder turns a task and a set of options into a validated Plan.
Builders are pure: no I/O, no agent calls.
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

from pydantic import BaseModel, Field, model_validator

from ..plans.models import AgentName, Plan, PlanMode, Step, StepAction
from ..plans.validation import validate_plan

AgentLike = Union[AgentName, str]


def step_id(index: int) -> str:
	return f"step_{index}"


def finalize_plan(plan: Plan) -> Plan:
	"""Validate a freshly built plan and hand it back."""
	validate_plan(plan)
	return plan


class PipelineStep(BaseModel):
	"""One stage of a pipeline: which agent runs which action."""
	agent: AgentName = Field(description="Agent for this stage")
	action: StepAction = Field(default=StepAction.PROMPT)
	model: Optional[str] = Field(default=None, description="Model override for this stage")
	prompt_template: Optional[str] = Field(default=None, description="Template used verbatim")

	@model_validator(mode="after")
	def _custom_needs_template(self) -> "PipelineStep":
		if self.action is StepAction.CUSTOM and not self.prompt_template:
			raise ValueError("custom action requires a prompt_template")
		return self


@dataclass
class PipelineOptions:
	steps: list[PipelineStep] = field(default_factory=list)


@dataclass
class CompareOptions:
	"""
	Options for compare mode.

	sequential only delays each agent until the previous one finished;
	later agents still see just the original prompt.
	"""
	agents: list[AgentName] = field(default_factory=list)
	sequential: bool = False
	pick: bool = False
	aggregator: AgentName = AgentName.AUTO


def build_single_agent_plan(prompt: str, agent: AgentLike = AgentName.AUTO) -> Plan:
	"""Build a one-step plan that sends the prompt to one agent."""
	plan = Plan(
		mode=PlanMode.SINGLE,
		prompt=prompt,
		steps=[
			Step(
				id=step_id(0),
				agent=AgentName(agent),
				action=StepAction.PROMPT,
				prompt="{{prompt}}",
				output_as="result",
			)
		],
	)
	return finalize_plan(plan)


def build_compare_plan(prompt: str, options: CompareOptions) -> Plan:
	"""
	Build a compare plan: every agent answers the same prompt.

	With pick=True an aggregator step is appended that sees every response
	and selects the best one.
	"""
	agents = [AgentName(a) for a in options.agents]
	if not agents:
		raise ValueError("compare requires at least one agent")
	if len(set(agents)) != len(agents):
		raise ValueError("compare agents must be unique")

	steps: list[Step] = []
	for i, agent in enumerate(agents):
		steps.append(Step(
			id=step_id(i),
			agent=agent,
			action=StepAction.PROMPT,
			prompt="{{prompt}}",
			output_as=f"response_{agent.value}",
			depends_on=[step_id(i - 1)] if options.sequential and i > 0 else None,
		))

	if options.pick:
		steps.append(Step(
			id=step_id(len(agents)),
			agent=AgentName(options.aggregator),
			action=StepAction.COMBINE,
			prompt=_build_pick_prompt(agents),
			depends_on=[step_id(i) for i in range(len(agents))],
			output_as="selected",
		))

	return finalize_plan(Plan(mode=PlanMode.COMPARE, prompt=prompt, steps=steps))


def _build_pick_prompt(agents: Sequence[AgentName]) -> str:
	refs = "\n\n".join(f"**{a.value}:**\n{{{{response_{a.value}}}}}" for a in agents)
	return (
		"Compare these responses and select the best one. "
		"Explain why briefly, then output ONLY the selected response.\n\n"
		f"{refs}\n\n"
		"Selected response:"
	)


_ACTION_TEMPLATES: dict[StepAction, str] = {
	StepAction.ANALYZE: "Analyze the following task and provide insights:",
	StepAction.CODE: "Write code for the following task:",
	StepAction.REVIEW: "Review the following and suggest improvements:",
	StepAction.FIX: "Fix any issues in the following:",
	StepAction.TEST: "Write tests for the following:",
	StepAction.SUMMARIZE: "Summarize the following concisely:",
}


def build_pipeline_step_prompt(step: PipelineStep, index: int) -> str:
	"""Template for pipeline stage `index`: custom verbatim, else by action."""
	if step.prompt_template:
		return step.prompt_template

	prev_ref = f"\n\nPrevious step output:\n{{{{step{index - 1}_output}}}}" if index > 0 else ""
	header = _ACTION_TEMPLATES.get(step.action, f"{step.action.value}:")
	return f"{header}\n\n{{{{prompt}}}}{prev_ref}"


def build_pipeline_plan(prompt: str, options: PipelineOptions) -> Plan:
	"""Build a linear pipeline where each stage sees the previous stage's output."""
	if not options.steps:
		raise ValueError("pipeline requires at least one step")

	steps = [
		Step(
			id=step_id(i),
			agent=stage.agent,
			action=stage.action,
			prompt=build_pipeline_step_prompt(stage, i),
			depends_on=[step_id(i - 1)] if i > 0 else None,
			output_as=f"step{i}_output",
			model=stage.model,
		)
		for i, stage in enumerate(options.steps)
	]
	return finalize_plan(Plan(mode=PlanMode.PIPELINE, prompt=prompt, steps=steps))


def parse_pipeline_string(pipeline: str) -> PipelineOptions:
	"""
	Parse "agent:action,agent:action" into PipelineOptions.

	Example: "gemini:analyze,claude:code,ollama:review"
	"""
	steps: list[PipelineStep] = []
	for part in pipeline.split(","):
		part = part.strip()
		if not part:
			continue
		agent_str, _, action = part.partition(":")
		steps.append(PipelineStep(
			agent=AgentName(agent_str.strip()),
			action=StepAction(action.strip() or StepAction.PROMPT.value),
		))
	return PipelineOptions(steps=steps)


def parse_agents_string(agents: str) -> list[AgentName]:
	"""Parse "claude,gemini,ollama" into agent names."""
	return [AgentName(a.strip()) for a in agents.split(",") if a.strip()]


def build_profile_pipeline_steps(
	primary_agent: AgentLike,
	allow_agents: Sequence[AgentLike],
	include_review: bool = False,
) -> list[PipelineStep]:
	"""
	Default analyze -> code (-> review) pipeline for a profile.

	The primary agent writes the code; analysis and review go to the first
	other allowed agent so a second model looks at the task.
	"""
	primary = AgentName(primary_agent)
	allowed = [AgentName(a) for a in allow_agents]
	second = next((a for a in allowed if a is not primary), primary)

	steps = [
		PipelineStep(agent=second, action=StepAction.ANALYZE),
		PipelineStep(agent=primary, action=StepAction.CODE),
	]
	if include_review:
		steps.append(PipelineStep(agent=second, action=StepAction.REVIEW))
	return steps
