"""
Mixture-of-agents plan builders.

Fan-out/fan-in plans: several agents propose independently, and one or
more aggregator steps depend on the whole fan-out set and reference every
proposal by name. Because aggregators depend on all proposers, a single
proposer failure cancels the aggregation.
"""

from dataclasses import dataclass, field
from typing import Literal, Optional

from ..plans.models import AgentName, Plan, PlanMode, Step, StepAction
from .builders import finalize_plan


@dataclass
class ConsensusOptions:
	"""
	Options for consensus mode.

	Round 1 answers independently; each later round revises after seeing
	every answer from the previous round. The synthesizer merges the last
	round.
	"""
	agents: list[AgentName] = field(default_factory=list)
	max_rounds: int = 2
	synthesizer: AgentName = AgentName.AUTO


@dataclass
class PickBuildOptions:
	"""Options for the compare -> pick -> build workflow."""
	agents: list[AgentName] = field(default_factory=list)
	picker: AgentName = AgentName.AUTO
	build_agent: AgentName = AgentName.CLAUDE
	reviewer: Optional[AgentName] = None
	sequential: bool = False
	format: Literal["json", "md"] = "json"
	skip_review: bool = False
	project_structure: Optional[str] = None


def _round_output(round_no: int, agent: AgentName) -> str:
	return f"round{round_no}_{agent.value}_answer"


def _round_step(round_no: int, agent: AgentName) -> str:
	return f"round{round_no}_{agent.value}"


def build_consensus_plan(prompt: str, options: ConsensusOptions) -> Plan:
	"""Build a multi-round consensus plan ending in a synthesis step."""
	agents = [AgentName(a) for a in options.agents]
	if not agents:
		raise ValueError("consensus requires at least one agent")
	if len(set(agents)) != len(agents):
		raise ValueError("consensus agents must be unique")
	if options.max_rounds < 1:
		raise ValueError("max_rounds must be >= 1")

	steps: list[Step] = []
	for agent in agents:
		steps.append(Step(
			id=_round_step(1, agent),
			agent=agent,
			action=StepAction.PROPOSE,
			prompt="Answer the following task as well as you can.\n\nTask: {{prompt}}",
			output_as=_round_output(1, agent),
		))

	for round_no in range(2, options.max_rounds + 1):
		previous = "\n\n".join(
			f"--- {a.value} ---\n{{{{{_round_output(round_no - 1, a)}}}}}" for a in agents
		)
		for agent in agents:
			steps.append(Step(
				id=_round_step(round_no, agent),
				agent=agent,
				action=StepAction.CRITIQUE,
				prompt=(
					f"Round {round_no} of a consensus discussion.\n\n"
					"Task: {{prompt}}\n\n"
					f"Answers from the previous round:\n{previous}\n\n"
					"Point out where the answers disagree, decide which points are correct, "
					"and give your revised answer."
				),
				depends_on=[_round_step(round_no - 1, a) for a in agents],
				output_as=_round_output(round_no, agent),
			))

	last_round = options.max_rounds
	final_refs = "\n\n".join(
		f"--- {a.value} ---\n{{{{{_round_output(last_round, a)}}}}}" for a in agents
	)
	steps.append(Step(
		id="synthesize",
		agent=AgentName(options.synthesizer),
		action=StepAction.COMBINE,
		prompt=(
			"Synthesize these answers into a single consensus answer. "
			"Keep the points the answers agree on, resolve disagreements, "
			"and output only the final answer.\n\n"
			"Task: {{prompt}}\n\n"
			f"{final_refs}"
		),
		depends_on=[_round_step(last_round, a) for a in agents],
		output_as="consensus",
	))

	return finalize_plan(Plan(mode=PlanMode.CONSENSUS, prompt=prompt, steps=steps))


_FORMAT_INSTRUCTIONS = {
	"json": (
		"Output the plan as JSON:\n"
		'{"summary": "...", "steps": [{"title": "...", "details": "...", "files": []}], '
		'"risks": ["..."]}'
	),
	"md": "Output the plan as Markdown with a summary, numbered steps, and a risks section.",
}


def build_pick_build_plan(prompt: str, options: PickBuildOptions) -> Plan:
	"""
	Build a compare -> pick -> build plan.

	Proposers write plans (not code), a picker chooses one, the build agent
	implements it, and an optional reviewer checks the implementation.
	"""
	agents = [AgentName(a) for a in options.agents]
	if not agents:
		raise ValueError("pickbuild requires at least one proposer")
	if len(set(agents)) != len(agents):
		raise ValueError("pickbuild proposers must be unique")

	variables: dict[str, str] = {}
	context_ref = ""
	if options.project_structure:
		variables["project_structure"] = options.project_structure
		context_ref = "\n\nProject structure:\n{{project_structure}}"

	steps: list[Step] = []
	for i, agent in enumerate(agents):
		steps.append(Step(
			id=f"propose_{agent.value}",
			agent=agent,
			action=StepAction.PLAN,
			prompt=(
				"Propose an implementation PLAN for the task below. Do not write the code.\n\n"
				f"Task: {{{{prompt}}}}{context_ref}\n\n"
				f"{_FORMAT_INSTRUCTIONS[options.format]}"
			),
			depends_on=[f"propose_{agents[i - 1].value}"] if options.sequential and i > 0 else None,
			output_as=f"plan_{agent.value}",
		))

	plan_refs = "\n\n".join(f"--- {a.value} ---\n{{{{plan_{a.value}}}}}" for a in agents)
	steps.append(Step(
		id="pick",
		agent=AgentName(options.picker),
		action=StepAction.PICK,
		prompt=(
			"Pick the best implementation plan for the task.\n\n"
			"Task: {{prompt}}\n\n"
			f"{plan_refs}\n\n"
			"Answer in this form:\n"
			"**Selected:** <agent>\n**Reasoning:** <one paragraph>\n\n**Chosen Plan:**\n<the plan>"
		),
		depends_on=[f"propose_{a.value}" for a in agents],
		output_as="picked_plan",
	))

	steps.append(Step(
		id="build",
		agent=AgentName(options.build_agent),
		action=StepAction.BUILD,
		prompt=(
			"Implement the task by following the chosen plan.\n\n"
			f"Task: {{{{prompt}}}}{context_ref}\n\n"
			"{{picked_plan}}\n\n"
			"Output the complete implementation."
		),
		depends_on=["pick"],
		output_as="implementation",
	))

	if options.reviewer is not None and not options.skip_review:
		steps.append(Step(
			id="review",
			agent=AgentName(options.reviewer),
			action=StepAction.REVIEW,
			prompt=(
				"Review this implementation against the task and the chosen plan.\n\n"
				"Task: {{prompt}}\n\n"
				"Plan:\n{{picked_plan}}\n\n"
				"Implementation:\n{{implementation}}\n\n"
				"List concrete problems, or reply APPROVED if there are none."
			),
			depends_on=["build"],
			output_as="review",
		))

	return finalize_plan(Plan(
		mode=PlanMode.PICKBUILD,
		prompt=prompt,
		steps=steps,
		variables=variables,
	))
