"""
LLM Planner - Asks an agent to break a task into steps and compiles the answer.

The agent is prompted for a JSON step list. Its response is parsed
leniently (code fences, trailing commas, single quotes, a bare array) and
turned into a linear 'auto' mode plan.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from ..plans.models import KNOWN_AGENTS, AgentName, Plan, PlanMode, Step, StepAction
from ..scheduler.protocols import AgentCapability
from .builders import finalize_plan, step_id

logger = logging.getLogger(__name__)

PLANNER_PROMPT = """You are a task planner for a multi-agent system. Analyze the user's task and create an execution plan.

Available agents:
- claude: Best for coding, code generation, architecture, creative writing
- gemini: Best for analysis, research, planning, data processing
- codex: Best for debugging, security analysis, finding bugs, code review
- ollama: Best for simple queries, local processing, fast responses

Actions you can assign:
- analyze: Examine and provide insights
- code: Write or generate code
- review: Review and suggest improvements
- fix: Fix issues or bugs
- test: Generate tests
- summarize: Condense information

Output a JSON plan with this exact structure:
{
  "steps": [
    {"agent": "agent_name", "action": "action_type", "description": "What this step does"}
  ],
  "reasoning": "Brief explanation of why this plan"
}

Rules:
1. Use 1-5 steps (prefer fewer)
2. Each step should have a clear purpose
3. Later steps can reference earlier outputs
4. Output ONLY valid JSON, no markdown

Task: """

_FENCE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_OBJECT = re.compile(r"\{[\s\S]*\}")
_ARRAY = re.compile(r"\[[\s\S]*\]")
_STEPS_ARRAY = re.compile(r"\"steps\"\s*:\s*\[([\s\S]*?)\]")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


class PlanParseError(Exception):
	"""Raised when an agent's planning response cannot be read as a step list."""
	pass


@dataclass
class PlannerResult:
	"""Outcome of asking an agent for a plan."""
	plan: Optional[Plan] = None
	reasoning: Optional[str] = None
	error: Optional[str] = None

	@property
	def success(self) -> bool:
		return self.plan is not None


def _loads_lenient(text: str) -> Any:
	"""json.loads after dropping trailing commas, then retrying with single quotes swapped."""
	text = _TRAILING_COMMA.sub(r"\1", text)
	try:
		return json.loads(text)
	except json.JSONDecodeError:
		return json.loads(text.replace("'", '"'))


def parse_plan_response(content: str) -> dict[str, Any]:
	"""
	Extract {"steps": [...], "reasoning": ...} from an agent response.

	Raises:
		PlanParseError: If no usable step list is present
	"""
	text = _FENCE.sub("", content.strip()).strip()

	match = None if text.startswith("[") else _OBJECT.search(text)
	if match is None:
		array_match = _ARRAY.search(text)
		if array_match is None:
			raise PlanParseError("No JSON object found in response")
		candidate = f'{{"steps": {array_match.group(0)}}}'
	else:
		candidate = match.group(0)

	try:
		data = _loads_lenient(candidate)
	except json.JSONDecodeError as e:
		steps_match = _STEPS_ARRAY.search(content)
		if steps_match is None:
			raise PlanParseError(str(e)) from e
		try:
			steps = _loads_lenient(f"[{steps_match.group(1)}]")
		except json.JSONDecodeError:
			raise PlanParseError(str(e)) from e
		if not steps:
			raise PlanParseError(str(e)) from e
		data = {"steps": steps}

	if not isinstance(data, dict) or not isinstance(data.get("steps"), list):
		raise PlanParseError('JSON missing "steps" array')

	steps = []
	for raw in data["steps"]:
		if not isinstance(raw, dict):
			raise PlanParseError("each step must be a JSON object")
		agent = raw.get("agent") or "auto"
		action = raw.get("action") or "prompt"
		steps.append({
			"agent": agent,
			"action": action,
			"description": raw.get("description") or action,
		})
	if not steps:
		raise PlanParseError("plan has no steps")

	return {"steps": steps, "reasoning": data.get("reasoning")}


def normalize_agent(agent: str) -> AgentName:
	"""Map an agent string to a known agent, or 'auto' if unrecognised."""
	normalized = str(agent).lower().strip()
	for known in KNOWN_AGENTS:
		if known.value == normalized:
			return known
	return AgentName.AUTO


def normalize_action(action: str) -> StepAction:
	normalized = str(action).lower().strip()
	for known in StepAction:
		if known.value == normalized:
			return known
	return StepAction.PROMPT


def _step_prompt(description: str, index: int) -> str:
	prev_ref = f"\n\nPrevious step output:\n{{{{step{index - 1}_output}}}}" if index > 0 else ""
	return f"{description}\n\nOriginal task: {{{{prompt}}}}{prev_ref}"


def build_plan_from_raw(task: str, raw: dict[str, Any]) -> Plan:
	"""Compile parsed planner output into a linear plan."""
	steps = [
		Step(
			id=step_id(i),
			agent=normalize_agent(item["agent"]),
			action=normalize_action(item["action"]),
			prompt=_step_prompt(item["description"], i),
			depends_on=[step_id(i - 1)] if i > 0 else None,
			output_as=f"step{i}_output",
		)
		for i, item in enumerate(raw["steps"])
	]
	return finalize_plan(Plan(mode=PlanMode.AUTO, prompt=task, steps=steps))


async def generate_plan(
	task: str,
	planner: AgentCapability,
	timeout: float = 120.0,
) -> PlannerResult:
	"""
	Ask an agent to plan a task.

	Args:
		task: Task text
		planner: Agent capability that writes the plan
		timeout: Seconds the planning call may take

	Returns:
		PlannerResult with either a plan or an error message
	"""
	if not await planner.is_available():
		return PlannerResult(error=f"Planner agent '{planner.name}' not available")

	try:
		response = await planner.invoke(PLANNER_PROMPT + task, timeout=timeout)
	except Exception as e:
		logger.error(f"Planner agent {planner.name} failed: {e}")
		return PlannerResult(error=str(e) or type(e).__name__)

	if response.error:
		return PlannerResult(error=response.error)

	try:
		raw = parse_plan_response(response.content)
		plan = build_plan_from_raw(task, raw)
	except Exception as e:
		preview = response.content[:200]
		suffix = "..." if len(response.content) > 200 else ""
		logger.warning(f"Could not parse plan from {planner.name}: {e}")
		return PlannerResult(error=f"Failed to parse plan: {e}. Response preview: {preview}{suffix}")

	logger.info(f"Planner {planner.name} produced {len(plan.steps)} steps")
	return PlannerResult(plan=plan, reasoning=raw.get("reasoning"))
