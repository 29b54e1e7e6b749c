"""
Rule-based Routing Policy.

Classifies a task with regex pattern groups, no LLM call involved, then
picks the first allowed and available agent from the cascade for that
task type.
"""

import logging
import re
from typing import Optional, Sequence

from .plans.models import AgentName
from .scheduler.protocols import RouteResult

logger = logging.getLogger(__name__)


def _patterns(*sources: str) -> list[re.Pattern]:
	return [re.compile(s, re.IGNORECASE) for s in sources]


HIGH_COMPLEXITY_PATTERNS = _patterns(
	r"architect", r"design\s+system", r"refactor", r"optimi[sz]e",
	r"debug.*complex", r"fix.*bug", r"security", r"vulnerabilit",
	r"multi.?file", r"across.*files", r"entire\s+codebase",
	r"implement.*feature", r"add.*functionality", r"build.*from.*scratch",
	r"migration", r"upgrade", r"performance", r"\bscale\b",
	r"test.*coverage", r"integration", r"api\s+design",
	r"algorithm", r"data\s+structure", r"concurren", r"\basync\b",
	r"state\s+management", r"authentication", r"authorization",
)

ANALYSIS_PATTERNS = _patterns(
	r"explain", r"understand", r"analy[sz]e", r"review",
	r"document", r"describe", r"summari[sz]e",
	r"compare", r"difference", r"what\s+is", r"how\s+does",
	r"\bwhy\b", r"when\s+to", r"best\s+practice",
	r"research", r"find.*information", r"look\s+up",
)

MEDIUM_COMPLEXITY_PATTERNS = _patterns(
	r"add.*function", r"create.*component", r"write.*test",
	r"update", r"modify", r"change", r"\bedit\b",
	r"fix.*error", r"resolve", r"handle",
	r"convert", r"transform", r"parse",
	r"validate", r"check", r"verify",
)

SIMPLE_PATTERNS = _patterns(
	r"\blist\b", r"\bshow\b", r"\bprint\b", r"display",
	r"rename", r"\bmove\b", r"\bcopy\b", r"delete",
	r"\bformat\b", r"\blint\b", r"prettier",
	r"\bhello\b", r"\bhi\b", r"thanks",
)

CAPABILITY_CASCADE: list[AgentName] = [
	AgentName.CODEX, AgentName.CLAUDE, AgentName.GEMINI, AgentName.FACTORY,
]

TASK_CASCADES: dict[str, list[AgentName]] = {
	"analysis": [AgentName.GEMINI, AgentName.CLAUDE, AgentName.CODEX, AgentName.FACTORY],
	"simple": [AgentName.GEMINI, AgentName.CODEX, AgentName.CLAUDE, AgentName.FACTORY],
}


def classify_task(task: str) -> tuple[str, float, str]:
	"""
	Classify task text.

	Returns:
		Tuple of (task_type, confidence, reasoning)
	"""
	groups = [
		("high-complexity", HIGH_COMPLEXITY_PATTERNS, 0.7, 0.95),
		("analysis", ANALYSIS_PATTERNS, 0.6, 0.9),
		("medium-complexity", MEDIUM_COMPLEXITY_PATTERNS, 0.6, 0.85),
		("simple", SIMPLE_PATTERNS, 0.7, 0.9),
	]
	for task_type, patterns, base, ceiling in groups:
		matches = sum(1 for p in patterns if p.search(task))
		if matches:
			confidence = round(min(ceiling, base + matches * 0.1), 2)
			return task_type, confidence, f"Matched {matches} {task_type} pattern(s)"

	if len(task) > 300:
		return "high-complexity", 0.6, "Long task description suggests complexity"
	if len(task) > 100:
		return "medium-complexity", 0.5, "Moderate task length"
	return "unknown", 0.4, "No clear patterns matched"


class RuleBasedRouter:
	"""
	Default Routing Policy.

	Args:
		available_agents: Agents that can actually be invoked. None means
			every allowed agent is treated as available.
	"""

	def __init__(self, available_agents: Optional[Sequence[AgentName]] = None):
		self.available_agents = (
			[AgentName(a) for a in available_agents] if available_agents is not None else None
		)

	async def available(self) -> bool:
		return True

	def _candidates(self, allowed_agents: Sequence[AgentName]) -> list[AgentName]:
		allowed = [AgentName(a) for a in allowed_agents if a != AgentName.AUTO]
		if self.available_agents is None:
			return allowed
		return [a for a in allowed if a in self.available_agents]

	async def route(self, task: str, allowed_agents: Sequence[AgentName]) -> RouteResult:
		"""Recommend an agent for the task from the allow-list."""
		task_type, confidence, reasoning = classify_task(task)
		candidates = self._candidates(allowed_agents)

		cascade = TASK_CASCADES.get(task_type, CAPABILITY_CASCADE)
		agent = next((a for a in cascade if a in candidates), None)
		if agent is None and candidates:
			agent = candidates[0]
			reasoning += "; no cascade agent allowed, using first allowed agent"

		if agent is None:
			logger.warning(f"No routable agent for {task_type} task")
			return RouteResult(agent=None, confidence=0.0, task_type=task_type, reasoning=reasoning)

		logger.debug(f"Routed {task_type} task to {agent.value} ({confidence:.2f}): {reasoning}")
		return RouteResult(agent=agent, confidence=confidence, task_type=task_type, reasoning=reasoning)
