"""
Plan Models - Pydantic schemas for execution plans and their results.

A Plan is a declarative graph of Steps. The Scheduler executes it and
produces one StepResult per step plus an aggregate ExecutionResult.
"""

import time
import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AgentName(str, Enum):
	"""Known agent identifiers. AUTO is resolved at dispatch time by the router."""
	CLAUDE = "claude"
	GEMINI = "gemini"
	GEMINI_SAFE = "gemini-safe"
	GEMINI_UNSAFE = "gemini-unsafe"
	CODEX = "codex"
	CODEX_SAFE = "codex-safe"
	CODEX_UNSAFE = "codex-unsafe"
	OLLAMA = "ollama"
	MISTRAL = "mistral"
	FACTORY = "factory"
	CRUSH = "crush"
	AUTO = "auto"


KNOWN_AGENTS: list[AgentName] = [a for a in AgentName if a is not AgentName.AUTO]


class StepAction(str, Enum):
	"""
	Semantic label of a step.

	Only the compiler looks at it, to pick a default prompt template.
	CUSTOM means the caller supplies the template verbatim.
	"""
	PROMPT = "prompt"
	ANALYZE = "analyze"
	CODE = "code"
	REVIEW = "review"
	FIX = "fix"
	TEST = "test"
	SUMMARIZE = "summarize"
	PLAN = "plan"
	IMPLEMENT = "implement"
	CRITIQUE = "critique"
	COMBINE = "combine"
	REFINE = "refine"
	PROPOSE = "propose"
	PICK = "pick"
	BUILD = "build"
	DECOMPOSE = "decompose"
	SOLVE = "solve"
	ASSEMBLE = "assemble"
	VERIFY = "verify"
	FEEDBACK = "feedback"
	POLISH = "polish"
	CUSTOM = "custom"


class PlanMode(str, Enum):
	"""Orchestration intent a plan was built for. Informational only."""
	SINGLE = "single"
	COMPARE = "compare"
	PIPELINE = "pipeline"
	AUTO = "auto"
	CONSENSUS = "consensus"
	PICKBUILD = "pickbuild"
	PUZZLE = "puzzle"


class StepStatus(str, Enum):
	"""Lifecycle state of a step within one run."""
	PENDING = "pending"
	RUNNING = "running"
	COMPLETED = "completed"
	FAILED = "failed"
	CANCELLED = "cancelled"
	SKIPPED = "skipped"

	@property
	def is_terminal(self) -> bool:
		return self not in (StepStatus.PENDING, StepStatus.RUNNING)


class ExecutionStatus(str, Enum):
	"""Aggregate status of a run."""
	COMPLETED = "completed"
	FAILED = "failed"
	PARTIAL = "partial"


def generate_plan_id() -> str:
	"""Opaque plan identifier: plan_<epoch ms>_<6 hex chars>."""
	return f"plan_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


class Step(BaseModel):
	"""One unit of work inside a plan, bound to one agent invocation."""
	model_config = ConfigDict(frozen=True)

	id: str = Field(description="Unique step identifier within the plan")
	agent: AgentName = Field(description="Agent to invoke, or 'auto' for router resolution")
	action: StepAction = Field(default=StepAction.PROMPT)
	prompt: str = Field(description="Template with {{name}} placeholders")
	depends_on: Optional[list[str]] = Field(default=None, description="Step IDs that must complete first")
	output_as: Optional[str] = Field(default=None, description="Variable name the output is published under")
	model: Optional[str] = Field(default=None, description="Model override passed to the agent")


class Plan(BaseModel):
	"""
	An immutable description of a unit of work.

	Step order is the dispatch tie-break and decides which step supplies the
	final output; it carries no dependency meaning by itself.
	"""
	model_config = ConfigDict(frozen=True)

	id: str = Field(default_factory=generate_plan_id)
	mode: PlanMode = Field(default=PlanMode.SINGLE)
	prompt: str = Field(description="Original task text, seeds the 'prompt' variable")
	steps: list[Step] = Field(default_factory=list)
	variables: dict[str, str] = Field(
		default_factory=dict,
		description="Additional initial variables (e.g. outputs carried over from an earlier run)",
	)
	created_at: datetime = Field(default_factory=datetime.now)

	def get_step(self, step_id: str) -> Optional[Step]:
		"""Look up a step by ID."""
		for step in self.steps:
			if step.id == step_id:
				return step
		return None

	def first_concrete_agent(self) -> Optional[AgentName]:
		"""First step agent that is not 'auto', in plan order."""
		for step in self.steps:
			if step.agent is not AgentName.AUTO:
				return step.agent
		return None


class StepResult(BaseModel):
	"""Outcome of one step in one run. Produced exactly once per step."""
	model_config = ConfigDict(frozen=True)

	step_id: str
	status: StepStatus
	content: str = Field(default="")
	error: Optional[str] = Field(default=None)
	model: Optional[str] = Field(default=None)
	agent: Optional[str] = Field(default=None, description="Concrete agent the step ran on")
	started_at: Optional[datetime] = Field(default=None)
	completed_at: datetime = Field(default_factory=datetime.now)

	@property
	def duration(self) -> float:
		"""Seconds between start and completion, 0 for steps that never ran."""
		if self.started_at is None:
			return 0.0
		return (self.completed_at - self.started_at).total_seconds()


class ExecutionResult(BaseModel):
	"""Aggregate report of one Scheduler run."""
	plan_id: str
	status: ExecutionStatus
	results: list[StepResult] = Field(default_factory=list)
	final_output: Optional[str] = Field(default=None)
	duration: float = Field(default=0.0, description="Wall-clock seconds for the run")
	error: Optional[str] = Field(default=None, description="Plan-level error, e.g. validation failure")

	def get_result(self, step_id: str) -> Optional[StepResult]:
		"""Get the result for a step ID."""
		for result in self.results:
			if result.step_id == step_id:
				return result
		return None

	def count(self, status: StepStatus) -> int:
		"""Number of steps that ended in the given status."""
		return sum(1 for r in self.results if r.status == status)
