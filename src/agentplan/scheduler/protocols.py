"""
Collaborator interfaces the Scheduler calls out to.

Agent capabilities turn a prompt into text; the routing policy picks a
concrete agent for 'auto' steps. Both are injected into the Scheduler.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol, Sequence, Union, runtime_checkable

from ..plans.models import AgentName, Step, StepResult


@dataclass
class AgentResponse:
	"""What an agent returns. A non-empty error marks the call as failed."""
	content: str = ""
	model: Optional[str] = None
	duration: float = 0.0
	error: Optional[str] = None


@runtime_checkable
class AgentCapability(Protocol):
	"""
	One agent identifier's ability to answer prompts.

	Must be safe to call concurrently for different steps.
	"""

	name: str

	async def invoke(
		self,
		prompt: str,
		*,
		timeout: float,
		cancel_event: Optional[asyncio.Event] = None,
		model: Optional[str] = None,
	) -> AgentResponse:
		...

	async def is_available(self) -> bool:
		...


@dataclass
class RouteResult:
	"""Routing decision for a free-form task."""
	agent: Optional[AgentName]
	confidence: float
	task_type: str = "unknown"
	reasoning: str = ""


@runtime_checkable
class RoutingPolicy(Protocol):
	"""Recommends an agent for task text, constrained to an allow-list."""

	async def available(self) -> bool:
		...

	async def route(self, task: str, allowed_agents: Sequence[AgentName]) -> RouteResult:
		...


@dataclass
class InterceptDecision:
	"""
	Result of the before-step hook.

	proceed=False vetoes the step (it ends 'skipped'). edited_prompt, when
	set, is sent verbatim instead of the resolved template.
	"""
	proceed: bool = True
	edited_prompt: Optional[str] = None


HookResult = Optional[InterceptDecision]

BeforeStepHook = Callable[
	[Step, int, list[StepResult]],
	Union[HookResult, Awaitable[HookResult]],
]
