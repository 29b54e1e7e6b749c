"""Shared test fakes for agentplan tests."""

import asyncio
from typing import Callable, Optional, Sequence, Union

from agentplan.plans.models import AgentName, Plan, Step
from agentplan.scheduler.protocols import AgentResponse, RouteResult


class ConcurrencyTracker:
	"""Counts agent calls in flight across several fake agents."""

	def __init__(self):
		self.running = 0
		self.peak = 0
		self.order: list[str] = []

	def enter(self, label: str) -> None:
		self.running += 1
		self.peak = max(self.peak, self.running)
		self.order.append(label)

	def exit(self) -> None:
		self.running -= 1


class FakeAgent:
	"""Scripted agent capability that records every prompt it receives."""

	def __init__(
		self,
		name: str,
		reply: Union[str, Callable[[str], str], None] = None,
		delay: float = 0.0,
		error: Optional[str] = None,
		raises: Optional[Exception] = None,
		tracker: Optional[ConcurrencyTracker] = None,
		available: bool = True,
	):
		self.name = name
		self.reply = reply
		self.delay = delay
		self.error = error
		self.raises = raises
		self.tracker = tracker
		self.available = available
		self.prompts: list[str] = []
		self.models: list[Optional[str]] = []
		self.cancelled = False

	@property
	def calls(self) -> int:
		return len(self.prompts)

	async def invoke(
		self,
		prompt: str,
		*,
		timeout: float,
		cancel_event: Optional[asyncio.Event] = None,
		model: Optional[str] = None,
	) -> AgentResponse:
		self.prompts.append(prompt)
		self.models.append(model)
		if self.tracker:
			self.tracker.enter(prompt)
		try:
			if self.delay:
				await asyncio.sleep(self.delay)
			if self.raises:
				raise self.raises
			if self.error:
				return AgentResponse(error=self.error)
			if callable(self.reply):
				content = self.reply(prompt)
			elif self.reply is not None:
				content = self.reply
			else:
				content = f"{self.name} says: {prompt}"
			return AgentResponse(content=content, model=model or f"{self.name}-model")
		except asyncio.CancelledError:
			self.cancelled = True
			raise
		finally:
			if self.tracker:
				self.tracker.exit()

	async def is_available(self) -> bool:
		return self.available


class FakeRouter:
	"""Routing policy that always recommends the same agent."""

	def __init__(
		self,
		agent: Optional[AgentName],
		confidence: float = 0.9,
		available: bool = True,
	):
		self.agent = agent
		self.confidence = confidence
		self._available = available
		self.calls: list[tuple[str, list[AgentName]]] = []

	async def available(self) -> bool:
		return self._available

	async def route(self, task: str, allowed_agents: Sequence[AgentName]) -> RouteResult:
		self.calls.append((task, list(allowed_agents)))
		return RouteResult(agent=self.agent, confidence=self.confidence)


def agents_by_name(*agents: FakeAgent) -> dict[str, FakeAgent]:
	return {agent.name: agent for agent in agents}


def make_plan(prompt: str, *steps: Step, **kwargs) -> Plan:
	return Plan(prompt=prompt, steps=list(steps), **kwargs)
