"""
Scheduler - Executes a Plan graph with bounded concurrency.

Each run owns a VariableStore and a result set. A fixed pool of
max_concurrency workers pulls steps from a ready queue; completions come
back through a completion queue, and the coordinator then re-evaluates
readiness. Steps that become ready together are dispatched in plan order.

A step that fails, is vetoed, or is cancelled never blocks unrelated
branches; only its transitive dependents are cancelled. There are no
automatic retries.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Mapping, Optional

from ..plans.models import (
	KNOWN_AGENTS,
	AgentName,
	ExecutionResult,
	ExecutionStatus,
	Plan,
	Step,
	StepResult,
	StepStatus,
)
from ..plans.validation import PlanValidationError, validate_plan
from ..plans.variables import UnresolvedReferenceError, VariableStore
from .events import EventBus, EventType, StepEvent
from .protocols import AgentCapability, AgentResponse, BeforeStepHook, RoutingPolicy

if TYPE_CHECKING:
	from ..config import Config

logger = logging.getLogger(__name__)

_NOT_COMPLETED = (StepStatus.FAILED, StepStatus.CANCELLED, StepStatus.SKIPPED)


class RunCancelledError(Exception):
	"""Raised inside a worker when the caller's cancel event fires."""
	pass


@dataclass
class SchedulerConfig:
	"""
	Per-run execution settings.

	Args:
		max_concurrency: Maximum steps dispatched to agents at once
		default_timeout: Seconds each agent call may take
		on_before_step: Optional hook(step, index, results_so_far) that may
			veto a step or replace its prompt
		allowed_agents: Allow-list for resolving 'auto' steps
		fallback_agent: Used for 'auto' steps when routing gives nothing usable
			and the plan has no concrete agent
	"""
	max_concurrency: int = 3
	default_timeout: float = 300.0
	on_before_step: Optional[BeforeStepHook] = None
	allowed_agents: Optional[list[AgentName]] = None
	fallback_agent: AgentName = AgentName.CLAUDE

	def __post_init__(self) -> None:
		if self.max_concurrency < 1:
			raise ValueError("max_concurrency must be >= 1")
		if self.default_timeout <= 0:
			raise ValueError("default_timeout must be > 0")

	@classmethod
	def from_config(cls, config: "Config", **overrides) -> "SchedulerConfig":
		"""Build run settings from the loaded configuration."""
		values = {
			"max_concurrency": config.max_concurrency,
			"default_timeout": config.default_timeout,
			"fallback_agent": AgentName(config.fallback_agent),
		}
		values.update(overrides)
		return cls(**values)


class Scheduler:
	"""
	Executes plans against injected agent capabilities.

	Usage:
		scheduler = Scheduler(agents=registry, router=RuleBasedRouter())
		result = await scheduler.execute(plan, SchedulerConfig(max_concurrency=2))
	"""

	def __init__(
		self,
		agents: Mapping[str, AgentCapability],
		router: Optional[RoutingPolicy] = None,
		events: Optional[EventBus] = None,
	):
		"""
		Initialize the scheduler.

		Args:
			agents: Agent capabilities keyed by agent name
			router: Routing policy used for 'auto' steps
			events: Event bus that receives start/complete/error events
		"""
		self.agents = agents
		self.router = router
		self.events = events or EventBus()

	async def execute(
		self,
		plan: Plan,
		config: Optional[SchedulerConfig] = None,
		cancel_event: Optional[asyncio.Event] = None,
	) -> ExecutionResult:
		"""
		Run every step of a plan to a terminal state.

		Never raises for plan or step failures: validation errors produce a
		failed result with no steps run, and step failures are reported per
		StepResult.
		"""
		run = _PlanRun(self, plan, config or SchedulerConfig(), cancel_event)
		return await run.execute()


class _PlanRun:
	"""State of one execution of one plan."""

	def __init__(
		self,
		scheduler: Scheduler,
		plan: Plan,
		config: SchedulerConfig,
		cancel_event: Optional[asyncio.Event],
	):
		self.scheduler = scheduler
		self.plan = plan
		self.config = config
		self.cancel_event = cancel_event

		self.index = {step.id: i for i, step in enumerate(plan.steps)}
		self.status: dict[str, StepStatus] = {}
		self.results: dict[str, StepResult] = {}
		self.completion_log: list[StepResult] = []
		self.store: Optional[VariableStore] = None

	async def execute(self) -> ExecutionResult:
		started = time.monotonic()

		try:
			validate_plan(self.plan)
		except PlanValidationError as e:
			logger.error(f"Plan {self.plan.id} rejected: {e}")
			return ExecutionResult(
				plan_id=self.plan.id,
				status=ExecutionStatus.FAILED,
				error=str(e),
				duration=time.monotonic() - started,
			)

		self.store = VariableStore(self.plan.prompt, self.plan.variables)
		self.status = {step.id: StepStatus.PENDING for step in self.plan.steps}

		logger.info(
			f"Executing plan {self.plan.id} ({self.plan.mode.value}, {len(self.plan.steps)} steps, "
			f"max_concurrency={self.config.max_concurrency})"
		)

		ready_queue: asyncio.Queue[Step] = asyncio.Queue()
		completions: asyncio.Queue[StepResult] = asyncio.Queue()
		workers = [
			asyncio.create_task(self._worker(ready_queue, completions))
			for _ in range(self.config.max_concurrency)
		]
		try:
			await self._coordinate(ready_queue, completions)
		finally:
			for worker in workers:
				worker.cancel()
			await asyncio.gather(*workers, return_exceptions=True)

		return self._assemble(time.monotonic() - started)

	async def _coordinate(
		self,
		ready_queue: "asyncio.Queue[Step]",
		completions: "asyncio.Queue[StepResult]",
	) -> None:
		running = 0

		while True:
			self._cascade()

			if self._cancel_requested():
				self._cancel_pending("run cancelled before step started")
			else:
				ready = self._ready_steps()
				while running < self.config.max_concurrency and ready:
					step = ready.pop(0)
					self.status[step.id] = StepStatus.RUNNING
					running += 1
					logger.debug(f"Dispatching step {step.id} ({step.agent.value})")
					ready_queue.put_nowait(step)

			if running == 0:
				break

			result = await completions.get()
			running -= 1
			self._record(result)

	async def _worker(
		self,
		ready_queue: "asyncio.Queue[Step]",
		completions: "asyncio.Queue[StepResult]",
	) -> None:
		while True:
			step = await ready_queue.get()
			try:
				result = await self._dispatch(step)
			except Exception as e:
				logger.exception(f"Step {step.id} raised unexpectedly")
				result = StepResult(step_id=step.id, status=StepStatus.FAILED, error=str(e) or type(e).__name__)
				await self._emit(EventType.ERROR, step.id, message=result.error)
			completions.put_nowait(result)

	def _ready_steps(self) -> list[Step]:
		"""Pending steps whose prerequisites all completed, in plan order."""
		return [
			step for step in self.plan.steps
			if self.status[step.id] is StepStatus.PENDING
			and all(self.status[d] is StepStatus.COMPLETED for d in step.depends_on or [])
		]

	def _cascade(self) -> None:
		"""Cancel every pending step with a prerequisite that did not complete."""
		changed = True
		while changed:
			changed = False
			for step in self.plan.steps:
				if self.status[step.id] is not StepStatus.PENDING:
					continue
				blocker = next(
					(d for d in step.depends_on or [] if self.status[d] in _NOT_COMPLETED),
					None,
				)
				if blocker is not None:
					self._record(StepResult(
						step_id=step.id,
						status=StepStatus.CANCELLED,
						error=f"dependency {blocker} {self.status[blocker].value}",
					))
					changed = True

	def _cancel_pending(self, reason: str) -> None:
		for step in self.plan.steps:
			if self.status[step.id] is StepStatus.PENDING:
				self._record(StepResult(step_id=step.id, status=StepStatus.CANCELLED, error=reason))

	def _record(self, result: StepResult) -> None:
		self.status[result.step_id] = result.status
		self.results[result.step_id] = result
		self.completion_log.append(result)
		if result.status is StepStatus.COMPLETED:
			logger.debug(f"Step {result.step_id} completed in {result.duration:.2f}s")
		else:
			logger.info(f"Step {result.step_id} {result.status.value}: {result.error}")

	def _cancel_requested(self) -> bool:
		return self.cancel_event is not None and self.cancel_event.is_set()

	async def _dispatch(self, step: Step) -> StepResult:
		"""Resolve, intercept, route, and invoke one step."""
		assert self.store is not None
		index = self.index[step.id]

		try:
			prompt = self.store.resolve(step.prompt)
		except UnresolvedReferenceError as e:
			await self._emit(EventType.ERROR, step.id, message=str(e))
			return StepResult(step_id=step.id, status=StepStatus.FAILED, error=str(e))

		hook = self.config.on_before_step
		if hook is not None:
			decision = hook(step, index, list(self.completion_log))
			if inspect.isawaitable(decision):
				decision = await decision
			if decision is not None:
				if not decision.proceed:
					logger.info(f"Step {step.id} declined by before-step hook")
					return StepResult(
						step_id=step.id,
						status=StepStatus.SKIPPED,
						error="declined by before-step hook",
					)
				if decision.edited_prompt is not None:
					prompt = decision.edited_prompt

		agent = await self._resolve_agent(step)
		capability = self.scheduler.agents.get(agent.value)
		if capability is None:
			message = f"no agent registered for '{agent.value}'"
			await self._emit(EventType.ERROR, step.id, message=message)
			return StepResult(step_id=step.id, status=StepStatus.FAILED, error=message, agent=agent.value)

		if self._cancel_requested():
			return StepResult(
				step_id=step.id,
				status=StepStatus.CANCELLED,
				error="run cancelled before step started",
				agent=agent.value,
			)

		started_at = datetime.now()
		await self._emit(EventType.START, step.id)

		try:
			response = await self._invoke(capability, prompt, step)
		except RunCancelledError:
			message = "run cancelled while step was running"
			await self._emit(EventType.ERROR, step.id, message=message)
			return StepResult(
				step_id=step.id,
				status=StepStatus.CANCELLED,
				error=message,
				agent=agent.value,
				started_at=started_at,
			)
		except asyncio.TimeoutError:
			response = AgentResponse(error=f"timed out after {self.config.default_timeout:g}s")
		except Exception as e:
			response = AgentResponse(error=str(e) or type(e).__name__)

		if response.error:
			await self._emit(EventType.ERROR, step.id, message=response.error)
			return StepResult(
				step_id=step.id,
				status=StepStatus.FAILED,
				content=response.content,
				error=response.error,
				model=response.model,
				agent=agent.value,
				started_at=started_at,
			)

		if step.output_as:
			self.store.publish(step.output_as, response.content)

		result = StepResult(
			step_id=step.id,
			status=StepStatus.COMPLETED,
			content=response.content,
			model=response.model,
			agent=agent.value,
			started_at=started_at,
		)
		await self._emit(EventType.COMPLETE, step.id, duration=result.duration)
		return result

	async def _invoke(self, capability: AgentCapability, prompt: str, step: Step) -> AgentResponse:
		"""Call the agent, bounded by the timeout and the caller's cancel event."""
		timeout = self.config.default_timeout
		call = asyncio.ensure_future(capability.invoke(
			prompt,
			timeout=timeout,
			cancel_event=self.cancel_event,
			model=step.model,
		))
		waiters: set[asyncio.Future] = {call}
		cancel_wait: Optional[asyncio.Future] = None
		if self.cancel_event is not None:
			cancel_wait = asyncio.ensure_future(self.cancel_event.wait())
			waiters.add(cancel_wait)

		try:
			done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
		finally:
			if cancel_wait is not None:
				cancel_wait.cancel()

		if call in done:
			return call.result()

		call.cancel()
		await asyncio.gather(call, return_exceptions=True)
		if self._cancel_requested():
			raise RunCancelledError()
		raise asyncio.TimeoutError()

	async def _resolve_agent(self, step: Step) -> AgentName:
		"""Concrete agent for a step; 'auto' goes through the routing policy."""
		if step.agent is not AgentName.AUTO:
			return step.agent

		allowed = self.config.allowed_agents or [
			a for a in KNOWN_AGENTS if a.value in self.scheduler.agents
		]
		router = self.scheduler.router
		if router is not None:
			try:
				if await router.available():
					route = await router.route(self.plan.prompt, allowed)
					if route.agent is not None and route.agent in allowed:
						logger.debug(
							f"Routed step {step.id} to {route.agent.value} (confidence {route.confidence:.2f})"
						)
						return AgentName(route.agent)
			except Exception as e:
				logger.warning(f"Routing failed for step {step.id}: {e}")

		fallback = self.plan.first_concrete_agent() or self.config.fallback_agent
		logger.debug(f"Step {step.id} falling back to {fallback.value}")
		return fallback

	async def _emit(
		self,
		event_type: EventType,
		step_id: str,
		duration: Optional[float] = None,
		message: Optional[str] = None,
	) -> None:
		await self.scheduler.events.emit(StepEvent(
			type=event_type,
			step_id=step_id,
			plan_id=self.plan.id,
			duration=duration,
			message=message,
		))

	def _assemble(self, duration: float) -> ExecutionResult:
		ordered = [self.results[step.id] for step in self.plan.steps]
		completed = [r for r in ordered if r.status is StepStatus.COMPLETED]

		if len(completed) == len(ordered):
			status = ExecutionStatus.COMPLETED
		elif completed:
			status = ExecutionStatus.PARTIAL
		else:
			status = ExecutionStatus.FAILED

		final_output = completed[-1].content if completed else None

		logger.info(
			f"Plan {self.plan.id} finished {status.value}: "
			f"{len(completed)}/{len(ordered)} steps completed in {duration:.2f}s"
		)

		return ExecutionResult(
			plan_id=self.plan.id,
			status=status,
			results=ordered,
			final_output=final_output,
			duration=duration,
		)
