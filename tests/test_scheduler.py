"""Tests for the plan Scheduler."""

import asyncio

import pytest

from agentplan.compiler.builders import CompareOptions, build_compare_plan
from agentplan.plans.models import (
	AgentName,
	ExecutionStatus,
	Step,
	StepStatus,
)
from agentplan.scheduler.engine import Scheduler, SchedulerConfig
from agentplan.scheduler.events import EventBus, EventRecorder, EventType
from agentplan.scheduler.protocols import InterceptDecision

from .helpers import ConcurrencyTracker, FakeAgent, FakeRouter, agents_by_name, make_plan


def step(id: str, agent: str = "claude", prompt: str = "{{prompt}}", depends_on=None, output_as=None, **kw) -> Step:
	return Step(id=id, agent=AgentName(agent), prompt=prompt, depends_on=depends_on, output_as=output_as, **kw)


class TestScenarios:
	"""End-to-end runs of small plans."""

	@pytest.mark.asyncio
	async def test_single_step_sends_literal_prompt(self):
		"""One step with {{prompt}} sends the plan prompt verbatim."""
		agent = FakeAgent("claude", reply="hello back")
		plan = make_plan("hi", step("a", output_as="r1"))

		result = await Scheduler(agents_by_name(agent)).execute(plan)

		assert agent.prompts == ["hi"]
		assert result.status == ExecutionStatus.COMPLETED
		assert result.final_output == "hello back"
		assert result.plan_id == plan.id

	@pytest.mark.asyncio
	async def test_independent_steps_run_together(self):
		"""Two independent steps are both running at the same time."""
		tracker = ConcurrencyTracker()
		claude = FakeAgent("claude", delay=0.05, tracker=tracker)
		gemini = FakeAgent("gemini", delay=0.05, tracker=tracker)
		plan = make_plan("task", step("a", "claude"), step("b", "gemini"))

		result = await Scheduler(agents_by_name(claude, gemini)).execute(
			plan, SchedulerConfig(max_concurrency=2)
		)

		assert tracker.peak == 2
		assert result.status == ExecutionStatus.COMPLETED

	@pytest.mark.asyncio
	async def test_pipeline_failure_cancels_rest(self):
		"""When the first of three chained steps fails, the others are cancelled."""
		agent = FakeAgent("claude", error="boom")
		plan = make_plan(
			"task",
			step("a", output_as="a_out"),
			step("b", prompt="{{a_out}}", depends_on=["a"], output_as="b_out"),
			step("c", prompt="{{b_out}}", depends_on=["b"]),
		)

		result = await Scheduler(agents_by_name(agent)).execute(plan)

		assert result.status == ExecutionStatus.FAILED
		assert agent.calls == 1
		assert result.get_result("a").status == StepStatus.FAILED
		assert result.get_result("a").error == "boom"
		assert result.get_result("b").status == StepStatus.CANCELLED
		assert result.get_result("c").status == StepStatus.CANCELLED
		assert result.final_output is None

	@pytest.mark.asyncio
	async def test_compare_pick_sees_every_response(self):
		"""The aggregator prompt contains each compared response verbatim."""
		claude = FakeAgent("claude", reply="answer from claude")
		gemini = FakeAgent("gemini", reply="answer from gemini")
		codex = FakeAgent("codex", reply="claude wins")
		plan = build_compare_plan("task", CompareOptions(
			agents=[AgentName.CLAUDE, AgentName.GEMINI],
			pick=True,
			aggregator=AgentName.CODEX,
		))

		result = await Scheduler(agents_by_name(claude, gemini, codex)).execute(plan)

		assert result.status == ExecutionStatus.COMPLETED
		assert "answer from claude" in codex.prompts[0]
		assert "answer from gemini" in codex.prompts[0]
		assert result.final_output == "claude wins"


class TestValidation:
	"""Invalid plans are rejected before anything is dispatched."""

	@pytest.mark.asyncio
	async def test_cycle_fails_without_dispatch(self):
		agent = FakeAgent("claude")
		plan = make_plan(
			"task",
			step("a", depends_on=["b"]),
			step("b", depends_on=["a"]),
		)

		result = await Scheduler(agents_by_name(agent)).execute(plan)

		assert result.status == ExecutionStatus.FAILED
		assert "cycle" in result.error
		assert result.results == []
		assert agent.calls == 0

	@pytest.mark.asyncio
	async def test_unknown_dependency_fails(self):
		agent = FakeAgent("claude")
		plan = make_plan("task", step("a", depends_on=["missing"]))

		result = await Scheduler(agents_by_name(agent)).execute(plan)

		assert result.status == ExecutionStatus.FAILED
		assert "missing" in result.error
		assert agent.calls == 0

	@pytest.mark.asyncio
	async def test_empty_plan_fails(self):
		result = await Scheduler({}).execute(make_plan("task"))
		assert result.status == ExecutionStatus.FAILED
		assert result.error

	def test_config_rejects_zero_concurrency(self):
		with pytest.raises(ValueError):
			SchedulerConfig(max_concurrency=0)


class TestOrdering:
	"""Dependency order and deterministic dispatch order."""

	@pytest.mark.asyncio
	async def test_dependent_starts_after_prerequisite_completes(self):
		agent = FakeAgent("claude", delay=0.01)
		plan = make_plan(
			"task",
			step("a", output_as="x"),
			step("b", output_as="y"),
			step("c", prompt="{{x}} {{y}}", depends_on=["a", "b"]),
		)

		result = await Scheduler(agents_by_name(agent)).execute(plan, SchedulerConfig(max_concurrency=3))

		c = result.get_result("c")
		for dep in ("a", "b"):
			assert c.started_at >= result.get_result(dep).completed_at

	@pytest.mark.asyncio
	async def test_ready_steps_dispatch_in_plan_order(self):
		"""With one slot, independent steps run in the order they are listed."""
		tracker = ConcurrencyTracker()
		agent = FakeAgent("claude", tracker=tracker)
		plan = make_plan(
			"task",
			step("z", prompt="first"),
			step("m", prompt="second"),
			step("a", prompt="third"),
		)

		await Scheduler(agents_by_name(agent)).execute(plan, SchedulerConfig(max_concurrency=1))

		assert tracker.order == ["first", "second", "third"]

	@pytest.mark.asyncio
	async def test_results_reported_in_plan_order(self):
		slow = FakeAgent("claude", delay=0.05)
		fast = FakeAgent("gemini")
		plan = make_plan("task", step("slow", "claude"), step("fast", "gemini"))

		result = await Scheduler(agents_by_name(slow, fast)).execute(plan, SchedulerConfig(max_concurrency=2))

		assert [r.step_id for r in result.results] == ["slow", "fast"]

	@pytest.mark.asyncio
	async def test_output_is_substituted_into_dependents(self):
		claude = FakeAgent("claude", reply="design doc")
		gemini = FakeAgent("gemini", reply="code")
		plan = make_plan(
			"build it",
			step("plan", "claude", output_as="design"),
			step("code", "gemini", prompt="Implement:\n{{ design }}", depends_on=["plan"]),
		)

		result = await Scheduler(agents_by_name(claude, gemini)).execute(plan)

		assert gemini.prompts == ["Implement:\ndesign doc"]
		assert result.final_output == "code"

	@pytest.mark.asyncio
	async def test_plan_variables_seed_the_store(self):
		agent = FakeAgent("claude")
		plan = make_plan("task", step("a", prompt="{{prompt}} / {{context}}"), variables={"context": "ctx"})

		await Scheduler(agents_by_name(agent)).execute(plan)

		assert agent.prompts == ["task / ctx"]


class TestConcurrencyCap:
	"""max_concurrency bounds how many agent calls are in flight."""

	@pytest.mark.asyncio
	@pytest.mark.parametrize("cap", [1, 2, 3])
	async def test_cap_is_never_exceeded(self, cap):
		tracker = ConcurrencyTracker()
		agent = FakeAgent("claude", delay=0.02, tracker=tracker)
		plan = make_plan("task", *[step(f"s{i}", prompt=f"p{i}") for i in range(6)])

		result = await Scheduler(agents_by_name(agent)).execute(plan, SchedulerConfig(max_concurrency=cap))

		assert tracker.peak == cap
		assert result.status == ExecutionStatus.COMPLETED
		assert agent.calls == 6


class TestCascade:
	"""Non-success propagates only to dependents."""

	@pytest.mark.asyncio
	async def test_transitive_dependents_cancelled_unrelated_branch_runs(self):
		bad = FakeAgent("codex", error="crashed")
		good = FakeAgent("claude", reply="fine")
		plan = make_plan(
			"task",
			step("root", "codex"),
			step("child", "claude", depends_on=["root"]),
			step("grandchild", "claude", depends_on=["child"]),
			step("other", "claude"),
		)

		result = await Scheduler(agents_by_name(bad, good)).execute(plan)

		assert result.status == ExecutionStatus.PARTIAL
		assert result.get_result("child").status == StepStatus.CANCELLED
		assert result.get_result("grandchild").status == StepStatus.CANCELLED
		assert result.get_result("other").status == StepStatus.COMPLETED
		assert good.calls == 1
		assert result.final_output == "fine"

	@pytest.mark.asyncio
	async def test_cancelled_step_names_its_blocker(self):
		bad = FakeAgent("codex", error="crashed")
		plan = make_plan("task", step("root", "codex"), step("child", "codex", depends_on=["root"]))

		result = await Scheduler(agents_by_name(bad)).execute(plan)

		assert "root" in result.get_result("child").error

	@pytest.mark.asyncio
	async def test_final_output_is_last_completed_step(self):
		"""A failed last step leaves the final output to the last success."""
		claude = FakeAgent("claude", reply="first answer")
		codex = FakeAgent("codex", error="no")
		plan = make_plan("task", step("a", "claude"), step("b", "codex"))

		result = await Scheduler(agents_by_name(claude, codex)).execute(plan)

		assert result.status == ExecutionStatus.PARTIAL
		assert result.final_output == "first answer"


class TestTemplates:
	"""Template resolution failures are local to the step."""

	@pytest.mark.asyncio
	async def test_unresolved_reference_fails_without_agent_call(self):
		agent = FakeAgent("claude")
		recorder = EventRecorder()
		events = EventBus()
		events.subscribe(recorder)
		plan = make_plan("task", step("a", prompt="use {{nowhere}}"))

		result = await Scheduler(agents_by_name(agent), events=events).execute(plan)

		a = result.get_result("a")
		assert a.status == StepStatus.FAILED
		assert "unresolved reference" in a.error
		assert agent.calls == 0
		assert [e.step_id for e in recorder.of_type(EventType.ERROR)] == ["a"]
		assert recorder.of_type(EventType.START) == []

	@pytest.mark.asyncio
	async def test_substituted_text_is_not_expanded_again(self):
		claude = FakeAgent("claude", reply="literal {{prompt}}")
		gemini = FakeAgent("gemini")
		plan = make_plan(
			"task",
			step("a", "claude", output_as="out"),
			step("b", "gemini", prompt="{{out}}", depends_on=["a"]),
		)

		await Scheduler(agents_by_name(claude, gemini)).execute(plan)

		assert gemini.prompts == ["literal {{prompt}}"]


class TestInterception:
	"""The before-step hook can allow, edit, or veto a step."""

	@pytest.mark.asyncio
	async def test_veto_skips_step_and_cancels_dependents(self):
		agent = FakeAgent("claude")

		def hook(s, index, results):
			return InterceptDecision(proceed=False) if s.id == "a" else None

		plan = make_plan("task", step("a"), step("b", depends_on=["a"]), step("c"))

		result = await Scheduler(agents_by_name(agent)).execute(plan, SchedulerConfig(on_before_step=hook))

		assert result.get_result("a").status == StepStatus.SKIPPED
		assert result.get_result("b").status == StepStatus.CANCELLED
		assert result.get_result("c").status == StepStatus.COMPLETED
		assert agent.calls == 1

	@pytest.mark.asyncio
	async def test_edited_prompt_is_sent_verbatim(self):
		agent = FakeAgent("claude")

		async def hook(s, index, results):
			return InterceptDecision(edited_prompt="edited {{prompt}}")

		plan = make_plan("task", step("a"))

		await Scheduler(agents_by_name(agent)).execute(plan, SchedulerConfig(on_before_step=hook))

		assert agent.prompts == ["edited {{prompt}}"]

	@pytest.mark.asyncio
	async def test_hook_sees_index_and_results_so_far(self):
		agent = FakeAgent("claude")
		seen = []

		def hook(s, index, results):
			seen.append((s.id, index, [r.step_id for r in results]))
			return None

		plan = make_plan("task", step("a"), step("b", depends_on=["a"]))

		await Scheduler(agents_by_name(agent)).execute(plan, SchedulerConfig(on_before_step=hook))

		assert seen == [("a", 0, []), ("b", 1, ["a"])]

	@pytest.mark.asyncio
	async def test_hook_error_fails_step(self):
		agent = FakeAgent("claude")

		def hook(s, index, results):
			raise RuntimeError("hook broke")

		plan = make_plan("task", step("a"))

		result = await Scheduler(agents_by_name(agent)).execute(plan, SchedulerConfig(on_before_step=hook))

		assert result.get_result("a").status == StepStatus.FAILED
		assert "hook broke" in result.get_result("a").error
		assert agent.calls == 0


class TestAutoRouting:
	"""'auto' steps are resolved at dispatch time."""

	@pytest.mark.asyncio
	async def test_router_choice_is_used(self):
		claude = FakeAgent("claude")
		gemini = FakeAgent("gemini")
		router = FakeRouter(AgentName.GEMINI)
		plan = make_plan("explain this", step("a", "auto"))

		result = await Scheduler(agents_by_name(claude, gemini), router=router).execute(plan)

		assert gemini.calls == 1
		assert claude.calls == 0
		assert result.get_result("a").agent == "gemini"
		assert router.calls[0][0] == "explain this"

	@pytest.mark.asyncio
	async def test_unavailable_router_falls_back_to_first_concrete_agent(self):
		claude = FakeAgent("claude")
		codex = FakeAgent("codex")
		router = FakeRouter(AgentName.CLAUDE, available=False)
		plan = make_plan("task", step("a", "auto"), step("b", "codex"))

		result = await Scheduler(agents_by_name(claude, codex), router=router).execute(plan)

		assert result.get_result("a").agent == "codex"
		assert router.calls == []

	@pytest.mark.asyncio
	async def test_disallowed_route_uses_fallback_agent(self):
		claude = FakeAgent("claude")
		ollama = FakeAgent("ollama")
		router = FakeRouter(AgentName.GEMINI)
		plan = make_plan("task", step("a", "auto"))

		result = await Scheduler(agents_by_name(claude, ollama), router=router).execute(
			plan, SchedulerConfig(allowed_agents=[AgentName.CLAUDE], fallback_agent=AgentName.OLLAMA)
		)

		assert result.get_result("a").agent == "ollama"

	@pytest.mark.asyncio
	async def test_no_router_uses_fallback_agent(self):
		claude = FakeAgent("claude")
		plan = make_plan("task", step("a", "auto"))

		result = await Scheduler(agents_by_name(claude)).execute(plan)

		assert result.get_result("a").agent == "claude"
		assert result.status == ExecutionStatus.COMPLETED


class TestAgentFailures:
	"""Agent errors, exceptions, and timeouts become failed steps."""

	@pytest.mark.asyncio
	async def test_timeout_fails_step(self):
		agent = FakeAgent("claude", delay=1.0)
		plan = make_plan("task", step("a"))

		result = await Scheduler(agents_by_name(agent)).execute(plan, SchedulerConfig(default_timeout=0.05))

		assert result.get_result("a").status == StepStatus.FAILED
		assert "timed out" in result.get_result("a").error
		assert agent.cancelled

	@pytest.mark.asyncio
	async def test_agent_exception_fails_step(self):
		agent = FakeAgent("claude", raises=ConnectionError("network down"))
		plan = make_plan("task", step("a"))

		result = await Scheduler(agents_by_name(agent)).execute(plan)

		assert result.status == ExecutionStatus.FAILED
		assert result.get_result("a").error == "network down"

	@pytest.mark.asyncio
	async def test_unregistered_agent_fails_step(self):
		plan = make_plan("task", step("a", "mistral"))

		result = await Scheduler({}).execute(plan)

		assert result.get_result("a").status == StepStatus.FAILED
		assert "mistral" in result.get_result("a").error

	@pytest.mark.asyncio
	async def test_model_override_is_forwarded(self):
		agent = FakeAgent("claude")
		plan = make_plan("task", step("a", model="opus"))

		result = await Scheduler(agents_by_name(agent)).execute(plan)

		assert agent.models == ["opus"]
		assert result.get_result("a").model == "opus"


class TestCancellation:
	"""A caller cancel event stops the run."""

	@pytest.mark.asyncio
	async def test_cancel_aborts_in_flight_and_pending(self):
		slow = FakeAgent("claude", delay=5.0)
		fast = FakeAgent("gemini", reply="done")
		plan = make_plan(
			"task",
			step("slow", "claude"),
			step("after", "claude", depends_on=["slow"]),
			step("quick", "gemini"),
		)
		cancel_event = asyncio.Event()
		scheduler = Scheduler(agents_by_name(slow, fast))

		run = asyncio.create_task(scheduler.execute(plan, SchedulerConfig(max_concurrency=2), cancel_event))
		await asyncio.sleep(0.05)
		cancel_event.set()
		result = await asyncio.wait_for(run, timeout=2.0)

		assert result.get_result("slow").status == StepStatus.CANCELLED
		assert result.get_result("after").status == StepStatus.CANCELLED
		assert result.get_result("quick").status == StepStatus.COMPLETED
		assert result.status == ExecutionStatus.PARTIAL
		assert slow.calls == 1
		assert slow.cancelled

	@pytest.mark.asyncio
	async def test_cancel_before_start_dispatches_nothing(self):
		agent = FakeAgent("claude")
		cancel_event = asyncio.Event()
		cancel_event.set()
		plan = make_plan("task", step("a"), step("b"))

		result = await Scheduler(agents_by_name(agent)).execute(plan, cancel_event=cancel_event)

		assert agent.calls == 0
		assert result.status == ExecutionStatus.FAILED
		assert all(r.status == StepStatus.CANCELLED for r in result.results)


class TestEvents:
	"""Lifecycle events reach subscribers without affecting the run."""

	@pytest.mark.asyncio
	async def test_start_and_complete_events(self):
		agent = FakeAgent("claude")
		recorder = EventRecorder()
		events = EventBus()
		events.subscribe(recorder)
		plan = make_plan("task", step("a"), step("b", depends_on=["a"]))

		await Scheduler(agents_by_name(agent), events=events).execute(plan)

		assert [(e.type, e.step_id) for e in recorder.events] == [
			(EventType.START, "a"),
			(EventType.COMPLETE, "a"),
			(EventType.START, "b"),
			(EventType.COMPLETE, "b"),
		]
		assert all(e.plan_id == plan.id for e in recorder.events)
		assert recorder.of_type(EventType.COMPLETE)[0].duration is not None

	@pytest.mark.asyncio
	async def test_error_event_carries_message(self):
		agent = FakeAgent("claude", error="bad request")
		recorder = EventRecorder()
		events = EventBus()
		events.subscribe(recorder)

		await Scheduler(agents_by_name(agent), events=events).execute(make_plan("task", step("a")))

		errors = recorder.of_type(EventType.ERROR)
		assert len(errors) == 1
		assert errors[0].message == "bad request"

	@pytest.mark.asyncio
	async def test_failing_listener_does_not_change_outcome(self):
		agent = FakeAgent("claude")
		events = EventBus()

		def broken(event):
			raise RuntimeError("listener bug")

		events.subscribe(broken)
		result = await Scheduler(agents_by_name(agent), events=events).execute(make_plan("task", step("a")))

		assert result.status == ExecutionStatus.COMPLETED
