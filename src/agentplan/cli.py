"""CLI for agentplan: run, compare, pipe, pickbuild, consensus, puzzle, orchestrate, and profiles."""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table

from .agents import AgentRegistry
from .compiler.builders import (
	CompareOptions,
	build_compare_plan,
	build_pipeline_plan,
	build_single_agent_plan,
	parse_agents_string,
	parse_pipeline_string,
)
from .compiler.moa import (
	ConsensusOptions,
	PickBuildOptions,
	build_consensus_plan,
	build_pick_build_plan,
)
from .compiler.planner import generate_plan
from .compiler.puzzle import PuzzleAssemblyOptions, build_puzzle_assembly_plan
from .config import Config, load_config
from .logging_config import setup_logging
from .orchestrator.profiles import (
	ProfileError,
	get_default_orchestration_config,
	get_profile,
	resolve_orchestration_config,
	save_profiles_file,
	validate_profile,
)
from .orchestrator.selector import select_plan_for_profile
from .plans.models import AgentName, ExecutionStatus, Plan, Step, StepResult
from .plans.validation import PlanValidationError
from .routing import RuleBasedRouter
from .scheduler.engine import Scheduler, SchedulerConfig
from .scheduler.events import EventBus
from .scheduler.protocols import BeforeStepHook, InterceptDecision
from .visualizer import (
	StepEventPrinter,
	render_execution_result,
	render_plan_summary,
	render_plan_tree,
)

console = Console()

_STRUCTURE_SKIP = {".git", "node_modules", "__pycache__", ".venv", "venv", "dist", "build"}


def _project_structure(root: Path, max_entries: int = 200) -> str:
	"""Indented file listing of a directory, two levels deep."""
	lines = []
	for path in sorted(root.rglob("*")):
		rel = path.relative_to(root)
		if len(rel.parts) > 2 or any(part in _STRUCTURE_SKIP for part in rel.parts):
			continue
		indent = "  " * (len(rel.parts) - 1)
		lines.append(f"{indent}{rel.name}{'/' if path.is_dir() else ''}")
		if len(lines) >= max_entries:
			lines.append("...")
			break
	return "\n".join(lines)


def _confirm_hook(step: Step, index: int, results: list[StepResult]) -> Optional[InterceptDecision]:
	"""Ask on the terminal before each step runs."""
	console.print(f"\n[bold]Step {index + 1}:[/bold] {step.id} [magenta]{step.agent.value}[/magenta] {step.action.value}")
	if Confirm.ask("Run this step?", default=True):
		return None
	return InterceptDecision(proceed=False)


async def _execute(
	scheduler: Scheduler,
	plan: Plan,
	sched_config: SchedulerConfig,
):
	"""Run a plan; Ctrl-C cancels in-flight steps instead of killing the process."""
	cancel_event = asyncio.Event()
	loop = asyncio.get_running_loop()
	try:
		loop.add_signal_handler(signal.SIGINT, cancel_event.set)
	except (NotImplementedError, RuntimeError):
		pass
	try:
		return await scheduler.execute(plan, sched_config, cancel_event=cancel_event)
	finally:
		try:
			loop.remove_signal_handler(signal.SIGINT)
		except (NotImplementedError, RuntimeError):
			pass


def _run_plan(
	plan: Plan,
	args: argparse.Namespace,
	config: Config,
	hook: Optional[BeforeStepHook] = None,
	max_concurrency: Optional[int] = None,
) -> int:
	"""Show or execute a compiled plan. Returns the process exit code."""
	if args.dry_run:
		render_plan_summary(plan, console)
		render_plan_tree(plan, console)
		return 0

	registry = AgentRegistry.from_config(config)
	events = EventBus()
	if not args.quiet:
		events.subscribe(StepEventPrinter())
	scheduler = Scheduler(registry, router=RuleBasedRouter(registry.names()), events=events)

	overrides = {}
	if args.concurrency or max_concurrency:
		overrides["max_concurrency"] = args.concurrency or max_concurrency
	if args.timeout:
		overrides["default_timeout"] = args.timeout
	if hook is None and getattr(args, "confirm", False):
		hook = _confirm_hook
	if hook is not None:
		overrides["on_before_step"] = hook
	sched_config = SchedulerConfig.from_config(config, **overrides)

	result = asyncio.run(_execute(scheduler, plan, sched_config))

	if args.json:
		print(result.model_dump_json(indent=2))
	else:
		render_execution_result(result, console)

	return 0 if result.status == ExecutionStatus.COMPLETED else 1


def cmd_run(args: argparse.Namespace, config: Config) -> int:
	"""Single agent, or an LLM-generated plan with --planner."""
	if args.planner:
		registry = AgentRegistry.from_config(config)
		planner = registry.get(args.planner)
		if planner is None:
			console.print(f"[red]No agent configured for planner '{args.planner}'[/red]")
			return 1
		planned = asyncio.run(generate_plan(args.task, planner, timeout=args.timeout or config.default_timeout))
		if not planned.success:
			console.print(f"[red]Planning failed:[/red] {planned.error}")
			return 1
		if planned.reasoning and not args.quiet:
			console.print(f"[dim]Reasoning: {planned.reasoning}[/dim]")
		return _run_plan(planned.plan, args, config)

	plan = build_single_agent_plan(args.task, args.agent)
	return _run_plan(plan, args, config)


def cmd_compare(args: argparse.Namespace, config: Config) -> int:
	"""Same task on several agents."""
	plan = build_compare_plan(args.task, CompareOptions(
		agents=parse_agents_string(args.agents),
		sequential=args.sequential,
		pick=args.pick,
		aggregator=AgentName(args.aggregator),
	))
	return _run_plan(plan, args, config)


def cmd_pipe(args: argparse.Namespace, config: Config) -> int:
	"""Chain agents, each stage seeing the previous output."""
	plan = build_pipeline_plan(args.task, parse_pipeline_string(args.pipeline))
	return _run_plan(plan, args, config)


def cmd_pickbuild(args: argparse.Namespace, config: Config) -> int:
	"""Agents propose plans, one is picked, then built."""
	structure = _project_structure(Path.cwd()) if args.with_structure else None
	plan = build_pick_build_plan(args.task, PickBuildOptions(
		agents=parse_agents_string(args.agents),
		picker=AgentName(args.picker),
		build_agent=AgentName(args.build_agent),
		reviewer=AgentName(args.reviewer) if args.reviewer else None,
		sequential=args.sequential,
		format=args.format,
		skip_review=args.no_review,
		project_structure=structure,
	))
	return _run_plan(plan, args, config)


def cmd_consensus(args: argparse.Namespace, config: Config) -> int:
	"""Agents answer, revise after seeing each other, then a synthesis."""
	plan = build_consensus_plan(args.task, ConsensusOptions(
		agents=parse_agents_string(args.agents),
		max_rounds=args.rounds,
		synthesizer=AgentName(args.synthesizer),
	))
	return _run_plan(plan, args, config)


def cmd_puzzle(args: argparse.Namespace, config: Config) -> int:
	"""Decompose, propose, assemble, verify, and refine in one plan."""
	plan = build_puzzle_assembly_plan(args.task, PuzzleAssemblyOptions(
		proposer_count=args.proposers,
		refinement_rounds=args.rounds,
		verification_strategy=args.strategy,
	))
	return _run_plan(plan, args, config)


def cmd_orchestrate(args: argparse.Namespace, config: Config) -> int:
	"""Let a profile decide the mode."""
	orchestration = resolve_orchestration_config(config.profiles_file, {"default_profile": config.default_profile})
	profile = get_profile(orchestration, args.profile)

	registry = AgentRegistry.from_config(config)
	router = RuleBasedRouter(registry.names())
	selection = asyncio.run(select_plan_for_profile(
		args.task,
		profile,
		router=router,
		confidence_threshold=config.confidence_threshold,
	))

	if not args.quiet:
		agents = ", ".join(a.value for a in selection.agents)
		console.print(f"[bold]{profile.name}:[/bold] {selection.rationale} [dim]agents: {agents}[/dim]")

	if selection.plan is None:
		console.print(
			f"[yellow]{selection.mode.value} mode has no step plan; "
			f"run it with {selection.primary_agent.value} as supervisor.[/yellow]"
		)
		return 0 if args.dry_run else 1

	return _run_plan(selection.plan, args, config, max_concurrency=profile.max_concurrency)


def cmd_profiles(args: argparse.Namespace, config: Config) -> int:
	"""List, show, or write out orchestration profiles."""
	if args.profiles_action == "init":
		if config.profiles_file.exists() and not args.force:
			console.print(f"[yellow]{config.profiles_file} already exists (use --force to overwrite)[/yellow]")
			return 1
		save_profiles_file(get_default_orchestration_config(), config.profiles_file)
		console.print(f"Wrote default profiles to {config.profiles_file}")
		return 0

	orchestration = resolve_orchestration_config(config.profiles_file, {"default_profile": config.default_profile})

	if args.profiles_action == "show":
		profile = get_profile(orchestration, args.name)
		print(profile.model_dump_json(indent=2, exclude_none=True))
		return 0

	table = Table(title="Orchestration profiles")
	table.add_column("Name", style="cyan")
	table.add_column("Modes")
	table.add_column("Concurrency", justify="right")
	table.add_column("Review")
	table.add_column("Agents")
	table.add_column("Valid")
	for name, profile in orchestration.profiles.items():
		label = f"{name} (default)" if name == orchestration.default_profile else name
		errors = validate_profile(profile)
		table.add_row(
			label,
			", ".join(profile.preferred_modes),
			str(profile.max_concurrency),
			"yes" if profile.require_review else "no",
			", ".join(profile.allow_agents),
			"[green]OK[/green]" if not errors else f"[red]{'; '.join(errors)}[/red]",
		)
	console.print(table)
	return 0


def _add_run_options(parser: argparse.ArgumentParser) -> None:
	parser.add_argument("--dry-run", action="store_true", help="Show the compiled plan without running it")
	parser.add_argument("--concurrency", type=int, default=None, help="Max steps running at once")
	parser.add_argument("--timeout", type=float, default=None, help="Per-step timeout in seconds")
	parser.add_argument("--confirm", action="store_true", help="Ask before each step runs")
	parser.add_argument("--json", action="store_true", help="Print the execution result as JSON")
	parser.add_argument("-q", "--quiet", action="store_true", help="No live step events")


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="agentplan",
		description="Compile multi-agent tasks into step graphs and run them",
	)
	parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
	subparsers = parser.add_subparsers(dest="command")

	# run
	run_parser = subparsers.add_parser("run", help="Run a task on one agent")
	run_parser.add_argument("task")
	run_parser.add_argument("--agent", default="auto", help="Agent name, or 'auto' to route")
	run_parser.add_argument("--planner", default=None, help="Let this agent plan the steps")
	_add_run_options(run_parser)
	run_parser.set_defaults(func=cmd_run)

	# compare
	compare_parser = subparsers.add_parser("compare", help="Run a task on several agents")
	compare_parser.add_argument("task")
	compare_parser.add_argument("--agents", default="claude,gemini", help="Comma-separated agents")
	compare_parser.add_argument("--sequential", action="store_true", help="One agent at a time")
	compare_parser.add_argument("--pick", action="store_true", help="Add a step that picks the best answer")
	compare_parser.add_argument("--aggregator", default="auto", help="Agent for the pick step")
	_add_run_options(compare_parser)
	compare_parser.set_defaults(func=cmd_compare)

	# pipe
	pipe_parser = subparsers.add_parser("pipe", help="Chain agents in a pipeline")
	pipe_parser.add_argument("task")
	pipe_parser.add_argument("--pipeline", required=True, help='e.g. "gemini:analyze,claude:code,codex:review"')
	_add_run_options(pipe_parser)
	pipe_parser.set_defaults(func=cmd_pipe)

	# pickbuild
	pb_parser = subparsers.add_parser("pickbuild", help="Compare plans, pick one, build it")
	pb_parser.add_argument("task")
	pb_parser.add_argument("--agents", default="claude,gemini", help="Comma-separated proposers")
	pb_parser.add_argument("--picker", default="auto", help="Agent that picks the plan")
	pb_parser.add_argument("--build-agent", default="claude", help="Agent that implements the plan")
	pb_parser.add_argument("--reviewer", default=None, help="Agent that reviews the implementation")
	pb_parser.add_argument("--sequential", action="store_true", help="Proposers run one at a time")
	pb_parser.add_argument("--format", choices=["json", "md"], default="json", help="Plan format")
	pb_parser.add_argument("--no-review", action="store_true", help="Skip the review step")
	pb_parser.add_argument("--with-structure", action="store_true", help="Include the current directory layout")
	_add_run_options(pb_parser)
	pb_parser.set_defaults(func=cmd_pickbuild)

	# consensus
	cons_parser = subparsers.add_parser("consensus", help="Multi-round consensus")
	cons_parser.add_argument("task")
	cons_parser.add_argument("--agents", default="claude,gemini", help="Comma-separated agents")
	cons_parser.add_argument("--rounds", type=int, default=2, help="Discussion rounds")
	cons_parser.add_argument("--synthesizer", default="auto", help="Agent that merges the answers")
	_add_run_options(cons_parser)
	cons_parser.set_defaults(func=cmd_consensus)

	# puzzle
	puzzle_parser = subparsers.add_parser("puzzle", help="Decompose, solve, assemble, verify, refine")
	puzzle_parser.add_argument("task")
	puzzle_parser.add_argument("--proposers", type=int, default=2, help="Parallel proposals")
	puzzle_parser.add_argument("--rounds", type=int, default=2, help="Refinement rounds")
	puzzle_parser.add_argument(
		"--strategy",
		choices=["cross-check", "triangulation", "test-generation"],
		default="cross-check",
		help="Verification strategy",
	)
	_add_run_options(puzzle_parser)
	puzzle_parser.set_defaults(func=cmd_puzzle)

	# orchestrate
	orch_parser = subparsers.add_parser("orchestrate", help="Let a profile choose the mode")
	orch_parser.add_argument("task")
	orch_parser.add_argument("--profile", default=None, help="Profile name (default from config)")
	_add_run_options(orch_parser)
	orch_parser.set_defaults(func=cmd_orchestrate)

	# profiles
	prof_parser = subparsers.add_parser("profiles", help="Manage orchestration profiles")
	prof_subparsers = prof_parser.add_subparsers(dest="profiles_action")
	prof_subparsers.add_parser("list", help="List profiles")
	prof_show = prof_subparsers.add_parser("show", help="Show one profile")
	prof_show.add_argument("name")
	prof_init = prof_subparsers.add_parser("init", help="Write the default profiles file")
	prof_init.add_argument("--force", action="store_true", help="Overwrite an existing file")
	prof_parser.set_defaults(func=cmd_profiles, profiles_action="list")

	return parser


def main(argv: Optional[list[str]] = None) -> None:
	"""CLI entry point."""
	parser = build_parser()
	args = parser.parse_args(argv)

	if not args.command:
		parser.print_help()
		sys.exit(1)

	config = load_config()
	setup_logging(level="DEBUG" if args.verbose else None, log_dir=config.log_dir)

	try:
		code = args.func(args, config)
	except (ValueError, PlanValidationError, ProfileError) as e:
		console.print(f"[red]Error:[/red] {e}")
		code = 1

	sys.exit(code)


if __name__ == "__main__":
	main()
