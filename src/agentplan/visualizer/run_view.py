"""Rich views of execution results and live step events."""

from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..plans.models import ExecutionResult, ExecutionStatus, StepStatus
from ..scheduler.events import EventType, StepEvent
from .utils import format_duration, truncate

STATUS_STYLES = {
	StepStatus.COMPLETED: "green",
	StepStatus.FAILED: "red",
	StepStatus.CANCELLED: "yellow",
	StepStatus.SKIPPED: "dim",
}

RUN_STYLES = {
	ExecutionStatus.COMPLETED: "green",
	ExecutionStatus.PARTIAL: "yellow",
	ExecutionStatus.FAILED: "red",
}


def render_execution_result(
	result: ExecutionResult,
	console: Optional[Console] = None,
	show_output: bool = True,
) -> None:
	"""Render per-step outcomes as a table, then the final output."""
	console = console or Console()

	style = RUN_STYLES.get(result.status, "white")
	if result.error:
		console.print(f"[{style}]Run {result.status.value}:[/{style}] {escape(result.error)}")
		return

	table = Table(title=f"Run {result.plan_id} [{style}]{result.status.value}[/{style}]")
	table.add_column("Step", style="cyan")
	table.add_column("Agent")
	table.add_column("Status")
	table.add_column("Duration", justify="right")
	table.add_column("Detail", style="dim")

	for step in result.results:
		step_style = STATUS_STYLES.get(step.status, "white")
		detail = step.error if step.error else truncate(step.content)
		table.add_row(
			step.step_id,
			step.agent or "-",
			f"[{step_style}]{step.status.value}[/{step_style}]",
			format_duration(step.duration) if step.started_at else "-",
			escape(truncate(detail or "")),
		)

	console.print(table)
	console.print(f"[dim]Total: {format_duration(result.duration)}[/dim]")

	if show_output and result.final_output:
		console.print(Panel(Text(result.final_output), title="Output", border_style=style))


class StepEventPrinter:
	"""Event listener that prints one line per step event."""

	def __init__(self, console: Optional[Console] = None):
		self.console = console or Console(stderr=True)

	def __call__(self, event: StepEvent) -> None:
		if event.type == EventType.START:
			self.console.print(f"[dim]>[/dim] {event.step_id} started")
		elif event.type == EventType.COMPLETE:
			self.console.print(f"[green]+[/green] {event.step_id} done in {format_duration(event.duration or 0.0)}")
		else:
			self.console.print(f"[red]![/red] {event.step_id}: {escape(event.message or '')}")
