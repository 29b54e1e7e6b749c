"""Rich views of compiled plans."""

from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.tree import Tree

from ..plans.models import Plan
from ..plans.validation import topological_layers
from .utils import truncate


def render_plan_tree(plan: Plan, console: Optional[Console] = None) -> None:
	"""Render a plan as a Rich Tree, one branch per dependency layer."""
	console = console or Console()

	tree = Tree(
		f"[bold]{plan.mode.value}[/bold] plan [dim]{plan.id}[/dim]  "
		f"[dim]({len(plan.steps)} steps)[/dim]"
	)

	for depth, layer in enumerate(topological_layers(plan)):
		layer_branch = tree.add(f"[bold]Layer {depth + 1}[/bold]")
		for sid in layer:
			step = plan.get_step(sid)
			label = f"[cyan]{step.id}[/cyan] [magenta]{step.agent.value}[/magenta] {step.action.value}"
			if step.model:
				label += f" [dim]({step.model})[/dim]"
			if step.output_as:
				label += f" -> [green]{step.output_as}[/green]"
			step_branch = layer_branch.add(label)
			if step.depends_on:
				step_branch.add(f"[dim]after: {', '.join(step.depends_on)}[/dim]")

	console.print(tree)


def render_plan_summary(plan: Plan, console: Optional[Console] = None) -> None:
	"""Render a summary panel for a plan."""
	console = console or Console()

	lines = []
	lines.append(f"[bold]Mode:[/bold] {plan.mode.value}")
	lines.append(f"[bold]Task:[/bold] {truncate(plan.prompt, 100)}")
	lines.append(f"[bold]Steps:[/bold] {len(plan.steps)}")
	agents = sorted({s.agent.value for s in plan.steps})
	lines.append(f"[bold]Agents:[/bold] {', '.join(agents)}")

	if plan.variables:
		lines.append("")
		lines.append("[bold]Inputs:[/bold]")
		for name in plan.variables:
			lines.append(f"  - {name}")

	console.print(Panel("\n".join(lines), title=f"Plan: {plan.id}", border_style="cyan"))
