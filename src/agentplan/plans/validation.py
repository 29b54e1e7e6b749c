"""Structural checks a plan must pass before any step is dispatched."""

from typing import Optional

from .models import Plan
from .variables import PROMPT_VARIABLE


class PlanValidationError(Exception):
	"""Raised when a plan violates reference-validity or acyclicity."""
	pass


def validate_plan(plan: Plan) -> None:
	"""
	Check plan invariants.

	- at least one step, unique step IDs
	- every depends_on entry names another step of the same plan
	- the depends_on relation is acyclic
	- output_as names are unique and do not shadow initial variables

	Raises:
		PlanValidationError: describing the first violation found
	"""
	if not plan.steps:
		raise PlanValidationError("plan has no steps")

	step_ids: set[str] = set()
	for step in plan.steps:
		if step.id in step_ids:
			raise PlanValidationError(f"duplicate step id: {step.id}")
		step_ids.add(step.id)

	reserved = {PROMPT_VARIABLE, *plan.variables}
	if PROMPT_VARIABLE in plan.variables:
		raise PlanValidationError(f"'{PROMPT_VARIABLE}' is reserved and cannot be an initial variable")

	outputs: set[str] = set()
	for step in plan.steps:
		for dep in step.depends_on or []:
			if dep == step.id:
				raise PlanValidationError(f"step {step.id} depends on itself")
			if dep not in step_ids:
				raise PlanValidationError(f"step {step.id} depends on unknown step: {dep}")

		if step.output_as is not None:
			if step.output_as in reserved:
				raise PlanValidationError(
					f"step {step.id} output '{step.output_as}' shadows a reserved or initial variable"
				)
			if step.output_as in outputs:
				raise PlanValidationError(f"duplicate output name: {step.output_as}")
			outputs.add(step.output_as)

	cycle = find_cycle(plan)
	if cycle:
		raise PlanValidationError(f"dependency cycle: {' -> '.join(cycle)}")


def find_cycle(plan: Plan) -> Optional[list[str]]:
	"""Return one dependency cycle as a list of step IDs, or None."""
	edges = {step.id: list(step.depends_on or []) for step in plan.steps}
	visiting: list[str] = []
	on_path: set[str] = set()
	done: set[str] = set()

	def visit(node: str) -> Optional[list[str]]:
		visiting.append(node)
		on_path.add(node)
		for dep in edges.get(node, []):
			if dep in on_path:
				start = visiting.index(dep)
				return visiting[start:] + [dep]
			if dep not in done and dep in edges:
				found = visit(dep)
				if found:
					return found
		visiting.pop()
		on_path.discard(node)
		done.add(node)
		return None

	for step in plan.steps:
		if step.id not in done:
			found = visit(step.id)
			if found:
				return found
	return None


def topological_layers(plan: Plan) -> list[list[str]]:
	"""
	Group step IDs into layers where each layer depends only on earlier ones.

	Assumes the plan is valid. Order within a layer follows plan order.
	"""
	remaining = {step.id: set(step.depends_on or []) for step in plan.steps}
	order = [step.id for step in plan.steps]
	placed: set[str] = set()
	layers: list[list[str]] = []

	while remaining:
		layer = [sid for sid in order if sid in remaining and remaining[sid] <= placed]
		if not layer:
			raise PlanValidationError("plan contains a dependency cycle")
		layers.append(layer)
		for sid in layer:
			placed.add(sid)
			del remaining[sid]

	return layers
