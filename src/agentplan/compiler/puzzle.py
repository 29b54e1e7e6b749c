"""
Puzzle Assembly plan builders.

The "puzzle" workflow runs in phases, each compiled into its own plan:

1. DECOMPOSE: break the task into pieces (subproblems) with dependencies
2. SOLVE: solve every piece; complex pieces fan out to several proposers
   and an aggregator merges their proposals (mixture of agents)
3. ASSEMBLE: detect conflicts between solved pieces and integrate them
4. VERIFY: cross-check, triangulate, or generate tests for the assembly
5. REFINE: alternate refine/feedback rounds, then a final polish

build_puzzle_assembly_plan compiles a compact single-plan version of the
whole flow. Output from an earlier phase enters a later phase's plan via
Plan.variables, so it is substituted as data and never parsed as a template.
"""

import logging
from dataclasses import dataclass, field
from typing import Literal, Optional

from pydantic import BaseModel, Field

from ..plans.models import AgentName, Plan, PlanMode, Step, StepAction
from .builders import finalize_plan

logger = logging.getLogger(__name__)

# Most capable first
CAPABILITY_CASCADE: list[AgentName] = [
	AgentName.CODEX,
	AgentName.CLAUDE,
	AgentName.GEMINI,
	AgentName.FACTORY,
]

VerificationStrategy = Literal["triangulation", "test-generation", "cross-check"]


class PuzzlePiece(BaseModel):
	"""A subproblem produced by decomposition."""
	id: str = Field(description="snake_case piece identifier")
	description: str = Field(description="What the piece must accomplish")
	dependencies: list[str] = Field(default_factory=list, description="IDs of pieces solved first")
	assigned_agent: Optional[AgentName] = Field(default=None)
	solution: Optional[str] = Field(default=None)
	confidence: Optional[float] = Field(default=None)
	verified: bool = Field(default=False)


@dataclass
class PuzzleAssemblyOptions:
	max_depth: int = 3
	proposer_count: int = 2
	refinement_rounds: int = 2
	verification_strategy: VerificationStrategy = "cross-check"
	agent_assignments: dict[str, AgentName] = field(default_factory=dict)


def build_decompose_plan(task: str, options: Optional[PuzzleAssemblyOptions] = None) -> Plan:
	"""Phase 1: analyze the task into pieces, then validate the decomposition."""
	options = options or PuzzleAssemblyOptions()

	steps = [
		Step(
			id="analyze",
			agent=AgentName.CODEX,
			action=StepAction.DECOMPOSE,
			prompt=(
				"Analyze this task and identify independent subproblems that can be solved separately.\n"
				f"Do not nest subproblems more than {options.max_depth} levels deep.\n\n"
				"Task: {{prompt}}\n\n"
				"For each subproblem, provide:\n"
				"1. A unique ID (snake_case)\n"
				"2. Clear description\n"
				"3. Dependencies (IDs of subproblems that must complete first)\n"
				"4. Estimated complexity (low/medium/high)\n"
				"5. Best-suited agent type (reasoning/coding/research/implementation)\n\n"
				"Output as JSON:\n"
				'{"pieces": [{"id": "setup_database", "description": "Create database schema", '
				'"dependencies": [], "complexity": "medium", "agentType": "coding"}], '
				'"executionOrder": ["id1", "id2"], "parallelGroups": [["id1", "id2"], ["id3"]]}'
			),
			output_as="decomposition",
		),
		Step(
			id="validate_decomposition",
			agent=AgentName.GEMINI,
			action=StepAction.VERIFY,
			prompt=(
				"Review this task decomposition for completeness and correctness.\n\n"
				"Original Task: {{prompt}}\n\n"
				"Decomposition:\n{{decomposition}}\n\n"
				"Check for:\n"
				"1. Missing subproblems\n"
				"2. Incorrect dependencies (circular, missing)\n"
				"3. Granularity issues (too coarse or too fine)\n"
				"4. Feasibility of parallel execution\n\n"
				'Output corrected JSON with same structure, or confirm "VALID" if correct.'
			),
			depends_on=["analyze"],
			output_as="validated_decomposition",
		),
	]
	return finalize_plan(Plan(mode=PlanMode.PUZZLE, prompt=task, steps=steps))


def _dependency_refs(piece: PuzzlePiece) -> str:
	if not piece.dependencies:
		return ""
	refs = "\n".join(f"{{{{{d}_solution}}}}" for d in piece.dependencies)
	return f"\n\nDependencies (already solved):\n{refs}"


def _solve_prompt(piece: PuzzlePiece, detailed: bool) -> str:
	ask = (
		"Provide a complete, production-ready solution. Include:\n"
		"1. Implementation/answer\n"
		"2. Rationale for key decisions\n"
		"3. Potential edge cases handled\n"
		"4. Confidence score (0-1)"
		if detailed else "Provide a complete solution."
	)
	return (
		"Solve this subproblem as part of a larger task.\n\n"
		"Overall Task: {{prompt}}\n\n"
		f"Subproblem: {{{{{piece.id}_description}}}}"
		f"{_dependency_refs(piece)}\n\n"
		f"{ask}"
	)


def build_solve_plan(
	pieces: list[PuzzlePiece],
	task: str,
	options: Optional[PuzzleAssemblyOptions] = None,
) -> Plan:
	"""
	Phase 2: solve every piece in dependency order.

	Pieces marked complex, and pieces alone in their layer, fan out to
	proposer_count proposers plus an aggregator. Every other piece gets a
	single solver. Each piece publishes <id>_solution.
	"""
	options = options or PuzzleAssemblyOptions()
	if options.proposer_count < 1:
		raise ValueError("proposer_count must be >= 1")
	_check_pieces(pieces)

	proposers = CAPABILITY_CASCADE[:options.proposer_count]
	variables = {f"{p.id}_description": p.description for p in pieces}
	steps: list[Step] = []

	layers = group_by_dependencies(pieces)
	logger.debug(f"Solving {len(pieces)} pieces in {len(layers)} layers")

	for layer in layers:
		for piece in layer:
			upstream = [f"solve_{d}_aggregated" for d in piece.dependencies] or None

			if "complex" in piece.description.lower() or len(layer) == 1:
				for proposer in proposers:
					steps.append(Step(
						id=f"solve_{piece.id}_{proposer.value}",
						agent=proposer,
						action=StepAction.SOLVE,
						prompt=_solve_prompt(piece, detailed=True),
						depends_on=upstream,
						output_as=f"{piece.id}_proposal_{proposer.value}",
					))

				proposals = "\n".join(
					f"\n--- {p.value} ---\n{{{{{piece.id}_proposal_{p.value}}}}}" for p in proposers
				)
				steps.append(Step(
					id=f"solve_{piece.id}_aggregated",
					agent=AgentName.CODEX,
					action=StepAction.COMBINE,
					prompt=(
						"You are an aggregator. Synthesize these proposals into the best solution.\n\n"
						f"Subproblem: {{{{{piece.id}_description}}}}\n\n"
						f"Proposals:\n{proposals}\n\n"
						"Create a unified solution that:\n"
						"1. Takes the best elements from each proposal\n"
						"2. Resolves any contradictions\n"
						"3. Fills any gaps\n"
						"4. Is production-ready\n\n"
						"Output the final solution with confidence score."
					),
					depends_on=[f"solve_{piece.id}_{p.value}" for p in proposers],
					output_as=f"{piece.id}_solution",
				))
			else:
				agent = (
					options.agent_assignments.get(piece.id)
					or piece.assigned_agent
					or select_agent_for_piece(piece)
				)
				steps.append(Step(
					id=f"solve_{piece.id}_aggregated",
					agent=agent,
					action=StepAction.SOLVE,
					prompt=_solve_prompt(piece, detailed=False),
					depends_on=upstream,
					output_as=f"{piece.id}_solution",
				))

	return finalize_plan(Plan(mode=PlanMode.PUZZLE, prompt=task, steps=steps, variables=variables))


def build_assemble_plan(pieces: list[PuzzlePiece], task: str) -> Plan:
	"""Phase 3: find conflicts between solved pieces, then integrate them."""
	_check_pieces(pieces)
	missing = [p.id for p in pieces if p.solution is None]
	if missing:
		raise ValueError(f"pieces without a solution: {', '.join(missing)}")

	variables = {f"{p.id}_solution": p.solution or "" for p in pieces}
	piece_refs = "\n\n---\n\n".join(f"{{{{{p.id}_solution}}}}" for p in pieces)

	steps = [
		Step(
			id="detect_conflicts",
			agent=AgentName.GEMINI,
			action=StepAction.ANALYZE,
			prompt=(
				"Analyze these solved pieces for conflicts and integration issues.\n\n"
				"Original Task: {{prompt}}\n\n"
				f"Solved Pieces:\n{piece_refs}\n\n"
				"Identify:\n"
				"1. Overlapping implementations (same thing done differently)\n"
				"2. Contradictions (incompatible approaches)\n"
				"3. Gaps (missing connections between pieces)\n"
				"4. Integration points (where pieces must connect)\n\n"
				"Output as JSON:\n"
				'{"conflicts": [{"pieces": ["id1", "id2"], "type": "overlap|contradiction|gap", '
				'"description": "..."}], "integrationPoints": [{"from": "id1", "to": "id2", '
				'"interface": "..."}], "assemblyOrder": ["id1", "id2"]}'
			),
			output_as="conflict_analysis",
		),
		Step(
			id="resolve_conflicts",
			agent=AgentName.CODEX,
			action=StepAction.ASSEMBLE,
			prompt=(
				"Resolve the identified conflicts and assemble the final solution.\n\n"
				"Original Task: {{prompt}}\n\n"
				"Conflict Analysis:\n{{conflict_analysis}}\n\n"
				f"Solved Pieces:\n{piece_refs}\n\n"
				"For each conflict:\n"
				"1. Choose the best approach or merge approaches\n"
				"2. Ensure consistency across the solution\n"
				"3. Fill any gaps with minimal additions\n\n"
				"Output the fully assembled, integrated solution."
			),
			depends_on=["detect_conflicts"],
			output_as="assembled_solution",
		),
	]
	return finalize_plan(Plan(mode=PlanMode.PUZZLE, prompt=task, steps=steps, variables=variables))


def build_verify_plan(
	task: str,
	assembled_solution: str,
	options: Optional[PuzzleAssemblyOptions] = None,
) -> Plan:
	"""Phase 4: verify an assembled solution. Every strategy publishes verification_result."""
	options = options or PuzzleAssemblyOptions()
	strategy = options.verification_strategy

	if strategy == "triangulation":
		steps = [
			Step(
				id="transform_problem",
				agent=AgentName.GEMINI,
				action=StepAction.ANALYZE,
				prompt=(
					"Transform this problem into an equivalent form that would have the same solution.\n\n"
					"Original: {{prompt}}\nSolution: {{assembled_solution}}\n\n"
					"Create a semantically equivalent problem statement that:\n"
					"1. Uses different terminology\n"
					"2. Approaches from a different angle\n"
					"3. Would produce the same correct solution\n\n"
					"Output the transformed problem."
				),
				output_as="transformed_problem",
			),
			Step(
				id="solve_transformed",
				agent=AgentName.CLAUDE,
				action=StepAction.SOLVE,
				prompt="Solve this problem independently.\n\n{{transformed_problem}}\n\nProvide your solution.",
				depends_on=["transform_problem"],
				output_as="transformed_solution",
			),
			Step(
				id="compare_solutions",
				agent=AgentName.CODEX,
				action=StepAction.VERIFY,
				prompt=(
					"Compare these two solutions for consistency.\n\n"
					"Original Solution:\n{{assembled_solution}}\n\n"
					"Transformed Solution:\n{{transformed_solution}}\n\n"
					"Are they semantically equivalent? Identify any discrepancies.\n"
					'Output: {"consistent": true/false, "discrepancies": [...], "confidence": 0.X}'
				),
				depends_on=["solve_transformed"],
				output_as="verification_result",
			),
		]
	elif strategy == "test-generation":
		steps = [
			Step(
				id="generate_tests",
				agent=AgentName.CODEX,
				action=StepAction.TEST,
				prompt=(
					"Generate comprehensive tests for this solution.\n\n"
					"Task: {{prompt}}\nSolution: {{assembled_solution}}\n\n"
					"Create:\n"
					"1. Unit tests for individual components\n"
					"2. Integration tests for piece connections\n"
					"3. Edge case tests\n"
					"4. Regression tests\n\n"
					"Output executable test code."
				),
				output_as="test_suite",
			),
			Step(
				id="analyze_coverage",
				agent=AgentName.GEMINI,
				action=StepAction.VERIFY,
				prompt=(
					"Analyze test coverage and identify gaps.\n\n"
					"Solution: {{assembled_solution}}\nTests: {{test_suite}}\n\n"
					"Identify:\n"
					"1. Untested code paths\n"
					"2. Missing edge cases\n"
					"3. Potential failure modes\n\n"
					"Output coverage analysis."
				),
				depends_on=["generate_tests"],
				output_as="verification_result",
			),
		]
	elif strategy == "cross-check":
		steps = [
			Step(
				id="cross_verify",
				agent=AgentName.FACTORY,
				action=StepAction.VERIFY,
				prompt=(
					"Critically review this solution for correctness and completeness.\n\n"
					"Task: {{prompt}}\nSolution: {{assembled_solution}}\n\n"
					"Check for:\n"
					"1. Logical errors\n"
					"2. Missing requirements\n"
					"3. Edge cases not handled\n"
					"4. Performance issues\n"
					"5. Security concerns\n\n"
					'Output: {"valid": true/false, "issues": [...], "suggestions": [...]}'
				),
				output_as="verification_result",
			),
		]
	else:
		raise ValueError(f"unknown verification strategy: {strategy}")

	return finalize_plan(Plan(
		mode=PlanMode.PUZZLE,
		prompt=task,
		steps=steps,
		variables={"assembled_solution": assembled_solution},
	))


def build_refine_plan(
	task: str,
	assembled_solution: str,
	verification_result: str,
	options: Optional[PuzzleAssemblyOptions] = None,
) -> Plan:
	"""
	Phase 5: self-refine loop.

	refine_N -> feedback_N -> refine_(N+1) for refinement_rounds rounds,
	then final_polish, which is placed last and supplies the final output.
	"""
	options = options or PuzzleAssemblyOptions()
	rounds = options.refinement_rounds
	if rounds < 1:
		raise ValueError("refinement_rounds must be >= 1")

	steps: list[Step] = []
	for r in range(rounds):
		prev_solution = "{{assembled_solution}}" if r == 0 else f"{{{{refined_solution_{r - 1}}}}}"
		prev_feedback = "{{verification_result}}" if r == 0 else f"{{{{refinement_feedback_{r - 1}}}}}"

		steps.append(Step(
			id=f"refine_{r}",
			agent=AgentName.CODEX,
			action=StepAction.REFINE,
			prompt=(
				"Refine this solution based on feedback.\n\n"
				"Original Task: {{prompt}}\n\n"
				f"Current Solution:\n{prev_solution}\n\n"
				f"Feedback/Issues:\n{prev_feedback}\n\n"
				"Improve the solution by:\n"
				"1. Fixing all identified issues\n"
				"2. Addressing suggestions\n"
				"3. Improving code quality\n"
				"4. Adding missing error handling\n\n"
				"Output the refined solution."
			),
			depends_on=[f"feedback_{r - 1}"] if r > 0 else None,
			output_as=f"refined_solution_{r}",
		))
		steps.append(Step(
			id=f"feedback_{r}",
			agent=AgentName.GEMINI,
			action=StepAction.FEEDBACK,
			prompt=(
				"Review the refinements made.\n\n"
				f"Previous: {prev_solution}\n"
				f"Refined: {{{{refined_solution_{r}}}}}\n\n"
				"Are all issues addressed? Any new issues introduced?\n"
				'Output remaining issues or "COMPLETE" if satisfactory.'
			),
			depends_on=[f"refine_{r}"],
			output_as=f"refinement_feedback_{r}",
		))

	steps.append(Step(
		id="final_polish",
		agent=AgentName.CLAUDE,
		action=StepAction.POLISH,
		prompt=(
			"Final polish of the solution.\n\n"
			"Task: {{prompt}}\n"
			f"Solution: {{{{refined_solution_{rounds - 1}}}}}\n\n"
			"Make final improvements:\n"
			"1. Clean up formatting\n"
			"2. Add helpful comments\n"
			"3. Ensure consistency\n"
			"4. Optimize if obvious opportunities\n\n"
			"Output the final, production-ready solution."
		),
		depends_on=[f"feedback_{rounds - 1}"],
		output_as="final_solution",
	))

	return finalize_plan(Plan(
		mode=PlanMode.PUZZLE,
		prompt=task,
		steps=steps,
		variables={
			"assembled_solution": assembled_solution,
			"verification_result": verification_result,
		},
	))


def build_puzzle_assembly_plan(task: str, options: Optional[PuzzleAssemblyOptions] = None) -> Plan:
	"""
	Whole puzzle flow as one plan.

	decompose -> proposers (fan-out) -> assemble -> verify -> refine chain.
	The last refine step is placed last so it supplies the final output.
	"""
	options = options or PuzzleAssemblyOptions()
	if options.proposer_count < 1:
		raise ValueError("proposer_count must be >= 1")
	if options.refinement_rounds < 1:
		raise ValueError("refinement_rounds must be >= 1")

	proposers = CAPABILITY_CASCADE[:options.proposer_count]
	steps: list[Step] = [
		Step(
			id="decompose",
			agent=AgentName.CODEX,
			action=StepAction.DECOMPOSE,
			prompt=(
				"Break this task into independent, solvable pieces.\n\n"
				"Task: {{prompt}}\n\n"
				"Output JSON with pieces, dependencies, and execution order."
			),
			output_as="pieces",
		),
	]

	for i, proposer in enumerate(proposers, start=1):
		steps.append(Step(
			id=f"propose_{i}",
			agent=proposer,
			action=StepAction.PROPOSE,
			prompt=(
				"Solve this task completely.\n\n"
				"Task: {{prompt}}\nStructure: {{pieces}}\n\n"
				"Provide full implementation."
			),
			depends_on=["decompose"],
			output_as=f"proposal_{i}",
		))

	proposal_refs = "\n\n".join(
		f"Proposal {i}:\n{{{{proposal_{i}}}}}" for i in range(1, len(proposers) + 1)
	)
	steps.append(Step(
		id="assemble",
		agent=AgentName.CODEX,
		action=StepAction.ASSEMBLE,
		prompt=(
			"Synthesize these proposals into the best solution.\n\n"
			"Task: {{prompt}}\n\n"
			f"{proposal_refs}\n\n"
			"Create unified solution taking best from each."
		),
		depends_on=[f"propose_{i}" for i in range(1, len(proposers) + 1)],
		output_as="assembled",
	))
	steps.append(Step(
		id="verify",
		agent=AgentName.GEMINI,
		action=StepAction.VERIFY,
		prompt=(
			"Verify this solution for correctness.\n\n"
			"Task: {{prompt}}\nSolution: {{assembled}}\n\n"
			"Check for errors, gaps, issues. Output JSON with valid flag and issues list."
		),
		depends_on=["assemble"],
		output_as="verification",
	))

	for r in range(options.refinement_rounds):
		solution_ref = "{{assembled}}" if r == 0 else f"{{{{refined_{r - 1}}}}}"
		feedback_ref = "{{verification}}" if r == 0 else f"{{{{feedback_{r - 1}}}}}"
		if r > 0:
			steps.append(Step(
				id=f"feedback_{r - 1}",
				agent=AgentName.GEMINI,
				action=StepAction.FEEDBACK,
				prompt=(
					"Review this refined solution.\n\n"
					f"Task: {{{{prompt}}}}\nSolution: {{{{refined_{r - 1}}}}}\n\n"
					'List remaining issues or reply "COMPLETE".'
				),
				depends_on=[f"refine_{r - 1}"],
				output_as=f"feedback_{r - 1}",
			))
		steps.append(Step(
			id=f"refine_{r}",
			agent=AgentName.CODEX,
			action=StepAction.REFINE,
			prompt=(
				"Refine based on verification feedback.\n\n"
				f"Task: {{{{prompt}}}}\nSolution: {solution_ref}\nFeedback: {feedback_ref}\n\n"
				"Fix all issues and output final solution."
			),
			depends_on=["verify"] if r == 0 else [f"feedback_{r - 1}"],
			output_as=f"refined_{r}",
		))

	return finalize_plan(Plan(mode=PlanMode.PUZZLE, prompt=task, steps=steps))


def group_by_dependencies(pieces: list[PuzzlePiece]) -> list[list[PuzzlePiece]]:
	"""
	Layer pieces so each layer only depends on earlier layers.

	Raises:
		ValueError: if the piece dependencies contain a cycle
	"""
	layers: list[list[PuzzlePiece]] = []
	solved: set[str] = set()

	while len(solved) < len(pieces):
		layer = [
			p for p in pieces
			if p.id not in solved and all(d in solved for d in p.dependencies)
		]
		if not layer:
			remaining = [p.id for p in pieces if p.id not in solved]
			raise ValueError(f"circular piece dependencies among: {', '.join(remaining)}")
		layers.append(layer)
		solved.update(p.id for p in layer)

	return layers


def select_agent_for_piece(piece: PuzzlePiece) -> AgentName:
	"""Route a piece to an agent by keywords in its description."""
	desc = piece.description.lower()

	if "research" in desc or "analyze" in desc or "document" in desc:
		return AgentName.GEMINI
	if "implement" in desc or "code" in desc or "build" in desc:
		return AgentName.CODEX
	if "design" in desc or "architect" in desc:
		return AgentName.CLAUDE

	return AgentName.CODEX


def _check_pieces(pieces: list[PuzzlePiece]) -> None:
	if not pieces:
		raise ValueError("at least one piece is required")
	ids = [p.id for p in pieces]
	if len(set(ids)) != len(ids):
		raise ValueError("piece ids must be unique")
	known = set(ids)
	for piece in pieces:
		unknown = [d for d in piece.dependencies if d not in known]
		if unknown:
			raise ValueError(f"piece {piece.id} depends on unknown pieces: {', '.join(unknown)}")
