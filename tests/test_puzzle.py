"""Tests for the puzzle assembly plan builders."""

import pytest

from agentplan.compiler.puzzle import (
	PuzzleAssemblyOptions,
	PuzzlePiece,
	build_assemble_plan,
	build_decompose_plan,
	build_puzzle_assembly_plan,
	build_refine_plan,
	build_solve_plan,
	build_verify_plan,
	group_by_dependencies,
	select_agent_for_piece,
)
from agentplan.plans.models import AgentName, PlanMode


def piece(id: str, description: str = "do the thing", dependencies=None, **kwargs) -> PuzzlePiece:
	return PuzzlePiece(id=id, description=description, dependencies=dependencies or [], **kwargs)


class TestDecomposePlan:
	"""Analyze then validate."""

	def test_shape(self):
		plan = build_decompose_plan("Build a blog")

		assert plan.mode == PlanMode.PUZZLE
		assert [s.id for s in plan.steps] == ["analyze", "validate_decomposition"]
		assert plan.steps[0].agent == AgentName.CODEX
		assert plan.steps[1].depends_on == ["analyze"]
		assert "{{decomposition}}" in plan.steps[1].prompt

	def test_max_depth_in_prompt(self):
		plan = build_decompose_plan("X", PuzzleAssemblyOptions(max_depth=5))
		assert "5 levels" in plan.steps[0].prompt


class TestSolvePlan:
	"""Fan-out for lone or complex pieces, single solver otherwise."""

	def test_lone_piece_uses_mixture_of_agents(self):
		plan = build_solve_plan([piece("schema")], "Build a blog")

		assert [s.id for s in plan.steps] == [
			"solve_schema_codex",
			"solve_schema_claude",
			"solve_schema_aggregated",
		]
		agg = plan.get_step("solve_schema_aggregated")
		assert agg.depends_on == ["solve_schema_codex", "solve_schema_claude"]
		assert agg.output_as == "schema_solution"
		assert "{{schema_proposal_claude}}" in agg.prompt
		assert plan.variables == {"schema_description": "do the thing"}

	def test_parallel_simple_pieces_get_single_solvers(self):
		plan = build_solve_plan([
			piece("docs", "Research and document the API"),
			piece("server", "Implement the HTTP server"),
		], "T")

		assert [s.id for s in plan.steps] == ["solve_docs_aggregated", "solve_server_aggregated"]
		assert plan.get_step("solve_docs_aggregated").agent == AgentName.GEMINI
		assert plan.get_step("solve_server_aggregated").agent == AgentName.CODEX

	def test_complex_piece_fans_out_even_with_siblings(self):
		plan = build_solve_plan([
			piece("a", "A complex migration"),
			piece("b", "simple thing"),
		], "T")
		assert plan.get_step("solve_a_codex") is not None
		assert plan.get_step("solve_b_codex") is None

	def test_dependencies_point_at_aggregators(self):
		plan = build_solve_plan([
			piece("a", "design the schema"),
			piece("b", "write queries", dependencies=["a"]),
			piece("c", "write views", dependencies=["a"]),
		], "T")

		for sid in ("solve_b_aggregated", "solve_c_aggregated"):
			step = plan.get_step(sid)
			assert step.depends_on == ["solve_a_aggregated"]
			assert "{{a_solution}}" in step.prompt

	def test_assignments_take_priority(self):
		plan = build_solve_plan(
			[piece("a", "research x", assigned_agent=AgentName.OLLAMA), piece("b", "research y", assigned_agent=AgentName.OLLAMA)],
			"T",
			PuzzleAssemblyOptions(agent_assignments={"a": AgentName.MISTRAL}),
		)
		assert plan.get_step("solve_a_aggregated").agent == AgentName.MISTRAL
		assert plan.get_step("solve_b_aggregated").agent == AgentName.OLLAMA

	def test_proposer_count(self):
		plan = build_solve_plan([piece("a")], "T", PuzzleAssemblyOptions(proposer_count=3))
		assert plan.get_step("solve_a_gemini") is not None

	def test_invalid_pieces(self):
		with pytest.raises(ValueError):
			build_solve_plan([], "T")
		with pytest.raises(ValueError, match="unique"):
			build_solve_plan([piece("a"), piece("a")], "T")
		with pytest.raises(ValueError, match="unknown"):
			build_solve_plan([piece("a", dependencies=["zzz"])], "T")


class TestAssemblePlan:
	"""Conflict detection then resolution."""

	def test_solutions_become_variables(self):
		plan = build_assemble_plan([
			piece("a", solution="A code"),
			piece("b", solution="B code"),
		], "T")

		assert plan.variables == {"a_solution": "A code", "b_solution": "B code"}
		assert [s.id for s in plan.steps] == ["detect_conflicts", "resolve_conflicts"]
		assert plan.steps[-1].output_as == "assembled_solution"
		assert "{{conflict_analysis}}" in plan.steps[-1].prompt

	def test_unsolved_piece_rejected(self):
		with pytest.raises(ValueError, match="without a solution"):
			build_assemble_plan([piece("a", solution="x"), piece("b")], "T")


class TestVerifyPlan:
	"""Every strategy ends in verification_result."""

	@pytest.mark.parametrize("strategy,first_step", [
		("triangulation", "transform_problem"),
		("test-generation", "generate_tests"),
		("cross-check", "cross_verify"),
	])
	def test_strategies(self, strategy, first_step):
		plan = build_verify_plan("T", "solution", PuzzleAssemblyOptions(verification_strategy=strategy))

		assert plan.steps[0].id == first_step
		assert plan.steps[-1].output_as == "verification_result"
		assert plan.variables == {"assembled_solution": "solution"}

	def test_unknown_strategy(self):
		options = PuzzleAssemblyOptions()
		options.verification_strategy = "guessing"
		with pytest.raises(ValueError, match="unknown verification strategy"):
			build_verify_plan("T", "s", options)


class TestRefinePlan:
	"""Alternating refine and feedback, then polish."""

	def test_two_rounds(self):
		plan = build_refine_plan("T", "solution", "issues", PuzzleAssemblyOptions(refinement_rounds=2))

		assert [s.id for s in plan.steps] == [
			"refine_0", "feedback_0", "refine_1", "feedback_1", "final_polish",
		]
		assert plan.get_step("refine_1").depends_on == ["feedback_0"]
		assert "{{refinement_feedback_0}}" in plan.get_step("refine_1").prompt
		assert plan.steps[-1].output_as == "final_solution"
		assert "{{refined_solution_1}}" in plan.steps[-1].prompt

	def test_zero_rounds_rejected(self):
		with pytest.raises(ValueError):
			build_refine_plan("T", "s", "v", PuzzleAssemblyOptions(refinement_rounds=0))


class TestPuzzleAssemblyPlan:
	"""Single-plan version of the full flow."""

	def test_default_shape(self):
		plan = build_puzzle_assembly_plan("Build a blog")

		assert [s.id for s in plan.steps] == [
			"decompose", "propose_1", "propose_2", "assemble", "verify",
			"refine_0", "feedback_0", "refine_1",
		]
		assert plan.get_step("propose_1").agent == AgentName.CODEX
		assert plan.get_step("propose_2").agent == AgentName.CLAUDE
		assert plan.get_step("assemble").depends_on == ["propose_1", "propose_2"]
		assert plan.get_step("refine_0").depends_on == ["verify"]
		assert plan.get_step("refine_1").depends_on == ["feedback_0"]

	def test_last_step_is_last_refinement(self):
		plan = build_puzzle_assembly_plan("X", PuzzleAssemblyOptions(refinement_rounds=3))
		assert plan.steps[-1].id == "refine_2"

	def test_invalid_counts(self):
		with pytest.raises(ValueError):
			build_puzzle_assembly_plan("X", PuzzleAssemblyOptions(proposer_count=0))
		with pytest.raises(ValueError):
			build_puzzle_assembly_plan("X", PuzzleAssemblyOptions(refinement_rounds=0))


class TestHelpers:
	"""Grouping and keyword routing."""

	def test_group_by_dependencies(self):
		layers = group_by_dependencies([
			piece("c", dependencies=["a", "b"]),
			piece("a"),
			piece("b", dependencies=["a"]),
		])
		assert [[p.id for p in layer] for layer in layers] == [["a"], ["b"], ["c"]]

	def test_group_by_dependencies_cycle(self):
		with pytest.raises(ValueError, match="circular"):
			group_by_dependencies([piece("a", dependencies=["b"]), piece("b", dependencies=["a"])])

	@pytest.mark.parametrize("description,expected", [
		("Research competitors", AgentName.GEMINI),
		("Implement the parser", AgentName.CODEX),
		("Design the data model", AgentName.CLAUDE),
		("Something else", AgentName.CODEX),
	])
	def test_select_agent_for_piece(self, description, expected):
		assert select_agent_for_piece(piece("x", description)) == expected
