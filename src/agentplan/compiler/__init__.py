"""Compiler module - Builders that turn a task and options into a Plan."""

from .builders import (
	CompareOptions,
	PipelineOptions,
	PipelineStep,
	build_compare_plan,
	build_pipeline_plan,
	build_profile_pipeline_steps,
	build_single_agent_plan,
	parse_agents_string,
	parse_pipeline_string,
)
from .moa import (
	ConsensusOptions,
	PickBuildOptions,
	build_consensus_plan,
	build_pick_build_plan,
)
from .planner import PlannerResult, PlanParseError, generate_plan, parse_plan_response
from .puzzle import (
	PuzzleAssemblyOptions,
	PuzzlePiece,
	build_assemble_plan,
	build_decompose_plan,
	build_puzzle_assembly_plan,
	build_refine_plan,
	build_solve_plan,
	build_verify_plan,
)

__all__ = [
	"CompareOptions",
	"PipelineOptions",
	"PipelineStep",
	"build_single_agent_plan",
	"build_compare_plan",
	"build_pipeline_plan",
	"build_profile_pipeline_steps",
	"parse_pipeline_string",
	"parse_agents_string",
	"ConsensusOptions",
	"PickBuildOptions",
	"build_consensus_plan",
	"build_pick_build_plan",
	"PuzzleAssemblyOptions",
	"PuzzlePiece",
	"build_decompose_plan",
	"build_solve_plan",
	"build_assemble_plan",
	"build_verify_plan",
	"build_refine_plan",
	"build_puzzle_assembly_plan",
	"PlannerResult",
	"PlanParseError",
	"generate_plan",
	"parse_plan_response",
]
