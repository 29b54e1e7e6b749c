"""Visualizer package - Rich terminal views for plans and runs."""

from .plan_view import render_plan_summary, render_plan_tree
from .run_view import StepEventPrinter, render_execution_result

__all__ = [
	"render_plan_tree",
	"render_plan_summary",
	"render_execution_result",
	"StepEventPrinter",
]
