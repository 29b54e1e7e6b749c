"""Plans module - Plan graph models, variable store, and validation."""

from .models import (
	AgentName,
	ExecutionResult,
	ExecutionStatus,
	Plan,
	PlanMode,
	Step,
	StepAction,
	StepResult,
	StepStatus,
)
from .validation import PlanValidationError, validate_plan
from .variables import (
	UnresolvedReferenceError,
	VariableConflictError,
	VariableStore,
	resolve_template,
)

__all__ = [
	"AgentName",
	"StepAction",
	"PlanMode",
	"Step",
	"Plan",
	"StepStatus",
	"StepResult",
	"ExecutionStatus",
	"ExecutionResult",
	"VariableStore",
	"resolve_template",
	"UnresolvedReferenceError",
	"VariableConflictError",
	"PlanValidationError",
	"validate_plan",
]
