"""Scheduler module - Executes plans against agent capabilities."""

from .engine import Scheduler, SchedulerConfig
from .events import EventBus, EventRecorder, EventType, StepEvent
from .protocols import (
	AgentCapability,
	AgentResponse,
	BeforeStepHook,
	InterceptDecision,
	RouteResult,
	RoutingPolicy,
)

__all__ = [
	"Scheduler",
	"SchedulerConfig",
	"EventBus",
	"EventRecorder",
	"EventType",
	"StepEvent",
	"AgentCapability",
	"AgentResponse",
	"BeforeStepHook",
	"InterceptDecision",
	"RouteResult",
	"RoutingPolicy",
]
