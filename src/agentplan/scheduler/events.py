"""
Lifecycle events emitted during a run, and the bus that delivers them.

Listeners never influence scheduling: a failing listener is logged and
the run continues.
"""

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)


class EventType(str, Enum):
	START = "start"
	COMPLETE = "complete"
	ERROR = "error"


@dataclass
class StepEvent:
	"""A single lifecycle event for one step."""
	type: EventType
	step_id: str
	plan_id: str = ""
	duration: Optional[float] = None
	message: Optional[str] = None
	timestamp: datetime = field(default_factory=datetime.now)


Listener = Callable[[StepEvent], Union[None, Awaitable[None]]]


class EventBus:
	"""
	Fan-out of step events to any number of listeners.

	Listeners may be plain functions or coroutine functions.
	"""

	def __init__(self):
		self._listeners: list[Listener] = []

	def subscribe(self, listener: Listener) -> Callable[[], None]:
		"""Register a listener. Returns a function that unsubscribes it."""
		self._listeners.append(listener)

		def unsubscribe() -> None:
			if listener in self._listeners:
				self._listeners.remove(listener)

		return unsubscribe

	@property
	def listener_count(self) -> int:
		return len(self._listeners)

	async def emit(self, event: StepEvent) -> None:
		"""Deliver an event to every listener, in subscription order."""
		for listener in list(self._listeners):
			try:
				result = listener(event)
				if inspect.isawaitable(result):
					await result
			except Exception as e:
				logger.warning(f"Event listener failed for {event.type.value} {event.step_id}: {e}")


class EventRecorder:
	"""Listener that keeps every event it sees, e.g. for tests or run logs."""

	def __init__(self):
		self.events: list[StepEvent] = []

	def __call__(self, event: StepEvent) -> None:
		self.events.append(event)

	def of_type(self, event_type: EventType) -> list[StepEvent]:
		return [e for e in self.events if e.type == event_type]
