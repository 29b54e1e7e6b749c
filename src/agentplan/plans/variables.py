"""
Variable Store and template resolution.

Step prompts are templates with {{name}} placeholders. During one run the
Scheduler keeps a VariableStore seeded with the plan prompt; each successful
step that declares output_as publishes its content under that name.
"""

import re
from typing import Iterator, Mapping, Optional

PROMPT_VARIABLE = "prompt"

_PLACEHOLDER = re.compile(r"\{\{([^}]+)\}\}")


class UnresolvedReferenceError(Exception):
	"""Raised when a template references a name the store does not hold."""

	def __init__(self, name: str):
		self.name = name
		super().__init__(f"unresolved reference: {name}")


class VariableConflictError(Exception):
	"""Raised when a variable is published twice in the same run."""
	pass


class VariableStore:
	"""
	Write-once name -> text mapping for a single execution run.

	The reserved name 'prompt' is always present.
	"""

	def __init__(self, prompt: str, initial: Optional[Mapping[str, str]] = None):
		self._values: dict[str, str] = {PROMPT_VARIABLE: prompt}
		for name, value in (initial or {}).items():
			self.publish(name, value)

	def publish(self, name: str, value: str) -> None:
		"""Store a value. Each name can be written only once."""
		if name in self._values:
			raise VariableConflictError(f"variable already set: {name}")
		self._values[name] = value

	def get(self, name: str) -> Optional[str]:
		return self._values.get(name)

	def __contains__(self, name: object) -> bool:
		return name in self._values

	def __len__(self) -> int:
		return len(self._values)

	def __iter__(self) -> Iterator[str]:
		return iter(self._values)

	def snapshot(self) -> dict[str, str]:
		"""Copy of the current values."""
		return dict(self._values)

	def resolve(self, template: str) -> str:
		"""Resolve a template against this store."""
		return resolve_template(template, self)


def find_references(template: str) -> list[str]:
	"""Names referenced by a template, in order of first appearance."""
	seen: list[str] = []
	for match in _PLACEHOLDER.finditer(template):
		name = match.group(1).strip()
		if name not in seen:
			seen.append(name)
	return seen


def resolve_template(template: str, store: VariableStore) -> str:
	"""
	Substitute every {{name}} in a template with its stored value.

	Substitution is a single pass: text inside a substituted value is never
	expanded again, even if it looks like a placeholder.

	Raises:
		UnresolvedReferenceError: if any referenced name is missing
	"""
	def _replace(match: re.Match) -> str:
		name = match.group(1).strip()
		value = store.get(name)
		if value is None:
			raise UnresolvedReferenceError(name)
		return value

	return _PLACEHOLDER.sub(_replace, template)
