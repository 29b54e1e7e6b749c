"""Tests for the variable store and template resolution."""

import pytest

from agentplan.plans.variables import (
	UnresolvedReferenceError,
	VariableConflictError,
	VariableStore,
	find_references,
	resolve_template,
)


class TestVariableStore:
	"""Write-once store semantics."""

	def test_prompt_is_always_present(self):
		store = VariableStore("the task")
		assert store.get("prompt") == "the task"
		assert "prompt" in store
		assert len(store) == 1

	def test_initial_values_are_seeded(self):
		store = VariableStore("t", {"context": "ctx"})
		assert store.get("context") == "ctx"
		assert store.snapshot() == {"prompt": "t", "context": "ctx"}

	def test_publish_twice_conflicts(self):
		store = VariableStore("t")
		store.publish("out", "one")
		with pytest.raises(VariableConflictError):
			store.publish("out", "two")
		assert store.get("out") == "one"

	def test_prompt_cannot_be_republished(self):
		store = VariableStore("t")
		with pytest.raises(VariableConflictError):
			store.publish("prompt", "other")


class TestResolveTemplate:
	"""Placeholder substitution."""

	def test_template_without_placeholders_is_unchanged(self):
		store = VariableStore("t")
		assert resolve_template("no placeholders { here }", store) == "no placeholders { here }"

	def test_prompt_alone_resolves_to_plan_prompt(self):
		store = VariableStore("exact prompt text\nwith lines")
		assert resolve_template("{{prompt}}", store) == "exact prompt text\nwith lines"

	def test_names_are_trimmed(self):
		store = VariableStore("t", {"a": "A"})
		assert resolve_template("[{{ a }}] [{{a}}]", store) == "[A] [A]"

	def test_missing_name_raises(self):
		store = VariableStore("t")
		with pytest.raises(UnresolvedReferenceError) as exc:
			resolve_template("{{prompt}} {{later}}", store)
		assert exc.value.name == "later"
		assert "unresolved reference" in str(exc.value)

	def test_values_are_not_expanded_again(self):
		store = VariableStore("t", {"a": "{{prompt}}"})
		assert resolve_template("{{a}}", store) == "{{prompt}}"

	def test_store_resolve_shortcut(self):
		store = VariableStore("t")
		assert store.resolve("say {{prompt}}") == "say t"


def test_find_references_in_order_without_duplicates():
	assert find_references("{{b}} {{ a }} {{b}} {{prompt}}") == ["b", "a", "prompt"]
