"""Tests for agentplan."""
