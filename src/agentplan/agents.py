"""
Agent capabilities backed by local command-line tools.

A CommandAgent pipes the prompt to a configured command on stdin and
returns whatever it prints. The AgentRegistry maps agent names to
capabilities and is constructed explicitly by its owner.
"""

import asyncio
import logging
import shutil
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from .plans.models import AgentName
from .scheduler.protocols import AgentCapability, AgentResponse

if TYPE_CHECKING:
	from .config import Config

logger = logging.getLogger(__name__)

# Flag each CLI takes to select a model, when it has one
MODEL_FLAGS: dict[str, str] = {
	"claude": "--model",
	"gemini": "--model",
	"codex": "--model",
}


class CommandAgent:
	"""
	Runs one command per prompt.

	Args:
		name: Agent name the capability is registered under
		command: Executable and arguments; the prompt goes to stdin
		model_flag: Flag used to pass a per-step model override
		cwd: Working directory for the command
	"""

	def __init__(
		self,
		name: str,
		command: list[str],
		model_flag: Optional[str] = None,
		cwd: Optional[Path] = None,
	):
		if not command:
			raise ValueError(f"Agent '{name}' has an empty command")
		self.name = name
		self.command = list(command)
		self.model_flag = model_flag
		self.cwd = cwd

	def build_command(self, model: Optional[str] = None) -> list[str]:
		cmd = list(self.command)
		if model and self.model_flag:
			cmd.extend([self.model_flag, model])
		return cmd

	async def is_available(self) -> bool:
		return shutil.which(self.command[0]) is not None

	async def invoke(
		self,
		prompt: str,
		*,
		timeout: float,
		cancel_event: Optional[asyncio.Event] = None,
		model: Optional[str] = None,
	) -> AgentResponse:
		"""Run the command with the prompt on stdin."""
		cmd = self.build_command(model)
		loop = asyncio.get_running_loop()
		start = loop.time()

		if cancel_event is not None and cancel_event.is_set():
			return AgentResponse(error="cancelled before start", model=model)

		try:
			process = await asyncio.create_subprocess_exec(
				*cmd,
				stdin=asyncio.subprocess.PIPE,
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
				cwd=str(self.cwd) if self.cwd else None,
			)
		except FileNotFoundError:
			logger.error(f"{self.name}: command not found: {cmd[0]}")
			return AgentResponse(error=f"Command not found: {cmd[0]}", model=model)

		try:
			stdout, stderr = await asyncio.wait_for(
				process.communicate(input=prompt.encode()),
				timeout=timeout,
			)
		except asyncio.TimeoutError:
			await _terminate(process)
			logger.warning(f"{self.name} timed out after {timeout:g}s")
			return AgentResponse(
				error=f"timed out after {timeout:g}s",
				model=model,
				duration=loop.time() - start,
			)
		except asyncio.CancelledError:
			await _terminate(process)
			raise

		duration = loop.time() - start
		if process.returncode != 0:
			detail = stderr.decode("utf-8", errors="replace").strip()[-2000:]
			logger.error(f"{self.name} exited with {process.returncode}: {detail}")
			return AgentResponse(
				content=stdout.decode("utf-8", errors="replace"),
				error=f"exit code {process.returncode}: {detail}" if detail else f"exit code {process.returncode}",
				model=model,
				duration=duration,
			)

		return AgentResponse(
			content=stdout.decode("utf-8", errors="replace").strip(),
			model=model,
			duration=duration,
		)


async def _terminate(process: asyncio.subprocess.Process) -> None:
	if process.returncode is None:
		process.kill()
		await process.wait()


class AgentRegistry(Mapping):
	"""Name -> AgentCapability mapping handed to the Scheduler."""

	def __init__(self, agents: Optional[dict[str, AgentCapability]] = None):
		self._agents: dict[str, AgentCapability] = {}
		for name, agent in (agents or {}).items():
			self.register(name, agent)

	@classmethod
	def from_config(cls, config: "Config", cwd: Optional[Path] = None) -> "AgentRegistry":
		"""Build CommandAgents for every [agents] entry naming a known agent."""
		registry = cls()
		for name, command in config.agents.items():
			try:
				AgentName(name)
			except ValueError:
				logger.warning(f"Ignoring unknown agent '{name}' in config")
				continue
			if name == AgentName.AUTO.value:
				logger.warning("'auto' cannot be configured as an agent")
				continue
			registry.register(name, CommandAgent(name, command, model_flag=MODEL_FLAGS.get(name), cwd=cwd))
		return registry

	def register(self, name: str, agent: AgentCapability) -> None:
		key = AgentName(name).value
		self._agents[key] = agent

	def __getitem__(self, name: str) -> AgentCapability:
		try:
			key = AgentName(name).value
		except ValueError:
			raise KeyError(name) from None
		return self._agents[key]

	def __iter__(self) -> Iterator[str]:
		return iter(self._agents)

	def __len__(self) -> int:
		return len(self._agents)

	def __contains__(self, name: object) -> bool:
		try:
			return AgentName(name).value in self._agents
		except ValueError:
			return False

	def names(self) -> list[AgentName]:
		return [AgentName(name) for name in self._agents]

	async def available_names(self) -> list[AgentName]:
		"""Registered agents whose command can be found right now."""
		found = []
		for name, agent in self._agents.items():
			if await agent.is_available():
				found.append(AgentName(name))
		return found
