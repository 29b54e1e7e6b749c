"""agentplan - Compile multi-agent tasks into step graphs and run them with bounded concurrency."""

__version__ = "0.1.0"
