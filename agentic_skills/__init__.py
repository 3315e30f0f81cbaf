"""agentic-skills - skill registry and execution framework for agents."""

__version__ = "0.1.0"
