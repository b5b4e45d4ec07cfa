"""rover-agent: run multi-step AI coding agent workflows."""

__version__ = "0.1.0"
