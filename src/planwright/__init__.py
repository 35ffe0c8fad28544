"""planwright: iterate on implementation plans with a coding agent."""

__version__ = "0.1.0"
