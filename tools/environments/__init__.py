"""Execution environments that launch shell commands."""

from tools.environments.local import LocalEnvironment, ProcessHandle, default_shell

__all__ = ["LocalEnvironment", "ProcessHandle", "default_shell"]
