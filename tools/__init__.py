#!/usr/bin/env python3
"""
Tools Package

Shell command supervision exposed as two paired tools:

- bash_tool: run a command, synchronously or handed off to the background
- process_tool: poll, list, read logs of, kill, write to, and remove sessions

Supporting modules:

- process_registry: scope-partitioned, in-memory session store
- log_buffer: append-only line log with offset/limit slicing
- environments.local: shell process launcher (spawn/kill)
- registry: name -> schema/handler table used for JSON tool dispatch

Importing this package registers both tools with ``tools.registry.registry``.
"""

from .errors import (
    DuplicateSessionError,
    ElevatedNotAvailableError,
    ProcessSpawnError,
    SessionNotFoundError,
    ShellvisorError,
    ToolInputError,
)

from .process_registry import (
    DEFAULT_SCOPE,
    ProcessRegistry,
    ProcessSession,
    reset_process_registry_for_tests,
)

from .bash_tool import (
    BashTool,
    BashToolConfig,
    ElevatedConfig,
    create_bash_tool,
    BASH_SCHEMA,
)

from .process_tool import (
    ProcessTool,
    create_process_tool,
    PROCESS_SCHEMA,
)

__all__ = [
    # Errors
    'ShellvisorError',
    'ToolInputError',
    'ElevatedNotAvailableError',
    'SessionNotFoundError',
    'DuplicateSessionError',
    'ProcessSpawnError',
    # Registry
    'DEFAULT_SCOPE',
    'ProcessRegistry',
    'ProcessSession',
    'reset_process_registry_for_tests',
    # Bash tool
    'BashTool',
    'BashToolConfig',
    'ElevatedConfig',
    'create_bash_tool',
    'BASH_SCHEMA',
    # Process tool
    'ProcessTool',
    'create_process_tool',
    'PROCESS_SCHEMA',
]
