"""
Tool registry -- maps tool names to their JSON schema and handler.

Each tool module registers itself at import time:

    from tools.registry import registry
    registry.register(name="process", toolset="terminal", schema=PROCESS_SCHEMA, handler=_handle_process)

``dispatch()`` is the model-facing entry point: it always returns a JSON
string, turning handler exceptions into ``{"error": ...}`` payloads so a
bad tool call never crashes the caller's loop.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolEntry:
    name: str
    toolset: str
    schema: Dict[str, Any]
    handler: Callable[..., Any]


class ToolRegistry:
    def __init__(self):
        self._tools: Dict[str, ToolEntry] = {}

    def register(self, name: str, toolset: str, schema: Dict[str, Any], handler: Callable[..., Any]) -> None:
        if name in self._tools:
            logger.debug("Re-registering tool %s", name)
        self._tools[name] = ToolEntry(name=name, toolset=toolset, schema=schema, handler=handler)

    def get(self, name: str) -> Optional[ToolEntry]:
        return self._tools.get(name)

    def names(self, toolset: Optional[str] = None) -> List[str]:
        return sorted(n for n, t in self._tools.items() if toolset is None or t.toolset == toolset)

    def get_schemas(self, toolset: Optional[str] = None) -> List[Dict[str, Any]]:
        """OpenAI-style function definitions for the registered tools."""
        return [
            {"type": "function", "function": self._tools[n].schema}
            for n in self.names(toolset)
        ]

    def dispatch(self, name: str, args: Dict[str, Any], **kw) -> str:
        """
        Run a tool and return its result as a JSON string.

        Keyword arguments (scope_key, config, call_id, tool) are passed
        through to the handler.
        """
        entry = self._tools.get(name)
        if entry is None:
            return json.dumps({"error": f"Unknown tool: {name}"}, ensure_ascii=False)
        try:
            result = entry.handler(args or {}, **kw)
        except Exception as e:
            logger.debug("Tool %s raised: %s", name, e)
            return json.dumps({"error": str(e)}, ensure_ascii=False)
        if hasattr(result, "to_dict"):
            result = result.to_dict()
        if isinstance(result, str):
            return result
        return json.dumps(result, ensure_ascii=False)


registry = ToolRegistry()
