# =====================================================
# mailbridge/tools/toolkit.py
# ToolRegistry: unified access layer for tool adapters
# =====================================================

import inspect
import logging
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class UnknownToolError(LookupError):
    """No registered tool (or tool method) matches the requested name."""


class ToolArgumentError(ValueError):
    """Arguments do not match the tool operation's signature."""


class ToolRegistry:
    """
    Central registry for tool adapters.

    A tool is addressed as "<adapter>.<operation>", e.g. "gmail.get_message".
    Only operations listed in the adapter's ``parameters`` mapping can be
    invoked.
    """

    def __init__(self, tools: Optional[Dict[str, Any]] = None):
        """
        Args:
            tools: Mapping of adapter name → adapter instance
        """
        self.tools = tools or {}
        logger.info("Initialized ToolRegistry with tools: %s", list(self.tools.keys()))

    # -----------------------------------------------------
    # Tool metadata and inspection
    # -----------------------------------------------------
    def describe(self) -> Dict[str, Any]:
        """Structured description of every invocable operation."""
        descriptions = {}
        for name, tool in self.tools.items():
            description = getattr(tool, "description", None)
            if not description:
                doc = getattr(tool, "__doc__", "") or "No description provided."
                description = doc.strip().split("\n")[0]

            for operation, schema in (getattr(tool, "parameters", None) or {}).items():
                method = getattr(tool, operation, None)
                doc = (getattr(method, "__doc__", None) or "").strip()
                descriptions[f"{name}.{operation}"] = {
                    "description": doc.split("\n")[0] if doc else description,
                    "parameters": schema,
                }
        return descriptions

    def resolve(self, tool_name: str) -> Tuple[Any, str]:
        if "." not in tool_name:
            raise UnknownToolError(f"Unknown tool: {tool_name}")
        adapter_name, operation = tool_name.split(".", 1)
        tool = self.tools.get(adapter_name)
        if tool is None or operation not in (getattr(tool, "parameters", None) or {}):
            logger.warning("Tool '%s' not found in registry", tool_name)
            raise UnknownToolError(f"Unknown tool: {tool_name}")
        return tool, operation

    # -----------------------------------------------------
    # Tool invocation
    # -----------------------------------------------------
    async def invoke(self, tool_name: str, **kwargs) -> Dict[str, Any]:
        tool, operation = self.resolve(tool_name)
        method = getattr(tool, operation)
        try:
            inspect.signature(method).bind(**kwargs)
        except TypeError as exc:
            raise ToolArgumentError(f"Invalid arguments for {tool_name}: {exc}") from exc
        logger.info("Invoking tool '%s' with params: %s", tool_name, kwargs)

        result = method(**kwargs)
        if inspect.isawaitable(result):
            result = await result

        # Ensure consistent structure
        if hasattr(result, "model_dump"):
            return result.model_dump()
        if isinstance(result, dict):
            return result
        if isinstance(result, list):
            return {"results": result, "count": len(result)}
        return {"result": result}

    # -----------------------------------------------------
    # Registry maintenance
    # -----------------------------------------------------
    def register(self, name: str, tool_instance: Any):
        """Dynamically register a new tool."""
        self.tools[name] = tool_instance
        logger.info("Registered new tool: %s", name)

    def unregister(self, name: str):
        """Remove a tool from registry."""
        if name in self.tools:
            del self.tools[name]
            logger.info("Unregistered tool: %s", name)
