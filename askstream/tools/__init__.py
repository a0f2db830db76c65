"""
askstream - Deployer Tools Module

Tool catalog offered to the agentic planner, tool-name resolution and the
confirmation bridge that gates side-effecting actions.
"""

from .schema import (
    ACTIONABLE_TOOLS,
    DEPLOYER_TOOL_SCHEMAS,
    FunctionSchema,
    KNOWN_TOOLS,
    PropertySchema,
    TOOLS_BY_NAME,
    openai_tools,
)
from .names import (
    ResolvedToolName,
    ToolStartFilter,
    resolve_tool_name,
)
from .bridge import (
    DeploymentExecutor,
    ExecutionResult,
    FollowUpTurn,
    PendingToolConfirmation,
    Resolution,
    ToolExecutionBridge,
    ToolState,
    summarize_arguments,
)

__all__ = [
    # Schema
    "ACTIONABLE_TOOLS",
    "DEPLOYER_TOOL_SCHEMAS",
    "FunctionSchema",
    "KNOWN_TOOLS",
    "PropertySchema",
    "TOOLS_BY_NAME",
    "openai_tools",
    # Names
    "ResolvedToolName",
    "ToolStartFilter",
    "resolve_tool_name",
    # Bridge
    "DeploymentExecutor",
    "ExecutionResult",
    "FollowUpTurn",
    "PendingToolConfirmation",
    "Resolution",
    "ToolExecutionBridge",
    "ToolState",
    "summarize_arguments",
]
