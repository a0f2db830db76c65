"""
askstream - Deployer Tool Schemas

Function definitions offered to the agentic planner model, in the
OpenAI-compatible `tools` format.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class PropertySchema:
    """Schema for a single property in a function's parameters."""
    type: str
    description: str = ""
    enum: Optional[List[Any]] = None
    default: Optional[Any] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"type": self.type}
        if self.description:
            result["description"] = self.description
        if self.enum is not None:
            result["enum"] = self.enum
        if self.default is not None:
            result["default"] = self.default
        if self.minimum is not None:
            result["minimum"] = self.minimum
        if self.maximum is not None:
            result["maximum"] = self.maximum
        return result


@dataclass
class FunctionSchema:
    """A function the planner model can call."""
    name: str
    description: str = ""
    properties: Dict[str, PropertySchema] = field(default_factory=dict)
    required: List[str] = field(default_factory=list)
    actionable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to OpenAI tool format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": {k: v.to_dict() for k, v in self.properties.items()},
                    "required": self.required,
                },
            },
        }

    def missing_arguments(self, arguments: Dict[str, Any]) -> List[str]:
        """Required argument names absent from a call."""
        return [name for name in self.required if arguments.get(name) in (None, "")]

    def with_defaults(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        merged = {
            name: prop.default
            for name, prop in self.properties.items()
            if prop.default is not None
        }
        merged.update(arguments)
        return merged


# ============================================================
# Deployer catalog
# ============================================================

_WALLET = PropertySchema("string", "Connected wallet public key")
_JOB = PropertySchema("string", "Job address")
_MARKET = PropertySchema("string", "GPU market slug, e.g. nvidia-3090")
_RUNTIME = PropertySchema(
    "integer",
    "Runtime in seconds",
    default=3600,
    minimum=600,
    maximum=86400 * 7,
)

DEPLOYER_TOOL_SCHEMAS: List[FunctionSchema] = [
    FunctionSchema(
        "estimateJobCost",
        "Estimate the cost of running a job on a GPU market for a duration.",
        {"market": _MARKET, "timeoutSeconds": _RUNTIME},
        ["market"],
    ),
    FunctionSchema(
        "extendJobRuntime",
        "Extend the runtime of a running job. Requires user approval.",
        {"jobAddress": _JOB, "extensionSeconds": _RUNTIME, "userPublicKey": _WALLET},
        ["jobAddress", "userPublicKey"],
        actionable=True,
    ),
    FunctionSchema(
        "getMarket",
        "Get details for one GPU market.",
        {"market": _MARKET},
        ["market"],
    ),
    FunctionSchema(
        "getJob",
        "Get the status of a job.",
        {"jobAddress": _JOB},
        ["jobAddress"],
    ),
    FunctionSchema(
        "getWalletBalance",
        "Get the SOL and NOS balance of the connected wallet.",
        {"userPublicKey": _WALLET},
        ["userPublicKey"],
    ),
    FunctionSchema(
        "createJob",
        "Create or update a job definition for a model or container. Requires user approval.",
        {
            "model": PropertySchema("string", "Full Hugging Face model id, e.g. Qwen/Qwen2.5-7B-Instruct"),
            "market": _MARKET,
            "requirements": PropertySchema("string", "Verbose natural-language summary of every requirement"),
            "timeoutSeconds": _RUNTIME,
            "userPublicKey": _WALLET,
        },
        ["userPublicKey"],
        actionable=True,
    ),
    FunctionSchema(
        "getModels",
        "List models known to run well on the network.",
    ),
    FunctionSchema(
        "listGpuMarkets",
        "List GPU markets with VRAM and hourly price.",
    ),
    FunctionSchema(
        "getAllJobs",
        "List jobs owned by the connected wallet.",
        {"userPublicKey": _WALLET},
        ["userPublicKey"],
    ),
    FunctionSchema(
        "stopJob",
        "Stop a running job. Requires user approval.",
        {"jobAddress": _JOB, "userPublicKey": _WALLET},
        ["jobAddress", "userPublicKey"],
        actionable=True,
    ),
    FunctionSchema(
        "suggest_model_market",
        "Suggest a model and a compatible GPU market for a use case.",
        {"requirements": PropertySchema("string", "What the user wants to run")},
        ["requirements"],
    ),
]

TOOLS_BY_NAME: Dict[str, FunctionSchema] = {tool.name: tool for tool in DEPLOYER_TOOL_SCHEMAS}
KNOWN_TOOLS = frozenset(TOOLS_BY_NAME)
ACTIONABLE_TOOLS = frozenset(tool.name for tool in DEPLOYER_TOOL_SCHEMAS if tool.actionable)


def openai_tools() -> List[Dict[str, Any]]:
    """Tool list for the planner request payload."""
    return [tool.to_dict() for tool in DEPLOYER_TOOL_SCHEMAS]
