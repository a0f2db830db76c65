"""
askstream - Deployer Services

Collaborators of the agentic strategy:

- DeployerToolbox runs planner tool calls. Read-only tools return data;
  actionable tools only prepare a request (`tool_execute: true`) that the
  ToolExecutionBridge must confirm.
- InMemoryDeploymentExecutor is the default executor for confirmed actions.

Market data is a static read-only table shared by all sessions.
"""

import math
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from ..observability.logging import get_logger
from ..tools.bridge import DeploymentExecutor, ExecutionResult
from ..tools.schema import ACTIONABLE_TOOLS, TOOLS_BY_NAME


logger = get_logger(__name__)


# ============================================================
# Static market and model tables
# ============================================================

@dataclass(frozen=True)
class MarketInfo:
    slug: str
    address: str
    vram_gb: int
    usd_per_hour: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slug": self.slug,
            "address": self.address,
            "vram_gb": self.vram_gb,
            "estimated_price_usd_per_hour": self.usd_per_hour,
        }


_MARKET_LIST = [
    MarketInfo("nvidia-3060", "7AtiXMSH6R1jjBxrcYjehCkkSF7zvYWte63gwEDBcGHq", 4, 0.048),
    MarketInfo("nvidia-4060", "47LQHZwT7gfVoBDYnRYhsYv6vKk8a1oW3Y3SdHAp1gTr", 8, 0.064),
    MarketInfo("nvidia-3070", "RXP7JK8MTY4uPJng4UjC9ZJdDDSG6wGr8pvVf3mwgXF", 8, 0.08),
    MarketInfo("nvidia-3080", "7RepDm4Xt9k6qV5oiSHvi8oBoty4Q2tfBGnCYjFLj6vA", 10, 0.096),
    MarketInfo("nvidia-4070", "EzuHhkrhmV98HWzREsgLenKj2iHdJgrKmzfL8psP8Aso", 12, 0.096),
    MarketInfo("nvidia-a4000", "7fnuvPYzfd961iRDPRgMSKLrUf1QjTGnn7viu3P12Zuc", 16, 0.128),
    MarketInfo("nvidia-4080", "77wdaAuYVxBW5u2QiqddkAzoBZ5cuKxH9ZCbx5HfFUb2", 16, 0.16),
    MarketInfo("nvidia-3090", "CA5pMpqkYFKtme7K31pNB1s62X2SdhEv1nN9RdxKCpuQ", 24, 0.192),
    MarketInfo("nvidia-a5000", "4uBye3vJ1FAYukDdrvqQ36MZZZxqW3o8utWu8fyomRuN", 24, 0.32),
    MarketInfo("nvidia-4090", "97G9NnvBDQ2WpKu6fasoMsAKmfj63C9rhysJnkeWodAf", 24, 0.32),
    MarketInfo("nvidia-a40", "BLqSzPzcXMX5gseNXE4Ma45f31Eo6tNFVYoRmPG7kxP2", 48, 0.4),
    MarketInfo("nvidia-a6000", "EjryZ6XEthz3z7nnLfjXBYafyn7VyHgChfbfM47LfAao", 48, 0.45),
    MarketInfo("nvidia-a100-40gb", "F3aGGSMb73XHbJbDXVbcXo7iYM9fyevvAZGQfwgrnWtB", 40, 0.61),
    MarketInfo("nvidia-a100-80gb", "GLJHzqRN9fKGBsvsFzmGnaQGknUtLN1dqaFR8n3YdM22", 80, 0.9),
    MarketInfo("nvidia-h100", "Crop49jpc7prcgAcS82WbWyGHwbN5GgDym3uFbxxCTZg", 80, 1.5),
]

MARKETS: Mapping[str, MarketInfo] = MappingProxyType({m.slug: m for m in _MARKET_LIST})

# Model id -> minimum VRAM in GB
SUPPORTED_MODELS: Mapping[str, int] = MappingProxyType({
    "Qwen/Qwen2.5-0.5B-Instruct": 4,
    "Qwen/Qwen2.5-7B-Instruct": 16,
    "meta-llama/Llama-3.1-8B-Instruct": 16,
    "mistralai/Mistral-7B-Instruct-v0.3": 16,
    "deepseek-ai/DeepSeek-R1-Distill-Qwen-7B": 16,
    "deepseek-ai/DeepSeek-R1-Distill-Qwen-32B": 48,
})

DEFAULT_RUNTIME_SECONDS = 3600


def cheapest_market_for(vram_gb: int) -> Optional[MarketInfo]:
    candidates = [m for m in _MARKET_LIST if m.vram_gb >= vram_gb]
    if not candidates:
        return None
    return min(candidates, key=lambda m: (m.usd_per_hour, m.vram_gb))


def estimate_cost_usd(market: MarketInfo, seconds: int) -> float:
    return round(market.usd_per_hour * math.ceil(seconds) / 3600, 4)


# ============================================================
# Toolbox
# ============================================================

class DeployerToolbox(ABC):
    """Executes planner tool calls."""

    @abstractmethod
    async def call(self, tool_name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run one tool.

        Actionable tools return {"tool_execute": True, "args": ..., "prompt": ...}
        and must not have side effects.
        """
        pass


class InMemoryDeployerToolbox(DeployerToolbox):
    """
    Toolbox backed by the static market table and an in-process job list.

    Suitable for local mode and tests.
    """

    def __init__(self, jobs: Optional[Dict[str, Dict[str, Any]]] = None):
        self.jobs: Dict[str, Dict[str, Any]] = jobs if jobs is not None else {}

    async def call(self, tool_name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        schema = TOOLS_BY_NAME.get(tool_name)
        if schema is None:
            return {"error": f"Unknown tool: {tool_name}"}

        arguments = schema.with_defaults(arguments)
        missing = schema.missing_arguments(arguments)
        if missing:
            return {"error": f"Missing required arguments: {', '.join(missing)}"}

        if tool_name in ACTIONABLE_TOOLS:
            return self._prepare(tool_name, arguments)

        handler = getattr(self, f"_tool_{tool_name}")
        return handler(arguments)

    # ----- actionable -----

    def _prepare(self, tool_name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        args = dict(arguments)
        prompt: Any = None

        if tool_name == "createJob":
            vram = SUPPORTED_MODELS.get(args.get("model") or "", 8)
            market = MARKETS.get(args.get("market") or "") or cheapest_market_for(vram)
            if market is None:
                return {"error": f"No compatible market found for {vram}GB VRAM"}
            args["market"] = market.slug
            args["marketPubKey"] = market.address
            prompt = {
                "model": args.get("model"),
                "requirements": args.get("requirements") or "",
                "vram_gb": vram,
                "estimated_cost_usd": estimate_cost_usd(market, int(args["timeoutSeconds"])),
            }
        elif tool_name in ("stopJob", "extendJobRuntime"):
            if args["jobAddress"] not in self.jobs:
                return {"error": f"Job not found: {args['jobAddress']}"}

        return {"tool_execute": True, "args": args, "prompt": prompt}

    # ----- read-only -----

    def _tool_estimateJobCost(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        market = MARKETS.get(arguments["market"])
        if market is None:
            return {"error": f"Unknown market: {arguments['market']}"}
        seconds = int(arguments["timeoutSeconds"])
        return {
            "market": market.slug,
            "timeoutSeconds": seconds,
            "estimated_cost_usd": estimate_cost_usd(market, seconds),
        }

    def _tool_getMarket(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        market = MARKETS.get(arguments["market"])
        if market is None:
            return {"error": f"Unknown market: {arguments['market']}"}
        return market.to_dict()

    def _tool_listGpuMarkets(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        return {"markets": [m.to_dict() for m in _MARKET_LIST]}

    def _tool_getModels(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "models": [
                {"id": model_id, "min_vram_gb": vram}
                for model_id, vram in SUPPORTED_MODELS.items()
            ]
        }

    def _tool_getJob(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        job = self.jobs.get(arguments["jobAddress"])
        if job is None:
            return {"error": f"Job not found: {arguments['jobAddress']}"}
        return job

    def _tool_getAllJobs(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        owner = arguments["userPublicKey"]
        return {"jobs": [job for job in self.jobs.values() if job.get("owner") == owner]}

    def _tool_getWalletBalance(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        return {"userPublicKey": arguments["userPublicKey"], "SOL": 0.0, "NOS": 0.0}

    def _tool_suggest_model_market(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        requirements = arguments["requirements"].lower()
        model_id = "Qwen/Qwen2.5-7B-Instruct"
        for candidate in SUPPORTED_MODELS:
            short = candidate.split("/")[-1].split("-")[0].lower()
            if short and short in requirements:
                model_id = candidate
                break
        market = cheapest_market_for(SUPPORTED_MODELS[model_id])
        return {
            "model": model_id,
            "market": market.slug if market else None,
            "reason": "Smallest market with enough VRAM for the model",
        }


# ============================================================
# Executor
# ============================================================

class InMemoryDeploymentExecutor(DeploymentExecutor):
    """
    Records confirmed actions against an in-process job list.

    Shares the job dict with InMemoryDeployerToolbox so read-only tools see
    the effect of confirmed actions.
    """

    def __init__(self, jobs: Optional[Dict[str, Dict[str, Any]]] = None):
        self.jobs: Dict[str, Dict[str, Any]] = jobs if jobs is not None else {}
        self.calls: List[Dict[str, Any]] = []

    async def execute(self, action: str, arguments: Dict[str, Any]) -> ExecutionResult:
        self.calls.append({"action": action, "arguments": dict(arguments)})
        logger.info("Deployer action executed", action=action)

        if action == "createJob":
            job_address = f"job_{uuid.uuid4().hex[:16]}"
            self.jobs[job_address] = {
                "address": job_address,
                "owner": arguments.get("userPublicKey"),
                "market": arguments.get("market"),
                "model": arguments.get("model"),
                "state": "RUNNING",
                "timeoutSeconds": arguments.get("timeoutSeconds", DEFAULT_RUNTIME_SECONDS),
            }
            return ExecutionResult(True, f"Job {job_address} created", {"jobAddress": job_address})

        job = self.jobs.get(arguments.get("jobAddress", ""))
        if job is None:
            return ExecutionResult(False, f"Job not found: {arguments.get('jobAddress')}")

        if action == "stopJob":
            job["state"] = "STOPPED"
            return ExecutionResult(True, f"Job {job['address']} stopped")

        if action == "extendJobRuntime":
            extension = int(arguments.get("extensionSeconds") or DEFAULT_RUNTIME_SECONDS)
            job["timeoutSeconds"] = int(job.get("timeoutSeconds", 0)) + extension
            return ExecutionResult(True, f"Job {job['address']} extended by {extension}s")

        raise ValueError(f"Unsupported deployer action: {action}")
