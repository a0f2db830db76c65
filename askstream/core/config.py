"""
askstream - Runtime Configuration

Environment driven settings, local vs production mode and startup safety checks.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class RunMode(str, Enum):
    """Deployment mode."""

    LOCAL = "local"  # Relaxed checks for development
    PROD = "prod"    # Fail-closed startup guardrails
    TEST = "test"    # Deterministic test mode (stubs allowed)


def get_run_mode() -> RunMode:
    """
    Get the current run mode.

    MODE must be one of: local, prod/production, test.

    Default: prod (fail-closed default for safer deployments).
    """
    mode = os.getenv("MODE", "prod").lower().strip()
    if mode in {"prod", "production"}:
        return RunMode.PROD
    if mode == "local":
        return RunMode.LOCAL
    if mode == "test":
        return RunMode.TEST
    raise ValueError("Invalid MODE. Use one of: local, prod, production, test")


def is_prod_mode() -> bool:
    """Check if running in production mode."""
    return get_run_mode() == RunMode.PROD


def _is_truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def get_cors_allowed_origins() -> List[str]:
    """Parse CORS_ALLOW_ORIGINS from environment."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "")
    if not raw.strip():
        return []
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


# Header name -> api_keys slot for per-request provider keys
HEADER_API_KEYS: Dict[str, str] = {
    "x-gemini-key": "gemini",
    "x-tavily-key": "tavily",
}

DEFAULT_SELF_HOSTED_URL = "https://apiplatform.cldflred.ink/v1"
DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_TAVILY_BASE_URL = "https://api.tavily.com"
DEFAULT_PLANNER_MODEL = "qwen3:0.6b"


@dataclass
class Settings:
    """Resolved process configuration."""
    mode: RunMode = RunMode.PROD

    gemini_api_key: Optional[str] = None
    gemini_base_url: str = DEFAULT_GEMINI_BASE_URL

    self_hosted_url: str = DEFAULT_SELF_HOSTED_URL
    self_hosted_api_key: Optional[str] = None

    planner_url: Optional[str] = None
    planner_api_key: Optional[str] = None
    planner_model: Optional[str] = None

    tavily_api_key: Optional[str] = None
    tavily_base_url: str = DEFAULT_TAVILY_BASE_URL

    use_stub_adapters: bool = False
    cors_allow_origins: List[str] = field(default_factory=list)

    retry_max_attempts: int = 3
    retry_base_delay_ms: int = 2000

    credits_auth_limit: int = 30
    credits_ip_limit: int = 10

    confirmation_ttl_seconds: int = 900

    def provider_keys(self) -> Dict[str, Optional[str]]:
        """Environment keys per provider slot, before per-request overrides."""
        return {
            "gemini": self.gemini_api_key,
            "tavily": self.tavily_api_key,
            "self_hosted": self.self_hosted_api_key,
            "planner": self.planner_api_key,
        }


def load_settings() -> Settings:
    """Build Settings from the process environment."""
    return Settings(
        mode=get_run_mode(),
        gemini_api_key=os.getenv("GOOGLE_GENERATIVE_AI_API_KEY") or None,
        gemini_base_url=os.getenv("GEMINI_BASE_URL", DEFAULT_GEMINI_BASE_URL).rstrip("/"),
        self_hosted_url=os.getenv("SELF_HOSTED_URL", DEFAULT_SELF_HOSTED_URL).rstrip("/"),
        self_hosted_api_key=os.getenv("SELF_HOSTED_API_KEY") or None,
        planner_url=(os.getenv("INFERIA_LLM_URL") or "").rstrip("/") or None,
        planner_api_key=os.getenv("INFERIA_LLM_API_KEY") or None,
        planner_model=os.getenv("DEPLOYER_PLANNER_MODEL") or None,
        tavily_api_key=os.getenv("TAVILY_API_KEY") or None,
        use_stub_adapters=_is_truthy(os.getenv("USE_STUB_ADAPTERS", "false")),
        cors_allow_origins=get_cors_allowed_origins(),
        retry_max_attempts=_int_env("RETRY_MAX_ATTEMPTS", 3),
        retry_base_delay_ms=_int_env("RETRY_BASE_DELAY_MS", 2000),
        credits_auth_limit=_int_env("CREDITS_AUTH_LIMIT", 30),
        credits_ip_limit=_int_env("CREDITS_IP_LIMIT", 10),
        confirmation_ttl_seconds=_int_env("CONFIRMATION_TTL_SECONDS", 900),
    )


def validate_runtime_config(settings: Optional[Settings] = None) -> None:
    """Fail closed for unsafe production startup configuration."""
    settings = settings or load_settings()
    if settings.mode in {RunMode.LOCAL, RunMode.TEST}:
        return

    # Production guardrails
    if settings.use_stub_adapters:
        raise RuntimeError("USE_STUB_ADAPTERS is not allowed in production mode")

    if "*" in settings.cors_allow_origins:
        raise RuntimeError("CORS_ALLOW_ORIGINS cannot include '*' in production mode")

    if settings.retry_max_attempts < 1:
        raise RuntimeError("RETRY_MAX_ATTEMPTS must be >= 1")
