"""
askstream - API Request/Response Models

Pydantic models for API validation and serialization.
These are the external-facing models that clients interact with; routes
convert them to the internal dataclasses in core.models.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.models import (
    AskRequest,
    ChatTurn,
    ContextSettings,
    GenerationParams,
    GeoInfo,
    Role,
)


# ============================================================
# Shared
# ============================================================

class ChatTurnInput(BaseModel):
    """A prior conversation turn."""
    role: Literal["user", "model"]
    content: str = Field(..., min_length=1)

    def to_internal(self) -> ChatTurn:
        return ChatTurn(role=Role(self.role), content=self.content)


class ContextConfig(BaseModel):
    """History trimming limits."""
    absolute_max_tokens: int = Field(default=5000, ge=1)
    max_context_tokens: int = Field(default=3000, ge=1)
    prev_chat_limit: int = Field(default=6, ge=1, le=30)
    truncate_from: Literal["start", "end"] = "end"

    model_config = ConfigDict(populate_by_name=True)


class CustomConfig(BaseModel):
    """Sampling parameters and per-request switches."""
    temperature: float = Field(default=0.7, ge=0, le=1)
    max_tokens: int = Field(default=2000, ge=1, le=10000)
    top_p: float = Field(default=1.0, ge=0, le=1)
    presence_penalty: float = Field(default=0.0, ge=-2, le=2)
    frequency_penalty: float = Field(default=0.0, ge=-2, le=2)
    stop: List[str] = Field(default_factory=list)
    follow_up: bool = Field(default=True, alias="followUp")
    context: ContextConfig = Field(default_factory=ContextConfig)

    model_config = ConfigDict(populate_by_name=True)


# ============================================================
# Ask
# ============================================================

class AskRequestBody(BaseModel):
    """Body of POST /v2/ask."""
    query: str = Field(..., min_length=1, description="User query")
    model: str = Field(
        ...,
        pattern=r"^[^/]+/[^/]+$",
        description="Composite model id: namespace/modelName",
    )
    mode: Optional[Literal["deployer"]] = Field(
        default=None,
        description="Explicit automation mode",
    )
    thinking: bool = False
    websearch: bool = False
    chats: List[ChatTurnInput] = Field(default_factory=list, max_length=50)
    custom_prompt: Optional[str] = Field(default=None, max_length=1000, alias="customPrompt")
    custom_config: Optional[CustomConfig] = Field(default=None, alias="customConfig")
    thread_id: Optional[str] = Field(default=None, alias="threadId")
    chat_id: Optional[str] = Field(default=None, alias="chatId")
    wallet_public_key: Optional[str] = Field(default=None, alias="walletPublicKey")
    api_keys: Dict[str, str] = Field(default_factory=dict, alias="apiKeys")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("query must not be blank")
        return v

    def to_internal(
        self,
        geo: Optional[GeoInfo] = None,
        api_keys: Optional[Dict[str, str]] = None,
    ) -> AskRequest:
        """
        Build the core request descriptor.

        Args:
            geo: Location derived from edge headers
            api_keys: Header keys; they win over keys in the body
        """
        config = self.custom_config or CustomConfig()
        keys = {k: v for k, v in self.api_keys.items() if v}
        keys.update({k: v for k, v in (api_keys or {}).items() if v})

        return AskRequest(
            query=self.query,
            model=self.model,
            chats=[turn.to_internal() for turn in self.chats],
            mode=self.mode,
            thinking=self.thinking,
            websearch=self.websearch,
            custom_prompt=self.custom_prompt,
            params=GenerationParams(
                temperature=config.temperature,
                max_tokens=config.max_tokens,
                top_p=config.top_p,
                presence_penalty=config.presence_penalty,
                frequency_penalty=config.frequency_penalty,
                stop=list(config.stop),
            ),
            context=ContextSettings(
                prev_chat_limit=config.context.prev_chat_limit,
                max_context_tokens=config.context.max_context_tokens,
                absolute_max_tokens=config.context.absolute_max_tokens,
                truncate_from=config.context.truncate_from,
            ),
            follow_up=config.follow_up,
            thread_id=self.thread_id,
            chat_id=self.chat_id,
            wallet_public_key=self.wallet_public_key,
            api_keys=keys,
            geo=geo,
        )


# ============================================================
# Confirmations
# ============================================================

class ConfirmationInfo(BaseModel):
    """State of a pending tool confirmation."""
    id: str
    toolname: str
    args: Dict[str, Any] = Field(default_factory=dict)
    summary: str = ""
    state: str
    resolution: str


# ============================================================
# Models
# ============================================================

class CapabilityInfo(BaseModel):
    """One routable model or mode."""
    name: str
    family: str
    supports_reasoning: bool = False
    supports_search: bool = False
    is_self_hosted: bool = False
    context_window: int
    max_output_tokens: int
    credit_cost: int


class CapabilityListResponse(BaseModel):
    """Response of GET /v2/models."""
    object: Literal["list"] = "list"
    hosted: List[CapabilityInfo]
    self_hosted: List[CapabilityInfo]
    modes: List[CapabilityInfo]
