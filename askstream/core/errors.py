"""
askstream - Error Definitions

Error taxonomy with infra vs semantic classification.

Infra errors come from upstream services or the network; only the cold-start
kind is retried. Semantic errors require the caller to change something.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx


class ErrorType(str, Enum):
    """Error classification."""
    INFRA = "infra_error"
    SEMANTIC = "semantic_error"


@dataclass
class ErrorDetails:
    """Full error information for API responses and error frames."""
    code: str
    message: str
    type: ErrorType

    provider: Optional[str] = None
    param: Optional[str] = None
    request_id: str = ""

    retryable: bool = False
    retry_after: Optional[int] = None

    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "code": self.code,
            "message": self.message,
            "type": self.type.value,
            "request_id": self.request_id,
            "retryable": self.retryable,
        }

        if self.provider:
            result["provider"] = self.provider
        if self.param:
            result["param"] = self.param
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        if self.details:
            result["details"] = self.details

        return {"error": result}


class GatewayError(Exception):
    """Base exception for all askstream errors."""

    def __init__(self, error: ErrorDetails, status_code: int = 500):
        self.error = error
        self.status_code = status_code
        super().__init__(error.message)


# ============================================================
# Infra Errors
# ============================================================

class InfraError(GatewayError):
    """Base class for upstream and network errors."""
    pass


class TransientUpstreamError(InfraError):
    """Upstream is still starting up. The only error RetryPolicy retries by default."""

    def __init__(self, provider: str, message: str = "", request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="upstream_loading",
                message=message or f"{provider} is starting up",
                type=ErrorType.INFRA,
                provider=provider,
                request_id=request_id,
                retryable=True,
                retry_after=2,
            ),
            status_code=503
        )


class UpstreamError(InfraError):
    """Provider returned a server error that is not a cold start."""

    def __init__(
        self,
        provider: str,
        status_code: int,
        message: str = "",
        request_id: str = "",
        url: str = "",
        response_body: str = "",
    ):
        code_map = {
            500: "upstream_500",
            502: "upstream_502",
            503: "upstream_503",
            504: "upstream_504",
        }
        details: Dict[str, Any] = {"upstream_status": status_code}
        if url:
            details["url"] = url
        if response_body:
            details["response_body"] = response_body[:2000]
        super().__init__(
            ErrorDetails(
                code=code_map.get(status_code, "upstream_error"),
                message=message or f"{provider} returned error {status_code}",
                type=ErrorType.INFRA,
                provider=provider,
                request_id=request_id,
                retryable=False,
                details=details,
            ),
            status_code=502
        )

    @property
    def upstream_status(self) -> int:
        return self.error.details.get("upstream_status", 0)


class NetworkError(InfraError):
    """Upstream could not be reached (DNS, connect, TLS, reset)."""

    def __init__(self, provider: str, message: str = "", request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="network_error",
                message=message or f"Unable to reach {provider}",
                type=ErrorType.INFRA,
                provider=provider,
                request_id=request_id,
                retryable=False,
            ),
            status_code=502
        )


class UpstreamTimeoutError(InfraError):
    """Upstream did not respond in time."""

    def __init__(self, provider: str, message: str = "", request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="upstream_timeout",
                message=message or f"{provider} did not respond within timeout",
                type=ErrorType.INFRA,
                provider=provider,
                request_id=request_id,
                retryable=False,
            ),
            status_code=504
        )


class RequestCancelledError(GatewayError):
    """Client aborted the request. Produces the aborted terminal state, not an error."""

    def __init__(self, message: str = "Request was cancelled before completion.", request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="request_cancelled",
                message=message,
                type=ErrorType.SEMANTIC,
                request_id=request_id,
                retryable=False,
            ),
            status_code=499
        )


class ParserIssue(str, Enum):
    """Non-fatal parser conditions. Reported as warnings, never raised."""
    MALFORMED_TOOL_PAYLOAD = "malformed_tool_payload"
    UNTERMINATED_REGION = "unterminated_region"


# ============================================================
# Semantic Errors (Not Retryable)
# ============================================================

class SemanticError(GatewayError):
    """Base class for semantic errors (client must fix request)."""
    pass


class AuthOrQuotaError(SemanticError):
    """Upstream rejected credentials or the account ran out of quota."""

    def __init__(
        self,
        provider: str,
        message: str = "",
        request_id: str = "",
        upstream_status: int = 401,
        response_body: str = "",
    ):
        details: Dict[str, Any] = {"upstream_status": upstream_status}
        if response_body:
            details["response_body"] = response_body[:2000]
        super().__init__(
            ErrorDetails(
                code="auth_or_quota",
                message=message or f"{provider} rejected the credentials or quota is exhausted",
                type=ErrorType.SEMANTIC,
                provider=provider,
                request_id=request_id,
                retryable=False,
                details=details,
            ),
            status_code=502
        )


class InvalidConfiguration(SemanticError):
    """No generation strategy matches the request."""

    def __init__(self, model: str, mode: Optional[str] = None, request_id: str = ""):
        message = f"Invalid model configuration: '{model}' is not a supported model or mode"
        super().__init__(
            ErrorDetails(
                code="invalid_configuration",
                message=message,
                type=ErrorType.SEMANTIC,
                param="model",
                request_id=request_id,
                retryable=False,
                details={"model": model, "mode": mode} if mode else {"model": model},
            ),
            status_code=400
        )


class InvalidRequestError(SemanticError):
    """Request validation failed."""

    def __init__(self, message: str, param: str = "", request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="invalid_request",
                message=message,
                type=ErrorType.SEMANTIC,
                param=param or None,
                request_id=request_id,
                retryable=False
            ),
            status_code=400
        )


class ConfirmationNotFoundError(SemanticError):
    """Tool confirmation id is unknown, superseded or already resolved."""

    def __init__(self, confirmation_id: str, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="confirmation_not_found",
                message=f"No pending tool confirmation '{confirmation_id}'",
                type=ErrorType.SEMANTIC,
                request_id=request_id,
                retryable=False,
                details={"confirmation_id": confirmation_id},
            ),
            status_code=404
        )


class CreditsExhaustedError(SemanticError):
    """Daily credit budget for the caller is used up."""

    def __init__(self, remaining: int = 0, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="credits_exhausted",
                message="Daily credit limit reached. Try again tomorrow.",
                type=ErrorType.SEMANTIC,
                request_id=request_id,
                retryable=False,
                details={"remaining": remaining},
            ),
            status_code=402
        )


# ============================================================
# HTTP error mapping
# ============================================================

COLD_START_HEADERS = ("x-service-status", "x-model-status")
COLD_START_VALUES = frozenset({"loading", "starting", "warming"})
COLD_START_PATTERN = re.compile(r"loading|starting up|warming up|cold start", re.IGNORECASE)
QUOTA_PATTERN = re.compile(r"quota|billing|insufficient", re.IGNORECASE)


def _response_message(response: httpx.Response) -> str:
    """Pull a human readable message out of an upstream error body."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:500] if response.text else ""

    if isinstance(data, dict):
        error = data.get("error", data)
        if isinstance(error, dict):
            return str(error.get("message") or error.get("status") or error)
        return str(error)
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return _message_from_entry(data[0])
    return str(data)


def _message_from_entry(entry: Dict[str, Any]) -> str:
    error = entry.get("error", entry)
    if isinstance(error, dict):
        return str(error.get("message", error))
    return str(error)


def is_cold_start_response(
    status_code: int,
    headers: httpx.Headers,
    message: str = "",
    cold_start_headers: tuple = COLD_START_HEADERS,
) -> bool:
    """
    Check whether an upstream response signals a service still starting up.

    A 503 qualifies when it carries a loading status header or its body
    mentions loading / starting up / warming up.
    """
    if status_code != 503:
        return False
    for header in cold_start_headers:
        value = headers.get(header, "")
        if value and value.strip().lower() in COLD_START_VALUES:
            return True
    return bool(message and COLD_START_PATTERN.search(message))


def map_http_error(
    error: Exception,
    provider: str,
    request_id: str = "",
    cold_start_headers: tuple = COLD_START_HEADERS,
) -> GatewayError:
    """
    Convert an httpx exception into the gateway taxonomy.

    Args:
        error: Exception raised by httpx (or an already mapped GatewayError)
        provider: Provider name used in messages
        request_id: Request ID for error tracking
        cold_start_headers: Response headers that announce a loading service

    Returns:
        GatewayError subclass instance
    """
    if isinstance(error, GatewayError):
        return error

    if isinstance(error, httpx.TimeoutException):
        return UpstreamTimeoutError(provider, f"{provider} request timed out: {error}", request_id)

    if isinstance(error, (httpx.ConnectError, httpx.NetworkError)):
        return NetworkError(provider, f"Network error reaching {provider}: {error}", request_id)

    if isinstance(error, httpx.HTTPStatusError):
        response = error.response
        status_code = response.status_code
        message = _response_message(response) or str(error)
        url = str(error.request.url) if error.request is not None else ""

        if is_cold_start_response(status_code, response.headers, message, cold_start_headers):
            return TransientUpstreamError(provider, message, request_id)

        if status_code in (401, 403):
            return AuthOrQuotaError(
                provider, message, request_id, upstream_status=status_code, response_body=message
            )

        if status_code == 429 and QUOTA_PATTERN.search(message):
            return AuthOrQuotaError(
                provider, message, request_id, upstream_status=status_code, response_body=message
            )

        return UpstreamError(
            provider,
            status_code,
            message,
            request_id,
            url=url,
            response_body=message,
        )

    if isinstance(error, httpx.TransportError):
        return NetworkError(provider, f"Network error reaching {provider}: {error}", request_id)

    if COLD_START_PATTERN.search(str(error)):
        return TransientUpstreamError(provider, str(error), request_id)

    return InfraError(
        ErrorDetails(
            code="unknown_error",
            message=str(error) or type(error).__name__,
            type=ErrorType.INFRA,
            provider=provider,
            request_id=request_id,
            retryable=False
        ),
        status_code=500
    )


async def raise_for_upstream_status(
    response: httpx.Response,
    provider: str,
    request_id: str = "",
    cold_start_headers: tuple = COLD_START_HEADERS,
) -> None:
    """
    Raise a mapped error for a >= 400 streaming response before reading it.

    The body is read so the message is available, then the response closed.
    """
    if response.status_code < 400:
        return
    await response.aread()
    await response.aclose()
    error = httpx.HTTPStatusError(
        f"{provider} returned {response.status_code}",
        request=response.request,
        response=response,
    )
    raise map_http_error(error, provider, request_id, cold_start_headers)


# ============================================================
# User-facing messages
# ============================================================

GENERIC_ERROR_MESSAGE = "Unexpected server error occurred while processing your request."


def describe_error(error: BaseException) -> str:
    """
    Produce the single user-facing explanation for a terminal error.

    Typed errors are matched first; untyped errors fall back to message
    matching so SDK and library exceptions still land in a category.
    """
    message = str(error)
    details: Dict[str, Any] = {}
    status = 0
    if isinstance(error, GatewayError):
        details = error.error.details
        status = details.get("upstream_status", 0)
    body = str(details.get("response_body", ""))
    url = str(details.get("url", ""))

    if isinstance(error, RequestCancelledError):
        return "Request was cancelled before completion."
    if isinstance(error, InvalidConfiguration):
        return error.error.message

    if status == 404 and "/responses" in url:
        return (
            "Model endpoint does not support /v1/responses. Configure the planner "
            "to use a /v1/chat/completions-compatible backend."
        )
    if re.search(r"tool_use_failed|Failed to parse tool call arguments as JSON", f"{message} {body}", re.I):
        return (
            "Planner model generated invalid tool-call JSON. Switch DEPLOYER_PLANNER_MODEL "
            "to a tool-calling capable chat model and retry."
        )
    if status == 500 and re.search(r"Prompt processing failed", body or message, re.I):
        return (
            "Planner model backend failed while processing the prompt. Retry once; "
            "if persistent, switch DEPLOYER_PLANNER_MODEL."
        )

    if isinstance(error, TransientUpstreamError):
        return "The AI service is still starting up. Please try again in a moment."
    if isinstance(error, UpstreamTimeoutError):
        return "The AI request took too long and timed out. Please try again."
    if isinstance(error, AuthOrQuotaError):
        if body:
            return f"Authorization failed for the AI service. Details: {body}"
        return "Server error: the AI service quota or key limit has been reached. Try again later."
    if isinstance(error, NetworkError):
        return "Network issue: unable to reach the AI service. Check connection and retry."

    if re.search(r"aborted|AbortError|cancelled", message, re.I):
        return "Request was cancelled before completion."
    if re.search(r"deadline|timeout|timed out", message, re.I):
        return "The AI request took too long and timed out. Please try again."
    if re.search(r"unauthorized|permission|api key|quota", message, re.I):
        return "Server error: the AI service quota or key limit has been reached. Try again later."
    if re.search(r"network|fetch|ECONN|ENOTFOUND|TLS", message, re.I):
        return "Network issue: unable to reach the AI service. Check connection and retry."

    return GENERIC_ERROR_MESSAGE


def error_frame_payload(error: BaseException) -> Dict[str, str]:
    """Payload of the single error frame sent before stream close."""
    code = error.error.code if isinstance(error, GatewayError) else "internal_error"
    return {"code": code, "message": describe_error(error)}
