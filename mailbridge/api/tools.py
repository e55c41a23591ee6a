import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from mailbridge.security.auth import require_bearer
from mailbridge.security.token_manager import TokenManager
from mailbridge.tools.gmail import GmailAdapter
from mailbridge.tools.gmail_message import summarize_message
from mailbridge.tools.toolkit import ToolArgumentError, ToolRegistry, UnknownToolError
from mailbridge.utils.config import settings
from mailbridge.utils.errors import (
    AuthError,
    ConfigError,
    GmailApiError,
    MessageDecodeError,
    MessageFormatError,
    MessageRetrievalError,
    RateLimitError,
    error_codes,
)
from mailbridge.schemas.models import (
    ErrorDetail,
    GetMessageRequest,
    ListLabelsResponse,
    ListMessagesRequest,
    ListMessagesResponse,
    ToolInvokeRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()

_registry = ToolRegistry()


# -----------------------------------------------------
# Service wiring
# -----------------------------------------------------
def get_registry() -> ToolRegistry:
    return _registry


def get_gmail() -> GmailAdapter:
    """FastAPI dependency: the process-wide Gmail adapter, built on first use."""
    gmail = _registry.tools.get("gmail")
    if gmail is None:
        try:
            gmail = GmailAdapter(TokenManager.from_settings(settings))
        except ConfigError as exc:
            raise to_http_exception(exc) from exc
        _registry.register("gmail", gmail)
    return gmail


async def install_token_manager(manager: TokenManager) -> GmailAdapter:
    """Swap in a new TokenManager (after an OAuth callback)."""
    previous = _registry.tools.get("gmail")
    gmail = GmailAdapter(manager)
    _registry.register("gmail", gmail)
    if previous is not None:
        await previous.aclose()
    return gmail


async def shutdown() -> None:
    gmail = _registry.tools.get("gmail")
    if gmail is not None:
        _registry.unregister("gmail")
        await gmail.aclose()


# -----------------------------------------------------
# Error mapping
# -----------------------------------------------------
def _status_for(exc: Exception) -> int:
    if isinstance(exc, ConfigError):
        return 500
    if isinstance(exc, AuthError):
        return 401
    if isinstance(exc, (MessageFormatError, MessageDecodeError)):
        return 422
    if isinstance(exc, RateLimitError):
        return 429
    if isinstance(exc, MessageRetrievalError):
        return 404
    return 502


def to_http_exception(exc: Exception) -> HTTPException:
    code = error_codes.code_for_error(exc)
    detail = ErrorDetail(
        code=code,
        message=str(exc),
        description=error_codes.get_error_description(code),
        troubleshooting=error_codes.get_troubleshooting_steps(code),
        message_id=getattr(exc, "message_id", None),
    )
    return HTTPException(status_code=_status_for(exc), detail=detail.model_dump())


# -----------------------------------------------------
# Endpoints
# -----------------------------------------------------
@router.get("")
async def list_tools(user=Depends(require_bearer), registry: ToolRegistry = Depends(get_registry)):
    if "gmail" not in registry.tools:
        # Describe the tools even before the adapter is configured
        return ToolRegistry({"gmail": GmailAdapter}).describe()
    return registry.describe()


@router.post("/gmail/list_messages", response_model=ListMessagesResponse)
async def gmail_list_messages(
    req: ListMessagesRequest,
    user=Depends(require_bearer),
    gmail: GmailAdapter = Depends(get_gmail),
):
    try:
        messages = await gmail.list_messages(max_results=req.max_results, query=req.query)
    except (GmailApiError, ConfigError) as exc:
        raise to_http_exception(exc) from exc
    return {"messages": messages, "count": len(messages), "query": req.query}


@router.post("/gmail/get_message")
async def gmail_get_message(
    req: GetMessageRequest,
    user=Depends(require_bearer),
    gmail: GmailAdapter = Depends(get_gmail),
):
    try:
        message = await gmail.get_message(req.message_id)
    except (GmailApiError, ConfigError) as exc:
        raise to_http_exception(exc) from exc
    return {"message": message.model_dump(), "summary": summarize_message(message)}


@router.post("/gmail/list_labels", response_model=ListLabelsResponse)
async def gmail_list_labels(user=Depends(require_bearer), gmail: GmailAdapter = Depends(get_gmail)):
    try:
        labels = await gmail.list_labels()
    except (GmailApiError, ConfigError) as exc:
        raise to_http_exception(exc) from exc
    return {"labels": labels, "count": len(labels)}


@router.post("/gmail/check_connection")
async def gmail_check_connection(user=Depends(require_bearer), gmail: GmailAdapter = Depends(get_gmail)):
    try:
        return await gmail.check_connection()
    except (GmailApiError, ConfigError) as exc:
        raise to_http_exception(exc) from exc


@router.post("/invoke")
async def invoke_tool(
    req: ToolInvokeRequest,
    user=Depends(require_bearer),
    registry: ToolRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    if req.tool.startswith("gmail.") and "gmail" not in registry.tools:
        registry.register("gmail", get_gmail())
    try:
        return await registry.invoke(req.tool, **req.arguments)
    except UnknownToolError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ToolArgumentError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (GmailApiError, ConfigError, MessageDecodeError) as exc:
        raise to_http_exception(exc) from exc
