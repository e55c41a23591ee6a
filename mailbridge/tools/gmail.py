"""
Gmail Tool Adapter
Provides message, label and connection operations over the Gmail REST API.
"""
from __future__ import annotations

import asyncio
import logging
from typing import List, Dict, Any, Optional, Sequence
from urllib.parse import quote

import httpx

from mailbridge.schemas.gmail import GmailMessage
from mailbridge.security.token_manager import TokenManager
from mailbridge.tools.gmail_message import (
    DEFAULT_POLICY,
    RecoveryPolicy,
    get_message_with_fallbacks,
    summarize_message,
)
from mailbridge.utils.config import settings
from mailbridge.utils.encoding import parse_max_results
from mailbridge.utils.errors import (
    ApiError,
    AuthError,
    MessageFormatError,
    MessageRetrievalError,
    NetworkError,
    RateLimitError,
)

logger = logging.getLogger(__name__)

# Gmail rejects larger page sizes
MAX_PAGE_SIZE = 500


def _error_for_status(status: int, body: str, what: str) -> Exception:
    message = f"{what} failed. Status: {status}, Error: {body}"
    if status in (401, 403):
        return AuthError(message, status_code=status, body=body)
    if status == 404:
        return MessageRetrievalError(message)
    if status == 429:
        return RateLimitError(message)
    return ApiError(message, status_code=status)


class GmailAdapter:
    """Gmail access backed by the REST API and a shared TokenManager."""

    description = "Read Gmail messages and labels and check the account connection"

    parameters = {
        "list_messages": {
            "type": "object",
            "properties": {
                "max_results": {
                    "type": "integer",
                    "description": "Number of messages to return (default: 10)",
                    "default": 10,
                    "minimum": 0,
                },
                "query": {
                    "type": "string",
                    "description": "Optional Gmail search query (e.g., 'is:unread from:someone@example.com')",
                },
            },
            "required": [],
        },
        "get_message": {
            "type": "object",
            "properties": {
                "message_id": {"type": "string", "description": "Gmail message id"},
            },
            "required": ["message_id"],
        },
        "list_labels": {"type": "object", "properties": {}, "required": []},
        "check_connection": {"type": "object", "properties": {}, "required": []},
    }

    def __init__(
        self,
        token_manager: TokenManager,
        http: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        user_id: Optional[str] = None,
        policy: RecoveryPolicy = DEFAULT_POLICY,
        max_concurrency: Optional[int] = None,
    ):
        self.token_manager = token_manager
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
        self._base_url = (base_url or settings.GMAIL_API_BASE_URL).rstrip("/")
        self._user_id = user_id or settings.GMAIL_USER_ID
        self._policy = policy
        self._fetch_slots = asyncio.Semaphore(max_concurrency or settings.MAX_CONCURRENT_FETCHES)

    async def __aenter__(self) -> "GmailAdapter":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    # -----------------------------------------------------
    # Transport
    # -----------------------------------------------------
    def _url(self, path: str) -> str:
        return f"{self._base_url}/users/{self._user_id}/{path.lstrip('/')}"

    async def _get(self, path: str, params: Optional[Any] = None, what: str = "Gmail request") -> Dict[str, Any]:
        token = await self.token_manager.get_token(self._http)
        try:
            response = await self._http.get(
                self._url(path),
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.RequestError as exc:
            logger.error("%s failed: %s", what, exc)
            raise NetworkError(f"{what} failed: {exc}") from exc

        if response.is_error:
            logger.error("%s failed with status %s", what, response.status_code)
            raise _error_for_status(response.status_code, response.text, what)
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(f"{what} returned a non-JSON body: {exc}", status_code=response.status_code) from exc

    async def fetch_raw(
        self,
        message_id: str,
        format: str = "full",
        metadata_headers: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        """Raw message JSON in the given format (full, minimal, metadata)."""
        params: List[tuple] = [("format", format)]
        for header in metadata_headers or ():
            params.append(("metadataHeaders", header))
        # Ids are opaque; keep them to one path segment
        path = f"messages/{quote(message_id, safe='')}"
        return await self._get(path, params=params, what=f"Get message {message_id}")

    # -----------------------------------------------------
    # Operations
    # -----------------------------------------------------
    async def get_message(self, message_id: str) -> GmailMessage:
        return await get_message_with_fallbacks(message_id, self.fetch_raw, policy=self._policy)

    async def list_message_ids(self, max_results: int, query: Optional[str] = None) -> List[str]:
        ids: List[str] = []
        page_token: Optional[str] = None
        while len(ids) < max_results:
            params: Dict[str, Any] = {"maxResults": min(max_results - len(ids), MAX_PAGE_SIZE)}
            if query:
                params["q"] = query
            if page_token:
                params["pageToken"] = page_token

            response = await self._get("messages", params=params, what="List messages")
            messages = response.get("messages", [])
            if not messages:
                break
            ids.extend(item["id"] for item in messages if item.get("id"))

            page_token = response.get("nextPageToken")
            if not page_token:
                break
        return ids[:max_results]

    async def _summary_or_error(self, message_id: str) -> Dict[str, Any]:
        try:
            async with self._fetch_slots:
                return summarize_message(await self.get_message(message_id))
        except (MessageFormatError, RateLimitError) as exc:
            logger.warning("Reporting message %s in place: %s", message_id, exc)
            return {"id": message_id, "error": str(exc)}

    async def list_messages(self, max_results: Any = None, query: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Summaries for the most recent messages matching ``query``.

        Messages are fetched concurrently, at most MAX_CONCURRENT_FETCHES at a
        time. A message that cannot be decoded or hits the rate limit is
        reported in place instead of failing the whole listing.
        """
        limit = parse_max_results(max_results, settings.DEFAULT_MAX_RESULTS)
        if limit == 0:
            return []
        ids = await self.list_message_ids(limit, query=query)
        logger.info("Fetching %s message(s)%s", len(ids), f" matching '{query}'" if query else "")
        return list(await asyncio.gather(*(self._summary_or_error(message_id) for message_id in ids)))

    async def list_labels(self) -> List[Dict[str, Any]]:
        response = await self._get("labels", what="List labels")
        return response.get("labels", [])

    async def check_connection(self) -> Dict[str, Any]:
        profile = await self._get("profile", what="Get profile")
        return {
            "connected": True,
            "email": profile.get("emailAddress"),
            "messages_total": profile.get("messagesTotal"),
            "threads_total": profile.get("threadsTotal"),
            "history_id": profile.get("historyId"),
            "token": self.token_manager.status(),
        }
