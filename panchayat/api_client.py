"""
HTTP client for the portal API.

Every call carries an explicit timeout. Non-2xx answers and transport failures
are mapped onto the error taxonomy in `panchayat.errors`, using the FastAPI
`detail` field as the user-facing message.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import PORTAL_API_URL, REQUEST_TIMEOUT_SECONDS
from .errors import (AuthorizationError, NetworkError, NotFoundError, PortalError,
                     RateLimitError, ValidationError)
from .models import (Chat, ChatSummary, MessageExchange, Notice, TokenResponse, UserResponse,
                     VoiceFeedback)

logger = logging.getLogger(__name__)


def _detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:240] or resp.reason_phrase
    if isinstance(body, dict):
        detail = body.get("detail", body.get("error"))
        if isinstance(detail, list) and detail:
            first = detail[0]
            if isinstance(first, dict):
                msg = str(first.get("msg", ""))
                # pydantic prefixes validator messages
                return msg.removeprefix("Value error, ")
            return str(first)
        if detail:
            return str(detail)
    return resp.reason_phrase or f"HTTP {resp.status_code}"


def error_for_response(resp: httpx.Response) -> PortalError:
    message = _detail(resp)
    code = resp.status_code
    if code in (400, 422):
        return ValidationError(message)
    if code in (401, 403):
        return AuthorizationError(message)
    if code == 404:
        return NotFoundError(message)
    if code == 429:
        return RateLimitError(message)
    return NetworkError(f"Server error ({code}): {message}")


class PortalApiClient:
    def __init__(self, base_url: str = PORTAL_API_URL, token: Optional[str] = None,
                 timeout: float = REQUEST_TIMEOUT_SECONDS,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.token = token
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(self, method: str, path: str, json: Any = None,
                      timeout: Optional[float] = None) -> Any:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        kwargs: Dict[str, Any] = {"headers": headers}
        if json is not None:
            kwargs["json"] = json
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError("The server took too long to respond") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Cannot reach the server: {e}") from e
        if resp.status_code >= 400:
            err = error_for_response(resp)
            logger.warning("%s %s -> %d: %s", method, path, resp.status_code, err.message)
            raise err
        if not resp.content:
            return None
        return resp.json()

    # -- users ---------------------------------------------------------------
    async def register(self, name: str, email: str, password: str, language: str = "en") -> TokenResponse:
        data = await self.request("POST", "/api/users/register", json={
            "name": name, "email": email, "password": password, "language": language})
        auth = TokenResponse.model_validate(data)
        self.token = auth.access_token
        return auth

    async def login(self, email: str, password: str) -> TokenResponse:
        data = await self.request("POST", "/api/users/login", json={"email": email, "password": password})
        auth = TokenResponse.model_validate(data)
        self.token = auth.access_token
        return auth

    async def me(self) -> UserResponse:
        return UserResponse.model_validate(await self.request("GET", "/api/users/me"))

    async def update_profile(self, name: Optional[str] = None, language: Optional[str] = None) -> UserResponse:
        data = await self.request("PUT", "/api/users/profile", json={"name": name, "language": language})
        return UserResponse.model_validate(data)

    async def logout(self) -> None:
        if self.token:
            await self.request("POST", "/api/users/logout")
        self.token = None

    # -- chats ---------------------------------------------------------------
    async def create_chat(self, title: str, category: str, language: str) -> Chat:
        data = await self.request("POST", "/api/chat", json={
            "title": title, "category": category, "language": language})
        return Chat.model_validate(data)

    async def list_chats(self) -> List[ChatSummary]:
        return [ChatSummary.model_validate(c) for c in await self.request("GET", "/api/chat")]

    async def get_chat(self, chat_id: str) -> Chat:
        return Chat.model_validate(await self.request("GET", f"/api/chat/{chat_id}"))

    async def post_message(self, chat_id: str, content: str) -> MessageExchange:
        data = await self.request("POST", f"/api/chat/{chat_id}/message", json={"content": content})
        return MessageExchange.model_validate(data)

    async def delete_chat(self, chat_id: str) -> None:
        await self.request("DELETE", f"/api/chat/{chat_id}")

    # -- sync mirror ---------------------------------------------------------
    async def push_notices(self, notices: List[Notice]) -> None:
        await self.request("PUT", "/api/sync/notices", json=[n.model_dump(mode="json") for n in notices])

    async def fetch_notices(self) -> List[Notice]:
        return [Notice.model_validate(n) for n in await self.request("GET", "/api/sync/notices")]

    async def push_feedback(self, feedback: List[VoiceFeedback]) -> None:
        await self.request("PUT", "/api/sync/feedback", json=[f.model_dump(mode="json") for f in feedback])

    async def fetch_feedback(self) -> List[VoiceFeedback]:
        return [VoiceFeedback.model_validate(f) for f in await self.request("GET", "/api/sync/feedback")]

    # -- connectivity --------------------------------------------------------
    async def health(self, timeout: float = 3.0) -> bool:
        try:
            data = await self.request("GET", "/health", timeout=timeout)
        except PortalError:
            return False
        return bool(data) and data.get("status") == "healthy"
