"""
Microsoft Graph Messaging Client

Responsibilities:
- POST messages to chats (/chats/{id}/messages)
- POST messages to team channels (/teams/{team}/channels/{channel}/messages)
- List joined teams and their channels (channel discovery)
- Read the signed-in profile and recent chats
- Surface non-2xx responses as GraphApiError with Graph's error code

A bearer token is requested from the token vault right before every call;
freshness is the vault's job, so nothing is cached here.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol, Union
from urllib.parse import quote

import requests

from app.config import Settings, get_settings
from app.integrations.teams.models import (
    CardPayload,
    Channel,
    ChatMember,
    ChatSummary,
    PlainPayload,
    Profile,
    Team,
)
from app.models.errors import GraphApiError, GraphNetworkError

logger = logging.getLogger(__name__)

MessagePayload = Union[CardPayload, PlainPayload]


class AccessTokenProvider(Protocol):
    async def get_live_access_token(self) -> str: ...


def _quote_segment(value: str) -> str:
    # Chat ids contain ':' and '@' which Graph accepts unescaped
    return quote(value, safe=":@.-_")


class GraphMessagingClient:
    """Thin authenticated wrapper over the Graph endpoints the relay needs."""

    def __init__(
        self,
        token_provider: AccessTokenProvider,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
    ):
        self.settings = settings or get_settings()
        self.token_provider = token_provider
        self.session = session or requests.Session()
        self.base_url = self.settings.graph_base_url.rstrip("/")

    async def send_to_chat(self, chat_id: str, payload: MessagePayload) -> str:
        """Post a message into a 1:1, group or meeting chat. Returns the message id."""
        logger.info(f"Sending message to chat {chat_id}")
        result = await self._request(
            "POST",
            f"/chats/{_quote_segment(chat_id)}/messages",
            json_body=payload.to_graph_body(),
        )
        return result.get("id", "")

    async def send_to_channel(self, team_id: str, channel_id: str, payload: MessagePayload) -> str:
        """Post a message into a team channel. Returns the message id."""
        logger.info(f"Sending message to channel {channel_id} in team {team_id}")
        result = await self._request(
            "POST",
            f"/teams/{_quote_segment(team_id)}/channels/{_quote_segment(channel_id)}/messages",
            json_body=payload.to_graph_body(),
        )
        return result.get("id", "")

    async def list_joined_teams(self) -> List[Team]:
        items = await self._collect("/me/joinedTeams", params={"$select": "id,displayName"})
        return [Team(id=item["id"], display_name=item.get("displayName") or "") for item in items]

    async def list_channels(self, team_id: str) -> List[Channel]:
        items = await self._collect(
            f"/teams/{_quote_segment(team_id)}/channels",
            params={"$select": "id,displayName"},
        )
        return [Channel(id=item["id"], display_name=item.get("displayName") or "") for item in items]

    async def get_profile(self) -> Profile:
        data = await self._request("GET", "/me")
        return Profile(
            id=data.get("id", ""),
            display_name=data.get("displayName") or "",
            mail=data.get("mail") or data.get("userPrincipalName"),
        )

    async def list_chats(self, limit: int = 5) -> List[ChatSummary]:
        """
        List the signed-in user's most recent chats with readable names.

        One-on-one chats have no topic, so they are named after the other
        member (skipping the current user and bot/application members).
        """
        limit = max(1, min(int(limit), 50))
        data = await self._request(
            "GET",
            "/me/chats",
            params={"$top": str(limit), "$expand": "members"},
        )

        current_user_id = None
        try:
            current_user_id = (await self.get_profile()).id
        except GraphApiError as e:
            logger.warning(f"Could not read current user for chat naming: {e}")

        return [_summarize_chat(chat, current_user_id) for chat in data.get("value", [])]

    async def _collect(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Follow @odata.nextLink until exhausted or the page cap is hit."""
        items: List[Dict[str, Any]] = []
        next_url: Optional[str] = path
        next_params = params
        pages = 0

        while next_url and pages < self.settings.graph_max_pages:
            data = await self._request("GET", next_url, params=next_params)
            items.extend(data.get("value", []))
            next_url = data.get("@odata.nextLink")
            next_params = None  # nextLink already carries the query
            pages += 1

        if next_url:
            logger.warning(f"Stopped paging {path} after {pages} pages")
        return items

    async def _request(
        self,
        method: str,
        path_or_url: str,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        token = await self.token_provider.get_live_access_token()
        url = path_or_url if path_or_url.startswith("http") else f"{self.base_url}{path_or_url}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

        try:
            response = await asyncio.to_thread(
                self.session.request,
                method,
                url,
                headers=headers,
                json=json_body,
                params=params,
                timeout=self.settings.http_timeout_seconds,
            )
        except requests.Timeout as e:
            logger.error(f"Graph {method} {path_or_url} timed out: {e}")
            raise GraphNetworkError(f"Graph request timed out: {method} {path_or_url}") from e
        except requests.RequestException as e:
            logger.error(f"Graph {method} {path_or_url} failed to connect: {e}")
            raise GraphNetworkError(f"Graph request failed: {method} {path_or_url}: {e}") from e

        if not response.ok:
            error = _to_graph_error(response)
            logger.error(f"Graph {method} {path_or_url} returned {error.status} {error.provider_code}")
            raise error

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()


def _to_graph_error(response: requests.Response) -> GraphApiError:
    code = None
    message = ""
    try:
        body = response.json()
        error = body.get("error") or {}
        code = error.get("code")
        message = error.get("message") or ""
    except ValueError:
        message = response.text[:500]
    return GraphApiError(status=response.status_code, provider_code=code, provider_message=message)


def _summarize_chat(chat: Dict[str, Any], current_user_id: Optional[str]) -> ChatSummary:
    chat_type = chat.get("chatType") or "unknown"
    raw_members = chat.get("members") or []
    members = [
        ChatMember(
            id=member.get("userId"),
            display_name=member.get("displayName"),
            email=member.get("email"),
        )
        for member in raw_members
    ]

    display_name = chat.get("topic")
    if not display_name and chat_type == "oneOnOne":
        for member in members:
            name = member.display_name or ""
            if (
                member.id
                and name
                and member.id != current_user_id
                and "Application" not in name
                and "Bot" not in name
            ):
                display_name = name
                break

    if not display_name:
        if chat_type == "oneOnOne":
            display_name = "1:1 Chat"
        elif chat_type == "group":
            display_name = f"Group Chat ({len(members)} members)"
        elif chat_type == "meeting":
            display_name = "Meeting Chat"
        else:
            display_name = f"{chat_type} Chat"

    return ChatSummary(
        id=chat.get("id", ""),
        display_name=display_name,
        chat_type=chat_type,
        member_count=len(members),
        members=members,
    )
