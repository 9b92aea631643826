"""
Microsoft Teams / Graph Data Models
"""

import json
import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

ADAPTIVE_CARD_CONTENT_TYPE = "application/vnd.microsoft.card.adaptive"


class Team(BaseModel):
    id: str
    display_name: str = ""


class Channel(BaseModel):
    id: str
    display_name: str = ""


class Profile(BaseModel):
    id: str
    display_name: str = ""
    mail: Optional[str] = None


class ChatMember(BaseModel):
    id: Optional[str] = None
    display_name: Optional[str] = None
    email: Optional[str] = None


class ChatSummary(BaseModel):
    """A chat as shown to operators picking a destination."""

    id: str
    display_name: str
    chat_type: str
    member_count: int = 0
    members: List[ChatMember] = []


class TokenResponse(BaseModel):
    """Token endpoint response (authorization_code and refresh_token grants)."""

    access_token: str = ""
    refresh_token: str = ""
    expires_in: int = 3600
    scope: str = ""
    token_type: str = "Bearer"


class CardPayload(BaseModel):
    """Adaptive Card message. Graph wants the card as a string attachment."""

    card: Dict[str, Any]
    attachment_id: str = Field(default_factory=lambda: str(uuid.uuid4()))

    def to_graph_body(self) -> Dict[str, Any]:
        return {
            "body": {
                "contentType": "html",
                "content": f'<attachment id="{self.attachment_id}"></attachment>',
            },
            "attachments": [
                {
                    "id": self.attachment_id,
                    "contentType": ADAPTIVE_CARD_CONTENT_TYPE,
                    "content": json.dumps(self.card),
                }
            ],
        }


class PlainPayload(BaseModel):
    """HTML (or text) message body."""

    content: str
    content_type: str = "html"

    def to_graph_body(self) -> Dict[str, Any]:
        return {"body": {"contentType": self.content_type, "content": self.content}}
