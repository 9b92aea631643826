"""
Microsoft Teams Integration Module

Graph API access for relaying notifications into Teams chats and channels.
"""

from app.integrations.teams.client import GraphMessagingClient
from app.integrations.teams.oauth import MicrosoftOAuthClient
from app.integrations.teams.resolver import TargetResolver, ResolutionResult, ResolutionState
from app.integrations.teams.models import (
    CardPayload,
    PlainPayload,
    Team,
    Channel,
    Profile,
    ChatSummary,
    TokenResponse,
)

__all__ = [
    "GraphMessagingClient",
    "MicrosoftOAuthClient",
    "TargetResolver",
    "ResolutionResult",
    "ResolutionState",
    "CardPayload",
    "PlainPayload",
    "Team",
    "Channel",
    "Profile",
    "ChatSummary",
    "TokenResponse",
]
