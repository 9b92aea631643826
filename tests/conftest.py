"""
Shared fixtures: a scripted Graph client, a token vault stub and a sample
Azure DevOps pull request webhook.
"""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest

from app.config import Settings
from app.integrations.teams.models import Channel, Profile, Team


class FakeGraphClient:
    """Stands in for GraphMessagingClient; every method is an AsyncMock."""

    def __init__(self):
        self.send_to_chat = AsyncMock(return_value="msg-chat")
        self.send_to_channel = AsyncMock(return_value="msg-channel")
        self.list_joined_teams = AsyncMock(return_value=[])
        self.list_channels = AsyncMock(return_value=[])
        self.get_profile = AsyncMock(
            return_value=Profile(id="user-1", display_name="Admin", mail="admin@contoso.com")
        )
        self.list_chats = AsyncMock(return_value=[])

    def with_teams(self, channels_by_team):
        """Script list_joined_teams/list_channels from {team_id: [channel ids]}."""
        self.list_joined_teams.return_value = [
            Team(id=team_id, display_name=f"Team {team_id}") for team_id in channels_by_team
        ]

        async def list_channels(team_id):
            return [
                Channel(id=channel_id, display_name=f"Channel {channel_id}")
                for channel_id in channels_by_team[team_id]
            ]

        self.list_channels.side_effect = list_channels
        return self

    @property
    def provider_calls(self) -> int:
        return (
            self.send_to_chat.await_count
            + self.send_to_channel.await_count
            + self.list_joined_teams.await_count
            + self.list_channels.await_count
        )


@pytest.fixture
def graph_client():
    return FakeGraphClient()


@pytest.fixture
def token_vault():
    vault = MagicMock()
    vault.get_live_access_token = AsyncMock(return_value="access-token")
    return vault


@pytest.fixture
def settings():
    return Settings(
        environment="development",
        accepted_event_types=["git.pullrequest.created"],
        routing_filter_mode="exact",
        webhook_secret="",
        skip_webhook_signature=False,
        graph_base_url="https://graph.test/v1.0",
        login_base_url="https://login.test",
        teams_client_id="client-id",
        teams_client_secret="client-secret",
        teams_tenant_id="tenant-id",
        http_timeout_seconds=5.0,
        credential_store_path=None,
        delivery_log_path=None,
    )


@pytest.fixture
def pr_payload():
    return {
        "eventType": "git.pullrequest.created",
        "resource": {
            "title": "Fix bug",
            "createdBy": {"displayName": "A"},
            "repository": {"name": "R"},
            "sourceRefName": "refs/heads/f",
            "targetRefName": "refs/heads/main",
            "url": "https://x",
        },
    }


@pytest.fixture
def full_pr_payload():
    """Shape of a real git.pullrequest.created service hook."""
    return {
        "subscriptionId": "0f5c3b1e-2a44-4d1c-9a0e-6b7d1f3c2a10",
        "notificationId": 42,
        "id": "2ab4e3d3-b7a6-425e-92b1-5a9982c1269e",
        "eventType": "git.pullrequest.created",
        "publisherId": "tfs",
        "message": {
            "text": "Jamal Hartnett created a new pull request",
            "html": "Jamal Hartnett created a new pull request",
            "markdown": "Jamal Hartnett created a new pull request",
        },
        "resource": {
            "repository": {
                "id": "4bc14d40-c903-45e2-872e-0462c7748079",
                "name": "Fabrikam",
                "url": "https://dev.azure.com/fabrikam/_apis/git/repositories/4bc14d40",
                "webUrl": "https://dev.azure.com/fabrikam/Fabrikam-Fiber/_git/Fabrikam",
            },
            "pullRequestId": 1,
            "status": "active",
            "createdBy": {
                "displayName": "Jamal Hartnett",
                "uniqueName": "fabrikamfiber4@hotmail.com",
                "id": "54d125f7-69f7-4191-904f-c5b96b6261c8",
            },
            "creationDate": "2026-06-15T17:59:39.9575058Z",
            "title": "my first pull request",
            "description": " - test2\r\n",
            "sourceRefName": "refs/heads/mytopic",
            "targetRefName": "refs/heads/master",
            "url": "https://dev.azure.com/fabrikam/_apis/git/repositories/4bc14d40/pullRequests/1",
            "_links": {
                "web": {"href": "https://dev.azure.com/fabrikam/Fabrikam-Fiber/_git/Fabrikam/pullrequest/1"}
            },
        },
        "resourceVersion": "1.0",
        "resourceContainers": {"collection": {"id": "c12d0eb8-e382-443b-9f9c-c52cba5014c2"}},
        "createdDate": "2026-06-15T17:59:40.012Z",
    }
