"""
Tests for the Microsoft identity platform OAuth client.
"""

import json
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from app.integrations.teams.oauth import MicrosoftOAuthClient
from app.models.errors import GraphNetworkError, OAuthError


def _response(status_code, body):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.json.return_value = body
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def oauth_client(settings, session):
    return MicrosoftOAuthClient(settings, session=session)


def test_authorization_url(oauth_client):
    url = urlparse(oauth_client.authorization_url(state="xyz"))
    query = parse_qs(url.query)

    assert url.path == "/tenant-id/oauth2/v2.0/authorize"
    assert query["response_type"] == ["code"]
    assert query["redirect_uri"] == ["http://localhost:8000/api/auth/teams/callback"]
    assert query["state"] == ["xyz"]


@pytest.mark.asyncio
async def test_refresh(oauth_client, session):
    session.post.return_value = _response(
        200, {"access_token": "a2", "refresh_token": "r2", "expires_in": 4000, "scope": "Chat.ReadWrite"}
    )

    tokens = await oauth_client.refresh("r1")

    assert (tokens.access_token, tokens.refresh_token, tokens.expires_in) == ("a2", "r2", 4000)
    url = session.post.call_args.args[0]
    form = session.post.call_args.kwargs["data"]
    assert url == "https://login.test/tenant-id/oauth2/v2.0/token"
    assert form["grant_type"] == "refresh_token"
    assert form["refresh_token"] == "r1"
    assert session.post.call_args.kwargs["timeout"] == 5.0


@pytest.mark.asyncio
async def test_exchange_code(oauth_client, session):
    session.post.return_value = _response(200, {"access_token": "a1", "refresh_token": "r1"})

    tokens = await oauth_client.exchange_code("code-1")

    assert tokens.expires_in == 3600
    form = session.post.call_args.kwargs["data"]
    assert form["grant_type"] == "authorization_code"
    assert form["code"] == "code-1"


@pytest.mark.asyncio
async def test_rejected_grant(oauth_client, session):
    session.post.return_value = _response(
        400, {"error": "invalid_grant", "error_description": "AADSTS70008: The refresh token has expired"}
    )

    with pytest.raises(OAuthError) as exc_info:
        await oauth_client.refresh("r1")

    assert exc_info.value.status == 400
    assert exc_info.value.code == "invalid_grant"


@pytest.mark.asyncio
async def test_timeout(oauth_client, session):
    session.post.side_effect = requests.Timeout("slow")

    with pytest.raises(GraphNetworkError):
        await oauth_client.refresh("r1")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        json.JSONDecodeError("Expecting value", "<html>", 0),
        {"access_token": "a2", "expires_in": None},
        ["not", "an", "object"],
    ],
)
async def test_unreadable_success_response(oauth_client, session, body):
    response = _response(200, None)
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body
    session.post.return_value = response

    with pytest.raises(OAuthError) as exc_info:
        await oauth_client.refresh("r1")

    assert exc_info.value.status == 200
