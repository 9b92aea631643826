"""
Teams Authorization Routes

Admin consent flow for the single delegated Microsoft Graph credential,
plus refresh, status and revoke.
"""

import asyncio
import logging
import secrets
import threading
from collections import deque
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from app.api.dependencies import get_graph_client, get_oauth_client, get_token_vault
from app.api.errors import http_error_for
from app.integrations.teams import GraphMessagingClient, MicrosoftOAuthClient
from app.integrations.teams.models import Profile
from app.models.errors import RelayError
from app.services.token_vault import AuthStatus, TokenVault

logger = logging.getLogger(__name__)
router = APIRouter()

# Issued OAuth state values awaiting their callback
_pending_states: deque[str] = deque(maxlen=100)
_state_lock = threading.Lock()


def _issue_state() -> str:
    state = secrets.token_urlsafe(24)
    with _state_lock:
        _pending_states.append(state)
    return state


def _consume_state(state: Optional[str]) -> bool:
    if not state:
        return False
    with _state_lock:
        if state in _pending_states:
            _pending_states.remove(state)
            return True
    return False


class AuthResponse(BaseModel):
    success: bool
    message: str
    expires_in: Optional[int] = None


class AuthStatusResponse(BaseModel):
    status: AuthStatus
    profile: Optional[Profile] = None
    profile_error: Optional[str] = None


@router.get("/teams")
async def start_authorization(oauth_client: MicrosoftOAuthClient = Depends(get_oauth_client)):
    """Redirect the admin to the Microsoft consent page."""
    if not oauth_client.settings.teams_client_id or not oauth_client.settings.teams_tenant_id:
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Teams OAuth client is not configured"},
        )
    url = oauth_client.authorization_url(state=_issue_state())
    logger.info("Redirecting admin to Microsoft authorization page")
    return RedirectResponse(url=url, status_code=302)


@router.get("/teams/callback", response_model=AuthResponse)
async def authorization_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    oauth_client: MicrosoftOAuthClient = Depends(get_oauth_client),
    token_vault: TokenVault = Depends(get_token_vault),
):
    """Exchange the authorization code and store the credential."""
    if error:
        logger.warning(f"Authorization was not granted: {error} {error_description or ''}")
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": error_description or error},
        )
    if not code:
        return JSONResponse(
            status_code=400, content={"success": False, "message": "Missing authorization code"}
        )
    if not _consume_state(state):
        logger.warning("Authorization callback with unknown state")
        return JSONResponse(
            status_code=400, content={"success": False, "message": "Invalid or expired state"}
        )

    try:
        tokens = await oauth_client.exchange_code(code)
    except RelayError as e:
        raise http_error_for(e)

    try:
        await asyncio.to_thread(
            token_vault.store, tokens.access_token, tokens.refresh_token, tokens.expires_in, tokens.scope
        )
    except ValueError as e:
        logger.error(f"Token endpoint returned an incomplete token set: {e}")
        return JSONResponse(status_code=502, content={"success": False, "message": str(e)})

    return AuthResponse(
        success=True,
        message="Teams authorization stored",
        expires_in=tokens.expires_in,
    )


@router.post("/teams/refresh", response_model=AuthResponse)
async def refresh_credential(token_vault: TokenVault = Depends(get_token_vault)):
    """Refresh the credential now, whatever its remaining lifetime."""
    try:
        await token_vault.force_refresh()
    except RelayError as e:
        raise http_error_for(e)

    status = await asyncio.to_thread(token_vault.status)
    return AuthResponse(
        success=True,
        message="Token refreshed",
        expires_in=status.seconds_until_expiry,
    )


@router.get("/teams/status", response_model=AuthStatusResponse)
async def authorization_status(
    token_vault: TokenVault = Depends(get_token_vault),
    graph_client: GraphMessagingClient = Depends(get_graph_client),
):
    status = await asyncio.to_thread(token_vault.status)
    if not status.is_authenticated and not status.needs_refresh:
        return AuthStatusResponse(status=status)

    try:
        profile = await graph_client.get_profile()
    except RelayError as e:
        logger.warning(f"Could not read Teams profile: {e}")
        status = await asyncio.to_thread(token_vault.status)
        return AuthStatusResponse(status=status, profile_error=str(e))

    # get_profile may have refreshed the credential
    status = await asyncio.to_thread(token_vault.status)
    return AuthStatusResponse(status=status, profile=profile)


@router.delete("/teams", response_model=AuthResponse)
async def revoke_authorization(token_vault: TokenVault = Depends(get_token_vault)):
    await asyncio.to_thread(token_vault.revoke)
    return AuthResponse(success=True, message="Teams authorization removed")
