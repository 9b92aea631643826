"""
Microsoft identity platform OAuth client

Responsibilities:
- Build the authorize URL for the admin consent flow
- Exchange an authorization code for tokens
- Exchange a refresh token for a new token pair
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests

from app.config import Settings, get_settings
from app.integrations.teams.models import TokenResponse
from app.models.errors import GraphNetworkError, OAuthError

logger = logging.getLogger(__name__)


class MicrosoftOAuthClient:
    """Token endpoint wrapper for one tenant/app registration."""

    def __init__(self, settings: Optional[Settings] = None, session: Optional[requests.Session] = None):
        self.settings = settings or get_settings()
        self.session = session or requests.Session()

    @property
    def _authority(self) -> str:
        return f"{self.settings.login_base_url.rstrip('/')}/{self.settings.teams_tenant_id}/oauth2/v2.0"

    @property
    def scopes(self) -> List[str]:
        return list(self.settings.teams_scopes)

    def authorization_url(self, state: Optional[str] = None) -> str:
        params = {
            "client_id": self.settings.teams_client_id,
            "response_type": "code",
            "redirect_uri": self.settings.teams_redirect_uri,
            "scope": " ".join(self.scopes),
            "response_mode": "query",
        }
        if state:
            params["state"] = state
        return f"{self._authority}/authorize?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenResponse:
        """Exchange an authorization code from the consent callback."""
        return await self._token_request(
            {
                "client_id": self.settings.teams_client_id,
                "client_secret": self.settings.teams_client_secret,
                "code": code,
                "redirect_uri": self.settings.teams_redirect_uri,
                "grant_type": "authorization_code",
                "scope": " ".join(self.scopes),
            }
        )

    async def refresh(self, refresh_token: str) -> TokenResponse:
        """Redeem a refresh token for a new access/refresh token pair."""
        return await self._token_request(
            {
                "client_id": self.settings.teams_client_id,
                "client_secret": self.settings.teams_client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
                "scope": " ".join(self.scopes),
            }
        )

    async def _token_request(self, form: Dict[str, Any]) -> TokenResponse:
        grant_type = form.get("grant_type")
        logger.info(f"Requesting token from Microsoft identity platform (grant_type={grant_type})")

        try:
            response = await asyncio.to_thread(
                self.session.post,
                f"{self._authority}/token",
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.settings.http_timeout_seconds,
            )
        except requests.Timeout as e:
            logger.error(f"Token endpoint timed out: {e}")
            raise GraphNetworkError(f"Token endpoint timed out: {e}") from e
        except requests.RequestException as e:
            logger.error(f"Token endpoint unreachable: {e}")
            raise GraphNetworkError(f"Token endpoint unreachable: {e}") from e

        if not response.ok:
            code, description = _parse_oauth_error(response)
            logger.error(f"Token request failed: {response.status_code} {code}")
            raise OAuthError(
                f"Token request failed: {code or response.status_code} {description}".strip(),
                status=response.status_code,
                code=code,
            )

        # JSONDecodeError and pydantic's ValidationError are both ValueErrors
        try:
            return TokenResponse.model_validate(response.json())
        except ValueError as e:
            logger.error(f"Token endpoint returned an unreadable response: {e}")
            raise OAuthError(
                f"Token endpoint returned an unreadable response: {e}",
                status=response.status_code,
            ) from e


def _parse_oauth_error(response: requests.Response) -> tuple[Optional[str], str]:
    try:
        body = response.json()
    except ValueError:
        return None, response.text[:200]
    return body.get("error"), body.get("error_description", "")
