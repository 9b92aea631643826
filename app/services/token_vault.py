"""
Token Vault

Keeps the single delegated Microsoft Graph credential alive.

- Tokens are encrypted at rest with Fernet (AES + HMAC), keyed by a
  PBKDF2 derivation of the operator secret
- Refresh happens on read when the access token has 5 minutes or less left,
  including when it is already expired; there is no background refresher
- A failed refresh leaves the stored credential untouched
- Refresh results are written with compare-and-set on the expires_at that was
  read, so two requests racing near expiry cannot clobber each other
"""

import asyncio
import base64
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import BaseModel

from app.config import Settings, get_settings
from app.integrations.teams.oauth import MicrosoftOAuthClient
from app.models.errors import (
    CredentialDecryptionError,
    GraphNetworkError,
    NoCredentialError,
    OAuthError,
    RefreshFailedError,
)
from app.services.credential_store import CredentialStore
from app.utils.helpers import from_epoch_ms, to_epoch_ms, utc_now

logger = logging.getLogger(__name__)

DEFAULT_IDENTITY = "admin"
PBKDF2_ITERATIONS = 390_000


class TokenCipher:
    """Symmetric encryption for tokens at rest."""

    def __init__(self, secret: str, salt: str):
        if not secret:
            raise ValueError("Encryption secret must not be empty")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt.encode("utf-8"),
            iterations=PBKDF2_ITERATIONS,
        )
        key = base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))
        self._fernet = Fernet(key)

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError, ValueError) as e:
            raise CredentialDecryptionError(
                "Stored token cannot be decrypted; the encryption key may have "
                "changed. Re-authorize with Teams."
            ) from e


class StoredCredential(BaseModel):
    """Credential as persisted: both tokens are ciphertext."""

    access_token: str
    refresh_token: str
    expires_at_ms: int
    scope: str = ""
    updated_at_ms: int = 0


class AuthStatus(BaseModel):
    """Read-only view of the credential for status pages."""

    is_authenticated: bool
    expires_at: Optional[datetime] = None
    seconds_until_expiry: Optional[int] = None
    needs_refresh: bool = False
    scope: Optional[str] = None
    last_refreshed: Optional[datetime] = None
    error: Optional[str] = None


@dataclass
class _RefreshedTokens:
    access_token: str
    record: StoredCredential


class TokenVault:
    """Owns the one credential of the deployment's admin identity."""

    def __init__(
        self,
        store: CredentialStore,
        oauth_client: MicrosoftOAuthClient,
        cipher: TokenCipher,
        identity: str = DEFAULT_IDENTITY,
        refresh_threshold: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = utc_now,
    ):
        self.credential_store = store
        self.oauth_client = oauth_client
        self.cipher = cipher
        self.identity = identity
        self.refresh_threshold_ms = int(refresh_threshold.total_seconds() * 1000)
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        store: CredentialStore,
        oauth_client: MicrosoftOAuthClient,
        settings: Optional[Settings] = None,
    ) -> "TokenVault":
        settings = settings or get_settings()
        return cls(
            store=store,
            oauth_client=oauth_client,
            cipher=TokenCipher(settings.encryption_key, settings.encryption_salt),
            refresh_threshold=timedelta(seconds=settings.token_refresh_threshold_seconds),
        )

    @property
    def _key(self) -> str:
        return f"credential:{self.identity}"

    def _now_ms(self) -> int:
        return to_epoch_ms(self.clock())

    def _load(self) -> Optional[StoredCredential]:
        raw = self.credential_store.get(self._key)
        if raw is None:
            return None
        return StoredCredential.model_validate(raw)

    def _needs_refresh(self, record: StoredCredential) -> bool:
        return record.expires_at_ms - self._now_ms() <= self.refresh_threshold_ms

    def _build_record(
        self, access_token: str, refresh_token: str, expires_in_seconds: int, scope: str
    ) -> StoredCredential:
        now_ms = self._now_ms()
        return StoredCredential(
            access_token=self.cipher.encrypt(access_token),
            refresh_token=self.cipher.encrypt(refresh_token),
            expires_at_ms=now_ms + int(expires_in_seconds) * 1000,
            scope=scope or "",
            updated_at_ms=now_ms,
        )

    async def get_live_access_token(self) -> str:
        """
        Return an access token with more than the refresh threshold left.

        Raises:
            NoCredentialError: nothing stored yet
            RefreshFailedError: refresh exchange failed (credential kept)
            CredentialDecryptionError: ciphertext unreadable with current key
        """
        record = await asyncio.to_thread(self._load)
        if record is None:
            logger.warning("No Teams credential stored; admin must authorize first")
            raise NoCredentialError("No Teams credential stored - please authorize with Teams")

        remaining_ms = record.expires_at_ms - self._now_ms()
        if remaining_ms > self.refresh_threshold_ms:
            return self.cipher.decrypt(record.access_token)

        state = "expired" if remaining_ms <= 0 else "expiring soon"
        logger.info(f"Access token {state} ({remaining_ms // 1000}s left), refreshing")
        refreshed = await self._refresh(record)
        return refreshed.access_token

    async def force_refresh(self) -> str:
        """Refresh regardless of remaining lifetime."""
        record = await asyncio.to_thread(self._load)
        if record is None:
            raise NoCredentialError("No Teams credential stored - please authorize with Teams")
        refreshed = await self._refresh(record)
        return refreshed.access_token

    async def _refresh(self, record: StoredCredential) -> _RefreshedTokens:
        refresh_token = self.cipher.decrypt(record.refresh_token)
        if not refresh_token:
            raise RefreshFailedError("Stored refresh token is empty")

        try:
            tokens = await self.oauth_client.refresh(refresh_token)
        except (OAuthError, GraphNetworkError) as e:
            logger.error(f"Token refresh failed, keeping stored credential: {e}")
            raise RefreshFailedError(f"Token refresh failed: {e}") from e

        if not tokens.access_token:
            logger.error("Refresh response did not contain an access token")
            raise RefreshFailedError("Refresh response did not contain an access token")

        new_record = self._build_record(
            tokens.access_token,
            tokens.refresh_token or refresh_token,
            tokens.expires_in,
            record.scope,  # Keep the consented scope
        )

        expected_expiry = record.expires_at_ms
        swapped = await asyncio.to_thread(
            self.credential_store.compare_and_set,
            self._key,
            lambda current: current is not None and current.get("expires_at_ms") == expected_expiry,
            new_record.model_dump(),
        )
        if swapped:
            logger.info("Refreshed Teams credential saved")
            return _RefreshedTokens(tokens.access_token, new_record)

        # Another request refreshed (or the operator revoked) in between
        current = await asyncio.to_thread(self._load)
        if current is None:
            raise NoCredentialError("Teams credential was revoked during refresh")
        if not self._needs_refresh(current):
            logger.info("Concurrent refresh already stored a live token, using it")
            return _RefreshedTokens(self.cipher.decrypt(current.access_token), current)
        return _RefreshedTokens(tokens.access_token, new_record)

    def store(
        self, access_token: str, refresh_token: str, expires_in_seconds: int, scope: str
    ) -> None:
        """Encrypt and upsert a full token set. Overwrites the previous one."""
        if not access_token or not access_token.strip():
            raise ValueError("Valid access token is required")
        if not refresh_token or not refresh_token.strip():
            raise ValueError("Valid refresh token is required")

        record = self._build_record(access_token, refresh_token, expires_in_seconds, scope)
        self.credential_store.put(self._key, record.model_dump())
        logger.info(
            f"Stored Teams credential for '{self.identity}', "
            f"expires at {from_epoch_ms(record.expires_at_ms).isoformat()}"
        )

    def revoke(self) -> None:
        self.credential_store.delete(self._key)
        logger.info(f"Teams credential for '{self.identity}' deleted")

    def status(self) -> AuthStatus:
        record = self._load()
        if record is None:
            return AuthStatus(is_authenticated=False, error="No authentication token found")

        remaining_ms = record.expires_at_ms - self._now_ms()
        is_valid = remaining_ms > 0
        needs_refresh = remaining_ms <= self.refresh_threshold_ms
        error = None
        if not is_valid:
            error = "Token has expired"
        elif needs_refresh:
            error = "Token needs refresh"

        return AuthStatus(
            is_authenticated=is_valid,
            expires_at=from_epoch_ms(record.expires_at_ms),
            seconds_until_expiry=round(remaining_ms / 1000),
            needs_refresh=needs_refresh,
            scope=record.scope,
            last_refreshed=from_epoch_ms(record.updated_at_ms) if record.updated_at_ms else None,
            error=error,
        )
