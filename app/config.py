from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from functools import lru_cache
from typing import List, Literal, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "PR Relay"
    debug: bool = False
    environment: str = "development"  # "production" enforces webhook signatures

    # Microsoft Teams / Entra ID OAuth (delegated admin identity)
    teams_client_id: str = ""
    teams_client_secret: str = ""
    teams_tenant_id: str = ""
    teams_redirect_uri: str = "http://localhost:8000/api/auth/teams/callback"
    teams_scopes: List[str] = [
        "https://graph.microsoft.com/Chat.ReadWrite",
        "https://graph.microsoft.com/ChannelMessage.Send",
        "https://graph.microsoft.com/Team.ReadBasic.All",
        "https://graph.microsoft.com/Channel.ReadBasic.All",
        "https://graph.microsoft.com/User.Read",
        "offline_access",
    ]

    # Token encryption
    encryption_key: str = "default-key-change-in-production"
    encryption_salt: str = "pr-relay-token-vault"

    # Microsoft Graph
    graph_base_url: str = "https://graph.microsoft.com/v1.0"
    login_base_url: str = "https://login.microsoftonline.com"
    http_timeout_seconds: float = 15.0  # Every outbound call is bounded
    token_refresh_threshold_seconds: int = 300
    discovery_max_teams: int = 50
    graph_max_pages: int = 20

    # Azure DevOps webhooks
    accepted_event_types: List[str] = ["git.pullrequest.created"]
    webhook_secret: str = ""
    skip_webhook_signature: bool = False
    routing_filter_mode: Literal["exact", "off"] = "exact"

    # Collaborator storage
    credential_store_path: Optional[str] = None  # In-memory when unset
    delivery_log_path: Optional[str] = None  # In-memory when unset
    subscriptions_path: str = "subscriptions.yaml"

    model_config = ConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()
