"""
Service wiring for the API routes.

One instance of each collaborator per process, built lazily from settings.
Routes receive them through FastAPI's Depends so tests can swap them with
app.dependency_overrides.
"""

from functools import lru_cache

from app.config import get_settings
from app.integrations.teams import GraphMessagingClient, MicrosoftOAuthClient, TargetResolver
from app.services.credential_store import (
    CredentialStore,
    InMemoryCredentialStore,
    JsonFileCredentialStore,
)
from app.services.delivery_log import InMemoryDeliveryLog, JsonlDeliveryLog
from app.services.formatter import MessageFormatter
from app.services.pipeline import DeliveryPipeline
from app.services.subscriptions import SubscriptionStore
from app.services.token_vault import TokenVault


@lru_cache
def get_credential_store() -> CredentialStore:
    settings = get_settings()
    if settings.credential_store_path:
        return JsonFileCredentialStore(settings.credential_store_path)
    return InMemoryCredentialStore()


@lru_cache
def get_oauth_client() -> MicrosoftOAuthClient:
    return MicrosoftOAuthClient(get_settings())


@lru_cache
def get_token_vault() -> TokenVault:
    return TokenVault.from_settings(get_credential_store(), get_oauth_client(), get_settings())


@lru_cache
def get_graph_client() -> GraphMessagingClient:
    return GraphMessagingClient(get_token_vault(), get_settings())


@lru_cache
def get_target_resolver() -> TargetResolver:
    return TargetResolver(get_graph_client(), max_teams=get_settings().discovery_max_teams)


@lru_cache
def get_formatter() -> MessageFormatter:
    return MessageFormatter()


@lru_cache
def get_delivery_log():
    settings = get_settings()
    if settings.delivery_log_path:
        return JsonlDeliveryLog(settings.delivery_log_path)
    return InMemoryDeliveryLog()


@lru_cache
def get_subscription_store() -> SubscriptionStore:
    return SubscriptionStore.from_yaml(get_settings().subscriptions_path)


@lru_cache
def get_delivery_pipeline() -> DeliveryPipeline:
    return DeliveryPipeline(
        token_vault=get_token_vault(),
        resolver=get_target_resolver(),
        formatter=get_formatter(),
        delivery_log=get_delivery_log(),
        settings=get_settings(),
    )
