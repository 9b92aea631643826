"""
Subscription Store

A subscription ties one Azure DevOps organization/project to one Teams
destination. Records are read from a YAML file:

    subscriptions:
      - id: web-team
        name: Web team PRs
        azure_devops_org_url: https://dev.azure.com/contoso
        azure_devops_project: web
        target_chat_id: "19:abc@thread.v2"
        target_chat_type: group
        enable_mentions: true
        mention_users: [alice, bob]
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ValidationError, field_validator

from app.models.delivery import ConfiguredTarget, TargetKind
from app.utils.helpers import flatten_list

logger = logging.getLogger(__name__)

CHAT_TYPES = {"oneOnOne", "group", "meeting", "chat"}
CHANNEL_TYPES = {"channel"}


class SubscriptionError(Exception):
    """Raised when the subscriptions file cannot be read or is malformed."""


class Subscription(BaseModel):
    id: str
    name: str = ""
    azure_devops_org_url: str = ""
    azure_devops_project: Optional[str] = None
    target_chat_id: str
    target_chat_name: Optional[str] = None
    target_chat_type: Optional[str] = None
    target_team_id: Optional[str] = None
    enable_mentions: bool = False
    mention_users: List[str] = []
    webhook_secret: Optional[str] = None
    is_active: bool = True

    @field_validator("mention_users", mode="before")
    @classmethod
    def _flatten_mentions(cls, value: Any) -> List[str]:
        return flatten_list(value)

    @property
    def target_kind(self) -> TargetKind:
        if self.target_chat_type in CHAT_TYPES:
            return TargetKind.CHAT
        if self.target_chat_type in CHANNEL_TYPES:
            return TargetKind.CHANNEL
        return TargetKind.UNKNOWN

    @property
    def mentions(self) -> List[str]:
        return list(self.mention_users) if self.enable_mentions else []

    def to_configured_target(self) -> ConfiguredTarget:
        return ConfiguredTarget(
            id=self.target_chat_id,
            kind_hint=self.target_kind,
            team_id=self.target_team_id or None,
        )


class SubscriptionStore:
    """In-memory view of the subscriptions, optionally backed by a YAML file."""

    def __init__(self, subscriptions: Optional[List[Subscription]] = None):
        self._lock = threading.Lock()
        self._subscriptions: Dict[str, Subscription] = {}
        for subscription in subscriptions or []:
            self._subscriptions[subscription.id] = subscription

    @classmethod
    def from_yaml(cls, path: str | Path) -> "SubscriptionStore":
        """
        Load subscriptions from a YAML file.

        A missing file yields an empty store so the service can start before
        any subscription is configured.

        Raises:
            SubscriptionError: File is not valid YAML or a record is invalid
        """
        path = Path(path)
        if not path.exists():
            logger.warning(f"Subscriptions file {path} not found, starting with none")
            return cls()

        try:
            with path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse subscriptions file {path}: {e}")
            raise SubscriptionError(f"Invalid YAML in {path}: {e}") from e

        records = data.get("subscriptions", []) if isinstance(data, dict) else data
        if not isinstance(records, list):
            raise SubscriptionError(f"{path}: 'subscriptions' must be a list")

        subscriptions = []
        for index, record in enumerate(records):
            try:
                subscriptions.append(Subscription.model_validate(record))
            except ValidationError as e:
                raise SubscriptionError(f"{path}: subscription #{index} is invalid: {e}") from e

        logger.info(f"Loaded {len(subscriptions)} subscriptions from {path}")
        return cls(subscriptions)

    def add(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions[subscription.id] = subscription

    def get(self, subscription_id: str) -> Optional[Subscription]:
        with self._lock:
            return self._subscriptions.get(subscription_id)

    def get_active(self, subscription_id: str) -> Optional[Subscription]:
        """The subscription with this id, or None when unknown or inactive."""
        subscription = self.get(subscription_id)
        if subscription is None or not subscription.is_active:
            return None
        return subscription

    def first_active(self) -> Optional[Subscription]:
        with self._lock:
            for subscription in self._subscriptions.values():
                if subscription.is_active:
                    return subscription
        return None

    def all(self) -> List[Subscription]:
        with self._lock:
            return list(self._subscriptions.values())
