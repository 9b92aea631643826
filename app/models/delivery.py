"""
Delivery Data Models

Provider-agnostic shapes that flow through the delivery pipeline.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.errors import ErrorClass


# Literal placeholders substituted for absent webhook fields
UNKNOWN_TITLE = "Unknown PR"
UNKNOWN_AUTHOR = "Unknown Author"
UNKNOWN_REPOSITORY = "Unknown Repository"
UNKNOWN_BRANCH = "unknown"
UNKNOWN_URL = "#"


class TargetKind(str, Enum):
    """How a destination id is addressed in Graph."""

    CHAT = "chat"
    CHANNEL = "channel"
    UNKNOWN = "unknown"  # Caller did not say; must be discovered


class FormatterKind(str, Enum):
    CARD = "card"
    HTML = "html"


class DeliveryOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class NormalizedEvent(BaseModel):
    """Pull request event projected out of a provider webhook."""

    model_config = ConfigDict(frozen=True)

    title: str = UNKNOWN_TITLE
    author: str = UNKNOWN_AUTHOR
    repository_name: str = UNKNOWN_REPOSITORY
    source_branch: str = UNKNOWN_BRANCH
    target_branch: str = UNKNOWN_BRANCH
    url: str = UNKNOWN_URL
    description: str = ""
    mentions: tuple[str, ...] = ()


class MessageTarget(BaseModel):
    """A destination, possibly not yet classified."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: TargetKind = TargetKind.UNKNOWN
    team_id: Optional[str] = None


class ConfiguredTarget(BaseModel):
    """Destination as configured by an operator: a bare id plus a hint."""

    id: str
    kind_hint: TargetKind = TargetKind.UNKNOWN
    team_id: Optional[str] = None

    def to_message_target(self) -> MessageTarget:
        return MessageTarget(id=self.id, kind=self.kind_hint, team_id=self.team_id)


class DeliveryAttempt(BaseModel):
    """Terminal result of one pipeline run. Written to the log exactly once."""

    event_id: str
    target_id: str
    formatter_used: Optional[FormatterKind] = None  # None when nothing was sent
    outcome: DeliveryOutcome
    provider_message_id: Optional[str] = None
    error_class: Optional[ErrorClass] = None
    timestamp_ms: int

    # Context for operators reading the log
    config_id: Optional[str] = None
    event_type: Optional[str] = None
    error_message: Optional[str] = None
    resolved_kind: Optional[TargetKind] = None
    team_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == DeliveryOutcome.SUCCESS


class DeliveryStats(BaseModel):
    """Aggregate counters over the delivery log."""

    total: int = 0
    success: int = 0
    failed: int = 0
    success_rate: float = Field(100.0, description="Percent successful, 100 when empty")
