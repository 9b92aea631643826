# Shared data models
from app.models.delivery import (
    ConfiguredTarget,
    DeliveryAttempt,
    DeliveryOutcome,
    DeliveryStats,
    FormatterKind,
    MessageTarget,
    NormalizedEvent,
    TargetKind,
)
from app.models.errors import ErrorClass, RelayError

__all__ = [
    "ConfiguredTarget",
    "DeliveryAttempt",
    "DeliveryOutcome",
    "DeliveryStats",
    "FormatterKind",
    "MessageTarget",
    "NormalizedEvent",
    "TargetKind",
    "ErrorClass",
    "RelayError",
]
