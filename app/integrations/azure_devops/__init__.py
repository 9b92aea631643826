# Azure DevOps service hook integration
from app.integrations.azure_devops.models import AzureDevOpsWebhook
from app.integrations.azure_devops.parser import (
    RoutingDecision,
    RoutingFilter,
    event_id,
    is_accepted_event,
    normalize,
    parse_webhook,
    project_from_url,
)

__all__ = [
    "AzureDevOpsWebhook",
    "RoutingDecision",
    "RoutingFilter",
    "event_id",
    "is_accepted_event",
    "normalize",
    "parse_webhook",
    "project_from_url",
]
