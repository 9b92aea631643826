"""
Azure DevOps Webhook Parser

Turns a raw service hook body into an AzureDevOpsWebhook and then into the
provider-agnostic NormalizedEvent the formatter consumes.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Union
from urllib.parse import urlparse

from pydantic import ValidationError

from app.integrations.azure_devops.models import AzureDevOpsWebhook
from app.models.delivery import (
    UNKNOWN_AUTHOR,
    UNKNOWN_BRANCH,
    UNKNOWN_REPOSITORY,
    UNKNOWN_TITLE,
    UNKNOWN_URL,
    NormalizedEvent,
)
from app.models.errors import InvalidPayloadError
from app.utils.helpers import first_non_empty, flatten_list, strip_ref_name

logger = logging.getLogger(__name__)

RawPayload = Union[bytes, str, dict]

FILTER_MODE_OFF = "off"
FILTER_MODE_EXACT = "exact"


def parse_webhook(raw: RawPayload) -> AzureDevOpsWebhook:
    """
    Parse and validate a service hook body.

    Args:
        raw: Request body as bytes, text, or an already decoded JSON object

    Returns:
        Validated AzureDevOpsWebhook

    Raises:
        InvalidPayloadError: Body is not JSON, not an object, or fails the schema
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidPayloadError("Webhook body is not valid UTF-8") from e

    if isinstance(raw, str):
        if not raw.strip():
            raise InvalidPayloadError("Webhook body is empty")
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidPayloadError(f"Webhook body is not valid JSON: {e.msg}") from e

    if not isinstance(raw, dict):
        raise InvalidPayloadError("Webhook body must be a JSON object")

    try:
        return AzureDevOpsWebhook.model_validate(raw)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'body'}: {err['msg']}"
            for err in e.errors()
        )
        logger.warning(f"Webhook failed schema validation: {problems}")
        raise InvalidPayloadError(f"Invalid webhook payload: {problems}") from e


def is_accepted_event(event_type: Optional[str], accepted: Iterable[str]) -> bool:
    """True when event_type is one of the configured accepted types."""
    if not event_type:
        return False
    return event_type in set(accepted)


def event_id(webhook: AzureDevOpsWebhook) -> str:
    """Publisher-assigned id of the notification, or a fresh one when absent."""
    return webhook.event_key or str(uuid.uuid4())


def normalize(webhook: AzureDevOpsWebhook, mentions: Any = None) -> NormalizedEvent:
    """
    Project a pull request webhook into a NormalizedEvent.

    Missing fields are replaced with fixed placeholders so the formatter never
    sees None.

    Raises:
        InvalidPayloadError: The event carries no resource block
    """
    resource = webhook.resource
    if resource is None:
        raise InvalidPayloadError("No resource data in webhook")

    message_text = webhook.message.text if webhook.message else None
    repository = resource.repository
    web_link = resource.links.web.href if resource.links and resource.links.web else None

    return NormalizedEvent(
        title=first_non_empty(resource.title, message_text) or UNKNOWN_TITLE,
        author=first_non_empty(resource.created_by.display_name if resource.created_by else None)
        or UNKNOWN_AUTHOR,
        repository_name=first_non_empty(repository.name if repository else None) or UNKNOWN_REPOSITORY,
        source_branch=strip_ref_name(resource.source_ref_name) or UNKNOWN_BRANCH,
        target_branch=strip_ref_name(resource.target_ref_name) or UNKNOWN_BRANCH,
        url=first_non_empty(web_link, resource.url, repository.url if repository else None) or UNKNOWN_URL,
        description=first_non_empty(resource.description, message_text) or "",
        mentions=tuple(flatten_list(mentions)),
    )


def repository_url(webhook: AzureDevOpsWebhook) -> Optional[str]:
    resource = webhook.resource
    if resource is None or resource.repository is None:
        return None
    return first_non_empty(resource.repository.web_url, resource.repository.url)


def project_from_url(url: Optional[str]) -> Optional[str]:
    """
    Extract the project name from an Azure DevOps repository URL.

    https://dev.azure.com/org/project/_git/repo → project. URLs without a
    _git segment give their last path segment.
    """
    if not url:
        return None
    segments = [segment for segment in urlparse(url).path.split("/") if segment]
    if not segments:
        return None
    if "_git" in segments:
        index = segments.index("_git")
        if index > 0:
            return segments[index - 1]
    return segments[-1]


def _organization_key(url: str) -> str:
    """host plus first path segment, lowercased: dev.azure.com/org."""
    parsed = urlparse(url if "://" in url else f"https://{url}")
    host = (parsed.hostname or "").lower()
    segments = [segment for segment in parsed.path.split("/") if segment]
    # Legacy org.visualstudio.com hosts carry the organization in the host name
    if host.endswith("visualstudio.com") or not segments:
        return host
    return f"{host}/{segments[0].lower()}"


@dataclass
class RoutingDecision:
    accepted: bool
    reason: Optional[str] = None


@dataclass
class RoutingFilter:
    """
    Organization/project match between a subscription and an incoming event.

    Mode "off" accepts everything. Mode "exact" rejects when the subscription
    names a project and the event's repository URL names another one, or when
    the event's repository lives in another organization. Events that do not
    carry a repository URL are accepted.
    """

    organization_url: Optional[str] = None
    project: Optional[str] = None
    mode: str = FILTER_MODE_EXACT

    def evaluate(self, webhook: AzureDevOpsWebhook) -> RoutingDecision:
        if self.mode == FILTER_MODE_OFF:
            return RoutingDecision(accepted=True)

        resource_url = repository_url(webhook)
        if not resource_url:
            return RoutingDecision(accepted=True)

        if self.organization_url:
            expected_org = _organization_key(self.organization_url)
            actual_org = _organization_key(resource_url)
            if expected_org and actual_org != expected_org:
                return RoutingDecision(
                    accepted=False,
                    reason=f"organization mismatch - expected {expected_org}, got {actual_org}",
                )

        if self.project:
            actual_project = project_from_url(resource_url)
            if actual_project and actual_project.lower() != self.project.lower():
                return RoutingDecision(
                    accepted=False,
                    reason=f"project filter mismatch - expected {self.project}, got {actual_project}",
                )

        return RoutingDecision(accepted=True)
