"""
Azure DevOps Service Hook Models

Only the fields the relay reads are typed; everything else in the body is
kept (extra="allow") so the raw event can be logged or inspected later.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Passthrough(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class EventMessage(_Passthrough):
    text: Optional[str] = None
    html: Optional[str] = None
    markdown: Optional[str] = None


class Repository(_Passthrough):
    id: Optional[str] = None
    name: Optional[str] = None
    web_url: Optional[str] = Field(None, alias="webUrl")
    url: Optional[str] = None


class IdentityRef(_Passthrough):
    display_name: Optional[str] = Field(None, alias="displayName")
    unique_name: Optional[str] = Field(None, alias="uniqueName")
    id: Optional[str] = None


class Link(_Passthrough):
    href: Optional[str] = None


class ResourceLinks(_Passthrough):
    web: Optional[Link] = None


class PullRequestResource(_Passthrough):
    pull_request_id: Optional[int] = Field(None, alias="pullRequestId")
    id: Optional[int] = None
    status: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    source_ref_name: Optional[str] = Field(None, alias="sourceRefName")
    target_ref_name: Optional[str] = Field(None, alias="targetRefName")
    repository: Optional[Repository] = None
    created_by: Optional[IdentityRef] = Field(None, alias="createdBy")
    url: Optional[str] = None
    creation_date: Optional[str] = Field(None, alias="creationDate")
    links: Optional[ResourceLinks] = Field(None, alias="_links")


class AzureDevOpsWebhook(_Passthrough):
    """Service hook envelope. eventType is the only field that must be present."""

    event_type: str = Field(..., alias="eventType", min_length=1)
    id: Optional[str] = None
    subscription_id: Optional[str] = Field(None, alias="subscriptionId")
    notification_id: Optional[int] = Field(None, alias="notificationId")
    publisher_id: Optional[str] = Field(None, alias="publisherId")
    message: Optional[EventMessage] = None
    detailed_message: Optional[EventMessage] = Field(None, alias="detailedMessage")
    resource: Optional[PullRequestResource] = None
    resource_version: Optional[str] = Field(None, alias="resourceVersion")
    resource_containers: Optional[Dict[str, Any]] = Field(None, alias="resourceContainers")
    created_date: Optional[str] = Field(None, alias="createdDate")

    @property
    def event_key(self) -> Optional[str]:
        """Stable identifier for the notification, when the publisher sent one."""
        if self.id:
            return self.id
        if self.notification_id is not None:
            return str(self.notification_id)
        return None
