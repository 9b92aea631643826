"""
Azure DevOps Webhook Routes

Service hooks POST here; each request runs one delivery pipeline and maps
its DeliveryAttempt to an HTTP status:

- 200: delivered, or handled as an ignored event
- 400: invalid payload
- 401: webhook signature check failed
- 404: unknown or inactive subscription
- 202: Teams call timed out, notification may be delayed
- 500: anything else
"""

import asyncio
import hmac
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from app.api.dependencies import (
    get_delivery_log,
    get_delivery_pipeline,
    get_subscription_store,
)
from app.config import Settings, get_settings
from app.integrations.azure_devops import RoutingFilter
from app.models.delivery import DeliveryAttempt, DeliveryStats
from app.models.errors import ErrorClass
from app.services.pipeline import DeliveryOptions, DeliveryPipeline
from app.services.subscriptions import Subscription, SubscriptionStore

logger = logging.getLogger(__name__)
router = APIRouter()

SIGNATURE_HEADER = "x-azure-devops-signature"
AZURE_DEVOPS_USER_AGENTS = ("Azure DevOps", "VSTS")


class WebhookResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    message_id: Optional[str] = Field(None, serialization_alias="messageId")
    event_id: Optional[str] = Field(None, serialization_alias="eventId")
    config_id: Optional[str] = Field(None, serialization_alias="configId")
    formatter_used: Optional[str] = Field(None, serialization_alias="formatterUsed")
    error_class: Optional[str] = Field(None, serialization_alias="errorClass")
    error: Optional[str] = None


def verify_webhook_signature(
    request: Request, settings: Settings, subscription: Optional[Subscription] = None
) -> bool:
    """
    Decide whether a webhook request is trusted.

    Checked in order: the skip flag; a shared secret (subscription first,
    then global) that must equal the signature header; Azure DevOps user
    agent with a JSON body; finally, anything outside production.
    """
    if settings.skip_webhook_signature:
        return True

    secret = (subscription.webhook_secret if subscription else None) or settings.webhook_secret
    if secret:
        signature = request.headers.get(SIGNATURE_HEADER, "")
        return hmac.compare_digest(signature.encode("utf-8"), secret.encode("utf-8"))

    user_agent = request.headers.get("user-agent", "")
    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type and any(agent in user_agent for agent in AZURE_DEVOPS_USER_AGENTS):
        return True

    return not settings.is_production


def status_code_for(attempt: DeliveryAttempt) -> int:
    if attempt.succeeded:
        return 200
    if attempt.error_class == ErrorClass.INVALID_PAYLOAD:
        return 400
    if attempt.error_class == ErrorClass.NETWORK_TIMEOUT:
        return 202
    return 500


def _response_for(attempt: DeliveryAttempt) -> JSONResponse:
    if attempt.error_class == ErrorClass.IGNORED:
        message = attempt.error_message or "Event ignored"
    elif attempt.succeeded:
        message = "Pull request notification sent successfully"
    elif attempt.error_class == ErrorClass.NETWORK_TIMEOUT:
        message = "Webhook processed, notification may be delayed"
    else:
        message = "Failed to deliver notification"

    body = WebhookResponse(
        success=attempt.succeeded,
        message=message,
        message_id=attempt.provider_message_id,
        event_id=attempt.event_id,
        config_id=attempt.config_id,
        formatter_used=attempt.formatter_used.value if attempt.formatter_used else None,
        error_class=attempt.error_class.value if attempt.error_class else None,
        error=None if attempt.succeeded else attempt.error_message,
    )
    return JSONResponse(
        status_code=status_code_for(attempt),
        content=body.model_dump(by_alias=True, exclude_none=True),
    )


async def _handle_webhook(
    request: Request,
    subscription: Subscription,
    pipeline: DeliveryPipeline,
    settings: Settings,
) -> JSONResponse:
    if not verify_webhook_signature(request, settings, subscription):
        logger.warning(f"Rejected webhook for subscription {subscription.id}: invalid signature")
        return JSONResponse(
            status_code=401,
            content={"success": False, "message": "Invalid signature", "error": "Invalid signature"},
        )

    body = await request.body()
    options = DeliveryOptions(
        config_id=subscription.id,
        mentions=subscription.mentions,
        routing_filter=RoutingFilter(
            organization_url=subscription.azure_devops_org_url or None,
            project=subscription.azure_devops_project,
            mode=settings.routing_filter_mode,
        ),
    )
    attempt = await pipeline.deliver(subscription.to_configured_target(), body, options)
    return _response_for(attempt)


@router.post("/azure-devops/{config_id}")
async def receive_webhook(
    config_id: str,
    request: Request,
    subscriptions: SubscriptionStore = Depends(get_subscription_store),
    pipeline: DeliveryPipeline = Depends(get_delivery_pipeline),
    settings: Settings = Depends(get_settings),
):
    """Deliver one Azure DevOps service hook for the given subscription."""
    subscription = subscriptions.get_active(config_id)
    if subscription is None:
        logger.warning(f"Webhook for unknown or inactive subscription {config_id}")
        return JSONResponse(
            status_code=404,
            content={"success": False, "message": f"No active subscription '{config_id}'"},
        )
    return await _handle_webhook(request, subscription, pipeline, settings)


@router.get("/azure-devops/{config_id}")
async def webhook_info(
    config_id: str,
    subscriptions: SubscriptionStore = Depends(get_subscription_store),
):
    """Endpoint description for operators wiring up the service hook."""
    subscription = subscriptions.get(config_id)
    if subscription is None:
        raise HTTPException(status_code=404, detail=f"Subscription '{config_id}' not found")

    return {
        "message": "Azure DevOps webhook endpoint",
        "configId": subscription.id,
        "configName": subscription.name,
        "isActive": subscription.is_active,
        "targetChatId": subscription.target_chat_id,
        "targetChatName": subscription.target_chat_name,
        "targetKind": subscription.target_kind.value,
        "project": subscription.azure_devops_project,
        "mentionsEnabled": subscription.enable_mentions,
        "supportedEvents": get_settings().accepted_event_types,
    }


@router.post("/azure-devops")
async def receive_legacy_webhook(
    request: Request,
    subscriptions: SubscriptionStore = Depends(get_subscription_store),
    pipeline: DeliveryPipeline = Depends(get_delivery_pipeline),
    settings: Settings = Depends(get_settings),
):
    """Single-endpoint variant that delivers to the first active subscription."""
    subscription = subscriptions.first_active()
    if subscription is None:
        logger.warning("Legacy webhook received but no active subscription is configured")
        return JSONResponse(
            status_code=404,
            content={"success": False, "message": "No active subscription configured"},
        )
    return await _handle_webhook(request, subscription, pipeline, settings)


@router.get("/azure-devops")
async def legacy_webhook_info(subscriptions: SubscriptionStore = Depends(get_subscription_store)):
    subscription = subscriptions.first_active()
    return {
        "message": "Azure DevOps webhook endpoint is ready",
        "configured": subscription is not None,
        "configId": subscription.id if subscription else None,
    }


@router.get("/stats", response_model=DeliveryStats)
async def webhook_stats(
    config_id: Optional[str] = Query(None, description="Limit to one subscription"),
    delivery_log=Depends(get_delivery_log),
):
    return await asyncio.to_thread(delivery_log.stats, config_id=config_id)


@router.get("/logs", response_model=List[DeliveryAttempt])
async def webhook_logs(
    limit: int = Query(50, ge=1, le=500, description="Maximum entries, newest first"),
    config_id: Optional[str] = Query(None, description="Limit to one subscription"),
    delivery_log=Depends(get_delivery_log),
):
    return await asyncio.to_thread(delivery_log.recent, limit=limit, config_id=config_id)
