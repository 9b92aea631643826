"""
Delivery Pipeline Orchestrator

Full pipeline orchestration:
Webhook -> Validate -> Filter -> Normalize -> Token -> Card -> Resolve + Send
-> (HTML fallback) -> Delivery log

Every call to deliver() ends in exactly one DeliveryAttempt, which is
appended to the delivery log once and returned.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from app.config import Settings, get_settings
from app.integrations.azure_devops import (
    RoutingFilter,
    event_id,
    is_accepted_event,
    normalize,
    parse_webhook,
)
from app.integrations.azure_devops.parser import RawPayload
from app.integrations.teams.resolver import ResolutionResult, TargetResolver
from app.models.delivery import (
    ConfiguredTarget,
    DeliveryAttempt,
    DeliveryOutcome,
    FormatterKind,
    MessageTarget,
)
from app.models.errors import ErrorClass, RelayError
from app.services.delivery_log import DeliveryLog
from app.services.formatter import MessageFormatter
from app.services.token_vault import TokenVault
from app.utils.helpers import to_epoch_ms, utc_now

logger = logging.getLogger(__name__)

UNPARSED_EVENT_ID = "unparsed"


@dataclass
class DeliveryOptions:
    """Per-subscription knobs for one delivery."""

    config_id: Optional[str] = None
    mentions: List[str] = field(default_factory=list)
    routing_filter: Optional[RoutingFilter] = None


@dataclass
class _RunContext:
    """What is known about the run so far, used to build the final attempt."""

    target_id: str
    config_id: Optional[str] = None
    event_id: str = UNPARSED_EVENT_ID
    event_type: Optional[str] = None


class DeliveryPipeline:
    """
    Orchestrates one webhook-to-Teams delivery.

    Pipeline steps:
    1. Validate the webhook body
    2. Filter by event type and subscription routing
    3. Normalize into a NormalizedEvent
    4. Acquire a live access token
    5. Format the Adaptive Card
    6. Resolve the target and send
    7. On ProviderRejected, resend once as HTML to the last known target
    """

    def __init__(
        self,
        token_vault: TokenVault,
        resolver: TargetResolver,
        formatter: MessageFormatter,
        delivery_log: DeliveryLog,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.token_vault = token_vault
        self.resolver = resolver
        self.formatter = formatter
        self.delivery_log = delivery_log
        self.settings = settings or get_settings()
        self.clock = clock

    async def deliver(
        self,
        configured_target: ConfiguredTarget,
        raw_payload: RawPayload,
        options: Optional[DeliveryOptions] = None,
    ) -> DeliveryAttempt:
        """
        Deliver one webhook to its configured Teams destination.

        Args:
            configured_target: Destination id with kind hint (and team id for channels)
            raw_payload: Webhook body as received
            options: Subscription id, mentions and routing filter

        Returns:
            The DeliveryAttempt that was appended to the delivery log
        """
        options = options or DeliveryOptions()
        context = _RunContext(target_id=configured_target.id, config_id=options.config_id)

        try:
            attempt = await self._run(context, configured_target, raw_payload, options)
        except Exception as e:
            logger.exception(f"Unexpected error delivering event {context.event_id}: {e}")
            attempt = self._attempt(
                context,
                DeliveryOutcome.FAILED,
                error_class=ErrorClass.INTERNAL_ERROR,
                error_message=str(e) or e.__class__.__name__,
            )

        await self._record(attempt)
        return attempt

    async def _run(
        self,
        context: _RunContext,
        configured_target: ConfiguredTarget,
        raw_payload: RawPayload,
        options: DeliveryOptions,
    ) -> DeliveryAttempt:
        # Step 1: Validate
        try:
            webhook = parse_webhook(raw_payload)
        except RelayError as e:
            return self._failed(context, e)

        context.event_id = event_id(webhook)
        context.event_type = webhook.event_type

        # Step 2: Filter
        if not is_accepted_event(webhook.event_type, self.settings.accepted_event_types):
            return self._ignored(context, f"Event type {webhook.event_type} is not handled")

        if options.routing_filter is not None:
            decision = options.routing_filter.evaluate(webhook)
            if not decision.accepted:
                return self._ignored(context, f"Event ignored ({decision.reason})")

        # Step 3: Normalize
        try:
            event = normalize(webhook, options.mentions)
        except RelayError as e:
            return self._failed(context, e)

        # Step 4: Acquire token
        try:
            await self.token_vault.get_live_access_token()
        except RelayError as e:
            return self._failed(context, e)

        # Step 5: Format
        card = self.formatter.format_rich_card(event)

        # Step 6: Resolve + send
        result = await self.resolver.deliver(configured_target.to_message_target(), card)
        logger.debug(f"Resolution trail for event {context.event_id}: {resolution_summary(result)}")
        if result.delivered:
            return self._succeeded(context, result.target, FormatterKind.CARD, result.message_id)

        formatter_used = FormatterKind.CARD if result.attempted_send else None
        if result.error_class != ErrorClass.PROVIDER_REJECTED:
            return self._attempt(
                context,
                DeliveryOutcome.FAILED,
                formatter_used=formatter_used,
                error_class=result.error_class or ErrorClass.INTERNAL_ERROR,
                error_message=str(result.error) if result.error else None,
                target=result.target,
            )

        # Step 7: Single formatter downgrade, same target, no rediscovery
        logger.warning(
            f"Teams rejected the card for {result.target.id} ({result.error}), retrying as HTML"
        )
        plain = self.formatter.format_plain_fallback(event)
        try:
            message_id = await self.resolver.resend(result.target, plain)
        except RelayError as e:
            return self._failed(context, e, FormatterKind.HTML, result.target)

        return self._succeeded(context, result.target, FormatterKind.HTML, message_id)

    async def _record(self, attempt: DeliveryAttempt) -> None:
        try:
            await asyncio.to_thread(self.delivery_log.append, attempt)
        except Exception as e:
            logger.error(f"Could not record delivery attempt for event {attempt.event_id}: {e}")
            raise

        summary = (
            f"Delivery of event {attempt.event_id} to {attempt.target_id}: "
            f"{attempt.outcome.value}"
            f"{f' ({attempt.error_class.value})' if attempt.error_class else ''}"
            f"{f' via {attempt.formatter_used.value}' if attempt.formatter_used else ''}"
        )
        if attempt.succeeded:
            logger.info(summary)
        elif attempt.error_class == ErrorClass.INVALID_PAYLOAD:
            logger.warning(summary)
        else:
            logger.error(f"{summary}: {attempt.error_message}")

    def _attempt(
        self,
        context: _RunContext,
        outcome: DeliveryOutcome,
        formatter_used: Optional[FormatterKind] = None,
        provider_message_id: Optional[str] = None,
        error_class: Optional[ErrorClass] = None,
        error_message: Optional[str] = None,
        target: Optional[MessageTarget] = None,
    ) -> DeliveryAttempt:
        return DeliveryAttempt(
            event_id=context.event_id,
            target_id=context.target_id,
            formatter_used=formatter_used,
            outcome=outcome,
            provider_message_id=provider_message_id,
            error_class=error_class,
            timestamp_ms=to_epoch_ms(self.clock()),
            config_id=context.config_id,
            event_type=context.event_type,
            error_message=error_message,
            resolved_kind=target.kind if target else None,
            team_id=target.team_id if target else None,
        )

    def _succeeded(
        self,
        context: _RunContext,
        target: MessageTarget,
        formatter_used: FormatterKind,
        message_id: Optional[str],
    ) -> DeliveryAttempt:
        return self._attempt(
            context,
            DeliveryOutcome.SUCCESS,
            formatter_used=formatter_used,
            provider_message_id=message_id,
            target=target,
        )

    def _ignored(self, context: _RunContext, reason: str) -> DeliveryAttempt:
        logger.info(f"Ignoring event {context.event_id}: {reason}")
        return self._attempt(
            context,
            DeliveryOutcome.SUCCESS,
            error_class=ErrorClass.IGNORED,
            error_message=reason,
        )

    def _failed(
        self,
        context: _RunContext,
        error: RelayError,
        formatter_used: Optional[FormatterKind] = None,
        target: Optional[MessageTarget] = None,
    ) -> DeliveryAttempt:
        return self._attempt(
            context,
            DeliveryOutcome.FAILED,
            formatter_used=formatter_used,
            error_class=error.error_class,
            error_message=str(error),
            target=target,
        )


def resolution_summary(result: ResolutionResult) -> str:
    """Readable trail of a resolution, e.g. unknown > probed_as_chat > delivered."""
    return " > ".join(state.value for state in result.transitions)
