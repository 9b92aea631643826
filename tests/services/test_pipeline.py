"""
Tests for the delivery pipeline: one DeliveryAttempt per run, event
filtering, target discovery and the single HTML downgrade.
"""

import json
import threading
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from app.integrations.azure_devops import RoutingFilter
from app.integrations.teams.models import CardPayload, PlainPayload, Team
from app.integrations.teams.oauth import MicrosoftOAuthClient
from app.integrations.teams.resolver import TargetResolver
from app.models.delivery import (
    ConfiguredTarget,
    DeliveryOutcome,
    FormatterKind,
    TargetKind,
)
from app.models.errors import (
    ErrorClass,
    GraphApiError,
    GraphNetworkError,
    NoCredentialError,
    RefreshFailedError,
)
from app.services.credential_store import InMemoryCredentialStore
from app.services.delivery_log import InMemoryDeliveryLog
from app.services.formatter import MessageFormatter
from app.services.pipeline import DeliveryOptions, DeliveryPipeline
from app.services.token_vault import TokenCipher, TokenVault

TARGET = ConfiguredTarget(id="19:abc@thread.v2", kind_hint=TargetKind.UNKNOWN)
NOW = datetime(2026, 5, 4, 10, 30, 0, tzinfo=timezone.utc)

NOT_FOUND = GraphApiError(404, "NotFound", "Chat not found")
REJECTED = GraphApiError(400, "BadRequest", "Attachment content is invalid")


@pytest.fixture
def delivery_log():
    return InMemoryDeliveryLog()


@pytest.fixture
def pipeline(token_vault, graph_client, delivery_log, settings):
    return DeliveryPipeline(
        token_vault=token_vault,
        resolver=TargetResolver(graph_client, max_teams=settings.discovery_max_teams),
        formatter=MessageFormatter(),
        delivery_log=delivery_log,
        settings=settings,
        clock=lambda: NOW,
    )


@pytest.mark.asyncio
async def test_scenario_chat_delivery(pipeline, graph_client, delivery_log, pr_payload):
    attempt = await pipeline.deliver(TARGET, pr_payload)

    assert attempt.outcome == DeliveryOutcome.SUCCESS
    assert attempt.formatter_used == FormatterKind.CARD
    assert attempt.provider_message_id == "msg-chat"
    assert attempt.error_class is None
    assert attempt.target_id == "19:abc@thread.v2"
    assert attempt.resolved_kind == TargetKind.CHAT
    assert attempt.timestamp_ms == int(NOW.timestamp() * 1000)
    assert attempt.event_id
    assert delivery_log.recent() == [attempt]
    graph_client.send_to_chat.assert_awaited_once()
    sent_payload = graph_client.send_to_chat.await_args.args[1]
    assert isinstance(sent_payload, CardPayload)


@pytest.mark.asyncio
async def test_accepts_raw_bytes(pipeline, pr_payload):
    attempt = await pipeline.deliver(TARGET, json.dumps(pr_payload).encode("utf-8"))
    assert attempt.succeeded


@pytest.mark.asyncio
async def test_non_pr_event_is_ignored(pipeline, graph_client, token_vault, delivery_log, pr_payload):
    attempt = await pipeline.deliver(TARGET, {**pr_payload, "eventType": "git.push"})

    assert attempt.outcome == DeliveryOutcome.SUCCESS
    assert attempt.error_class == ErrorClass.IGNORED
    assert attempt.formatter_used is None
    assert attempt.event_type == "git.push"
    assert graph_client.provider_calls == 0
    token_vault.get_live_access_token.assert_not_awaited()
    assert len(delivery_log) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", [b"{broken", {"resource": {}}, "[]"])
async def test_invalid_payload(pipeline, graph_client, token_vault, delivery_log, raw):
    attempt = await pipeline.deliver(TARGET, raw)

    assert attempt.outcome == DeliveryOutcome.FAILED
    assert attempt.error_class == ErrorClass.INVALID_PAYLOAD
    assert graph_client.provider_calls == 0
    token_vault.get_live_access_token.assert_not_awaited()
    assert len(delivery_log) == 1


@pytest.mark.asyncio
async def test_pr_event_without_resource(pipeline, graph_client):
    attempt = await pipeline.deliver(TARGET, {"eventType": "git.pullrequest.created"})

    assert attempt.error_class == ErrorClass.INVALID_PAYLOAD
    assert graph_client.provider_calls == 0


@pytest.mark.asyncio
async def test_routing_filter_mismatch_is_ignored(pipeline, graph_client, full_pr_payload):
    options = DeliveryOptions(
        config_id="web-team",
        routing_filter=RoutingFilter("https://dev.azure.com/fabrikam", "Mobile"),
    )

    attempt = await pipeline.deliver(TARGET, full_pr_payload, options)

    assert attempt.succeeded
    assert attempt.error_class == ErrorClass.IGNORED
    assert attempt.config_id == "web-team"
    assert "project" in attempt.error_message
    assert graph_client.provider_calls == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "failure,error_class",
    [
        (NoCredentialError("none"), ErrorClass.NO_CREDENTIAL),
        (RefreshFailedError("invalid_grant"), ErrorClass.REFRESH_FAILED),
    ],
)
async def test_token_failure_sends_nothing(pipeline, graph_client, token_vault, pr_payload, failure, error_class):
    token_vault.get_live_access_token.side_effect = failure

    attempt = await pipeline.deliver(TARGET, pr_payload)

    assert attempt.outcome == DeliveryOutcome.FAILED
    assert attempt.error_class == error_class
    assert attempt.formatter_used is None
    assert graph_client.provider_calls == 0


@pytest.mark.asyncio
async def test_discovered_channel_gets_exactly_one_send(pipeline, graph_client, pr_payload):
    graph_client.send_to_chat.side_effect = NOT_FOUND
    graph_client.with_teams({"team-y": ["19:other@thread", "19:abc@thread.v2"]})

    attempt = await pipeline.deliver(TARGET, pr_payload)

    assert attempt.outcome == DeliveryOutcome.SUCCESS
    assert attempt.formatter_used == FormatterKind.CARD
    assert attempt.resolved_kind == TargetKind.CHANNEL
    assert attempt.team_id == "team-y"
    graph_client.send_to_channel.assert_awaited_once()
    assert graph_client.send_to_channel.await_args.args[:2] == ("team-y", "19:abc@thread.v2")


@pytest.mark.asyncio
async def test_unresolvable_target(pipeline, graph_client, delivery_log, pr_payload):
    graph_client.send_to_chat.side_effect = NOT_FOUND
    graph_client.with_teams({"t1": ["19:a@thread", "19:b@thread"], "t2": ["19:c@thread"]})

    attempt = await pipeline.deliver(TARGET, pr_payload)

    assert attempt.outcome == DeliveryOutcome.FAILED
    assert attempt.error_class == ErrorClass.TARGET_NOT_RESOLVABLE
    assert attempt.formatter_used == FormatterKind.CARD
    assert graph_client.provider_calls <= 2 * 2 + 1
    graph_client.send_to_channel.assert_not_awaited()
    assert len(delivery_log) == 1


@pytest.mark.asyncio
async def test_rejected_card_falls_back_to_html(pipeline, graph_client, delivery_log, pr_payload):
    graph_client.send_to_chat.side_effect = [REJECTED, "msg-html"]

    attempt = await pipeline.deliver(TARGET, pr_payload)

    assert attempt.outcome == DeliveryOutcome.SUCCESS
    assert attempt.formatter_used == FormatterKind.HTML
    assert attempt.provider_message_id == "msg-html"
    assert graph_client.send_to_chat.await_count == 2
    first, second = graph_client.send_to_chat.await_args_list
    assert isinstance(first.args[1], CardPayload)
    assert isinstance(second.args[1], PlainPayload)
    assert second.args[0] == "19:abc@thread.v2"
    assert delivery_log.recent() == [attempt]


@pytest.mark.asyncio
async def test_html_fallback_reuses_discovered_channel(pipeline, graph_client, pr_payload):
    graph_client.send_to_chat.side_effect = NOT_FOUND
    graph_client.send_to_channel.side_effect = [REJECTED, "msg-html"]
    graph_client.with_teams({"team-y": ["19:abc@thread.v2"]})

    attempt = await pipeline.deliver(TARGET, pr_payload)

    assert attempt.succeeded
    assert attempt.formatter_used == FormatterKind.HTML
    # No second discovery
    assert graph_client.list_joined_teams.await_count == 1
    assert graph_client.send_to_chat.await_count == 1
    assert graph_client.send_to_channel.await_args.args[0] == "team-y"


@pytest.mark.asyncio
async def test_html_fallback_failure_is_recorded_once(pipeline, graph_client, delivery_log, pr_payload):
    graph_client.send_to_chat.side_effect = [REJECTED, GraphApiError(400, "BadRequest", "Body too large")]

    attempt = await pipeline.deliver(TARGET, pr_payload)

    assert attempt.outcome == DeliveryOutcome.FAILED
    assert attempt.error_class == ErrorClass.PROVIDER_REJECTED
    assert attempt.formatter_used == FormatterKind.HTML
    assert graph_client.send_to_chat.await_count == 2
    assert len(delivery_log) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "failure,error_class",
    [
        (GraphNetworkError("timed out"), ErrorClass.NETWORK_TIMEOUT),
        (GraphApiError(401, "InvalidAuthenticationToken", "expired"), ErrorClass.UNAUTHORIZED),
    ],
)
async def test_no_fallback_for_timeouts_or_auth(pipeline, graph_client, pr_payload, failure, error_class):
    graph_client.send_to_chat.side_effect = failure

    attempt = await pipeline.deliver(TARGET, pr_payload)

    assert attempt.error_class == error_class
    assert attempt.formatter_used == FormatterKind.CARD
    assert graph_client.provider_calls == 1


@pytest.mark.asyncio
async def test_channel_hint_without_team_and_no_send(pipeline, graph_client, pr_payload):
    graph_client.list_joined_teams.side_effect = GraphApiError(403, "Forbidden", "Missing scope")
    target = ConfiguredTarget(id="19:abc@thread.v2", kind_hint=TargetKind.CHANNEL)

    attempt = await pipeline.deliver(target, pr_payload)

    assert attempt.error_class == ErrorClass.UNAUTHORIZED
    assert attempt.formatter_used is None


@pytest.mark.asyncio
async def test_unexpected_exception_is_recorded(pipeline, graph_client, delivery_log, pr_payload):
    graph_client.send_to_chat.side_effect = RuntimeError("boom")

    attempt = await pipeline.deliver(TARGET, pr_payload)

    assert attempt.outcome == DeliveryOutcome.FAILED
    assert attempt.error_class == ErrorClass.INTERNAL_ERROR
    assert attempt.error_message == "boom"
    assert len(delivery_log) == 1


@pytest.mark.asyncio
async def test_mentions_reach_the_card(pipeline, graph_client, pr_payload):
    await pipeline.deliver(TARGET, pr_payload, DeliveryOptions(mentions=["alice", "bob"]))

    card = graph_client.send_to_chat.await_args.args[1].card
    texts = [block.get("text", "") for block in card["body"]]
    assert any("@alice @bob - Please review!" in text for text in texts)


@pytest.mark.asyncio
async def test_log_write_failure_propagates(token_vault, graph_client, settings, pr_payload):
    class BrokenLog:
        def append(self, attempt):
            raise OSError("disk full")

    pipeline = DeliveryPipeline(
        token_vault, TargetResolver(graph_client), MessageFormatter(), BrokenLog(), settings
    )

    with pytest.raises(OSError):
        await pipeline.deliver(TARGET, pr_payload)


@pytest.mark.asyncio
async def test_each_run_logs_one_attempt(pipeline, graph_client, delivery_log, pr_payload):
    graph_client.list_joined_teams.return_value = [Team(id="t1")]
    payloads = [pr_payload, {**pr_payload, "eventType": "git.push"}, b"nope", pr_payload]

    for raw in payloads:
        await pipeline.deliver(TARGET, raw)

    assert len(delivery_log) == len(payloads)
    stats = delivery_log.stats()
    assert (stats.total, stats.success, stats.failed) == (4, 3, 1)


@pytest.mark.asyncio
async def test_card_rejection_mentioning_conversation_falls_back_to_html(pipeline, graph_client, pr_payload):
    graph_client.send_to_chat.side_effect = [
        GraphApiError(400, "BadRequest", "Adaptive card in conversation message is invalid"),
        "msg-html",
    ]

    attempt = await pipeline.deliver(TARGET, pr_payload)

    assert attempt.succeeded
    assert attempt.formatter_used == FormatterKind.HTML
    graph_client.list_joined_teams.assert_not_awaited()
    assert isinstance(graph_client.send_to_chat.await_args.args[1], PlainPayload)


@pytest.mark.asyncio
async def test_unreadable_token_response_is_recorded_as_refresh_failure(
    graph_client, delivery_log, settings, pr_payload
):
    response = MagicMock(status_code=200, ok=True)
    response.json.side_effect = json.JSONDecodeError("Expecting value", "<html>", 0)
    session = MagicMock()
    session.post.return_value = response
    vault = TokenVault(
        InMemoryCredentialStore(),
        MicrosoftOAuthClient(settings, session=session),
        TokenCipher("pipeline-secret", "pipeline-salt"),
        clock=lambda: NOW,
    )
    vault.store("access-1", "refresh-1", 10, "Chat.ReadWrite")
    pipeline = DeliveryPipeline(
        token_vault=vault,
        resolver=TargetResolver(graph_client),
        formatter=MessageFormatter(),
        delivery_log=delivery_log,
        settings=settings,
        clock=lambda: NOW,
    )

    attempt = await pipeline.deliver(TARGET, pr_payload)

    assert attempt.outcome == DeliveryOutcome.FAILED
    assert attempt.error_class == ErrorClass.REFRESH_FAILED
    assert graph_client.provider_calls == 0


@pytest.mark.asyncio
async def test_delivery_log_is_written_off_the_event_loop(token_vault, graph_client, settings, pr_payload):
    class ThreadRecordingLog(InMemoryDeliveryLog):
        def append(self, attempt):
            self.thread_id = threading.get_ident()
            super().append(attempt)

    delivery_log = ThreadRecordingLog()
    pipeline = DeliveryPipeline(
        token_vault=token_vault,
        resolver=TargetResolver(graph_client),
        formatter=MessageFormatter(),
        delivery_log=delivery_log,
        settings=settings,
    )

    await pipeline.deliver(TARGET, pr_payload)

    assert len(delivery_log) == 1
    assert delivery_log.thread_id != threading.get_ident()
