"""
Target Resolver

Chats and team channels share the same "19:...@thread" id shape but are
addressed through different Graph endpoints. Operators usually configure a
bare id, so the resolver works out which one it is while sending.

States:

    UNKNOWN ─► PROBED_AS_CHAT ─► DELIVERED
                    │
                    ▼
            NOT_FOUND_AS_CHAT ─► SEARCHING_CHANNELS ─► FOUND ─► DELIVERED
                                        │
                                        ▼
                                    EXHAUSTED

Any state may also end in FAILED. Hinted targets skip straight to
SENDING_DIRECT. Nothing is cached between calls: conversations get
recreated and ids move, so every delivery resolves from scratch.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from app.integrations.teams.client import GraphMessagingClient, MessagePayload
from app.models.delivery import MessageTarget, TargetKind
from app.models.errors import (
    ErrorClass,
    GraphApiError,
    RelayError,
    TargetNotResolvableError,
)

logger = logging.getLogger(__name__)


class ResolutionState(str, Enum):
    UNKNOWN = "unknown"
    SENDING_DIRECT = "sending_direct"
    PROBED_AS_CHAT = "probed_as_chat"
    NOT_FOUND_AS_CHAT = "not_found_as_chat"
    SEARCHING_CHANNELS = "searching_channels"
    FOUND = "found"
    EXHAUSTED = "exhausted"
    DELIVERED = "delivered"
    FAILED = "failed"


TERMINAL_STATES = {ResolutionState.DELIVERED, ResolutionState.EXHAUSTED, ResolutionState.FAILED}

# States whose handler makes a send call
SENDING_STATES = {ResolutionState.SENDING_DIRECT, ResolutionState.PROBED_AS_CHAT, ResolutionState.FOUND}


@dataclass
class ResolutionResult:
    """Outcome of one resolve-and-send run."""

    target: MessageTarget  # Last known classification
    state: ResolutionState = ResolutionState.UNKNOWN
    message_id: Optional[str] = None
    error: Optional[Exception] = None
    error_class: Optional[ErrorClass] = None
    provider_calls: int = 0
    transitions: List[ResolutionState] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return self.state == ResolutionState.DELIVERED

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def attempted_send(self) -> bool:
        """True once any send call was made, whatever its outcome."""
        return any(state in SENDING_STATES for state in self.transitions)

    def move_to(self, state: ResolutionState) -> None:
        self.transitions.append(state)
        self.state = state

    def fail(self, error: Exception, error_class: ErrorClass) -> None:
        self.error = error
        self.error_class = error_class
        self.move_to(ResolutionState.FAILED)


class TargetResolver:
    """Resolves chat-vs-channel for a destination id and delivers to it."""

    def __init__(self, client: GraphMessagingClient, max_teams: int = 50):
        self.client = client
        self.max_teams = max_teams

    async def deliver(self, target: MessageTarget, payload: MessagePayload) -> ResolutionResult:
        """
        Send payload to target, discovering the channel when the id is not a chat.

        At most one chat probe and one channel retry are made. The hot path
        (correct chat id) costs one call; the cold path adds one team
        listing plus one channel listing per joined team.
        """
        result = ResolutionResult(target=target)
        result.transitions.append(result.state)

        if target.kind == TargetKind.CHAT or (target.kind == TargetKind.CHANNEL and target.team_id):
            result.move_to(ResolutionState.SENDING_DIRECT)
        elif target.kind == TargetKind.CHANNEL:
            logger.info(f"Channel {target.id} configured without a team id, searching teams")
            result.move_to(ResolutionState.SEARCHING_CHANNELS)

        while not result.is_terminal:
            handler = self._handlers[result.state]
            await handler(self, result, payload)

        logger.info(
            f"Resolution of {target.id} ended in {result.state.value} "
            f"after {result.provider_calls} provider calls"
        )
        return result

    async def resend(self, target: MessageTarget, payload: MessagePayload) -> str:
        """Send once to an already classified target. No probing or discovery."""
        if target.kind == TargetKind.CHANNEL and target.team_id:
            return await self.client.send_to_channel(target.team_id, target.id, payload)
        return await self.client.send_to_chat(target.id, payload)

    async def _send_direct(self, result: ResolutionResult, payload: MessagePayload) -> None:
        target = result.target
        try:
            result.provider_calls += 1
            if target.kind == TargetKind.CHAT:
                message_id = await self.client.send_to_chat(target.id, payload)
            else:
                message_id = await self.client.send_to_channel(target.team_id, target.id, payload)
        except GraphApiError as e:
            if e.is_conversation_not_found:
                result.fail(e, ErrorClass.TARGET_NOT_RESOLVABLE)
            else:
                result.fail(e, e.error_class)
            return
        except RelayError as e:
            result.fail(e, e.error_class)
            return

        result.message_id = message_id
        result.move_to(ResolutionState.DELIVERED)

    async def _probe_as_chat(self, result: ResolutionResult, payload: MessagePayload) -> None:
        result.move_to(ResolutionState.PROBED_AS_CHAT)
        result.target = MessageTarget(id=result.target.id, kind=TargetKind.CHAT)
        try:
            result.provider_calls += 1
            message_id = await self.client.send_to_chat(result.target.id, payload)
        except GraphApiError as e:
            if e.is_conversation_not_found:
                logger.info(f"{result.target.id} is not a known chat ({e.status} {e.provider_code}), trying channels")
                result.error = e
                result.move_to(ResolutionState.NOT_FOUND_AS_CHAT)
                return
            result.fail(e, e.error_class)
            return
        except RelayError as e:
            result.fail(e, e.error_class)
            return

        result.message_id = message_id
        result.move_to(ResolutionState.DELIVERED)

    async def _start_search(self, result: ResolutionResult, payload: MessagePayload) -> None:
        result.move_to(ResolutionState.SEARCHING_CHANNELS)

    async def _search_channels(self, result: ResolutionResult, payload: MessagePayload) -> None:
        channel_id = result.target.id
        try:
            result.provider_calls += 1
            teams = await self.client.list_joined_teams()
        except GraphApiError as e:
            error_class = ErrorClass.UNAUTHORIZED if e.is_unauthorized else ErrorClass.TARGET_NOT_RESOLVABLE
            result.fail(e, error_class)
            return
        except RelayError as e:
            result.fail(e, e.error_class)
            return

        if len(teams) > self.max_teams:
            logger.warning(f"Searching only the first {self.max_teams} of {len(teams)} joined teams")
            teams = teams[: self.max_teams]

        for team in teams:
            try:
                result.provider_calls += 1
                channels = await self.client.list_channels(team.id)
            except GraphApiError as e:
                logger.warning(f"Skipping team {team.id} ({team.display_name}): cannot list channels: {e}")
                continue
            except RelayError as e:
                result.fail(e, e.error_class)
                return

            if any(channel.id == channel_id for channel in channels):
                logger.info(f"Found {channel_id} as a channel in team {team.id} ({team.display_name})")
                result.target = MessageTarget(id=channel_id, kind=TargetKind.CHANNEL, team_id=team.id)
                result.move_to(ResolutionState.FOUND)
                return

        logger.warning(f"{channel_id} matched no chat and no channel in {len(teams)} teams")
        result.error = TargetNotResolvableError(
            f"Conversation {channel_id} is neither a chat nor a channel in any joined team"
        )
        result.error_class = ErrorClass.TARGET_NOT_RESOLVABLE
        result.move_to(ResolutionState.EXHAUSTED)

    async def _send_to_found_channel(self, result: ResolutionResult, payload: MessagePayload) -> None:
        target = result.target
        try:
            result.provider_calls += 1
            message_id = await self.client.send_to_channel(target.team_id, target.id, payload)
        except GraphApiError as e:
            if e.is_conversation_not_found:
                result.fail(e, ErrorClass.TARGET_NOT_RESOLVABLE)
            else:
                result.fail(e, e.error_class)
            return
        except RelayError as e:
            result.fail(e, e.error_class)
            return

        result.error = None
        result.message_id = message_id
        result.move_to(ResolutionState.DELIVERED)

    _handlers = {
        ResolutionState.UNKNOWN: _probe_as_chat,
        ResolutionState.SENDING_DIRECT: _send_direct,
        ResolutionState.NOT_FOUND_AS_CHAT: _start_search,
        ResolutionState.SEARCHING_CHANNELS: _search_channels,
        ResolutionState.FOUND: _send_to_found_channel,
    }
