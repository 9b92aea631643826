"""
Teams Discovery Routes

Lets operators look up chat, team and channel ids to put in subscriptions.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query

from app.api.dependencies import get_graph_client
from app.api.errors import http_error_for
from app.integrations.teams import GraphMessagingClient
from app.integrations.teams.models import Channel, ChatSummary, Team
from app.models.errors import RelayError

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/chats", response_model=List[ChatSummary])
async def list_chats(
    limit: int = Query(5, ge=1, le=50, description="Number of recent chats"),
    graph_client: GraphMessagingClient = Depends(get_graph_client),
):
    try:
        return await graph_client.list_chats(limit=limit)
    except RelayError as e:
        raise http_error_for(e)


@router.get("/joined", response_model=List[Team])
async def list_joined_teams(graph_client: GraphMessagingClient = Depends(get_graph_client)):
    try:
        return await graph_client.list_joined_teams()
    except RelayError as e:
        raise http_error_for(e)


@router.get("/{team_id}/channels", response_model=List[Channel])
async def list_channels(team_id: str, graph_client: GraphMessagingClient = Depends(get_graph_client)):
    try:
        return await graph_client.list_channels(team_id)
    except RelayError as e:
        raise http_error_for(e)
