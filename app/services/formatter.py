"""
Message Formatter

Builds the Teams message for a pull request event in two shapes:

- Rich: an Adaptive Card (first choice)
- Plain: an HTML body carrying the same information, used only when Teams
  rejects the card

Both are pure functions of the NormalizedEvent.
"""

import html
from typing import Any, Dict, List

from app.integrations.teams.models import CardPayload, PlainPayload
from app.models.delivery import UNKNOWN_TITLE, NormalizedEvent
from app.utils.helpers import is_http_url, truncate_text

CARD_SCHEMA = "http://adaptivecards.io/schemas/adaptive-card.json"
CARD_VERSION = "1.3"
HEADER_TEXT = "🔔 New Pull Request"
MAX_DESCRIPTION_LENGTH = 2000


def _title(event: NormalizedEvent) -> str:
    return event.title.strip() if event.title and event.title.strip() else UNKNOWN_TITLE


def _mention_text(mentions) -> str:
    return " ".join(f"@{user}" for user in mentions)


class MessageFormatter:
    """Formats NormalizedEvents as Teams message payloads."""

    def __init__(self, max_description_length: int = MAX_DESCRIPTION_LENGTH):
        self.max_description_length = max_description_length

    def format_rich_card(self, event: NormalizedEvent) -> CardPayload:
        body: List[Dict[str, Any]] = [
            {
                "type": "TextBlock",
                "text": HEADER_TEXT,
                "weight": "Bolder",
                "size": "Medium",
                "color": "Accent",
            },
            {
                "type": "TextBlock",
                "text": _title(event),
                "weight": "Bolder",
                "size": "Large",
                "wrap": True,
            },
            {
                "type": "FactSet",
                "facts": [
                    {"title": "Author:", "value": event.author},
                    {"title": "Repository:", "value": event.repository_name},
                    {"title": "Branch:", "value": f"{event.source_branch} → {event.target_branch}"},
                ],
            },
        ]

        description = event.description.strip()
        if description:
            body.append(
                {
                    "type": "TextBlock",
                    "text": truncate_text(description, self.max_description_length),
                    "wrap": True,
                    "spacing": "Medium",
                }
            )

        if event.mentions:
            body.append(
                {
                    "type": "TextBlock",
                    "text": f"👥 {_mention_text(event.mentions)} - Please review!",
                    "wrap": True,
                    "spacing": "Medium",
                }
            )

        card: Dict[str, Any] = {
            "type": "AdaptiveCard",
            "$schema": CARD_SCHEMA,
            "version": CARD_VERSION,
            "body": body,
        }

        # Teams rejects OpenUrl actions whose url is not absolute
        if is_http_url(event.url):
            card["actions"] = [
                {"type": "Action.OpenUrl", "title": "View Pull Request", "url": event.url}
            ]

        return CardPayload(card=card)

    def format_plain_fallback(self, event: NormalizedEvent) -> PlainPayload:
        esc = html.escape
        parts = [
            "<div>",
            f"<h3>{HEADER_TEXT}</h3>",
            f"<p><strong>{esc(_title(event))}</strong></p>",
            f"<p>👤 <strong>Author:</strong> {esc(event.author)}</p>",
            f"<p>📁 <strong>Repository:</strong> {esc(event.repository_name)}</p>",
            f"<p>🌿 <strong>Branch:</strong> {esc(event.source_branch)} → {esc(event.target_branch)}</p>",
        ]

        description = event.description.strip()
        if description:
            description = truncate_text(description, self.max_description_length)
            parts.append(f"<p>📝 <strong>Description:</strong> {esc(description)}</p>")

        if is_http_url(event.url):
            parts.append(f'<p>🔗 <a href="{esc(event.url, quote=True)}">View Pull Request</a></p>')

        parts.append("</div>")

        if event.mentions:
            parts.append(f"<p>👥 {esc(_mention_text(event.mentions))} - Please review!</p>")

        return PlainPayload(content="".join(parts), content_type="html")
