"""
Tests for the Adaptive Card and HTML formatters.
"""

import json

import pytest

from app.integrations.teams.models import ADAPTIVE_CARD_CONTENT_TYPE
from app.models.delivery import UNKNOWN_TITLE, NormalizedEvent
from app.services.formatter import MessageFormatter


@pytest.fixture
def formatter():
    return MessageFormatter()


@pytest.fixture
def event():
    return NormalizedEvent(
        title="Add login page",
        author="Jamal Hartnett",
        repository_name="Fabrikam",
        source_branch="feature/login",
        target_branch="main",
        url="https://dev.azure.com/fabrikam/_git/Fabrikam/pullrequest/1",
        description="Adds the login form",
        mentions=("alice", "bob"),
    )


def _texts(card):
    return [block.get("text") for block in card["body"] if block["type"] == "TextBlock"]


def _facts(card):
    fact_set = next(block for block in card["body"] if block["type"] == "FactSet")
    return {fact["title"]: fact["value"] for fact in fact_set["facts"]}


class TestRichCard:
    def test_card_content(self, formatter, event):
        card = formatter.format_rich_card(event).card

        assert card["type"] == "AdaptiveCard"
        assert card["version"] == "1.3"
        assert "Add login page" in _texts(card)
        assert "Adds the login form" in _texts(card)
        assert _facts(card) == {
            "Author:": "Jamal Hartnett",
            "Repository:": "Fabrikam",
            "Branch:": "feature/login → main",
        }
        assert any("@alice @bob" in text for text in _texts(card))
        assert card["actions"] == [
            {"type": "Action.OpenUrl", "title": "View Pull Request", "url": event.url}
        ]

    def test_graph_body_wraps_card_as_string_attachment(self, formatter, event):
        payload = formatter.format_rich_card(event)
        body = payload.to_graph_body()

        attachment = body["attachments"][0]
        assert attachment["contentType"] == ADAPTIVE_CARD_CONTENT_TYPE
        assert isinstance(attachment["content"], str)
        assert json.loads(attachment["content"]) == payload.card
        assert body["body"]["contentType"] == "html"
        assert f'<attachment id="{attachment["id"]}">' in body["body"]["content"]

    def test_placeholder_event(self, formatter):
        card = formatter.format_rich_card(NormalizedEvent()).card

        assert UNKNOWN_TITLE in _texts(card)
        assert _facts(card)["Branch:"] == "unknown → unknown"
        # "#" is not a link Teams accepts
        assert "actions" not in card

    def test_blank_title_gets_placeholder(self, formatter):
        card = formatter.format_rich_card(NormalizedEvent(title="   ")).card
        assert UNKNOWN_TITLE in _texts(card)

    def test_no_mentions_no_description(self, formatter):
        card = formatter.format_rich_card(NormalizedEvent(title="T", description="  ")).card
        texts = _texts(card)
        assert not any("Please review" in text for text in texts)
        assert len(texts) == 2  # header and title

    def test_long_description_is_truncated(self):
        formatter = MessageFormatter(max_description_length=20)
        card = formatter.format_rich_card(NormalizedEvent(title="T", description="x" * 100)).card
        assert "x" * 19 + "…" in _texts(card)


class TestPlainFallback:
    def test_html_content(self, formatter, event):
        payload = formatter.format_plain_fallback(event)

        assert payload.content_type == "html"
        assert "<strong>Add login page</strong>" in payload.content
        assert "Jamal Hartnett" in payload.content
        assert "feature/login → main" in payload.content
        assert f'<a href="{event.url}">View Pull Request</a>' in payload.content
        assert "@alice @bob - Please review!" in payload.content
        assert payload.to_graph_body() == {"body": {"contentType": "html", "content": payload.content}}

    def test_values_are_escaped(self, formatter):
        event = NormalizedEvent(
            title="<script>alert(1)</script>",
            author="Tom & Jerry",
            url='https://x/"onmouseover="',
        )
        content = formatter.format_plain_fallback(event).content

        assert "<script>" not in content
        assert "&lt;script&gt;" in content
        assert "Tom &amp; Jerry" in content
        assert '"onmouseover="' not in content

    def test_placeholder_event(self, formatter):
        content = formatter.format_plain_fallback(NormalizedEvent(title="")).content

        assert f"<strong>{UNKNOWN_TITLE}</strong>" in content
        assert "View Pull Request" not in content
        assert "Please review" not in content


@pytest.mark.parametrize(
    "fields",
    [
        {},
        {"title": ""},
        {"author": "", "repository_name": "", "source_branch": "", "target_branch": ""},
        {"url": ""},
        {"url": "not a url", "description": "\n\n"},
        {"mentions": ("",)},
    ],
)
def test_formatters_tolerate_sparse_events(formatter, fields):
    event = NormalizedEvent(**fields)

    card = formatter.format_rich_card(event).card
    plain = formatter.format_plain_fallback(event)

    title_block = card["body"][1]
    assert title_block["text"].strip()
    assert "<strong></strong>" not in plain.content
