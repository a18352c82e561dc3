"""Tests for RSS feed rendering."""

import xml.etree.ElementTree as ET
from datetime import datetime, timezone

from topix.server.plugins.types import Headline
from topix.server.services.feed import ATOM_NS, build_rss

FEED = {"title": "Morning Brief", "description": "Things that matter", "ttl": 30}
LINK = "http://127.0.0.1:3000/feed.xml"


def parse(xml: str) -> ET.Element:
    return ET.fromstring(xml.encode("utf-8"))


class TestBuildRss:
    """Test cases for build_rss."""

    def test_channel(self):
        now = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
        xml = build_rss([], FEED, LINK, now=now)

        assert xml.startswith("<?xml")
        channel = parse(xml).find("channel")
        assert channel.findtext("title") == "Morning Brief"
        assert channel.findtext("description") == "Things that matter"
        assert channel.findtext("link") == LINK
        assert channel.findtext("ttl") == "30"
        assert channel.findtext("lastBuildDate") == "Fri, 01 Mar 2024 12:00:00 GMT"
        assert channel.find(f"{{{ATOM_NS}}}link").get("rel") == "self"
        assert channel.findall("item") == []

    def test_items(self):
        headline = Headline.create(
            "weather",
            "Rain, 50°F in Paris",
            link="https://example.com/rain",
            description="Bring an umbrella",
            pub_date=datetime(2024, 3, 1, 8, 30, tzinfo=timezone.utc),
            category="weather",
            tags=["forecast", "paris"],
            importance_reason="Matched rules: title contains 'rain'",
        )

        item = parse(build_rss([headline], FEED, LINK)).find("channel/item")

        assert item.findtext("title") == "Rain, 50°F in Paris"
        assert item.findtext("link") == "https://example.com/rain"
        assert item.findtext("guid") == headline.id
        assert item.find("guid").get("isPermaLink") == "false"
        assert item.findtext("pubDate") == "Fri, 01 Mar 2024 08:30:00 GMT"
        assert [c.text for c in item.findall("category")] == ["weather", "forecast", "paris"]
        assert item.findtext("source") == "weather"
        assert "Importance: Matched rules" in item.findtext("description")

    def test_special_characters_are_escaped(self):
        headline = Headline.create("news", "Q&A: <script>alert('x')</script>")
        xml = build_rss([headline], FEED, LINK)

        assert "<script>" not in xml
        assert parse(xml).findtext("channel/item/title") == "Q&A: <script>alert('x')</script>"

    def test_naive_dates_treated_as_utc(self):
        headline = Headline.create("news", "Naive", pub_date=datetime(2024, 1, 2, 3, 4, 5))
        item = parse(build_rss([headline], FEED, LINK)).find("channel/item")
        assert item.findtext("pubDate") == "Tue, 02 Jan 2024 03:04:05 GMT"

    def test_item_order_is_preserved(self):
        headlines = [Headline.create("news", f"Item {i}") for i in range(3)]
        titles = [i.findtext("title") for i in parse(build_rss(headlines, FEED, LINK)).findall("channel/item")]
        assert titles == ["Item 0", "Item 1", "Item 2"]
