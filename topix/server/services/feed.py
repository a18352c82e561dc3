"""RSS 2.0 serialization of the curated feed."""

import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any, Dict, Iterable, Optional

from topix.server.plugins.types import Headline

logger = logging.getLogger(__name__)

ATOM_NS = "http://www.w3.org/2005/Atom"

ET.register_namespace("atom", ATOM_NS)


def _rfc822(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def _text(parent: ET.Element, tag: str, text: Optional[str], **attrib: str) -> ET.Element:
    element = ET.SubElement(parent, tag, attrib)
    element.text = text or ""
    return element


def build_rss(
    headlines: Iterable[Headline],
    feed: Dict[str, Any],
    link: str,
    now: Optional[datetime] = None,
) -> str:
    """Render headlines as an RSS 2.0 document.

    Each item carries a ``guid``, ``pubDate`` and one ``category`` element
    per category and tag. ElementTree escapes all text content.

    Args:
        headlines: Headlines to include, in feed order
        feed: The ``feed`` config section (title, description, ttl)
        link: Public URL of the feed document
        now: Build time (defaults to now)

    Returns:
        XML document as a string
    """
    rss = ET.Element("rss", {"version": "2.0"})
    channel = ET.SubElement(rss, "channel")
    _text(channel, "title", feed.get("title", "Topix"))
    _text(channel, "link", link)
    _text(channel, "description", feed.get("description", ""))
    ET.SubElement(channel, f"{{{ATOM_NS}}}link", {"href": link, "rel": "self", "type": "application/rss+xml"})
    _text(channel, "lastBuildDate", _rfc822(now or datetime.now(timezone.utc)))
    _text(channel, "ttl", str(feed.get("ttl", 60)))
    _text(channel, "generator", "Topix")

    count = 0
    for headline in headlines:
        item = ET.SubElement(channel, "item")
        _text(item, "title", headline.title)
        if headline.link:
            _text(item, "link", headline.link)
        description = headline.description or ""
        if headline.importance_reason:
            description = f"{description}\n\nImportance: {headline.importance_reason}".strip()
        _text(item, "description", description)
        _text(item, "guid", headline.id, isPermaLink="false")
        _text(item, "pubDate", _rfc822(headline.pub_date))
        _text(item, "category", headline.category)
        for tag in headline.tags:
            _text(item, "category", tag)
        _text(item, "source", headline.plugin_id, url=link)
        count += 1

    logger.debug(f"Built RSS feed with {count} items")
    return ET.tostring(rss, encoding="utf-8", xml_declaration=True).decode("utf-8")
