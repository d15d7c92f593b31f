"""Unit tests for XML and rss2json feed parsing."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from conftest import ATOM_SAMPLE, RSS_SAMPLE

from feedrelay.middleware.error_handler import ParseError, SecurityValidationError
from feedrelay.parsing.feed_parser import (
    MAX_ITEMS_PER_FEED,
    parse_payload,
    parse_rss2json,
    parse_xml_feed,
)
from feedrelay.parsing.providers import Rss2JsonPayload, XmlPayload

FEED_URL = "https://example.com/feed.xml"

RDF_SAMPLE = """<?xml version="1.0"?>
<rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#" xmlns="http://purl.org/rss/1.0/">
  <channel rdf:about="https://rdf.example.net/">
    <title>RDF Example</title>
    <link>https://rdf.example.net/</link>
    <description>An RSS 1.0 feed</description>
  </channel>
  <item rdf:about="https://rdf.example.net/one">
    <title>RDF item</title>
    <link>https://rdf.example.net/one</link>
    <description>One</description>
  </item>
</rdf:RDF>
"""


def _rss_with_items(count: int, channel_title: str = "Big Feed") -> str:
    items = "".join(
        f"<item><title>Item {i}</title><link>https://example.com/{i}</link></item>"
        for i in range(count)
    )
    return f'<rss version="2.0"><channel><title>{channel_title}</title>{items}</channel></rss>'


# ---------------------------------------------------------------------------
# XML feeds
# ---------------------------------------------------------------------------


class TestParseXmlFeed:
    def test_rss_fields(self):
        feed = parse_xml_feed(RSS_SAMPLE, FEED_URL)

        assert feed.title == "Example Feed"
        assert len(feed.articles) == 2
        first, second = feed.articles

        assert first.title == "First post"
        assert first.link == "https://example.com/first"
        assert first.description == "Hello world"
        assert first.author == "Jane Doe"
        assert first.categories == ("Tech",)
        assert first.pub_date == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
        assert first.source_title == "Example Feed"
        assert first.audio_url is None

        assert second.audio_url == "https://example.com/episode.mp3"
        assert second.audio_duration == "12:34"
        assert second.image_url is None

    def test_atom_fields(self):
        feed = parse_xml_feed(ATOM_SAMPLE, "https://atom.example.org/feed")

        assert feed.title == "Atom Example"
        (entry,) = feed.articles
        assert entry.title == "Atom entry"
        assert entry.link == "https://atom.example.org/entry"
        assert entry.author == "Alex"
        assert entry.description == "Atom summary"

    def test_rdf_feed(self):
        feed = parse_xml_feed(RDF_SAMPLE, "https://rdf.example.net/index.rdf")
        assert feed.title == "RDF Example"
        assert [a.title for a in feed.articles] == ["RDF item"]

    def test_item_limit(self):
        feed = parse_xml_feed(_rss_with_items(MAX_ITEMS_PER_FEED + 10), FEED_URL)
        assert len(feed.articles) == MAX_ITEMS_PER_FEED
        assert feed.articles[0].title == "Item 0"

    def test_missing_title_falls_back_to_hostname(self):
        feed = parse_xml_feed(_rss_with_items(1, channel_title=""), FEED_URL)
        assert feed.title == "example.com"

    def test_media_content_image(self):
        xml = """<rss version="2.0" xmlns:media="http://search.yahoo.com/mrss/">
          <channel><title>Pics</title>
            <item>
              <title>Photo</title>
              <link>https://example.com/photo</link>
              <media:content url="https://example.com/img.jpg" medium="image"/>
            </item>
          </channel></rss>"""
        (article,) = parse_xml_feed(xml, FEED_URL).articles
        assert article.image_url == "https://example.com/img.jpg"

    def test_entity_declaration_is_refused(self):
        xml = '<!DOCTYPE rss [<!ENTITY x "boom">]><rss><channel><title>&x;</title></channel></rss>'
        with pytest.raises(SecurityValidationError):
            parse_xml_feed(xml, FEED_URL)

    def test_malformed_xml(self):
        with pytest.raises(ParseError):
            parse_xml_feed("<rss><channel><item></rss>", FEED_URL)

    def test_html_root_is_refused(self):
        with pytest.raises(ParseError):
            parse_xml_feed("<html><body>Not a feed</body></html>", FEED_URL)


# ---------------------------------------------------------------------------
# rss2json
# ---------------------------------------------------------------------------


class TestParseRss2Json:
    def test_item_fields(self):
        payload = Rss2JsonPayload(
            feed_title="Aggregated",
            feed_link="https://agg.test/",
            items=[
                {
                    "title": "Hello &amp; welcome",
                    "link": "https://agg.test/hello",
                    "pubDate": "2024-01-15 10:00:00",
                    "description": "<p>Desc</p>",
                    "thumbnail": "https://agg.test/t.jpg",
                    "author": "By Sam",
                    "categories": ["News", ""],
                    "enclosure": {},
                }
            ],
        )

        feed = parse_rss2json(payload, FEED_URL)

        assert feed.title == "Aggregated"
        (article,) = feed.articles
        assert article.title == "Hello & welcome"
        assert article.pub_date == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)
        assert article.description == "Desc"
        assert article.image_url == "https://agg.test/t.jpg"
        assert article.author == "Sam"
        assert article.categories == ("News",)
        assert article.audio_url is None

    def test_audio_enclosure(self):
        payload = Rss2JsonPayload(
            feed_title="Pod",
            feed_link="",
            items=[
                {
                    "title": "Episode 1",
                    "link": "https://pod.test/1",
                    "pubDate": "2024-01-15T10:00:00Z",
                    "enclosure": {"link": "https://pod.test/1.mp3", "type": "audio/mpeg", "duration": 754},
                }
            ],
        )
        (article,) = parse_rss2json(payload, FEED_URL).articles
        assert article.audio_url == "https://pod.test/1.mp3"
        assert article.audio_duration == "754"

    def test_image_from_content(self):
        payload = Rss2JsonPayload(
            feed_title="",
            feed_link="",
            items=[{"title": "Img", "link": "https://a.test/p", "content": '<img src="/i.png">'}],
        )
        feed = parse_rss2json(payload, "https://a.test/rss")
        assert feed.title == "a.test"
        assert feed.articles[0].image_url == "https://a.test/i.png"

    def test_items_without_title_or_link_are_skipped(self):
        payload = Rss2JsonPayload(feed_title="F", feed_link="", items=[{"description": "orphan"}])
        assert parse_rss2json(payload, FEED_URL).articles == ()

    @pytest.mark.parametrize("field", ["title", "link", "pubDate"])
    @pytest.mark.parametrize("value", [123, {"text": "x"}, ["x"]])
    def test_non_text_core_field_is_malformed(self, field, value):
        item = {"title": "Ok", "link": "https://agg.test/ok", "pubDate": "2024-01-15 10:00:00"}
        item[field] = value
        payload = Rss2JsonPayload(feed_title="F", feed_link="", items=[item])

        with pytest.raises(ParseError, match=field):
            parse_rss2json(payload, FEED_URL)

    def test_non_text_optional_fields_are_ignored(self):
        payload = Rss2JsonPayload(
            feed_title="F",
            feed_link="",
            items=[
                {
                    "title": "Ok",
                    "link": "https://agg.test/ok",
                    "description": 42,
                    "content": {"html": "<p>x</p>"},
                    "thumbnail": ["https://agg.test/t.jpg"],
                }
            ],
        )

        (article,) = parse_rss2json(payload, FEED_URL).articles

        assert article.title == "Ok"
        assert article.image_url is None
        assert article.content is None


class TestParsePayload:
    def test_dispatches_on_variant(self):
        assert parse_payload(XmlPayload(text=RSS_SAMPLE), FEED_URL).title == "Example Feed"
        rss2json = Rss2JsonPayload(feed_title="J", feed_link="", items=[])
        assert parse_payload(rss2json, FEED_URL).title == "J"

    def test_unknown_variant(self):
        with pytest.raises(ParseError, match="Unsupported payload"):
            parse_payload("<rss/>", FEED_URL)  # type: ignore[arg-type]

    def test_unexpected_parser_failure_becomes_parse_error(self, monkeypatch: pytest.MonkeyPatch):
        def explode(*_args):
            raise TypeError("argument of type 'int' is not iterable")

        monkeypatch.setattr("feedrelay.parsing.feed_parser.parse_rss2json", explode)
        payload = Rss2JsonPayload(feed_title="J", feed_link="", items=[{"title": "x"}])

        with pytest.raises(ParseError, match="Malformed feed payload"):
            parse_payload(payload, FEED_URL)
