"""Tests for the sources module."""

from unittest.mock import patch, MagicMock

import feedparser
import requests

from sources import fetch_news, keyword_item, scan_feeds, strip_html


def _rss(*items) -> bytes:
    body = ""
    for title, link, description in items:
        link_tag = f"<link>{link}</link>" if link is not None else ""
        body += f"<item><title>{title}</title>{link_tag}<description>{description}</description></item>"
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<rss version="2.0"><channel><title>Feed</title>{body}</channel></rss>'
    ).encode("utf-8")


def _response(content: bytes) -> MagicMock:
    resp = MagicMock()
    resp.content = content
    resp.raise_for_status.return_value = None
    return resp


FEEDS = [
    {"name": "Broken", "url": "https://broken.example.com/rss"},
    {"name": "Good", "url": "https://good.example.com/rss"},
]


class TestScanFeeds:
    def test_fetch_failure_does_not_block_other_feeds(self) -> None:
        good = _response(_rss(("Game A", "https://good.example.com/a", "desc")))
        with patch("sources.requests.get", side_effect=[requests.ConnectionError("boom"), good]):
            items = scan_feeds(FEEDS)
        assert [i.title for i in items] == ["Game A"]
        assert items[0].source_name == "Good"

    def test_parse_failure_does_not_block_other_feeds(self) -> None:
        broken = feedparser.FeedParserDict(bozo=1, entries=[], bozo_exception=ValueError("bad xml"))
        good = feedparser.parse(_rss(("Game B", "https://good.example.com/b", "desc")))
        with patch("sources.requests.get", return_value=_response(b"")), \
                patch("sources.feedparser.parse", side_effect=[broken, good]):
            items = scan_feeds(FEEDS)
        assert [i.link for i in items] == ["https://good.example.com/b"]

    def test_takes_at_most_five_entries_per_feed(self) -> None:
        entries = [(f"Game {n}", f"https://good.example.com/{n}", "d") for n in range(7)]
        with patch("sources.requests.get", return_value=_response(_rss(*entries))):
            items = scan_feeds([FEEDS[1]])
        assert len(items) == 5
        assert items[-1].title == "Game 4"

    def test_drops_entries_without_title_or_link(self) -> None:
        content = _rss(
            ("", "https://good.example.com/no-title", "d"),
            ("No link", None, "d"),
            ("Kept", "https://good.example.com/kept", "d"),
        )
        with patch("sources.requests.get", return_value=_response(content)):
            items = scan_feeds([FEEDS[1]])
        assert [i.title for i in items] == ["Kept"]

    def test_summary_is_plain_text(self) -> None:
        content = _rss(("Game", "https://good.example.com/g", "&lt;p&gt;Hello &lt;b&gt;world&lt;/b&gt;&lt;/p&gt;"))
        with patch("sources.requests.get", return_value=_response(content)):
            items = scan_feeds([FEEDS[1]])
        assert items[0].summary == "Hello world"


class TestKeywordMode:
    def test_keyword_yields_single_item_without_feeds(self) -> None:
        with patch("sources.scan_feeds") as mock_scan:
            items = fetch_news("TestGame")
        mock_scan.assert_not_called()
        assert len(items) == 1
        assert items[0].link == ""
        assert items[0].is_keyword
        assert items[0].title == "TestGame"

    def test_keyword_summary_asks_for_research(self) -> None:
        item = keyword_item("  TestGame  ")
        assert item.title == "TestGame"
        assert "TestGame" in item.summary
        assert "調査" in item.summary

    def test_blank_keyword_uses_feeds(self) -> None:
        with patch("sources.scan_feeds", return_value=[]) as mock_scan:
            fetch_news("   ")
        mock_scan.assert_called_once()


class TestStripHtml:
    def test_empty(self) -> None:
        assert strip_html("") == ""
        assert strip_html(None) == ""
