"""
sources.py: collects candidate news items for the article forge.

Two modes:
  * feed mode: the first few entries of every configured RSS feed
  * keyword mode: one synthetic item asking the writer to research a keyword
"""

from dataclasses import dataclass

import feedparser
import requests
from bs4 import BeautifulSoup

from config import HEADERS, MAX_ITEMS_PER_FEED, load_feeds

KEYWORD_SOURCE_NAME = "キーワード検索"


@dataclass
class NewsItem:
    title: str
    link: str
    source_name: str
    summary: str

    @property
    def is_keyword(self) -> bool:
        return not self.link


def strip_html(text):
    """Strip HTML tags and return clean plain text."""
    if not text:
        return ""
    return BeautifulSoup(text, "html.parser").get_text(separator=" ", strip=True)


def _fetch_feed(url: str, timeout: int = 15) -> list:
    resp = requests.get(url, headers=HEADERS, timeout=timeout)
    resp.raise_for_status()
    feed = feedparser.parse(resp.content)
    if feed.bozo and not feed.entries:
        raise ValueError(f"unparseable feed: {feed.get('bozo_exception')}")
    return feed.entries


def _entry_summary(entry) -> str:
    if entry.get("summary"):
        return strip_html(entry["summary"])
    content = entry.get("content") or []
    if content:
        return strip_html(content[0].get("value", ""))
    return strip_html(entry.get("description", ""))


def scan_feeds(feeds: list[dict] | None = None) -> list[NewsItem]:
    """Fetch every feed; a broken feed is logged and skipped."""
    if feeds is None:
        feeds = load_feeds()

    found = []
    for feed in feeds:
        name = feed["name"]
        print(f"📡 Fetching RSS: {name}...")
        try:
            entries = _fetch_feed(feed["url"])
        except Exception as e:
            print(f"  ⚠️ Feed failed ({name}): {e}")
            continue

        kept = 0
        for entry in entries[:MAX_ITEMS_PER_FEED]:
            title = (entry.get("title") or "").strip()
            link = (entry.get("link") or "").strip()
            if not title or not link:
                continue
            found.append(NewsItem(
                title=title,
                link=link,
                source_name=name,
                summary=_entry_summary(entry),
            ))
            kept += 1
        print(f"  ✅ {kept} items")
    return found


def keyword_item(keyword: str) -> NewsItem:
    keyword = keyword.strip()
    return NewsItem(
        title=keyword,
        link="",
        source_name=KEYWORD_SOURCE_NAME,
        summary=(
            f"「{keyword}」について、Web検索で最新の公式情報やニュースを調査し、"
            "その結果をもとに記事を作成してください。既存の記事の要約ではありません。"
        ),
    )


def fetch_news(keyword: str = "", feeds: list[dict] | None = None) -> list[NewsItem]:
    """Candidate items for one run. A keyword bypasses the feeds entirely."""
    if keyword and keyword.strip():
        print(f"🔑 Keyword mode: {keyword.strip()}")
        return [keyword_item(keyword)]
    return scan_feeds(feeds)
