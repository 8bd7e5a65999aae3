"""
config.py: shared settings for the article forge scripts.

Environment variables (loaded from .env.local / .env when present):
  GEMINI_API_KEY         Google AI Studio API key
  SUPABASE_URL           Supabase project URL
  SUPABASE_SERVICE_KEY   Supabase service-role key

Optional:
  GEMINI_MODEL, VISION_MODEL, MAX_ARTICLES, FEEDS_PATH,
  PROGRESS_PATH, LOCK_PATH, STORE_MATCH_THRESHOLD
"""

import os
import json

from dotenv import load_dotenv, find_dotenv

# .env.local first (shared with the web frontend), then the nearest .env
if os.path.exists(".env.local"):
    load_dotenv(".env.local")
load_dotenv(find_dotenv(usecwd=True), override=True)


def _env(name: str, *fallbacks: str) -> str:
    for key in (name,) + fallbacks:
        value = os.getenv(key, "").strip().replace('"', '').replace("'", "")
        if value:
            return value
    return ""


# ─── Credentials ─────────────────────────────────────────────────────────────

GEMINI_API_KEY       = _env("GEMINI_API_KEY")
SUPABASE_URL         = _env("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL")
SUPABASE_SERVICE_KEY = _env("SUPABASE_SERVICE_KEY", "NEXT_PUBLIC_SUPABASE_ANON_KEY")

# ─── Models ──────────────────────────────────────────────────────────────────

GEMINI_MODEL = _env("GEMINI_MODEL") or "gemini-2.5-flash"
VISION_MODEL = _env("VISION_MODEL") or GEMINI_MODEL

# ─── Pipeline limits ─────────────────────────────────────────────────────────

MAX_ARTICLES          = int(_env("MAX_ARTICLES") or 1)
MAX_ITEMS_PER_FEED    = 5
MAX_SUMMARY_CHARS     = 500
MAX_ATTEMPTS          = 3
BACKOFF_SECONDS       = 15      # attempt × 15s → 15s, 30s
SLEEP_BETWEEN_ARTICLES = 5
HTTP_TIMEOUT          = 5
MAX_ACCEPTED_IMAGES   = 3
MAX_SLUG_LENGTH       = 60
STALE_LOCK_SECONDS    = 2 * 60 * 60
STORE_MATCH_THRESHOLD = float(_env("STORE_MATCH_THRESHOLD") or 0.0)

# ─── Article defaults ────────────────────────────────────────────────────────

AUTHOR = "管理人"
PLACEHOLDER_IMAGE_URL = "https://picsum.photos/seed/{slug}/1200/630"
YOUTUBE_THUMBNAIL_URL = "https://img.youtube.com/vi/{video_id}/hqdefault.jpg"
YOUTUBE_EMBED_URL     = "https://www.youtube.com/embed/{video_id}"
STEAM_SEARCH_URL      = "https://store.steampowered.com/api/storesearch/"
STEAM_WIDGET_URL      = "https://store.steampowered.com/widget/{app_id}/"
AI_DISCLAIMER_HTML = (
    '<p class="text-xs text-zinc-400 mt-8">'
    '※この記事はAIが生成したものです。引用元の情報を確認してください。</p>'
)

ARTICLES_TABLE = "articles"
USAGE_TABLE    = "api_usage"

# ─── Paths ───────────────────────────────────────────────────────────────────

FEEDS_PATH    = _env("FEEDS_PATH") or "./feeds.json"
PROGRESS_PATH = _env("PROGRESS_PATH") or "./.generation-progress.json"
LOCK_PATH     = _env("LOCK_PATH") or "./.generation.lock"

HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "ja,en-US;q=0.9,en;q=0.8",
}

DEFAULT_FEEDS = [
    {"name": "4Gamer.net", "url": "https://www.4gamer.net/rss/index.xml"},
    {"name": "AUTOMATON", "url": "https://automaton-media.com/feed/"},
    {"name": "Game*Spark", "url": "https://www.gamespark.jp/feed/index.xml"},
]


def load_feeds(path: str = FEEDS_PATH) -> list[dict]:
    """Load the configured RSS feeds, falling back to the built-in list."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            entries = json.load(f)
    except FileNotFoundError:
        return list(DEFAULT_FEEDS)
    except Exception as e:
        print(f"⚠️  Could not read feed list {path}: {e}, using defaults.")
        return list(DEFAULT_FEEDS)

    if not isinstance(entries, list):
        print(f"⚠️  Feed list {path} is not a JSON array, using defaults.")
        return list(DEFAULT_FEEDS)

    feeds = []
    for entry in entries:
        if not isinstance(entry, dict):
            print(f"⚠️  Skipping malformed feed entry: {entry!r}")
            continue
        url = str(entry.get("url") or "").strip()
        if not url or url == "N/A":
            continue
        feeds.append({"name": entry.get("name") or url, "url": url})
    return feeds
