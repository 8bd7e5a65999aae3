#!/usr/bin/env python3
"""
Checks everything the article forge depends on and writes the report to
diagnosis-result.txt:

  1. environment variables
  2. Supabase select + insert/delete round trip
  3. every configured RSS feed
  4. a one-line Gemini call
"""
import sys
import time

import feedparser
import requests

from articles_db import get_supabase
from config import ARTICLES_TABLE, GEMINI_API_KEY, GEMINI_MODEL, HEADERS, SUPABASE_SERVICE_KEY, SUPABASE_URL, load_feeds
from drafts import setup_gemini

REPORT_PATH = "diagnosis-result.txt"

log: list[str] = []


def report(msg: str = "") -> None:
    print(msg)
    log.append(msg)


def _mask(value: str, keep: int) -> str:
    return f"✅ {value[:keep]}..." if value else "❌ not set"


def check_env() -> bool:
    report("--- 1. Environment ---")
    report(f"SUPABASE_URL:         {'✅ ' + SUPABASE_URL if SUPABASE_URL else '❌ not set'}")
    report(f"SUPABASE_SERVICE_KEY: {_mask(SUPABASE_SERVICE_KEY, 20)}")
    report(f"GEMINI_API_KEY:       {_mask(GEMINI_API_KEY, 15)}")
    return bool(SUPABASE_URL and SUPABASE_SERVICE_KEY and GEMINI_API_KEY)


def check_supabase() -> bool:
    report("--- 2. Supabase ---")
    try:
        sb = get_supabase()
        resp = sb.table(ARTICLES_TABLE).select('id, title, status').limit(5).execute()
        report(f"✅ SELECT ok: {len(resp.data or [])} rows")

        ins = sb.table(ARTICLES_TABLE).insert({
            'slug': f"diagnose-{int(time.time() * 1000)}", 'title': 'diagnose', 'excerpt': 'diagnose',
            'content': '<p>diagnose</p>', 'author': 'diagnose', 'image_url': 'https://example.com/test.jpg',
            'tags': ['diagnose'], 'views': 0, 'status': 'draft',
        }).execute()
        row_id = ins.data[0]['id']
        report(f"✅ INSERT ok: {row_id}")
        sb.table(ARTICLES_TABLE).delete().eq('id', row_id).execute()
        report("✅ DELETE ok (test row removed)")
        return True
    except Exception as e:
        report(f"❌ Supabase failed: {e}")
        return False


def check_feeds() -> bool:
    report("--- 3. RSS ---")
    ok = True
    for feed in load_feeds():
        try:
            resp = requests.get(feed['url'], headers=HEADERS, timeout=15)
            resp.raise_for_status()
            parsed = feedparser.parse(resp.content)
            report(f"✅ {feed['name']}: {len(parsed.entries)} entries")
        except Exception as e:
            report(f"❌ {feed['name']}: {e}")
            ok = False
    return ok


def check_gemini() -> bool:
    report("--- 4. Gemini API ---")
    try:
        client = setup_gemini()
        response = client.models.generate_content(model=GEMINI_MODEL, contents="テストです。OKとだけ返して。")
        report(f"✅ Gemini replied: \"{(response.text or '').strip()}\"")
        return True
    except Exception as e:
        report(f"❌ Gemini failed: {str(e)[:300]}")
        return False


def main() -> int:
    log.clear()
    report("=" * 40)
    report("🔍 Diagnosis started")
    report("=" * 40)
    results = []
    for check in (check_env, check_supabase, check_feeds, check_gemini):
        results.append(check())
        report()
    report("🔍 Diagnosis finished")

    with open(REPORT_PATH, "w", encoding="utf-8") as f:
        f.write("\n".join(log))
    print(f"\nReport saved to {REPORT_PATH}")
    return 0 if all(results) else 1


if __name__ == "__main__":
    sys.exit(main())
