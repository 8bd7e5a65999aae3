#!/usr/bin/env python3
"""
article_forge.py: generates draft game-news articles.

Usage:
  python article_forge.py [KEYWORD] [--attribute game_news|game_intro] [--max-articles N]

With a KEYWORD the RSS feeds are skipped and a single article is researched
for that keyword. Articles are saved as drafts; publishing happens in the
admin dashboard (or manage_articles.py).

Environment variables:
  SUPABASE_URL, SUPABASE_SERVICE_KEY, GEMINI_API_KEY  (see config.py)
"""

import sys
import time
import argparse
from dataclasses import dataclass, field
from functools import partial

from articles_db import ArticleRepository, UsageRecorder, article_record, get_supabase
from config import MAX_ARTICLES, MAX_SLUG_LENGTH
from drafts import ATTRIBUTES, ExhaustedErr, generate_article, setup_gemini
from media import resolve_media
from progress import COMPLETED, ERROR, ProgressSink, RateLimiter, RunLock, RunLockedError
from sources import fetch_news


@dataclass
class RunSummary:
    status: str
    generated: int = 0
    duplicates: int = 0
    failed: int = 0
    article_ids: list = field(default_factory=list)


def unique_slug(repository, slug: str, now=time.time) -> str:
    if not repository.slug_exists(slug):
        return slug
    suffix = format(int(now() * 1000), "x")
    base = slug[:MAX_SLUG_LENGTH - len(suffix) - 1].rstrip("-")
    return f"{base}-{suffix}"


def run_pipeline(keyword: str = "", attribute: str = "game_news", max_articles: int = MAX_ARTICLES, *,
                 repository=None, progress=None, limiter=None,
                 collect=fetch_news, generate=None, resolve=None) -> RunSummary:
    progress = progress or ProgressSink()
    limiter = limiter or RateLimiter()
    progress.publish(0, "初期化中...")

    print("🔌 Checking Supabase connection...")
    try:
        if repository is None:
            repository = ArticleRepository(get_supabase())
        repository.check_connection()
    except Exception as e:
        print(f"❌ {e}")
        progress.fail("データベースに接続できませんでした")
        return RunSummary(status=ERROR)
    print("✅ Supabase OK\n")

    if generate is None or resolve is None:
        try:
            client = setup_gemini()
        except Exception as e:
            print(f"❌ {e}")
            progress.fail("Gemini APIキーが設定されていません")
            return RunSummary(status=ERROR)
        usage = UsageRecorder(repository.client)
        generate = generate or partial(generate_article, client, usage=usage)
        resolve = resolve or partial(resolve_media, client, usage=usage)

    progress.publish(5, "ニュースを収集中...")
    items = collect(keyword)
    print(f"\n📰 {len(items)} candidate items\n")
    progress.publish(10, f"{len(items)}件のニュースを取得しました")

    summary = RunSummary(status=COMPLETED)

    def step(fraction: float, message: str) -> None:
        done = (summary.generated + fraction) / max_articles
        progress.publish(10 + int(85 * done), message)

    for item in items:
        if summary.generated >= max_articles:
            break
        label = item.title[:50]

        if item.link:
            step(0.05, f"重複チェック中: {label}")
            try:
                if repository.exists(item.link):
                    print(f"⏭️  Skipped (already stored): {label}...")
                    summary.duplicates += 1
                    continue
            except Exception as e:
                print(f"⚠️ Duplicate check failed for {label}: {e}")
                summary.failed += 1
                continue

        print(f"✍️  Generating: {label}...")
        step(0.2, f"記事を生成中: {label}")
        try:
            result = generate(item, attribute)
        except Exception as e:
            print(f"⚠️ Generation failed for {label}: {e}")
            summary.failed += 1
            continue
        if isinstance(result, ExhaustedErr):
            summary.failed += 1
            continue

        step(0.6, f"画像・動画を検索中: {label}")
        try:
            draft, media = resolve(result.draft)
        except Exception as e:
            print(f"⚠️ Media resolution failed for {label}: {e}")
            summary.failed += 1
            continue

        step(0.9, f"保存中: {draft.title[:50]}")
        try:
            draft.slug = unique_slug(repository, draft.slug)
            article_id = repository.insert(article_record(draft, media, item))
        except Exception as e:
            print(f"❌ Save failed: {e}")
            summary.failed += 1
            continue

        summary.generated += 1
        summary.article_ids.append(article_id)
        print(f"✅ Saved draft: {draft.title[:50]}...")
        step(0.0, f"{summary.generated}/{max_articles}件 保存完了")

        if summary.generated < max_articles:
            limiter.wait()

    print(f"\n{'=' * 50}")
    print(f"🎉 Done! {summary.generated} draft article(s) generated.")
    if summary.generated:
        print("📝 Review and publish them from the admin dashboard.")
    progress.complete(f"完了！{summary.generated}件の下書き記事を生成しました")
    return summary


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate draft game-news articles.")
    parser.add_argument("keyword", nargs="?", default="", help="research this keyword instead of reading RSS feeds")
    parser.add_argument("--attribute", choices=ATTRIBUTES, default="game_news")
    parser.add_argument("--max-articles", type=int, default=MAX_ARTICLES)
    args = parser.parse_args(argv)
    if args.max_articles < 1:
        parser.error("--max-articles must be at least 1")
    return args


def main(argv=None) -> int:
    args = parse_args(argv)
    print("🚀 Starting article generation...\n")

    lock = RunLock()
    try:
        lock.acquire()
    except RunLockedError as e:
        print(f"❌ Generation already running: {e}")
        return 1

    progress = ProgressSink()
    try:
        summary = run_pipeline(args.keyword, args.attribute, args.max_articles, progress=progress)
    except Exception as e:
        print(f"❌ Generation aborted: {e}")
        progress.fail(f"エラーが発生しました: {e}")
        return 1
    finally:
        lock.release()
    return 0 if summary.status == COMPLETED else 1


if __name__ == "__main__":
    sys.exit(main())
