#!/usr/bin/env python3
"""
Operator commands for stored articles.

Usage:
  python manage_articles.py list [--status draft|published]
  python manage_articles.py publish ID
  python manage_articles.py unpublish ID
  python manage_articles.py delete ID [ID ...]
  python manage_articles.py view ID
"""
import sys
import argparse

from articles_db import STATUSES, ArticleRepository, RepositoryError, get_supabase


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage generated articles.")
    sub = parser.add_subparsers(dest="command", required=True)

    ls = sub.add_parser("list")
    ls.add_argument("--status", choices=STATUSES)
    ls.add_argument("--limit", type=int, default=50)

    for name in ("publish", "unpublish", "view"):
        sub.add_parser(name).add_argument("id")

    rm = sub.add_parser("delete")
    rm.add_argument("ids", nargs="+")
    return parser


def run(args, repository: ArticleRepository) -> int:
    if args.command == "list":
        rows = repository.list_articles(status=args.status, limit=args.limit)
        for r in rows:
            print(f"{r['id']:>6}  {r['status']:<9}  {r.get('views', 0):>7}  {r['title'][:60]}")
        print(f"📊 {len(rows)} article(s)")
    elif args.command == "publish":
        repository.update_status(args.id, "published")
        print(f"✅ Published {args.id}")
    elif args.command == "unpublish":
        repository.update_status(args.id, "draft")
        print(f"✅ Moved {args.id} back to draft")
    elif args.command == "view":
        views = repository.increment_views(args.id)
        print(f"👀 {args.id} now has {views} views")
    elif args.command == "delete":
        if len(args.ids) == 1:
            repository.delete(args.ids[0])
        else:
            repository.delete_many(args.ids)
        print(f"🗑️  Deleted {len(args.ids)} article(s)")
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return run(args, ArticleRepository(get_supabase()))
    except (RepositoryError, ValueError) as e:
        print(f"❌ {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
