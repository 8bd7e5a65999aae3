"""
articles_db.py: Supabase I/O for generated articles.

Tables:
  articles   one row per article (slug unique, source_url is the dedup key)
  api_usage  append-only token accounting, one row per billable model call
"""

from datetime import datetime, timezone
from urllib.parse import quote

from supabase import create_client, Client as SupabaseClient

from config import (
    ARTICLES_TABLE,
    AUTHOR,
    PLACEHOLDER_IMAGE_URL,
    SUPABASE_SERVICE_KEY,
    SUPABASE_URL,
    USAGE_TABLE,
)

STATUSES = ("draft", "published")


class RepositoryError(Exception):
    pass


def get_supabase() -> SupabaseClient:
    if not SUPABASE_URL or not SUPABASE_SERVICE_KEY:
        raise RepositoryError("SUPABASE_URL / SUPABASE_SERVICE_KEY not set")
    return create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def placeholder_image(slug: str) -> str:
    return PLACEHOLDER_IMAGE_URL.format(slug=quote(slug, safe=""))


def article_record(draft, media, item) -> dict:
    """Row for a freshly generated draft article."""
    return {
        'slug':        draft.slug,
        'title':       draft.title,
        'excerpt':     draft.excerpt,
        'content':     draft.content,
        'author':      AUTHOR,
        'image_url':   (media.main_image_url if media else None) or placeholder_image(draft.slug),
        'source_url':  item.link or None,
        'source_name': item.source_name,
        'tags':        list(draft.tags),
        'views':       0,
        'status':      'draft',
    }


class ArticleRepository:
    def __init__(self, client: SupabaseClient, table: str = ARTICLES_TABLE):
        self.client = client
        self.table = table

    def _q(self):
        return self.client.table(self.table)

    def check_connection(self) -> None:
        try:
            self._q().select('id').limit(1).execute()
        except Exception as e:
            raise RepositoryError(f"Supabase connection failed: {e}") from e

    def exists(self, source_url: str) -> bool:
        """True when an article with this exact source_url is already stored."""
        if not source_url:
            return False
        resp = self._q().select('id').eq('source_url', source_url).limit(1).execute()
        return len(resp.data or []) > 0

    def slug_exists(self, slug: str) -> bool:
        resp = self._q().select('id').eq('slug', slug).limit(1).execute()
        return len(resp.data or []) > 0

    def insert(self, record: dict):
        row = {**record, 'status': record.get('status') or 'draft'}
        try:
            resp = self._q().insert(row).execute()
        except Exception as e:
            raise RepositoryError(f"insert failed: {e}") from e
        if not resp.data:
            raise RepositoryError("insert returned no row")
        return resp.data[0].get('id')

    def update_status(self, article_id, status: str) -> None:
        if status not in STATUSES:
            raise ValueError(f"invalid status: {status}")
        fields = {'status': status}
        if status == 'published':
            resp = self._q().select('published_at').eq('id', article_id).limit(1).execute()
            rows = resp.data or []
            if not rows:
                raise RepositoryError(f"article {article_id} not found")
            if not rows[0].get('published_at'):
                fields['published_at'] = _now_iso()
        self.update(article_id, fields)

    def update(self, article_id, fields: dict) -> None:
        blocked = {'id', 'created_at'} & set(fields)
        if blocked:
            raise ValueError(f"read-only fields: {', '.join(sorted(blocked))}")
        try:
            self._q().update(fields).eq('id', article_id).execute()
        except Exception as e:
            raise RepositoryError(f"update failed: {e}") from e

    def delete(self, article_id) -> None:
        try:
            self._q().delete().eq('id', article_id).execute()
        except Exception as e:
            raise RepositoryError(f"delete failed: {e}") from e

    def delete_many(self, article_ids: list, batch_size: int = 50) -> int:
        ids = list(article_ids)
        for i in range(0, len(ids), batch_size):
            try:
                self._q().delete().in_('id', ids[i:i + batch_size]).execute()
            except Exception as e:
                raise RepositoryError(f"bulk delete failed: {e}") from e
        return len(ids)

    def increment_views(self, article_id) -> int:
        resp = self._q().select('views').eq('id', article_id).limit(1).execute()
        rows = resp.data or []
        if not rows:
            raise RepositoryError(f"article {article_id} not found")
        views = (rows[0].get('views') or 0) + 1
        self.update(article_id, {'views': views})
        return views

    def list_articles(self, status: str | None = None, limit: int = 100) -> list[dict]:
        query = self._q().select('id,slug,title,status,views,created_at,published_at')
        if status:
            query = query.eq('status', status)
        resp = query.order('created_at', desc=True).limit(limit).execute()
        return resp.data or []


class UsageRecorder:
    """Appends token usage rows; failures never reach the caller."""

    def __init__(self, client: SupabaseClient, table: str = USAGE_TABLE):
        self.client = client
        self.table = table

    def record(self, model: str, response, operation: str) -> None:
        usage = getattr(response, "usage_metadata", None)
        row = {
            'model':         model,
            'input_tokens':  getattr(usage, "prompt_token_count", None) or 0,
            'output_tokens': getattr(usage, "candidates_token_count", None) or 0,
            'operation':     operation,
        }
        try:
            self.client.table(self.table).insert(row).execute()
        except Exception as e:
            print(f"  ⚠️ Usage logging failed (non-fatal): {e}")
