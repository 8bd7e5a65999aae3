"""
drafts.py: turns a NewsItem into a structured article draft with Gemini.

The model is called with Google Search grounding, so its JSON cannot be
requested through response_mime_type and has to be parsed defensively.
Every stage returns a tagged result instead of raising:

  parse_draft()         -> Draft | ParseError
  attempt_generation()  -> Ok | RetryableErr
  generate_article()    -> Ok | ExhaustedErr
"""

import re
import json
import time
import textwrap
import unicodedata
from dataclasses import dataclass, field
from typing import Callable

from google import genai
from google.genai import types

from config import (
    AI_DISCLAIMER_HTML,
    BACKOFF_SECONDS,
    GEMINI_API_KEY,
    GEMINI_MODEL,
    MAX_ATTEMPTS,
    MAX_SLUG_LENGTH,
    MAX_SUMMARY_CHARS,
)
from sources import NewsItem

REQUIRED_KEYS = ("title", "excerpt", "content", "tags", "references")
ATTRIBUTES = ("game_news", "game_intro")

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


@dataclass
class Reference:
    title: str
    url: str


@dataclass
class Draft:
    title: str
    excerpt: str
    content: str
    tags: list[str] = field(default_factory=list)
    references: list[Reference] = field(default_factory=list)
    slug: str = ""


@dataclass
class ParseError:
    reason: str


@dataclass
class Ok:
    draft: Draft
    attempts: int


@dataclass
class RetryableErr:
    reason: str
    attempt: int


@dataclass
class ExhaustedErr:
    reason: str
    attempts: int


@dataclass
class RetryPolicy:
    max_attempts: int = MAX_ATTEMPTS
    backoff: Callable[[int], float] = lambda attempt: attempt * BACKOFF_SECONDS
    sleep: Callable[[float], None] = time.sleep


# ─── Slugs ───────────────────────────────────────────────────────────────────

def slugify(text: str, now: Callable[[], float] = time.time) -> str:
    """URL-safe slug limited to [a-z0-9-], never empty."""
    folded = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii")
    slug = folded.lower()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    slug = slug[:MAX_SLUG_LENGTH].strip("-")
    return slug or f"article-{int(now() * 1000)}"


# ─── Prompts ─────────────────────────────────────────────────────────────────

COMMON_RULES = textwrap.dedent("""
    ## ルール
    - 本文はHTMLで書く（h2, p, a, ul, li タグのみ使用）
    - 本文に img / iframe / video / figure / script タグを絶対に含めない（画像と動画はシステムが挿入する）
    - ニュースの事実だけを要約する（著作権に配慮し、原文をそのままコピーしない）
    - Google検索で最新の公式情報を確認し、確認できなかった内容は推測と明記する
    - 引用元の名前とURLは本文に含めず、"references" に実際に参照したページを列挙する
    - "references" には記事内容の根拠となったページ（公式サイト・ニュース記事）を最大5件まで入れる
    - 記事末尾のAI生成表記は自動追加されるので含めない

    ## 出力形式（JSON）
    {
      "title": "読者の興味を引くタイトル（煽りすぎず、キャッチーに）",
      "excerpt": "記事の要約（1-2文、100文字以内）",
      "content": "<p>導入文</p><h2>見出し</h2><p>本文</p>...",
      "tags": ["タグ1", "タグ2", "タグ3"],
      "references": [{"title": "参照ページのタイトル", "url": "https://..."}]
    }

    JSONのみを出力してください。マークダウンのコードブロックは不要です。
""").strip()

NEWS_TEMPLATE = textwrap.dedent("""
    あなたはゲームニュースブログ「俺的ゲームニュース」のライターです。
    以下のニュース情報をもとに、ゲームニュースブログ風の記事を作成してください。

    ## 記事スタイル
    - タイトル例: 「上司をクビに!? 狂気のハム工場ゲーム爆誕」
    - 文体: カジュアルで親しみやすいが、過度なネットスラング（wwwwなど）は使わない
    - 読者に語りかけるように書く（「ご存知ですか？」「間違いなし！」など）

    ## 記事構成（HTML）
    1. 冒頭の導入文 (<p>) - ニュースの要点を1-2文で紹介
    2. <h2>〇〇とは？</h2> - ゲームやニュースの詳しい紹介
    3. <h2>注目ポイント</h2> - 斬新なシステムや魅力を解説
    4. <h2>ネットの反応は？</h2> - 反応の紹介（推測の場合は事実と明確に区別する）
    5. <h2>公式情報</h2> - 発売日・対応機種・価格など（わかる場合のみ）
""").strip()

INTRO_TEMPLATE = textwrap.dedent("""
    あなたはゲームニュースブログ「俺的ゲームニュース」のライターです。
    以下の情報をもとに、1本のゲームをじっくり紹介する記事を作成してください。

    ## 記事スタイル
    - タイトル例: 「今こそ遊ぶべき！ 〇〇の魅力を徹底紹介」
    - 文体: 丁寧で親しみやすく、未プレイの読者にも伝わるように書く
    - 良い点だけでなく、人を選ぶポイントにも触れる

    ## 記事構成（HTML）
    1. 冒頭の導入文 (<p>) - どんなゲームかを1-2文で紹介
    2. <h2>どんなゲーム？</h2> - ジャンル・世界観・あらすじ
    3. <h2>ゲームシステム</h2> - 遊び方と特徴的なシステム
    4. <h2>ここが魅力！</h2> - おすすめポイント
    5. <h2>こんな人におすすめ</h2> - 向いているプレイヤー像
    6. <h2>基本情報</h2> - 発売日・対応機種・価格など（わかる場合のみ）
""").strip()

TEMPLATES = {
    "game_news": NEWS_TEMPLATE,
    "game_intro": INTRO_TEMPLATE,
}


def build_prompt(item: NewsItem, attribute: str = "game_news") -> str:
    template = TEMPLATES.get(attribute, NEWS_TEMPLATE)
    news_block = textwrap.dedent(f"""
        ## ニュース情報
        タイトル: {item.title}
        ソース: {item.source_name}
        URL: {item.link or "（なし）"}
        概要: {item.summary[:MAX_SUMMARY_CHARS]}
    """).strip()
    return f"{template}\n\n{COMMON_RULES}\n\n{news_block}"


# ─── Parsing ─────────────────────────────────────────────────────────────────

def _clean_tags(raw) -> list[str]:
    tags = []
    for tag in raw or []:
        tag = str(tag).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def _clean_references(raw) -> list[Reference]:
    refs = []
    for ref in raw or []:
        if not isinstance(ref, dict):
            continue
        url = str(ref.get("url") or "").strip()
        if not url:
            continue
        refs.append(Reference(title=str(ref.get("title") or "").strip(), url=url))
    return refs


def parse_draft(text: str) -> Draft | ParseError:
    """Parse untrusted model output into a Draft."""
    if not text or not text.strip():
        return ParseError("empty response")

    body = _FENCE_RE.sub("", text.strip()).strip()
    body = _CONTROL_RE.sub("", body)
    start, end = body.find("{"), body.rfind("}")
    if start == -1 or end <= start:
        return ParseError("no JSON object in response")

    try:
        parsed = json.loads(body[start:end + 1], strict=False)
    except (ValueError, RecursionError) as e:
        return ParseError(f"malformed JSON: {str(e)[:200]}")
    if not isinstance(parsed, dict):
        return ParseError("response is not a JSON object")

    missing = [k for k in REQUIRED_KEYS if k not in parsed]
    if missing:
        return ParseError(f"missing fields: {', '.join(missing)}")

    title = str(parsed["title"] or "").strip()
    content = parsed["content"]
    if not title or not isinstance(content, str) or not content.strip():
        return ParseError("empty title or content")
    if not isinstance(parsed["tags"], list) or not isinstance(parsed["references"], list):
        return ParseError("tags and references must be lists")

    return Draft(
        title=title,
        excerpt=str(parsed["excerpt"] or "").strip(),
        content=content.strip(),
        tags=_clean_tags(parsed["tags"]),
        references=_clean_references(parsed["references"]),
        slug=slugify(title),
    )


def grounding_references(response) -> list[Reference]:
    """Web sources the search tool attached to the response."""
    refs = []
    seen = set()
    for candidate in getattr(response, "candidates", None) or []:
        metadata = getattr(candidate, "grounding_metadata", None)
        for chunk in getattr(metadata, "grounding_chunks", None) or []:
            web = getattr(chunk, "web", None)
            uri = getattr(web, "uri", None)
            if not uri or uri in seen:
                continue
            seen.add(uri)
            refs.append(Reference(title=getattr(web, "title", None) or "", url=uri))
    return refs


# ─── Generation ──────────────────────────────────────────────────────────────

def setup_gemini():
    if not GEMINI_API_KEY:
        raise RuntimeError("GEMINI_API_KEY not set")
    return genai.Client(api_key=GEMINI_API_KEY)


def attempt_generation(client, item: NewsItem, attribute: str = "game_news",
                       usage=None, model: str = GEMINI_MODEL, attempt: int = 1) -> Ok | RetryableErr:
    """One grounded model call. Transport errors and bad output look the same."""
    try:
        response = client.models.generate_content(
            model=model,
            contents=build_prompt(item, attribute),
            config=types.GenerateContentConfig(
                tools=[types.Tool(google_search=types.GoogleSearch())],
            ),
        )
    except Exception as e:
        return RetryableErr(reason=str(e)[:200], attempt=attempt)

    if usage is not None:
        usage.record(model, response, "generate")

    result = parse_draft(getattr(response, "text", None) or "")
    if isinstance(result, ParseError):
        return RetryableErr(reason=result.reason, attempt=attempt)

    if not result.references:
        result.references = grounding_references(response)
    result.content = f"{result.content}\n{AI_DISCLAIMER_HTML}"
    return Ok(draft=result, attempts=attempt)


def generate_article(client, item: NewsItem, attribute: str = "game_news", usage=None,
                     policy: RetryPolicy | None = None, model: str = GEMINI_MODEL) -> Ok | ExhaustedErr:
    policy = policy or RetryPolicy()
    last = None
    for attempt in range(1, policy.max_attempts + 1):
        result = attempt_generation(client, item, attribute, usage=usage, model=model, attempt=attempt)
        if isinstance(result, Ok):
            return result

        last = result
        print(f"  ⚠️ Attempt {attempt}/{policy.max_attempts} failed: {result.reason[:100]}")
        if attempt < policy.max_attempts:
            wait = policy.backoff(attempt)
            print(f"  ⏳ Waiting {wait:g}s before retrying...")
            policy.sleep(wait)

    print("  ❌ Draft generation failed after all attempts.")
    return ExhaustedErr(reason=last.reason if last else "no attempts made", attempts=policy.max_attempts)
