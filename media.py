"""
media.py: enriches a draft with images, a trailer and a store widget.

Resolution order for the lead block of the body:
  1. trailer video embed, when a video id was found
  2. otherwise the first accepted reference image
Cover image: first accepted image, else the trailer thumbnail, else none
(the caller falls back to a placeholder keyed by slug).
"""

import re
import html
from dataclasses import dataclass, field
from urllib.parse import urljoin

import numpy as np
import requests
import yt_dlp
from bs4 import BeautifulSoup
from google.genai import types

from config import (
    HEADERS,
    HTTP_TIMEOUT,
    MAX_ACCEPTED_IMAGES,
    STEAM_SEARCH_URL,
    STEAM_WIDGET_URL,
    STORE_MATCH_THRESHOLD,
    VISION_MODEL,
    YOUTUBE_EMBED_URL,
    YOUTUBE_THUMBNAIL_URL,
)
from drafts import Draft, Reference

_H2_RE = re.compile(r"<h2[\s>]", re.IGNORECASE)


@dataclass
class ResolvedMedia:
    main_image_url: str | None = None
    video_id: str | None = None
    store_widget_id: str | None = None
    inserted_image_urls: list[str] = field(default_factory=list)


# ─── Open Graph images ───────────────────────────────────────────────────────

def fetch_og_image(url: str, timeout: int = 10) -> str:
    """Absolute og:image URL declared by the page, or ''."""
    r = requests.get(url, headers=HEADERS, timeout=timeout, allow_redirects=True)
    r.raise_for_status()
    soup = BeautifulSoup(r.text, "html.parser")

    tag = soup.find("meta", property="og:image") or soup.find("meta", attrs={"name": "og:image"})
    image = (tag.get("content") or "").strip() if tag else ""
    if not image:
        return ""
    return urljoin(r.url or url, image)


def is_live_image(url: str, timeout: int = HTTP_TIMEOUT) -> bool:
    """HEAD the image, falling back to a one-byte ranged GET when HEAD is refused."""
    try:
        resp = requests.head(url, headers=HEADERS, timeout=timeout, allow_redirects=True)
        if resp.ok:
            return resp.headers.get("Content-Type", "").lower().startswith("image/")
    except requests.RequestException:
        pass

    try:
        resp = requests.get(
            url,
            headers={**HEADERS, "Range": "bytes=0-0"},
            timeout=timeout,
            allow_redirects=True,
            stream=True,
        )
        try:
            return resp.ok and resp.headers.get("Content-Type", "").lower().startswith("image/")
        finally:
            resp.close()
    except requests.RequestException:
        return False


def judge_image_relevance(client, image_url: str, draft: Draft, usage=None,
                          model: str = VISION_MODEL) -> bool:
    """Ask the vision model whether the image fits the article. Errors count as relevant."""
    try:
        r = requests.get(image_url, headers=HEADERS, timeout=HTTP_TIMEOUT)
        r.raise_for_status()
        mime_type = r.headers.get("Content-Type", "image/jpeg").split(";")[0].strip()

        prompt = (
            "この画像は次の記事のアイキャッチ・挿絵として内容的に適切ですか？\n"
            f"タイトル: {draft.title}\n"
            f"概要: {draft.excerpt}\n"
            "広告・ロゴだけの画像・無関係な人物や別作品の画像なら NO。"
            "YES か NO の一語だけで答えてください。"
        )
        response = client.models.generate_content(
            model=model,
            contents=[types.Part.from_bytes(data=r.content, mime_type=mime_type), prompt],
        )
        if usage is not None:
            usage.record(model, response, "image_validation")
        answer = (getattr(response, "text", None) or "").strip().upper()
        return answer.startswith(("YES", "はい"))
    except Exception as e:
        print(f"    ⚠️ Relevance check failed, assuming relevant: {e}")
        return True


def collect_reference_images(client, draft: Draft, usage=None,
                             limit: int = MAX_ACCEPTED_IMAGES) -> list[str]:
    accepted = []
    for ref in draft.references:
        if len(accepted) >= limit:
            break
        try:
            image = fetch_og_image(ref.url)
        except Exception as e:
            print(f"    ⚠️ Could not fetch {ref.url}: {e}")
            continue
        if not image:
            print(f"    ⏭️  No og:image on {ref.url}")
            continue
        if image in accepted:
            continue
        if not is_live_image(image):
            print(f"    ⏭️  Dead or non-image URL: {image}")
            continue
        if not judge_image_relevance(client, image, draft, usage=usage):
            print(f"    ⏭️  Judged irrelevant: {image}")
            continue
        print(f"    🖼️  Accepted image: {image}")
        accepted.append(image)
    return accepted


# ─── Trailer & store lookups ─────────────────────────────────────────────────

def search_trailer(title: str) -> str | None:
    """Video id of the top search hit for '<title> official trailer'."""
    query = f"{title} official trailer"
    ydl_opts = {'quiet': True, 'extract_flat': 'in_playlist', 'skip_download': True}
    try:
        with yt_dlp.YoutubeDL(ydl_opts) as ydl:
            info = ydl.extract_info(f"ytsearch1:{query}", download=False)
    except Exception as e:
        print(f"    ⚠️ Trailer search failed: {e}")
        return None

    for entry in (info or {}).get('entries') or []:
        if entry and entry.get('id'):
            return entry['id']
    return None


def _bigrams(text: str) -> list[str]:
    text = re.sub(r"\s+", "", text.lower())
    return [text[i:i + 2] for i in range(len(text) - 1)] or ([text] if text else [])


def cosine_similarity(v1, v2):
    norm = np.linalg.norm(v1) * np.linalg.norm(v2)
    if not norm:
        return 0.0
    return float(np.dot(v1, v2) / norm)


def title_similarity(a: str, b: str) -> float:
    """Cosine similarity of character-bigram counts."""
    grams_a, grams_b = _bigrams(a), _bigrams(b)
    vocab = sorted(set(grams_a) | set(grams_b))
    v1 = np.array([grams_a.count(g) for g in vocab], dtype=float)
    v2 = np.array([grams_b.count(g) for g in vocab], dtype=float)
    return cosine_similarity(v1, v2)


def search_store(title: str, threshold: float = STORE_MATCH_THRESHOLD) -> str | None:
    """Steam app id of the top storefront search hit."""
    try:
        resp = requests.get(
            STEAM_SEARCH_URL,
            params={"term": title, "l": "japanese", "cc": "JP"},
            headers=HEADERS,
            timeout=10,
        )
        resp.raise_for_status()
        items = resp.json().get("items") or []
    except Exception as e:
        print(f"    ⚠️ Store search failed: {e}")
        return None

    if not items:
        return None
    top = items[0]
    if threshold > 0 and title_similarity(title, top.get("name") or "") < threshold:
        print(f"    ⏭️  Store hit '{top.get('name')}' too far from title, skipped.")
        return None
    return str(top["id"]) if top.get("id") else None


# ─── Body composition ────────────────────────────────────────────────────────

def video_block(video_id: str) -> str:
    src = html.escape(YOUTUBE_EMBED_URL.format(video_id=video_id), quote=True)
    return (
        '<div class="video-container">'
        f'<iframe src="{src}" title="YouTube video player" frameborder="0" '
        'allow="accelerometer; autoplay; clipboard-write; encrypted-media; gyroscope; picture-in-picture" '
        'allowfullscreen></iframe></div>'
    )


def image_block(url: str, alt: str = "") -> str:
    return (
        '<figure class="article-image">'
        f'<img src="{html.escape(url, quote=True)}" alt="{html.escape(alt, quote=True)}" loading="lazy">'
        '</figure>'
    )


def store_block(app_id: str) -> str:
    src = html.escape(STEAM_WIDGET_URL.format(app_id=app_id), quote=True)
    return (
        '<div class="store-widget">'
        f'<iframe src="{src}" frameborder="0" width="646" height="190"></iframe></div>'
    )


def references_block(references: list[Reference]) -> str:
    items = [
        f'<li><a href="{html.escape(ref.url, quote=True)}" target="_blank" rel="noopener noreferrer">'
        f'{html.escape(ref.title)}</a></li>'
        for ref in references
        if ref.title.strip() and ref.url.strip()
    ]
    if not items:
        return ""
    return '<div class="references"><h3>参考リンク</h3><ul>' + "".join(items) + '</ul></div>'


def insert_before_headings(content: str, images: list[str], alt: str = "") -> str:
    """Place images[i] right before the i-th <h2>, in body order."""
    positions = [m.start() for m in _H2_RE.finditer(content)][:len(images)]
    for pos, url in reversed(list(zip(positions, images))):
        content = content[:pos] + image_block(url, alt) + "\n" + content[pos:]
    return content


def compose_body(draft: Draft, media: ResolvedMedia, accepted: list[str]) -> str:
    """Fill in media and return the final HTML. Mutates `media` with what was used."""
    remaining = list(accepted)
    lead = ""

    if media.video_id:
        lead = video_block(media.video_id)
        if remaining:
            media.main_image_url = remaining.pop(0)
        else:
            media.main_image_url = YOUTUBE_THUMBNAIL_URL.format(video_id=media.video_id)
    elif remaining:
        media.main_image_url = remaining.pop(0)
        lead = image_block(media.main_image_url, draft.title)

    media.inserted_image_urls = remaining[:MAX_ACCEPTED_IMAGES - 1]
    body = insert_before_headings(draft.content, media.inserted_image_urls, draft.title)

    parts = [lead, body] if lead else [body]
    if media.store_widget_id:
        parts.append(store_block(media.store_widget_id))
    refs = references_block(draft.references)
    if refs:
        parts.append(refs)
    return "\n".join(parts)


def resolve_media(client, draft: Draft, usage=None) -> tuple[Draft, ResolvedMedia]:
    """Finalize the draft body. Individual lookups never fail the draft."""
    print("  🔎 Resolving media...")
    accepted = collect_reference_images(client, draft, usage=usage)
    media = ResolvedMedia(
        video_id=search_trailer(draft.title),
        store_widget_id=search_store(draft.title),
    )
    draft.content = compose_body(draft, media, accepted)
    print(
        f"  ✅ Media: video={media.video_id or '-'} store={media.store_widget_id or '-'} "
        f"images={len(accepted)}"
    )
    return draft, media
