"""Tests for the media module."""

from types import SimpleNamespace
from unittest.mock import patch, MagicMock

import pytest
import requests

from drafts import Reference
from media import (
    ResolvedMedia,
    collect_reference_images,
    compose_body,
    fetch_og_image,
    insert_before_headings,
    is_live_image,
    judge_image_relevance,
    references_block,
    resolve_media,
    search_store,
    search_trailer,
    title_similarity,
)

THUMB = "https://img.youtube.com/vi/abc123/hqdefault.jpg"


def _http(status=200, content_type="image/png", text="", url="", content=b"", json_data=None):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = status < 400
    resp.headers = {"Content-Type": content_type}
    resp.text = text
    resp.url = url
    resp.content = content
    resp.json.return_value = json_data or {}
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(str(status))
    else:
        resp.raise_for_status.return_value = None
    return resp


class TestComposeBody:
    def test_video_without_images_uses_thumbnail_as_cover(self, draft) -> None:
        media = ResolvedMedia(video_id="abc123")
        body = compose_body(draft, media, [])
        assert body.startswith('<div class="video-container">')
        assert "https://www.youtube.com/embed/abc123" in body
        assert media.main_image_url == THUMB
        assert "<img" not in body

    def test_image_without_video_leads_and_is_cover(self, draft) -> None:
        media = ResolvedMedia()
        body = compose_body(draft, media, ["https://img.example.com/1.jpg"])
        assert body.startswith('<figure class="article-image"><img src="https://img.example.com/1.jpg"')
        assert media.main_image_url == "https://img.example.com/1.jpg"
        assert media.inserted_image_urls == []

    def test_video_wins_lead_when_both_exist(self, draft) -> None:
        media = ResolvedMedia(video_id="abc123")
        body = compose_body(draft, media, ["https://img.example.com/1.jpg", "https://img.example.com/2.jpg"])
        assert body.startswith('<div class="video-container">')
        assert media.main_image_url == "https://img.example.com/1.jpg"
        assert media.inserted_image_urls == ["https://img.example.com/2.jpg"]
        assert "https://img.example.com/1.jpg" not in body

    def test_no_media_leaves_body_without_lead(self, draft) -> None:
        media = ResolvedMedia()
        body = compose_body(draft, media, [])
        assert body.startswith("<p>intro</p>")
        assert media.main_image_url is None

    def test_remaining_images_go_before_headings_in_order(self, draft) -> None:
        draft.content = "<p>intro</p><h2>One</h2><p>a</p><h2>Two</h2><p>b</p><h2>Three</h2><p>c</p>"
        images = [f"https://img.example.com/{n}.jpg" for n in (1, 2, 3)]
        body = compose_body(draft, ResolvedMedia(), images)

        assert body.index("/2.jpg") < body.index("<h2>One</h2>")
        assert body.index("<h2>One</h2>") < body.index("/3.jpg") < body.index("<h2>Two</h2>")
        between = body[body.index("<h2>Two</h2>"):body.index("<h2>Three</h2>")]
        assert "<img" not in between
        assert body.count("<img") == 3

    def test_store_widget_and_references_appended(self, draft) -> None:
        media = ResolvedMedia(store_widget_id="1245620")
        body = compose_body(draft, media, [])
        widget = body.index("https://store.steampowered.com/widget/1245620/")
        refs = body.index('<div class="references">')
        assert body.index("<p>more</p>") < widget < refs
        assert body.endswith("</ul></div>")

    def test_no_references_no_appendix(self, draft) -> None:
        draft.references = []
        assert '<div class="references">' not in compose_body(draft, ResolvedMedia(), [])


class TestReferencesBlock:
    def test_empty_titles_excluded(self) -> None:
        block = references_block([
            Reference(title="A", url="https://a"),
            Reference(title="", url="https://b"),
        ])
        assert block.count("<li>") == 1
        assert 'href="https://a"' in block
        assert "https://b" not in block

    def test_values_are_escaped(self) -> None:
        block = references_block([Reference(title="<b>x</b>", url='https://a/?q="1"')])
        assert "&lt;b&gt;" in block
        assert "&quot;1&quot;" in block

    def test_all_empty_gives_nothing(self) -> None:
        assert references_block([Reference(title="", url="https://b")]) == ""


class TestInsertBeforeHeadings:
    def test_more_images_than_headings(self) -> None:
        body = insert_before_headings("<p>x</p><h2>Only</h2>", ["https://i/1.png", "https://i/2.png"])
        assert body.count("<img") == 1
        assert "https://i/1.png" in body

    def test_heading_with_attributes(self) -> None:
        body = insert_before_headings('<H2 class="x">Title</H2><h2x>', ["https://i/1.png"])
        assert body.index("https://i/1.png") < body.index("<H2")


class TestFetchOgImage:
    def test_relative_url_resolved_against_page(self) -> None:
        page = '<html><head><meta property="og:image" content="/img/cover.png"></head></html>'
        with patch("media.requests.get", return_value=_http(text=page, url="https://example.com/news/1")):
            assert fetch_og_image("https://example.com/news/1") == "https://example.com/img/cover.png"

    def test_absolute_url_kept(self) -> None:
        page = '<meta property="og:image" content="https://cdn.example.com/a.jpg">'
        with patch("media.requests.get", return_value=_http(text=page, url="https://example.com/")):
            assert fetch_og_image("https://example.com/") == "https://cdn.example.com/a.jpg"

    def test_missing_tag(self) -> None:
        with patch("media.requests.get", return_value=_http(text="<html></html>", url="https://example.com/")):
            assert fetch_og_image("https://example.com/") == ""

    def test_http_error_raises(self) -> None:
        with patch("media.requests.get", return_value=_http(status=404)):
            with pytest.raises(requests.HTTPError):
                fetch_og_image("https://example.com/")


class TestIsLiveImage:
    def test_head_ok_image(self) -> None:
        with patch("media.requests.head", return_value=_http(content_type="image/jpeg")), \
                patch("media.requests.get") as mock_get:
            assert is_live_image("https://i/1.jpg")
        mock_get.assert_not_called()

    def test_head_ok_but_html(self) -> None:
        with patch("media.requests.head", return_value=_http(content_type="text/html")):
            assert not is_live_image("https://i/1.jpg")

    def test_head_rejected_falls_back_to_ranged_get(self) -> None:
        with patch("media.requests.head", return_value=_http(status=405)), \
                patch("media.requests.get", return_value=_http(status=206, content_type="image/webp")) as mock_get:
            assert is_live_image("https://i/1.jpg")
        assert mock_get.call_args.kwargs["headers"]["Range"] == "bytes=0-0"
        assert mock_get.call_args.kwargs["timeout"] == 5

    def test_both_fail(self) -> None:
        with patch("media.requests.head", side_effect=requests.ConnectionError("down")), \
                patch("media.requests.get", side_effect=requests.Timeout("slow")):
            assert not is_live_image("https://i/1.jpg")


class TestJudgeImageRelevance:
    def _client(self, text=None, error=None):
        client = MagicMock()
        if error:
            client.models.generate_content.side_effect = error
        else:
            client.models.generate_content.return_value = SimpleNamespace(text=text, usage_metadata=None)
        return client

    def test_yes_is_relevant_and_usage_recorded(self, draft) -> None:
        usage = MagicMock()
        with patch("media.requests.get", return_value=_http(content=b"\x89PNG\r\n")):
            assert judge_image_relevance(self._client("YES"), "https://i/1.png", draft, usage=usage)
        assert usage.record.call_args[0][2] == "image_validation"

    def test_no_is_irrelevant(self, draft) -> None:
        with patch("media.requests.get", return_value=_http(content=b"\x89PNG\r\n")):
            assert not judge_image_relevance(self._client("No."), "https://i/1.png", draft)

    @pytest.mark.parametrize("reply", ["いいえ", "いいえ、無関係です", "", "NO"])
    def test_anything_but_a_yes_is_irrelevant(self, draft, reply) -> None:
        with patch("media.requests.get", return_value=_http(content=b"\x89PNG\r\n")):
            assert not judge_image_relevance(self._client(reply), "https://i/1.png", draft)

    def test_japanese_yes_is_relevant(self, draft) -> None:
        with patch("media.requests.get", return_value=_http(content=b"\x89PNG\r\n")):
            assert judge_image_relevance(self._client("はい"), "https://i/1.png", draft)

    def test_model_error_assumes_relevant(self, draft) -> None:
        with patch("media.requests.get", return_value=_http(content=b"\x89PNG\r\n")):
            assert judge_image_relevance(self._client(error=RuntimeError("quota")), "https://i/1.png", draft)


class TestCollectReferenceImages:
    def test_stops_at_three_and_skips_failures(self, draft) -> None:
        draft.references = [Reference(title=str(n), url=f"https://ref/{n}") for n in range(7)]
        og = [RuntimeError("timeout"), "https://i/a.png", "", "https://i/b.png",
              "https://i/c.png", "https://i/d.png", "https://i/e.png"]
        live = {"https://i/a.png": True, "https://i/b.png": False, "https://i/c.png": True,
                "https://i/d.png": True, "https://i/e.png": True}
        relevant = {"https://i/a.png": True, "https://i/c.png": False, "https://i/d.png": True,
                    "https://i/e.png": True}
        with patch("media.fetch_og_image", side_effect=og), \
                patch("media.is_live_image", side_effect=lambda u: live[u]), \
                patch("media.judge_image_relevance", side_effect=lambda c, u, d, usage=None: relevant[u]):
            accepted = collect_reference_images(MagicMock(), draft)
        assert accepted == ["https://i/a.png", "https://i/d.png", "https://i/e.png"]

    def test_stops_fetching_once_full(self, draft) -> None:
        draft.references = [Reference(title=str(n), url=f"https://ref/{n}") for n in range(5)]
        with patch("media.fetch_og_image", side_effect=lambda u: u + ".png") as mock_og, \
                patch("media.is_live_image", return_value=True), \
                patch("media.judge_image_relevance", return_value=True):
            accepted = collect_reference_images(MagicMock(), draft)
        assert len(accepted) == 3
        assert mock_og.call_count == 3


class TestSearchTrailer:
    def test_top_result_id(self) -> None:
        ydl = MagicMock()
        ydl.extract_info.return_value = {"entries": [None, {"id": "vid1"}, {"id": "vid2"}]}
        with patch("media.yt_dlp.YoutubeDL") as mock_ydl:
            mock_ydl.return_value.__enter__.return_value = ydl
            assert search_trailer("Elden Ring") == "vid1"
        assert ydl.extract_info.call_args[0][0] == "ytsearch1:Elden Ring official trailer"

    def test_no_results(self) -> None:
        ydl = MagicMock()
        ydl.extract_info.return_value = {"entries": []}
        with patch("media.yt_dlp.YoutubeDL") as mock_ydl:
            mock_ydl.return_value.__enter__.return_value = ydl
            assert search_trailer("Nothing") is None

    def test_error_gives_none(self) -> None:
        with patch("media.yt_dlp.YoutubeDL", side_effect=RuntimeError("blocked")):
            assert search_trailer("Elden Ring") is None


class TestSearchStore:
    def test_top_result(self) -> None:
        data = {"items": [{"id": 1245620, "name": "ELDEN RING"}, {"id": 1, "name": "Other"}]}
        with patch("media.requests.get", return_value=_http(json_data=data)) as mock_get:
            assert search_store("Elden Ring") == "1245620"
        assert mock_get.call_args.kwargs["params"]["term"] == "Elden Ring"

    def test_no_results(self) -> None:
        with patch("media.requests.get", return_value=_http(json_data={"items": []})):
            assert search_store("Nothing") is None

    def test_error_gives_none(self) -> None:
        with patch("media.requests.get", side_effect=requests.ConnectionError("down")):
            assert search_store("Elden Ring") is None

    def test_similarity_gate(self) -> None:
        data = {"items": [{"id": 1245620, "name": "ELDEN RING"}]}
        with patch("media.requests.get", return_value=_http(json_data=data)):
            assert search_store("Ham Factory Simulator", threshold=0.5) is None
            assert search_store("Elden Ring", threshold=0.5) == "1245620"


class TestTitleSimilarity:
    def test_identical(self) -> None:
        assert title_similarity("Elden Ring", "ELDEN RING") == pytest.approx(1.0)

    def test_unrelated(self) -> None:
        assert title_similarity("Elden Ring", "Ham Factory") < 0.2

    def test_empty(self) -> None:
        assert title_similarity("", "x") == 0.0


class TestResolveMedia:
    def test_wires_lookups_into_body(self, draft) -> None:
        with patch("media.collect_reference_images", return_value=[]), \
                patch("media.search_trailer", return_value="abc123"), \
                patch("media.search_store", return_value=None):
            result, media = resolve_media(MagicMock(), draft)
        assert result is draft
        assert result.content.startswith('<div class="video-container">')
        assert media.main_image_url == THUMB
        assert media.store_widget_id is None
