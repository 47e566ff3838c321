from datetime import datetime, timezone, timedelta

from ingest.utils import (
    as_utc,
    clean_categories,
    content_preview,
    is_http_url,
    parse_feed_date,
    referer_for,
    strip_html_to_text,
    truncate_text,
    url_origin,
)


# ── text helpers ──────────────────────────────────────────────

class TestTextHelpers:
    def test_title_under_limit_kept(self):
        assert truncate_text("Breaking news", 500) == "Breaking news"

    def test_title_over_limit_cut(self):
        cut = truncate_text("Storm hits the coast tonight", 12)
        assert cut == "Storm hit..."
        assert len(cut) == 12

    def test_truncate_empty(self):
        assert truncate_text(None, 10) == ""

    def test_strip_markup(self):
        text = strip_html_to_text('<div><a href="https://example.com">Read</a> &amp; share</div>')
        assert text.replace("\n", "") == "Read & share"

    def test_strip_empty(self):
        assert strip_html_to_text("") == ""

    def test_strip_paragraph_runs(self):
        text = strip_html_to_text("<p>one</p>" * 6)
        assert "\n\n\n" not in text
        assert text.count("one") == 6


class TestContentPreview:
    def test_short_content_kept(self):
        assert content_preview("<p>Short <i>body</i></p>") == "Short body"

    def test_long_content_truncated(self):
        result = content_preview("<p>" + "word " * 100 + "</p>", max_length=50)
        assert result.endswith("...")
        assert len(result) <= 53


# ── clean_categories ──────────────────────────────────────────

class TestCleanCategories:
    def test_keeps_order(self):
        assert clean_categories(["World", "Politics"]) == ["World", "Politics"]

    def test_deduplicates_case_insensitive(self):
        assert clean_categories(["Tech", "tech", "TECH"]) == ["Tech"]

    def test_drops_empty(self):
        assert clean_categories([None, "", "  ", "News"]) == ["News"]

    def test_none(self):
        assert clean_categories(None) == []


# ── referer_for ───────────────────────────────────────────────

REFERERS = {"politico": "https://www.politico.com/", "bbc": "https://www.bbc.com/"}


class TestRefererFor:
    def test_known_host_politico(self):
        assert referer_for("https://rss.politico.com/politics-news.xml", REFERERS) == "https://www.politico.com/"

    def test_known_host_bbc(self):
        assert referer_for("https://feeds.bbci.co.uk/news/rss.xml", REFERERS) == "https://www.bbc.com/"

    def test_feed_like_url_gets_origin(self):
        assert referer_for("https://example.com/blog/feed", REFERERS) == "https://example.com"

    def test_other_url_gets_none(self):
        assert referer_for("https://example.com/atom.xml", REFERERS) is None

    def test_table_is_data_driven(self):
        table = {"example": "https://ref.example/"}
        assert referer_for("https://example.com/atom.xml", table) == "https://ref.example/"


class TestUrlOrigin:
    def test_origin(self):
        assert url_origin("https://example.com:8443/a/b?c=1") == "https://example.com:8443"

    def test_not_a_url(self):
        assert url_origin("tag:example.com,2024:1") is None


# ── dates ─────────────────────────────────────────────────────

class TestParseFeedDate:
    def test_rfc822(self):
        dt = parse_feed_date("Mon, 03 Jun 2024 10:00:00 GMT")
        assert dt == datetime(2024, 6, 3, 10, 0, tzinfo=timezone.utc)

    def test_timezone_abbreviation(self):
        dt = parse_feed_date("Mon, 03 Jun 2024 10:00:00 EST")
        assert dt == datetime(2024, 6, 3, 15, 0, tzinfo=timezone.utc)

    def test_iso(self):
        dt = parse_feed_date("2024-06-03T10:00:00+02:00")
        assert dt == datetime(2024, 6, 3, 8, 0, tzinfo=timezone.utc)

    def test_garbage(self):
        assert parse_feed_date("not a date") is None

    def test_empty(self):
        assert parse_feed_date("") is None
        assert parse_feed_date(None) is None


class TestAsUtc:
    def test_naive_taken_as_utc(self):
        assert as_utc(datetime(2024, 1, 1, 12)) == datetime(2024, 1, 1, 12, tzinfo=timezone.utc)

    def test_converts_offset(self):
        dt = datetime(2024, 1, 1, 12, tzinfo=timezone(timedelta(hours=2)))
        assert as_utc(dt).hour == 10

    def test_none(self):
        assert as_utc(None) is None


class TestIsHttpUrl:
    def test_http(self):
        assert is_http_url("https://example.com/a")

    def test_not_http(self):
        assert not is_http_url("urn:uuid:1234")
        assert not is_http_url(None)
