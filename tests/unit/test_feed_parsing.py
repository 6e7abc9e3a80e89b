"""
Unit Tests for Feed Parsing and Field Extraction
================================================
"""

from datetime import datetime, timezone

import pytest

from podfeed.ingestion.feed_parser import (
    channel_itunes_image,
    ensure_list,
    parse_feed,
    parse_pub_date,
    require_rss_root,
)
from podfeed.processing.episode_stats import (
    duration_average,
    duration_median,
    enclosure_url,
    file_server_breakdown,
    is_newest_first,
    parse_duration,
)
from podfeed.processing.extractors import (
    COVER_IMAGE_EXTRACTORS,
    cover_extension,
    extract_cover_url,
    first_present,
    remove_query,
)
from podfeed.utils.exceptions import ErrorCode, FeedParseError, MissingRootError
from tests.helpers import ATOM_FEED, NOT_XML, make_item, make_rss

FEED = "https://feeds.example.com/show.xml"


class TestParseFeed:
    """Test cases for payload parsing and the root check."""

    def test_parse_rss(self):
        payload = make_rss("Show", [make_item("Ep 1", datetime(2024, 1, 1, tzinfo=timezone.utc))])

        document = parse_feed(payload, FEED)

        assert document.version == "rss20"
        assert document.feed.title == "Show"
        assert len(document.entries) == 1

    def test_parse_text_payload(self):
        payload = make_rss("Show", []).decode("utf-8")

        assert parse_feed(payload).feed.title == "Show"

    @pytest.mark.parametrize("payload", [b"", b"   ", None])
    def test_empty_payload_is_parse_error(self, payload):
        with pytest.raises(FeedParseError) as exc_info:
            parse_feed(payload, FEED)

        assert exc_info.value.context["feed_url"] == FEED

    def test_garbage_is_parse_error(self):
        with pytest.raises(FeedParseError) as exc_info:
            parse_feed(NOT_XML, FEED)

        assert exc_info.value.error_code == ErrorCode.FEED_PARSE_ERROR
        assert exc_info.value.recoverable is True

    def test_atom_document_has_no_rss_root(self):
        document = parse_feed(ATOM_FEED, FEED)

        with pytest.raises(MissingRootError) as exc_info:
            require_rss_root(document, FEED)

        assert "atom" in str(exc_info.value)
        assert exc_info.value.error_code == ErrorCode.FEED_MISSING_ROOT

    def test_rss_document_passes_root_check(self):
        require_rss_root(parse_feed(make_rss("Show", [])))


class TestNormalisation:

    def test_ensure_list(self):
        assert ensure_list(None) == []
        assert ensure_list([1, 2]) == [1, 2]
        assert ensure_list((1,)) == [1]
        assert ensure_list({"title": "bare"}) == [{"title": "bare"}]

    def test_pub_date_is_utc(self):
        payload = make_rss("Show", [
            "<item><title>x</title><pubDate>Mon, 08 Jan 2024 10:00:00 +0900</pubDate></item>",
        ])

        entry = parse_feed(payload).entries[0]

        assert parse_pub_date(entry) == datetime(2024, 1, 8, 1, 0, tzinfo=timezone.utc)

    def test_missing_or_invalid_date(self):
        payload = make_rss("Show", [
            "<item><title>a</title></item>",
            "<item><title>b</title><pubDate>not a date</pubDate></item>",
        ])

        entries = parse_feed(payload).entries

        assert [parse_pub_date(e) for e in entries] == [None, None]


class TestCoverExtraction:
    """Test cases for the cover image fallback chain."""

    def channel(self, extra: str):
        payload = (
            '<?xml version="1.0"?>'
            '<rss version="2.0" xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd" '
            'xmlns:media="http://search.yahoo.com/mrss/">'
            f"<channel><title>Show</title>{extra}</channel></rss>"
        ).encode("utf-8")
        return parse_feed(payload).feed

    def test_itunes_image(self):
        channel = self.channel('<itunes:image href="https://img.example.com/cover.jpg?v=2"/>')

        assert extract_cover_url(channel) == "https://img.example.com/cover.jpg"

    def test_image_url_element(self):
        channel = self.channel(
            "<image><url>https://img.example.com/plain.png</url><title>Show</title></image>"
        )

        assert extract_cover_url(channel) == "https://img.example.com/plain.png"

    @pytest.mark.parametrize("elements", [
        '<image><url>https://img.example.com/plain.png</url></image>'
        '<itunes:image href="https://img.example.com/itunes.jpg"/>',
        '<itunes:image href="https://img.example.com/itunes.jpg"/>'
        '<image><url>https://img.example.com/plain.png</url></image>',
    ])
    def test_itunes_image_preferred_over_plain_image(self, elements):
        assert extract_cover_url(self.channel(elements)) == "https://img.example.com/itunes.jpg"

    def test_itunes_image_read_from_payload(self):
        payload = make_rss("Show", [], cover="https://img.example.com/itunes.jpg")

        assert channel_itunes_image(payload) == "https://img.example.com/itunes.jpg"
        assert channel_itunes_image(b"<rss><channel></channel></rss>") is None
        assert channel_itunes_image(b"not xml at all") is None

    def test_media_thumbnail(self):
        channel = self.channel('<media:thumbnail url="https://img.example.com/thumb.jpg"/>')

        assert extract_cover_url(channel) == "https://img.example.com/thumb.jpg"

    def test_no_cover(self):
        assert extract_cover_url(self.channel("")) is None

    def test_first_present_skips_blank_values(self):
        extractors = [lambda doc: "  ", lambda doc: None, lambda doc: "found"]

        assert first_present(extractors, {}) == "found"

    def test_extractors_tolerate_missing_fields(self):
        assert first_present(COVER_IMAGE_EXTRACTORS, {}) is None
        assert first_present(COVER_IMAGE_EXTRACTORS, None) is None

    def test_remove_query(self):
        assert remove_query("https://a.example.com/x.jpg?w=1#top") == "https://a.example.com/x.jpg"
        assert remove_query(None) is None

    @pytest.mark.parametrize("url,expected", [
        ("https://a.example.com/x.JPG", "jpg"),
        ("https://a.example.com/x.png", "png"),
        ("https://a.example.com/x", "jpg"),
        ("https://a.example.com/x.php?id=3", "php"),
        ("https://a.example.com/x.toolongext", "jpg"),
    ])
    def test_cover_extension(self, url, expected):
        assert cover_extension(url) == expected


class TestEpisodeStats:
    """Test cases for duration and file server statistics."""

    @pytest.mark.parametrize("value,expected", [
        ("3600", 3600),
        ("1234.8", 1234),
        ("45:30", 2730),
        ("1:02:03", 3723),
        (90, 90),
        ("", None),
        (None, None),
        ("about an hour", None),
        ("-5", None),
        ("inf", None),
        ("NaN", None),
        (float("inf"), None),
    ])
    def test_parse_duration(self, value, expected):
        assert parse_duration(value) == expected

    def test_average_and_median(self):
        entries = [
            {"itunes_duration": "10:00"},
            {"itunes_duration": "20:00"},
            {"itunes_duration": "1:00:00"},
            {"itunes_duration": "garbage"},
            {},
        ]

        assert duration_average(entries) == 1800
        assert duration_median(entries) == 1200

    def test_non_finite_duration_is_skipped(self):
        entries = [{"itunes_duration": "Infinity"}, {"itunes_duration": "30:00"}]

        assert duration_average(entries) == 1800

    def test_no_durations(self):
        assert duration_average([{}]) is None
        assert duration_median([]) is None

    def test_enclosure_url(self):
        assert enclosure_url({"enclosures": [{"href": "https://m.example.com/1.mp3"}]}) == "https://m.example.com/1.mp3"
        assert enclosure_url({"enclosures": []}) is None
        assert enclosure_url({}) is None

    def test_file_server_breakdown_most_common_first(self):
        entries = [
            {"enclosures": [{"href": "https://b.example.com/1.mp3"}]},
            {"enclosures": [{"href": "https://a.example.com/2.mp3"}]},
            {"enclosures": [{"href": "https://a.example.com/3.mp3"}]},
            {},
        ]

        breakdown = file_server_breakdown(entries)

        assert list(breakdown.items()) == [("a.example.com", 2), ("b.example.com", 1)]

    def test_newest_first(self):
        jan = [datetime(2024, 1, d, tzinfo=timezone.utc) for d in (14, 7, 1)]

        assert is_newest_first(jan) is True
        assert is_newest_first([jan[0], None, jan[2]]) is True
        assert is_newest_first(list(reversed(jan))) is False
        assert is_newest_first([]) is True
