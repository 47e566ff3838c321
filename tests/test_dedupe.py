from datetime import datetime, timezone

import pytest

from ingest.dedupe import DuplicateDetector, ExistingIndex
from ingest.models import CandidateItem


NOW = datetime(2024, 6, 30, tzinfo=timezone.utc)


def cand(title, link, guid=None):
    return CandidateItem(title=title, link=link, pub_date=NOW, raw_content="c", guid=guid)


@pytest.fixture
def detector():
    return DuplicateDetector()


class TestExistingIndex:
    def test_from_rows_skips_empty(self):
        idx = ExistingIndex.from_rows([("https://a", None, "A"), ("https://b", "", "")])
        assert idx.links == {"https://a", "https://b"}
        assert idx.guids == set()
        assert idx.titles == {"A"}


class TestDuplicateDetector:
    def test_no_existing(self, detector):
        items = [cand("A", "https://a"), cand("B", "https://b")]
        assert detector.filter(items, ExistingIndex()) == items

    def test_duplicate_link(self, detector):
        idx = ExistingIndex.from_rows([("https://a", None, "Old title")])
        assert detector.duplicate_reason(cand("New", "https://a"), idx) == "duplicate link"

    def test_duplicate_guid(self, detector):
        idx = ExistingIndex.from_rows([("https://old", "g1", "Old")])
        assert detector.duplicate_reason(cand("New", "https://new", guid="g1"), idx) == "duplicate guid"

    def test_duplicate_title(self, detector):
        idx = ExistingIndex.from_rows([("https://old", None, "Same")])
        assert detector.duplicate_reason(cand("Same", "https://new"), idx) == "duplicate title"

    def test_link_checked_first(self, detector):
        idx = ExistingIndex.from_rows([("https://a", "g1", "A")])
        assert detector.duplicate_reason(cand("A", "https://a", guid="g1"), idx) == "duplicate link"

    def test_fresh_item(self, detector):
        idx = ExistingIndex.from_rows([("https://a", "g1", "A")])
        assert detector.duplicate_reason(cand("B", "https://b", guid="g2"), idx) is None

    def test_empty_guid_never_matches(self, detector):
        idx = ExistingIndex()
        idx.guids.add("")
        assert detector.duplicate_reason(cand("B", "https://b", guid=""), idx) is None

    def test_duplicates_within_batch(self, detector):
        items = [cand("A", "https://a"), cand("A bis", "https://a"), cand("C", "https://c")]
        kept = detector.filter(items, ExistingIndex())
        assert [i.title for i in kept] == ["A", "C"]

    def test_filter_preserves_order(self, detector):
        idx = ExistingIndex.from_rows([("https://b", None, "B")])
        items = [cand("C", "https://c"), cand("B", "https://b"), cand("A", "https://a")]
        assert [i.title for i in detector.filter(items, idx)] == ["C", "A"]
