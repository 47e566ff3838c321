from datetime import datetime, timezone

import pytest

from ingest.models import Feed
from ingest.monitoring import RunMonitor


@pytest.fixture
def monitor():
    return RunMonitor(alert_threshold=3)


class TestRunMonitor:
    def test_initial_status_empty(self, monitor):
        assert monitor.get_status() == {"failures": {}, "last": {}}

    def test_record_success_resets_counter(self, monitor):
        monitor.record_failure("articleFetch", "boom")
        monitor.record_failure("articleFetch", "boom")
        monitor.record_success("articleFetch", {"totalFetched": 1})
        assert monitor.get_failures("articleFetch") == 0

    def test_record_failure_increments(self, monitor):
        monitor.record_failure("articleCleanup", "boom")
        monitor.record_failure("articleCleanup", "boom")
        assert monitor.get_failures("articleCleanup") == 2

    def test_alert_triggered_at_threshold(self, monitor):
        assert not monitor.record_failure("articleFetch", "e")  # 1
        assert not monitor.record_failure("articleFetch", "e")  # 2
        assert monitor.record_failure("articleFetch", "e")       # 3 = threshold

    def test_alert_only_once(self, monitor):
        for _ in range(3):
            monitor.record_failure("articleFetch", "e")
        assert not monitor.record_failure("articleFetch", "e")

    def test_alert_resets_after_success(self, monitor):
        for _ in range(3):
            monitor.record_failure("articleFetch", "e")
        monitor.record_success("articleFetch")
        monitor.record_failure("articleFetch", "e")
        monitor.record_failure("articleFetch", "e")
        assert monitor.record_failure("articleFetch", "e")

    def test_independent_jobs(self, monitor):
        monitor.record_failure("articleFetch", "e")
        monitor.record_failure("articleCleanup", "e")
        assert monitor.get_failures("articleFetch") == 1
        assert monitor.get_failures("articleCleanup") == 1

    def test_get_failures_unknown_job(self, monitor):
        assert monitor.get_failures("unknown") == 0
        assert monitor.get_last_result("unknown") is None

    def test_last_result(self, monitor):
        at = datetime(2024, 6, 30, 2, 0, tzinfo=timezone.utc)
        monitor.record_success("articleCleanup", {"deleted": 12}, at=at)
        assert monitor.get_last_result("articleCleanup") == {
            "ok": True,
            "at": "2024-06-30T02:00:00+00:00",
            "result": {"deleted": 12},
        }
        monitor.record_failure("articleCleanup", "disk full", at=at)
        assert monitor.get_last_result("articleCleanup")["error"] == "disk full"
        assert monitor.get_status()["failures"] == {"articleCleanup": 1}


class TestCheckFeed:
    def test_alert_exactly_at_threshold(self, monitor):
        feed = Feed(id=1, url="https://example.com/rss", title="Example", error_count=3)
        assert monitor.check_feed(feed)

    def test_no_alert_below_or_above(self, monitor):
        below = Feed(id=1, url="u", title="t", error_count=2)
        above = Feed(id=1, url="u", title="t", error_count=4)
        assert not monitor.check_feed(below)
        assert not monitor.check_feed(above)
        # la surveillance ne desactive jamais un feed
        assert above.is_active
