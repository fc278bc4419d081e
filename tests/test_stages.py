import threading
from datetime import datetime, timedelta, timezone

from digest_dates.config import DateFilterSettings
from digest_dates.models import Article
from digest_dates.stages import (
    ContentScanStage,
    publishing_pattern_stage,
    rss_position_hours,
    rss_position_stage,
    title_pattern_hours,
)


NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
SETTINGS = DateFilterSettings()


def article(**kw):
    base = dict(source="economist", url="https://x.test/markets/a", title="Rates hold", body="Some body text")
    base.update(kw)
    return Article(**base)


def test_rss_position_is_monotonic_and_capped():
    hours = [rss_position_hours(p, 200) for p in range(200)]
    assert hours[0] == 1
    assert all(a <= b for a, b in zip(hours, hours[1:]))
    assert max(hours) == 72


def test_rss_position_curve_points():
    assert rss_position_hours(1, 10) == 3
    assert rss_position_hours(2, 10) == 4
    assert rss_position_hours(3, 10) == 7
    assert rss_position_hours(7, 10) == 11
    assert rss_position_hours(8, 10) == 20


def test_rss_position_clamps_to_batch_size():
    assert rss_position_hours(50, 3) == rss_position_hours(2, 3)
    assert rss_position_stage(0, 1, NOW) == NOW - timedelta(hours=1)


def test_publishing_pattern():
    assert publishing_pattern_stage(NOW) == NOW - timedelta(hours=6)
    assert publishing_pattern_stage(NOW, hours=2) == NOW - timedelta(hours=2)


def curve_hours(source, positions, total=100):
    curve, cap = SETTINGS.position_curve_for(source)
    return [rss_position_hours(p, total, curve, cap) for p in positions]


def test_bloomberg_curve_is_steeper_and_capped_at_two_days():
    assert curve_hours("bloomberg_economics", [0, 1, 2, 3, 7, 8, 14, 15]) == [0.25, 1, 2, 2, 10, 12, 18, 24]
    assert curve_hours("bloomberg_economics", [99]) == [48]


def test_ft_and_marketwatch_curves():
    assert curve_hours("ft_companies", [0, 1, 4, 5, 9, 10]) == [0.5, 4, 10, 12, 20, 24]
    assert curve_hours("ft_companies", [99]) == [72]
    assert curve_hours("marketwatch", [0, 1, 4, 5, 11, 12]) == [0.5, 2, 5, 6, 18, 24]
    assert curve_hours("MarketWatch", [99]) == [48]


def test_unprofiled_source_uses_global_curve():
    assert curve_hours("economist", range(12)) == [rss_position_hours(p, 100) for p in range(12)]


def test_every_profile_curve_is_monotonic():
    for source in SETTINGS.estimation_profiles:
        hours = curve_hours(source, range(100))
        assert all(a <= b for a, b in zip(hours, hours[1:])), source


def test_title_rules_shift_publishing_pattern():
    rules = SETTINGS.title_rules_for("economist")
    assert title_pattern_hours("BREAKING: Fed cuts rates", rules) == 0.5
    assert title_pattern_hours("Week ahead preview: payrolls", rules) == 2
    assert title_pattern_hours("Rates hold", rules) is None
    # whole-word prefixes only
    assert title_pattern_hours("Outbreaking news", rules) is None

    assert publishing_pattern_stage(NOW, 6, title="Urgent: bank halts withdrawals", rules=rules) == NOW - timedelta(minutes=30)
    assert publishing_pattern_stage(NOW, 6, title="Rates hold", rules=rules) == NOW - timedelta(hours=6)
    assert publishing_pattern_stage(NOW, 6, title=None, rules=rules) == NOW - timedelta(hours=6)


def test_source_title_rules_come_before_global_ones():
    rules = SETTINGS.title_rules_for("marketwatch")
    assert title_pattern_hours("Stock market rallies", rules) == 2
    assert title_pattern_hours("Breaking: stock market halts trading", rules) == 2
    assert title_pattern_hours("S&P 500 closes higher", rules) == 2
    assert title_pattern_hours("Stock market rallies", SETTINGS.title_rules_for("economist")) is None


def test_content_scan_returns_scanner_date():
    found = NOW - timedelta(hours=4)
    stage = ContentScanStage(lambda title, body: found, timeout_s=1.0)
    try:
        assert stage(article(), "economist", NOW) == found
    finally:
        stage.shutdown()


def test_content_scan_naive_result_is_utc():
    stage = ContentScanStage(lambda title, body: datetime(2025, 3, 1, 7, 0), timeout_s=1.0)
    try:
        assert stage(article(), "economist", NOW) == datetime(2025, 3, 1, 7, 0, tzinfo=timezone.utc)
    finally:
        stage.shutdown()


def test_content_scan_exception_means_no_candidate():
    def boom(title, body):
        raise RuntimeError("parser exploded")

    stage = ContentScanStage(boom, timeout_s=1.0)
    try:
        assert stage(article(), "economist", NOW) is None
    finally:
        stage.shutdown()


def test_content_scan_timeout_means_no_candidate():
    release = threading.Event()

    def slow(title, body):
        release.wait(5)
        return NOW

    stage = ContentScanStage(slow, timeout_s=0.05)
    try:
        assert stage(article(), "economist", NOW) is None
    finally:
        release.set()
        stage.shutdown()


def test_content_scan_ignores_non_datetime_values():
    stage = ContentScanStage(lambda title, body: "2025-03-01", timeout_s=1.0)
    try:
        assert stage(article(), "economist", NOW) is None
    finally:
        stage.shutdown()


def test_content_scan_disabled_or_missing_scanner():
    calls = []
    stage = ContentScanStage(lambda t, b: calls.append(1) or NOW, enabled=False)
    assert stage(article(), "economist", NOW) is None
    assert calls == []
    stage.shutdown()

    stage = ContentScanStage(None)
    assert stage(article(), "economist", NOW) is None
    stage.shutdown()


def test_content_scan_loads_body_when_missing():
    seen = {}

    def loader(url):
        seen["url"] = url
        return "<html>loaded</html>"

    def scanner(title, body):
        seen["body"] = body
        return NOW - timedelta(hours=1)

    stage = ContentScanStage(scanner, timeout_s=1.0, body_loader=loader)
    try:
        assert stage(article(body=None), "economist", NOW) == NOW - timedelta(hours=1)
    finally:
        stage.shutdown()
    assert seen == {"url": "https://x.test/markets/a", "body": "<html>loaded</html>"}
