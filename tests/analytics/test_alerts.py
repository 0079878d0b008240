from datetime import datetime, timedelta, timezone

import pytest

from src.analytics.alerts import AlertEvaluator, sentiment_change_points, volume_change_percent
from src.delivery.alert_sink import CollectingAlertSink
from src.models import AlertThreshold, Article, ArticleMetrics, Entities, KeywordTrack, Sentiment
from src.pipeline.dedup import url_hash
from src.storage.memory import MemoryStorage

NOW = datetime(2025, 3, 12, 12, 0, tzinfo=timezone.utc)


def _add(storage: MemoryStorage, count: int, *, hours_ago: float, score: float = 0.0,
         keyword: str = "tesla", prefix: str = "a") -> None:
    for i in range(count):
        url = f"https://news.example.com/{prefix}-{hours_ago}-{i}"
        storage.insert_article(Article(
            title=f"Story {i}",
            url=url,
            url_hash=url_hash(url),
            source="Example",
            published_at=NOW - timedelta(hours=hours_ago, minutes=i),
            sentiment=Sentiment(score=score, confidence=0.9, label="neutral"),
            entities=Entities(),
            metrics=ArticleMetrics(),
            keywords=[keyword],
        ))


def _evaluator(storage, **threshold) -> tuple[AlertEvaluator, CollectingAlertSink]:
    storage.insert_keyword_track(KeywordTrack(keyword="tesla", category="company",
                                              threshold=AlertThreshold(**threshold)))
    sink = CollectingAlertSink()
    return AlertEvaluator(storage, sink=sink), sink


def test_change_formulas():
    assert volume_change_percent(25, 10) == 150
    assert volume_change_percent(5, 0) == 0
    assert sentiment_change_points(0.1, -0.2) == pytest.approx(30)


def test_volume_spike_high_severity():
    storage = MemoryStorage()
    _add(storage, 10, hours_ago=30)
    _add(storage, 25, hours_ago=5)
    evaluator, sink = _evaluator(storage)

    alerts = evaluator.evaluate(now=NOW)

    assert len(alerts) == 1
    alert = alerts[0]
    assert alert.kind == "volume_spike"
    assert alert.severity == "high"
    assert alert.keyword == "tesla"
    assert alert.data["volume_change"] == pytest.approx(150)
    assert alert.message == 'Volume spike detected for "tesla": 150.0% increase (10 -> 25 articles)'
    assert alert.created_at == NOW
    assert sink.alerts == alerts
    assert storage.count_alerts() == 1


def test_volume_spike_medium_severity():
    storage = MemoryStorage()
    _add(storage, 10, hours_ago=30)
    _add(storage, 16, hours_ago=5)
    evaluator, _ = _evaluator(storage)
    alerts = evaluator.evaluate(now=NOW)
    assert [(a.kind, a.severity) for a in alerts] == [("volume_spike", "medium")]


def test_no_volume_alert_without_previous_articles():
    storage = MemoryStorage()
    _add(storage, 20, hours_ago=2)
    evaluator, sink = _evaluator(storage)
    assert evaluator.evaluate(now=NOW) == []
    assert sink.alerts == []


@pytest.mark.parametrize("previous, recent", [(5, 5), (0, 3), (8, 4)])
def test_zero_volume_threshold_needs_an_increase(previous, recent):
    storage = MemoryStorage()
    _add(storage, previous, hours_ago=30)
    _add(storage, recent, hours_ago=5)
    evaluator, sink = _evaluator(storage, volume_spike_percent=0)
    assert evaluator.evaluate(now=NOW) == []
    assert storage.count_alerts() == 0


def test_zero_volume_threshold_fires_on_any_increase():
    storage = MemoryStorage()
    _add(storage, 10, hours_ago=30)
    _add(storage, 11, hours_ago=5)
    evaluator, _ = _evaluator(storage, volume_spike_percent=0)
    alerts = evaluator.evaluate(now=NOW)
    assert [(a.kind, a.severity) for a in alerts] == [("volume_spike", "medium")]


@pytest.mark.parametrize("threshold, expected", [(20.0, ["medium"]), (40.0, [])])
def test_sentiment_change(threshold, expected):
    storage = MemoryStorage()
    _add(storage, 5, hours_ago=30, score=-0.2)
    _add(storage, 5, hours_ago=5, score=0.1)
    evaluator, _ = _evaluator(storage, sentiment_change_percent=threshold)

    alerts = [a for a in evaluator.evaluate(now=NOW) if a.kind == "sentiment_change"]

    assert [a.severity for a in alerts] == expected
    if alerts:
        assert alerts[0].data["sentiment_change"] == pytest.approx(30)
        assert alerts[0].data["previous_sentiment"] == pytest.approx(-0.2)


def test_large_sentiment_swing_is_high():
    storage = MemoryStorage()
    _add(storage, 3, hours_ago=30, score=-0.5)
    _add(storage, 3, hours_ago=5, score=0.5)
    evaluator, _ = _evaluator(storage)
    alerts = evaluator.evaluate(now=NOW)
    assert [(a.kind, a.severity) for a in alerts] == [("sentiment_change", "high")]


def test_other_keywords_do_not_count():
    storage = MemoryStorage()
    _add(storage, 2, hours_ago=30)
    _add(storage, 10, hours_ago=5, keyword="apple", prefix="b")
    evaluator, _ = _evaluator(storage)
    assert evaluator.evaluate(now=NOW) == []


def test_inactive_tracks_are_ignored():
    storage = MemoryStorage()
    _add(storage, 1, hours_ago=30)
    _add(storage, 10, hours_ago=5)
    storage.insert_keyword_track(KeywordTrack(keyword="tesla", is_active=False))
    assert AlertEvaluator(storage, sink=CollectingAlertSink()).evaluate(now=NOW) == []


def test_sink_failure_keeps_persisted_alert():
    class BrokenSink:
        def emit(self, alert):
            raise ConnectionError("webhook down")

    storage = MemoryStorage()
    _add(storage, 1, hours_ago=30)
    _add(storage, 10, hours_ago=5)
    storage.insert_keyword_track(KeywordTrack(keyword="tesla"))

    alerts = AlertEvaluator(storage, sink=BrokenSink()).evaluate(now=NOW)

    assert len(alerts) == 1
    assert storage.count_alerts() == 1


def test_failing_track_does_not_stop_others(monkeypatch):
    storage = MemoryStorage()
    _add(storage, 1, hours_ago=30)
    _add(storage, 10, hours_ago=5)
    storage.insert_keyword_track(KeywordTrack(keyword="broken"))
    storage.insert_keyword_track(KeywordTrack(keyword="tesla"))
    evaluator = AlertEvaluator(storage, sink=CollectingAlertSink())
    original = evaluator.evaluate_track

    def flaky(track, now):
        if track.keyword == "broken":
            raise RuntimeError("bad track")
        return original(track, now)

    monkeypatch.setattr(evaluator, "evaluate_track", flaky)
    alerts = evaluator.evaluate(now=NOW)
    assert [a.keyword for a in alerts] == ["tesla"]
