"""Threshold alerting over tracked keywords: volume spikes and sentiment shifts."""

import logging
from datetime import datetime, timedelta

from src.delivery.alert_sink import AlertSink, LoggingAlertSink
from src.models import Alert, KeywordTrack, ensure_utc, utcnow
from src.storage.base import StoragePort
from src.system_log import SystemLog

logger = logging.getLogger(__name__)

ALERT_WINDOW_HOURS = 24


def volume_change_percent(recent_count: int, previous_count: int) -> float:
    if previous_count <= 0:
        return 0.0
    return (recent_count - previous_count) / previous_count * 100


def sentiment_change_points(recent_mean: float, previous_mean: float) -> float:
    return abs(recent_mean - previous_mean) * 100


class AlertEvaluator:
    """
    Compares the last ALERT_WINDOW_HOURS with the window before it for each
    active keyword track. Alerts are persisted before being handed to the sink.
    """

    def __init__(self, storage: StoragePort, sink: AlertSink | None = None,
                 window_hours: int = ALERT_WINDOW_HOURS, system_log: SystemLog | None = None):
        self.storage = storage
        self.sink = sink or LoggingAlertSink()
        self.window = timedelta(hours=window_hours)
        self.system_log = system_log

    def evaluate(self, now: datetime | None = None) -> list[Alert]:
        now = ensure_utc(now or utcnow())
        tracks = self.storage.list_keyword_tracks(active_only=True)
        logger.info(f"[ALERT] Evaluating {len(tracks)} keyword tracks")

        emitted: list[Alert] = []
        for track in tracks:
            try:
                emitted.extend(self.evaluate_track(track, now))
            except Exception as e:
                logger.error(f"[ALERT] Evaluation failed for '{track.keyword}': {e}")

        logger.info(f"[ALERT] Emitted {len(emitted)} alerts")
        if self.system_log is not None:
            self.system_log.append("info", f"Alert check completed: {len(emitted)} alerts", {"tracks": len(tracks)})
        return emitted

    def evaluate_track(self, track: KeywordTrack, now: datetime) -> list[Alert]:
        recent_start = now - self.window
        previous_start = recent_start - self.window
        recent = self.storage.find_articles(recent_start, now, keyword=track.keyword)
        previous = self.storage.find_articles(previous_start, recent_start, keyword=track.keyword)

        alerts: list[Alert] = []
        volume_change = volume_change_percent(len(recent), len(previous))
        # A flat or falling volume is never a spike, even with a zero threshold
        if volume_change > 0 and volume_change >= track.threshold.volume_spike_percent:
            alerts.append(Alert(
                kind="volume_spike",
                keyword=track.keyword,
                severity="high" if volume_change > 100 else "medium",
                message=(
                    f'Volume spike detected for "{track.keyword}": {volume_change:.1f}% increase '
                    f"({len(previous)} -> {len(recent)} articles)"
                ),
                data={
                    "keyword": track.keyword,
                    "volume_change": volume_change,
                    "recent_count": len(recent),
                    "previous_count": len(previous),
                    "threshold": track.threshold.volume_spike_percent,
                },
                created_at=now,
            ))

        if recent and previous:
            recent_mean = sum(a.sentiment.score for a in recent) / len(recent)
            previous_mean = sum(a.sentiment.score for a in previous) / len(previous)
            sentiment_change = sentiment_change_points(recent_mean, previous_mean)
            if sentiment_change >= track.threshold.sentiment_change_percent:
                alerts.append(Alert(
                    kind="sentiment_change",
                    keyword=track.keyword,
                    severity="high" if sentiment_change > 50 else "medium",
                    message=(
                        f'Sentiment change detected for "{track.keyword}": {sentiment_change:.1f}% change '
                        f"(mean {previous_mean:.2f} -> {recent_mean:.2f})"
                    ),
                    data={
                        "keyword": track.keyword,
                        "sentiment_change": sentiment_change,
                        "recent_sentiment": recent_mean,
                        "previous_sentiment": previous_mean,
                        "recent_count": len(recent),
                        "previous_count": len(previous),
                        "threshold": track.threshold.sentiment_change_percent,
                    },
                    created_at=now,
                ))

        for alert in alerts:
            self.storage.insert_alert(alert)
            try:
                self.sink.emit(alert)
            except Exception as e:
                logger.error(f"[ALERT] Sink failed for alert {alert.id}: {e}")
        return alerts
