"""Alert sink port. Delivery to email or chat belongs to the collaborator behind it."""

import logging
from abc import ABC, abstractmethod

from src.models import Alert

logger = logging.getLogger(__name__)


class AlertSink(ABC):
    @abstractmethod
    def emit(self, alert: Alert) -> None:
        """Hand over an alert that has already been persisted."""


class LoggingAlertSink(AlertSink):
    """Default sink: writes each emitted alert to the log."""

    def emit(self, alert: Alert) -> None:
        logger.warning(f"[ALERT] ({alert.severity}) {alert.message}")


class CollectingAlertSink(AlertSink):
    """Keeps emitted alerts in memory, e.g. for the CLI report or tests."""

    def __init__(self):
        self.alerts: list[Alert] = []

    def emit(self, alert: Alert) -> None:
        self.alerts.append(alert)
