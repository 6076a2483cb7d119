"""Notification sinks for rendered transaction messages."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class LoggingNotificationSink:
    """Writes each message to the log; stands in where no delivery transport is wired."""

    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level
        self.sent_count = 0

    def send(self, recipient_id: str, text: str) -> None:
        logger.log(self._level, "Notification for recipient=%s:\n%s", recipient_id, text)
        self.sent_count += 1
