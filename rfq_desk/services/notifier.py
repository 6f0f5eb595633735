# rfq_desk/services/notifier.py
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, List

from rfq_desk.services.ports import Severity

logger = logging.getLogger("rfq_desk.toast")

_LEVELS = {
    Severity.SUCCESS: logging.INFO,
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class Toast:
    message: str
    severity: Severity


class LoggingNotifier:
    """
    Toast sink: logs every message and keeps the most recent ones
    so the admin surface can show them.
    """

    def __init__(self, keep: int = 50):
        self._recent: Deque[Toast] = deque(maxlen=keep)

    def notify(self, message: str, severity: Severity = Severity.INFO) -> None:
        self._recent.append(Toast(message=message, severity=severity))
        logger.log(_LEVELS.get(severity, logging.INFO), message, extra={"severity": severity.value})

    def recent(self) -> List[Toast]:
        return list(self._recent)

    def drain(self) -> List[Toast]:
        out = list(self._recent)
        self._recent.clear()
        return out
