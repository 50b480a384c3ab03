"""User-facing notices emitted by the export pipeline."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Protocol

logger = logging.getLogger(__name__)

EXPORT_ERROR_TITLE = "Export Error"


class NoticeLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class Notice:
    """A message shown to the user."""
    level: NoticeLevel
    title: str
    message: str


class Notifier(Protocol):
    """Destination for notices; injected into the controller."""

    def notify(self, notice: Notice) -> None: ...


class LoggingNotifier:
    """Writes notices to the application log."""

    _levels = {
        NoticeLevel.INFO: logging.INFO,
        NoticeLevel.WARNING: logging.WARNING,
        NoticeLevel.SUCCESS: logging.INFO,
        NoticeLevel.ERROR: logging.ERROR,
    }

    def notify(self, notice: Notice) -> None:
        logger.log(self._levels[notice.level], f"{notice.title}: {notice.message}")


class CollectingNotifier:
    """Keeps notices in memory so a UI can poll them."""

    def __init__(self, echo_to_log: bool = True) -> None:
        self.notices: List[Notice] = []
        self._log = LoggingNotifier() if echo_to_log else None

    def notify(self, notice: Notice) -> None:
        self.notices.append(notice)
        if self._log is not None:
            self._log.notify(notice)

    def of_level(self, level: NoticeLevel) -> List[Notice]:
        return [notice for notice in self.notices if notice.level == level]

    def clear(self) -> None:
        self.notices.clear()


def validation_notice(message: str) -> Notice:
    return Notice(NoticeLevel.ERROR, "Invalid export request", message)


def retry_notice(attempt: int, max_attempts: int) -> Notice:
    return Notice(
        NoticeLevel.WARNING,
        "Retrying export",
        f"Retrying (attempt {attempt} of {max_attempts})",
    )


def success_notice(filename: str) -> Notice:
    return Notice(NoticeLevel.SUCCESS, "Export complete", f"Saved {filename}")


def failure_notice(message: str) -> Notice:
    return Notice(NoticeLevel.ERROR, EXPORT_ERROR_TITLE, message)
