"""Loading state exposed by the progressive loader."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from feedrelay.models.feeds import FeedError


class LoadStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class LoadingState:
    """Snapshot of a load run. Replaced wholesale via ``dataclasses.replace``."""

    status: LoadStatus = LoadStatus.IDLE
    progress: float = 0.0
    loaded_count: int = 0
    total_count: int = 0
    errors: tuple[FeedError, ...] = ()
    is_background_refresh: bool = False
    priority_complete: bool = False
    current_action: str = ""

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "progress": self.progress,
            "loaded_count": self.loaded_count,
            "total_count": self.total_count,
            "errors": [
                {
                    "url": e.url,
                    "error": e.error,
                    "error_type": e.error_type.value,
                    "timestamp": e.timestamp,
                    "feed_title": e.feed_title,
                }
                for e in self.errors
            ],
            "is_background_refresh": self.is_background_refresh,
            "priority_complete": self.priority_complete,
            "current_action": self.current_action,
        }
