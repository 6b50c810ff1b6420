"""Progress events and cooperative cancellation."""

from __future__ import annotations

from dataclasses import asdict, dataclass
import logging
from typing import Any, Callable, Optional

from .errors import CANCELLED_MESSAGE, ConversionCancelled


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    stage: str
    message: str
    current: Optional[int] = None
    total: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


ProgressCallback = Callable[[ProgressEvent], None]
CancelCheck = Callable[[], bool]


class ProgressReporter:
    """Fan progress milestones out to the log and an optional caller callback."""

    def __init__(
        self,
        callback: Optional[ProgressCallback] = None,
        is_cancelled: Optional[CancelCheck] = None,
    ):
        self._callback = callback
        self._is_cancelled = is_cancelled
        self.events: list[ProgressEvent] = []

    def emit(
        self,
        stage: str,
        message: str,
        current: Optional[int] = None,
        total: Optional[int] = None,
    ) -> None:
        event = ProgressEvent(stage, message, current, total)
        self.events.append(event)
        if current is not None and total is not None:
            logger.info("[%s] %s (%d/%d)", stage, message, current, total)
        else:
            logger.info("[%s] %s", stage, message)
        if self._callback is not None:
            self._callback(event)

    def cancelled(self) -> bool:
        return bool(self._is_cancelled and self._is_cancelled())

    def check_cancelled(self) -> None:
        if self.cancelled():
            self.emit("cancelled", CANCELLED_MESSAGE)
            raise ConversionCancelled()

    def scoped(self, prefix: str) -> "ProgressReporter":
        """Reporter for a sub-conversion; its events are re-emitted here behind `prefix`."""
        return ProgressReporter(
            lambda event: self.emit(event.stage, f"{prefix}{event.message}", event.current, event.total),
            self.cancelled,
        )
