"""Progress events emitted while a document is being read."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from .logging_utils import get_logger

logger = get_logger(__name__)

PROVIDERS_SELECTED = "providers_selected"
PROVIDER_SELECTED = "provider_selected"
UNIT_SUCCEEDED = "unit_succeeded"
UNIT_FAILED = "unit_failed"


@dataclass(frozen=True)
class ProgressEvent:
    """A structured notification about OCR progress."""

    kind: str
    unit_index: Optional[int] = None
    provider: Optional[str] = None
    providers: Sequence[str] = ()
    detail: str = ""


class ProgressObserver(Protocol):
    def __call__(self, event: ProgressEvent) -> None: ...


class RecordingObserver:
    """Observer that keeps every event, useful for CLI summaries and tests."""

    def __init__(self) -> None:
        self.events: List[ProgressEvent] = []

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: str) -> List[ProgressEvent]:
        return [event for event in self.events if event.kind == kind]


def notify(observer: Optional[ProgressObserver], event: ProgressEvent) -> None:
    """Deliver an event without letting observer failures reach the pipeline."""
    if observer is None:
        return
    try:
        observer(event)
    except Exception:  # pylint: disable=broad-except
        logger.warning("Progress observer raised while handling %s; ignoring", event.kind, exc_info=True)
