"""
Event channel for upload lifecycle notifications.

The engine publishes; independent observers (status tracking, the media
indexer, notification updaters) subscribe.
"""
import logging
import threading
from datetime import datetime
from typing import Callable, List, Optional

from pydantic import BaseModel, Field

from media_transfer.utils.clock import utcnow

logger = logging.getLogger("events")


class UploadEvent(BaseModel):
    upload_id: str
    filename: str
    at: datetime = Field(default_factory=utcnow)


class UploadStarted(UploadEvent):
    expected_size: int


class UploadProgress(UploadEvent):
    bytes_received: int
    expected_size: int


class UploadFinalized(UploadEvent):
    path: str
    size: int
    mime_type: str


class UploadCancelled(UploadEvent):
    pass


class UploadFailed(UploadEvent):
    reason: str


Handler = Callable[[UploadEvent], None]


class EventBus:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[Handler] = []

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        """Register ``handler``; the returned callable unsubscribes it."""
        with self._lock:
            self._subscribers.append(handler)

        def unsubscribe():
            with self._lock:
                if handler in self._subscribers:
                    self._subscribers.remove(handler)

        return unsubscribe

    def publish(self, event: UploadEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for handler in subscribers:
            try:
                handler(event)
            except Exception as e:
                # One broken observer must not break the upload or the others
                logger.error(f"Event handler {handler!r} failed on {type(event).__name__}: {str(e)}")


class IndexingNotifier:
    """
    Forwards finalized files to the media indexer.

    ``sink`` receives the path of every committed file; by default the path
    is only logged.
    """

    def __init__(self, sink: Optional[Callable[[str], None]] = None):
        self.sink = sink

    def __call__(self, event: UploadEvent) -> None:
        if not isinstance(event, UploadFinalized):
            return
        logger.info(f"File ready for indexing: {event.path}")
        if self.sink is not None:
            self.sink(event.path)


class TransferActivity:
    """Recent-upload history and activity timestamp for the status screen."""

    def __init__(self, history_size: int = 20):
        self._lock = threading.Lock()
        self.history_size = history_size
        self.uploaded_files: List[UploadFinalized] = []
        self.upload_count = 0
        self.last_activity: Optional[datetime] = None

    def __call__(self, event: UploadEvent) -> None:
        with self._lock:
            self.last_activity = event.at
            if isinstance(event, UploadFinalized):
                self.upload_count += 1
                self.uploaded_files = ([event] + self.uploaded_files)[: self.history_size]

    def clear(self) -> None:
        with self._lock:
            self.uploaded_files = []
            self.upload_count = 0
