"""
Claim event bus.

The lifecycle engine publishes a ClaimEvent after each committed transition.
A single worker thread drains the queue and hands every event to the
subscribed handlers (email notifications and the like). Handler failures
are logged and dropped; they never reach the request that caused the event
and never undo the committed state.
"""

import logging
import queue
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class ClaimEventKind(str, Enum):
    """What happened to the claim."""
    CREATED = "created"
    APPROVED = "approved"
    REJECTED = "rejected"
    RECALLED = "recalled"
    ATTACHMENT_REQUESTED = "attachment_requested"
    RECALL_CANCELLED = "recall_cancelled"
    RESUBMITTED = "resubmitted"
    UPDATED = "updated"
    CHANGE_REQUESTED = "change_requested"
    RECEIPT_UPLOADED = "receipt_uploaded"


@dataclass(frozen=True)
class ClaimEvent:
    """Snapshot of a claim right after a committed transition."""
    kind: ClaimEventKind
    claim_id: int
    owner_id: str
    title: str
    amount_minor_units: int
    currency_code: str
    status: str
    owner_email: Optional[str] = None
    comment: Optional[str] = None
    requires_attachment: bool = False
    actor_id: Optional[str] = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_claim(cls, kind: ClaimEventKind, claim, comment: Optional[str] = None,
                   actor_id: Optional[str] = None) -> "ClaimEvent":
        return cls(
            kind=kind,
            claim_id=claim.id,
            owner_id=claim.owner_id,
            owner_email=claim.owner_email,
            title=claim.title,
            amount_minor_units=claim.amount_minor_units,
            currency_code=claim.currency_code.value,
            status=claim.status.value,
            comment=comment,
            requires_attachment=claim.recall_requires_attachment,
            actor_id=actor_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["occurred_at"] = self.occurred_at.isoformat()
        return data


EventHandler = Callable[[ClaimEvent], None]

_STOP = object()


class ClaimEventBus:
    """
    Bounded in-process queue with one consumer thread.

    Usage:
        bus = ClaimEventBus()
        bus.subscribe(notifier.handle)
        bus.start()
        bus.publish(event)   # never blocks, never raises
        bus.stop()
    """

    def __init__(self, maxsize: int = 1000):
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=maxsize)
        self._handlers: List[EventHandler] = []
        self._worker: Optional[threading.Thread] = None
        self.dropped = 0

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def publish(self, event: ClaimEvent) -> None:
        """Hand an event to the worker without waiting."""
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self.dropped += 1
            logger.warning(f"Event queue full, dropping {event.kind.value} event for claim {event.claim_id}")

    def start(self) -> None:
        if self.running:
            return
        self._worker = threading.Thread(target=self._run, name="claim-events", daemon=True)
        self._worker.start()
        logger.info("Claim event worker started")

    def stop(self, timeout: float = 5.0) -> None:
        """Drain outstanding events, then stop the worker."""
        if not self.running:
            return
        self._queue.put(_STOP)
        self._worker.join(timeout)
        self._worker = None
        logger.info("Claim event worker stopped")

    def join(self) -> None:
        """Block until every published event has been handled."""
        self._queue.join()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._dispatch(item)
            finally:
                self._queue.task_done()

    def _dispatch(self, event: ClaimEvent) -> None:
        for handler in self._handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    f"Event handler {getattr(handler, '__qualname__', handler)!r} failed "
                    f"for {event.kind.value} event on claim {event.claim_id}"
                )
