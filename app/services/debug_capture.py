"""Last-webhook snapshot for operators.

The slot lives in process memory only: it is empty after a restart, each
instance of the service has its own, and concurrent deliveries may overwrite
each other. Nothing outside the debug endpoint reads it.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass(frozen=True)
class DebugSnapshot:
    payload: Any = None
    received_at: Optional[datetime] = None


class WebhookDebugSlot:
    """Single-slot holder for the most recent raw webhook payload."""

    def __init__(self) -> None:
        self._snapshot = DebugSnapshot()

    def record(self, payload: Any, received_at: Optional[datetime] = None) -> None:
        self._snapshot = DebugSnapshot(payload=payload, received_at=received_at or datetime.now(timezone.utc))

    def snapshot(self) -> DebugSnapshot:
        return self._snapshot

    def clear(self) -> None:
        self._snapshot = DebugSnapshot()


webhook_debug_slot = WebhookDebugSlot()
