from __future__ import annotations

from typing import Callable, Dict, List, Optional

from pydantic import BaseModel

from .events import EventBus, EventType
from .repository import SubmissionRepository


class StatusTracker:
    """Keeps an application-id -> status view current from bus events."""

    def __init__(self, bus: EventBus, repository: SubmissionRepository) -> None:
        self.repository = repository
        self.statuses: Dict[str, str] = {}
        self.refreshes = 0
        self._unsubscribers: List[Callable[[], None]] = [
            bus.on(t, self._on_event)
            for t in (
                EventType.APPLICATION_SUBMITTED,
                EventType.APPLICATION_UNDER_REVIEW,
                EventType.APPLICATION_APPROVED,
                EventType.APPLICATION_REJECTED,
            )
        ]
        self.reload()

    def reload(self) -> None:
        self.repository.init()
        self.statuses = {r.application_id: r.status for r in self.repository.list()}
        self.refreshes += 1

    def _on_event(self, payload: BaseModel) -> None:
        self.reload()

    def status_of(self, application_id: str) -> Optional[str]:
        return self.statuses.get(application_id)

    def dispose(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
