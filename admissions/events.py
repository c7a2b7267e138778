from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type, Union

from pydantic import BaseModel


logger = logging.getLogger(__name__)


class EventType(str, Enum):
    APPLICATION_SUBMITTED = "application_submitted"
    APPLICATION_UNDER_REVIEW = "application_under_review"
    APPLICATION_APPROVED = "application_approved"
    APPLICATION_REJECTED = "application_rejected"


class ApplicationSubmitted(BaseModel):
    applicationId: str
    applicantName: str
    applicantEmail: str


class ApplicationReviewed(BaseModel):
    applicationId: str
    applicantName: str = ""
    applicantEmail: str = ""
    status: str
    reviewerNote: Optional[str] = None


PAYLOAD_TYPES: Dict[EventType, Type[BaseModel]] = {
    EventType.APPLICATION_SUBMITTED: ApplicationSubmitted,
    EventType.APPLICATION_UNDER_REVIEW: ApplicationReviewed,
    EventType.APPLICATION_APPROVED: ApplicationReviewed,
    EventType.APPLICATION_REJECTED: ApplicationReviewed,
}

Handler = Callable[[BaseModel], Any]


class EventBus:
    """Synchronous in-process publish/subscribe. No persistence, no replay."""

    def __init__(self) -> None:
        self._handlers: Dict[EventType, List[Handler]] = {}

    def on(self, event_type: EventType, handler: Handler) -> Callable[[], None]:
        event_type = EventType(event_type)
        self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def emit(self, event_type: EventType, payload: Union[BaseModel, Dict[str, Any]]) -> None:
        event_type = EventType(event_type)
        model = PAYLOAD_TYPES[event_type]
        if not isinstance(payload, model):
            payload = model.model_validate(payload)
        logger.debug("emit %s %s", event_type.value, payload)
        # Copy so handlers may unsubscribe while being called
        for handler in list(self._handlers.get(event_type, [])):
            try:
                handler(payload)
            except Exception:
                logger.exception("handler for %s failed", event_type.value)

    def off(self, event_type: EventType) -> None:
        self._handlers.pop(EventType(event_type), None)

    def clear(self) -> None:
        self._handlers.clear()

    def handler_count(self, event_type: EventType) -> int:
        return len(self._handlers.get(EventType(event_type), []))


def emit_application_submitted(bus: EventBus, application_id: str, applicant_name: str, applicant_email: str) -> None:
    bus.emit(
        EventType.APPLICATION_SUBMITTED,
        ApplicationSubmitted(
            applicationId=application_id,
            applicantName=applicant_name,
            applicantEmail=applicant_email,
        ),
    )
