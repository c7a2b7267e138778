"""User-facing notifications as an explicit state machine.

Commands are small frozen dataclasses; `transition` is a pure function from
(state, command) to the next state. `NotificationService` turns application
events from the bus into ADD commands.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Tuple, Union

from .events import ApplicationReviewed, ApplicationSubmitted, EventBus, EventType
from .form_state import utc_now_iso
from .schemas import Notification


@dataclass(frozen=True)
class NotificationState:
    notifications: Tuple[Notification, ...] = ()
    is_loading: bool = False
    error: Optional[str] = None
    filter: Dict[str, str] = field(default_factory=dict)
    unread_count: int = 0


@dataclass(frozen=True)
class SetLoading:
    value: bool


@dataclass(frozen=True)
class SetError:
    message: Optional[str]


@dataclass(frozen=True)
class SetNotifications:
    notifications: Tuple[Notification, ...]


@dataclass(frozen=True)
class AddNotification:
    notification: Notification


@dataclass(frozen=True)
class UpdateNotification:
    notification: Notification


@dataclass(frozen=True)
class RemoveNotification:
    notification_id: str


@dataclass(frozen=True)
class MarkAsRead:
    notification_id: str
    at: str


@dataclass(frozen=True)
class MarkAllAsRead:
    at: str


@dataclass(frozen=True)
class SetFilter:
    filter: Dict[str, str]


Command = Union[
    SetLoading,
    SetError,
    SetNotifications,
    AddNotification,
    UpdateNotification,
    RemoveNotification,
    MarkAsRead,
    MarkAllAsRead,
    SetFilter,
]


def _unread(items: Tuple[Notification, ...]) -> int:
    return sum(1 for n in items if not n.is_read)


def _read(n: Notification, at: str) -> Notification:
    return n if n.is_read else n.model_copy(update={"is_read": True, "read_at": at})


def transition(state: NotificationState, command: Command) -> NotificationState:
    if isinstance(command, SetLoading):
        return replace(state, is_loading=command.value)
    if isinstance(command, SetError):
        return replace(state, error=command.message)
    if isinstance(command, SetNotifications):
        items = tuple(command.notifications)
        return replace(state, notifications=items, unread_count=_unread(items))
    if isinstance(command, AddNotification):
        items = (command.notification,) + state.notifications
    elif isinstance(command, UpdateNotification):
        items = tuple(
            command.notification if n.id == command.notification.id else n for n in state.notifications
        )
    elif isinstance(command, RemoveNotification):
        items = tuple(n for n in state.notifications if n.id != command.notification_id)
    elif isinstance(command, MarkAsRead):
        items = tuple(_read(n, command.at) if n.id == command.notification_id else n for n in state.notifications)
    elif isinstance(command, MarkAllAsRead):
        items = tuple(_read(n, command.at) for n in state.notifications)
    elif isinstance(command, SetFilter):
        return replace(state, filter=dict(command.filter))
    else:
        raise TypeError(f"unknown notification command {command!r}")
    return replace(state, notifications=items, unread_count=_unread(items))


class NotificationService:
    """Creates notifications for `user_id` from application events on the bus."""

    def __init__(self, bus: EventBus, user_id: str = "admin", clock: Optional[Callable[[], str]] = None) -> None:
        self.bus = bus
        self.user_id = user_id
        self.clock = clock or utc_now_iso
        self.state = NotificationState()
        self._unsubscribers: List[Callable[[], None]] = [
            bus.on(EventType.APPLICATION_SUBMITTED, self._on_submitted),
            bus.on(EventType.APPLICATION_APPROVED, self._on_reviewed),
            bus.on(EventType.APPLICATION_REJECTED, self._on_reviewed),
        ]

    def dispatch(self, command: Command) -> NotificationState:
        self.state = transition(self.state, command)
        return self.state

    def create(self, type_: str, title: str, message: str, application_id: str, **metadata) -> Notification:
        notification = Notification(
            id=uuid.uuid4().hex,
            user_id=self.user_id,
            type=type_,
            title=title,
            message=message,
            priority="high",
            related_entity_id=application_id,
            related_entity_type="application",
            created_at=self.clock(),
            metadata={"applicationId": application_id, **metadata},
        )
        self.dispatch(AddNotification(notification))
        return notification

    def _on_submitted(self, payload: ApplicationSubmitted) -> None:
        self.create(
            EventType.APPLICATION_SUBMITTED.value,
            "New Application Received",
            f"{payload.applicantName} has submitted their application and is awaiting review.",
            payload.applicationId,
            applicantName=payload.applicantName,
            applicantEmail=payload.applicantEmail,
        )

    def _on_reviewed(self, payload: ApplicationReviewed) -> None:
        approved = payload.status == "accepted"
        event = EventType.APPLICATION_APPROVED if approved else EventType.APPLICATION_REJECTED
        self.create(
            event.value,
            "Application Approved" if approved else "Application Rejected",
            f"The application from {payload.applicantName or payload.applicantEmail} was {payload.status}.",
            payload.applicationId,
            status=payload.status,
        )

    def mark_as_read(self, notification_id: str) -> NotificationState:
        return self.dispatch(MarkAsRead(notification_id, self.clock()))

    def mark_all_as_read(self) -> NotificationState:
        return self.dispatch(MarkAllAsRead(self.clock()))

    def dispose(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
