"""Ports for collaborators the engines depend on.

Time, identifiers and notification delivery are injected so the engines
stay deterministic under test.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Protocol


class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime:
        ...


class IdGenerator(Protocol):
    """Source of unique identifiers."""

    def generate(self, prefix: Optional[str] = None) -> str:
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self._now = now

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now

    def advance(self, **kwargs: float) -> datetime:
        """Move the clock forward by ``timedelta(**kwargs)`` and return the new time."""
        self._now = self._now + timedelta(**kwargs)
        return self._now


class UuidIdGenerator:
    """Random UUID4 identifiers, optionally prefixed."""

    def generate(self, prefix: Optional[str] = None) -> str:
        value = uuid.uuid4().hex
        return f"{prefix}-{value}" if prefix else value


class SequentialIdGenerator:
    """Predictable identifiers (``step-000001``) for tests and fixtures."""

    def __init__(self, start: int = 1, pad_length: int = 6):
        self._next = start
        self.pad_length = pad_length

    def generate(self, prefix: Optional[str] = None) -> str:
        value = str(self._next).zfill(self.pad_length)
        self._next += 1
        return f"{prefix}-{value}" if prefix else value


class NotificationChannel(str, Enum):
    """Delivery channels a sender may support."""

    EMAIL = "email"
    PUSH = "push"
    SMS = "sms"
    IN_APP = "in_app"
    WEBHOOK = "webhook"


@dataclass(frozen=True)
class NotificationRequest:
    """A message to deliver to one recipient."""

    recipient_id: str
    body: str
    channel: NotificationChannel = NotificationChannel.EMAIL
    recipient_address: Optional[str] = None
    subject: Optional[str] = None
    category: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NotificationResult:
    """Outcome reported by a sender."""

    notification_id: str
    channel: NotificationChannel
    status: str  # sent, queued, failed
    error: Optional[str] = None


class NotificationSender(Protocol):
    """Delivers notifications; implemented outside this package."""

    def send(self, request: NotificationRequest) -> NotificationResult:
        ...


class InMemoryNotificationSender:
    """Sender that records requests instead of delivering them."""

    def __init__(self):
        self.sent: list[NotificationRequest] = []
        self._ids = SequentialIdGenerator()

    def send(self, request: NotificationRequest) -> NotificationResult:
        self.sent.append(request)
        return NotificationResult(
            notification_id=self._ids.generate("ntf"),
            channel=request.channel,
            status="sent",
        )

    def by_recipient(self) -> Dict[str, list[NotificationRequest]]:
        grouped: Dict[str, list[NotificationRequest]] = {}
        for request in self.sent:
            grouped.setdefault(request.recipient_id, []).append(request)
        return grouped
