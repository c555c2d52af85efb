"""Shared value types used across the domain engines.

Every type here is a frozen dataclass holding plain values, so engine
outputs can be persisted as JSON or relational rows without conversion.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple


class ActorType(str, Enum):
    """Kinds of principals that act on documents."""

    USER = "user"
    SYSTEM = "system"
    SERVICE = "service"
    EXTERNAL = "external"


@dataclass(frozen=True)
class Actor:
    """A principal performing an action (user, system or service)."""

    id: str
    type: ActorType = ActorType.USER
    name: Optional[str] = None
    email: Optional[str] = None
    roles: Tuple[str, ...] = ()
    department: Optional[str] = None
    meta: Mapping[str, Any] = field(default_factory=dict)

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "name": self.name,
            "email": self.email,
            "roles": list(self.roles),
            "department": self.department,
            "meta": dict(self.meta),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Actor":
        return cls(
            id=data["id"],
            type=ActorType(data.get("type", "user")),
            name=data.get("name"),
            email=data.get("email"),
            roles=tuple(data.get("roles") or ()),
            department=data.get("department"),
            meta=dict(data.get("meta") or {}),
        )


SYSTEM_ACTOR = Actor(id="system", type=ActorType.SYSTEM, name="System", roles=("system",))


@dataclass(frozen=True)
class AuditEntry:
    """Append-only record of something that happened to an entity."""

    id: str
    action: str
    actor: Actor
    timestamp: datetime
    details: Mapping[str, Any] = field(default_factory=dict)


# Supported duration units and their length
DURATION_UNITS: Dict[str, timedelta] = {
    "seconds": timedelta(seconds=1),
    "minutes": timedelta(minutes=1),
    "hours": timedelta(hours=1),
    "days": timedelta(days=1),
    "weeks": timedelta(weeks=1),
}


def add_duration(moment: datetime, value: float, unit: str) -> datetime:
    """Add ``value`` units to ``moment``.

    Raises:
        ValueError: If the unit is not supported
    """
    try:
        step = DURATION_UNITS[unit]
    except KeyError:
        raise ValueError(f"Unsupported duration unit: {unit}") from None
    return moment + step * value


_MISSING = object()


def get_nested_value(data: Any, path: str, default: Any = None) -> Any:
    """Resolve a dot-separated path (``"totals.grandTotal"``) in nested mappings.

    Returns ``default`` when any segment is missing or a non-mapping is hit.
    """
    current = data
    for key in path.split("."):
        if not isinstance(current, Mapping):
            return default
        current = current.get(key, _MISSING)
        if current is _MISSING:
            return default
    return current
