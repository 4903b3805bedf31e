"""
Data models for the provider layer.

Defines point-in-time snapshots of Equinix Metal resources.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Protocol, runtime_checkable


class CapacityLevel(Enum):
    """Availability indicator reported per metro and plan."""
    UNAVAILABLE = "unavailable"
    LIMITED = "limited"
    NORMAL = "normal"

    @classmethod
    def from_provider(cls, level: Optional[str]) -> "CapacityLevel":
        """Map a provider level string, treating unknown values as unavailable."""
        try:
            return cls((level or "").lower())
        except ValueError:
            return cls.UNAVAILABLE


# metro -> plan -> level
CapacityReport = Dict[str, Dict[str, CapacityLevel]]


class DeviceState(Enum):
    """Lifecycle state of a device as seen by this tool."""
    ABSENT = "absent"
    CREATING = "creating"
    ACTIVE = "active"
    DELETING = "deleting"
    DELETED = "deleted"

    @classmethod
    def from_provider(cls, state: Optional[str]) -> "DeviceState":
        """Collapse the provider's state names onto the local lifecycle."""
        return _PROVIDER_STATES.get((state or "").lower(), cls.CREATING)


_PROVIDER_STATES = {
    "queued": DeviceState.CREATING,
    "provisioning": DeviceState.CREATING,
    "reinstalling": DeviceState.CREATING,
    "powering_on": DeviceState.CREATING,
    "powering_off": DeviceState.CREATING,
    "inactive": DeviceState.CREATING,
    "failed": DeviceState.CREATING,
    "active": DeviceState.ACTIVE,
    "deprovisioning": DeviceState.DELETING,
    "deleted": DeviceState.DELETED,
}


class EventType(Enum):
    """Event kinds relevant to lifecycle reconciliation."""
    CREATED = "instance.created"
    DELETED = "instance.deleted"
    OTHER = "other"

    @classmethod
    def from_provider(cls, event_type: Optional[str]) -> "EventType":
        if event_type == cls.CREATED.value:
            return cls.CREATED
        if event_type == cls.DELETED.value:
            return cls.DELETED
        return cls.OTHER


@runtime_checkable
class Host(Protocol):
    """Minimal host capability consumed by provisioning callers."""

    @property
    def id(self) -> str: ...

    @property
    def name(self) -> str: ...

    @property
    def address(self) -> str: ...


@dataclass(frozen=True)
class Device:
    """Immutable snapshot of a provider device."""
    id: str
    name: str
    state: DeviceState
    address: str = ""
    raw_state: str = ""
    metro: Optional[str] = None
    plan: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "Device":
        """Build a snapshot from a device JSON payload.

        Raises:
            ValueError: If the payload has no id
        """
        if not payload.get("id"):
            raise ValueError("Device payload missing id")

        raw_state = payload.get("state") or ""
        metro = payload.get("metro")
        if isinstance(metro, dict):
            metro = metro.get("code")
        plan = payload.get("plan")
        if isinstance(plan, dict):
            plan = plan.get("slug")

        created_at = payload.get("created_at")
        return cls(
            id=payload["id"],
            name=payload.get("hostname") or "",
            state=DeviceState.from_provider(raw_state),
            address=_public_ipv4(payload.get("ip_addresses") or []),
            raw_state=raw_state,
            metro=metro,
            plan=plan,
            created_at=parse_timestamp(created_at) if created_at else None,
        )


@dataclass(frozen=True)
class DeviceCreateRequest:
    """Parameters for creating a device in a project."""
    hostname: str
    metro: str
    plan: str
    operating_system: str
    project_id: str

    def to_payload(self) -> Dict[str, str]:
        return {
            "hostname": self.hostname,
            "metro": self.metro,
            "plan": self.plan,
            "operating_system": self.operating_system,
        }


@dataclass(frozen=True)
class Event:
    """Immutable project event.

    Events arrive in provider pages, most recent first. An event whose
    payload could not be read keeps the reason in parse_error and has no
    usable timestamp.
    """
    id: str
    type: EventType
    interpolated: str
    created_at: Optional[datetime]
    raw_type: str = ""
    parse_error: Optional[str] = None

    @property
    def is_malformed(self) -> bool:
        return self.parse_error is not None

    @classmethod
    def from_api(cls, payload: Any) -> "Event":
        """Build an event from its JSON payload.

        Never raises on bad data: a payload without a readable
        created_at, or one that is not an object at all, comes back as a
        malformed event so the rest of its page is still usable.
        """
        if not isinstance(payload, dict):
            return cls(
                id="",
                type=EventType.OTHER,
                interpolated="",
                created_at=None,
                parse_error=f"Event payload is a {type(payload).__name__}, not an object",
            )

        event_id = payload.get("id") or ""
        raw_type = payload.get("type") or ""
        interpolated = payload.get("interpolated") or ""
        created_at = None
        parse_error = None

        raw_created = payload.get("created_at")
        if not raw_created:
            parse_error = f"Event {event_id or '?'} missing created_at"
        else:
            try:
                created_at = parse_timestamp(raw_created)
            except (AttributeError, TypeError, ValueError):
                parse_error = f"Event {event_id or '?'} has unreadable created_at {raw_created!r}"

        if not isinstance(interpolated, str):
            parse_error = parse_error or f"Event {event_id or '?'} text is not a string"
            interpolated = ""

        return cls(
            id=str(event_id),
            type=EventType.from_provider(raw_type),
            interpolated=interpolated,
            created_at=created_at,
            raw_type=str(raw_type),
            parse_error=parse_error,
        )


def parse_timestamp(value: str) -> datetime:
    """Parse a provider ISO-8601 timestamp into an aware datetime."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _public_ipv4(addresses) -> str:
    for address in addresses:
        if address.get("public") and address.get("address_family") == 4:
            return address.get("address") or ""
    return ""
