"""
Domain models: immutable value objects for identities, members and the flow.

Everything here is a frozen dataclass or an Enum with no I/O. Timestamps are
integer epoch milliseconds taken from an injected clock so the analytics and
cache arithmetic stays exact and testable.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum, unique
from typing import Any

from railway import FailureDescription

type Clock = Callable[[], int]
"""Returns the current time in epoch milliseconds."""


# ─────────────────────── Identity & member ───────────────────────


@dataclass(frozen=True, slots=True)
class Identity:
    """
    The authenticated user's profile as issued by the identity provider.

    Immutable for the lifetime of a login session.
    """

    id: str
    display_name: str
    picture_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "display_name": self.display_name, "picture_url": self.picture_url}

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> Identity:
        return Identity(
            id=data["id"],
            display_name=data["display_name"],
            picture_url=data.get("picture_url"),
        )


@dataclass(frozen=True, slots=True)
class Member:
    """
    A row of the ``members`` table.

    ``identity_id`` holds the identity provider's user id (``line_user_id``
    column) and is unique per member.
    """

    id: str
    identity_id: str
    display_name: str
    registration_date: str | None = None
    contact_info: str | None = None
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "line_user_id": self.identity_id,
            "display_name": self.display_name,
            "registration_date": self.registration_date,
            "contact_info": self.contact_info,
            "is_active": self.is_active,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> Member:
        return Member(
            id=str(row["id"]),
            identity_id=row["line_user_id"],
            display_name=row["display_name"],
            registration_date=row.get("registration_date"),
            contact_info=row.get("contact_info"),
            is_active=bool(row.get("is_active", True)),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


@dataclass(frozen=True, slots=True)
class NewMember:
    """Insert payload for a first-time registration."""

    identity_id: str
    display_name: str
    registration_date: str
    is_active: bool = True

    def to_row(self) -> dict[str, Any]:
        return {
            "line_user_id": self.identity_id,
            "display_name": self.display_name,
            "registration_date": self.registration_date,
            "is_active": self.is_active,
        }


# ─────────────────────── Errors ───────────────────────


@dataclass(frozen=True, slots=True)
class ErrorInfo:
    """Plain error data attached to a state or an analytics event."""

    message: str
    code: str | None = None

    @staticmethod
    def from_failure(failure: FailureDescription, message: str | None = None) -> ErrorInfo:
        return ErrorInfo(message=message or failure.message, code=failure.code.value)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"message": self.message}
        if self.code is not None:
            data["code"] = self.code
        return data


@unique
class ErrorSource(Enum):
    """Where an error surfaced, in display priority order."""

    IDENTITY = "identity"
    AUTHENTICATION = "authentication"
    REGISTRATION = "registration"
    MEMBER = "member"


# ─────────────────────── Registration ───────────────────────


@dataclass(frozen=True, slots=True)
class RegistrationStatus:
    """
    Outcome of reconciling an identity against the member datastore.

    Either ``is_registered`` with a member, or not registered (usually with
    an ``error``).
    """

    is_new_user: bool
    is_registered: bool
    member: Member | None = None
    error: str | None = None
    registration_time: int | None = None

    def __post_init__(self) -> None:
        if self.is_registered and self.member is None:
            raise ValueError("A registered status must carry its member")

    @staticmethod
    def failed(message: str) -> RegistrationStatus:
        return RegistrationStatus(is_new_user=False, is_registered=False, member=None, error=message)


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A cached RegistrationStatus with its validity window."""

    status: RegistrationStatus
    written_at: int
    expires_at: int

    def is_expired(self, now: int) -> bool:
        return now > self.expires_at

    def to_record(self) -> dict[str, Any]:
        """Durable shape: ``{is_new_user, is_registered, member, timestamp, expires_at}``."""
        member = self.status.member
        return {
            "is_new_user": self.status.is_new_user,
            "is_registered": self.status.is_registered,
            "member": member.to_row() if member is not None else None,
            "timestamp": self.written_at,
            "expires_at": self.expires_at,
        }

    @staticmethod
    def from_record(record: Mapping[str, Any]) -> CacheEntry:
        member_row = record.get("member")
        status = RegistrationStatus(
            is_new_user=bool(record["is_new_user"]),
            is_registered=bool(record["is_registered"]),
            member=Member.from_row(member_row) if member_row else None,
            error=None,
            registration_time=int(record["timestamp"]),
        )
        return CacheEntry(
            status=status,
            written_at=int(record["timestamp"]),
            expires_at=int(record["expires_at"]),
        )


# ─────────────────────── Flow ───────────────────────


@unique
class FlowState(Enum):
    """The single UI-facing phase of onboarding."""

    INITIALIZING = "initializing"
    AUTHENTICATING = "authenticating"
    REGISTERING = "registering"
    SUCCESS = "success"
    ERROR = "error"
    READY = "ready"


@dataclass(frozen=True, slots=True)
class IdentityState:
    """Snapshot of the identity provider session."""

    is_initialized: bool = False
    is_ready: bool = False
    is_logged_in: bool = False
    loading: bool = False
    error: ErrorInfo | None = None
    profile: Identity | None = None

    def evolve(self, **changes: Any) -> IdentityState:
        return replace(self, **changes)


@dataclass(frozen=True, slots=True)
class RegistrationState:
    """
    Registration progress as seen by the flow.

    ``error`` is an authentication failure raised while obtaining the
    profile; ``registration_error`` is the datastore-side failure message.
    """

    is_registering: bool = False
    is_registered: bool = False
    is_new_user: bool = False
    member: Member | None = None
    error: ErrorInfo | None = None
    registration_error: str | None = None

    def evolve(self, **changes: Any) -> RegistrationState:
        return replace(self, **changes)


@dataclass(frozen=True, slots=True)
class MemberState:
    """Post-registration member fetch state."""

    member: Member | None = None
    loading: bool = False
    error: str | None = None

    def evolve(self, **changes: Any) -> MemberState:
        return replace(self, **changes)


@dataclass(frozen=True, slots=True)
class FlowInputs:
    """Everything the flow reducer looks at."""

    identity: IdentityState = field(default_factory=IdentityState)
    registration: RegistrationState = field(default_factory=RegistrationState)
    member: MemberState = field(default_factory=MemberState)
    welcome_shown: bool = False


@dataclass(frozen=True, slots=True)
class FlowDecision:
    """Reducer output: the flow state and the updated welcome flag."""

    flow_state: FlowState
    welcome_shown: bool


@dataclass(frozen=True, slots=True)
class FlowSnapshot:
    """What the UI (or the diagnostics API) needs to render the flow."""

    flow_state: FlowState
    retry_count: int
    error_message: str | None
    welcome_remaining: int | None
    identity: Identity | None
    member: Member | None
    is_new_user: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "flow_state": self.flow_state.value,
            "retry_count": self.retry_count,
            "error_message": self.error_message,
            "welcome_remaining": self.welcome_remaining,
            "identity": self.identity.to_dict() if self.identity else None,
            "member": self.member.to_row() if self.member else None,
            "is_new_user": self.is_new_user,
        }


# ─────────────────────── Analytics ───────────────────────


@unique
class EventType(Enum):
    """Closed set of lifecycle events recorded by the analytics recorder."""

    LIFF_INIT_START = "liff_init_start"
    LIFF_INIT_SUCCESS = "liff_init_success"
    LIFF_INIT_ERROR = "liff_init_error"

    AUTH_START = "auth_start"
    AUTH_SUCCESS = "auth_success"
    AUTH_ERROR = "auth_error"
    AUTH_PROFILE_LOADED = "auth_profile_loaded"

    REGISTRATION_CHECK_START = "registration_check_start"
    REGISTRATION_NEW_USER = "registration_new_user"
    REGISTRATION_EXISTING_USER = "registration_existing_user"
    REGISTRATION_SUCCESS = "registration_success"
    REGISTRATION_ERROR = "registration_error"
    REGISTRATION_CACHE_HIT = "registration_cache_hit"

    FLOW_STATE_CHANGE = "flow_state_change"
    FLOW_COMPLETE = "flow_complete"
    FLOW_ERROR = "flow_error"

    MEMBER_STATUS_UPDATE = "member_status_update"
    MEMBER_STATUS_REFRESH = "member_status_refresh"
    MEMBER_STATUS_ERROR = "member_status_error"

    PERFORMANCE_TIMING = "performance_timing"


@dataclass(frozen=True, slots=True)
class AnalyticsEvent:
    """One appended log entry. Never mutated after append."""

    type: EventType
    timestamp: int
    data: Mapping[str, Any] | None = None
    error: ErrorInfo | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type.value, "timestamp": self.timestamp}
        if self.data is not None:
            out["data"] = dict(self.data)
        if self.error is not None:
            out["error"] = self.error.to_dict()
        return out

    @staticmethod
    def from_dict(raw: Mapping[str, Any]) -> AnalyticsEvent:
        error = raw.get("error")
        return AnalyticsEvent(
            type=EventType(raw["type"]),
            timestamp=int(raw["timestamp"]),
            data=raw.get("data"),
            error=ErrorInfo(message=error["message"], code=error.get("code")) if error else None,
        )


@dataclass(frozen=True, slots=True)
class FlowStateMark:
    state: FlowState
    timestamp: int


@dataclass(frozen=True, slots=True)
class PhaseError:
    message: str
    timestamp: int
    phase: str


@dataclass(frozen=True, slots=True)
class RegistrationMetrics:
    """Derived from the event log on demand; never stored."""

    liff_init_duration: int | float | None
    authentication_duration: int | float | None
    registration_duration: int | float | None
    total_duration: int | None
    flow_states: list[FlowStateMark]
    errors: list[PhaseError]

    def to_dict(self) -> dict[str, Any]:
        return {
            "liff_init_duration": self.liff_init_duration,
            "authentication_duration": self.authentication_duration,
            "registration_duration": self.registration_duration,
            "total_duration": self.total_duration,
            "flow_states": [
                {"state": mark.state.value, "timestamp": mark.timestamp}
                for mark in self.flow_states
            ],
            "errors": [
                {"message": e.message, "timestamp": e.timestamp, "phase": e.phase}
                for e in self.errors
            ],
        }


@dataclass(frozen=True, slots=True)
class AnalyticsSummary:
    """Rates are percentages in [0, 100]."""

    total_events: int
    success_rate: float
    average_registration_time: float | None
    error_rate: float
    cache_hit_rate: float
    new_user_rate: float
    metrics: RegistrationMetrics

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_events": self.total_events,
            "success_rate": self.success_rate,
            "average_registration_time": self.average_registration_time,
            "error_rate": self.error_rate,
            "cache_hit_rate": self.cache_hit_rate,
            "new_user_rate": self.new_user_rate,
            "metrics": self.metrics.to_dict(),
        }
