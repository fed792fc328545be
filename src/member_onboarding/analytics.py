"""
Analytics: an append-only, bounded log of onboarding lifecycle events.

Events are recorded by the ``track_*`` helpers, kept in memory (oldest
dropped past ``max_events``) and mirrored to a KeyValueStore after every
append. Metrics and the summary are derived from the log on demand.

Each phase (liff init, authentication, registration) is timed from the
last time that same phase was recorded, or from the session start the
first time round:

    start_session ──▶ liff init ──▶ authentication ──▶ registration
         t0              t1               t2                t3
                     d = t1 - t0      d = t2 - t0       d = t3 - t0

Persistence failures are logged and otherwise ignored; recording an event
never fails.
"""

from __future__ import annotations

import json
from collections import deque
from collections.abc import Iterable, Mapping
from typing import Any

import structlog
from railway import ErrorCode
from railway.result import Result

from member_onboarding.clock import system_clock
from member_onboarding.domain.models import (
    AnalyticsEvent,
    AnalyticsSummary,
    Clock,
    ErrorInfo,
    EventType,
    FlowState,
    FlowStateMark,
    Identity,
    Member,
    PhaseError,
    RegistrationMetrics,
    RegistrationStatus,
)
from member_onboarding.domain.ports import KeyValueStore

log = structlog.get_logger()

MAX_EVENTS = 1000
STORAGE_KEY = "registration_analytics"

# Substring of the event type, checked in order, and the phase it labels.
_PHASES: tuple[tuple[str, str], ...] = (
    ("liff", "liff_initialization"),
    ("auth", "authentication"),
    ("registration", "registration"),
    ("flow", "flow_control"),
    ("member", "member_status"),
)


def _percent(part: int, whole: int) -> float:
    return part / whole * 100 if whole else 0.0


def _phase_of(event_type: EventType) -> str:
    for marker, phase in _PHASES:
        if marker in event_type.value:
            return phase
    return "unknown"


def _is_error_event(event: AnalyticsEvent) -> bool:
    return "error" in event.type.value or event.error is not None


def _duration_of(event: AnalyticsEvent) -> int | float | None:
    duration = (event.data or {}).get("duration")
    if isinstance(duration, bool) or not isinstance(duration, int | float):
        return None
    return duration


class AnalyticsRecorder:
    """
    Records onboarding events and derives metrics from them.

    ``store`` is optional; without it the log only lives in memory.
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        clock: Clock = system_clock,
        max_events: int = MAX_EVENTS,
        storage_key: str = STORAGE_KEY,
    ) -> None:
        self._store = store
        self._clock = clock
        self._storage_key = storage_key
        self._events: deque[AnalyticsEvent] = deque(maxlen=max_events)
        self._session_start: int | None = None
        self._phase_marks: dict[str, int] = {}

    # ──────────────────────── Session ────────────────────────

    @property
    def session_start(self) -> int | None:
        return self._session_start

    def start_session(self) -> AnalyticsEvent:
        """Reset the log and begin timing a new onboarding attempt."""
        self._events.clear()
        self._session_start = self._clock()
        self._phase_marks = {}
        log.info("analytics.session_started", session_start=self._session_start)
        return self.track_event(EventType.LIFF_INIT_START)

    # ──────────────────────── Recording ────────────────────────

    def track_event(
        self,
        event_type: EventType,
        data: Mapping[str, Any] | None = None,
        error: ErrorInfo | None = None,
    ) -> AnalyticsEvent:
        event = AnalyticsEvent(type=event_type, timestamp=self._clock(), data=data, error=error)
        self._events.append(event)
        log.debug("analytics.event", type=event_type.value, has_error=error is not None)
        self._persist()
        return event

    def track_liff_init(self, success: bool, error: ErrorInfo | None = None) -> AnalyticsEvent:
        if success:
            return self.track_event(EventType.LIFF_INIT_SUCCESS, {"duration": self._close_phase("liff")})
        return self.track_event(EventType.LIFF_INIT_ERROR, None, error)

    def track_auth_start(self) -> AnalyticsEvent:
        return self.track_event(EventType.AUTH_START)

    def track_authentication(
        self,
        success: bool,
        profile: Identity | None = None,
        error: ErrorInfo | None = None,
    ) -> None:
        if success and profile is not None:
            duration = self._close_phase("auth")
            self.track_event(EventType.AUTH_SUCCESS, {"duration": duration, "user_id": profile.id})
            self.track_event(
                EventType.AUTH_PROFILE_LOADED,
                {"user": {"user_id": profile.id, "display_name": profile.display_name}},
            )
        else:
            self.track_event(EventType.AUTH_ERROR, None, error)

    def track_registration_check_start(self, identity_id: str) -> AnalyticsEvent:
        return self.track_event(EventType.REGISTRATION_CHECK_START, {"user_id": identity_id})

    def track_registration(self, status: RegistrationStatus) -> None:
        """
        Record the outcome of a registration check.

        A registered status yields a new/existing-user event followed by
        ``registration_success``; a failed one yields ``registration_error``.
        """
        duration = self._close_phase("registration")
        member = status.member
        if status.is_registered and member is not None:
            kind = EventType.REGISTRATION_NEW_USER if status.is_new_user else EventType.REGISTRATION_EXISTING_USER
            self.track_event(
                kind,
                {"user_id": member.identity_id, "duration": duration, "registration_time": status.registration_time},
            )
            self.track_event(
                EventType.REGISTRATION_SUCCESS,
                {
                    "is_new_user": status.is_new_user,
                    "duration": duration,
                    "member": {"id": member.id, "identity_id": member.identity_id},
                },
            )
        elif status.error:
            self.track_event(
                EventType.REGISTRATION_ERROR,
                {"duration": duration},
                ErrorInfo(message=status.error),
            )

    def track_cache_hit(self, identity_id: str) -> AnalyticsEvent:
        return self.track_event(EventType.REGISTRATION_CACHE_HIT, {"user_id": identity_id})

    def track_flow_state_change(self, previous: FlowState, current: FlowState) -> AnalyticsEvent:
        return self.track_event(
            EventType.FLOW_STATE_CHANGE,
            {"previous_state": previous.value, "new_state": current.value},
        )

    def track_flow_complete(self) -> AnalyticsEvent:
        total = self._clock() - self._session_start if self._session_start is not None else None
        return self.track_event(EventType.FLOW_COMPLETE, {"total_duration": total})

    def track_flow_error(self, message: str) -> AnalyticsEvent:
        return self.track_event(EventType.FLOW_ERROR, None, ErrorInfo(message=message))

    def track_member_status_update(self, member: Member | None, error: str | None = None) -> AnalyticsEvent:
        if error:
            return self.track_event(EventType.MEMBER_STATUS_ERROR, None, ErrorInfo(message=error))
        return self.track_event(
            EventType.MEMBER_STATUS_UPDATE,
            {"member_id": member.id if member else None, "is_active": member.is_active if member else None},
        )

    def track_member_status_refresh(self, identity_id: str) -> AnalyticsEvent:
        return self.track_event(EventType.MEMBER_STATUS_REFRESH, {"user_id": identity_id})

    def track_performance(self, name: str, duration_ms: float) -> AnalyticsEvent:
        return self.track_event(EventType.PERFORMANCE_TIMING, {"name": name, "duration": duration_ms})

    # ──────────────────────── Reading ────────────────────────

    def get_events(self) -> list[AnalyticsEvent]:
        return list(self._events)

    def get_events_by_type(self, event_type: EventType) -> list[AnalyticsEvent]:
        return [event for event in self._events if event.type is event_type]

    def get_metrics(self) -> RegistrationMetrics:
        flow_states = [
            FlowStateMark(state=FlowState(event.data["new_state"]), timestamp=event.timestamp)
            for event in self._events
            if event.type is EventType.FLOW_STATE_CHANGE and event.data and "new_state" in event.data
        ]
        errors = [
            PhaseError(
                message=event.error.message if event.error else "Unknown error",
                timestamp=event.timestamp,
                phase=_phase_of(event.type),
            )
            for event in self._events
            if _is_error_event(event)
        ]
        total = self._clock() - self._session_start if self._session_start is not None else None
        return RegistrationMetrics(
            liff_init_duration=self._first_duration(EventType.LIFF_INIT_SUCCESS),
            authentication_duration=self._first_duration(EventType.AUTH_SUCCESS),
            registration_duration=self._first_duration(EventType.REGISTRATION_SUCCESS),
            total_duration=total,
            flow_states=flow_states,
            errors=errors,
        )

    def get_summary(self) -> AnalyticsSummary:
        """
        Rates over the whole in-memory log, as percentages.

        Success and error rates count events whose type contains ``success``
        or ``error`` (an event carrying an error payload also counts as an
        error). Cache-hit and new-user rates are relative to the number of
        ``registration_success`` events.
        """
        events = self._events
        total = len(events)
        successes = sum(1 for event in events if "success" in event.type.value)
        failures = sum(1 for event in events if _is_error_event(event))

        durations = [
            duration
            for event in events
            if event.type is EventType.REGISTRATION_SUCCESS
            and (duration := _duration_of(event)) is not None
        ]
        average = sum(durations) / len(durations) if durations else None

        registrations = self._count(EventType.REGISTRATION_SUCCESS)
        cache_hits = self._count(EventType.REGISTRATION_CACHE_HIT)
        new_users = self._count(EventType.REGISTRATION_NEW_USER)

        return AnalyticsSummary(
            total_events=total,
            success_rate=_percent(successes, total),
            average_registration_time=average,
            error_rate=_percent(failures, total),
            cache_hit_rate=_percent(cache_hits, registrations),
            new_user_rate=_percent(new_users, registrations),
            metrics=self.get_metrics(),
        )

    def export_data(self) -> dict[str, Any]:
        return {
            "summary": self.get_summary().to_dict(),
            "events": [event.to_dict() for event in self._events],
            "metrics": self.get_metrics().to_dict(),
        }

    def export_json(self) -> str:
        return json.dumps(self.export_data(), ensure_ascii=False, indent=2)

    # ──────────────────────── Persistence ────────────────────────

    def load_persisted_events(self) -> int:
        """
        Replace the in-memory log with the persisted one. Returns the number
        of events loaded; unreadable storage loads nothing.
        """
        if self._store is None:
            return 0
        store = self._store
        loaded = Result.from_computation(
            lambda: store.get(self._storage_key) or {},
            ErrorCode.STORAGE_ERROR,
            "Analytics load failed",
        ).flat_map(self._parse_persisted)
        if loaded.is_failure():
            log.warning("analytics.load_failed", error=str(loaded.error()))
            return 0
        events, start_time = loaded.value()
        self._events.clear()
        self._events.extend(events)
        if start_time is not None:
            self._session_start = start_time
        log.info("analytics.loaded", events=len(self._events))
        return len(self._events)

    def clear_events(self) -> None:
        """Forget every event and the session, in memory and in storage."""
        self._events.clear()
        self._session_start = None
        self._phase_marks = {}
        if self._store is not None:
            store = self._store
            Result.from_computation(
                lambda: store.delete(self._storage_key) or True,
                ErrorCode.STORAGE_ERROR,
                "Analytics clear failed",
            ).peek_failure(lambda err: log.warning("analytics.clear_failed", error=str(err)))
        log.info("analytics.cleared")

    # ──────────────────────── internals ────────────────────────

    def _close_phase(self, phase: str) -> int:
        """Milliseconds since this phase was last recorded; 0 without a session."""
        now = self._clock()
        if self._session_start is None:
            return 0
        previous = self._phase_marks.get(phase, self._session_start)
        self._phase_marks[phase] = now
        return now - previous

    def _first_duration(self, event_type: EventType) -> int | float | None:
        for event in self._events:
            if event.type is event_type:
                return _duration_of(event)
        return None

    def _count(self, event_type: EventType) -> int:
        return sum(1 for event in self._events if event.type is event_type)

    def _persist(self) -> None:
        if self._store is None:
            return
        store = self._store
        payload = {
            "events": [event.to_dict() for event in self._events],
            "start_time": self._session_start,
            "timestamp": self._clock(),
        }
        Result.from_computation(
            lambda: store.set(self._storage_key, payload) or True,
            ErrorCode.STORAGE_ERROR,
            "Analytics persist failed",
        ).peek_failure(lambda err: log.warning("analytics.persist_failed", error=str(err)))

    @staticmethod
    def _parse_persisted(raw: Mapping[str, Any]) -> Result[tuple[list[AnalyticsEvent], int | None]]:
        return Result.from_computation(
            lambda: (_events_from(raw.get("events", [])), raw.get("start_time")),
            ErrorCode.VALIDATION_ERROR,
            "Persisted analytics are malformed",
        )


def _events_from(items: Iterable[Mapping[str, Any]]) -> list[AnalyticsEvent]:
    return [AnalyticsEvent.from_dict(item) for item in items]
