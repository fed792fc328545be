"""
Member status: the post-registration view of the current member.

Holds a MemberState (member, loading, error) and notifies listeners on
every change. The state is fed either directly from a registration
outcome (``set_member``) or by re-reading the datastore
(``refresh_member``).
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog
from railway import ErrorCode
from railway.result import Failure, Result, Success

from member_onboarding import messages
from member_onboarding.domain.models import Member, MemberState
from member_onboarding.domain.ports import MemberStore

if TYPE_CHECKING:
    from member_onboarding.analytics import AnalyticsRecorder

log = structlog.get_logger()

type MemberListener = Callable[[MemberState], None]


class MemberStatusTracker:
    def __init__(self, store: MemberStore, analytics: AnalyticsRecorder | None = None) -> None:
        self._store = store
        self._analytics = analytics
        self._state = MemberState()
        self._listeners: list[MemberListener] = []

    @property
    def state(self) -> MemberState:
        return self._state

    def subscribe(self, listener: MemberListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def refresh_member(self, identity_id: str) -> Result[Member]:
        """Re-read the member for ``identity_id`` from the datastore."""
        if self._analytics is not None:
            self._analytics.track_member_status_refresh(identity_id)
        self._update(loading=True)
        result = await self._store.find_by_identity(identity_id)
        match result:
            case Success(member):
                self.set_member(member)
            case Failure() if result.has_code(ErrorCode.NOT_FOUND):
                self.set_error(messages.MEMBER_NOT_FOUND)
            case Failure(err):
                log.error("member_status.refresh_failed", identity_id=identity_id, error=str(err))
                self.set_error(messages.message_for(err.code))
        return result

    async def update_member(self, patch: dict[str, Any]) -> Result[Member]:
        """Apply ``patch`` to the current member's row."""
        current = self._state.member
        if current is None:
            self.set_error(messages.NO_MEMBER_TO_UPDATE)
            return Result.failure(ErrorCode.VALIDATION_ERROR, "No member loaded to update")

        self._update(loading=True)
        result = await self._store.update(current.identity_id, patch)
        match result:
            case Success(member):
                log.info("member_status.updated", member_id=member.id, fields=sorted(patch))
                self.set_member(member)
            case Failure(err):
                log.error("member_status.update_failed", member_id=current.id, error=str(err))
                self._update(loading=False, error=messages.message_for(err.code))
                if self._analytics is not None:
                    self._analytics.track_member_status_update(current, self._state.error)
        return result

    def set_member(self, member: Member) -> None:
        self._update(member=member, loading=False, error=None)
        if self._analytics is not None:
            self._analytics.track_member_status_update(member)

    def set_error(self, message: str) -> None:
        self._update(member=None, loading=False, error=message)
        if self._analytics is not None:
            self._analytics.track_member_status_update(None, message)

    def clear_error(self) -> None:
        self._update(error=None)

    def reset(self) -> None:
        self._state = MemberState()
        self._notify()

    def _update(self, **changes: Any) -> None:
        self._state = self._state.evolve(**changes)
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._state)
