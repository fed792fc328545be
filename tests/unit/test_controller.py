"""
Unit tests for the OnboardingFlowController.

Wires the real services over the in-memory fakes and walks whole sessions:
new user with welcome, existing user, logged-out start, each error source
with its retry, stale attempts, continue/expiry, logout and dispose.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from unittest.mock import MagicMock

import pytest
from railway import ErrorCode

from member_onboarding import messages
from member_onboarding.adapters.storage import InMemoryKeyValueStore
from member_onboarding.analytics import AnalyticsRecorder
from member_onboarding.controller import OnboardingFlowController
from member_onboarding.countdown import WelcomeCountdown
from member_onboarding.domain.models import EventType, FlowSnapshot, FlowState
from member_onboarding.identity import IdentitySession
from member_onboarding.member_status import MemberStatusTracker
from member_onboarding.registration import RegistrationCache, RegistrationService
from tests.conftest import ALICE, FakeClock, FakeIdentityProvider, FakeMemberStore, FakeTicker, make_member

type Build = Callable[..., OnboardingFlowController]


@pytest.fixture()
def build(
    identity_provider: FakeIdentityProvider,
    member_store: FakeMemberStore,
    kv_store: InMemoryKeyValueStore,
    clock: FakeClock,
    ticker: FakeTicker,
) -> Build:
    def _build(
        delay_ms: int | None = 3000,
        on_complete: Callable[[], None] | None = None,
    ) -> OnboardingFlowController:
        analytics = AnalyticsRecorder(store=kv_store, clock=clock)
        identity = IdentitySession(identity_provider, kv_store, clock=clock)
        registration = RegistrationService(
            member_store,
            RegistrationCache(kv_store, clock=clock),
            identity_source=identity,
            analytics=analytics,
            clock=clock,
        )
        return OnboardingFlowController(
            identity=identity,
            registration=registration,
            members=MemberStatusTracker(member_store, analytics),
            analytics=analytics,
            countdown=WelcomeCountdown(delay_ms, ticker),
            on_complete=on_complete,
        )

    return _build


def _flow_states(controller: OnboardingFlowController) -> list[str]:
    return [
        e.data["new_state"]
        for e in controller.analytics.get_events_by_type(EventType.FLOW_STATE_CHANGE)
        if e.data
    ]


# ─────────────────────── Happy paths ───────────────────────


class TestNewUserSession:
    @pytest.mark.asyncio
    async def test_new_user_reaches_success_then_ready_after_countdown(
        self, build: Build, ticker: FakeTicker, member_store: FakeMemberStore
    ) -> None:
        """
        GIVEN a logged-in LINE user with no member row
        WHEN the session starts and registration settles
        THEN the flow shows success with a countdown, and three ticks later is ready.
        """
        on_complete = MagicMock()
        controller = build(on_complete=on_complete)

        assert await controller.start() is FlowState.REGISTERING
        await controller.settle()

        assert controller.flow_state is FlowState.SUCCESS
        assert controller.snapshot().welcome_remaining == 3
        assert controller.snapshot().is_new_user is True
        assert member_store.create_calls == 1

        ticker.fire(2)
        assert controller.flow_state is FlowState.SUCCESS
        on_complete.assert_not_called()

        ticker.fire(1)
        assert controller.flow_state is FlowState.READY
        on_complete.assert_called_once()
        assert _flow_states(controller) == ["registering", "success", "ready"]
        assert len(controller.analytics.get_events_by_type(EventType.FLOW_COMPLETE)) == 1

    @pytest.mark.asyncio
    async def test_continue_skips_countdown_once(self, build: Build, ticker: FakeTicker) -> None:
        on_complete = MagicMock()
        controller = build(on_complete=on_complete)
        await controller.start()
        await controller.settle()

        assert controller.continue_() is FlowState.READY
        controller.continue_()
        ticker.fire(5)

        on_complete.assert_called_once()
        assert controller.flow_state is FlowState.READY

    @pytest.mark.asyncio
    async def test_without_delay_success_waits_for_continue(self, build: Build, ticker: FakeTicker) -> None:
        controller = build(delay_ms=None)
        await controller.start()
        await controller.settle()

        assert controller.flow_state is FlowState.SUCCESS
        assert ticker.callback is None
        assert controller.continue_() is FlowState.READY

    @pytest.mark.asyncio
    async def test_on_complete_error_does_not_break_the_flow(self, build: Build) -> None:
        controller = build(on_complete=MagicMock(side_effect=RuntimeError("ui gone")))
        await controller.start()
        await controller.settle()

        assert controller.continue_() is FlowState.READY


class TestExistingUserSession:
    @pytest.mark.asyncio
    async def test_existing_member_goes_straight_to_ready(
        self, build: Build, member_store: FakeMemberStore, ticker: FakeTicker
    ) -> None:
        member_store.rows[ALICE.id] = make_member()
        controller = build()

        await controller.start()
        await controller.settle()

        assert controller.flow_state is FlowState.READY
        assert ticker.callback is None
        assert member_store.create_calls == 0
        assert controller.snapshot().member == make_member()

    @pytest.mark.asyncio
    async def test_second_session_uses_registration_cache(
        self, build: Build, member_store: FakeMemberStore
    ) -> None:
        member_store.rows[ALICE.id] = make_member()
        first = build()
        await first.start()
        await first.settle()
        first.dispose()

        second = build()
        await second.start()
        await second.settle()

        assert member_store.find_calls == 1
        assert second.flow_state is FlowState.READY
        assert len(second.analytics.get_events_by_type(EventType.REGISTRATION_CACHE_HIT)) == 1


class TestLoggedOutStart:
    @pytest.mark.asyncio
    async def test_logged_out_user_waits_for_login(
        self, build: Build, identity_provider: FakeIdentityProvider
    ) -> None:
        """
        GIVEN a user who is not logged in to LINE
        WHEN the session starts
        THEN the flow is authenticating until login is called.
        """
        identity_provider.logged_in = False
        controller = build()

        assert await controller.start() is FlowState.AUTHENTICATING

        await controller.login()
        await controller.settle()

        assert controller.flow_state is FlowState.SUCCESS
        assert _flow_states(controller)[:2] == ["authenticating", "registering"]


# ─────────────────────── Errors and retry ───────────────────────


class TestErrorsAndRetry:
    @pytest.mark.asyncio
    async def test_identity_init_failure_then_retry(
        self, build: Build, identity_provider: FakeIdentityProvider
    ) -> None:
        identity_provider.init_failure = ErrorCode.NETWORK_ERROR
        controller = build()

        assert await controller.start() is FlowState.ERROR
        assert controller.snapshot().error_message == messages.IDENTITY_INIT_FAILED

        identity_provider.init_failure = None
        await controller.retry()
        await controller.settle()

        assert controller.retry_count == 1
        assert controller.flow_state is FlowState.SUCCESS

    @pytest.mark.asyncio
    async def test_authentication_failure_then_retry(
        self, build: Build, identity_provider: FakeIdentityProvider
    ) -> None:
        identity_provider.profile_failure = ErrorCode.AUTHENTICATION_ERROR
        controller = build()

        assert await controller.start() is FlowState.ERROR
        assert controller.snapshot().error_message == messages.AUTHENTICATION_FAILED

        identity_provider.profile_failure = None
        await controller.retry()
        await controller.settle()

        assert controller.flow_state is FlowState.SUCCESS

    @pytest.mark.asyncio
    async def test_registration_failure_then_retry(self, build: Build, member_store: FakeMemberStore) -> None:
        """
        GIVEN the member datastore is unreachable
        WHEN registration runs
        THEN the flow is in error with the network message; a retry after
        recovery registers the user and the attempt counter is 1.
        """
        member_store.find_failure = ErrorCode.NETWORK_ERROR
        controller = build()
        await controller.start()
        await controller.settle()

        assert controller.flow_state is FlowState.ERROR
        assert controller.snapshot().error_message == messages.message_for(ErrorCode.NETWORK_ERROR)
        assert len(controller.analytics.get_events_by_type(EventType.FLOW_ERROR)) == 1

        member_store.find_failure = None
        await controller.retry()
        await controller.settle()

        assert controller.flow_state is FlowState.SUCCESS
        assert controller.retry_count == 1

    @pytest.mark.asyncio
    async def test_retry_count_is_monotonic(self, build: Build, member_store: FakeMemberStore) -> None:
        member_store.find_failure = ErrorCode.DATABASE_ERROR
        controller = build()
        await controller.start()
        await controller.settle()

        await controller.retry()
        await controller.settle()
        await controller.retry()
        await controller.settle()

        assert controller.retry_count == 2
        assert controller.flow_state is FlowState.ERROR

    @pytest.mark.asyncio
    async def test_member_error_retry_refreshes_member(
        self, build: Build, member_store: FakeMemberStore
    ) -> None:
        member_store.rows[ALICE.id] = make_member()
        controller = build()
        await controller.start()
        await controller.settle()
        controller._members.set_error(messages.MEMBER_NOT_FOUND)
        assert controller.flow_state is FlowState.ERROR

        await controller.retry()

        assert controller.flow_state is FlowState.READY
        assert member_store.find_calls == 2

    @pytest.mark.asyncio
    async def test_stale_attempt_result_is_dropped(self, build: Build, member_store: FakeMemberStore) -> None:
        """
        GIVEN a registration still in flight
        WHEN retry starts a new attempt before the first one lands
        THEN only the newest attempt's result is applied and the user is created once.
        """
        member_store.gate = asyncio.Event()
        controller = build()
        await controller.start()

        await controller.retry()
        member_store.gate.set()
        await controller.settle()

        assert controller.flow_state is FlowState.SUCCESS
        assert member_store.create_calls == 1
        assert len(controller.analytics.get_events_by_type(EventType.REGISTRATION_SUCCESS)) == 1


# ─────────────────────── Logout, listeners, dispose ───────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_logout_resets_flow_and_caches(
        self, build: Build, member_store: FakeMemberStore, kv_store: InMemoryKeyValueStore
    ) -> None:
        member_store.rows[ALICE.id] = make_member()
        controller = build()
        await controller.start()
        await controller.settle()

        state = await controller.logout()

        assert state is FlowState.AUTHENTICATING
        assert controller.snapshot().member is None
        assert kv_store.get("registration_status_U-alice") is None
        assert kv_store.get("line_auth_cache") is None

    @pytest.mark.asyncio
    async def test_listeners_receive_snapshots(self, build: Build, member_store: FakeMemberStore) -> None:
        member_store.rows[ALICE.id] = make_member()
        controller = build()
        seen: list[FlowSnapshot] = []
        controller.subscribe(seen.append)

        await controller.start()
        await controller.settle()

        assert [s.flow_state for s in seen] == [FlowState.REGISTERING, FlowState.READY]
        assert seen[-1].identity == ALICE

    @pytest.mark.asyncio
    async def test_dispose_cancels_in_flight_registration(
        self, build: Build, member_store: FakeMemberStore
    ) -> None:
        member_store.gate = asyncio.Event()
        controller = build()
        await controller.start()

        controller.dispose()
        member_store.gate.set()
        await asyncio.sleep(0)

        assert controller.flow_state is FlowState.REGISTERING
        assert member_store.create_calls == 0
