"""
Onboarding flow controller: the session object that owns the moving parts.

    IdentitySession ──change──▶ registration (once per identity)
          │                           │
          └──────────┬────────────────┘
                     ▼
          determine_flow_state(inputs)  ──▶ analytics, listeners
                     │
           success ──▶ WelcomeCountdown ──▶ ready

Every input change recomputes the flow state synchronously. Registration
runs in a background task tagged with the current attempt generation;
``retry()`` and ``logout()`` bump the generation so results of older
attempts are dropped when they land.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from typing import Any

import structlog
from railway.result import Failure, Result, Success

from member_onboarding import messages
from member_onboarding.analytics import AnalyticsRecorder
from member_onboarding.countdown import WelcomeCountdown
from member_onboarding.domain.models import (
    ErrorInfo,
    ErrorSource,
    FlowInputs,
    FlowSnapshot,
    FlowState,
    Identity,
    IdentityState,
    MemberState,
    RegistrationState,
    RegistrationStatus,
)
from member_onboarding.flow import active_error_source, determine_flow_state, error_message
from member_onboarding.identity import IdentitySession
from member_onboarding.member_status import MemberStatusTracker
from member_onboarding.registration import RegistrationService

log = structlog.get_logger()

type FlowListener = Callable[[FlowSnapshot], None]


class OnboardingFlowController:
    def __init__(
        self,
        identity: IdentitySession,
        registration: RegistrationService,
        members: MemberStatusTracker,
        analytics: AnalyticsRecorder,
        countdown: WelcomeCountdown,
        on_complete: Callable[[], None] | None = None,
    ) -> None:
        self._identity = identity
        self._registration = registration
        self._members = members
        self._analytics = analytics
        self._countdown = countdown
        self._on_complete = on_complete

        self._registration_state = RegistrationState()
        self._flow_state = FlowState.INITIALIZING
        self._welcome_shown = False
        self._welcome_active = False
        self._flow_completed = False
        self._retry_count = 0
        self._generation = 0
        self._registered_for: str | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._listeners: list[FlowListener] = []

        self._unsubscribers = [
            identity.subscribe(self._on_identity_change),
            members.subscribe(self._on_member_change),
        ]
        countdown.on_expire(self._complete_welcome)

    # ──────────────────────── Read side ────────────────────────

    @property
    def flow_state(self) -> FlowState:
        return self._flow_state

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def registration_state(self) -> RegistrationState:
        return self._registration_state

    @property
    def analytics(self) -> AnalyticsRecorder:
        return self._analytics

    def inputs(self) -> FlowInputs:
        return FlowInputs(
            identity=self._identity.state,
            registration=self._registration_state,
            member=self._members.state,
            welcome_shown=self._welcome_shown,
        )

    def snapshot(self) -> FlowSnapshot:
        inputs = self.inputs()
        return FlowSnapshot(
            flow_state=self._flow_state,
            retry_count=self._retry_count,
            error_message=error_message(inputs) if self._flow_state is FlowState.ERROR else None,
            welcome_remaining=self._countdown.remaining if self._welcome_active else None,
            identity=inputs.identity.profile,
            member=inputs.member.member,
            is_new_user=inputs.registration.is_new_user,
        )

    def subscribe(self, listener: FlowListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ──────────────────────── Commands ────────────────────────

    async def start(self) -> FlowState:
        """
        Begin a session: initialize the identity provider and, for a user who
        is already logged in, load the profile (which starts registration).
        """
        self._analytics.start_session()
        log.info("flow.started")
        await self._initialize_identity()
        state = self._identity.state
        if state.is_logged_in and state.profile is None:
            await self.authenticate()
        return self.recompute()

    async def authenticate(self) -> Result[Identity]:
        """Log in (if needed) and load the profile; the profile triggers registration."""
        self._analytics.track_auth_start()
        result = await self._identity.authenticate()
        match result:
            case Success(profile):
                self._analytics.track_authentication(True, profile)
                self._registration_state = self._registration_state.evolve(error=None)
            case Failure(err):
                self._analytics.track_authentication(False, error=ErrorInfo.from_failure(err))
                self._registration_state = self._registration_state.evolve(
                    error=ErrorInfo.from_failure(err, messages.AUTHENTICATION_FAILED)
                )
        self.recompute()
        return result

    async def login(self) -> Result[Identity]:
        return await self.authenticate()

    async def retry(self) -> FlowState:
        """
        Clear recoverable errors and re-run whatever failed.

        Increments ``retry_count`` on every call. An attempt still in flight
        is not cancelled; its result is ignored when it lands.
        """
        self._retry_count += 1
        self._generation += 1
        source = active_error_source(self.inputs())
        log.info("flow.retry", attempt=self._retry_count, source=source.value if source else None)

        self._registration_state = self._registration_state.evolve(error=None, registration_error=None)
        self._members.clear_error()
        if self._members.state.member is None:
            self._registered_for = None

        if source is ErrorSource.IDENTITY or not self._identity.state.is_initialized:
            await self._initialize_identity()

        identity_state = self._identity.state
        profile = identity_state.profile
        if identity_state.is_ready and (not identity_state.is_logged_in or profile is None):
            await self.authenticate()
        elif profile is not None and self._members.state.member is None:
            if source is ErrorSource.MEMBER and self._registration_state.is_registered:
                await self._members.refresh_member(profile.id)
            elif self._registered_for != profile.id:
                self._begin_registration(profile)
        return self.recompute()

    def continue_(self) -> FlowState:
        """Dismiss the welcome now instead of waiting for the countdown."""
        self._countdown.cancel()
        self._complete_welcome()
        return self._flow_state

    async def logout(self) -> FlowState:
        """Log out, drop cached registration for the identity and reset the flow."""
        self._generation += 1
        self._countdown.reset()
        profile = self._identity.state.profile
        self._registered_for = None
        await self._identity.logout()
        self._registration.clear_registration_cache(profile.id if profile else None)
        self._registration_state = RegistrationState()
        self._members.reset()
        self._welcome_shown = False
        self._welcome_active = False
        self._flow_completed = False
        log.info("flow.logged_out")
        return self.recompute()

    async def settle(self) -> None:
        """Wait until no registration task is running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def dispose(self) -> None:
        """Stop timers, detach from the sources and cancel background work."""
        self._generation += 1
        self._countdown.dispose()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        for task in self._tasks:
            task.cancel()
        self._tasks.clear()
        self._registration.dispose()
        self._listeners.clear()
        log.info("flow.disposed")

    # ──────────────────────── Recompute ────────────────────────

    def recompute(self) -> FlowState:
        inputs = self.inputs()
        decision = determine_flow_state(inputs)
        state = decision.flow_state

        if decision.welcome_shown and not self._welcome_shown:
            self._welcome_shown = True
            self._welcome_active = True
            self._countdown.start()
        elif self._welcome_active and state is FlowState.READY:
            state = FlowState.SUCCESS

        self._transition(state, inputs)
        return self._flow_state

    def _transition(self, state: FlowState, inputs: FlowInputs) -> None:
        previous = self._flow_state
        if state is previous:
            return
        self._flow_state = state
        log.info("flow.state_changed", previous=previous.value, current=state.value)
        self._analytics.track_flow_state_change(previous, state)

        if state is FlowState.ERROR:
            message = error_message(inputs) or messages.UNEXPECTED
            log.warning("flow.error", message=message)
            self._analytics.track_flow_error(message)
        elif state is FlowState.READY and not self._flow_completed:
            self._flow_completed = True
            self._analytics.track_flow_complete()

        snapshot = self.snapshot()
        for listener in list(self._listeners):
            listener(snapshot)

    # ──────────────────────── Source callbacks ────────────────────────

    def _on_identity_change(self, state: IdentityState) -> None:
        profile = state.profile
        if state.is_logged_in and profile is not None and profile.id != self._registered_for:
            self._begin_registration(profile)
        self.recompute()

    def _on_member_change(self, state: MemberState) -> None:
        self.recompute()

    # ──────────────────────── Registration ────────────────────────

    def _begin_registration(self, profile: Identity) -> None:
        self._registered_for = profile.id
        self._registration_state = self._registration_state.evolve(
            is_registering=True, registration_error=None
        )
        log.info("flow.registration_started", identity_id=profile.id, generation=self._generation)
        self._spawn(self._register(profile, self._generation))

    async def _register(self, profile: Identity, generation: int) -> None:
        status = await self._registration.check_and_register(profile)
        if generation != self._generation:
            log.info("flow.stale_registration_dropped", identity_id=profile.id, generation=generation)
            return
        self._apply_registration(status)

    def _apply_registration(self, status: RegistrationStatus) -> None:
        self._analytics.track_registration(status)
        if status.is_registered and status.member is not None:
            self._registration_state = RegistrationState(
                is_registered=True,
                is_new_user=status.is_new_user,
                member=status.member,
            )
            self._members.set_member(status.member)
        else:
            self._registration_state = RegistrationState(
                registration_error=status.error or messages.REGISTRATION_FAILED,
            )
        self.recompute()

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ──────────────────────── Welcome ────────────────────────

    def _complete_welcome(self) -> None:
        if not self._welcome_active:
            return
        self._welcome_active = False
        log.info("flow.welcome_completed")
        self.recompute()
        if self._on_complete is not None:
            try:
                self._on_complete()
            except Exception:
                log.exception("flow.on_complete_failed")

    # ──────────────────────── internals ────────────────────────

    async def _initialize_identity(self) -> None:
        result = await self._identity.initialize()
        match result:
            case Success(_):
                self._analytics.track_liff_init(True)
            case Failure(err):
                self._analytics.track_liff_init(False, ErrorInfo.from_failure(err))
