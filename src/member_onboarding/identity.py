"""
Identity session: observable state of the identity provider login.

Wraps an IdentityProvider port and keeps an IdentityState that listeners
are notified about on every change. The last fetched profile is cached in
the KeyValueStore under ``line_auth_cache`` for ``profile_ttl_ms`` so a
returning user can be reconciled before the provider answers again.

Initialization failures are kept in ``state.error``. Authentication
failures are returned to the caller and do not touch the state's error:
the flow reports them separately.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog
from railway import ErrorCode
from railway.result import Failure, Result, Success

from member_onboarding import messages
from member_onboarding.clock import system_clock
from member_onboarding.domain.models import Clock, ErrorInfo, Identity, IdentityState
from member_onboarding.domain.ports import IdentityProvider, KeyValueStore

log = structlog.get_logger()

PROFILE_CACHE_KEY = "line_auth_cache"
PROFILE_CACHE_TTL_MS = 24 * 60 * 60 * 1000

type IdentityListener = Callable[[IdentityState], None]


class IdentitySession:
    def __init__(
        self,
        provider: IdentityProvider,
        store: KeyValueStore,
        clock: Clock = system_clock,
        profile_ttl_ms: int = PROFILE_CACHE_TTL_MS,
    ) -> None:
        self._provider = provider
        self._store = store
        self._clock = clock
        self._profile_ttl_ms = profile_ttl_ms
        self._state = IdentityState()
        self._listeners: list[IdentityListener] = []

    @property
    def state(self) -> IdentityState:
        return self._state

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        """Register ``listener``; the returned function unregisters it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def initialize(self) -> Result[bool]:
        """
        Initialize the provider. On success the state becomes ready and, for a
        user who is already logged in, picks up the cached profile.
        """
        self._update(loading=True, error=None)
        result = await self._provider.initialize()
        match result:
            case Success(logged_in):
                profile = self.cached_profile() if logged_in else None
                self._update(
                    is_initialized=True,
                    is_ready=True,
                    is_logged_in=logged_in,
                    loading=False,
                    profile=profile,
                )
                log.info("identity.initialized", logged_in=logged_in, cached_profile=profile is not None)
            case Failure(err):
                self._update(loading=False, error=ErrorInfo.from_failure(err, messages.IDENTITY_INIT_FAILED))
                log.error("identity.init_failed", code=err.code.value, error=err.message)
        return result

    def cached_profile(self) -> Identity | None:
        """The cached profile if present and fresh. Never touches the network."""
        raw = Result.from_computation(
            lambda: self._store.get(PROFILE_CACHE_KEY) or {},
            ErrorCode.STORAGE_ERROR,
            "Profile cache read failed",
        ).flat_map(self._parse_cached)
        match raw:
            case Success(profile):
                return profile
            case Failure() if raw.has_code(ErrorCode.NOT_FOUND):
                return None
            case Failure(err):
                log.warning("identity.profile_cache_unusable", error=str(err))
        self._forget_profile()
        return None

    async def authenticate(self) -> Result[Identity]:
        """
        Log in if needed, then fetch the profile and cache it.

        Returns the profile, or the provider's failure unchanged.
        """
        if self._state.is_logged_in:
            result = await self._provider.fetch_profile()
        else:
            login = await self._provider.login()
            result = await login.flat_map_async(self._profile_after_login)
        return result.peek(self._remember).peek_failure(
            lambda err: log.warning("identity.authenticate_failed", error=str(err))
        )

    async def _profile_after_login(self, logged_in: bool) -> Result[Identity]:
        if not logged_in:
            return Result.failure(ErrorCode.AUTHENTICATION_ERROR, "Login was not completed")
        return await self._provider.fetch_profile()

    async def login(self) -> Result[Identity]:
        return await self.authenticate()

    def get_profile(self) -> Identity | None:
        return self._state.profile or self.cached_profile()

    async def logout(self) -> Result[bool]:
        """Log out at the provider and forget the cached profile either way."""
        result = await self._provider.logout()
        result.peek_failure(lambda err: log.warning("identity.logout_failed", error=str(err)))
        self._forget_profile()
        self._update(is_logged_in=False, profile=None, error=None)
        log.info("identity.logged_out")
        return result

    # ──────────────────────── internals ────────────────────────

    def _remember(self, profile: Identity) -> None:
        record = {**profile.to_dict(), "timestamp": self._clock()}
        Result.from_computation(
            lambda: self._store.set(PROFILE_CACHE_KEY, record) or True,
            ErrorCode.STORAGE_ERROR,
            "Profile cache write failed",
        ).peek_failure(lambda err: log.warning("identity.profile_cache_write_failed", error=str(err)))
        self._update(is_logged_in=True, profile=profile)
        log.info("identity.profile_loaded", identity_id=profile.id)

    def _parse_cached(self, record: dict[str, Any]) -> Result[Identity]:
        if not record:
            return Result.failure(ErrorCode.NOT_FOUND, "No cached profile")
        timestamp = record.get("timestamp")
        if not isinstance(timestamp, int) or self._clock() - timestamp > self._profile_ttl_ms:
            return Result.failure(ErrorCode.VALIDATION_ERROR, "Cached profile expired")
        return Result.from_computation(
            lambda: Identity.from_dict(record),
            ErrorCode.VALIDATION_ERROR,
            "Cached profile is malformed",
        )

    def _forget_profile(self) -> None:
        Result.from_computation(
            lambda: self._store.delete(PROFILE_CACHE_KEY) or True,
            ErrorCode.STORAGE_ERROR,
            "Profile cache delete failed",
        ).peek_failure(lambda err: log.warning("identity.profile_cache_delete_failed", error=str(err)))

    def _update(self, **changes: Any) -> None:
        self._state = self._state.evolve(**changes)
        for listener in list(self._listeners):
            listener(self._state)
