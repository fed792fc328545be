"""
Registration: reconcile an authenticated identity with the member datastore.

    check_and_register(identity)
      → cache hit?                          → cached RegistrationStatus
      → in-flight check for this identity?  → join it
      → find_by_identity
          Success        → existing user
          NOT_FOUND      → create → new user
                               CONFLICT → find again → existing user
          other failure  → failed status (never cached)
      → cache write (successful outcomes only)

Failures from the store arrive as ``Result`` values and are turned into a
``RegistrationStatus`` carrying a localized message. ``check_and_register``
itself never raises.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import structlog
from railway import ErrorCode, FailureDescription
from railway.result import Failure, Result, Success

from member_onboarding import messages
from member_onboarding.clock import system_clock, to_iso
from member_onboarding.domain.models import (
    CacheEntry,
    Clock,
    Identity,
    Member,
    NewMember,
    RegistrationStatus,
)
from member_onboarding.domain.ports import IdentityStateSource, KeyValueStore, MemberStore

if TYPE_CHECKING:
    from member_onboarding.analytics import AnalyticsRecorder

log = structlog.get_logger()

DEFAULT_TTL_MS = 24 * 60 * 60 * 1000
DEFAULT_KEY_PREFIX = "registration_status"


class RegistrationCache:
    """
    Per-identity cache of successful RegistrationStatus values.

    Entries live in a KeyValueStore under ``{key_prefix}_{identity_id}`` and
    expire ``ttl_ms`` after they were written. Expired or unreadable entries
    are purged the first time they are read.

    The cache also tracks the in-flight check per identity so that concurrent
    callers share one datastore round trip.
    """

    def __init__(
        self,
        store: KeyValueStore,
        ttl_ms: int = DEFAULT_TTL_MS,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        clock: Clock = system_clock,
    ) -> None:
        self._store = store
        self._ttl_ms = ttl_ms
        self._key_prefix = key_prefix
        self._clock = clock
        self._pending: dict[str, asyncio.Task[RegistrationStatus]] = {}

    def key_for(self, identity_id: str) -> str:
        return f"{self._key_prefix}_{identity_id}"

    def read(self, identity_id: str) -> CacheEntry | None:
        key = self.key_for(identity_id)
        raw = Result.from_computation(
            lambda: self._store.get(key) or {},
            ErrorCode.STORAGE_ERROR,
            "Registration cache read failed",
        )
        if raw.is_failure():
            log.warning("registration_cache.read_failed", identity_id=identity_id, error=str(raw.error()))
            return None
        record = raw.get_or_else({})
        if not record:
            return None

        parsed = Result.from_computation(
            lambda: CacheEntry.from_record(record),
            ErrorCode.VALIDATION_ERROR,
            "Registration cache entry is malformed",
        )
        match parsed:
            case Success(entry) if not entry.is_expired(self._clock()):
                return entry
            case Success(_):
                log.debug("registration_cache.expired", identity_id=identity_id)
            case Failure(err):
                log.warning("registration_cache.corrupt", identity_id=identity_id, error=str(err))
        self._delete(key)
        return None

    def write(self, identity_id: str, status: RegistrationStatus) -> CacheEntry:
        now = self._clock()
        entry = CacheEntry(status=status, written_at=now, expires_at=now + self._ttl_ms)
        key = self.key_for(identity_id)
        Result.from_computation(
            lambda: self._store.set(key, entry.to_record()) or True,
            ErrorCode.STORAGE_ERROR,
            "Registration cache write failed",
        ).peek_failure(
            lambda err: log.warning("registration_cache.write_failed", identity_id=identity_id, error=str(err))
        )
        return entry

    def remove(self, identity_id: str) -> None:
        self._delete(self.key_for(identity_id))

    def clear(self) -> int:
        """Remove every entry under this cache's prefix. Returns how many."""
        prefix = f"{self._key_prefix}_"
        keys = Result.from_computation(
            lambda: [key for key in self._store.keys() if key.startswith(prefix)],
            ErrorCode.STORAGE_ERROR,
            "Registration cache listing failed",
        ).get_or_else([])
        for key in keys:
            self._delete(key)
        return len(keys)

    async def join_or_start(
        self,
        identity_id: str,
        factory: Callable[[], Awaitable[RegistrationStatus]],
    ) -> RegistrationStatus:
        """
        Await the in-flight check for ``identity_id``, starting one if needed.

        The shared task is shielded: cancelling one waiter does not cancel the
        check for the others.
        """
        task = self._pending.get(identity_id)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._pending[identity_id] = task
            task.add_done_callback(lambda done, key=identity_id: self._forget(key, done))
        else:
            log.debug("registration_cache.joined_in_flight", identity_id=identity_id)
        return await asyncio.shield(task)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def dispose(self) -> None:
        """Cancel in-flight checks. Cached entries are kept."""
        for task in self._pending.values():
            task.cancel()
        self._pending.clear()

    def _forget(self, identity_id: str, task: asyncio.Task[RegistrationStatus]) -> None:
        if self._pending.get(identity_id) is task:
            del self._pending[identity_id]

    def _delete(self, key: str) -> None:
        Result.from_computation(
            lambda: self._store.delete(key) or True,
            ErrorCode.STORAGE_ERROR,
            "Registration cache delete failed",
        ).peek_failure(lambda err: log.warning("registration_cache.delete_failed", key=key, error=str(err)))


class RegistrationService:
    """
    Reconciles identities with the member datastore.

    ``identity_source`` is consulted only when ``check_and_register`` is
    called without an identity; ``analytics`` is optional.
    """

    def __init__(
        self,
        store: MemberStore,
        cache: RegistrationCache,
        identity_source: IdentityStateSource | None = None,
        analytics: AnalyticsRecorder | None = None,
        clock: Clock = system_clock,
    ) -> None:
        self._store = store
        self._cache = cache
        self._identity_source = identity_source
        self._analytics = analytics
        self._clock = clock

    async def check_and_register(self, identity: Identity | None = None) -> RegistrationStatus:
        """
        Return the registration status for ``identity``, registering it when
        the datastore has no member for it yet.

        Without an identity the cached profile is tried first, then a fresh
        authentication. Never raises: every failure becomes a status with
        ``is_registered=False`` and a user-facing ``error``.
        """
        if identity is None:
            identity = await self._resolve_identity()
            if identity is None:
                log.warning("registration.no_profile")
                return RegistrationStatus.failed(messages.NO_PROFILE)

        cached = self.get_cached_registration_status(identity.id)
        if cached is not None:
            log.debug("registration.cache_hit", identity_id=identity.id)
            if self._analytics is not None:
                self._analytics.track_cache_hit(identity.id)
            return cached

        outcome = await Result.from_awaitable(
            lambda: self._cache.join_or_start(identity.id, lambda: self._reconcile(identity)),
            ErrorCode.UNKNOWN_ERROR,
            "Registration check raised",
        )
        return outcome.either(
            lambda status: status,
            lambda err: self._failed(identity, err, messages.UNEXPECTED),
        )

    def is_registration_complete(self, identity_id: str) -> bool:
        """True when a live cache entry says the identity is registered."""
        cached = self.get_cached_registration_status(identity_id)
        return cached is not None and cached.is_registered and cached.member is not None

    def get_cached_registration_status(self, identity_id: str) -> RegistrationStatus | None:
        entry = self._cache.read(identity_id)
        return entry.status if entry is not None else None

    def clear_registration_cache(self, identity_id: str | None = None) -> None:
        """Drop the entry for one identity, or every entry when none is given."""
        if identity_id is not None:
            self._cache.remove(identity_id)
            log.info("registration.cache_cleared", identity_id=identity_id)
        else:
            removed = self._cache.clear()
            log.info("registration.cache_cleared_all", removed=removed)

    def dispose(self) -> None:
        self._cache.dispose()

    # ──────────────────────── internals ────────────────────────

    async def _resolve_identity(self) -> Identity | None:
        if self._identity_source is None:
            return None
        cached = self._identity_source.cached_profile()
        if cached is not None:
            return cached
        result = await self._identity_source.authenticate()
        if result.is_failure():
            log.warning("registration.authenticate_failed", error=str(result.error()))
            return None
        return result.value()

    async def _reconcile(self, identity: Identity) -> RegistrationStatus:
        log.info("registration.check_started", identity_id=identity.id)
        if self._analytics is not None:
            self._analytics.track_registration_check_start(identity.id)

        found = await self._store.find_by_identity(identity.id)
        match found:
            case Success(member):
                return self._resolved(identity, member, is_new_user=False)
            case Failure() if found.has_code(ErrorCode.NOT_FOUND):
                return await self._register_new(identity)
            case Failure(err):
                return self._failed(identity, err, messages.message_for(err.code))
        raise TypeError("unreachable")  # pragma: no cover

    async def _register_new(self, identity: Identity) -> RegistrationStatus:
        record = NewMember(
            identity_id=identity.id,
            display_name=identity.display_name,
            registration_date=to_iso(self._clock()),
        )
        created = await self._store.create(record)
        match created:
            case Success(member):
                return self._resolved(identity, member, is_new_user=True)
            case Failure(err) if created.has_code(ErrorCode.CONFLICT_ERROR):
                log.info("registration.create_conflict", identity_id=identity.id)
                return await self._adopt_existing(identity, err)
            case Failure(err):
                return self._failed(identity, err, messages.REGISTRATION_FAILED)
        raise TypeError("unreachable")  # pragma: no cover

    async def _adopt_existing(self, identity: Identity, conflict: FailureDescription) -> RegistrationStatus:
        """Another writer registered the identity first; use their row."""
        reread = await self._store.find_by_identity(identity.id)
        return reread.either(
            lambda member: self._resolved(identity, member, is_new_user=False),
            lambda err: self._failed(identity, conflict, messages.message_for(conflict.code)),
        )

    def _resolved(self, identity: Identity, member: Member, *, is_new_user: bool) -> RegistrationStatus:
        status = RegistrationStatus(
            is_new_user=is_new_user,
            is_registered=True,
            member=member,
            error=None,
            registration_time=self._clock(),
        )
        self._cache.write(identity.id, status)
        log.info(
            "registration.resolved",
            identity_id=identity.id,
            member_id=member.id,
            is_new_user=is_new_user,
        )
        return status

    def _failed(self, identity: Identity, error: FailureDescription, message: str) -> RegistrationStatus:
        log.error(
            "registration.failed",
            identity_id=identity.id,
            code=error.code.value,
            error=error.message,
        )
        return RegistrationStatus.failed(message)
