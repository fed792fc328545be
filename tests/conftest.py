"""
Shared test fixtures and fakes for the member-onboarding test suite.

The fakes implement the ports structurally (no inheritance) and record how
they were called, so tests can assert on round trips without mocks:

  - FakeClock:            settable epoch-millisecond clock
  - FakeTicker:           manual countdown ticks
  - FakeMemberStore:      in-memory members table with scripted failures
  - FakeIdentityProvider: scripted LINE login outcomes
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest
from railway import ErrorCode, Result

from member_onboarding.adapters.storage import InMemoryKeyValueStore
from member_onboarding.analytics import AnalyticsRecorder
from member_onboarding.domain.models import Identity, Member, NewMember

START_MS = 1_700_000_000_000

ALICE = Identity(id="U-alice", display_name="Alice", picture_url="https://cdn.example.com/alice.png")
BOB = Identity(id="U-bob", display_name="Bob")


def make_member(identity: Identity = ALICE, member_id: str = "m-1") -> Member:
    return Member(
        id=member_id,
        identity_id=identity.id,
        display_name=identity.display_name,
        registration_date="2023-11-14T22:13:20+00:00",
        is_active=True,
    )


class FakeClock:
    def __init__(self, now: int = START_MS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeTicker:
    """Ticker whose ticks are fired by the test."""

    def __init__(self) -> None:
        self.callback: Callable[[], None] | None = None
        self.interval: float | None = None
        self.cancelled = 0

    def schedule(self, callback: Callable[[], None], interval_seconds: float) -> Callable[[], None]:
        self.callback = callback
        self.interval = interval_seconds

        def _cancel() -> None:
            self.cancelled += 1
            self.callback = None

        return _cancel

    def fire(self, times: int = 1) -> None:
        for _ in range(times):
            if self.callback is not None:
                self.callback()


class FakeMemberStore:
    """
    In-memory MemberStore.

    ``find_failure`` / ``create_failure`` script one failure code for the
    next calls; ``gate`` (when set) holds every lookup until it is opened.
    """

    def __init__(self, *members: Member) -> None:
        self.rows: dict[str, Member] = {m.identity_id: m for m in members}
        self.find_calls = 0
        self.create_calls = 0
        self.update_calls = 0
        self.find_failure: ErrorCode | None = None
        self.create_failure: ErrorCode | None = None
        self.update_failure: ErrorCode | None = None
        self.gate: asyncio.Event | None = None
        self._next_id = len(self.rows) + 1

    async def find_by_identity(self, identity_id: str) -> Result[Member]:
        self.find_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.find_failure is not None:
            return Result.failure(self.find_failure, "scripted lookup failure")
        return Result.from_optional(self.rows.get(identity_id), f"No member for {identity_id}")

    async def create(self, record: NewMember) -> Result[Member]:
        self.create_calls += 1
        if self.create_failure is not None:
            return Result.failure(self.create_failure, "scripted insert failure")
        if record.identity_id in self.rows:
            return Result.failure(ErrorCode.CONFLICT_ERROR, "duplicate key value violates unique constraint")
        member = Member(
            id=f"m-{self._next_id}",
            identity_id=record.identity_id,
            display_name=record.display_name,
            registration_date=record.registration_date,
            is_active=record.is_active,
        )
        self._next_id += 1
        self.rows[record.identity_id] = member
        return Result.success(member)

    async def update(self, identity_id: str, patch: dict[str, Any]) -> Result[Member]:
        self.update_calls += 1
        if self.update_failure is not None:
            return Result.failure(self.update_failure, "scripted update failure")
        current = self.rows.get(identity_id)
        if current is None:
            return Result.failure(ErrorCode.NOT_FOUND, f"No member for {identity_id}")
        updated = Member.from_row({**current.to_row(), **patch})
        self.rows[identity_id] = updated
        return Result.success(updated)


class FakeIdentityProvider:
    def __init__(self, profile: Identity | None = ALICE, logged_in: bool = True) -> None:
        self.profile = profile
        self.logged_in = logged_in
        self.init_failure: ErrorCode | None = None
        self.login_failure: ErrorCode | None = None
        self.profile_failure: ErrorCode | None = None
        self.init_calls = 0
        self.login_calls = 0
        self.profile_calls = 0
        self.logout_calls = 0

    async def initialize(self) -> Result[bool]:
        self.init_calls += 1
        if self.init_failure is not None:
            return Result.failure(self.init_failure, "LIFF init failed")
        return Result.success(self.logged_in)

    async def login(self) -> Result[bool]:
        self.login_calls += 1
        if self.login_failure is not None:
            return Result.failure(self.login_failure, "login rejected")
        self.logged_in = True
        return Result.success(True)

    async def fetch_profile(self) -> Result[Identity]:
        self.profile_calls += 1
        if self.profile_failure is not None:
            return Result.failure(self.profile_failure, "profile unavailable")
        return Result.from_optional(self.profile, "No profile", ErrorCode.AUTHENTICATION_ERROR)

    async def logout(self) -> Result[bool]:
        self.logout_calls += 1
        self.logged_in = False
        return Result.success(True)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture()
def ticker() -> FakeTicker:
    return FakeTicker()


@pytest.fixture()
def member_store() -> FakeMemberStore:
    return FakeMemberStore()


@pytest.fixture()
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture()
def analytics(kv_store: InMemoryKeyValueStore, clock: FakeClock) -> AnalyticsRecorder:
    return AnalyticsRecorder(store=kv_store, clock=clock)
