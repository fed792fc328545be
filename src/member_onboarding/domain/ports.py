"""
Ports: Protocol-based interfaces for the collaborators the core consumes.

    Core (registration, flow, analytics) ← Ports ← Adapters (httpx, JSON file, memory)

Adapters satisfy a port structurally; nothing inherits from these classes.
Remote ports are async and return ``Result[T]`` so failures arrive as data.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any, Protocol, runtime_checkable

from railway.result import Result

from member_onboarding.domain.models import Identity, IdentityState, Member, NewMember


@runtime_checkable
class IdentityProvider(Protocol):
    """
    Port: the identity provider SDK (LINE Login).

    ``initialize`` reports whether a usable login already exists;
    ``login`` establishes one; ``fetch_profile`` returns the logged-in profile.
    """

    async def initialize(self) -> Result[bool]: ...

    async def login(self) -> Result[bool]: ...

    async def fetch_profile(self) -> Result[Identity]: ...

    async def logout(self) -> Result[bool]: ...


@runtime_checkable
class MemberStore(Protocol):
    """
    Port: the external member datastore.

    ``find_by_identity`` fails with ``ErrorCode.NOT_FOUND`` when no member
    exists for the identity; that failure means "new user", not an outage.
    ``create`` fails with ``ErrorCode.CONFLICT_ERROR`` if the identity is
    already registered.
    """

    async def find_by_identity(self, identity_id: str) -> Result[Member]: ...

    async def create(self, record: NewMember) -> Result[Member]: ...

    async def update(self, identity_id: str, patch: dict[str, Any]) -> Result[Member]: ...


@runtime_checkable
class IdentityStateSource(Protocol):
    """
    Port: the observable identity session the flow watches.

    ``cached_profile`` never touches the network; ``authenticate`` may.
    """

    @property
    def state(self) -> IdentityState: ...

    def cached_profile(self) -> Identity | None: ...

    async def authenticate(self) -> Result[Identity]: ...

    def subscribe(self, listener: Callable[[IdentityState], None]) -> Callable[[], None]: ...


@runtime_checkable
class KeyValueStore(Protocol):
    """
    Port: small durable key-value storage for JSON-compatible values.

    Implementations may raise on I/O problems; callers that must not fail
    wrap access in ``Result.from_computation``.
    """

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self) -> Iterable[str]: ...
