"""
HTTP adapters: LINE Login identity provider and PostgREST member store via httpx.

Adapter layer. Implements the IdentityProvider and MemberStore ports with
``httpx.AsyncClient``.

LINE Login v2.1 (server-side view of a LIFF login):
  1. GET  {api}/oauth2/v2.1/verify?access_token=…   → token is live, for our channel
  2. GET  {api}/v2/profile (Bearer access token)     → userId, displayName, pictureUrl
  3. POST {api}/oauth2/v2.1/revoke                   → logout

Member datastore (PostgREST, e.g. Supabase ``/rest/v1``):
  - GET   /{table}?line_user_id=eq.{id}&limit=1      → [] means "no member"
  - POST  /{table}            Prefer: return=representation
  - PATCH /{table}?line_user_id=eq.{id}

Retry/backoff via tenacity on transient errors (network, timeout). Every
exception is captured into a Result failure and then reclassified from the
exception it carries (409 → CONFLICT_ERROR, 401/403 → AUTHENTICATION_ERROR,
timeout → TIMEOUT_ERROR, transport → NETWORK_ERROR).
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from railway import ErrorCode, FailureDescription
from railway.result import Result
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from member_onboarding.domain.models import Identity, Member, NewMember

log = structlog.get_logger()

_transient_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=0.1, max=30),
    retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
    reraise=True,
)


class MemberNotFoundError(LookupError):
    """The datastore answered, but with no matching row."""


def classify_failure(error: FailureDescription) -> FailureDescription:
    """Refine a captured failure's code from the exception that caused it."""
    exc = error.exception
    match exc:
        case MemberNotFoundError():
            return error.with_code(ErrorCode.NOT_FOUND)
        case httpx.HTTPStatusError() if exc.response.status_code == 409:
            return error.with_code(ErrorCode.CONFLICT_ERROR)
        case httpx.HTTPStatusError() if exc.response.status_code in (401, 403):
            return error.with_code(ErrorCode.AUTHENTICATION_ERROR)
        case httpx.TimeoutException():
            return error.with_code(ErrorCode.TIMEOUT_ERROR)
        case httpx.TransportError():
            return error.with_code(ErrorCode.NETWORK_ERROR)
    return error


# ═══════════════════════════════════════════════════════════════════════
# Identity provider
# ═══════════════════════════════════════════════════════════════════════


class HttpLineIdentityProvider:
    """
    LINE Login identity provider for a LIFF access token.

    Implements the IdentityProvider port. The access token is obtained by the
    LIFF front end and handed over with ``set_access_token``; without one the
    user is simply not logged in.
    """

    def __init__(
        self,
        api_base_url: str,
        channel_id: str,
        access_token: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._api_base_url = api_base_url.rstrip("/")
        self._channel_id = channel_id
        self._access_token = access_token
        self._timeout = timeout

    def set_access_token(self, access_token: str | None) -> None:
        self._access_token = access_token

    async def initialize(self) -> Result[bool]:
        """
        Check the configured token. Success(False) when there is no usable
        login (no token, or the token is expired or was rejected).
        """
        if not self._access_token:
            log.info("line.initialized", logged_in=False)
            return Result.success(False)
        token = self._access_token
        result = await Result.from_awaitable(
            lambda: self._verify(token),
            ErrorCode.EXTERNAL_SERVICE_ERROR,
            "LINE token verification failed",
        )
        return result.map_failure(classify_failure).flat_map(self._accept_verification)

    async def login(self) -> Result[bool]:
        if not self._access_token:
            return Result.failure(
                ErrorCode.AUTHENTICATION_ERROR,
                "No LINE access token; the user must complete LINE Login first",
            )
        return (await self.initialize()).flat_map(
            lambda live: Result.success(True)
            if live
            else Result.failure(ErrorCode.AUTHENTICATION_ERROR, "LINE access token is not valid")
        )

    async def fetch_profile(self) -> Result[Identity]:
        token = self._access_token
        if not token:
            return Result.failure(ErrorCode.AUTHENTICATION_ERROR, "Not logged in to LINE")
        result = await Result.from_awaitable(
            lambda: self._do_profile_request(token),
            ErrorCode.EXTERNAL_SERVICE_ERROR,
            "LINE profile request failed",
        )
        return result.map_failure(classify_failure)

    async def logout(self) -> Result[bool]:
        token, self._access_token = self._access_token, None
        if not token:
            return Result.success(True)
        result = await Result.from_awaitable(
            lambda: self._do_revoke_request(token),
            ErrorCode.EXTERNAL_SERVICE_ERROR,
            "LINE token revocation failed",
        )
        return result.map_failure(classify_failure)

    def _accept_verification(self, payload: dict[str, Any]) -> Result[bool]:
        if not payload:
            log.info("line.initialized", logged_in=False, reason="token_rejected")
            return Result.success(False)
        if str(payload.get("client_id")) != self._channel_id:
            return Result.failure(
                ErrorCode.AUTHENTICATION_ERROR,
                f"LINE access token was issued for channel {payload.get('client_id')}",
            )
        logged_in = int(payload.get("expires_in", 0)) > 0
        log.info("line.initialized", logged_in=logged_in)
        return Result.success(logged_in)

    @_transient_retry
    async def _verify(self, token: str) -> dict[str, Any]:
        """Token verification; an empty dict for a token LINE rejects (HTTP 400)."""
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(
                f"{self._api_base_url}/oauth2/v2.1/verify",
                params={"access_token": token},
            )
            if response.status_code == 400:
                return {}
            response.raise_for_status()
            payload: dict[str, Any] = response.json()
            return payload

    @_transient_retry
    async def _do_profile_request(self, token: str) -> Identity:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(
                f"{self._api_base_url}/v2/profile",
                headers={"Authorization": f"Bearer {token}"},
            )
            response.raise_for_status()
            data = response.json()
            profile = Identity(
                id=data["userId"],
                display_name=data["displayName"],
                picture_url=data.get("pictureUrl"),
            )
            log.info("line.profile_fetched", identity_id=profile.id)
            return profile

    @_transient_retry
    async def _do_revoke_request(self, token: str) -> bool:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(
                f"{self._api_base_url}/oauth2/v2.1/revoke",
                data={"access_token": token, "client_id": self._channel_id},
            )
            response.raise_for_status()
            log.info("line.token_revoked")
            return True


# ═══════════════════════════════════════════════════════════════════════
# Member store
# ═══════════════════════════════════════════════════════════════════════


class PostgrestMemberStore:
    """
    Member datastore over a PostgREST endpoint.

    Implements the MemberStore port. ``line_user_id`` is expected to carry a
    unique constraint so a duplicate insert answers 409.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        table: str = "members",
        timeout: float = 10.0,
    ) -> None:
        self._table_url = f"{base_url.rstrip('/')}/{table}"
        self._api_key = api_key
        self._timeout = timeout

    async def find_by_identity(self, identity_id: str) -> Result[Member]:
        """Success(member), or Failure(NOT_FOUND) when no row matches."""
        result = await Result.from_awaitable(
            lambda: self._do_select(identity_id),
            ErrorCode.DATABASE_ERROR,
            "Member lookup failed",
        )
        return result.map_failure(classify_failure).flat_map(
            lambda members: Result.from_optional(
                next(iter(members), None), f"No member for identity {identity_id}"
            )
        )

    async def create(self, record: NewMember) -> Result[Member]:
        """Insert a member. Failure(CONFLICT_ERROR) if the identity exists."""
        result = await Result.from_awaitable(
            lambda: self._do_insert(record),
            ErrorCode.DATABASE_ERROR,
            "Member insert failed",
        )
        return result.map_failure(classify_failure)

    async def update(self, identity_id: str, patch: dict[str, Any]) -> Result[Member]:
        result = await Result.from_awaitable(
            lambda: self._do_update(identity_id, patch),
            ErrorCode.DATABASE_ERROR,
            "Member update failed",
        )
        return result.map_failure(classify_failure)

    def _headers(self, *, returning: bool = False) -> dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
            "Accept": "application/json",
        }
        if returning:
            headers["Prefer"] = "return=representation"
        return headers

    @staticmethod
    def _single(rows: list[dict[str, Any]], identity_id: str) -> Member:
        if not rows:
            raise MemberNotFoundError(f"No member for identity {identity_id}")
        return Member.from_row(rows[0])

    @_transient_retry
    async def _do_select(self, identity_id: str) -> list[Member]:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.get(
                self._table_url,
                params={"line_user_id": f"eq.{identity_id}", "select": "*", "limit": "1"},
                headers=self._headers(),
            )
            response.raise_for_status()
            members = [Member.from_row(row) for row in response.json()]
            log.debug("members.selected", identity_id=identity_id, count=len(members))
            return members

    @_transient_retry
    async def _do_insert(self, record: NewMember) -> Member:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(
                self._table_url,
                json=record.to_row(),
                headers=self._headers(returning=True),
            )
            response.raise_for_status()
            member = self._single(response.json(), record.identity_id)
            log.info("members.created", identity_id=record.identity_id, member_id=member.id)
            return member

    @_transient_retry
    async def _do_update(self, identity_id: str, patch: dict[str, Any]) -> Member:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.patch(
                self._table_url,
                params={"line_user_id": f"eq.{identity_id}"},
                json=patch,
                headers=self._headers(returning=True),
            )
            response.raise_for_status()
            member = self._single(response.json(), identity_id)
            log.info("members.updated", identity_id=identity_id, fields=sorted(patch))
            return member
