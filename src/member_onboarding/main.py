"""
Application entry point: wires dependencies and runs one onboarding session.

Composition root: creates concrete adapters, injects them into the
services and hands everything to the flow controller.

This is the ONLY place where concrete classes are instantiated.
Everything else depends on Protocol interfaces.

Responsibilities:
  1. Configure structlog
  2. Load and validate configuration from environment
  3. Create concrete adapter instances (LINE provider, member store, storage)
  4. Build the services and the flow controller
  5. Run the session and print the analytics report
"""

from __future__ import annotations

import asyncio
import logging
import sys

import structlog

from member_onboarding import __version__
from member_onboarding.adapters.http_client import HttpLineIdentityProvider, PostgrestMemberStore
from member_onboarding.adapters.storage import InMemoryKeyValueStore, JsonFileKeyValueStore
from member_onboarding.analytics import AnalyticsRecorder
from member_onboarding.config import AppSettings
from member_onboarding.controller import OnboardingFlowController
from member_onboarding.countdown import WelcomeCountdown
from member_onboarding.domain.models import FlowState
from member_onboarding.domain.ports import IdentityProvider, KeyValueStore, MemberStore
from member_onboarding.identity import IdentitySession
from member_onboarding.member_status import MemberStatusTracker
from member_onboarding.registration import RegistrationCache, RegistrationService
from member_onboarding.scheduler import Ticker


def configure_structlog(log_level: str = "INFO") -> None:
    """
    Configure structlog for structured logging.

    Colored, human-readable console output with ISO timestamps.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


type _Adapters = tuple[IdentityProvider, MemberStore, KeyValueStore]


def _create_adapters(settings: AppSettings) -> _Adapters:
    """
    Instantiate all concrete adapters from application settings.

    Creates 3 adapters: LINE identity provider, PostgREST member store and
    the key-value store (JSON file when a path is configured, else memory).
    """
    access_token = settings.line.access_token
    provider = HttpLineIdentityProvider(
        api_base_url=settings.line.api_base_url,
        channel_id=settings.line.channel_id,
        access_token=access_token.get_secret_value() if access_token else None,
        timeout=settings.http_timeout_seconds,
    )
    members = PostgrestMemberStore(
        base_url=settings.datastore.url,
        api_key=settings.datastore.api_key.get_secret_value(),
        table=settings.datastore.members_table,
        timeout=settings.http_timeout_seconds,
    )
    store: KeyValueStore = (
        JsonFileKeyValueStore(settings.storage.path)
        if settings.storage.path is not None
        else InMemoryKeyValueStore()
    )
    return provider, members, store


def build_controller(
    settings: AppSettings,
    adapters: _Adapters | None = None,
    ticker: Ticker | None = None,
) -> OnboardingFlowController:
    """Assemble one onboarding session. ``adapters`` overrides the real ones."""
    provider, members, store = adapters or _create_adapters(settings)

    analytics = AnalyticsRecorder(
        store=store,
        max_events=settings.analytics.max_events,
        storage_key=settings.analytics.storage_key,
    )
    identity = IdentitySession(provider, store)
    cache = RegistrationCache(
        store,
        ttl_ms=settings.cache.ttl_ms,
        key_prefix=settings.cache.key_prefix,
    )
    registration = RegistrationService(
        members,
        cache,
        identity_source=identity,
        analytics=analytics,
    )
    return OnboardingFlowController(
        identity=identity,
        registration=registration,
        members=MemberStatusTracker(members, analytics),
        analytics=analytics,
        countdown=WelcomeCountdown(settings.welcome.auto_hide_delay_ms, ticker),
    )


async def run_session(controller: OnboardingFlowController) -> FlowState:
    """
    Drive one session until registration settles, dismiss any welcome and
    dispose the controller while the event loop is still running.
    """
    log = structlog.get_logger()
    try:
        await controller.start()
        await controller.settle()
        if controller.flow_state is FlowState.SUCCESS:
            controller.continue_()
        log.info("app.session_finished", **controller.snapshot().to_dict())
        return controller.flow_state
    finally:
        controller.dispose()


def main() -> None:
    """Wire dependencies and run a single onboarding session."""
    try:
        settings = AppSettings()  # type: ignore[call-arg]
    except Exception as e:
        print(f"FATAL: Configuration error: {e}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    configure_structlog(settings.log_level)
    log = structlog.get_logger()
    log.info(
        "app.starting",
        version=__version__,
        log_level=settings.log_level,
        storage=str(settings.storage.path) if settings.storage.path else "memory",
    )

    controller = build_controller(settings)
    try:
        state = asyncio.run(run_session(controller))
    except KeyboardInterrupt:
        log.info("app.shutdown", reason="signal received")
        state = controller.flow_state

    print(controller.analytics.export_json())  # noqa: T201
    sys.exit(0 if state is FlowState.READY else 1)


if __name__ == "__main__":
    main()
