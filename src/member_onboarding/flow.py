"""
Flow reducer: derive the single UI flow state from the three input states.

Pure functions only: no I/O, no awaiting, no mutation. The controller calls
``determine_flow_state`` every time any input changes.

Rules, first match wins:

  1. any error (identity, auth, registration, member)   → ERROR
  2. identity provider still loading                     → INITIALIZING
  3. provider ready but nobody logged in                 → AUTHENTICATING
  4. registration running or member fetch running        → REGISTERING
  5. registered with a member:
       new user whose welcome was not shown yet          → SUCCESS
       otherwise                                         → READY
  6. anything else                                       → INITIALIZING
"""

from __future__ import annotations

from member_onboarding import messages
from member_onboarding.domain.models import (
    ErrorSource,
    FlowDecision,
    FlowInputs,
    FlowState,
)


def determine_flow_state(inputs: FlowInputs) -> FlowDecision:
    """
    Reduce ``inputs`` to a FlowDecision.

    Entering SUCCESS flips ``welcome_shown`` to True in the decision; every
    other outcome passes the flag through unchanged.
    """
    identity = inputs.identity
    registration = inputs.registration
    member = inputs.member
    shown = inputs.welcome_shown

    if active_error_source(inputs) is not None:
        return FlowDecision(FlowState.ERROR, shown)

    if identity.loading:
        return FlowDecision(FlowState.INITIALIZING, shown)

    if identity.is_ready and not identity.is_logged_in:
        return FlowDecision(FlowState.AUTHENTICATING, shown)

    if registration.is_registering or member.loading:
        return FlowDecision(FlowState.REGISTERING, shown)

    if registration.is_registered and member.member is not None:
        if registration.is_new_user and not shown:
            return FlowDecision(FlowState.SUCCESS, True)
        return FlowDecision(FlowState.READY, shown)

    return FlowDecision(FlowState.INITIALIZING, shown)


def active_error_source(inputs: FlowInputs) -> ErrorSource | None:
    """The highest-priority source currently reporting an error, if any."""
    if inputs.identity.error is not None:
        return ErrorSource.IDENTITY
    if inputs.registration.error is not None:
        return ErrorSource.AUTHENTICATION
    if inputs.registration.registration_error:
        return ErrorSource.REGISTRATION
    if inputs.member.error:
        return ErrorSource.MEMBER
    return None


def error_message(inputs: FlowInputs) -> str | None:
    """
    The one message to show for the error state, or None without an error.

    Only the highest-priority message is returned even when several sources
    report errors at once.
    """
    match active_error_source(inputs):
        case ErrorSource.IDENTITY:
            return inputs.identity.error.message or messages.IDENTITY_INIT_FAILED  # type: ignore[union-attr]
        case ErrorSource.AUTHENTICATION:
            return inputs.registration.error.message or messages.AUTHENTICATION_FAILED  # type: ignore[union-attr]
        case ErrorSource.REGISTRATION:
            return inputs.registration.registration_error
        case ErrorSource.MEMBER:
            return inputs.member.error
    return None
