"""
member_onboarding: membership onboarding client for LINE-authenticated users.

Authenticates the user through the identity provider, reconciles the
identity against the member datastore (registering first-time users),
derives one UI flow state from the moving parts and records analytics
about every phase.

Built on the Railway-Oriented Programming (ROP) framework for
explicit, composable, functional error handling.
"""

__version__ = "0.1.0"
