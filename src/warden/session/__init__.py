"""Session restart protocol and the pieces it composes."""

from warden.session.restart import RestartOutcome, RestartProtocol, SessionPlan

__all__ = ["RestartOutcome", "RestartProtocol", "SessionPlan"]
