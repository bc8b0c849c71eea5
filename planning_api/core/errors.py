# planning_api/core/errors.py
"""
Exception hierarchy for the scraping pipeline.

Only AuthenticationFailed and MenuNotFound carry text meant for end users;
the other errors are either degraded gracefully by the caller or reported as
generic failures.
"""
from typing import List, Optional

from .constants import MSG_INVALID_CREDENTIALS, MSG_MENU_NOT_FOUND


class PlanningError(Exception):
    """Base exception for all pipeline errors."""
    pass


class AuthenticationFailed(PlanningError):
    """The portal rejected the credentials (still on the login page after submit)."""
    def __init__(self, message: Optional[str] = None):
        # Portal message is surfaced verbatim when available
        super().__init__(message or MSG_INVALID_CREDENTIALS)


class NavigationTimeout(PlanningError):
    """A bounded navigation wait expired during login or menu navigation."""
    pass


class MenuNotFound(PlanningError):
    """
    The schedule entry could not be located in the portal menu.

    The observed labels are kept on the exception so operators can see what the
    portal menu looked like when the match failed.
    """
    def __init__(self, menu_labels: List[str]):
        self.menu_labels = list(menu_labels)
        super().__init__(MSG_MENU_NOT_FOUND + ", ".join(self.menu_labels))


class SessionNotFound(PlanningError):
    """Unknown or expired session token."""
    def __init__(self, token: Optional[str]):
        self.token = token
        short = (token or "")[:8]
        super().__init__(f"No active session for token {short}...")


class CacheUnavailable(PlanningError):
    """The cache store could not be read or written."""
    pass
