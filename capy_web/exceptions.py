"""Error taxonomy for research sessions.

Only plan and session level problems surface as exceptions. Per-URL fetch
failures are reported as unsuccessful visits and path-level failures are
contained at the path boundary, so neither appears here.
"""

from typing import List, Optional


class CapyWebError(Exception):
    """Base class for all research engine errors."""


class PlanInvalidError(CapyWebError):
    """Raised when the planner produced a plan that must not be executed."""

    def __init__(self, validation_errors: List[str]):
        self.validation_errors = list(validation_errors)
        super().__init__(f"Invalid plan: {', '.join(self.validation_errors)}")


class ResearchInProgressError(CapyWebError):
    """Raised when research() is called while another run is executing."""

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id
        super().__init__("Research already in progress")


class FetcherNotAttachedError(CapyWebError):
    """Raised when research() starts without a page-fetching collaborator."""

    def __init__(self):
        super().__init__("Page fetcher not attached. Call attach_fetcher() first.")


class SessionNotFoundError(CapyWebError):
    """Raised when a browsing session id is unknown to the navigation engine."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Browsing session not found: {session_id}")


class CollaboratorError(CapyWebError):
    """Raised when an external collaborator returns unusable output."""


__all__ = [
    "CapyWebError",
    "PlanInvalidError",
    "ResearchInProgressError",
    "FetcherNotAttachedError",
    "SessionNotFoundError",
    "CollaboratorError",
]
