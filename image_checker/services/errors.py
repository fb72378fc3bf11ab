"""
Error taxonomy for the session persistence layer

Each error carries what the caller needs to render a useful message
("your version N vs current version M", "locked by X since T").
"""
from datetime import datetime
from typing import Optional


class SessionError(Exception):
    """Base class for session persistence errors"""


class SessionNotFoundError(SessionError):
    """Unknown session id, or the session is soft-deleted"""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class DuplicateSessionError(SessionError):
    """A create collided with an existing session_id"""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} already exists")


class OptimisticLockConflict(SessionError):
    """The row's version moved on since the caller last read it"""

    def __init__(self, session_id: str, current_version: int, attempted_version: int):
        self.session_id = session_id
        self.current_version = current_version
        self.attempted_version = attempted_version
        super().__init__(
            "Session was modified by another user. Please refresh and try again. "
            f"(your version {attempted_version}, current version {current_version})"
        )


class SessionLockedError(SessionError):
    """Another editor holds a non-expired advisory lock"""

    def __init__(self, session_id: str, locked_by: str, locked_at: Optional[datetime]):
        self.session_id = session_id
        self.locked_by = locked_by
        self.locked_at = locked_at
        super().__init__(
            f"This session is currently being edited by {locked_by}. "
            "Please try again later or contact them to coordinate."
        )


class PayloadStoreError(SessionError):
    """Blob upload/fetch failed; fatal for the current operation"""


class PayloadValidationError(PayloadStoreError):
    """Stored or submitted device array does not match the device schema"""
