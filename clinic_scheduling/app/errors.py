# errors.py
from typing import List, Optional


class SchedulingError(Exception):
    """Base class for every error surfaced by the scheduling engine."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Unauthenticated(SchedulingError):
    status_code = 401


class Unauthorized(SchedulingError):
    status_code = 403


class NotFound(SchedulingError):
    status_code = 404


class InvalidInput(SchedulingError):
    status_code = 400


class InvalidState(SchedulingError):
    status_code = 400


class InvalidTransition(InvalidState):
    """A status change the caller's role may not perform."""


class SlotConflict(SchedulingError):
    status_code = 409

    def __init__(self, message: str, conflicting_ids: Optional[List[str]] = None):
        super().__init__(message)
        self.conflicting_ids = conflicting_ids or []


class StoreFailure(SchedulingError):
    status_code = 500
