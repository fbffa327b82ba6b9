from __future__ import annotations


class BreachDetectionError(Exception):
    """Base class for errors raised by the breach detection engine."""


class UserNotFoundError(BreachDetectionError):
    def __init__(self, user_id: str):
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


class DataSourceError(BreachDetectionError):
    """A collaborator store (activity log, directory, audit) failed to answer."""
