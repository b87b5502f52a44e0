"""Typed progression errors.

Engines raise these; the orchestrator decides whether to retry, ignore or
surface them, and the API maps them to status codes.
"""

from __future__ import annotations


class ProgressionError(Exception):
    """Base class for all progression errors."""

    status_code = 400

    def __init__(self, message: str, **context: object) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    @property
    def code(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message, **{k: str(v) for k, v in self.context.items()}}


class InvalidAmount(ProgressionError):
    """A non-positive XP award or practice amount was requested."""

    status_code = 422


class InvalidTransition(ProgressionError):
    """A state change was requested from a state that does not permit it.

    ``already_reached`` is True when the requested target state already holds
    (duplicate start, progress on a completed quest); the orchestrator treats
    those as benign no-ops.
    """

    status_code = 409

    def __init__(self, message: str, *, already_reached: bool = False, **context: object) -> None:
        super().__init__(message, **context)
        self.already_reached = already_reached


class PathMismatch(ProgressionError):
    """Skill practice recorded against a node outside the user's chosen path."""

    status_code = 409


class NotFound(ProgressionError):
    """Reference to a nonexistent quest, node, path, objective or badge."""

    status_code = 404


class StoreConflict(ProgressionError):
    """Concurrent update detected while serializing a user's progression."""

    status_code = 503
