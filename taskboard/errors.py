from __future__ import annotations


class TaskboardError(Exception):
    """Base for failures that map onto a client-visible status and message.

    The message is shown to callers as-is, so it must never carry internal
    identifiers or exception text from the store.
    """

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(TaskboardError):
    status_code = 400
    default_message = "Invalid request."


class NoOp(TaskboardError):
    status_code = 400
    default_message = "No changes made to the task."


class Unauthorized(TaskboardError):
    status_code = 401
    default_message = "Invalid token."


class NotFound(TaskboardError):
    # Absent and not-owned are reported identically
    status_code = 404
    default_message = "Task not found or not yours."


class Internal(TaskboardError):
    status_code = 500
    default_message = "Internal server error"


__all__ = [
    "Internal",
    "NoOp",
    "NotFound",
    "TaskboardError",
    "Unauthorized",
    "ValidationError",
]
