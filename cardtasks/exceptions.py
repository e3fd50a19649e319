"""
Error kinds raised by the task engine.

Every error carries a stable ``code`` so calling layers can render
specific guidance without parsing messages.
"""

from typing import Dict, Optional


class TaskEngineError(Exception):
    """Base exception for task engine errors."""

    code = "INTERNAL_ERROR"
    default_message = "Task engine error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self) -> Dict[str, str]:
        """Render the error as a code/message pair."""
        return {"code": self.code, "message": self.message}


class TaskNotFoundError(TaskEngineError):
    """Raised when a task is not found."""

    code = "NOT_FOUND"
    default_message = "Task not found"


class ParentNotFoundError(TaskNotFoundError):
    """Raised when a parent task is missing or belongs to another card."""

    code = "PARENT_NOT_FOUND"
    default_message = "Parent task not found"


class CardNotFoundError(TaskNotFoundError):
    """Raised when the owning card does not exist."""

    code = "CARD_NOT_FOUND"
    default_message = "Card not found"


class TaskValidationError(TaskEngineError):
    """Raised when input is malformed (empty title, bad status, ...)."""

    code = "VALIDATION_ERROR"
    default_message = "Invalid task data"


class CircularReferenceError(TaskEngineError):
    """Raised when a move would make a task its own ancestor."""

    code = "CIRCULAR_REFERENCE"
    default_message = "Cannot create circular parent relationship"


class AlreadyCompletedError(TaskEngineError):
    """Raised when completing a task that is already completed."""

    code = "ALREADY_COMPLETED"
    default_message = "Task is already completed"


class InternalError(TaskEngineError):
    """Raised when storage or a collaborator fails underneath the engine."""

    code = "INTERNAL_ERROR"
    default_message = "Internal task engine error"


class InvariantViolationError(InternalError):
    """Raised when a post-condition check fails; the transaction is aborted."""

    code = "INVARIANT_VIOLATION"
    default_message = "Task tree invariant violated"
