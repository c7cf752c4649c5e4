"""Exception hierarchy for the snapshot and training pipeline."""

from __future__ import annotations


class SmartInboxError(Exception):
    """Base exception for pipeline errors."""


class SchemaEvolutionError(SmartInboxError):
    """A single genre column could not be added to the snapshot table."""

    def __init__(self, column: str, message: str) -> None:
        super().__init__(f"Could not add column {column}: {message}")
        self.column = column


class SynchronizationError(SmartInboxError):
    """The snapshot synchronization pass failed and was rolled back."""


class SubmissionError(SmartInboxError):
    """The snapshot could not be submitted to the training service."""


class PollTransientError(SmartInboxError):
    """A completion check did not produce results yet."""


class MissingJobHandleError(SmartInboxError):
    """No training job handle has been persisted."""


class RunCancelledError(SmartInboxError):
    """The cancellation signal interrupted a step of the run."""


class PollCancelledError(RunCancelledError):
    """Polling was interrupted by the cancellation signal."""
