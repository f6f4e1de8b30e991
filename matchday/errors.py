from typing import Optional


class EngineError(Exception):
    """Base class for everything the engine raises."""


class ValidationError(EngineError):
    """Participant/team not found, malformed identifiers or values."""


class AuthorizationError(EngineError):
    """Actor lacks the required relationship to the owner/organiser set."""


class StateError(EngineError):
    """Mutation attempted on a match or tournament in a terminal state."""


class TransitionError(StateError):
    def __init__(self, from_state: str, to_state: str, reason: str = None):
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason or f"Cannot transition from {from_state} to {to_state}"
        super().__init__(self.reason)


class SnapshotDecodeError(EngineError):
    """A persisted or remote snapshot could not be decoded."""


class RemoteSyncError(EngineError):
    """A push to, or pull from, the backing store failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class SyncWarning(EngineError):
    """
    A remote push failed after the local mutation committed.

    Never raised to callers of the coordinators; handed to warning
    listeners and, when the outbox dispatches inline, attached to the
    ActionResult.
    """

    def __init__(self, operation: str, object_id: str, cause: BaseException = None):
        self.operation = operation
        self.object_id = object_id
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Saved locally, but backend sync failed ({operation}){detail}")

    @property
    def message(self) -> str:
        return str(self)
