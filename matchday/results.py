from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .errors import AuthorizationError, StateError, SyncWarning, ValidationError
from .models import RSVPStatus

PERMISSION_DENIED_MESSAGE = "You don't have permission to do that."


class Rejection(str, Enum):
    NOT_SIGNED_IN = "not_signed_in"
    PERMISSION_DENIED = "permission_denied"
    MATCH_LOCKED = "match_locked"
    NOT_FOUND = "not_found"
    DUPLICATE = "duplicate"
    INVALID_INPUT = "invalid_input"
    TOURNAMENT_FULL = "tournament_full"


_REJECTION_ERRORS = {
    Rejection.NOT_SIGNED_IN: AuthorizationError,
    Rejection.PERMISSION_DENIED: AuthorizationError,
    Rejection.MATCH_LOCKED: StateError,
    Rejection.NOT_FOUND: ValidationError,
    Rejection.DUPLICATE: ValidationError,
    Rejection.INVALID_INPUT: ValidationError,
    Rejection.TOURNAMENT_FULL: ValidationError,
}


@dataclass
class ActionResult:
    """
    Outcome of one coordinator operation.

    Business-rule rejections are reported here rather than raised, so the
    caller can show `message` directly. `warnings` carries any sync failure
    that happened after the local commit.
    """

    ok: bool
    message: Optional[str] = None
    rejection: Optional[Rejection] = None
    effective_status: Optional[RSVPStatus] = None
    promoted_participant_id: Optional[str] = None
    rating_preview: Optional[int] = None
    warnings: List[SyncWarning] = field(default_factory=list)

    @classmethod
    def success(cls, message: str = None, **kwargs) -> "ActionResult":
        return cls(ok=True, message=message, **kwargs)

    @classmethod
    def rejected(cls, rejection: Rejection, message: str) -> "ActionResult":
        return cls(ok=False, message=message, rejection=rejection)

    @classmethod
    def permission_denied(cls) -> "ActionResult":
        return cls.rejected(Rejection.PERMISSION_DENIED, PERMISSION_DENIED_MESSAGE)

    def raise_for_rejection(self):
        """Raise the matching taxonomy error if this result is a rejection."""
        if self.ok:
            return
        error_class = _REJECTION_ERRORS.get(self.rejection, ValidationError)
        raise error_class(self.message)

    def to_dict(self) -> dict:
        return {
            'ok': self.ok,
            'message': self.message,
            'rejection': self.rejection.value if self.rejection else None,
            'effective_status': self.effective_status.value if self.effective_status else None,
            'promoted_participant_id': self.promoted_participant_id,
            'rating_preview': self.rating_preview,
            'warnings': [w.message for w in self.warnings],
        }
