"""
Admission control for one match roster.

`update_rsvp` is the whole transaction: status change, capacity check and
waitlist promotion happen in a single call on a single list. Callers that
share a roster between threads must hold the match lock around it.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from .models import Participant, RSVPStatus, utcnow

MATCH_FULL_MESSAGE = "Match is full. You were added to the waitlist."
PARTICIPANT_NOT_FOUND_MESSAGE = "Participant not found."


@dataclass
class RSVPUpdateResult:
    effective_status: RSVPStatus
    message: Optional[str] = None
    promoted_participant_id: Optional[str] = None
    found: bool = True


def going_count(participants: List[Participant], excluding_index: int = None) -> int:
    return sum(
        1 for i, p in enumerate(participants)
        if p.rsvp_status == RSVPStatus.GOING and i != excluding_index
    )


def _waitlist_key(indexed):
    index, participant = indexed
    queued_at = participant.waitlisted_at or participant.invited_at
    return (queued_at, participant.invited_at, index)


def ordered_waitlist(participants: List[Participant]) -> List[Participant]:
    """Waitlisted participants, earliest queued first."""
    waiting = [
        (i, p) for i, p in enumerate(participants)
        if p.rsvp_status == RSVPStatus.WAITLISTED
    ]
    return [p for _, p in sorted(waiting, key=_waitlist_key)]


def next_in_waitlist(participants: List[Participant]) -> Optional[Participant]:
    waiting = ordered_waitlist(participants)
    return waiting[0] if waiting else None


def update_rsvp(
    participants: List[Participant],
    user_id: str,
    desired_status: RSVPStatus,
    max_players: int,
    now: datetime = None
) -> RSVPUpdateResult:
    """
    Apply one RSVP change to `participants` in place.

    Args:
        participants: The match roster, mutated in place
        user_id: Participant whose status changes
        desired_status: Requested status
        max_players: Admission capacity for `going`
        now: Timestamp used for new waitlist entries

    Returns:
        RSVPUpdateResult with the participant's resulting status, the
        capacity message (if any) and the id of anyone promoted off the
        waitlist. A missing participant yields found=False and no mutation.
    """
    now = now or utcnow()

    index = next((i for i, p in enumerate(participants) if p.id == user_id), None)
    if index is None:
        return RSVPUpdateResult(
            effective_status=desired_status,
            message=PARTICIPANT_NOT_FOUND_MESSAGE,
            found=False
        )

    participant = participants[index]
    previous_status = participant.rsvp_status
    message = None

    if desired_status == RSVPStatus.GOING:
        if going_count(participants, excluding_index=index) >= max_players:
            participant.rsvp_status = RSVPStatus.WAITLISTED
            participant.waitlisted_at = participant.waitlisted_at or now
            message = MATCH_FULL_MESSAGE
        else:
            participant.rsvp_status = RSVPStatus.GOING
            participant.waitlisted_at = None
    else:
        participant.rsvp_status = desired_status
        if desired_status == RSVPStatus.WAITLISTED:
            participant.waitlisted_at = participant.waitlisted_at or now
        else:
            participant.waitlisted_at = None

    promoted_id = None
    became_declined = (
        previous_status != RSVPStatus.DECLINED
        and participant.rsvp_status == RSVPStatus.DECLINED
    )
    if became_declined and going_count(participants) < max_players:
        promoted = next_in_waitlist(participants)
        if promoted is not None:
            promoted.rsvp_status = RSVPStatus.GOING
            promoted.waitlisted_at = None
            promoted_id = promoted.id

    return RSVPUpdateResult(
        effective_status=participant.rsvp_status,
        message=message,
        promoted_participant_id=promoted_id
    )
