"""
Matchday - Roster & Competition Engine

Responsibilities:
- RSVP / waitlist admission control for a match roster
- Match and tournament lifecycle state machines
- Player stats aggregated from match events
- Elo rating updates after a result
- League standings derived from completed fixtures
- Access predicates for owners, organisers, admins and coaches
"""
