"""
shared/utils/capacity.py
Seat capacity check shared by every path that adds a participant
(session bookings, booking confirmation, event registration).
"""

from shared.utils.errors import InvalidInputError, InvalidStateError


def ensure_capacity(claimed: int, requested: int, capacity: int, label: str = "session") -> int:
    """
    Raise unless `requested` more seats fit next to the `claimed` ones.
    Returns the number of seats left after the claim.
    """
    if requested < 1:
        raise InvalidInputError("At least one seat must be requested")
    remaining = capacity - claimed
    if requested > remaining:
        if remaining <= 0:
            raise InvalidStateError(f"This {label} is full")
        raise InvalidStateError(
            f"Only {remaining} spot(s) left for this {label}, {requested} requested"
        )
    return remaining - requested
