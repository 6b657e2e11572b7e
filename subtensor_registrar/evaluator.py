"""
Price comparison policy.
"""

from enum import Enum

from .models import Ceiling, Price


class Verdict(str, Enum):
    PROCEED = "proceed"
    WAIT = "wait"


def evaluate(observed: Price, ceiling: Ceiling) -> Verdict:
    """Proceed when the observed price is at or below the ceiling."""
    if observed <= ceiling:
        return Verdict.PROCEED
    return Verdict.WAIT
