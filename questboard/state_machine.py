"""Quest and claim lifecycle state machines.

Quest:  OPEN → COMPLETED | EXPIRED   (both terminal)
Claim:  PENDING → APPROVED | REJECTED   (both terminal)
"""

from questboard.errors import StateInvariantError
from questboard.models import ClaimStatus, QuestStatus

QUEST_TRANSITIONS: dict[str, list[str]] = {
    QuestStatus.OPEN.value: [QuestStatus.COMPLETED.value, QuestStatus.EXPIRED.value],
    QuestStatus.COMPLETED.value: [],  # terminal
    QuestStatus.EXPIRED.value: [],  # terminal
}

CLAIM_TRANSITIONS: dict[str, list[str]] = {
    ClaimStatus.PENDING.value: [ClaimStatus.APPROVED.value, ClaimStatus.REJECTED.value],
    ClaimStatus.APPROVED.value: [],  # terminal
    ClaimStatus.REJECTED.value: [],  # terminal
}


def can_transition_quest(current: str, target: str) -> bool:
    """Same-state is allowed and treated as a no-op by callers."""
    return current == target or target in QUEST_TRANSITIONS.get(current, [])


def validate_quest_transition(current: str, target: str) -> None:
    if not can_transition_quest(current, target):
        raise StateInvariantError("quest", current, target)


def can_transition_claim(current: str, target: str) -> bool:
    return target in CLAIM_TRANSITIONS.get(current, [])


def validate_claim_transition(current: str, target: str) -> None:
    if not can_transition_claim(current, target):
        raise StateInvariantError("claim", current, target)
