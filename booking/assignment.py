"""
Assignment engine.

Chooses which member of a booking link receives a booking. Each assignment
method has exactly one ordering rule; the engine walks that order, asks the
caller-supplied evaluator whether each candidate is free, and stops at the
first free one. Rotation state advances only when a candidate is chosen and
is handed back to the caller to persist with the booking.
"""

from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Tuple
from typing import assert_never
import logging

from .domain import (
    AssignmentDecision,
    AssignmentMethod,
    BookingLink,
    CandidateEvaluation,
    Freeness,
    RejectionReason,
    RotationState,
)

logger = logging.getLogger(__name__)

Evaluator = Callable[[str], Awaitable[Freeness]]


def candidate_pool(link: BookingLink) -> List[str]:
    """Every user a booking on ``link`` could be assigned to."""
    if link.assignment_method is AssignmentMethod.SPECIFIC:
        return [link.owner_id]
    return list(link.candidate_ids)


def reservation_lock_keys(link: BookingLink) -> List[str]:
    """
    Lock keys serializing bookings on ``link``.

    The link key orders rotation updates; one key per candidate keeps two
    links sharing a member from double-booking that member.
    """
    keys = {f"link:{link.link_id}"}
    keys.update(f"user:{user_id}" for user_id in candidate_pool(link))
    return sorted(keys)


def _round_robin_order(
    members: List[str], last_assigned_index: int
) -> List[Tuple[int, str]]:
    if not members:
        return []
    count = len(members)
    first = (last_assigned_index + 1) % count
    return [
        ((first + offset) % count, members[(first + offset) % count])
        for offset in range(count)
    ]


def ordered_candidates(
    link: BookingLink, rotation: RotationState
) -> List[Tuple[int, str]]:
    """
    Candidates to try, in order, as (index in link.candidate_ids, user id).

    For a specific link the single entry is the owner with index 0.
    """
    method = link.assignment_method
    if method is AssignmentMethod.SPECIFIC:
        return [(0, link.owner_id)]
    elif method is AssignmentMethod.POOLED:
        return list(enumerate(link.candidate_ids))
    elif method is AssignmentMethod.ROUND_ROBIN:
        return _round_robin_order(
            link.candidate_ids, rotation.last_assigned_index
        )
    elif method is AssignmentMethod.LOAD_BALANCED:
        # sorted() is stable, so equal loads keep round-robin order
        return sorted(
            _round_robin_order(
                link.candidate_ids, rotation.last_assigned_index
            ),
            key=lambda candidate: rotation.load_of(candidate[1]),
        )
    else:
        assert_never(method)


def advance_rotation(
    link: BookingLink,
    rotation: RotationState,
    index: int,
    user_id: str,
    now: datetime,
) -> Optional[RotationState]:
    """Rotation state after assigning ``user_id``; None for specific links."""
    if link.assignment_method is AssignmentMethod.SPECIFIC:
        return None
    loads = dict(rotation.member_loads)
    loads[user_id] = loads.get(user_id, 0) + 1
    return rotation.model_copy(
        update={
            "last_assigned_index": index,
            "member_loads": loads,
            "updated_at": now,
        }
    )


def release_rotation_load(
    rotation: RotationState, user_id: str, now: datetime
) -> RotationState:
    """Rotation state after one of ``user_id``'s bookings is cancelled."""
    loads = dict(rotation.member_loads)
    loads[user_id] = max(loads.get(user_id, 0) - 1, 0)
    return rotation.model_copy(
        update={"member_loads": loads, "updated_at": now}
    )


async def select_assignee(
    link: BookingLink,
    rotation: RotationState,
    evaluate: Evaluator,
    now: datetime,
) -> AssignmentDecision:
    """
    Pick the first free candidate in the link's assignment order.

    Args:
        link: The booking link being booked
        rotation: Current rotation state of the link
        evaluate: Returns the freeness of one candidate for the request
        now: Timestamp recorded on the advanced rotation state

    Returns:
        AssignmentDecision. ``assigned_user_id`` is None when nobody is
        free; ``rotation`` carries the advanced state to persist otherwise.
    """
    method = link.assignment_method
    evaluations: List[CandidateEvaluation] = []

    for index, user_id in ordered_candidates(link, rotation):
        freeness = await evaluate(user_id)
        evaluations.append(
            CandidateEvaluation(user_id=user_id, freeness=freeness)
        )
        if freeness.available:
            logger.info(
                "Assignee selected",
                extra={
                    "link_id": link.link_id,
                    "assignment_method": method.value,
                    "assigned_user_id": user_id,
                    "assigned_index": index,
                    "candidates_evaluated": len(evaluations),
                },
            )
            return AssignmentDecision(
                method=method,
                assigned_user_id=user_id,
                assigned_index=index,
                evaluations=evaluations,
                rotation=advance_rotation(
                    link, rotation, index, user_id, now
                ),
            )

    logger.info(
        "No candidate available",
        extra={
            "link_id": link.link_id,
            "assignment_method": method.value,
            "candidates_evaluated": len(evaluations),
        },
    )
    return AssignmentDecision(method=method, evaluations=evaluations)


def rejection_for(
    decision: AssignmentDecision,
) -> Tuple[RejectionReason, Optional[str]]:
    """
    The reason reported when no one could be assigned.

    A single evaluated candidate reports its own reason; a team reports
    NoAvailability.
    """
    if len(decision.evaluations) == 1:
        freeness = decision.evaluations[0].freeness
        if freeness.reason is not None:
            return freeness.reason, freeness.detail
    return (
        RejectionReason.NO_AVAILABILITY,
        f"None of {len(decision.evaluations)} candidates is available",
    )
