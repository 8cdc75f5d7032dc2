"""
Crew Role Resolution
====================

A single role -> field table drives every lookup and crew replacement, so
role resolution stays a pure function of the flight document.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Any

from models.data_models import CrewRole, Flight


# Checked in order; the first field holding the user wins.
ROLE_FIELDS: Tuple[Tuple[CrewRole, str], ...] = (
    (CrewRole.PURSER, 'purser_id'),
    (CrewRole.PILOT, 'pilot_ids'),
    (CrewRole.CABIN_CREW, 'cabin_crew_ids'),
    (CrewRole.INSTRUCTOR, 'instructor_ids'),
    (CrewRole.TRAINEE, 'trainee_ids'),
)

SCALAR_ROLE_FIELDS = frozenset({'purser_id'})


@dataclass(frozen=True)
class RoleAssignment:
    role: CrewRole
    field: str

    @property
    def is_scalar(self) -> bool:
        return self.field in SCALAR_ROLE_FIELDS


def find_user_role_on_flight(flight: Flight, user_id: str) -> Optional[RoleAssignment]:
    """Role the user currently holds on the flight, or None"""
    for role, field_name in ROLE_FIELDS:
        value = getattr(flight, field_name)
        if field_name in SCALAR_ROLE_FIELDS:
            if value == user_id:
                return RoleAssignment(role, field_name)
        elif value and user_id in value:
            return RoleAssignment(role, field_name)
    return None


def is_on_crew(flight: Flight, user_id: str) -> bool:
    return user_id in flight.all_crew_ids or find_user_role_on_flight(flight, user_id) is not None


def replace_crew_member(crew_ids: List[str], outgoing: str, incoming: str) -> List[str]:
    """Drop outgoing, append incoming (never duplicated)"""
    updated = [cid for cid in crew_ids if cid != outgoing and cid != incoming]
    updated.append(incoming)
    return updated


def build_crew_swap_update(flight: Flight, assignment: RoleAssignment,
                           outgoing: str, incoming: str,
                           incoming_activity_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Field updates that hand the outgoing user's seat to the incoming user.

    Covers the role field, the aggregate crew list and the activity index.
    """
    update: Dict[str, Any] = {
        'all_crew_ids': replace_crew_member(flight.all_crew_ids, outgoing, incoming),
    }
    if assignment.is_scalar:
        update[assignment.field] = incoming
    else:
        update[assignment.field] = replace_crew_member(
            getattr(flight, assignment.field), outgoing, incoming
        )

    activity_ids = {uid: aid for uid, aid in flight.activity_ids.items() if uid != outgoing}
    if incoming_activity_id:
        activity_ids[incoming] = incoming_activity_id
    update['activity_ids'] = activity_ids
    return update
