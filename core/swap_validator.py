"""
Swap Conflict Validation
========================

Pre-approval checks for a flight swap:
1. Role match - both crew members must hold the same role. A mismatch is
   terminal and is raised before any calendar lookup.
2. Availability - each crew member's calendar is checked against the
   flight they would take over, ignoring the flight they give up.
   Conflicts are advisory and returned as data.
"""

from datetime import datetime
from typing import Dict, Iterable, Optional
import logging

from models.data_models import (
    CrewRole, Flight, FlightSwap, ScheduleConflictWarning,
    SwapStatus, SwapValidationResult, UserActivity, UserIdentity,
)
from core.datastore import FLIGHTS, SWAPS, USERS
from core.exceptions import EntityNotFoundError, RoleMismatchError, SwapStateError
from core.roles import RoleAssignment, find_user_role_on_flight

logger = logging.getLogger(__name__)


def resolve_roles(flight_a: Flight, user_a: str,
                  flight_b: Flight, user_b: str) -> RoleAssignment:
    """Matched role assignment of user_a on flight_a (same role as user_b on flight_b)"""
    assignment_a = find_user_role_on_flight(flight_a, user_a)
    assignment_b = find_user_role_on_flight(flight_b, user_b)
    if assignment_a is None or assignment_b is None:
        raise RoleMismatchError("Could not determine user role on one of the flights.")
    if assignment_a.role != assignment_b.role:
        raise RoleMismatchError(
            f"Role mismatch: Cannot swap a {assignment_a.role.value} "
            f"with a {assignment_b.role.value}.",
            role_a=assignment_a.role,
            role_b=assignment_b.role,
        )
    return assignment_a


def check_role_match(flight_a: Flight, user_a: str, flight_b: Flight, user_b: str) -> CrewRole:
    return resolve_roles(flight_a, user_a, flight_b, user_b).role


def describe_activity(activity: UserActivity) -> str:
    if activity.comments:
        return activity.comments
    return f"Scheduled for {activity.activity_type.value} on {activity.date.strftime('%d %b %Y')}"


def _to_warning(activity: UserActivity, user_label: Optional[str] = None) -> ScheduleConflictWarning:
    return ScheduleConflictWarning(
        user_id=activity.user_id,
        activity_id=activity.activity_id,
        activity_type=activity.activity_type,
        details=describe_activity(activity),
        start_utc=activity.start_utc,
        end_utc=activity.end_utc,
        user_label=user_label,
    )


async def check_availability(store, user_id: str, window_start: datetime, window_end: datetime,
                             exclude_flight_id: Optional[str] = None,
                             user_label: Optional[str] = None) -> Optional[ScheduleConflictWarning]:
    """First activity overlapping the window, skipping the vacated flight"""
    activities = await store.query_activities(
        user_id, window_start, window_end, exclude_flight_id=exclude_flight_id
    )
    for activity in activities:
        # Not every store filters on exclude_flight_id
        if exclude_flight_id is not None and activity.flight_id == exclude_flight_id:
            continue
        return _to_warning(activity, user_label)
    return None


async def check_crew_availability(store, user_ids: Iterable[str],
                                  window_start: datetime,
                                  window_end: datetime) -> Dict[str, ScheduleConflictWarning]:
    """
    First conflict per user for a list of crew members.

    A failed lookup for one user is logged and that user is skipped.
    """
    warnings: Dict[str, ScheduleConflictWarning] = {}
    for user_id in user_ids:
        if user_id in warnings:
            continue
        try:
            warning = await check_availability(store, user_id, window_start, window_end)
        except Exception as exc:
            logger.warning(f"Availability check failed for user {user_id}: {exc}")
            continue
        if warning is not None:
            warnings[user_id] = warning
    return warnings


async def _require(store, collection: str, entity_type: str, doc_id: Optional[str]):
    doc = await store.get(collection, doc_id) if doc_id else None
    if doc is None:
        raise EntityNotFoundError(entity_type, doc_id or "<missing>")
    return doc


async def validate_swap(store, swap_id: str) -> SwapValidationResult:
    """
    Read-only check of a claimed swap.

    Raises EntityNotFoundError, SwapStateError or RoleMismatchError;
    schedule conflicts are reported on the result.
    """
    swap: FlightSwap = await _require(store, SWAPS, "swap", swap_id)
    # Resolved swaps no longer match the crew lists
    if swap.status != SwapStatus.PENDING_APPROVAL:
        raise SwapStateError("This swap is not pending approval.")
    if not swap.is_complete:
        raise SwapStateError("Swap request is incomplete.")

    initiating_flight: Flight = await _require(store, FLIGHTS, "flight", swap.initiating_flight_id)
    requesting_flight: Flight = await _require(store, FLIGHTS, "flight", swap.requesting_flight_id)
    initiating_user: UserIdentity = await _require(store, USERS, "user", swap.initiating_user_id)
    requesting_user: UserIdentity = await _require(store, USERS, "user", swap.requesting_user_id)

    role = check_role_match(
        initiating_flight, swap.initiating_user_id,
        requesting_flight, swap.requesting_user_id,
    )

    result = SwapValidationResult(role=role)
    checks = (
        (initiating_user, requesting_flight, initiating_flight),
        (requesting_user, initiating_flight, requesting_flight),
    )
    for user, new_flight, vacated_flight in checks:
        warning = await check_availability(
            store, user.user_id,
            new_flight.scheduled_departure_utc, new_flight.scheduled_arrival_utc,
            exclude_flight_id=vacated_flight.flight_id,
            user_label=user.label,
        )
        if warning is not None:
            logger.warning(f"Swap {swap_id}: {warning.message}")
            result.warnings.append(warning)

    return result
