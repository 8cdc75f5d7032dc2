"""
Flight Swap Workflow
====================

Lifecycle of a crew flight swap:

    post_swap      -> posted
    request_swap   -> pending_approval   (second crew member claims it)
    approve_swap   -> approved           (admin, atomic crew reassignment)
    reject_swap    -> rejected           (admin, notes required)
    cancel_swap    -> cancelled          (initiator, while open)

Approval is the only operation that touches flights and activities. It
runs as one datastore transaction: both flights, the swap and up to two
activity records are written together or not at all. Audit events are
recorded after the mutation has committed.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import logging

import pytz

from models.data_models import (
    Flight, FlightSwap, SwapStatus, SwapValidationResult, UserActivity, UserIdentity,
)
from core.audit import (
    AuditLogger, FLIGHT_SWAP_ENTITY, POST_FLIGHT_SWAP, REQUEST_FLIGHT_SWAP,
    CANCEL_FLIGHT_SWAP, APPROVE_FLIGHT_SWAP, REJECT_FLIGHT_SWAP,
)
from core.datastore import ACTIVITIES, FLIGHTS, SWAPS, Transaction, new_document_id
from core.exceptions import (
    EntityNotFoundError, SwapPermissionError, SwapStateError, TransactionAbortError,
)
from core.parameters import CrewOpsConfig
from core.roles import build_crew_swap_update, is_on_crew
from core.swap_validator import resolve_roles, validate_swap

logger = logging.getLogger(__name__)


def start_of_day(moment: datetime, timezone_name: str) -> datetime:
    """Local midnight of the day containing moment, as an aware datetime"""
    tz = pytz.timezone(timezone_name)
    local = moment.astimezone(tz)
    return tz.localize(datetime(local.year, local.month, local.day))


def activity_update_for_flight(flight: Flight, timezone_name: str) -> Dict[str, Any]:
    """Fields that re-point a denormalized flight activity at flight"""
    return {
        'flight_id': flight.flight_id,
        'flight_number': flight.flight_number,
        'departure_airport': flight.departure_airport,
        'arrival_airport': flight.arrival_airport,
        'date': start_of_day(flight.scheduled_departure_utc, timezone_name),
        'start_utc': flight.scheduled_departure_utc,
        'end_utc': flight.scheduled_arrival_utc,
        'comments': (
            f"Flight {flight.flight_number} from "
            f"{flight.departure_airport} to {flight.arrival_airport}"
        ),
    }


class FlightSwapService:
    """Swap board operations over an injected datastore"""

    def __init__(self, store, config: CrewOpsConfig = None,
                 audit: AuditLogger = None,
                 clock: Callable[[], datetime] = None):
        self.store = store
        self.config = config or CrewOpsConfig.default_config()
        self.audit = audit or AuditLogger(store, clock=clock)
        self._clock = clock or (lambda: datetime.now(pytz.utc))

    @property
    def _max_attempts(self) -> int:
        return self.config.swap_policy.transaction_max_attempts

    async def _require_flight(self, flight_id: str) -> Flight:
        flight = await self.store.get(FLIGHTS, flight_id)
        if flight is None:
            raise EntityNotFoundError("flight", flight_id)
        return flight

    @staticmethod
    async def _require_swap(tx: Transaction, swap_id: str) -> FlightSwap:
        swap = await tx.get(SWAPS, swap_id)
        if swap is None:
            raise EntityNotFoundError("swap", swap_id, "Swap request not found.")
        return swap

    # ------------------------------------------------------------------
    # Crew actions
    # ------------------------------------------------------------------

    async def post_swap(self, flight_id: str, user: UserIdentity) -> FlightSwap:
        """Offer one of the user's flights on the swap board"""
        flight = await self._require_flight(flight_id)
        if not is_on_crew(flight, user.user_id):
            raise SwapPermissionError(f"You are not assigned to flight {flight.flight_number}.")

        swap = FlightSwap(
            swap_id=new_document_id(),
            initiating_user_id=user.user_id,
            initiating_user_email=user.email,
            initiating_flight_id=flight.flight_id,
            flight_info=flight.summary(),
            created_at=self._clock(),
        )
        existing = await self.store.add_unless_exists(
            SWAPS, swap,
            lambda s: s.initiating_flight_id == flight_id and s.status.is_open,
        )
        if existing is not None:
            raise SwapStateError(f"Flight {flight.flight_number} is already posted for swap.")
        logger.info(f"Swap {swap.swap_id} posted for flight {flight.flight_number} by {user.user_id}")

        await self.audit.log_event(
            user.user_id, POST_FLIGHT_SWAP, FLIGHT_SWAP_ENTITY, swap.swap_id,
            user_email=user.email,
            details=f"Posted flight {flight.flight_number} for swap",
        )
        return swap

    async def request_swap(self, swap_id: str, requesting_flight_id: str,
                           user: UserIdentity) -> FlightSwap:
        """Claim a posted swap, offering one of the user's flights in exchange"""
        requesting_flight = await self._require_flight(requesting_flight_id)
        if not is_on_crew(requesting_flight, user.user_id):
            raise SwapPermissionError(
                f"You are not assigned to flight {requesting_flight.flight_number}."
            )

        async def claim(tx: Transaction) -> FlightSwap:
            swap = await self._require_swap(tx, swap_id)
            if swap.status != SwapStatus.POSTED:
                raise SwapStateError("This swap is no longer available.")
            if swap.initiating_user_id == user.user_id:
                raise SwapPermissionError("You cannot request your own swap.")
            if swap.initiating_flight_id == requesting_flight_id:
                raise SwapStateError("A flight cannot be swapped with itself.")

            fields = {
                'status': SwapStatus.PENDING_APPROVAL,
                'requesting_user_id': user.user_id,
                'requesting_user_email': user.email,
                'requesting_flight_id': requesting_flight.flight_id,
                'requesting_flight_info': requesting_flight.summary(),
                'updated_at': self._clock(),
            }
            tx.update(SWAPS, swap_id, fields)
            for name, value in fields.items():
                setattr(swap, name, value)
            return swap

        swap = await self.store.run_transaction(claim, max_attempts=self._max_attempts)
        logger.info(f"Swap {swap_id} claimed by {user.user_id} with flight {requesting_flight.flight_number}")

        await self.audit.log_event(
            user.user_id, REQUEST_FLIGHT_SWAP, FLIGHT_SWAP_ENTITY, swap_id,
            user_email=user.email,
            details=f"Requested to swap flight {requesting_flight.flight_number}",
        )
        return swap

    async def cancel_swap(self, swap_id: str, user_id: str) -> None:
        """Withdraw an open swap; the record is kept"""

        async def cancel(tx: Transaction) -> None:
            swap = await self._require_swap(tx, swap_id)
            if swap.initiating_user_id != user_id:
                raise SwapPermissionError("You can only cancel swaps that you initiated.")
            if not swap.status.is_open:
                raise SwapStateError(f"Cannot cancel a swap that is {swap.status.value}.")
            tx.update(SWAPS, swap_id, {
                'status': SwapStatus.CANCELLED,
                'updated_at': self._clock(),
            })

        await self.store.run_transaction(cancel, max_attempts=self._max_attempts)
        logger.info(f"Swap {swap_id} cancelled by {user_id}")
        await self.audit.log_event(user_id, CANCEL_FLIGHT_SWAP, FLIGHT_SWAP_ENTITY, swap_id)

    # ------------------------------------------------------------------
    # Admin actions
    # ------------------------------------------------------------------

    async def validate_swap(self, swap_id: str) -> SwapValidationResult:
        return await validate_swap(self.store, swap_id)

    async def approve_swap(self, swap_id: str, admin_id: str,
                           admin_email: Optional[str] = None) -> None:
        """
        Exchange the two crew members' seats and calendar entries.

        Raises EntityNotFoundError, SwapStateError, RoleMismatchError or
        TransactionAbortError; on any of them nothing has been written.
        """
        timezone_name = self.config.swap_policy.home_base_timezone

        async def approve(tx: Transaction) -> None:
            swap = await self._require_swap(tx, swap_id)
            if swap.status != SwapStatus.PENDING_APPROVAL:
                raise SwapStateError("This swap is not pending approval.")
            if not swap.is_complete:
                raise SwapStateError("Swap request is incomplete.")

            flight1: Optional[Flight] = await tx.get(FLIGHTS, swap.initiating_flight_id)
            flight2: Optional[Flight] = await tx.get(FLIGHTS, swap.requesting_flight_id)
            if flight1 is None or flight2 is None:
                missing = swap.initiating_flight_id if flight1 is None else swap.requesting_flight_id
                raise EntityNotFoundError(
                    "flight", missing,
                    "One or both flights involved in the swap could not be found.",
                )

            user1 = swap.initiating_user_id
            user2 = swap.requesting_user_id
            assignment1 = resolve_roles(flight1, user1, flight2, user2)
            assignment2 = resolve_roles(flight2, user2, flight1, user1)

            activity1_id = await self._existing_activity_id(tx, flight1, user1)
            activity2_id = await self._existing_activity_id(tx, flight2, user2)

            tx.update(FLIGHTS, flight1.flight_id, build_crew_swap_update(
                flight1, assignment1, outgoing=user1, incoming=user2,
                incoming_activity_id=activity2_id,
            ))
            tx.update(FLIGHTS, flight2.flight_id, build_crew_swap_update(
                flight2, assignment2, outgoing=user2, incoming=user1,
                incoming_activity_id=activity1_id,
            ))

            if activity1_id:
                tx.update(ACTIVITIES, activity1_id, activity_update_for_flight(flight2, timezone_name))
            if activity2_id:
                tx.update(ACTIVITIES, activity2_id, activity_update_for_flight(flight1, timezone_name))

            tx.update(SWAPS, swap_id, {
                'status': SwapStatus.APPROVED,
                'resolved_by': admin_id,
                'updated_at': self._clock(),
            })

        try:
            await self.store.run_transaction(approve, max_attempts=self._max_attempts)
        except TransactionAbortError as exc:
            logger.error(f"Error approving flight swap {swap_id}: {exc}")
            raise

        logger.info(f"Swap {swap_id} approved by {admin_id}")
        await self.audit.log_event(
            admin_id, APPROVE_FLIGHT_SWAP, FLIGHT_SWAP_ENTITY, swap_id, user_email=admin_email,
        )

    @staticmethod
    async def _existing_activity_id(tx: Transaction, flight: Flight, user_id: str) -> Optional[str]:
        """Activity id indexed on the flight, if its document still exists"""
        activity_id = flight.activity_ids.get(user_id)
        if not activity_id:
            return None
        activity: Optional[UserActivity] = await tx.get(ACTIVITIES, activity_id)
        if activity is None:
            logger.warning(
                f"Flight {flight.flight_number}: activity {activity_id} for {user_id} is missing"
            )
            return None
        return activity_id

    async def reject_swap(self, swap_id: str, admin_id: str,
                          admin_email: Optional[str], notes: str) -> None:
        if not notes or not notes.strip():
            raise ValueError("Rejection notes are required.")

        async def reject(tx: Transaction) -> None:
            swap = await self._require_swap(tx, swap_id)
            if swap.status != SwapStatus.PENDING_APPROVAL:
                raise SwapStateError("This swap is not pending approval.")
            tx.update(SWAPS, swap_id, {
                'status': SwapStatus.REJECTED,
                'resolved_by': admin_id,
                'admin_notes': notes,
                'updated_at': self._clock(),
            })

        await self.store.run_transaction(reject, max_attempts=self._max_attempts)
        logger.info(f"Swap {swap_id} rejected by {admin_id}")
        await self.audit.log_event(
            admin_id, REJECT_FLIGHT_SWAP, FLIGHT_SWAP_ENTITY, swap_id,
            user_email=admin_email, details={'notes': notes},
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_user_swaps(self, user_id: str) -> List[FlightSwap]:
        """Swaps the user initiated or requested, newest first"""
        if not user_id:
            return []
        swaps = await self.store.list_documents(SWAPS, lambda s: s.involves(user_id))
        swaps.sort(key=lambda s: s.created_at, reverse=True)
        return swaps

    async def list_swaps(self, status: Optional[SwapStatus] = None) -> List[FlightSwap]:
        swaps = await self.store.list_documents(
            SWAPS, None if status is None else (lambda s: s.status == status)
        )
        swaps.sort(key=lambda s: s.created_at, reverse=True)
        return swaps
