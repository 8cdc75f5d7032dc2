"""
data_models.py - Core Data Structures
======================================

Data models for duty-period calculation, flights, crew activities and
flight swaps.
"""

from dataclasses import dataclass, field
from datetime import datetime, time
from typing import List, Optional, Dict, Any
from enum import Enum


# ============================================================================
# ENUMS
# ============================================================================

class CrewRole(Enum):
    """Operational role a crew member holds on a flight"""
    PURSER = "purser"
    PILOT = "pilot"
    CABIN_CREW = "cabin crew"
    INSTRUCTOR = "instructor"
    TRAINEE = "trainee"


class ActivityType(Enum):
    """Calendar entry types in a crew member's schedule"""
    FLIGHT = "flight"
    LEAVE = "leave"
    TRAINING = "training"
    STANDBY = "standby"
    DAY_OFF = "day-off"


class SwapStatus(Enum):
    """
    Flight swap lifecycle

    posted -> pending_approval -> approved | rejected
    posted | pending_approval -> cancelled (initiator only)
    """
    POSTED = "posted"                        # Offered on the swap board
    PENDING_APPROVAL = "pending_approval"    # Claimed, awaiting admin
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"

    @property
    def is_open(self) -> bool:
        return self in (SwapStatus.POSTED, SwapStatus.PENDING_APPROVAL)


class AdjustmentKind(Enum):
    """FDP rule that produced an adjustment"""
    BASE = "base"
    WOCL = "wocl"
    SECTORS = "sectors"
    ACCLIMATIZATION = "acclimatization"


# ============================================================================
# DUTY PERIOD CALCULATION
# ============================================================================

@dataclass
class DutyCalculationInput:
    """Minimal duty description, pre-validated at the form/API boundary"""
    report_time: time                         # Local time-of-day
    sector_count: int                         # Number of flight legs (>= 1)
    acclimatized: bool = True
    proposed_end_time: Optional[time] = None  # Optional planned FDP end (local)


@dataclass
class DutyAdjustment:
    """One line of the FDP breakdown"""
    label: str
    delta_minutes: int
    rationale: str
    kind: AdjustmentKind

    def to_dict(self) -> Dict[str, Any]:
        return {
            'label': self.label,
            'delta_minutes': self.delta_minutes,
            'rationale': self.rationale,
            'kind': self.kind.value,
        }


@dataclass
class FeasibilityCheck:
    """Planned FDP compared against the computed maximum"""
    planned_fdp_minutes: int
    is_feasible: bool
    difference_minutes: int   # Absolute margin (spare or excess)


@dataclass
class DutyCalculationResult:
    """Maximum FDP with an auditable breakdown"""
    max_fdp_minutes: int
    min_rest_description: str
    breakdown: List[DutyAdjustment]
    raw_fdp_minutes: int
    floor_applied: bool
    latest_end_time: time
    end_day_offset: int = 0
    feasibility: Optional[FeasibilityCheck] = None

    @property
    def max_fdp_hours(self) -> float:
        return self.max_fdp_minutes / 60


# ============================================================================
# FLIGHTS, ACTIVITIES & USERS
# ============================================================================

@dataclass
class Flight:
    """Scheduled flight with per-role crew assignment"""
    flight_id: str
    flight_number: str
    departure_airport: str     # ICAO
    arrival_airport: str       # ICAO
    scheduled_departure_utc: datetime
    scheduled_arrival_utc: datetime
    aircraft_type: str = ""

    # Crew assignment
    purser_id: Optional[str] = None
    pilot_ids: List[str] = field(default_factory=list)
    cabin_crew_ids: List[str] = field(default_factory=list)
    instructor_ids: List[str] = field(default_factory=list)
    trainee_ids: List[str] = field(default_factory=list)
    all_crew_ids: List[str] = field(default_factory=list)

    # Denormalized calendar entries: user_id -> activity_id
    activity_ids: Dict[str, str] = field(default_factory=dict)

    @property
    def route(self) -> str:
        return f"{self.departure_airport} → {self.arrival_airport}"

    def summary(self) -> Dict[str, Any]:
        """Denormalized info stored on swap posts for display"""
        return {
            'flight_number': self.flight_number,
            'departure_airport': self.departure_airport,
            'arrival_airport': self.arrival_airport,
            'scheduled_departure_utc': self.scheduled_departure_utc.isoformat(),
        }


@dataclass
class UserActivity:
    """Calendar entry for a crew member"""
    activity_id: str
    user_id: str
    activity_type: ActivityType
    date: datetime                 # Start of the activity day
    start_utc: datetime
    end_utc: datetime
    comments: Optional[str] = None

    # Flight activities only
    flight_id: Optional[str] = None
    flight_number: Optional[str] = None
    departure_airport: Optional[str] = None
    arrival_airport: Optional[str] = None

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Closed-interval overlap with [start, end]"""
        return self.start_utc <= end and self.end_utc >= start


@dataclass
class UserIdentity:
    """Display identity used in messages"""
    user_id: str
    display_name: str
    email: Optional[str] = None

    @property
    def label(self) -> str:
        if self.email:
            return f"{self.display_name} ({self.email})"
        return self.display_name


# ============================================================================
# FLIGHT SWAPS
# ============================================================================

@dataclass
class FlightSwap:
    """Swap proposal between two crew members"""
    swap_id: str
    initiating_user_id: str
    initiating_flight_id: str
    flight_info: Dict[str, Any]
    created_at: datetime
    status: SwapStatus = SwapStatus.POSTED
    initiating_user_email: Optional[str] = None

    # Filled when a second crew member claims the swap
    requesting_user_id: Optional[str] = None
    requesting_user_email: Optional[str] = None
    requesting_flight_id: Optional[str] = None
    requesting_flight_info: Optional[Dict[str, Any]] = None

    updated_at: Optional[datetime] = None
    resolved_by: Optional[str] = None   # Admin user id
    admin_notes: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.requesting_user_id and self.requesting_flight_id)

    def involves(self, user_id: str) -> bool:
        return user_id in (self.initiating_user_id, self.requesting_user_id)


@dataclass
class ScheduleConflictWarning:
    """
    Non-fatal availability conflict surfaced to the admin.

    Returned as data; the admin may approve the swap anyway.
    """
    user_id: str
    activity_id: str
    activity_type: ActivityType
    details: str
    start_utc: datetime
    end_utc: datetime
    user_label: Optional[str] = None

    @property
    def message(self) -> str:
        who = self.user_label or self.user_id
        return f"{who} has a conflicting {self.activity_type.value}: {self.details}"


@dataclass
class SwapValidationResult:
    """Outcome of a pre-approval swap check"""
    role: CrewRole
    warnings: List[ScheduleConflictWarning] = field(default_factory=list)

    @property
    def conflict_message(self) -> Optional[str]:
        if not self.warnings:
            return None
        return " ".join(w.message for w in self.warnings)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.warnings)


@dataclass
class AuditEvent:
    """Persisted record of an administrative or crew action"""
    event_id: str
    user_id: str
    action_type: str
    entity_type: str
    entity_id: str
    timestamp: datetime
    user_email: Optional[str] = None
    details: Optional[Any] = None
