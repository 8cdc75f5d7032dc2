"""
Core Crew Ops Components
========================

Main exports for the FDP calculator and the flight swap workflow.
"""

from core.parameters import (
    FTLFramework,
    SwapPolicy,
    CrewOpsConfig,
)

from core.exceptions import (
    CrewOpsError,
    EntityNotFoundError,
    RoleMismatchError,
    SwapStateError,
    SwapPermissionError,
    TransactionAbortError,
    TransactionConflictError,
)

from core.duty_calculator import (
    DutyPeriodCalculator,
    calculate_max_duty_period,
    format_minutes,
    report_time_from_utc,
)

from core.datastore import InMemoryCrewStore, Transaction
from core.roles import ROLE_FIELDS, RoleAssignment, find_user_role_on_flight
from core.audit import AuditLogger
from core.swap_validator import (
    check_availability,
    check_crew_availability,
    check_role_match,
    validate_swap,
)
from core.swap_service import FlightSwapService

__all__ = [
    # Parameters
    'FTLFramework',
    'SwapPolicy',
    'CrewOpsConfig',
    # Errors
    'CrewOpsError',
    'EntityNotFoundError',
    'RoleMismatchError',
    'SwapStateError',
    'SwapPermissionError',
    'TransactionAbortError',
    'TransactionConflictError',
    # Duty period
    'DutyPeriodCalculator',
    'calculate_max_duty_period',
    'format_minutes',
    'report_time_from_utc',
    # Datastore
    'InMemoryCrewStore',
    'Transaction',
    # Swaps
    'ROLE_FIELDS',
    'RoleAssignment',
    'find_user_role_on_flight',
    'AuditLogger',
    'check_availability',
    'check_crew_availability',
    'check_role_match',
    'validate_swap',
    'FlightSwapService',
]
