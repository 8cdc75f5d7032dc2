"""
Crew Ops Errors
===============

Terminal failures raised by the swap workflow and the datastore.
Schedule conflicts are not errors; see ScheduleConflictWarning.
"""


class CrewOpsError(Exception):
    """Base class for crew ops failures"""


class EntityNotFoundError(CrewOpsError):
    """A flight, swap, activity or user document does not exist"""

    def __init__(self, entity_type: str, entity_id: str, message: str = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(message or f"{entity_type} '{entity_id}' not found.")


class RoleMismatchError(CrewOpsError):
    """The two crew members cannot be swapped on role grounds"""

    def __init__(self, message: str, role_a=None, role_b=None):
        self.role_a = role_a
        self.role_b = role_b
        super().__init__(message)


class SwapStateError(CrewOpsError):
    """Operation not allowed in the swap's current lifecycle state"""


class SwapPermissionError(CrewOpsError):
    """User is not allowed to act on this swap"""


class TransactionConflictError(CrewOpsError):
    """Documents read in a transaction changed before commit"""


class TransactionAbortError(CrewOpsError):
    """Transaction rolled back; no writes were applied"""
