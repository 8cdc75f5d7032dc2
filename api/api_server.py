"""
api_server.py - FastAPI Backend for Crew Ops Tools
===================================================

RESTful API exposing the FDP calculator and the flight swap workflow to
form handlers in the crew portal. Request bodies are range-checked here;
the core never sees out-of-range input.

Endpoints:
- POST /api/duty/calculate - Maximum FDP with breakdown
- POST /api/swaps - Post a flight for swap
- POST /api/swaps/{swap_id}/request - Claim a posted swap
- POST /api/swaps/{swap_id}/cancel - Withdraw own swap
- GET  /api/swaps/{swap_id}/validation - Role and availability check
- POST /api/swaps/{swap_id}/approve - Admin approval (atomic)
- POST /api/swaps/{swap_id}/reject - Admin rejection
- GET  /api/swaps - Admin swap board
- GET  /api/users/{user_id}/swaps - A crew member's swaps

Usage:
    uvicorn api.api_server:app --reload --host 0.0.0.0 --port 8000
"""

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime, time
import logging
import os

from core import (
    CrewOpsConfig,
    DutyPeriodCalculator,
    FlightSwapService,
    InMemoryCrewStore,
    format_minutes,
)
from core.exceptions import (
    CrewOpsError,
    EntityNotFoundError,
    RoleMismatchError,
    SwapPermissionError,
    SwapStateError,
    TransactionAbortError,
)
from models.data_models import (
    DutyAdjustment, DutyCalculationInput, DutyCalculationResult,
    FlightSwap, ScheduleConflictWarning, SwapStatus, UserIdentity,
)

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"
TIME_PATTERN = r"^([01]\d|2[0-3]):([0-5]\d)$"

# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class DutyCalculationRequest(BaseModel):
    report_time: str = Field(..., pattern=TIME_PATTERN)  # Local "HH:MM"
    sector_count: int = Field(..., ge=1)   # Upper bound comes from the framework
    acclimatized: bool = True
    proposed_end_time: Optional[str] = Field(None, pattern=TIME_PATTERN)


class DutyAdjustmentResponse(BaseModel):
    label: str
    kind: str
    delta_minutes: int
    display: str   # e.g. "-1h30m"
    rationale: str


class FeasibilityResponse(BaseModel):
    planned_fdp_minutes: int
    planned_fdp: str
    is_feasible: bool
    difference_minutes: int
    difference: str


class DutyCalculationResponse(BaseModel):
    max_fdp_minutes: int
    max_fdp: str
    raw_fdp_minutes: int
    floor_applied: bool
    min_rest_description: str
    latest_end_time: str          # Local "HH:MM"
    end_day_offset: int           # Days rolled over past report day
    breakdown: List[DutyAdjustmentResponse]
    feasibility: Optional[FeasibilityResponse] = None


class UserRef(BaseModel):
    """Acting crew member; identity is resolved by the calling portal"""
    user_id: str = Field(..., min_length=1)
    display_name: str = ""
    email: Optional[str] = None


class PostSwapRequest(BaseModel):
    flight_id: str = Field(..., min_length=1)
    user: UserRef


class RequestSwapRequest(BaseModel):
    requesting_flight_id: str = Field(..., min_length=1)
    user: UserRef


class CancelSwapRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


class AdminActionRequest(BaseModel):
    admin_id: str = Field(..., min_length=1)
    admin_email: Optional[str] = None


class RejectSwapRequest(AdminActionRequest):
    notes: str = Field(..., min_length=1)


class SwapResponse(BaseModel):
    swap_id: str
    status: str
    initiating_user_id: str
    initiating_user_email: Optional[str] = None
    initiating_flight_id: str
    flight_info: Dict[str, Any]
    requesting_user_id: Optional[str] = None
    requesting_user_email: Optional[str] = None
    requesting_flight_id: Optional[str] = None
    requesting_flight_info: Optional[Dict[str, Any]] = None
    created_at: str                       # ISO format
    updated_at: Optional[str] = None
    resolved_by: Optional[str] = None
    admin_notes: Optional[str] = None


class ConflictResponse(BaseModel):
    user_id: str
    activity_id: str
    activity_type: str
    details: str
    start_utc: str
    end_utc: str
    message: str


class SwapValidationResponse(BaseModel):
    swap_id: str
    role: str
    conflict_message: Optional[str] = None
    conflicts: List[ConflictResponse] = []


# ============================================================================
# HELPERS
# ============================================================================

def _parse_time(value: str) -> time:
    hours, minutes = value.split(':')
    return time(int(hours), int(minutes))


def _build_adjustment_response(adjustment: DutyAdjustment) -> DutyAdjustmentResponse:
    return DutyAdjustmentResponse(
        label=adjustment.label,
        kind=adjustment.kind.value,
        delta_minutes=adjustment.delta_minutes,
        display=format_minutes(adjustment.delta_minutes),
        rationale=adjustment.rationale,
    )


def _build_duty_response(result: DutyCalculationResult) -> DutyCalculationResponse:
    feasibility = None
    if result.feasibility is not None:
        f = result.feasibility
        feasibility = FeasibilityResponse(
            planned_fdp_minutes=f.planned_fdp_minutes,
            planned_fdp=format_minutes(f.planned_fdp_minutes),
            is_feasible=f.is_feasible,
            difference_minutes=f.difference_minutes,
            difference=format_minutes(f.difference_minutes),
        )
    return DutyCalculationResponse(
        max_fdp_minutes=result.max_fdp_minutes,
        max_fdp=format_minutes(result.max_fdp_minutes),
        raw_fdp_minutes=result.raw_fdp_minutes,
        floor_applied=result.floor_applied,
        min_rest_description=result.min_rest_description,
        latest_end_time=result.latest_end_time.strftime('%H:%M'),
        end_day_offset=result.end_day_offset,
        breakdown=[_build_adjustment_response(a) for a in result.breakdown],
        feasibility=feasibility,
    )


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _build_swap_response(swap: FlightSwap) -> SwapResponse:
    return SwapResponse(
        swap_id=swap.swap_id,
        status=swap.status.value,
        initiating_user_id=swap.initiating_user_id,
        initiating_user_email=swap.initiating_user_email,
        initiating_flight_id=swap.initiating_flight_id,
        flight_info=swap.flight_info,
        requesting_user_id=swap.requesting_user_id,
        requesting_user_email=swap.requesting_user_email,
        requesting_flight_id=swap.requesting_flight_id,
        requesting_flight_info=swap.requesting_flight_info,
        created_at=swap.created_at.isoformat(),
        updated_at=_iso(swap.updated_at),
        resolved_by=swap.resolved_by,
        admin_notes=swap.admin_notes,
    )


def _build_conflict_response(warning: ScheduleConflictWarning) -> ConflictResponse:
    return ConflictResponse(
        user_id=warning.user_id,
        activity_id=warning.activity_id,
        activity_type=warning.activity_type.value,
        details=warning.details,
        start_utc=warning.start_utc.isoformat(),
        end_utc=warning.end_utc.isoformat(),
        message=warning.message,
    )


def _to_identity(user: UserRef) -> UserIdentity:
    return UserIdentity(
        user_id=user.user_id,
        display_name=user.display_name or user.user_id,
        email=user.email,
    )


def _http_error(exc: Exception) -> HTTPException:
    """Map crew ops failures onto HTTP status codes"""
    if isinstance(exc, EntityNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, SwapPermissionError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, (RoleMismatchError, SwapStateError)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, TransactionAbortError):
        return HTTPException(status_code=503, detail=f"Swap update rolled back: {exc}")
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail=str(exc))
    logger.exception("Unexpected crew ops failure")
    return HTTPException(status_code=500, detail=f"Request failed: {str(exc)}")


def _service(request: Request) -> FlightSwapService:
    return request.app.state.swap_service


# ============================================================================
# ENDPOINTS
# ============================================================================

router = APIRouter()


@router.get("/")
async def root():
    """Health check"""
    return {
        "status": "ok",
        "service": "Crew Ops API",
        "version": API_VERSION,
    }


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat()
    }


@router.post("/api/duty/calculate", response_model=DutyCalculationResponse)
async def calculate_duty(body: DutyCalculationRequest, request: Request):
    """
    Maximum FDP for a report time, sector count and acclimatization state

    Advisory estimate only; not a certified regulatory calculation.
    """
    calculator: DutyPeriodCalculator = request.app.state.duty_calculator
    max_sectors = calculator.framework.max_sectors
    if body.sector_count > max_sectors:
        raise HTTPException(status_code=422, detail=f"sector_count must be at most {max_sectors}")

    duty = DutyCalculationInput(
        report_time=_parse_time(body.report_time),
        sector_count=body.sector_count,
        acclimatized=body.acclimatized,
        proposed_end_time=_parse_time(body.proposed_end_time) if body.proposed_end_time else None,
    )
    return _build_duty_response(calculator.calculate(duty))


@router.post("/api/swaps", response_model=SwapResponse, status_code=201)
async def post_swap(body: PostSwapRequest, request: Request):
    """Offer one of the user's flights on the swap board"""
    try:
        swap = await _service(request).post_swap(body.flight_id, _to_identity(body.user))
    except CrewOpsError as e:
        raise _http_error(e)
    return _build_swap_response(swap)


@router.post("/api/swaps/{swap_id}/request", response_model=SwapResponse)
async def request_swap(swap_id: str, body: RequestSwapRequest, request: Request):
    try:
        swap = await _service(request).request_swap(
            swap_id, body.requesting_flight_id, _to_identity(body.user)
        )
    except CrewOpsError as e:
        raise _http_error(e)
    return _build_swap_response(swap)


@router.post("/api/swaps/{swap_id}/cancel")
async def cancel_swap(swap_id: str, body: CancelSwapRequest, request: Request):
    try:
        await _service(request).cancel_swap(swap_id, body.user_id)
    except CrewOpsError as e:
        raise _http_error(e)
    return {"swap_id": swap_id, "status": SwapStatus.CANCELLED.value}


@router.get("/api/swaps/{swap_id}/validation", response_model=SwapValidationResponse)
async def validate_swap(swap_id: str, request: Request):
    """
    Role and availability check before approval

    Conflicts are warnings; a role mismatch is returned as 409.
    """
    try:
        result = await _service(request).validate_swap(swap_id)
    except CrewOpsError as e:
        raise _http_error(e)
    return SwapValidationResponse(
        swap_id=swap_id,
        role=result.role.value,
        conflict_message=result.conflict_message,
        conflicts=[_build_conflict_response(w) for w in result.warnings],
    )


@router.post("/api/swaps/{swap_id}/approve")
async def approve_swap(swap_id: str, body: AdminActionRequest, request: Request):
    """Apply the swap to both flights atomically"""
    try:
        await _service(request).approve_swap(swap_id, body.admin_id, body.admin_email)
    except CrewOpsError as e:
        raise _http_error(e)
    return {"swap_id": swap_id, "status": SwapStatus.APPROVED.value}


@router.post("/api/swaps/{swap_id}/reject")
async def reject_swap(swap_id: str, body: RejectSwapRequest, request: Request):
    try:
        await _service(request).reject_swap(swap_id, body.admin_id, body.admin_email, body.notes)
    except (CrewOpsError, ValueError) as e:
        raise _http_error(e)
    return {"swap_id": swap_id, "status": SwapStatus.REJECTED.value}


@router.get("/api/swaps", response_model=List[SwapResponse])
async def list_swaps(request: Request, status: Optional[str] = Query(None)):
    """Admin swap board, newest first"""
    swap_status = None
    if status:
        try:
            swap_status = SwapStatus(status)
        except ValueError:
            valid = ', '.join(s.value for s in SwapStatus)
            raise HTTPException(status_code=400, detail=f"Invalid status '{status}'. Must be one of: {valid}")
    swaps = await _service(request).list_swaps(swap_status)
    return [_build_swap_response(s) for s in swaps]


@router.get("/api/users/{user_id}/swaps", response_model=List[SwapResponse])
async def get_user_swaps(user_id: str, request: Request):
    swaps = await _service(request).get_user_swaps(user_id)
    return [_build_swap_response(s) for s in swaps]


# ============================================================================
# FASTAPI APP INITIALIZATION
# ============================================================================

def create_app(store=None, config: CrewOpsConfig = None) -> FastAPI:
    """Build the API around an injected store and configuration"""
    config = config or CrewOpsConfig.from_env()
    store = store if store is not None else InMemoryCrewStore()

    application = FastAPI(
        title="Crew Ops API",
        description="Flight duty period estimates and crew flight swaps",
        version=API_VERSION,
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=os.environ.get("CREWOPS_CORS_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.state.config = config
    application.state.store = store
    application.state.duty_calculator = DutyPeriodCalculator(config.ftl_framework)
    application.state.swap_service = FlightSwapService(store, config=config)
    application.include_router(router)
    return application


app = create_app()


# ============================================================================
# RUN SERVER
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    port = int(os.environ.get("PORT", 8000))

    print("=" * 70)
    print("CREW OPS API SERVER")
    print("=" * 70)
    print(f"API will be available at: http://localhost:{port}")
    print(f"API docs at: http://localhost:{port}/docs")

    uvicorn.run(app, host="0.0.0.0", port=port)
