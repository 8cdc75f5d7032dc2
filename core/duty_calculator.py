"""
Flight Duty Period Calculator
=============================

Conservative, explainable estimate of the maximum Flight Duty Period.

    max FDP = max(floor, base + WOCL + sectors + acclimatization)

Each adjustment is computed independently of the others; the order in
which they are shown to crew is a separate step (build_breakdown).
Inputs are range-checked at the form/API boundary, so nothing here raises
for valid times and sector counts.
"""

from datetime import datetime, time
from typing import Dict, List, Optional
import logging

import pytz

from models.data_models import (
    AdjustmentKind, DutyAdjustment, DutyCalculationInput,
    DutyCalculationResult, FeasibilityCheck,
)
from core.parameters import FTLFramework

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60

# Display order of non-base adjustments
BREAKDOWN_ORDER = (
    AdjustmentKind.WOCL,
    AdjustmentKind.SECTORS,
    AdjustmentKind.ACCLIMATIZATION,
)


def format_minutes(minutes: int) -> str:
    """780 -> '13h00m', -90 -> '-1h30m'"""
    sign = "-" if minutes < 0 else ""
    hours, remainder = divmod(abs(int(minutes)), 60)
    return f"{sign}{hours}h{remainder:02d}m"


def report_time_from_utc(report_utc: datetime, timezone_name: str) -> time:
    """Local report time-of-day for a UTC report timestamp"""
    if report_utc.tzinfo is None:
        report_utc = pytz.utc.localize(report_utc)
    local = report_utc.astimezone(pytz.timezone(timezone_name))
    return time(local.hour, local.minute)


def _time_to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


class DutyPeriodCalculator:
    """Evaluate FDP rules for a single duty"""

    def __init__(self, framework: FTLFramework = None):
        self.framework = framework or FTLFramework()

    # ------------------------------------------------------------------
    # Individual rules
    # ------------------------------------------------------------------

    def wocl_adjustment(self, report_time: time) -> int:
        fw = self.framework
        hour = report_time.hour
        if fw.wocl_start_hour <= hour < fw.wocl_end_hour:
            return -fw.wocl_penalty_minutes
        if hour >= fw.night_late_start_hour or hour < fw.night_early_end_hour:
            return -fw.night_penalty_minutes
        return 0

    def sector_adjustment(self, sector_count: int) -> int:
        fw = self.framework
        if sector_count >= fw.sector_penalty_threshold:
            return (sector_count - fw.free_sectors) * -fw.sector_penalty_minutes
        return 0

    def acclimatization_adjustment(self, acclimatized: bool) -> int:
        return 0 if acclimatized else -self.framework.unacclimatized_penalty_minutes

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def compute_adjustments(self, duty: DutyCalculationInput) -> Dict[AdjustmentKind, DutyAdjustment]:
        """
        All adjustments keyed by rule, zero ones included.

        The numeric result depends only on this mapping, never on its order.
        """
        fw = self.framework
        hour_label = duty.report_time.strftime('%H:%M')

        wocl = self.wocl_adjustment(duty.report_time)
        if fw.wocl_start_hour <= duty.report_time.hour < fw.wocl_end_hour:
            wocl_reason = (
                f"Report at {hour_label} falls inside the window of circadian low "
                f"({fw.wocl_start_hour:02d}:00-{fw.wocl_end_hour:02d}:00)."
            )
        elif wocl:
            wocl_reason = f"Late-night / early-morning report at {hour_label}."
        else:
            wocl_reason = f"Report at {hour_label} is outside the circadian low."

        sectors = self.sector_adjustment(duty.sector_count)
        if sectors:
            extra = duty.sector_count - fw.free_sectors
            sector_reason = (
                f"{duty.sector_count} sectors: {extra} above {fw.free_sectors} "
                f"at {format_minutes(fw.sector_penalty_minutes)} each."
            )
        else:
            sector_reason = f"{duty.sector_count} sector(s), no reduction."

        acclim = self.acclimatization_adjustment(duty.acclimatized)
        acclim_reason = (
            "Crew acclimatized to the local time zone."
            if duty.acclimatized
            else "Crew not acclimatized to the local time zone."
        )

        return {
            AdjustmentKind.BASE: DutyAdjustment(
                label="Base FDP",
                delta_minutes=fw.base_fdp_minutes,
                rationale=f"Standard maximum of {format_minutes(fw.base_fdp_minutes)}.",
                kind=AdjustmentKind.BASE,
            ),
            AdjustmentKind.WOCL: DutyAdjustment(
                label="WOCL Reduction", delta_minutes=wocl,
                rationale=wocl_reason, kind=AdjustmentKind.WOCL,
            ),
            AdjustmentKind.SECTORS: DutyAdjustment(
                label="Sector Reduction", delta_minutes=sectors,
                rationale=sector_reason, kind=AdjustmentKind.SECTORS,
            ),
            AdjustmentKind.ACCLIMATIZATION: DutyAdjustment(
                label="Acclimatization", delta_minutes=acclim,
                rationale=acclim_reason, kind=AdjustmentKind.ACCLIMATIZATION,
            ),
        }

    @staticmethod
    def build_breakdown(adjustments: Dict[AdjustmentKind, DutyAdjustment]) -> List[DutyAdjustment]:
        """Base first, then non-zero adjustments in BREAKDOWN_ORDER"""
        breakdown = [adjustments[AdjustmentKind.BASE]]
        for kind in BREAKDOWN_ORDER:
            adjustment = adjustments.get(kind)
            if adjustment is not None and adjustment.delta_minutes != 0:
                breakdown.append(adjustment)
        return breakdown

    def calculate(self, duty: DutyCalculationInput) -> DutyCalculationResult:
        adjustments = self.compute_adjustments(duty)
        raw_fdp = sum(a.delta_minutes for a in adjustments.values())
        max_fdp = max(raw_fdp, self.framework.min_fdp_minutes)
        floor_applied = max_fdp != raw_fdp

        if floor_applied:
            logger.info(
                f"Raw FDP {format_minutes(raw_fdp)} below floor; "
                f"using {format_minutes(max_fdp)}"
            )

        report_minutes = _time_to_minutes(duty.report_time)
        end_total = report_minutes + max_fdp
        end_day_offset, end_minutes = divmod(end_total, MINUTES_PER_DAY)

        return DutyCalculationResult(
            max_fdp_minutes=max_fdp,
            min_rest_description=self.framework.min_rest_description,
            breakdown=self.build_breakdown(adjustments),
            raw_fdp_minutes=raw_fdp,
            floor_applied=floor_applied,
            latest_end_time=time(end_minutes // 60, end_minutes % 60),
            end_day_offset=end_day_offset,
            feasibility=self.check_feasibility(duty, max_fdp),
        )

    @staticmethod
    def check_feasibility(duty: DutyCalculationInput, max_fdp_minutes: int) -> Optional[FeasibilityCheck]:
        """Compare a proposed end time with the max FDP; an earlier clock time means next day"""
        if duty.proposed_end_time is None:
            return None
        report_minutes = _time_to_minutes(duty.report_time)
        end_minutes = _time_to_minutes(duty.proposed_end_time)
        if end_minutes < report_minutes:
            end_minutes += MINUTES_PER_DAY
        planned = end_minutes - report_minutes
        return FeasibilityCheck(
            planned_fdp_minutes=planned,
            is_feasible=planned <= max_fdp_minutes,
            difference_minutes=abs(planned - max_fdp_minutes),
        )


def calculate_max_duty_period(duty: DutyCalculationInput,
                              framework: FTLFramework = None) -> DutyCalculationResult:
    """Module-level entry point used by form handlers"""
    return DutyPeriodCalculator(framework).calculate(duty)
