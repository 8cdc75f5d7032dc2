"""
Configuration & Parameters for Crew Ops Rules
=============================================

All configuration dataclasses for the duty calculator and swap workflow:
- FTLFramework: FDP base, floor and adjustment rules
- SwapPolicy: Swap workflow and datastore settings
- CrewOpsConfig: Master configuration container

The FDP figures are an advisory, conservative estimate and carry no
regulatory authority.
"""

from dataclasses import dataclass, field
from typing import Tuple
import os

import pytz


@dataclass
class FTLFramework:
    """Flight duty period rules (minutes unless stated)"""

    # Base FDP and absolute floor
    base_fdp_minutes: int = 13 * 60
    min_fdp_minutes: int = 9 * 60

    # Window of Circadian Low - report hour in [start, end)
    wocl_start_hour: int = 2
    wocl_end_hour: int = 6
    wocl_penalty_minutes: int = 90

    # Late-night / early-morning fringe - report hour in [late, 24) or [0, early)
    night_late_start_hour: int = 22
    night_early_end_hour: int = 2
    night_penalty_minutes: int = 60

    # Sector penalty applies from threshold upwards, per sector above free count
    sector_penalty_threshold: int = 5
    sector_penalty_minutes: int = 30

    # Not acclimatized
    unacclimatized_penalty_minutes: int = 60

    # Boundary limits (enforced by the form/API schema, not the calculator)
    max_sectors: int = 8

    # Rest policy - reported as text only
    min_rest_description: str = "12h, or duty period length, whichever is greater"

    def __post_init__(self):
        """Validate rule parameters"""
        assert 0 < self.min_fdp_minutes <= self.base_fdp_minutes, \
            "FDP floor must be positive and not exceed the base FDP"
        assert 0 <= self.wocl_start_hour < self.wocl_end_hour <= 24, \
            f"Invalid WOCL window {self.wocl_start_hour}-{self.wocl_end_hour}"
        assert 0 < self.night_late_start_hour < 24, \
            f"Invalid night start hour {self.night_late_start_hour}"
        assert 0 <= self.night_early_end_hour <= self.wocl_start_hour, \
            "Early-morning fringe must end at or before the WOCL starts"
        assert self.sector_penalty_threshold >= 2, \
            "Sector penalty threshold must leave at least one free sector"
        assert self.max_sectors >= 1
        for name in ('wocl_penalty_minutes', 'night_penalty_minutes',
                     'sector_penalty_minutes', 'unacclimatized_penalty_minutes'):
            assert getattr(self, name) >= 0, f"{name} must be non-negative"

    @property
    def free_sectors(self) -> int:
        """Sectors flown without penalty"""
        return self.sector_penalty_threshold - 1

    @property
    def wocl_window(self) -> Tuple[int, int]:
        return (self.wocl_start_hour, self.wocl_end_hour)


@dataclass
class SwapPolicy:
    """Swap workflow settings"""

    # Activity dates are the start of the departure day in this timezone
    home_base_timezone: str = "UTC"

    # Optimistic transaction retries performed by the datastore client
    transaction_max_attempts: int = 5

    def __post_init__(self):
        assert self.transaction_max_attempts >= 1, \
            "At least one transaction attempt is required"
        # Raises pytz.UnknownTimeZoneError on a bad name
        pytz.timezone(self.home_base_timezone)


@dataclass
class CrewOpsConfig:
    """Master configuration container"""
    ftl_framework: FTLFramework = field(default_factory=FTLFramework)
    swap_policy: SwapPolicy = field(default_factory=SwapPolicy)

    @classmethod
    def default_config(cls):
        return cls(
            ftl_framework=FTLFramework(),
            swap_policy=SwapPolicy(),
        )

    @classmethod
    def conservative_config(cls):
        """
        Stricter duty estimate for planning margins.
        - 12h30 base FDP
        - Sector penalty from the 4th sector
        - Longer acclimatization penalty
        """
        return cls(
            ftl_framework=FTLFramework(
                base_fdp_minutes=12 * 60 + 30,
                sector_penalty_threshold=4,
                unacclimatized_penalty_minutes=90,
            ),
            swap_policy=SwapPolicy(transaction_max_attempts=3),
        )

    @classmethod
    def from_preset(cls, preset: str):
        """Resolve a preset name; unknown names fall back to the default"""
        config_map = {
            "default": cls.default_config,
            "conservative": cls.conservative_config,
        }
        return config_map.get(preset, cls.default_config)()

    @classmethod
    def from_env(cls):
        """Build from CREWOPS_CONFIG_PRESET and CREWOPS_HOME_TIMEZONE"""
        config = cls.from_preset(os.environ.get("CREWOPS_CONFIG_PRESET", "default"))
        home_tz = os.environ.get("CREWOPS_HOME_TIMEZONE")
        if home_tz:
            config.swap_policy = SwapPolicy(
                home_base_timezone=home_tz,
                transaction_max_attempts=config.swap_policy.transaction_max_attempts,
            )
        return config
