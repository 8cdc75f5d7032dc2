"""
Swap conflict validation tests.

Run: python -m pytest tests/test_swap_validator.py -v
"""

import asyncio
from datetime import timedelta
import pytest

from core import EntityNotFoundError, RoleMismatchError, SwapStateError
from core.datastore import ACTIVITIES, FLIGHTS, SWAPS
from core.swap_validator import (
    check_availability, check_crew_availability, check_role_match, validate_swap,
)
from models.data_models import ActivityType, CrewRole, SwapStatus

from conftest import ALICE, BOB, CAROL, DAN, QR101_DEP, QR202_DEP, make_activity


def _run(coro):
    return asyncio.run(coro)


class TestRoleMatch:

    def test_pilot_for_pilot(self, flights):
        role = check_role_match(flights['qr101'], ALICE.user_id, flights['qr202'], BOB.user_id)
        assert role == CrewRole.PILOT

    def test_purser_for_pilot_rejected(self, flights):
        with pytest.raises(RoleMismatchError) as excinfo:
            check_role_match(flights['qr101'], CAROL.user_id, flights['qr202'], BOB.user_id)
        assert excinfo.value.role_a == CrewRole.PURSER
        assert excinfo.value.role_b == CrewRole.PILOT
        assert 'purser' in str(excinfo.value)

    def test_user_not_on_flight(self, flights):
        with pytest.raises(RoleMismatchError):
            check_role_match(flights['qr101'], DAN.user_id, flights['qr202'], BOB.user_id)


class TestCheckAvailability:

    def test_vacated_flight_never_conflicts(self, store):
        # Alice's own QR101 activity overlaps QR101's window but is excluded
        warning = _run(check_availability(
            store, ALICE.user_id, QR101_DEP, QR101_DEP + timedelta(hours=7),
            exclude_flight_id='f-qr101',
        ))
        assert warning is None

    def test_same_activity_conflicts_without_exclusion(self, store):
        warning = _run(check_availability(
            store, ALICE.user_id, QR101_DEP, QR101_DEP + timedelta(hours=7),
        ))
        assert warning is not None
        assert warning.activity_id == 'a-alice-101'
        assert warning.details == 'Flight QR101 from OTHH to EGLL'

    def test_first_overlap_returned(self, store):
        store.load(ACTIVITIES, [
            make_activity('a-late', BOB.user_id, QR101_DEP + timedelta(hours=5), 8,
                          activity_type=ActivityType.STANDBY),
            make_activity('a-early', BOB.user_id, QR101_DEP - timedelta(hours=2), 4,
                          activity_type=ActivityType.TRAINING),
        ])
        warning = _run(check_availability(
            store, BOB.user_id, QR101_DEP, QR101_DEP + timedelta(hours=7),
            exclude_flight_id='f-qr202',
        ))
        assert warning.activity_id == 'a-early'
        assert warning.activity_type == ActivityType.TRAINING
        assert warning.details.startswith('Scheduled for training on')

    def test_adjacent_activity_counts_as_overlap(self, store):
        store.load(ACTIVITIES, [
            make_activity('a-touch', BOB.user_id, QR101_DEP + timedelta(hours=7), 2,
                          activity_type=ActivityType.STANDBY),
        ])
        warning = _run(check_availability(
            store, BOB.user_id, QR101_DEP, QR101_DEP + timedelta(hours=7),
        ))
        assert warning.activity_id == 'a-touch'

    def test_batch_availability(self, store):
        warnings = _run(check_crew_availability(
            store, [ALICE.user_id, BOB.user_id, DAN.user_id],
            QR202_DEP, QR202_DEP + timedelta(hours=6),
        ))
        assert set(warnings) == {BOB.user_id}


class TestValidateSwap:

    def test_clean_swap(self, store):
        result = _run(validate_swap(store, 's-pending'))
        assert result.role == CrewRole.PILOT
        assert result.conflict_message is None
        assert not result.has_conflicts

    def test_conflict_reported_as_warning(self, store):
        # Alice is on leave during QR202
        store.load(ACTIVITIES, [
            make_activity('a-leave', ALICE.user_id, QR202_DEP - timedelta(hours=12), 24,
                          activity_type=ActivityType.LEAVE, comments='Annual leave'),
        ])
        result = _run(validate_swap(store, 's-pending'))
        assert result.has_conflicts
        [warning] = result.warnings
        assert warning.user_id == ALICE.user_id
        assert 'Alice Martin' in result.conflict_message
        assert 'Annual leave' in result.conflict_message

    def test_conflicts_for_both_users(self, store):
        store.load(ACTIVITIES, [
            make_activity('a-alice-sby', ALICE.user_id, QR202_DEP, 2, activity_type=ActivityType.STANDBY),
            make_activity('a-bob-sby', BOB.user_id, QR101_DEP, 2, activity_type=ActivityType.STANDBY),
        ])
        result = _run(validate_swap(store, 's-pending'))
        assert [w.user_id for w in result.warnings] == [ALICE.user_id, BOB.user_id]

    def test_role_mismatch_before_availability(self, store, flights):
        qr202 = flights['qr202']
        qr202.pilot_ids = ['u-pilot-8']
        qr202.purser_id = BOB.user_id
        store.load(FLIGHTS, [qr202])

        queried = []
        real_query = store.query_activities

        async def spy(*args, **kwargs):
            queried.append(args)
            return await real_query(*args, **kwargs)

        store.query_activities = spy
        with pytest.raises(RoleMismatchError):
            _run(validate_swap(store, 's-pending'))
        assert queried == []

    def test_missing_swap(self, store):
        with pytest.raises(EntityNotFoundError):
            _run(validate_swap(store, 's-missing'))

    def test_missing_flight(self, store):
        store._collections[FLIGHTS].pop('f-qr202')
        with pytest.raises(EntityNotFoundError) as excinfo:
            _run(validate_swap(store, 's-pending'))
        assert excinfo.value.entity_id == 'f-qr202'

    @pytest.mark.parametrize('status', [
        SwapStatus.APPROVED, SwapStatus.REJECTED, SwapStatus.CANCELLED,
    ])
    def test_resolved_swap_not_validated(self, store, status):
        swap = _run(store.get(SWAPS, 's-pending'))
        swap.status = status
        store.load(SWAPS, [swap])
        with pytest.raises(SwapStateError, match='not pending approval'):
            _run(validate_swap(store, 's-pending'))

    def test_unclaimed_swap_is_incomplete(self, store):
        swap = _run(store.get(SWAPS, 's-pending'))
        swap.requesting_user_id = None
        swap.requesting_flight_id = None
        store.load(SWAPS, [swap])
        with pytest.raises(SwapStateError, match='incomplete'):
            _run(validate_swap(store, 's-pending'))
