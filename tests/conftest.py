"""
Shared fixtures: a small crew roster with two pilots on different flights
and a swap between them awaiting approval.
"""

from datetime import datetime, timedelta
import itertools
import pytz
import pytest

from core import CrewOpsConfig, FlightSwapService, InMemoryCrewStore
from core.datastore import ACTIVITIES, FLIGHTS, SWAPS, USERS
from core.parameters import SwapPolicy
from models.data_models import (
    ActivityType, Flight, FlightSwap, SwapStatus, UserActivity, UserIdentity,
)

UTC = pytz.utc

ALICE = UserIdentity('u-alice', 'Alice Martin', 'alice@crew.test')   # Pilot on QR101
BOB = UserIdentity('u-bob', 'Bob Keller', 'bob@crew.test')           # Pilot on QR202
CAROL = UserIdentity('u-carol', 'Carol Diaz', 'carol@crew.test')     # Purser on QR101
DAN = UserIdentity('u-dan', 'Dan Okafor', 'dan@crew.test')           # Cabin crew on QR202
ADMIN = UserIdentity('u-admin', 'Ops Admin', 'ops@crew.test')


def make_flight(flight_id, number, dep, arr, departure_utc, hours, **crew):
    crew.setdefault('all_crew_ids', sorted(
        ([crew['purser_id']] if crew.get('purser_id') else [])
        + crew.get('pilot_ids', [])
        + crew.get('cabin_crew_ids', [])
        + crew.get('instructor_ids', [])
        + crew.get('trainee_ids', [])
    ))
    return Flight(
        flight_id=flight_id,
        flight_number=number,
        departure_airport=dep,
        arrival_airport=arr,
        scheduled_departure_utc=departure_utc,
        scheduled_arrival_utc=departure_utc + timedelta(hours=hours),
        aircraft_type='A350',
        **crew,
    )


def make_activity(activity_id, user_id, start_utc, hours, activity_type=ActivityType.FLIGHT,
                  flight=None, comments=None):
    return UserActivity(
        activity_id=activity_id,
        user_id=user_id,
        activity_type=activity_type,
        date=UTC.localize(datetime(start_utc.year, start_utc.month, start_utc.day)),
        start_utc=start_utc,
        end_utc=start_utc + timedelta(hours=hours),
        comments=comments,
        flight_id=flight.flight_id if flight else None,
        flight_number=flight.flight_number if flight else None,
        departure_airport=flight.departure_airport if flight else None,
        arrival_airport=flight.arrival_airport if flight else None,
    )


QR101_DEP = UTC.localize(datetime(2025, 6, 10, 8, 0))
QR202_DEP = UTC.localize(datetime(2025, 6, 12, 9, 0))


@pytest.fixture
def clock():
    """Deterministic clock advancing one minute per call"""
    ticks = itertools.count()
    start = UTC.localize(datetime(2025, 6, 1, 12, 0))
    return lambda: start + timedelta(minutes=next(ticks))


@pytest.fixture
def flights():
    qr101 = make_flight(
        'f-qr101', 'QR101', 'OTHH', 'EGLL', QR101_DEP, 7,
        purser_id=CAROL.user_id,
        pilot_ids=[ALICE.user_id, 'u-pilot-9'],
        cabin_crew_ids=['u-cabin-7'],
        activity_ids={ALICE.user_id: 'a-alice-101', CAROL.user_id: 'a-carol-101'},
    )
    qr202 = make_flight(
        'f-qr202', 'QR202', 'OTHH', 'LFPG', QR202_DEP, 6.5,
        purser_id='u-purser-2',
        pilot_ids=[BOB.user_id, 'u-pilot-8'],
        cabin_crew_ids=[DAN.user_id],
        activity_ids={BOB.user_id: 'a-bob-202'},
    )
    return {'qr101': qr101, 'qr202': qr202}


@pytest.fixture
def store(flights):
    crew_store = InMemoryCrewStore()
    qr101, qr202 = flights['qr101'], flights['qr202']
    crew_store.load(USERS, [ALICE, BOB, CAROL, DAN, ADMIN])
    crew_store.load(FLIGHTS, [qr101, qr202])
    crew_store.load(ACTIVITIES, [
        make_activity('a-alice-101', ALICE.user_id, QR101_DEP, 7, flight=qr101,
                      comments='Flight QR101 from OTHH to EGLL'),
        make_activity('a-carol-101', CAROL.user_id, QR101_DEP, 7, flight=qr101),
        make_activity('a-bob-202', BOB.user_id, QR202_DEP, 6.5, flight=qr202,
                      comments='Flight QR202 from OTHH to LFPG'),
    ])
    crew_store.load(SWAPS, [FlightSwap(
        swap_id='s-pending',
        initiating_user_id=ALICE.user_id,
        initiating_user_email=ALICE.email,
        initiating_flight_id=qr101.flight_id,
        flight_info=qr101.summary(),
        created_at=UTC.localize(datetime(2025, 5, 30, 9, 0)),
        status=SwapStatus.PENDING_APPROVAL,
        requesting_user_id=BOB.user_id,
        requesting_user_email=BOB.email,
        requesting_flight_id=qr202.flight_id,
        requesting_flight_info=qr202.summary(),
    )])
    return crew_store


@pytest.fixture
def config():
    return CrewOpsConfig(swap_policy=SwapPolicy(home_base_timezone='Asia/Qatar'))


@pytest.fixture
def service(store, config, clock):
    return FlightSwapService(store, config=config, clock=clock)
