"""
Datastore transaction tests.

Run: python -m pytest tests/test_datastore.py -v
"""

import asyncio
from dataclasses import replace
import pytest

from core import InMemoryCrewStore, TransactionAbortError
from core.datastore import FLIGHTS, SWAPS, USERS, document_id
from core.exceptions import EntityNotFoundError
from models.data_models import SwapStatus

from conftest import ALICE, BOB


def _run(coro):
    return asyncio.run(coro)


class TestDocuments:

    def test_reads_are_copies(self, store):
        flight = _run(store.get(FLIGHTS, 'f-qr101'))
        flight.pilot_ids.append('u-intruder')
        assert 'u-intruder' not in _run(store.get(FLIGHTS, 'f-qr101')).pilot_ids

    def test_missing_document(self, store):
        assert _run(store.get(FLIGHTS, 'f-nope')) is None
        with pytest.raises(EntityNotFoundError):
            _run(store.require(FLIGHTS, 'f-nope'))

    def test_update_unknown_document(self, store):
        with pytest.raises(EntityNotFoundError):
            _run(store.update(SWAPS, 's-nope', {'status': SwapStatus.APPROVED}))

    def test_update_fields(self, store):
        updated = _run(store.update(SWAPS, 's-pending', {'admin_notes': 'checked'}))
        assert updated.admin_notes == 'checked'
        assert updated.status == SwapStatus.PENDING_APPROVAL

    def test_unknown_collection(self, store):
        with pytest.raises(ValueError):
            _run(store.get('crewBases', 'DOH'))
        with pytest.raises(ValueError):
            document_id('crewBases', ALICE)

    def test_query_activities_excludes_flight(self, store, flights):
        qr202 = flights['qr202']
        window = (qr202.scheduled_departure_utc, qr202.scheduled_arrival_utc)
        assert [a.activity_id for a in _run(store.query_activities(BOB.user_id, *window))] == ['a-bob-202']
        assert _run(store.query_activities(BOB.user_id, *window, exclude_flight_id='f-qr202')) == []

    def test_add_unless_exists(self, store):
        pending = _run(store.get(SWAPS, 's-pending'))
        twin = replace(pending, swap_id='s-twin')
        same_flight = lambda s: s.initiating_flight_id == 'f-qr101'

        existing = _run(store.add_unless_exists(SWAPS, twin, same_flight))
        assert existing.swap_id == 's-pending'
        assert _run(store.get(SWAPS, 's-twin')) is None

        other = replace(pending, swap_id='s-other', initiating_flight_id='f-qr202')
        assert _run(store.add_unless_exists(
            SWAPS, other, lambda s: s.initiating_flight_id == 'f-qr202'
        )) is None
        assert _run(store.get(SWAPS, 's-other')).initiating_flight_id == 'f-qr202'

    def test_list_documents_predicate(self, store):
        users = _run(store.list_documents(USERS, lambda u: u.user_id.startswith('u-a')))
        assert sorted(u.user_id for u in users) == ['u-admin', 'u-alice']


class TestTransactions:

    def test_commit_applies_all_writes(self, store):
        async def work(tx):
            swap = await tx.get(SWAPS, 's-pending')
            tx.update(SWAPS, swap.swap_id, {'status': SwapStatus.APPROVED})
            tx.update(FLIGHTS, 'f-qr101', {'aircraft_type': 'B787'})
            return swap.swap_id

        assert _run(store.run_transaction(work)) == 's-pending'
        assert _run(store.get(SWAPS, 's-pending')).status == SwapStatus.APPROVED
        assert _run(store.get(FLIGHTS, 'f-qr101')).aircraft_type == 'B787'

    def test_error_in_body_writes_nothing(self, store):
        async def work(tx):
            await tx.get(SWAPS, 's-pending')
            tx.update(SWAPS, 's-pending', {'status': SwapStatus.APPROVED})
            raise RuntimeError("validation failed")

        with pytest.raises(RuntimeError):
            _run(store.run_transaction(work))
        assert _run(store.get(SWAPS, 's-pending')).status == SwapStatus.PENDING_APPROVAL

    def test_write_to_missing_document_rolls_back(self, store):
        async def work(tx):
            tx.update(FLIGHTS, 'f-qr101', {'aircraft_type': 'B787'})
            tx.update(FLIGHTS, 'f-ghost', {'aircraft_type': 'B787'})

        with pytest.raises(TransactionAbortError):
            _run(store.run_transaction(work))
        assert _run(store.get(FLIGHTS, 'f-qr101')).aircraft_type == 'A350'

    def test_read_after_write_rejected(self, store):
        async def work(tx):
            tx.update(FLIGHTS, 'f-qr101', {'aircraft_type': 'B787'})
            await tx.get(FLIGHTS, 'f-qr202')

        with pytest.raises(TransactionAbortError):
            _run(store.run_transaction(work))

    def test_persistent_conflict_aborts(self, store):
        attempts = []

        async def work(tx):
            attempts.append(1)
            await tx.get(FLIGHTS, 'f-qr101')
            # Concurrent writer bumps the version on every attempt
            store.load(FLIGHTS, [await store.get(FLIGHTS, 'f-qr101')])
            tx.update(FLIGHTS, 'f-qr101', {'aircraft_type': 'B787'})

        with pytest.raises(TransactionAbortError):
            _run(store.run_transaction(work, max_attempts=3))
        assert len(attempts) == 3
        assert _run(store.get(FLIGHTS, 'f-qr101')).aircraft_type == 'A350'


class TestInMemoryStoreIsolation:

    def test_fresh_store_is_empty(self):
        assert _run(InMemoryCrewStore().list_documents(FLIGHTS)) == []
