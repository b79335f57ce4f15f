"""Booking writes: overlap re-check, mirrors, status changes and repairs."""

import asyncio
from unittest.mock import patch

import pytest
from pymongo.errors import PyMongoError

from crud import appointment_crud
from schemas.appointment import AppointmentStatus, slot_claim_keys
from services.exceptions import (
    ConsistencyError, ForbiddenError, NotFoundError, SlotUnavailableError, StatusTransitionError
)

from tests.conftest import MONDAY, at


async def mirrors_of(db, appointment_id):
    user_mirror = await db.user_appointments.find_one({"appointment_id": appointment_id})
    barber_mirror = await db.barber_appointments.find_one({"appointment_id": appointment_id})
    return user_mirror, barber_mirror


@pytest.mark.asyncio
async def test_create_writes_canonical_record_and_both_mirrors(db, customer, make_appointment):
    created = await appointment_crud.create_appointment(make_appointment(at(9, 0)), customer)

    canonical = await db.appointments.find_one({"appointment_id": created.appointment_id})
    user_mirror, barber_mirror = await mirrors_of(db, created.appointment_id)

    assert canonical["status"] == "PENDING"
    assert canonical["end_at"] == at(9, 30)
    for mirror in (user_mirror, barber_mirror):
        assert mirror["status"] == "PENDING"
        assert mirror["start_at"] == canonical["start_at"]
        assert mirror["service_snapshot"] == canonical["service_snapshot"]
    assert await db.slot_claims.count_documents({"appointment_id": created.appointment_id}) == 30
    assert await db.notifications.count_documents({"recipient_id": "barber_1"}) == 1


@pytest.mark.asyncio
async def test_overlapping_booking_is_rejected(db, customer, other_customer, make_appointment):
    await appointment_crud.create_appointment(make_appointment(at(10, 0), duration=60), customer)

    with pytest.raises(SlotUnavailableError) as exc:
        await appointment_crud.create_appointment(
            make_appointment(at(10, 30), user_id="user_2"), other_customer
        )
    assert exc.value.code == "SLOT_NO_LONGER_AVAILABLE"
    assert await db.appointments.count_documents({}) == 1


@pytest.mark.asyncio
async def test_abutting_bookings_are_both_accepted(db, customer, other_customer, make_appointment):
    await appointment_crud.create_appointment(make_appointment(at(9, 0)), customer)
    await appointment_crud.create_appointment(make_appointment(at(9, 30), user_id="user_2"), other_customer)

    busy = await appointment_crud.get_busy_ranges("main", "barber_1", at(0, 0))
    assert [(b.start_at, b.end_at) for b in busy] == [(at(9, 0), at(9, 30)), (at(9, 30), at(10, 0))]


@pytest.mark.asyncio
async def test_customer_cannot_book_for_someone_else(db, customer, make_appointment):
    with pytest.raises(ForbiddenError):
        await appointment_crud.create_appointment(make_appointment(at(9, 0), user_id="user_2"), customer)


@pytest.mark.asyncio
async def test_concurrent_bookings_of_the_same_slot_commit_once(db, customer, other_customer, make_appointment):
    real_check = appointment_crud.check_availability

    async def check_then_yield(*args, **kwargs):
        result = await real_check(*args, **kwargs)
        # Let the other booking run its check before either one writes
        await asyncio.sleep(0)
        return result

    with patch("crud.appointment_crud.check_availability", side_effect=check_then_yield):
        results = await asyncio.gather(
            appointment_crud.create_appointment(make_appointment(at(11, 0)), customer),
            appointment_crud.create_appointment(make_appointment(at(11, 0), user_id="user_2"), other_customer),
            return_exceptions=True,
        )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], SlotUnavailableError)
    assert await db.appointments.count_documents({}) == 1
    assert await db.user_appointments.count_documents({}) == 1
    assert await db.barber_appointments.count_documents({}) == 1


@pytest.mark.asyncio
async def test_concurrent_partially_overlapping_bookings_commit_once(db, customer, other_customer, make_appointment):
    real_check = appointment_crud.check_availability

    async def check_then_yield(*args, **kwargs):
        result = await real_check(*args, **kwargs)
        await asyncio.sleep(0)
        return result

    with patch("crud.appointment_crud.check_availability", side_effect=check_then_yield):
        results = await asyncio.gather(
            appointment_crud.create_appointment(make_appointment(at(14, 0), duration=45), customer),
            appointment_crud.create_appointment(make_appointment(at(14, 30), user_id="user_2"), other_customer),
            return_exceptions=True,
        )

    assert sum(isinstance(r, SlotUnavailableError) for r in results) == 1
    assert await db.appointments.count_documents({}) == 1
    # The loser gave back every cell it managed to claim
    winner = await db.appointments.find_one({})
    assert await db.slot_claims.count_documents({"appointment_id": {"$ne": winner["appointment_id"]}}) == 0


@pytest.mark.asyncio
async def test_barber_confirms_and_mirrors_follow(db, customer, barber_actor, make_appointment):
    created = await appointment_crud.create_appointment(make_appointment(at(9, 0)), customer)

    confirmed = await appointment_crud.confirm_appointment(created.appointment_id, barber_actor)

    assert confirmed.status == AppointmentStatus.CONFIRMED
    canonical = await db.appointments.find_one({"appointment_id": created.appointment_id})
    user_mirror, barber_mirror = await mirrors_of(db, created.appointment_id)
    assert user_mirror["status"] == barber_mirror["status"] == canonical["status"] == "CONFIRMED"
    assert user_mirror["updated_at"] == barber_mirror["updated_at"] == canonical["updated_at"]


@pytest.mark.asyncio
async def test_customer_cannot_confirm(db, customer, make_appointment):
    created = await appointment_crud.create_appointment(make_appointment(at(9, 0)), customer)

    with pytest.raises(ForbiddenError):
        await appointment_crud.confirm_appointment(created.appointment_id, customer)


@pytest.mark.asyncio
async def test_other_customer_cannot_cancel(db, customer, other_customer, make_appointment):
    created = await appointment_crud.create_appointment(make_appointment(at(9, 0)), customer)

    with pytest.raises(ForbiddenError):
        await appointment_crud.cancel_appointment(created.appointment_id, other_customer)


@pytest.mark.asyncio
async def test_confirming_a_canceled_appointment_is_rejected(db, customer, barber_actor, make_appointment):
    created = await appointment_crud.create_appointment(make_appointment(at(9, 0)), customer)
    await appointment_crud.cancel_appointment(created.appointment_id, customer)

    with pytest.raises(StatusTransitionError) as exc:
        await appointment_crud.confirm_appointment(created.appointment_id, barber_actor)
    assert exc.value.code == "INVALID_STATUS_TRANSITION"

    canonical = await db.appointments.find_one({"appointment_id": created.appointment_id})
    assert canonical["status"] == "CANCELED"


@pytest.mark.asyncio
async def test_same_status_is_a_violation(db, customer, barber_actor, make_appointment):
    created = await appointment_crud.create_appointment(make_appointment(at(9, 0)), customer)
    await appointment_crud.confirm_appointment(created.appointment_id, barber_actor)

    with pytest.raises(StatusTransitionError):
        await appointment_crud.confirm_appointment(created.appointment_id, barber_actor)


@pytest.mark.asyncio
async def test_unknown_appointment(db, barber_actor):
    with pytest.raises(NotFoundError):
        await appointment_crud.cancel_appointment("APXX00000000", barber_actor)


@pytest.mark.asyncio
async def test_canceling_frees_the_slot(db, customer, other_customer, make_appointment):
    created = await appointment_crud.create_appointment(make_appointment(at(9, 0)), customer)
    check = await appointment_crud.check_availability("main", "barber_1", at(9, 0), at(9, 30))
    assert not check.available

    await appointment_crud.cancel_appointment(created.appointment_id, customer)

    check = await appointment_crud.check_availability("main", "barber_1", at(9, 0), at(9, 30))
    assert check.available
    assert await db.slot_claims.count_documents({}) == 0
    # The canceled record is kept
    assert await db.appointments.count_documents({"status": "CANCELED"}) == 1

    rebooked = await appointment_crud.create_appointment(make_appointment(at(9, 0), user_id="user_2"), other_customer)
    assert rebooked.appointment_id != created.appointment_id


@pytest.mark.asyncio
async def test_reschedule_moves_record_mirrors_and_claims(db, customer, barber_actor, make_appointment):
    created = await appointment_crud.create_appointment(make_appointment(at(9, 0)), customer)

    moved = await appointment_crud.reschedule_appointment(created.appointment_id, at(9, 15), barber_actor)

    assert moved.start_at == at(9, 15)
    assert moved.end_at == at(9, 45)
    user_mirror, barber_mirror = await mirrors_of(db, created.appointment_id)
    assert user_mirror["start_at"] == barber_mirror["start_at"] == at(9, 15)

    claims = await db.slot_claims.find({"appointment_id": created.appointment_id}).to_list(length=None)
    assert sorted(c["claim_key"] for c in claims) == sorted(slot_claim_keys("barber_1", at(9, 15), at(9, 45)))
    assert (await appointment_crud.check_availability("main", "barber_1", at(9, 0), at(9, 15))).available


@pytest.mark.asyncio
async def test_reschedule_onto_another_booking_is_rejected(db, customer, other_customer, make_appointment):
    first = await appointment_crud.create_appointment(make_appointment(at(9, 0)), customer)
    await appointment_crud.create_appointment(make_appointment(at(10, 0), user_id="user_2"), other_customer)

    with pytest.raises(SlotUnavailableError):
        await appointment_crud.reschedule_appointment(first.appointment_id, at(9, 45), customer)

    canonical = await db.appointments.find_one({"appointment_id": first.appointment_id})
    assert canonical["start_at"] == at(9, 0)


@pytest.mark.asyncio
async def test_canceled_appointment_cannot_be_rescheduled(db, customer, make_appointment):
    created = await appointment_crud.create_appointment(make_appointment(at(9, 0)), customer)
    await appointment_crud.cancel_appointment(created.appointment_id, customer)

    with pytest.raises(StatusTransitionError):
        await appointment_crud.reschedule_appointment(created.appointment_id, at(11, 0), customer)


@pytest.mark.asyncio
async def test_reconcile_repairs_missing_stale_and_orphan_mirrors(db, customer, make_appointment):
    created = await appointment_crud.create_appointment(make_appointment(at(9, 0)), customer)
    appointment_id = created.appointment_id

    await db.user_appointments.delete_one({"appointment_id": appointment_id})
    await db.barber_appointments.update_one({"appointment_id": appointment_id}, {"$set": {"status": "CONFIRMED"}})
    await db.user_appointments.insert_one({"user_id": "user_1", "appointment_id": "APGONE000000"})
    await db.slot_claims.delete_many({"appointment_id": appointment_id})

    stats = await appointment_crud.reconcile_mirrors()

    assert stats["repaired"] == 2
    assert stats["removed"] == 1
    assert stats["claims_fixed"] == 1
    user_mirror, barber_mirror = await mirrors_of(db, appointment_id)
    assert user_mirror["status"] == barber_mirror["status"] == "PENDING"
    assert await db.user_appointments.find_one({"appointment_id": "APGONE000000"}) is None
    assert await db.slot_claims.count_documents({"appointment_id": appointment_id}) == 30

    again = await appointment_crud.reconcile_mirrors()
    assert (again["repaired"], again["removed"], again["claims_fixed"]) == (0, 0, 0)


@pytest.mark.asyncio
async def test_failed_mirror_write_is_compensated(db, customer, make_appointment):
    with patch("crud.appointment_crud._write_mirrors", side_effect=PyMongoError("mirror write failed")):
        with pytest.raises(ConsistencyError) as exc:
            await appointment_crud.create_appointment(make_appointment(at(9, 0)), customer)
    assert exc.value.code == "PARTIAL_WRITE"

    canonical = await db.appointments.find_one({})
    assert canonical["status"] == "CANCELED"
    assert await db.slot_claims.count_documents({}) == 0
    user_mirror, barber_mirror = await mirrors_of(db, canonical["appointment_id"])
    assert user_mirror["status"] == barber_mirror["status"] == "CANCELED"
    assert (await appointment_crud.check_availability("main", "barber_1", at(9, 0), at(9, 30))).available


@pytest.mark.asyncio
async def test_listings(db, customer, other_customer, barber_actor, make_appointment):
    first = await appointment_crud.create_appointment(make_appointment(at(9, 0)), customer)
    second = await appointment_crud.create_appointment(make_appointment(at(11, 0)), customer)
    await appointment_crud.create_appointment(make_appointment(at(10, 0), user_id="user_2"), other_customer)
    await appointment_crud.confirm_appointment(second.appointment_id, barber_actor)

    mine = await appointment_crud.list_user_appointments("user_1")
    assert [a.appointment_id for a in mine] == [second.appointment_id, first.appointment_id]

    confirmed = await appointment_crud.list_barber_appointments("barber_1", AppointmentStatus.CONFIRMED)
    assert [a.appointment_id for a in confirmed] == [second.appointment_id]
    assert len(await appointment_crud.list_barber_appointments("barber_1", page_size=2)) == 2

    upcoming = await appointment_crud.get_upcoming_appointment_for_user("user_1", now=at(9, 30))
    assert upcoming.appointment_id == second.appointment_id

    past = await appointment_crud.get_past_appointments_for_user("user_1", before=at(10, 0))
    assert [a.appointment_id for a in past] == [first.appointment_id]

    day = await appointment_crud.get_barber_appointments_for_day("main", "barber_1", MONDAY)
    assert [a.start_at for a in day] == [at(9, 0), at(10, 0), at(11, 0)]


@pytest.mark.asyncio
async def test_back_to_back_bookings_on_odd_minutes(db, customer, other_customer, make_appointment):
    first = slot_claim_keys("barber_1", at(9, 3), at(9, 33))
    second = slot_claim_keys("barber_1", at(9, 33), at(10, 3))
    assert not set(first) & set(second)

    await appointment_crud.create_appointment(make_appointment(at(9, 3)), customer)
    created = await appointment_crud.create_appointment(make_appointment(at(9, 33), user_id="user_2"), other_customer)
    assert created.appointment_id

    with pytest.raises(SlotUnavailableError):
        await appointment_crud.create_appointment(make_appointment(at(10, 2), user_id="user_2"), other_customer)


@pytest.mark.asyncio
async def test_reconcile_moves_claims_left_on_another_range(db, customer, make_appointment):
    created = await appointment_crud.create_appointment(make_appointment(at(9, 0)), customer)
    appointment_id = created.appointment_id

    # Same number of cells, wrong time: what a reschedule leaves behind when its record update fails
    await db.slot_claims.delete_many({"appointment_id": appointment_id})
    await db.slot_claims.insert_many([
        {"claim_key": key, "appointment_id": appointment_id, "barber_id": "barber_1"}
        for key in slot_claim_keys("barber_1", at(11, 0), at(11, 30))
    ])

    stats = await appointment_crud.reconcile_mirrors(appointment_id)

    assert stats["claims_fixed"] == 1
    claims = await db.slot_claims.find({"appointment_id": appointment_id}).to_list(length=None)
    assert sorted(c["claim_key"] for c in claims) == sorted(slot_claim_keys("barber_1", at(9, 0), at(9, 30)))


@pytest.mark.asyncio
async def test_failed_reschedule_write_leaves_claims_on_the_stored_time(db, customer, make_appointment):
    created = await appointment_crud.create_appointment(make_appointment(at(9, 0)), customer)

    with patch("crud.appointment_crud._update_mirrors", side_effect=PyMongoError("mirror write failed")):
        with pytest.raises(PyMongoError):
            await appointment_crud.reschedule_appointment(created.appointment_id, at(11, 0), customer)

    canonical = await db.appointments.find_one({"appointment_id": created.appointment_id})
    claims = await db.slot_claims.find({"appointment_id": created.appointment_id}).to_list(length=None)
    assert sorted(c["claim_key"] for c in claims) == \
        sorted(slot_claim_keys("barber_1", canonical["start_at"], canonical["end_at"]))
    user_mirror, barber_mirror = await mirrors_of(db, created.appointment_id)
    assert user_mirror["start_at"] == barber_mirror["start_at"] == canonical["start_at"]
