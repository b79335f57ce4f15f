from typing import Dict, List, Optional, Union
from schemas.appointment import (
    AppointmentCreate, Appointment, AppointmentCreated, AppointmentStatus, AvailabilityCheck,
    ACTIVE_STATUSES, generate_appointment_id, slot_claim_keys
)
from schemas.auth import AuthContext
from schemas.slot import BusyRange
from config.database import Database
from config.settings import settings
from services.availability import overlaps
from services.exceptions import (
    ConsistencyError, ForbiddenError, NotFoundError, SlotUnavailableError, StatusTransitionError
)
from services.notification_service import NotificationService
from datetime import date, datetime, time, timedelta
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import BulkWriteError, DuplicateKeyError, PyMongoError
import logging

# Set up logging
logger = logging.getLogger(__name__)

STATUS_TRANSITIONS = {
    AppointmentStatus.PENDING: {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELED},
    AppointmentStatus.CONFIRMED: {AppointmentStatus.CANCELED},
}

# Fields that identify the owner of each mirror collection
MIRRORS = (
    ("user_appointments", "user_id"),
    ("barber_appointments", "barber_id"),
)


def _day_bounds(moment: Union[date, datetime]):
    day = moment.date() if isinstance(moment, datetime) else moment
    day_start = datetime.combine(day, time.min)
    return day_start, day_start + timedelta(days=1)


def _to_appointment(doc: dict) -> Appointment:
    return Appointment(**{k: v for k, v in doc.items() if k != "_id"})


def _mirror_doc(doc: dict) -> dict:
    return {k: v for k, v in doc.items() if k != "_id"}


def _is_participant(actor: AuthContext, doc: dict) -> bool:
    if actor.is_barber:
        return doc["barber_id"] == actor.user_id
    return doc["user_id"] == actor.user_id


async def get_busy_ranges(shop_id: str, barber_id: str, day: datetime,
                          exclude_id: Optional[str] = None, session=None) -> List[BusyRange]:
    """Time held by PENDING/CONFIRMED appointments of a barber on the day of ``day``."""
    db = Database()
    day_start, day_end = _day_bounds(day)

    query = {
        "shop_id": shop_id,
        "barber_id": barber_id,
        "status": {"$in": ACTIVE_STATUSES},
        "start_at": {"$gte": day_start, "$lt": day_end},
    }
    if exclude_id:
        query["appointment_id"] = {"$ne": exclude_id}

    appointments = await db.appointments.find(query, session=session) \
        .sort("start_at", ASCENDING) \
        .limit(settings.busy_query_limit) \
        .to_list(length=None)
    return [BusyRange(start_at=a["start_at"], end_at=a["end_at"]) for a in appointments]


async def check_availability(shop_id: str, barber_id: str, start_at: datetime, end_at: datetime,
                             exclude_id: Optional[str] = None, session=None) -> AvailabilityCheck:
    busy_ranges = await get_busy_ranges(shop_id, barber_id, start_at, exclude_id=exclude_id, session=session)
    for busy in busy_ranges:
        if overlaps(start_at, end_at, busy.start_at, busy.end_at):
            return AvailabilityCheck(available=False)
    return AvailabilityCheck(available=True)


async def _claim_slot(db: Database, appointment_id: str, barber_id: str,
                      start_at: datetime, end_at: datetime, session=None):
    """Claim the time cells of [start_at, end_at) for an appointment.

    Cells the appointment already holds are kept; a cell held by another
    appointment means the slot is taken.
    """
    wanted = slot_claim_keys(barber_id, start_at, end_at)
    held = await db.slot_claims.find({"appointment_id": appointment_id}, session=session).to_list(length=None)
    held_keys = {claim["claim_key"] for claim in held}

    missing = [key for key in wanted if key not in held_keys]
    if missing:
        now = datetime.now()
        try:
            await db.slot_claims.insert_many(
                [{"claim_key": key, "appointment_id": appointment_id, "barber_id": barber_id, "created_at": now}
                 for key in missing],
                ordered=True,
                session=session
            )
        except (DuplicateKeyError, BulkWriteError):
            if session is None:
                # Give back whatever part of the range this attempt managed to claim
                await db.slot_claims.delete_many(
                    {"appointment_id": appointment_id, "claim_key": {"$in": missing}}
                )
            raise SlotUnavailableError()

    stale = [key for key in held_keys if key not in set(wanted)]
    if stale:
        await db.slot_claims.delete_many(
            {"appointment_id": appointment_id, "claim_key": {"$in": stale}}, session=session
        )


async def _release_slot(db: Database, appointment_id: str, session=None):
    await db.slot_claims.delete_many({"appointment_id": appointment_id}, session=session)


async def _write_mirrors(db: Database, doc: dict, session=None):
    mirror = _mirror_doc(doc)
    for collection_name, owner_field in MIRRORS:
        await getattr(db, collection_name).replace_one(
            {owner_field: doc[owner_field], "appointment_id": doc["appointment_id"]},
            mirror,
            upsert=True,
            session=session
        )


async def _update_mirrors(db: Database, doc: dict, changes: dict, session=None):
    for collection_name, owner_field in MIRRORS:
        await getattr(db, collection_name).update_one(
            {owner_field: doc[owner_field], "appointment_id": doc["appointment_id"]},
            {"$set": changes},
            session=session
        )


async def _notify(db: Database, recipient_id: str, appointment_id: str, status: str):
    try:
        await NotificationService(db).send_appointment_status_notification(recipient_id, appointment_id, status)
    except PyMongoError as e:
        # Notifications never fail a committed booking
        logger.error(f"Error sending notification for appointment {appointment_id}: {str(e)}", exc_info=True)


async def create_appointment(appointment: AppointmentCreate, actor: AuthContext) -> AppointmentCreated:
    """Create a PENDING appointment plus its user and barber mirrors.

    The overlap check runs again here, inside the same unit of work as the
    writes, so a slot grabbed by someone else since the grid was rendered is
    rejected with SLOT_NO_LONGER_AVAILABLE.
    """
    if actor.is_barber:
        if actor.user_id != appointment.barber_id:
            raise ForbiddenError("Barbers can only book appointments for themselves")
    elif actor.user_id != appointment.user_id:
        raise ForbiddenError("Customers can only book appointments for themselves")

    db = Database()
    appointment_id = generate_appointment_id(appointment.shop_id, appointment.user_id)
    now = datetime.now()

    appointment_dict = appointment.model_dump()
    appointment_dict.update({
        "appointment_id": appointment_id,
        "status": AppointmentStatus.PENDING.value,
        "created_at": now,
        "updated_at": now,
    })

    async def _commit(session):
        check = await check_availability(
            appointment.shop_id, appointment.barber_id, appointment.start_at, appointment.end_at,
            session=session
        )
        if not check.available:
            raise SlotUnavailableError()

        await _claim_slot(db, appointment_id, appointment.barber_id,
                          appointment.start_at, appointment.end_at, session=session)
        await db.appointments.insert_one(dict(appointment_dict), session=session)
        await _write_mirrors(db, appointment_dict, session=session)

    try:
        if db.use_transactions:
            await db.run_in_transaction(_commit)
        else:
            await _commit_without_transaction(db, appointment_dict, _commit)
    except SlotUnavailableError:
        logger.warning(
            f"Slot {appointment.start_at:%Y-%m-%d %H:%M} for barber {appointment.barber_id} is no longer available"
        )
        raise
    except (DuplicateKeyError, BulkWriteError):
        logger.warning(f"Concurrent booking detected for barber {appointment.barber_id}")
        raise SlotUnavailableError()

    logger.info(
        f"Created appointment {appointment_id} for barber {appointment.barber_id} "
        f"at {appointment.start_at:%Y-%m-%d %H:%M}"
    )
    await _notify(db, appointment.barber_id, appointment_id, AppointmentStatus.PENDING.value)
    return AppointmentCreated(appointment_id=appointment_id)


async def _commit_without_transaction(db: Database, appointment_dict: dict, commit):
    """Run the booking writes and undo them if they only partly succeed."""
    appointment_id = appointment_dict["appointment_id"]
    try:
        await commit(None)
    except SlotUnavailableError:
        raise
    except PyMongoError as e:
        logger.error(f"Partial write for appointment {appointment_id}: {str(e)}", exc_info=True)
        try:
            await db.appointments.update_one(
                {"appointment_id": appointment_id, "user_id": appointment_dict["user_id"],
                 "barber_id": appointment_dict["barber_id"]},
                {"$set": {"status": AppointmentStatus.CANCELED.value, "updated_at": datetime.now()}}
            )
            await _release_slot(db, appointment_id)
            await reconcile_mirrors(appointment_id)
        except PyMongoError as repair_error:
            logger.error(
                f"Could not compensate appointment {appointment_id}, run reconcile_mirrors: {str(repair_error)}",
                exc_info=True
            )
        raise ConsistencyError(f"Appointment {appointment_id} could not be stored completely") from e


async def get_appointment(appointment_id: str) -> Optional[Appointment]:
    db = Database()
    appointment = await db.appointments.find_one({"appointment_id": appointment_id})
    return _to_appointment(appointment) if appointment else None


async def set_status(appointment_id: str, status: AppointmentStatus, actor: AuthContext) -> Appointment:
    """Move an appointment through PENDING -> CONFIRMED -> CANCELED.

    Canonical record and both mirrors get the same status and updated_at.
    Canceling keeps the record and frees its time.
    """
    db = Database()
    status = AppointmentStatus(status)

    async def _apply(session):
        current = await db.appointments.find_one({"appointment_id": appointment_id}, session=session)
        if not current:
            raise NotFoundError(f"Appointment {appointment_id} not found")

        if not _is_participant(actor, current):
            raise ForbiddenError()
        if status == AppointmentStatus.CONFIRMED and not actor.is_barber:
            raise ForbiddenError("Only the barber can confirm an appointment")

        current_status = AppointmentStatus(current["status"])
        if status not in STATUS_TRANSITIONS.get(current_status, set()):
            raise StatusTransitionError(current_status.value, status.value)

        changes = {"status": status.value, "updated_at": datetime.now()}
        result = await db.appointments.update_one(
            {"appointment_id": appointment_id, "status": current["status"]},
            {"$set": changes},
            session=session
        )
        if not result.modified_count:
            # Someone else changed the status between our read and write
            latest = await db.appointments.find_one({"appointment_id": appointment_id}, session=session)
            raise StatusTransitionError(AppointmentStatus(latest["status"]).value, status.value)

        if status == AppointmentStatus.CANCELED:
            await _release_slot(db, appointment_id, session=session)
        await _update_mirrors(db, current, changes, session=session)

        current.update(changes)
        return current

    if db.use_transactions:
        updated = await db.run_in_transaction(_apply)
    else:
        updated = await _apply_without_transaction(appointment_id, _apply)

    logger.info(f"Appointment {appointment_id} is now {status.value}")
    recipient = updated["user_id"] if actor.is_barber else updated["barber_id"]
    await _notify(db, recipient, appointment_id, status.value)
    return _to_appointment(updated)


async def _apply_without_transaction(appointment_id: str, apply):
    try:
        return await apply(None)
    except PyMongoError as e:
        logger.error(f"Partial update for appointment {appointment_id}: {str(e)}", exc_info=True)
        try:
            # The canonical record is the source of truth
            await reconcile_mirrors(appointment_id)
        except PyMongoError as repair_error:
            logger.error(f"Reconciliation for {appointment_id} failed: {str(repair_error)}", exc_info=True)
            raise ConsistencyError(f"Appointment {appointment_id} was only partly updated") from e
        raise


async def confirm_appointment(appointment_id: str, actor: AuthContext) -> Appointment:
    return await set_status(appointment_id, AppointmentStatus.CONFIRMED, actor)


async def cancel_appointment(appointment_id: str, actor: AuthContext) -> Appointment:
    return await set_status(appointment_id, AppointmentStatus.CANCELED, actor)


async def reschedule_appointment(appointment_id: str, new_start_at: datetime, actor: AuthContext) -> Appointment:
    """Move an active appointment to a new start, keeping its duration."""
    db = Database()

    async def _apply(session):
        current = await db.appointments.find_one({"appointment_id": appointment_id}, session=session)
        if not current:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        if not _is_participant(actor, current):
            raise ForbiddenError()

        current_status = AppointmentStatus(current["status"])
        if current_status.value not in ACTIVE_STATUSES:
            raise StatusTransitionError(current_status.value, "RESCHEDULED")

        duration = current["service_snapshot"]["duration_minutes"]
        new_end_at = new_start_at + timedelta(minutes=duration)

        check = await check_availability(
            current["shop_id"], current["barber_id"], new_start_at, new_end_at,
            exclude_id=appointment_id, session=session
        )
        if not check.available:
            raise SlotUnavailableError()

        await _claim_slot(db, appointment_id, current["barber_id"], new_start_at, new_end_at, session=session)

        changes = {"start_at": new_start_at, "end_at": new_end_at, "updated_at": datetime.now()}
        result = await db.appointments.update_one(
            {"appointment_id": appointment_id, "status": {"$in": ACTIVE_STATUSES}},
            {"$set": changes},
            session=session
        )
        if not result.matched_count:
            raise StatusTransitionError(AppointmentStatus.CANCELED.value, "RESCHEDULED")
        await _update_mirrors(db, current, changes, session=session)

        current.update(changes)
        return current

    try:
        if db.use_transactions:
            updated = await db.run_in_transaction(_apply)
        else:
            updated = await _apply_without_transaction(appointment_id, _apply)
    except (DuplicateKeyError, BulkWriteError):
        raise SlotUnavailableError()

    logger.info(f"Appointment {appointment_id} moved to {new_start_at:%Y-%m-%d %H:%M}")
    recipient = updated["user_id"] if actor.is_barber else updated["barber_id"]
    await _notify(db, recipient, appointment_id, "RESCHEDULED")
    return _to_appointment(updated)


async def reconcile_mirrors(appointment_id: Optional[str] = None) -> Dict[str, int]:
    """Repair mirrors and slot claims from the canonical appointments.

    Missing or stale mirrors are rewritten, mirrors without a canonical record
    are removed, and claims follow the canonical status. Safe to run again.
    """
    db = Database()
    query = {"appointment_id": appointment_id} if appointment_id else {}
    stats = {"checked": 0, "repaired": 0, "removed": 0, "claims_fixed": 0}

    appointments = await db.appointments.find(query).to_list(length=None)
    known_ids = set()
    for doc in appointments:
        stats["checked"] += 1
        known_ids.add(doc["appointment_id"])
        mirror = _mirror_doc(doc)

        for collection_name, owner_field in MIRRORS:
            existing = await getattr(db, collection_name).find_one(
                {owner_field: doc[owner_field], "appointment_id": doc["appointment_id"]}
            )
            if existing is None or _mirror_doc(existing) != mirror:
                await getattr(db, collection_name).replace_one(
                    {owner_field: doc[owner_field], "appointment_id": doc["appointment_id"]},
                    mirror,
                    upsert=True
                )
                stats["repaired"] += 1

        claims = await db.slot_claims.find({"appointment_id": doc["appointment_id"]}).to_list(length=None)
        held = {claim["claim_key"] for claim in claims}
        if AppointmentStatus(doc["status"]).value in ACTIVE_STATUSES:
            # Same number of cells on another range still counts as drift
            expected = set(slot_claim_keys(doc["barber_id"], doc["start_at"], doc["end_at"]))
            if held != expected:
                try:
                    await _claim_slot(db, doc["appointment_id"], doc["barber_id"], doc["start_at"], doc["end_at"])
                    stats["claims_fixed"] += 1
                except SlotUnavailableError:
                    logger.error(f"Appointment {doc['appointment_id']} overlaps another active appointment")
        elif held:
            await _release_slot(db, doc["appointment_id"])
            stats["claims_fixed"] += 1

    for collection_name, _ in MIRRORS:
        mirrors = await getattr(db, collection_name).find(query).to_list(length=None)
        for mirror in mirrors:
            if mirror["appointment_id"] in known_ids:
                continue
            if await db.appointments.find_one({"appointment_id": mirror["appointment_id"]}):
                continue
            await getattr(db, collection_name).delete_one({"_id": mirror["_id"]})
            stats["removed"] += 1

    if stats["repaired"] or stats["removed"] or stats["claims_fixed"]:
        logger.info(f"Mirror reconciliation: {stats}")
    return stats


async def list_user_appointments(user_id: str, limit: int = 50) -> List[Appointment]:
    db = Database()
    appointments = await db.user_appointments.find({"user_id": user_id}) \
        .sort("start_at", DESCENDING).limit(limit).to_list(length=None)
    return [_to_appointment(appointment) for appointment in appointments]


async def list_barber_appointments(barber_id: str, status: Optional[AppointmentStatus] = None,
                                   page_size: int = 30) -> List[Appointment]:
    """A barber's appointments, newest first."""
    db = Database()
    query = {"barber_id": barber_id}
    if status:
        query["status"] = AppointmentStatus(status).value

    appointments = await db.barber_appointments.find(query) \
        .sort("start_at", DESCENDING).limit(page_size).to_list(length=None)
    return [_to_appointment(appointment) for appointment in appointments]


async def get_upcoming_appointment_for_user(user_id: str, now: Optional[datetime] = None) -> Optional[Appointment]:
    db = Database()
    now = now or datetime.now()
    appointments = await db.appointments.find({
        "user_id": user_id,
        "status": {"$in": ACTIVE_STATUSES},
        "start_at": {"$gte": now}
    }).sort("start_at", ASCENDING).limit(1).to_list(length=None)
    return _to_appointment(appointments[0]) if appointments else None


async def get_past_appointments_for_user(user_id: str, before: Optional[datetime] = None,
                                         limit: int = 10) -> List[Appointment]:
    db = Database()
    before = before or datetime.now()
    appointments = await db.appointments.find({
        "user_id": user_id,
        "start_at": {"$lt": before}
    }).sort("start_at", DESCENDING).limit(limit).to_list(length=None)
    return [_to_appointment(appointment) for appointment in appointments]


async def get_barber_appointments_for_day(shop_id: str, barber_id: str, day: Union[date, datetime]) -> List[Appointment]:
    """Active appointments of a barber on one calendar day, in start order."""
    db = Database()
    day_start, day_end = _day_bounds(day)
    appointments = await db.appointments.find({
        "shop_id": shop_id,
        "barber_id": barber_id,
        "status": {"$in": ACTIVE_STATUSES},
        "start_at": {"$gte": day_start, "$lt": day_end}
    }).sort("start_at", ASCENDING).limit(settings.busy_query_limit).to_list(length=None)
    return [_to_appointment(appointment) for appointment in appointments]


async def list_barber_appointments_in_range(barber_id: str, start: datetime, end: datetime,
                                            limit: int = 1000) -> List[Appointment]:
    db = Database()
    appointments = await db.appointments.find({
        "barber_id": barber_id,
        "start_at": {"$gte": start, "$lt": end}
    }).sort("start_at", ASCENDING).limit(limit).to_list(length=None)
    return [_to_appointment(appointment) for appointment in appointments]
