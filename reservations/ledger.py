"""
Bookings against studios, booths and rooms.

Two ways in:
  - request_booking: a Pending claim on any interval. Overlapping Pending
    requests may coexist; the first one approved wins.
  - book_availability_slot: a Confirmed seat in a staff-published window,
    first come first served up to the window's max_slots.

Approval and slot booking each commit as a single conditional statement
(UPDATE ... WHERE NOT EXISTS / INSERT ... SELECT ... WHERE) after locking the
resource or window row, so concurrent callers cannot both pass the check.
"""
import uuid
from datetime import datetime

import structlog
from sqlalchemy import DateTime, bindparam, func, select, text
from sqlalchemy.orm import Session

from reservations import audit
from reservations.db import lock_row
from reservations.errors import (
    HasActiveBookings, InvalidRange, InvalidTransition, NotFound, ResourceConflict, SlotFull,
    Unauthorized, ValidationError,
)
from reservations.identity import Actor, require_staff, resolve_name
from reservations.models import BOOKING_STATUSES, Availability, Booking, Resource, utcnow
from reservations.timeutil import overlaps, to_utc

logger = structlog.get_logger(__name__)

BOOKING_TRANSITIONS = {
    ("Pending", "Approved"),
    ("Pending", "Rejected"),
    ("Pending", "Cancelled"),
    ("Approved", "Cancelled"),
    ("Confirmed", "Cancelled"),
    ("Confirmed", "Completed"),
}
STAFF_ONLY_STATUSES = ("Approved", "Rejected", "Completed")
# Bookings that hold their interval on the resource
HOLDING_STATUSES = ("Approved", "Confirmed")
# Bookings that use up a slot of their availability window
SLOT_STATUSES = ("Confirmed", "Completed")
# Typed so the DateTime processor formats them like ORM-written columns
DATETIME_PARAMS = (
    bindparam("start_time", type_=DateTime),
    bindparam("end_time", type_=DateTime),
    bindparam("now", type_=DateTime),
)


def _interval(start_time: datetime, end_time: datetime) -> tuple[datetime, datetime]:
    start_time, end_time = to_utc(start_time), to_utc(end_time)
    if start_time >= end_time:
        raise InvalidRange("Start time must be before end time.")
    return start_time, end_time


def _describe(booking: Booking) -> str:
    return (f"{booking.start_time:%Y-%m-%d %H:%M}-{booking.end_time:%H:%M} "
            f"for {booking.booker_name or booking.booker_id}")


def get_booking(db: Session, booking_id: str) -> Booking:
    booking = db.get(Booking, booking_id)
    if booking is None:
        raise NotFound(f"Booking {booking_id} not found.")
    return booking


def list_bookings(db: Session, *, resource_id: str | None = None, booker_id: str | None = None,
                  status: str | None = None, availability_id: str | None = None) -> list[Booking]:
    stmt = select(Booking)
    if resource_id:
        stmt = stmt.where(Booking.resource_id == resource_id)
    if booker_id:
        stmt = stmt.where(Booking.booker_id == booker_id)
    if status:
        stmt = stmt.where(Booking.status == status)
    if availability_id:
        stmt = stmt.where(Booking.availability_id == availability_id)
    return list(db.scalars(stmt.order_by(Booking.start_time.asc(), Booking.created_at.asc())))


def find_conflicts(db: Session, booking: Booking) -> list[Booking]:
    """Bookings holding time on the same resource that overlap `booking`."""
    stmt = select(Booking).where(
        Booking.resource_id == booking.resource_id,
        Booking.id != booking.id,
        Booking.status.in_(HOLDING_STATUSES),
        Booking.start_time < booking.end_time,
        Booking.end_time > booking.start_time,
    )
    return [b for b in db.scalars(stmt)
            if overlaps(b.start_time, b.end_time, booking.start_time, booking.end_time)]


def find_window_conflicts(db: Session, window: Availability) -> list[Booking]:
    """Bookings outside `window` that hold time on its resource during it."""
    stmt = select(Booking).where(
        Booking.resource_id == window.resource_id,
        Booking.status.in_(HOLDING_STATUSES),
        (Booking.availability_id.is_(None)) | (Booking.availability_id != window.id),
        Booking.start_time < window.end_time,
        Booking.end_time > window.start_time,
    )
    return [b for b in db.scalars(stmt)
            if overlaps(b.start_time, b.end_time, window.start_time, window.end_time)]


def request_booking(db: Session, actor: Actor, resource_id: str, start_time: datetime,
                    end_time: datetime, purpose: str = "") -> Booking:
    start_time, end_time = _interval(start_time, end_time)
    booking_id = str(uuid.uuid4())

    try:
        res = db.execute(text("""
            INSERT INTO bookings (id, resource_id, booker_id, booker_name, start_time, end_time,
                                  purpose, status, created_at)
            SELECT :booking_id, r.id, :booker_id, :booker_name, :start_time, :end_time,
                   :purpose, 'Pending', :now
            FROM resources r
            WHERE r.id = :resource_id AND r.is_active = :active
        """).bindparams(*DATETIME_PARAMS), {
            "booking_id": booking_id,
            "resource_id": resource_id,
            "booker_id": actor.id,
            "booker_name": resolve_name(db, actor.id, actor.role),
            "start_time": start_time,
            "end_time": end_time,
            "purpose": (purpose or "").strip(),
            "now": utcnow(),
            "active": True,
        })
        if res.rowcount != 1:
            db.rollback()
            raise NotFound(f"Resource {resource_id} not found.")
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Booking requested", booking_id=booking_id, resource_id=resource_id,
                start_time=start_time.isoformat(), end_time=end_time.isoformat())
    return get_booking(db, booking_id)


def _authorize_transition(actor: Actor, booking: Booking, new_status: str) -> None:
    if new_status in STAFF_ONLY_STATUSES:
        require_staff(actor, f"mark bookings {new_status}")
    elif new_status == "Cancelled" and not actor.is_staff and actor.id != booking.booker_id:
        raise Unauthorized("Only the booker or staff may cancel a booking.")


def set_booking_status(db: Session, actor: Actor, booking_id: str, new_status: str) -> Booking:
    """
    Apply one booking transition and log it against the resource.

    Approving re-checks overlap inside the same UPDATE that flips the status,
    with the resource row locked, so two overlapping requests can never both
    end up Approved.
    """
    if new_status not in BOOKING_STATUSES:
        raise ValidationError(f"Unknown booking status {new_status!r}.")
    booking = get_booking(db, booking_id)
    prior = booking.status
    if (prior, new_status) not in BOOKING_TRANSITIONS:
        raise InvalidTransition(f"Cannot move booking from {prior} to {new_status}.")
    _authorize_transition(actor, booking, new_status)

    try:
        if new_status == "Approved":
            lock_row(db, "resources", booking.resource_id)
            res = db.execute(text("""
                UPDATE bookings SET status = 'Approved'
                WHERE id = :booking_id AND status = 'Pending'
                AND NOT EXISTS (
                    SELECT 1 FROM bookings o
                    WHERE o.resource_id = bookings.resource_id
                      AND o.id <> bookings.id
                      AND o.status IN ('Approved', 'Confirmed')
                      AND o.start_time < bookings.end_time
                      AND bookings.start_time < o.end_time
                )
            """), {"booking_id": booking_id})
            if res.rowcount != 1:
                db.rollback()
                booking = get_booking(db, booking_id)
                if booking.status != "Pending":
                    raise InvalidTransition(f"Booking {booking_id} is no longer Pending.")
                clashing = find_conflicts(db, booking)
                logger.info("Approval refused, time overlap", booking_id=booking_id,
                            resource_id=booking.resource_id, conflicts=[b.id for b in clashing])
                raise ResourceConflict(
                    "Overlaps an existing booking on this resource"
                    + (f" ({_describe(clashing[0])})." if clashing else ".")
                )
        else:
            res = db.execute(text("""
                UPDATE bookings SET status = :new_status
                WHERE id = :booking_id AND status = :prior
            """), {"new_status": new_status, "booking_id": booking_id, "prior": prior})
            if res.rowcount != 1:
                db.rollback()
                raise InvalidTransition(f"Booking {booking_id} is no longer {prior}.")

        audit.record(db, resource_id=booking.resource_id, user_id=actor.id,
                     user_name=resolve_name(db, actor.id, actor.role), type="Usage",
                     note=f"{new_status} booking {_describe(booking)}")
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Booking status changed", booking_id=booking_id, prior=prior, status=new_status)
    return get_booking(db, booking_id)


def withdraw_booking(db: Session, actor: Actor, booking_id: str) -> None:
    """Booker deletes their own request before staff have acted on it."""
    try:
        res = db.execute(text("""
            DELETE FROM bookings
            WHERE id = :booking_id AND booker_id = :booker_id AND status = 'Pending'
        """), {"booking_id": booking_id, "booker_id": actor.id})
        if res.rowcount != 1:
            db.rollback()
            booking = get_booking(db, booking_id)
            if booking.booker_id != actor.id:
                raise Unauthorized("Only the booker may withdraw a request.")
            raise InvalidTransition(f"Booking is {booking.status}; only Pending requests can be withdrawn.")
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Booking withdrawn", booking_id=booking_id)


# —— Availability windows ——

def get_availability(db: Session, availability_id: str) -> Availability:
    window = db.get(Availability, availability_id)
    if window is None:
        raise NotFound(f"Availability {availability_id} not found.")
    return window


def list_availability(db: Session, resource_id: str | None = None,
                      from_time: datetime | None = None) -> list[tuple[Availability, int]]:
    """Windows with the number of slots already taken, earliest first."""
    taken = (
        select(Booking.availability_id, func.count(Booking.id).label("taken"))
        .where(Booking.status.in_(SLOT_STATUSES))
        .group_by(Booking.availability_id)
        .subquery()
    )
    stmt = (
        select(Availability, func.coalesce(taken.c.taken, 0))
        .outerjoin(taken, taken.c.availability_id == Availability.id)
    )
    if resource_id:
        stmt = stmt.where(Availability.resource_id == resource_id)
    if from_time:
        stmt = stmt.where(Availability.end_time > to_utc(from_time))
    return [(window, count) for window, count in db.execute(stmt.order_by(Availability.start_time))]


def publish_availability(db: Session, actor: Actor, resource_id: str, start_time: datetime,
                         end_time: datetime, max_slots: int) -> Availability:
    require_staff(actor, "publish availability")
    start_time, end_time = _interval(start_time, end_time)
    if not isinstance(max_slots, int) or isinstance(max_slots, bool) or max_slots < 1:
        raise ValidationError("max_slots must be a positive integer.")
    resource = db.get(Resource, resource_id)
    if resource is None or not resource.is_active:
        raise NotFound(f"Resource {resource_id} not found.")

    window = Availability(
        id=str(uuid.uuid4()),
        resource_id=resource_id,
        publisher_id=actor.id,
        start_time=start_time,
        end_time=end_time,
        max_slots=max_slots,
    )
    db.add(window)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Availability published", availability_id=window.id, resource_id=resource_id,
                max_slots=max_slots)
    return window


def book_availability_slot(db: Session, actor: Actor, availability_id: str, purpose: str = "") -> Booking:
    """Take one slot of a window. Confirmed immediately; staff pre-authorised the window."""
    booking_id = str(uuid.uuid4())
    try:
        # Same lock as approval, so slots and approvals on one resource serialize
        lock_row(db, "resources", get_availability(db, availability_id).resource_id)
        lock_row(db, "availability", availability_id)
        res = db.execute(text("""
            INSERT INTO bookings (id, resource_id, booker_id, booker_name, availability_id,
                                  start_time, end_time, purpose, status, created_at)
            SELECT :booking_id, a.resource_id, :booker_id, :booker_name, a.id,
                   a.start_time, a.end_time, :purpose, 'Confirmed', :now
            FROM availability a
            JOIN resources r ON r.id = a.resource_id
            WHERE a.id = :availability_id AND r.is_active = :active
            AND (
                SELECT COUNT(*) FROM bookings b
                WHERE b.availability_id = a.id AND b.status IN ('Confirmed', 'Completed')
            ) < a.max_slots
            AND NOT EXISTS (
                SELECT 1 FROM bookings b
                WHERE b.availability_id = a.id AND b.booker_id = :booker_id
                  AND b.status IN ('Confirmed', 'Completed')
            )
            AND NOT EXISTS (
                SELECT 1 FROM bookings o
                WHERE o.resource_id = a.resource_id
                  AND o.status IN ('Approved', 'Confirmed')
                  AND (o.availability_id IS NULL OR o.availability_id <> a.id)
                  AND o.start_time < a.end_time
                  AND a.start_time < o.end_time
            )
        """).bindparams(bindparam("now", type_=DateTime)), {
            "booking_id": booking_id,
            "availability_id": availability_id,
            "booker_id": actor.id,
            "booker_name": resolve_name(db, actor.id, actor.role),
            "purpose": (purpose or "").strip(),
            "now": utcnow(),
            "active": True,
        })

        if res.rowcount != 1:
            db.rollback()
            window = get_availability(db, availability_id)
            resource = db.get(Resource, window.resource_id)
            if resource is None or not resource.is_active:
                raise NotFound(f"Resource {window.resource_id} not found.")
            mine = list_bookings(db, availability_id=availability_id, booker_id=actor.id)
            if any(b.status in SLOT_STATUSES for b in mine):
                raise ResourceConflict("You already hold a slot in this window.")
            clashing = find_window_conflicts(db, window)
            if clashing:
                raise ResourceConflict(
                    f"This window overlaps another booking on the resource ({_describe(clashing[0])})."
                )
            logger.info("Slot booking refused, window full", availability_id=availability_id,
                        max_slots=window.max_slots)
            raise SlotFull(f"All {window.max_slots} slots in this window are taken.")

        booking = get_booking(db, booking_id)
        audit.record(db, resource_id=booking.resource_id, user_id=actor.id,
                     user_name=booking.booker_name, type="Usage",
                     note=f"Confirmed slot booking {_describe(booking)}")
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Slot booked", booking_id=booking_id, availability_id=availability_id)
    return get_booking(db, booking_id)


def delete_availability(db: Session, actor: Actor, availability_id: str) -> None:
    """
    Remove a window that nobody currently holds a slot in.

    Refused with HasActiveBookings while Confirmed bookings reference it;
    finished or cancelled bookings keep their interval and lose the link.
    """
    require_staff(actor, "delete availability")
    try:
        lock_row(db, "availability", availability_id)
        get_availability(db, availability_id)
        res = db.execute(text("""
            DELETE FROM availability
            WHERE id = :availability_id
            AND NOT EXISTS (
                SELECT 1 FROM bookings b
                WHERE b.availability_id = :availability_id AND b.status = 'Confirmed'
            )
        """), {"availability_id": availability_id})
        if res.rowcount != 1:
            db.rollback()
            live = len(list_bookings(db, availability_id=availability_id, status="Confirmed"))
            raise HasActiveBookings(f"{live} confirmed booking(s) still hold slots in this window.")
        db.execute(text("""
            UPDATE bookings SET availability_id = NULL WHERE availability_id = :availability_id
        """), {"availability_id": availability_id})
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Availability deleted", availability_id=availability_id)
