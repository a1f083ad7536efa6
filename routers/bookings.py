from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from reservations import ledger
from reservations.db import get_db
from reservations.identity import Actor, get_actor

router = APIRouter()


class RequestBookingBody(BaseModel):
    resource_id: str
    start_time: datetime
    end_time: datetime
    purpose: str = ""


class BookingStatusBody(BaseModel):
    status: str


def booking_out(b):
    return {
        "id": b.id,
        "resource_id": b.resource_id,
        "booker_id": b.booker_id,
        "booker_name": b.booker_name,
        "availability_id": b.availability_id,
        "start_time": b.start_time,
        "end_time": b.end_time,
        "purpose": b.purpose,
        "status": b.status,
    }


@router.get("")
def list_bookings(
    resource_id: str | None = Query(default=None),
    booker_id: str | None = Query(default=None),
    status: str | None = Query(default=None),
    mine: bool = Query(default=False),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """
    Bookings ordered by start time. Everyone sees the schedule of a resource;
    `mine=true` narrows to the caller's own bookings.
    """
    if mine:
        booker_id = actor.id
    bookings = ledger.list_bookings(db, resource_id=resource_id, booker_id=booker_id, status=status)
    return [booking_out(b) for b in bookings]


@router.post("", status_code=201)
def request_booking(body: RequestBookingBody, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    b = ledger.request_booking(db, actor, body.resource_id, body.start_time, body.end_time, body.purpose)
    return booking_out(b)


@router.get("/{booking_id}")
def get_booking(booking_id: str, db: Session = Depends(get_db)):
    return booking_out(ledger.get_booking(db, booking_id))


@router.post("/{booking_id}/status")
def set_booking_status(booking_id: str, body: BookingStatusBody,
                       actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return booking_out(ledger.set_booking_status(db, actor, booking_id, body.status))


@router.delete("/{booking_id}", status_code=204)
def withdraw_booking(booking_id: str, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    ledger.withdraw_booking(db, actor, booking_id)
    return Response(status_code=204)
