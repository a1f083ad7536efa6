from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from reservations import ledger
from reservations.db import get_db
from reservations.identity import Actor, get_actor
from routers.bookings import booking_out

router = APIRouter()


class PublishBody(BaseModel):
    resource_id: str
    start_time: datetime
    end_time: datetime
    max_slots: int = 1


class BookSlotBody(BaseModel):
    purpose: str = ""


def availability_out(a, taken=0):
    return {
        "id": a.id,
        "resource_id": a.resource_id,
        "publisher_id": a.publisher_id,
        "start_time": a.start_time,
        "end_time": a.end_time,
        "max_slots": a.max_slots,
        "slots_taken": taken,
        "slots_left": max(a.max_slots - taken, 0),
    }


@router.get("")
def list_availability(
    resource_id: str | None = Query(default=None),
    from_time: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
):
    windows = ledger.list_availability(db, resource_id=resource_id, from_time=from_time)
    return [availability_out(a, taken) for a, taken in windows]


@router.post("", status_code=201)
def publish_availability(body: PublishBody, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    a = ledger.publish_availability(db, actor, body.resource_id, body.start_time, body.end_time, body.max_slots)
    return availability_out(a)


@router.post("/{availability_id}/book", status_code=201)
def book_slot(availability_id: str, body: BookSlotBody,
              actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return booking_out(ledger.book_availability_slot(db, actor, availability_id, body.purpose))


@router.delete("/{availability_id}", status_code=204)
def delete_availability(availability_id: str, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    ledger.delete_availability(db, actor, availability_id)
    return Response(status_code=204)
