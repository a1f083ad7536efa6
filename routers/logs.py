from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from reservations import audit
from reservations.db import get_db
from reservations.identity import Actor, get_actor

router = APIRouter()


class LogEntryBody(BaseModel):
    type: str
    note: str
    resource_id: str | None = None
    equipment_id: str | None = None


def log_out(entry):
    return {
        "id": entry.id,
        "resource_id": entry.resource_id,
        "equipment_id": entry.equipment_id,
        "user_id": entry.user_id,
        "user_name": entry.user_name,
        "date": entry.date,
        "note": entry.note,
        "type": entry.type,
    }


@router.get("")
def list_logs(
    resource_id: str | None = Query(default=None),
    equipment_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    entries = audit.list_logs(db, resource_id=resource_id, equipment_id=equipment_id)
    return [log_out(e) for e in entries]


@router.post("", status_code=201)
def add_log_entry(body: LogEntryBody, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    entry = audit.add_manual_entry(db, actor, type=body.type, note=body.note,
                                   resource_id=body.resource_id, equipment_id=body.equipment_id)
    return log_out(entry)
