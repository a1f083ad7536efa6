"""
Audit trail for studios and equipment.

Entries are only ever inserted. `record` does not commit: callers append the
entry inside the same transaction as the state change it describes, so a
rolled-back transition leaves no log line behind.
"""
import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from reservations.errors import NotFound, ValidationError
from reservations.identity import Actor, require_staff, resolve_name
from reservations.models import LOG_TYPES, Equipment, EquipmentLog, Resource, utcnow

logger = structlog.get_logger(__name__)


def record(db: Session, *, user_id: str, type: str, note: str,
           resource_id: str | None = None, equipment_id: str | None = None,
           user_name: str | None = None) -> EquipmentLog:
    if (resource_id is None) == (equipment_id is None):
        raise ValidationError("A log entry targets exactly one of resource_id or equipment_id.")
    if type not in LOG_TYPES:
        raise ValidationError(f"Log type must be one of {', '.join(LOG_TYPES)}.")
    if not note or not note.strip():
        raise ValidationError("Log note is required.")

    entry = EquipmentLog(
        resource_id=resource_id,
        equipment_id=equipment_id,
        user_id=user_id,
        user_name=user_name if user_name is not None else resolve_name(db, user_id),
        date=utcnow(),
        note=note.strip(),
        type=type,
    )
    db.add(entry)
    db.flush()
    logger.info("Audit entry recorded", log_type=type, resource_id=resource_id,
                equipment_id=equipment_id, user_id=user_id)
    return entry


def add_manual_entry(db: Session, actor: Actor, *, type: str, note: str,
                     resource_id: str | None = None, equipment_id: str | None = None) -> EquipmentLog:
    """Staff note such as a damage report or a maintenance visit."""
    require_staff(actor, "write log entries")
    if resource_id is not None and db.get(Resource, resource_id) is None:
        raise NotFound(f"Resource {resource_id} not found.")
    if equipment_id is not None and db.get(Equipment, equipment_id) is None:
        raise NotFound(f"Equipment {equipment_id} not found.")
    try:
        entry = record(db, user_id=actor.id, type=type, note=note,
                       resource_id=resource_id, equipment_id=equipment_id,
                       user_name=resolve_name(db, actor.id, actor.role))
        db.commit()
    except Exception:
        db.rollback()
        raise
    return entry


def list_logs(db: Session, *, resource_id: str | None = None,
              equipment_id: str | None = None) -> list[EquipmentLog]:
    if (resource_id is None) == (equipment_id is None):
        raise ValidationError("Filter by exactly one of resource_id or equipment_id.")
    stmt = select(EquipmentLog)
    if resource_id is not None:
        stmt = stmt.where(EquipmentLog.resource_id == resource_id)
    else:
        stmt = stmt.where(EquipmentLog.equipment_id == equipment_id)
    return list(db.scalars(stmt.order_by(EquipmentLog.date.asc(), EquipmentLog.id.asc())))
