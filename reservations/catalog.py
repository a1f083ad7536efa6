"""Registry of bookable studios, booths, rooms and equipment SKUs."""
import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from reservations.errors import NotFound, ValidationError
from reservations.identity import Actor, require_staff
from reservations.models import EQUIPMENT_CATEGORIES, RESOURCE_KINDS, Equipment, Resource

logger = structlog.get_logger(__name__)

RESOURCE_FIELDS = ("name", "kind", "description", "capacity", "equipment")
EQUIPMENT_FIELDS = ("name", "category")


def _check_resource_fields(fields: dict) -> None:
    if "name" in fields and not (fields["name"] or "").strip():
        raise ValidationError("Resource name is required.")
    if "kind" in fields and fields["kind"] not in RESOURCE_KINDS:
        raise ValidationError(f"Resource kind must be one of {', '.join(RESOURCE_KINDS)}.")
    if "capacity" in fields:
        capacity = fields["capacity"]
        if not isinstance(capacity, int) or isinstance(capacity, bool) or capacity < 1:
            raise ValidationError("Capacity must be a positive integer.")


def _check_equipment_fields(fields: dict) -> None:
    if "name" in fields and not (fields["name"] or "").strip():
        raise ValidationError("Equipment name is required.")
    if "category" in fields and fields["category"] not in EQUIPMENT_CATEGORIES:
        raise ValidationError(f"Category must be one of {', '.join(EQUIPMENT_CATEGORIES)}.")


def _commit(db: Session, obj):
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(obj)
    return obj


# —— Time-based resources ——

def get_resource(db: Session, resource_id: str, active_only: bool = False) -> Resource:
    resource = db.get(Resource, resource_id)
    if resource is None or (active_only and not resource.is_active):
        raise NotFound(f"Resource {resource_id} not found.")
    return resource


def list_resources(db: Session, include_inactive: bool = False) -> list[Resource]:
    stmt = select(Resource).order_by(Resource.name)
    if not include_inactive:
        stmt = stmt.where(Resource.is_active.is_(True))
    return list(db.scalars(stmt))


def create_resource(db: Session, actor: Actor, *, name: str, capacity: int, kind: str = "Studio",
                    description: str | None = None, equipment: list[str] | None = None) -> Resource:
    require_staff(actor, "create resources")
    _check_resource_fields({"name": name, "kind": kind, "capacity": capacity})
    resource = Resource(
        id=str(uuid.uuid4()),
        name=name.strip(),
        kind=kind,
        description=description,
        capacity=capacity,
        equipment=list(equipment or []),
        is_active=True,
    )
    db.add(resource)
    _commit(db, resource)
    logger.info("Resource created", resource_id=resource.id, kind=kind)
    return resource


def update_resource(db: Session, actor: Actor, resource_id: str, changes: dict) -> Resource:
    require_staff(actor, "edit resources")
    unknown = set(changes) - set(RESOURCE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown resource fields: {', '.join(sorted(unknown))}.")
    _check_resource_fields(changes)
    resource = get_resource(db, resource_id)
    for field, value in changes.items():
        if field == "name":
            value = value.strip()
        elif field == "equipment":
            value = list(value or [])
        setattr(resource, field, value)
    return _commit(db, resource)


def deactivate_resource(db: Session, actor: Actor, resource_id: str) -> Resource:
    """Hide a resource from new bookings; existing bookings and history stay as they are."""
    require_staff(actor, "deactivate resources")
    resource = get_resource(db, resource_id)
    resource.is_active = False
    _commit(db, resource)
    logger.info("Resource deactivated", resource_id=resource_id)
    return resource


# —— Equipment ——

def get_equipment(db: Session, equipment_id: str, active_only: bool = False) -> Equipment:
    item = db.get(Equipment, equipment_id)
    if item is None or (active_only and not item.is_active):
        raise NotFound(f"Equipment {equipment_id} not found.")
    return item


def list_equipment(db: Session, include_inactive: bool = False, category: str | None = None) -> list[Equipment]:
    stmt = select(Equipment).order_by(Equipment.name)
    if not include_inactive:
        stmt = stmt.where(Equipment.is_active.is_(True))
    if category:
        stmt = stmt.where(Equipment.category == category)
    return list(db.scalars(stmt))


def create_equipment(db: Session, actor: Actor, *, name: str, total_qty: int,
                     category: str = "Other") -> Equipment:
    require_staff(actor, "create equipment")
    _check_equipment_fields({"name": name, "category": category})
    if not isinstance(total_qty, int) or isinstance(total_qty, bool) or total_qty < 0:
        raise ValidationError("Total quantity must be a non-negative integer.")
    item = Equipment(
        id=str(uuid.uuid4()),
        name=name.strip(),
        category=category,
        total_qty=total_qty,
        available_qty=total_qty,
        is_active=True,
    )
    db.add(item)
    _commit(db, item)
    logger.info("Equipment created", equipment_id=item.id, total_qty=total_qty)
    return item


def update_equipment(db: Session, actor: Actor, equipment_id: str, changes: dict) -> Equipment:
    """Rename or recategorise; quantities only move through inventory.adjust_catalog_quantity."""
    require_staff(actor, "edit equipment")
    unknown = set(changes) - set(EQUIPMENT_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown equipment fields: {', '.join(sorted(unknown))}.")
    _check_equipment_fields(changes)
    item = get_equipment(db, equipment_id)
    for field, value in changes.items():
        setattr(item, field, value.strip() if field == "name" else value)
    return _commit(db, item)


def deactivate_equipment(db: Session, actor: Actor, equipment_id: str) -> Equipment:
    require_staff(actor, "deactivate equipment")
    item = get_equipment(db, equipment_id)
    item.is_active = False
    _commit(db, item)
    logger.info("Equipment deactivated", equipment_id=equipment_id)
    return item
