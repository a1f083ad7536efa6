from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from reservations import catalog, inventory
from reservations.db import get_db
from reservations.identity import Actor, get_actor

router = APIRouter()


class CreateEquipmentBody(BaseModel):
    name: str
    total_qty: int
    category: str = "Other"


class UpdateEquipmentBody(BaseModel):
    name: str | None = None
    category: str | None = None


class QuantityBody(BaseModel):
    total_qty: int


def equipment_out(e):
    return {
        "id": e.id,
        "name": e.name,
        "category": e.category,
        "total_qty": e.total_qty,
        "available_qty": e.available_qty,
        "is_active": e.is_active,
    }


@router.get("")
def list_equipment(
    include_inactive: bool = Query(default=False),
    category: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    items = catalog.list_equipment(db, include_inactive=include_inactive, category=category)
    return [equipment_out(e) for e in items]


@router.post("", status_code=201)
def create_equipment(body: CreateEquipmentBody, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return equipment_out(catalog.create_equipment(db, actor, **body.model_dump()))


@router.get("/{equipment_id}")
def get_equipment(equipment_id: str, db: Session = Depends(get_db)):
    return equipment_out(catalog.get_equipment(db, equipment_id))


@router.patch("/{equipment_id}")
def update_equipment(equipment_id: str, body: UpdateEquipmentBody,
                     actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    e = catalog.update_equipment(db, actor, equipment_id, body.model_dump(exclude_unset=True))
    return equipment_out(e)


@router.put("/{equipment_id}/quantity")
def adjust_quantity(equipment_id: str, body: QuantityBody,
                    actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    """Resize total stock; refused while more units are on loan than the new total."""
    return equipment_out(inventory.adjust_catalog_quantity(db, actor, equipment_id, body.total_qty))


@router.post("/{equipment_id}/deactivate")
def deactivate_equipment(equipment_id: str, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return equipment_out(catalog.deactivate_equipment(db, actor, equipment_id))
