from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from reservations import catalog
from reservations.db import get_db
from reservations.identity import Actor, get_actor

router = APIRouter()


class CreateResourceBody(BaseModel):
    name: str
    capacity: int
    kind: str = "Studio"
    description: str | None = None
    equipment: list[str] = []


class UpdateResourceBody(BaseModel):
    name: str | None = None
    kind: str | None = None
    description: str | None = None
    capacity: int | None = None
    equipment: list[str] | None = None


def resource_out(r):
    return {
        "id": r.id,
        "name": r.name,
        "kind": r.kind,
        "description": r.description,
        "capacity": r.capacity,
        "equipment": r.equipment or [],
        "is_active": r.is_active,
    }


@router.get("")
def list_resources(include_inactive: bool = Query(default=False), db: Session = Depends(get_db)):
    return [resource_out(r) for r in catalog.list_resources(db, include_inactive=include_inactive)]


@router.post("", status_code=201)
def create_resource(body: CreateResourceBody, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    r = catalog.create_resource(db, actor, **body.model_dump())
    return resource_out(r)


@router.get("/{resource_id}")
def get_resource(resource_id: str, db: Session = Depends(get_db)):
    return resource_out(catalog.get_resource(db, resource_id))


@router.patch("/{resource_id}")
def update_resource(resource_id: str, body: UpdateResourceBody,
                    actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    r = catalog.update_resource(db, actor, resource_id, body.model_dump(exclude_unset=True))
    return resource_out(r)


@router.post("/{resource_id}/deactivate")
def deactivate_resource(resource_id: str, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return resource_out(catalog.deactivate_resource(db, actor, resource_id))
