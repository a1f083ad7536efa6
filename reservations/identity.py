from dataclasses import dataclass

from fastapi import Header
from sqlalchemy.orm import Session

from reservations.config import config
from reservations.errors import Unauthorized
from reservations.log import bind_actor
from reservations.models import User


@dataclass(frozen=True)
class Actor:
    """The acting user as vouched for by the external auth layer."""
    id: str
    role: str

    @property
    def is_staff(self) -> bool:
        return self.role in config.STAFF_ROLES


def require_staff(actor: Actor, action: str) -> None:
    if not actor.is_staff:
        raise Unauthorized(f"Only staff may {action}.")


def get_actor(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Actor:
    if not x_user_id or not x_user_role:
        raise Unauthorized("Missing acting user headers.")
    role = x_user_role.lower()
    if role not in config.ROLES:
        raise Unauthorized(f"Unknown role {x_user_role!r}.")
    bind_actor(actor_id=x_user_id, actor_role=role)
    return Actor(id=x_user_id, role=role)


def resolve_name(db: Session, user_id: str, role: str | None = None) -> str:
    """Display name for stamping onto records; never used for any check."""
    user = db.get(User, user_id)
    if user is not None:
        return user.name
    return "Staff" if role in config.STAFF_ROLES else "Student"
