"""
Equipment loans and the available-quantity pool behind them.

`available_qty` is only ever moved by conditional UPDATE statements whose
affected-row count decides success, each inside the same transaction as the
loan row it pays for. Nothing here reads a quantity, computes a new one and
writes it back.
"""
import uuid
from datetime import datetime

import structlog
from sqlalchemy import select, text
from sqlalchemy.orm import Session

from reservations import audit
from reservations.db import lock_row
from reservations.errors import (
    CapacityViolation, InsufficientStock, InvalidTransition, NotFound, ValidationError,
)
from reservations.identity import Actor, require_staff, resolve_name
from reservations.models import LOAN_STATUSES, Equipment, EquipmentLoan, utcnow
from reservations.timeutil import to_utc

logger = structlog.get_logger(__name__)

# Stored transitions. Overdue is a view of Active, so Overdue -> Returned is Active -> Returned.
LOAN_TRANSITIONS = {
    ("Pending", "Active"),
    ("Pending", "Rejected"),
    ("Active", "Returned"),
}
# Statuses in which the loan's qty is held out of the pool
HOLDING_STATUSES = ("Pending", "Active")
RELEASING_STATUSES = ("Rejected", "Returned")


def is_overdue(loan: EquipmentLoan, now: datetime | None = None) -> bool:
    return loan.status == "Active" and loan.return_date < (now or utcnow())


def display_status(loan: EquipmentLoan, now: datetime | None = None) -> str:
    """Status as readers see it: an Active loan past its return date reads as Overdue."""
    return "Overdue" if is_overdue(loan, now) else loan.status


def _positive_int(value, label: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise ValidationError(f"{label} must be a positive integer.")
    return value


def get_loan(db: Session, loan_id: str) -> EquipmentLoan:
    loan = db.get(EquipmentLoan, loan_id)
    if loan is None:
        raise NotFound(f"Loan {loan_id} not found.")
    return loan


def list_loans(db: Session, *, equipment_id: str | None = None, user_id: str | None = None,
               status: str | None = None, now: datetime | None = None) -> list[EquipmentLoan]:
    now = now or utcnow()
    stmt = select(EquipmentLoan)
    if equipment_id:
        stmt = stmt.where(EquipmentLoan.equipment_id == equipment_id)
    if user_id:
        stmt = stmt.where(EquipmentLoan.user_id == user_id)
    if status == "Overdue":
        stmt = stmt.where(EquipmentLoan.status == "Active", EquipmentLoan.return_date < now)
    elif status == "Active":
        stmt = stmt.where(EquipmentLoan.status == "Active", EquipmentLoan.return_date >= now)
    elif status:
        stmt = stmt.where(EquipmentLoan.status == status)
    return list(db.scalars(stmt.order_by(EquipmentLoan.request_date.desc())))


def request_loan(db: Session, actor: Actor, equipment_id: str, qty: int,
                 return_date: datetime, now: datetime | None = None) -> EquipmentLoan:
    """
    Reserve `qty` units for the acting user and open a Pending loan.

    The decrement and the loan insert share one transaction: if either fails
    the whole unit rolls back and the pool is untouched.
    """
    qty = _positive_int(qty, "Quantity")
    now = now or utcnow()
    return_date = to_utc(return_date)
    if return_date < now:
        raise ValidationError("Return date cannot be in the past.")

    try:
        res = db.execute(text("""
            UPDATE equipment SET available_qty = available_qty - :qty
            WHERE id = :equipment_id AND is_active = :active AND available_qty >= :qty
        """), {"qty": qty, "equipment_id": equipment_id, "active": True})

        if res.rowcount != 1:
            db.rollback()
            item = db.get(Equipment, equipment_id)
            if item is None or not item.is_active:
                raise NotFound(f"Equipment {equipment_id} not found.")
            logger.info("Loan refused, not enough stock", equipment_id=equipment_id,
                        requested=qty, available=item.available_qty)
            raise InsufficientStock(
                f"Only {item.available_qty} of {item.name} available, {qty} requested."
            )

        loan = EquipmentLoan(
            id=str(uuid.uuid4()),
            equipment_id=equipment_id,
            user_id=actor.id,
            user_name=resolve_name(db, actor.id, actor.role),
            request_date=now,
            return_date=return_date,
            qty=qty,
            status="Pending",
        )
        db.add(loan)
        db.flush()
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Loan requested", loan_id=loan.id, equipment_id=equipment_id, qty=qty)
    return loan


def set_loan_status(db: Session, actor: Actor, loan_id: str, new_status: str) -> EquipmentLoan:
    """
    Move a loan along Pending -> Active|Rejected, Active -> Returned.

    The status write is a compare-and-set on the status we read, so a retried
    or concurrent Returned/Rejected finds the loan already moved and fails with
    InvalidTransition instead of crediting the pool a second time.
    """
    require_staff(actor, "change loan status")
    if new_status == "Overdue":
        raise InvalidTransition("Overdue is derived from the return date and cannot be set.")
    if new_status not in LOAN_STATUSES:
        raise ValidationError(f"Unknown loan status {new_status!r}.")

    loan = get_loan(db, loan_id)
    prior = loan.status
    if (prior, new_status) not in LOAN_TRANSITIONS:
        raise InvalidTransition(f"Cannot move loan from {prior} to {new_status}.")

    try:
        res = db.execute(text("""
            UPDATE equipment_loans SET status = :new_status
            WHERE id = :loan_id AND status = :prior
        """), {"new_status": new_status, "loan_id": loan_id, "prior": prior})
        if res.rowcount != 1:
            db.rollback()
            raise InvalidTransition(f"Loan {loan_id} is no longer {prior}.")

        if new_status in RELEASING_STATUSES and prior in HOLDING_STATUSES:
            res = db.execute(text("""
                UPDATE equipment SET available_qty = available_qty + :qty
                WHERE id = :equipment_id AND available_qty + :qty <= total_qty
            """), {"qty": loan.qty, "equipment_id": loan.equipment_id})
            if res.rowcount != 1:
                db.rollback()
                raise CapacityViolation(
                    f"Releasing {loan.qty} would exceed the total quantity of {loan.equipment_id}."
                )

        staff_name = resolve_name(db, actor.id, actor.role)
        if new_status == "Returned":
            note = f"Returned {loan.qty}x by {loan.user_name}"
        elif new_status == "Rejected":
            note = f"Rejected loan of {loan.qty}x for {loan.user_name}"
        else:
            note = f"Loaned {loan.qty}x to {loan.user_name}"
        audit.record(db, equipment_id=loan.equipment_id, user_id=actor.id, user_name=staff_name,
                     type="Usage", note=note)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Loan status changed", loan_id=loan_id, prior=prior, status=new_status)
    return get_loan(db, loan_id)


def adjust_catalog_quantity(db: Session, actor: Actor, equipment_id: str, new_total_qty: int) -> Equipment:
    """
    Resize an item's declared stock, moving available_qty by the same delta.

    Refused with CapacityViolation when more units are out on loan than the
    new total allows.
    """
    require_staff(actor, "resize equipment stock")
    if not isinstance(new_total_qty, int) or isinstance(new_total_qty, bool) or new_total_qty < 0:
        raise ValidationError("Total quantity must be a non-negative integer.")

    try:
        lock_row(db, "equipment", equipment_id)
        item = db.get(Equipment, equipment_id)
        if item is None:
            raise NotFound(f"Equipment {equipment_id} not found.")
        old_total = item.total_qty

        res = db.execute(text("""
            UPDATE equipment
            SET available_qty = available_qty + (:new_total - total_qty),
                total_qty = :new_total
            WHERE id = :equipment_id AND available_qty + (:new_total - total_qty) >= 0
        """), {"new_total": new_total_qty, "equipment_id": equipment_id})
        if res.rowcount != 1:
            db.rollback()
            item = get_equipment_fresh(db, equipment_id)
            on_loan = item.total_qty - item.available_qty
            raise CapacityViolation(
                f"{on_loan} units of {item.name} are on loan; total cannot drop to {new_total_qty}."
            )

        audit.record(db, equipment_id=equipment_id, user_id=actor.id,
                     user_name=resolve_name(db, actor.id, actor.role), type="Maintenance",
                     note=f"Total quantity changed from {old_total} to {new_total_qty}")
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Equipment stock resized", equipment_id=equipment_id,
                old_total=old_total, new_total=new_total_qty)
    return get_equipment_fresh(db, equipment_id)


def get_equipment_fresh(db: Session, equipment_id: str) -> Equipment:
    item = db.get(Equipment, equipment_id, populate_existing=True)
    if item is None:
        raise NotFound(f"Equipment {equipment_id} not found.")
    return item
