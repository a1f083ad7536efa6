from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from reservations import inventory
from reservations.db import get_db
from reservations.errors import Unauthorized
from reservations.identity import Actor, get_actor
from reservations.models import utcnow

router = APIRouter()


class RequestLoanBody(BaseModel):
    equipment_id: str
    qty: int = 1
    return_date: datetime


class LoanStatusBody(BaseModel):
    status: str


def loan_out(loan, now=None):
    return {
        "id": loan.id,
        "equipment_id": loan.equipment_id,
        "user_id": loan.user_id,
        "user_name": loan.user_name,
        "request_date": loan.request_date,
        "return_date": loan.return_date,
        "qty": loan.qty,
        "status": inventory.display_status(loan, now),
    }


@router.get("")
def list_loans(
    equipment_id: str | None = Query(default=None),
    user_id: str | None = Query(default=None),
    status: str | None = Query(default=None),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """
    Loans with their read-time status. Students only ever see their own;
    `status=Overdue` selects Active loans past their return date.
    """
    if not actor.is_staff:
        user_id = actor.id
    now = utcnow()
    loans = inventory.list_loans(db, equipment_id=equipment_id, user_id=user_id, status=status, now=now)
    return [loan_out(l, now) for l in loans]


@router.post("", status_code=201)
def request_loan(body: RequestLoanBody, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    loan = inventory.request_loan(db, actor, body.equipment_id, body.qty, body.return_date)
    return loan_out(loan)


@router.get("/{loan_id}")
def get_loan(loan_id: str, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    loan = inventory.get_loan(db, loan_id)
    if not actor.is_staff and loan.user_id != actor.id:
        raise Unauthorized("You can only view your own loans.")
    return loan_out(loan)


@router.post("/{loan_id}/status")
def set_loan_status(loan_id: str, body: LoanStatusBody,
                    actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return loan_out(inventory.set_loan_status(db, actor, loan_id, body.status))
