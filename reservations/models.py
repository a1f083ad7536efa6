from datetime import datetime, timezone

from sqlalchemy import (
    JSON, Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, Text,
)

from reservations.db import Base

RESOURCE_KINDS = ("Studio", "Booth", "Room")
EQUIPMENT_CATEGORIES = ("Microphone", "Instrument", "Cable", "Interface", "Other")

# Stored statuses. Overdue is never stored: see inventory.display_status
BOOKING_STATUSES = ("Pending", "Approved", "Rejected", "Cancelled", "Confirmed", "Completed")
LOAN_STATUSES = ("Pending", "Active", "Returned", "Rejected")
LOG_TYPES = ("Usage", "Damage", "Maintenance")


def utcnow() -> datetime:
    """Naive UTC timestamp; every datetime column holds naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _in(column, values):
    return f"{column} in ({','.join(repr(v) for v in values)})"


class User(Base):
    __tablename__ = "users"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True)
    created_at = Column(DateTime, default=utcnow)


class Resource(Base):
    """A time-based bookable: studio, booth or room."""
    __tablename__ = "resources"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    kind = Column(String, nullable=False, default="Studio")
    description = Column(Text)
    capacity = Column(Integer, nullable=False)
    equipment = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint("capacity > 0", name="resource_capacity_positive"),
        CheckConstraint(_in("kind", RESOURCE_KINDS), name="resource_kind_valid"),
    )


class Equipment(Base):
    """A quantity-based bookable SKU."""
    __tablename__ = "equipment"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    category = Column(String, nullable=False, default="Other")
    total_qty = Column(Integer, nullable=False)
    available_qty = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint("available_qty >= 0 AND available_qty <= total_qty", name="equipment_qty_bounds"),
        CheckConstraint(_in("category", EQUIPMENT_CATEGORIES), name="equipment_category_valid"),
    )


class Availability(Base):
    """A window published by staff; each booking against it consumes one slot."""
    __tablename__ = "availability"
    id = Column(String, primary_key=True)
    resource_id = Column(String, ForeignKey("resources.id"), nullable=False)
    publisher_id = Column(String, nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    max_slots = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="availability_time_valid"),
        CheckConstraint("max_slots > 0", name="availability_slots_positive"),
    )


class Booking(Base):
    __tablename__ = "bookings"
    id = Column(String, primary_key=True)
    resource_id = Column(String, ForeignKey("resources.id"), nullable=False)
    booker_id = Column(String, nullable=False)
    booker_name = Column(String)
    availability_id = Column(String, ForeignKey("availability.id", ondelete="SET NULL"))
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    purpose = Column(Text, nullable=False, default="")
    status = Column(String, nullable=False, default="Pending")
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="booking_time_valid"),
        CheckConstraint(_in("status", BOOKING_STATUSES), name="booking_status_valid"),
        Index("ix_bookings_resource_status", "resource_id", "status"),
        Index("ix_bookings_availability", "availability_id"),
    )


class EquipmentLoan(Base):
    __tablename__ = "equipment_loans"
    id = Column(String, primary_key=True)
    equipment_id = Column(String, ForeignKey("equipment.id"), nullable=False)
    user_id = Column(String, nullable=False)
    user_name = Column(String)
    request_date = Column(DateTime, nullable=False)
    return_date = Column(DateTime, nullable=False)
    qty = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="Pending")

    __table_args__ = (
        CheckConstraint("qty > 0", name="loan_qty_positive"),
        CheckConstraint(_in("status", LOAN_STATUSES), name="loan_status_valid"),
    )


class EquipmentLog(Base):
    """Append-only audit entry against exactly one studio resource or equipment item."""
    __tablename__ = "equipment_logs"
    # Integer so entries written in one instant still read back in insertion order
    id = Column(Integer, primary_key=True, autoincrement=True)
    resource_id = Column(String, ForeignKey("resources.id"))
    equipment_id = Column(String, ForeignKey("equipment.id"))
    user_id = Column(String, nullable=False)
    user_name = Column(String)
    date = Column(DateTime, nullable=False, default=utcnow)
    note = Column(Text, nullable=False)
    type = Column(String, nullable=False)

    __table_args__ = (
        CheckConstraint("(resource_id IS NULL) <> (equipment_id IS NULL)", name="log_single_target"),
        CheckConstraint(_in("type", LOG_TYPES), name="log_type_valid"),
    )
