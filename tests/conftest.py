# tests/conftest.py
import os
import tempfile
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from reservations.db import Base, get_db
from reservations.identity import Actor
from reservations.main import app
from reservations.models import Availability, Equipment, Resource, User, utcnow


@pytest.fixture(scope="function")
def test_engine():
    os.environ["SKIP_DB_INIT"] = "1"

    # temp DB
    tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    tmp.close()
    engine = create_engine(f"sqlite:///{tmp.name}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()
        os.unlink(tmp.name)


@pytest.fixture(scope="function")
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def test_db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(test_db_session):
    def override_get_db():
        try:
            yield test_db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


# —— Acting users ——
@pytest.fixture
def student():
    return Actor(id="u-student", role="student")


@pytest.fixture
def other_student():
    return Actor(id="u-other", role="student")


@pytest.fixture
def teacher():
    return Actor(id="u-teacher", role="teacher")


@pytest.fixture
def headers():
    def _headers(actor):
        return {"X-User-Id": actor.id, "X-User-Role": actor.role}
    return _headers


@pytest.fixture
def at():
    """Naive UTC datetime on a fixed future day, e.g. at(10, 30)."""
    day = utcnow().replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=7)

    def _at(hour, minute=0):
        return day + timedelta(hours=hour, minutes=minute)
    return _at


# —— Factories ——
@pytest.fixture
def make_user(test_db_session):
    def _make_user(user_id="u-student", name="Sam Student", email=None):
        u = User(id=user_id, name=name, email=email or f"{user_id}@example.com")
        test_db_session.add(u)
        test_db_session.commit()
        return u
    return _make_user


@pytest.fixture
def make_resource(test_db_session):
    def _make_resource(resource_id="studio-a", name="Studio A", kind="Studio", capacity=10, is_active=True):
        r = Resource(id=resource_id, name=name, kind=kind, capacity=capacity, equipment=[], is_active=is_active)
        test_db_session.add(r)
        test_db_session.commit()
        return r
    return _make_resource


@pytest.fixture
def make_equipment(test_db_session):
    def _make_equipment(equipment_id="sm58", name="Shure SM58", category="Microphone",
                        total_qty=5, available_qty=None, is_active=True):
        e = Equipment(id=equipment_id, name=name, category=category, total_qty=total_qty,
                      available_qty=total_qty if available_qty is None else available_qty,
                      is_active=is_active)
        test_db_session.add(e)
        test_db_session.commit()
        return e
    return _make_equipment


@pytest.fixture
def make_availability(test_db_session, make_resource, at):
    def _make_availability(availability_id="av-1", resource_id=None, start=None, end=None, max_slots=2):
        if resource_id is None:
            resource_id = make_resource().id
        start = start or at(14)
        end = end or (start + timedelta(hours=1))
        a = Availability(id=availability_id, resource_id=resource_id, publisher_id="u-teacher",
                         start_time=start, end_time=end, max_slots=max_slots)
        test_db_session.add(a)
        test_db_session.commit()
        return a
    return _make_availability
