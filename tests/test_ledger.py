import threading
from datetime import timedelta
from itertools import combinations

import pytest

from reservations import audit, catalog, ledger
from reservations.errors import (
    HasActiveBookings, InvalidRange, InvalidTransition, NotFound, ResourceConflict, SlotFull,
    Unauthorized, ValidationError,
)
from reservations.identity import Actor
from reservations.models import Availability, Booking
from reservations.timeutil import overlaps


def test_overlapping_approval_conflicts_but_adjacent_succeeds(test_db_session, make_resource, student,
                                                              other_student, teacher, at):
    studio = make_resource()
    first = ledger.request_booking(test_db_session, student, studio.id, at(10), at(11), "Band rehearsal")
    ledger.set_booking_status(test_db_session, teacher, first.id, "Approved")

    overlapping = ledger.request_booking(test_db_session, other_student, studio.id, at(10, 30), at(11, 30))
    assert overlapping.status == "Pending"
    with pytest.raises(ResourceConflict):
        ledger.set_booking_status(test_db_session, teacher, overlapping.id, "Approved")
    assert ledger.get_booking(test_db_session, overlapping.id).status == "Pending"

    adjacent = ledger.request_booking(test_db_session, other_student, studio.id, at(11), at(12))
    approved = ledger.set_booking_status(test_db_session, teacher, adjacent.id, "Approved")
    assert approved.status == "Approved"


def test_overlapping_pending_requests_coexist(test_db_session, make_resource, student, other_student, at):
    studio = make_resource()
    a = ledger.request_booking(test_db_session, student, studio.id, at(9), at(12))
    b = ledger.request_booking(test_db_session, other_student, studio.id, at(10), at(11))
    pending = ledger.list_bookings(test_db_session, resource_id=studio.id, status="Pending")
    assert [x.id for x in pending] == [a.id, b.id]


def test_bookings_on_other_resources_do_not_conflict(test_db_session, make_resource, student, teacher, at):
    a = make_resource("studio-a")
    b = make_resource("studio-b", name="Studio B", kind="Booth", capacity=2)
    first = ledger.request_booking(test_db_session, student, a.id, at(10), at(11))
    second = ledger.request_booking(test_db_session, student, b.id, at(10), at(11))
    ledger.set_booking_status(test_db_session, teacher, first.id, "Approved")
    assert ledger.set_booking_status(test_db_session, teacher, second.id, "Approved").status == "Approved"


def test_invalid_range(test_db_session, make_resource, student, at):
    studio = make_resource()
    with pytest.raises(InvalidRange):
        ledger.request_booking(test_db_session, student, studio.id, at(11), at(10))
    with pytest.raises(ValidationError):
        ledger.request_booking(test_db_session, student, studio.id, at(11), at(11))
    assert test_db_session.query(Booking).count() == 0


def test_unknown_or_inactive_resource(test_db_session, make_resource, student, at):
    make_resource("old-room", name="Old Room", kind="Room", is_active=False)
    with pytest.raises(NotFound):
        ledger.request_booking(test_db_session, student, "no-such-room", at(10), at(11))
    with pytest.raises(NotFound):
        ledger.request_booking(test_db_session, student, "old-room", at(10), at(11))


def test_deactivation_keeps_existing_bookings(test_db_session, make_resource, student, teacher, at):
    studio = make_resource()
    booking = ledger.request_booking(test_db_session, student, studio.id, at(10), at(11))
    catalog.deactivate_resource(test_db_session, teacher, studio.id)

    assert ledger.get_booking(test_db_session, booking.id).status == "Pending"
    assert ledger.set_booking_status(test_db_session, teacher, booking.id, "Approved").status == "Approved"


def test_state_machine(test_db_session, make_resource, student, teacher, at):
    studio = make_resource()
    booking = ledger.request_booking(test_db_session, student, studio.id, at(10), at(11))
    ledger.set_booking_status(test_db_session, teacher, booking.id, "Rejected")

    for status in ("Approved", "Cancelled", "Pending", "Rejected"):
        with pytest.raises(InvalidTransition):
            ledger.set_booking_status(test_db_session, teacher, booking.id, status)

    with pytest.raises(ValidationError):
        ledger.set_booking_status(test_db_session, teacher, booking.id, "Booked")


def test_approving_twice_is_an_invalid_transition(test_db_session, make_resource, student, teacher, at):
    studio = make_resource()
    booking = ledger.request_booking(test_db_session, student, studio.id, at(10), at(11))
    ledger.set_booking_status(test_db_session, teacher, booking.id, "Approved")
    with pytest.raises(InvalidTransition):
        ledger.set_booking_status(test_db_session, teacher, booking.id, "Approved")


def test_cancelling_frees_the_interval(test_db_session, make_resource, student, other_student, teacher, at):
    studio = make_resource()
    first = ledger.request_booking(test_db_session, student, studio.id, at(10), at(11))
    second = ledger.request_booking(test_db_session, other_student, studio.id, at(10), at(11))
    ledger.set_booking_status(test_db_session, teacher, first.id, "Approved")

    ledger.set_booking_status(test_db_session, student, first.id, "Cancelled")
    assert ledger.set_booking_status(test_db_session, teacher, second.id, "Approved").status == "Approved"


def test_transition_permissions(test_db_session, make_resource, student, other_student, at):
    studio = make_resource()
    booking = ledger.request_booking(test_db_session, student, studio.id, at(10), at(11))

    with pytest.raises(Unauthorized):
        ledger.set_booking_status(test_db_session, student, booking.id, "Approved")
    with pytest.raises(Unauthorized):
        ledger.set_booking_status(test_db_session, other_student, booking.id, "Cancelled")
    assert ledger.set_booking_status(test_db_session, student, booking.id, "Cancelled").status == "Cancelled"


def test_transitions_are_logged_against_the_resource(test_db_session, make_resource, make_user,
                                                     student, teacher, at):
    make_user("u-teacher", "Ms Teacher")
    studio = make_resource()
    a = ledger.request_booking(test_db_session, student, studio.id, at(10), at(11))
    b = ledger.request_booking(test_db_session, student, studio.id, at(12), at(13))
    ledger.set_booking_status(test_db_session, teacher, a.id, "Approved")
    ledger.set_booking_status(test_db_session, teacher, b.id, "Rejected")
    ledger.set_booking_status(test_db_session, teacher, a.id, "Cancelled")

    entries = audit.list_logs(test_db_session, resource_id=studio.id)
    assert [e.note.split()[0] for e in entries] == ["Approved", "Rejected", "Cancelled"]
    assert {e.user_name for e in entries} == {"Ms Teacher"}


def test_withdraw_pending_request(test_db_session, make_resource, student, other_student, teacher, at):
    studio = make_resource()
    booking_id = ledger.request_booking(test_db_session, student, studio.id, at(10), at(11)).id

    with pytest.raises(Unauthorized):
        ledger.withdraw_booking(test_db_session, other_student, booking_id)

    ledger.withdraw_booking(test_db_session, student, booking_id)
    with pytest.raises(NotFound):
        ledger.get_booking(test_db_session, booking_id)

    approved = ledger.request_booking(test_db_session, student, studio.id, at(12), at(13))
    ledger.set_booking_status(test_db_session, teacher, approved.id, "Approved")
    with pytest.raises(InvalidTransition):
        ledger.withdraw_booking(test_db_session, student, approved.id)


def test_approved_bookings_never_overlap(test_db_session, make_resource, teacher, at):
    studio = make_resource()
    windows = [(9, 11), (10, 12), (11, 13), (12, 14), (8, 9), (13, 15), (9, 10), (14, 16)]
    for n, (start, end) in enumerate(windows):
        booking = ledger.request_booking(test_db_session, Actor(id=f"u-{n}", role="student"),
                                         studio.id, at(start), at(end))
        try:
            ledger.set_booking_status(test_db_session, teacher, booking.id, "Approved")
        except ResourceConflict:
            pass

    approved = ledger.list_bookings(test_db_session, resource_id=studio.id, status="Approved")
    assert [(b.start_time.hour, b.end_time.hour) for b in approved] == [(8, 9), (9, 11), (11, 13), (13, 15)]
    for a, b in combinations(approved, 2):
        assert not overlaps(a.start_time, a.end_time, b.start_time, b.end_time)


def test_concurrent_approvals_of_overlapping_requests(test_db_session, session_factory, make_resource,
                                                      student, other_student, teacher, at):
    studio = make_resource()
    ids = [ledger.request_booking(test_db_session, student, studio.id, at(10), at(12)).id,
           ledger.request_booking(test_db_session, other_student, studio.id, at(11), at(13)).id]
    outcomes = []
    lock = threading.Lock()

    def approve(booking_id):
        db = session_factory()
        try:
            ledger.set_booking_status(db, teacher, booking_id, "Approved")
            result = "ok"
        except ResourceConflict:
            result = "refused"
        finally:
            db.close()
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=approve, args=(i,)) for i in ids]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    test_db_session.expire_all()
    assert sorted(outcomes) == ["ok", "refused"]
    approved = ledger.list_bookings(test_db_session, resource_id=studio.id, status="Approved")
    assert len(approved) == 1


def test_request_next_to_a_slot_window_can_be_approved(test_db_session, make_resource, make_availability,
                                                       student, other_student, teacher, at):
    studio = make_resource()
    window = make_availability(resource_id=studio.id, start=at(9), end=at(10), max_slots=1)
    ledger.book_availability_slot(test_db_session, student, window.id)

    after = ledger.request_booking(test_db_session, other_student, studio.id, at(10), at(11))
    assert ledger.set_booking_status(test_db_session, teacher, after.id, "Approved").status == "Approved"

    before = ledger.request_booking(test_db_session, other_student, studio.id, at(8), at(9))
    assert ledger.set_booking_status(test_db_session, teacher, before.id, "Approved").status == "Approved"


# —— Availability slots ——

def test_window_fills_up_after_max_slots(test_db_session, make_availability, at):
    window = make_availability(max_slots=2)
    students = [Actor(id=f"u-{n}", role="student") for n in range(3)]

    first = ledger.book_availability_slot(test_db_session, students[0], window.id, "Mixing")
    second = ledger.book_availability_slot(test_db_session, students[1], window.id)
    assert first.status == second.status == "Confirmed"
    assert (first.start_time, first.end_time) == (at(14), at(15))
    assert first.resource_id == window.resource_id

    with pytest.raises(SlotFull):
        ledger.book_availability_slot(test_db_session, students[2], window.id)

    [(listed, taken)] = ledger.list_availability(test_db_session)
    assert listed.id == window.id
    assert taken == 2


def test_one_slot_per_student_per_window(test_db_session, make_availability, student):
    window = make_availability(max_slots=3)
    ledger.book_availability_slot(test_db_session, student, window.id)
    with pytest.raises(ResourceConflict):
        ledger.book_availability_slot(test_db_session, student, window.id)


def test_cancelled_slot_is_released(test_db_session, make_availability, student, other_student):
    window = make_availability(max_slots=1)
    booking = ledger.book_availability_slot(test_db_session, student, window.id)
    ledger.set_booking_status(test_db_session, student, booking.id, "Cancelled")

    again = ledger.book_availability_slot(test_db_session, other_student, window.id)
    assert again.status == "Confirmed"


def test_completed_slot_still_counts(test_db_session, make_availability, student, other_student, teacher):
    window = make_availability(max_slots=1)
    booking = ledger.book_availability_slot(test_db_session, student, window.id)
    ledger.set_booking_status(test_db_session, teacher, booking.id, "Completed")
    with pytest.raises(SlotFull):
        ledger.book_availability_slot(test_db_session, other_student, window.id)


def test_slot_booking_needs_existing_window(test_db_session, make_resource, make_availability, student, teacher):
    with pytest.raises(NotFound):
        ledger.book_availability_slot(test_db_session, student, "no-such-window")

    studio = make_resource()
    window = make_availability(resource_id=studio.id)
    catalog.deactivate_resource(test_db_session, teacher, studio.id)
    with pytest.raises(NotFound):
        ledger.book_availability_slot(test_db_session, student, window.id)


def test_approval_conflicts_with_confirmed_slots(test_db_session, make_resource, make_availability,
                                                 student, other_student, teacher, at):
    studio = make_resource()
    window = make_availability(resource_id=studio.id, start=at(14), end=at(16))
    ledger.book_availability_slot(test_db_session, student, window.id)

    request = ledger.request_booking(test_db_session, other_student, studio.id, at(15), at(17))
    with pytest.raises(ResourceConflict):
        ledger.set_booking_status(test_db_session, teacher, request.id, "Approved")


def test_slot_refused_over_an_approved_booking(test_db_session, make_resource, make_availability,
                                               student, other_student, teacher, at):
    studio = make_resource()
    request = ledger.request_booking(test_db_session, student, studio.id, at(10), at(11))
    ledger.set_booking_status(test_db_session, teacher, request.id, "Approved")

    clashing = make_availability("av-clash", resource_id=studio.id, start=at(10, 30), end=at(11, 30),
                                 max_slots=1)
    with pytest.raises(ResourceConflict):
        ledger.book_availability_slot(test_db_session, other_student, clashing.id)
    assert test_db_session.query(Booking).count() == 1

    adjacent = make_availability("av-next", resource_id=studio.id, start=at(11), end=at(12), max_slots=1)
    assert ledger.book_availability_slot(test_db_session, other_student, adjacent.id).status == "Confirmed"


def test_publish_availability(test_db_session, make_resource, student, teacher, at):
    studio = make_resource()
    window = ledger.publish_availability(test_db_session, teacher, studio.id, at(9), at(10), 4)
    assert (window.publisher_id, window.max_slots) == ("u-teacher", 4)

    with pytest.raises(Unauthorized):
        ledger.publish_availability(test_db_session, student, studio.id, at(9), at(10), 4)
    with pytest.raises(InvalidRange):
        ledger.publish_availability(test_db_session, teacher, studio.id, at(10), at(9), 4)
    with pytest.raises(ValidationError):
        ledger.publish_availability(test_db_session, teacher, studio.id, at(9), at(10), 0)
    with pytest.raises(NotFound):
        ledger.publish_availability(test_db_session, teacher, "no-such-room", at(9), at(10), 1)


def test_delete_availability_blocked_by_live_bookings(test_db_session, make_availability,
                                                      student, teacher):
    window_id = make_availability(max_slots=2).id
    booking = ledger.book_availability_slot(test_db_session, student, window_id)

    with pytest.raises(Unauthorized):
        ledger.delete_availability(test_db_session, student, window_id)
    with pytest.raises(HasActiveBookings):
        ledger.delete_availability(test_db_session, teacher, window_id)
    assert test_db_session.get(Availability, window_id) is not None

    ledger.set_booking_status(test_db_session, student, booking.id, "Cancelled")
    ledger.delete_availability(test_db_session, teacher, window_id)

    assert test_db_session.get(Availability, window_id) is None
    kept = ledger.get_booking(test_db_session, booking.id)
    assert kept.status == "Cancelled"
    assert kept.availability_id is None

    with pytest.raises(NotFound):
        ledger.delete_availability(test_db_session, teacher, window_id)
