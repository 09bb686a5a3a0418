import random
from datetime import timedelta

import pytest

from allocator import CapacityAllocator
from errors import CapacityExceeded, InvalidRequest, InvalidState, NotFound, StorageUnavailable
from ledger import ReservationLedger
from reservation import PaymentMethod, Status
from tests.helpers import t


def book(ledger, day, tables=2, start="18:00", owner="ana"):
    return ledger.book(owner, "Ana Cruz", "09171234567", tables, day, t(start))


# ---------- booking & capacity ----------
def test_book_creates_pending_two_hour_reservation(ledger, store, day):
    r = book(ledger, day)
    assert r.id == "1"
    assert r.status == Status.PENDING
    assert r.window.start == t("18:00")
    assert r.window.end == t("20:00")
    assert store.rows["1"] == r


def test_capacity_scenario(ledger, day):
    book(ledger, day, tables=6, start="18:00")
    assert ledger.available(day, t("18:00")) == 4

    with pytest.raises(CapacityExceeded) as exc:
        ledger.book("ben", "Ben", "0917", 5, day, t("18:30"))
    assert exc.value.available == 4
    assert len(ledger.list_all()) == 1

    ledger.book("ben", "Ben", "0917", 4, day, t("18:30"))
    assert ledger.available(day, t("18:00")) == 0


def test_request_above_pool_size_is_refused(ledger, day):
    with pytest.raises(CapacityExceeded):
        book(ledger, day, tables=11)


@pytest.mark.parametrize("tables", [0, -1, True, "2"])
def test_non_positive_or_non_integer_tables_are_refused(ledger, day, tables):
    with pytest.raises(InvalidRequest):
        book(ledger, day, tables=tables)


def test_empty_owner_is_refused(ledger, day):
    with pytest.raises(InvalidRequest):
        book(ledger, day, owner="")


def test_overnight_booking_is_refused(ledger, day):
    with pytest.raises(InvalidRequest):
        book(ledger, day, start="23:00")
    assert ledger.list_all() == []


def test_service_duration_is_configurable(store, day):
    ledger = ReservationLedger(store, service_duration=timedelta(minutes=90))
    r = book(ledger, day, start="18:00")
    assert r.window.end == t("19:30")


def test_capacity_invariant_over_random_book_and_edit(store, day):
    ledger = ReservationLedger(store, allocator=CapacityAllocator(pool_size=10))
    rng = random.Random(2025)
    starts = ["17:00", "17:30", "18:00", "18:45", "19:00", "20:15", "21:00"]
    owners = ["ana", "ben", "cy"]
    for _ in range(300):
        try:
            if rng.random() < 0.7 or not ledger.list_all():
                ledger.book(rng.choice(owners), "n", "c", rng.randint(1, 6), day, t(rng.choice(starts)))
            else:
                target = rng.choice(ledger.list_all())
                ledger.edit(target.id, target.owner, rng.randint(1, 6), day, t(rng.choice(starts)))
        except (CapacityExceeded, InvalidState):
            pass

    active = [r for r in ledger.list_all() if r.status == Status.PENDING]
    assert active
    for r in active:
        overlapping = sum(o.tables for o in active if o.window.overlaps(r.window))
        assert overlapping <= 10


# ---------- edit ----------
def test_edit_moves_window_and_tables(ledger, day):
    r = book(ledger, day, tables=2)
    edited = ledger.edit(r.id, "ana", 3, day + timedelta(days=1), t("12:00"))
    assert edited.tables == 3
    assert edited.window.date == day + timedelta(days=1)
    assert edited.window.end == t("14:00")
    assert edited.created_at == r.created_at


def test_edit_does_not_count_own_allocation(ledger, day):
    r = book(ledger, day, tables=10)
    edited = ledger.edit(r.id, "ana", 10, day, t("19:00"))
    assert edited.window.start == t("19:00")


def test_edit_checks_capacity_for_new_window(ledger, day):
    book(ledger, day, tables=8, start="18:00", owner="ben")
    r = book(ledger, day, tables=2, start="12:00")
    with pytest.raises(CapacityExceeded):
        ledger.edit(r.id, "ana", 3, day, t("19:00"))
    assert ledger.get(r.id).window.start == t("12:00")


def test_edit_by_other_owner_is_not_found(ledger, day):
    r = book(ledger, day)
    with pytest.raises(NotFound):
        ledger.edit(r.id, "ben", 1, day, t("12:00"))


def test_edit_only_while_pending(ledger, day):
    r = book(ledger, day)
    ledger.approve(r.id)
    with pytest.raises(InvalidState):
        ledger.edit(r.id, "ana", 1, day, t("12:00"))


# ---------- state machine ----------
def test_approve_then_settle_writes_one_audit_entry(ledger, store, day):
    r = book(ledger, day, tables=3)
    assert ledger.approve(r.id).status == Status.APPROVED

    settled = ledger.settle(r.id, "Card")
    assert settled.status == Status.SETTLED
    assert settled.payment_method == PaymentMethod.CARD
    assert len(store.settlements) == 1
    entry = store.settlements[0]
    assert entry["ID"] == r.id
    assert entry["Tables"] == 3
    assert entry["Payment Method"] == "Card"
    assert entry["Status"] == "Settled"
    assert entry["Settled At"] == settled.updated_at

    with pytest.raises(InvalidState):
        ledger.settle(r.id, "Card")
    assert len(store.settlements) == 1


def test_settle_pending_is_invalid_state(ledger, day):
    r = book(ledger, day)
    with pytest.raises(InvalidState):
        ledger.settle(r.id, PaymentMethod.MAYA)


def test_settle_without_payment_method_keeps_approved(ledger, store, day):
    r = book(ledger, day)
    ledger.approve(r.id)
    with pytest.raises(InvalidRequest):
        ledger.settle(r.id, None)
    assert ledger.status_of(r.id) == Status.APPROVED
    assert store.settlements == []


def test_approve_twice_fails_second_time(ledger, day):
    r = book(ledger, day)
    ledger.approve(r.id)
    with pytest.raises(InvalidState):
        ledger.approve(r.id)


def test_reject_pending_and_then_nothing_else(ledger, day):
    r = book(ledger, day, tables=10)
    assert ledger.reject(r.id).status == Status.REJECTED
    assert ledger.available(day, t("18:00")) == 10
    with pytest.raises(InvalidState):
        ledger.approve(r.id)
    with pytest.raises(InvalidState):
        ledger.cancel(r.id, "ana")


def test_cancel_pending_and_approved(ledger, day):
    first = book(ledger, day, tables=4)
    second = book(ledger, day, tables=4)
    ledger.approve(second.id)
    assert ledger.cancel(first.id, "ana").status == Status.CANCELLED
    assert ledger.cancel(second.id, "ana").status == Status.CANCELLED
    assert ledger.available(day, t("18:00")) == 10


def test_cancel_settled_is_invalid_state(ledger, day):
    r = book(ledger, day)
    ledger.approve(r.id)
    ledger.settle(r.id, "GCash")
    with pytest.raises(InvalidState):
        ledger.cancel(r.id, "ana")


def test_cancel_by_other_owner_is_not_found(ledger, day):
    r = book(ledger, day)
    with pytest.raises(NotFound):
        ledger.cancel(r.id, "ben")
    assert ledger.status_of(r.id) == Status.PENDING


@pytest.mark.parametrize("operation", ["approve", "reject"])
def test_unknown_id_is_not_found(ledger, operation):
    with pytest.raises(NotFound):
        getattr(ledger, operation)("99")


def test_settle_unknown_id_is_not_found(ledger):
    with pytest.raises(NotFound):
        ledger.settle("99", "Card")


def test_cancelled_ids_are_never_reissued(ledger, day):
    r = book(ledger, day)
    ledger.cancel(r.id, "ana")
    assert book(ledger, day).id == "2"


# ---------- storage failures ----------
def test_failed_save_leaves_ledger_unchanged(ledger, store, day):
    r = book(ledger, day)
    store.fail_saves = True
    with pytest.raises(StorageUnavailable):
        ledger.approve(r.id)
    with pytest.raises(StorageUnavailable):
        book(ledger, day)
    assert ledger.status_of(r.id) == Status.PENDING
    assert len(ledger.list_all()) == 1


def test_failed_audit_write_keeps_reservation_approved(ledger, store, day):
    r = book(ledger, day)
    ledger.approve(r.id)
    store.fail_settlements = True
    with pytest.raises(StorageUnavailable):
        ledger.settle(r.id, "Maya")
    assert ledger.status_of(r.id) == Status.APPROVED


def test_settle_retry_after_failed_save_logs_once(ledger, store, day):
    r = book(ledger, day)
    ledger.approve(r.id)
    store.fail_saves = True
    with pytest.raises(StorageUnavailable):
        ledger.settle(r.id, "GCash")
    assert ledger.status_of(r.id) == Status.APPROVED
    assert len(store.settlements) == 1

    store.fail_saves = False
    settled = ledger.settle(r.id, "GCash")
    assert settled.status == Status.SETTLED
    assert [e["ID"] for e in store.settlements] == [r.id]
    assert store.settlements[0]["Payment Method"] == "GCash"


# ---------- queries ----------
def test_queries(ledger, day):
    a = book(ledger, day, owner="ana")
    b = book(ledger, day, owner="ben")
    c = book(ledger, day, owner="ana")
    ledger.approve(c.id)

    assert [r.id for r in ledger.list_all()] == [a.id, b.id, c.id]
    assert [r.id for r in ledger.list_by_status(Status.PENDING)] == [a.id, b.id]
    assert [r.id for r in ledger.list_by_status("approved")] == [c.id]
    assert [r.id for r in ledger.list_by_owner("ana")] == [a.id, c.id]
    assert [r.id for r in ledger.list_by_owner_and_status("ana", Status.APPROVED)] == [c.id]
    assert ledger.list_by_owner("nobody") == []
    assert ledger.exists(a.id)
    assert not ledger.exists("42")
    assert ledger.status_of(c.id) == Status.APPROVED
    assert ledger.status_of("42") is None


def test_returned_records_are_copies(ledger, day):
    r = book(ledger, day, tables=2)
    r.tables = 9
    assert ledger.get(r.id).tables == 2


def test_load_and_flush_use_the_store(store, day):
    first = ReservationLedger(store)
    r = book(first, day)
    first.approve(r.id)

    second = ReservationLedger.load(store)
    assert second.list_all() == first.list_all()

    store.rows.clear()
    second.flush()
    assert list(store.rows) == [r.id]
