# backend/tests/test_ledger.py
import pytest

from tabbit.domain.models import Assignment, Item, Rabbit
from tabbit.sync.ledger import LedgerError, PendingLedger


def _item(item_id="i1", price=500):
    return Item(id=item_id, description="Soup", price_cents=price)


def _rabbit(rabbit_id="r1"):
    return Rabbit(id=rabbit_id, name="Ann")


def test_new_ledger_is_empty():
    assert PendingLedger().is_empty


def test_deleting_an_unsent_item_cancels_the_insert():
    ledger = PendingLedger()
    ledger.add_item(_item())
    ledger.delete_item("i1")

    assert ledger.new_items == {}
    assert ledger.deleted_item_ids == []
    assert ledger.is_empty


def test_deleting_a_stored_item_records_a_delete_once():
    ledger = PendingLedger()
    ledger.delete_item("stored")
    ledger.delete_item("stored")
    assert ledger.deleted_item_ids == ["stored"]


def test_deleting_an_unsent_rabbit_cancels_the_insert():
    ledger = PendingLedger()
    ledger.add_rabbit(_rabbit())
    ledger.delete_rabbit("r1")
    assert ledger.is_empty


def test_assignment_toggled_twice_leaves_nothing():
    ledger = PendingLedger()
    edge = Assignment(item_id="i1", rabbit_id="r1")
    ledger.add_assignment(edge)
    ledger.remove_assignment(edge)
    assert ledger.is_empty


def test_removing_then_readding_a_stored_assignment_cancels():
    ledger = PendingLedger()
    edge = Assignment(item_id="i1", rabbit_id="r1")
    ledger.remove_assignment(edge)
    assert ledger.removed_assignments == [edge]
    ledger.add_assignment(edge)
    assert ledger.is_empty


def test_duplicate_adds_are_recorded_once():
    ledger = PendingLedger()
    edge = Assignment(item_id="i1", rabbit_id="r1")
    ledger.add_assignment(edge)
    ledger.add_assignment(edge)
    assert ledger.added_assignments == [edge]


def test_deleting_an_item_prunes_its_pending_edges():
    ledger = PendingLedger()
    ledger.add_assignment(Assignment(item_id="i1", rabbit_id="r1"))
    ledger.remove_assignment(Assignment(item_id="i1", rabbit_id="r2"))
    ledger.add_assignment(Assignment(item_id="i2", rabbit_id="r1"))

    ledger.delete_item("i1")

    assert ledger.added_assignments == [Assignment(item_id="i2", rabbit_id="r1")]
    assert ledger.removed_assignments == []
    assert ledger.deleted_item_ids == ["i1"]


def test_deleting_a_rabbit_prunes_its_pending_edges():
    ledger = PendingLedger()
    ledger.add_rabbit(_rabbit("r1"))
    ledger.add_assignment(Assignment(item_id="i1", rabbit_id="r1"))
    ledger.delete_rabbit("r1")
    assert ledger.is_empty


def test_tab_updates_merge_last_write_wins():
    ledger = PendingLedger()
    ledger.update_tab({"tax_percent": 8})
    ledger.update_tab({"tax_percent": 9, "name": "Lunch"})
    assert ledger.tab_updates == {"tax_percent": 9, "name": "Lunch"}


def test_unknown_tab_field_is_rejected():
    ledger = PendingLedger()
    with pytest.raises(LedgerError):
        ledger.update_tab({"owner_id": "someone-else"})
    assert ledger.is_empty


def test_copy_is_independent():
    ledger = PendingLedger()
    ledger.add_item(_item())
    snapshot = ledger.copy()
    ledger.delete_item("i1")

    assert "i1" in snapshot.new_items
    assert ledger.is_empty


def test_summary_counts_buckets():
    ledger = PendingLedger()
    ledger.add_item(_item("i1"))
    ledger.add_item(_item("i2"))
    ledger.delete_rabbit("r9")
    ledger.update_tab({"name": "X"})

    summary = ledger.summary()
    assert summary["new_items"] == 2
    assert summary["deleted_rabbits"] == 1
    assert summary["tab_updates"] == 1
    assert summary["added_assignments"] == 0
