# backend/tests/test_split_logic.py
import pytest

from tabbit.domain.models import Assignment, Item, ModelValidationError, Rabbit
from tabbit.domain.split_logic import SplitLogicError, calculate_split


def _items(*pairs):
    return [Item(id=f"i{idx}", description=desc, price_cents=cents) for idx, (desc, cents) in enumerate(pairs)]


def _rabbits(*names):
    return [Rabbit(id=name.lower(), name=name) for name in names]


def _assign(*edges):
    return [Assignment(item_id=i, rabbit_id=r) for i, r in edges]


def test_burger_and_fries_example():
    items = _items(("Burger", 1000), ("Fries", 400))
    rabbits = _rabbits("A", "B")
    assignments = _assign(("i0", "a"), ("i1", "a"), ("i1", "b"))

    summary = calculate_split(items, rabbits, assignments, tax_percent=8, tip_percent=20)

    a = summary.for_rabbit("a")
    assert (a.subtotal, a.tax, a.tip, a.total) == (1200, 96, 240, 1536)
    b = summary.for_rabbit("b")
    assert (b.subtotal, b.tax, b.tip, b.total) == (200, 16, 40, 256)

    assert summary.items_subtotal == 1400
    assert summary.tax_amount == 112
    assert summary.tip_amount == 280
    assert summary.grand_total == 1792
    assert summary.rounding_drift == 0
    assert summary.unassigned_item_count == 0


def test_single_assignee_without_tax_pays_item_price():
    items = _items(("Steak", 2899))
    summary = calculate_split(items, _rabbits("A"), _assign(("i0", "a")))
    assert summary.for_rabbit("a").total == 2899


def test_even_split_has_no_drift():
    items = _items(("Pizza", 900))
    rabbits = _rabbits("A", "B", "C")
    summary = calculate_split(items, rabbits, _assign(("i0", "a"), ("i0", "b"), ("i0", "c")))
    assert [rt.subtotal for rt in summary.rabbit_totals] == [300, 300, 300]
    assert summary.rounding_drift == 0


def test_uneven_split_drift_is_kept_not_corrected():
    items = _items(("Nachos", 100))
    rabbits = _rabbits("A", "B", "C")
    summary = calculate_split(items, rabbits, _assign(("i0", "a"), ("i0", "b"), ("i0", "c")))

    assert [rt.total for rt in summary.rabbit_totals] == [33, 33, 33]
    assert summary.grand_total == 100
    assert summary.rounding_drift == -1
    assert abs(summary.rounding_drift) <= len(rabbits)


def test_drift_with_tax_and_tip():
    # 1000 / 3 = 333.33 -> 333; tax round(26.64) = 27; tip round(66.6) = 67
    items = _items(("Platter", 1000))
    rabbits = _rabbits("A", "B", "C")
    summary = calculate_split(
        items, rabbits, _assign(("i0", "a"), ("i0", "b"), ("i0", "c")), tax_percent=8, tip_percent=20
    )

    assert {rt.total for rt in summary.rabbit_totals} == {427}
    assert summary.grand_total == 1280
    assert summary.rounding_drift == 1
    assert abs(summary.rounding_drift) <= len(rabbits)


def test_rounding_happens_once_after_summation():
    # 1/3 + 1/3 of 100 = 66.67 -> 67, not 33 + 33
    items = _items(("X", 100), ("Y", 100))
    rabbits = _rabbits("A", "B", "C")
    edges = _assign(("i0", "a"), ("i0", "b"), ("i0", "c"), ("i1", "a"), ("i1", "b"), ("i1", "c"))
    summary = calculate_split(items, rabbits, edges)
    assert summary.for_rabbit("a").subtotal == 67


def test_half_unit_rounds_away_from_zero():
    items = _items(("Mint", 1))
    summary = calculate_split(items, _rabbits("A", "B"), _assign(("i0", "a"), ("i0", "b")))
    assert [rt.subtotal for rt in summary.rabbit_totals] == [1, 1]
    assert summary.grand_total == 1


def test_unassigned_items_count_toward_grand_total_only():
    items = _items(("Burger", 1000), ("Wine", 3000), ("Bread", 200))
    summary = calculate_split(items, _rabbits("A"), _assign(("i0", "a")), tax_percent=10)

    assert summary.unassigned_item_count == 2
    assert summary.for_rabbit("a").total == 1100
    assert summary.items_subtotal == 4200
    assert summary.grand_total == 4620


def test_rabbit_without_items_owes_nothing():
    summary = calculate_split(_items(("Soup", 500)), _rabbits("A", "B"), _assign(("i0", "a")), 8, 20)
    b = summary.for_rabbit("b")
    assert (b.subtotal, b.tax, b.tip, b.total) == (0, 0, 0, 0)


def test_duplicate_edges_count_once():
    items = _items(("Soup", 500))
    summary = calculate_split(items, _rabbits("A", "B"), _assign(("i0", "a"), ("i0", "a"), ("i0", "b")))
    assert [rt.subtotal for rt in summary.rabbit_totals] == [250, 250]


def test_edges_to_unknown_rabbits_are_ignored():
    items = _items(("Soup", 500))
    summary = calculate_split(items, _rabbits("A"), _assign(("i0", "a"), ("i0", "ghost")))
    assert summary.for_rabbit("a").subtotal == 500


def test_negative_percent_acts_as_discount():
    summary = calculate_split(_items(("Meal", 1000)), _rabbits("A"), _assign(("i0", "a")), tax_percent=-10)
    a = summary.for_rabbit("a")
    assert a.tax == -100
    assert a.total == 900
    assert summary.grand_total == 900


def test_fractional_percentages():
    # 8.875% of 1000 = 88.75 -> 89
    summary = calculate_split(_items(("Meal", 1000)), _rabbits("A"), _assign(("i0", "a")), tax_percent=8.875)
    assert summary.for_rabbit("a").tax == 89
    assert summary.tax_amount == 89


def test_totals_by_rabbit_id():
    summary = calculate_split(_items(("Meal", 1000)), _rabbits("A", "B"), _assign(("i0", "a")))
    assert summary.totals_by_rabbit_id == {"a": 1000, "b": 0}


def test_no_items_no_rabbits():
    summary = calculate_split([], [], [])
    assert summary.rabbit_totals == ()
    assert summary.grand_total == 0
    assert summary.unassigned_item_count == 0


def test_nan_percent_raises():
    with pytest.raises(SplitLogicError):
        calculate_split(_items(("Meal", 1000)), _rabbits("A"), [], tax_percent=float("nan"))


def test_duplicate_item_ids_raise():
    items = [Item(id="x", description="A", price_cents=1), Item(id="x", description="B", price_cents=2)]
    with pytest.raises(SplitLogicError):
        calculate_split(items, [], [])


def test_negative_price_cannot_be_constructed():
    with pytest.raises(ModelValidationError):
        Item(id="x", description="Refund", price_cents=-100)
